import inspect
import logging
import threading
import weakref

logger = logging.getLogger(__name__)


class PollScheduler:
    """
    Calls ``callback`` every ``interval`` seconds on a background thread.

    Only one poll runs at a time: a tick that comes due while the previous
    callback is still running is skipped. ``stop()`` must be called when the
    dashboard goes away; once it returns, no new poll is started.

    A bound-method callback is held weakly, so the thread winds down on its
    own once the object that owns the callback is garbage collected. The
    optional ``keep_running`` predicate is checked before every tick; when it
    returns False the thread exits as well.
    """

    def __init__(self, callback, interval: float = 3, name: str = "order-poll", keep_running=None):
        if interval <= 0:
            raise ValueError("interval must be positive")
        if inspect.ismethod(callback):
            self._callback_ref = weakref.WeakMethod(callback)
        else:
            self._callback_ref = lambda: callback
        self.interval = interval
        self.name = name
        self.keep_running = keep_running
        self._in_flight = threading.Lock()
        self._state_lock = threading.Lock()
        self._stop_event = None
        self._thread = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self):
        with self._state_lock:
            if self._thread is not None and self._thread.is_alive():
                return
            self._stop_event = threading.Event()
            self._thread = threading.Thread(target=self._run, args=(self._stop_event,), name=self.name, daemon=True)
            self._thread.start()
        logger.debug("Poll scheduler %s started (every %ss)", self.name, self.interval)

    def stop(self, join_timeout: float = 0.1):
        """
        Signals the poll thread to exit. Waits at most ``join_timeout`` seconds
        for it; a poll still waiting on the network finishes in the background.
        """
        with self._state_lock:
            stop_event, thread = self._stop_event, self._thread
            self._stop_event, self._thread = None, None
        if stop_event is None:
            return
        stop_event.set()
        if thread is not threading.current_thread():
            thread.join(join_timeout)
        logger.debug("Poll scheduler %s stopped", self.name)

    def rearm(self):
        """Tears the timer down and starts a fresh one, e.g. after a tab change."""
        self.stop()
        self.start()

    def tick(self, stop_event: threading.Event = None) -> bool:
        """
        Runs one poll unless another one is still in flight.

        Returns:
            bool: True if the callback ran.
        """
        if not self._in_flight.acquire(blocking=False):
            logger.debug("Skipping poll tick, previous poll still running")
            return False
        try:
            if stop_event is not None and stop_event.is_set():
                return False
            callback = self._callback_ref()
            if callback is None:
                return False
            callback()
            return True
        except Exception:
            logger.exception("Background poll failed")
            return False
        finally:
            self._in_flight.release()

    def _owner_gone(self) -> bool:
        if self._callback_ref() is None:
            return True
        if self.keep_running is not None and not self.keep_running():
            return True
        return False

    def _run(self, stop_event: threading.Event):
        while not stop_event.wait(self.interval):
            if self._owner_gone():
                logger.info("Poll scheduler %s exiting, its session is gone", self.name)
                return
            self.tick(stop_event)
