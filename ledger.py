def merge_order_ids(existing, incoming) -> set:
    return set(existing) | set(incoming)


class KnownIdLedger:
    """
    Remembers which order IDs have already been shown for the current
    status tab and date, so that only genuinely new arrivals are reported.

    The ID set lives under ``state_key`` in the state mapping of its owner. In
    the app that is ``OrderFeedWatcher.state``, guarded by the watcher's lock;
    the ledger itself does no locking.
    """

    def __init__(self, state, state_key="known_order_ids"):
        self.state = state
        self.state_key = state_key
        self.seeded_key = f"{state_key}_seeded"
        if self.state_key not in self.state:
            self.state[self.state_key] = set()
            self.state[self.seeded_key] = False

    @property
    def ids(self) -> set:
        return self.state.get(self.state_key, set())

    @property
    def is_seeded(self) -> bool:
        return bool(self.state.get(self.seeded_key, False))

    def record(self, order_ids, page: int) -> set:
        """
        Adds the IDs of a fetched page to the ledger.

        Args:
            order_ids (Iterable): IDs returned by the fetch.
            page (int): Page the fetch targeted.

        Returns:
            set: IDs that were not known before. Empty when this fetch seeds the
                 ledger (first successful page-1 load of a filter context).
        """
        incoming = {order_id for order_id in order_ids if order_id is not None}
        previous = self.ids
        if page == 1 and not self.is_seeded:
            self.state[self.state_key] = merge_order_ids(previous, incoming)
            self.state[self.seeded_key] = True
            return set()
        self.state[self.state_key] = merge_order_ids(previous, incoming)
        return incoming - previous

    def reset(self):
        self.state[self.state_key] = set()
        self.state[self.seeded_key] = False
