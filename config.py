import os
from dataclasses import dataclass

import pytz

DEFAULT_NOTIFICATION_SOUND_URL = "https://uspizza.ipsgroup.com.my/cms/notification.mp3"
DEFAULT_TIMEZONE = "Asia/Kuala_Lumpur"


class ConfigError(ValueError):
    """Raised when a configuration value is missing or malformed."""


@dataclass(frozen=True)
class Settings:
    api_base_url: str
    poll_interval_seconds: float = 3
    alert_timeout_seconds: float = 20
    request_timeout_seconds: float = 15
    per_page: int = 10
    summary_page_size: int = 1000
    timezone: str = DEFAULT_TIMEZONE
    notification_sound_url: str = DEFAULT_NOTIFICATION_SOUND_URL
    dismiss_stops_alert: bool = False
    session_timeout_minutes: float = 60
    session_warning_seconds: float = 60

    @property
    def tz(self):
        return pytz.timezone(self.timezone)


# (settings field, env var, parser)
_FIELDS = [
    ("api_base_url", "ORDER_API_BASE_URL", str),
    ("poll_interval_seconds", "ORDER_POLL_INTERVAL", float),
    ("alert_timeout_seconds", "ORDER_ALERT_TIMEOUT", float),
    ("request_timeout_seconds", "ORDER_REQUEST_TIMEOUT", float),
    ("per_page", "ORDER_PER_PAGE", int),
    ("summary_page_size", "ORDER_SUMMARY_PAGE_SIZE", int),
    ("timezone", "OUTLET_TIMEZONE", str),
    ("notification_sound_url", "ORDER_NOTIFICATION_SOUND_URL", str),
    ("dismiss_stops_alert", "ORDER_DISMISS_STOPS_ALERT", "bool"),
    ("session_timeout_minutes", "SESSION_TIMEOUT_MINUTES", float),
    ("session_warning_seconds", "SESSION_WARNING_SECONDS", float),
]


def _parse_bool(value) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def load_settings(secrets=None, environ=None) -> Settings:
    """
    Builds the dashboard settings.

    Values come from the ``[order_api]`` table of Streamlit secrets first and
    fall back to environment variables, so the same code runs under
    ``streamlit run`` and in a plain shell.

    Args:
        secrets (Mapping | None): Usually ``st.secrets``.
        environ (Mapping | None): Defaults to ``os.environ``.

    Raises:
        ConfigError: If the API base URL is missing or a value cannot be parsed.
    """
    environ = os.environ if environ is None else environ
    section = {}
    if secrets is not None:
        section = dict(secrets.get("order_api", {}))

    values = {}
    for name, env_var, parser in _FIELDS:
        raw = section.get(name, environ.get(env_var))
        if raw is None or raw == "":
            continue
        try:
            values[name] = _parse_bool(raw) if parser == "bool" else parser(raw)
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid value for {name}: {raw!r}") from e

    if not values.get("api_base_url"):
        raise ConfigError("Missing order API base URL (order_api.api_base_url or ORDER_API_BASE_URL)")
    # The listing endpoint paths are appended without a leading slash.
    if not values["api_base_url"].endswith("/"):
        values["api_base_url"] += "/"

    for name in ("poll_interval_seconds", "alert_timeout_seconds", "request_timeout_seconds", "per_page", "summary_page_size"):
        if name in values and values[name] <= 0:
            raise ConfigError(f"{name} must be positive, got {values[name]!r}")

    if "timezone" in values:
        try:
            pytz.timezone(values["timezone"])
        except pytz.UnknownTimeZoneError as e:
            raise ConfigError(f"Unknown timezone: {values['timezone']!r}") from e

    return Settings(**values)
