import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

APP_DIR_NAME = "servicehub"
DEFAULT_HISTORY_LIMIT = 50


def _env_int(name: str, default: int, minimum: int = 1) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return value if value >= minimum else default


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name, "").strip().lower()
    if not raw:
        return default
    if raw in {"1", "true", "yes", "on"}:
        return True
    if raw in {"0", "false", "no", "off"}:
        return False
    return default


def default_data_dir() -> Path:
    """Per-user writable location for the JSON collections."""
    appdata = os.getenv("APPDATA")
    if os.name == "nt" and appdata:
        return Path(appdata) / "ServiceHub"
    xdg = os.getenv("XDG_DATA_HOME")
    if xdg:
        return Path(xdg) / APP_DIR_NAME
    return Path.home() / ".local" / "share" / APP_DIR_NAME


@dataclass(frozen=True)
class Settings:
    data_dir: Path
    view_history_limit: int = DEFAULT_HISTORY_LIMIT
    search_history_limit: int = DEFAULT_HISTORY_LIMIT
    persist_accounts: bool = False
    log_level: str = "INFO"


def get_settings(data_dir: Optional[str] = None) -> Settings:
    configured_dir = data_dir or os.getenv("SERVICEHUB_DATA_DIR", "").strip()
    return Settings(
        data_dir=Path(configured_dir).expanduser() if configured_dir else default_data_dir(),
        view_history_limit=_env_int("SERVICEHUB_VIEW_HISTORY_LIMIT", DEFAULT_HISTORY_LIMIT),
        search_history_limit=_env_int("SERVICEHUB_SEARCH_HISTORY_LIMIT", DEFAULT_HISTORY_LIMIT),
        persist_accounts=_env_bool("SERVICEHUB_PERSIST_ACCOUNTS"),
        log_level=os.getenv("SERVICEHUB_LOG_LEVEL", "INFO").strip() or "INFO",
    )
