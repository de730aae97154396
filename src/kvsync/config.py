"""Runtime configuration for the kvsync client.

Reads remote and storage settings from CLI args, environment variables,
.env files, and YAML config file fallbacks.

Precedence (highest to lowest):
    CLI args > Environment variables > .env file > YAML config > Built-in defaults

Environment variables:
    KVSYNC_URL: Remote store endpoint (optional until the first sync)
    KVSYNC_STORE: Path of the local SQLite store (default: ~/.local/share/kvsync/store.db)
    KVSYNC_TIMEOUT: Request timeout in seconds (optional, default: 30)
    KVSYNC_INTERVAL: Default sync interval in seconds (optional, default: 60)
    KVSYNC_DEBUG: Enable debug logging (optional, default: false)
"""

import os
from dataclasses import dataclass, field
from urllib.parse import urlparse

MIN_SYNC_INTERVAL = 60
MAX_SYNC_INTERVAL = 86400

DEFAULT_STORE_PATH = "~/.local/share/kvsync/store.db"
DEFAULT_NOTES_KEY = "userNotes"
DEFAULT_CONFIRM_KEYS = ("statusesConfig",)


@dataclass
class Config:
    remote_url: str = ""
    store_path: str = DEFAULT_STORE_PATH
    request_timeout: float = 30.0
    ping_timeout: float = 10.0
    sync_interval: int = MIN_SYNC_INTERVAL
    notes_key: str = DEFAULT_NOTES_KEY
    confirm_keys: tuple[str, ...] = field(
        default_factory=lambda: DEFAULT_CONFIRM_KEYS
    )
    member_delimiter: str = ","
    success_display_s: float = 2.0
    debug: bool = False
    log_level: str = "INFO"
    log_file: str | None = None


def validate_config(config: Config) -> None:
    """Validate configuration values and raise ValueError if invalid.

    Args:
        config: Config instance to validate.

    Raises:
        ValueError: If the URL format is invalid or a numeric value is out
            of range.
    """
    config.remote_url = config.remote_url.strip()

    # An empty URL is allowed: the device can queue changes before it is
    # pointed at a remote.
    if config.remote_url:
        if not config.remote_url.startswith(("http://", "https://")):
            raise ValueError(
                f"Invalid remote URL '{config.remote_url}': must start with http:// or https://"
            )
        parsed = urlparse(config.remote_url)
        if not parsed.hostname:
            raise ValueError(
                f"Invalid remote URL '{config.remote_url}': URL must include a hostname"
            )

    if not config.store_path.strip():
        raise ValueError(
            "Store path cannot be empty. Set KVSYNC_STORE environment variable."
        )

    if not (MIN_SYNC_INTERVAL <= config.sync_interval <= MAX_SYNC_INTERVAL):
        raise ValueError(
            f"Invalid sync interval {config.sync_interval}: must be between "
            f"{MIN_SYNC_INTERVAL} and {MAX_SYNC_INTERVAL} seconds"
        )

    if not config.member_delimiter:
        raise ValueError("Member delimiter cannot be empty")


def _env_flag(name: str) -> bool | None:
    """Parse a yes/no env var; ``None`` when unset."""
    raw = os.getenv(name)
    if raw is None:
        return None
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_number(name: str, kind: type, hint: str) -> int | float | None:
    """Parse a numeric env var; ``None`` when unset."""
    raw = os.getenv(name)
    if raw is None:
        return None
    try:
        return kind(raw)
    except ValueError:
        raise ValueError(f"Invalid {name} '{raw}': {hint}") from None


def load_config(
    url: str | None = None,
    store: str | None = None,
    debug: bool = False,
    yaml_fallbacks: dict | None = None,
) -> Config:
    """Build and validate a Config.

    For the URL, store path and debug flag the order is CLI argument,
    then environment, then *yaml_fallbacks*, then the default.  Timeout and
    interval have no CLI argument.  Everything else comes only from YAML.
    Call ``load_dotenv()`` first if ``.env`` values should count as
    environment.

    Args:
        url: Remote URL from the command line.
        store: Store path from the command line.
        debug: ``--debug`` was given.
        yaml_fallbacks: Flat values from ``config_schema.yaml_fallbacks``.

    Raises:
        ValueError: A value from any source is invalid.
    """
    fb = yaml_fallbacks or {}

    env_debug = _env_flag("KVSYNC_DEBUG")
    if debug:
        final_debug = True
    elif env_debug is not None:
        final_debug = env_debug
    else:
        final_debug = bool(fb.get("debug", False))

    timeout_hint = "must be a number between 1 and 300"
    timeout = _env_number("KVSYNC_TIMEOUT", float, timeout_hint)
    if timeout is not None and not 1 <= timeout <= 300:
        raise ValueError(
            f"Invalid KVSYNC_TIMEOUT '{os.getenv('KVSYNC_TIMEOUT')}': {timeout_hint}"
        )
    if timeout is None:
        timeout = float(fb.get("timeout", 30.0))

    interval = _env_number(
        "KVSYNC_INTERVAL", int, "must be a whole number of seconds"
    )
    if interval is None:
        interval = int(fb.get("interval", MIN_SYNC_INTERVAL))

    config = Config(
        remote_url=url or os.getenv("KVSYNC_URL") or fb.get("url") or "",
        store_path=(
            store
            or os.getenv("KVSYNC_STORE")
            or fb.get("store_path")
            or DEFAULT_STORE_PATH
        ),
        request_timeout=timeout,
        ping_timeout=float(fb.get("ping_timeout", 10.0)),
        sync_interval=interval,
        notes_key=fb.get("notes_key", DEFAULT_NOTES_KEY),
        confirm_keys=tuple(fb.get("confirm_keys", DEFAULT_CONFIRM_KEYS)),
        member_delimiter=fb.get("delimiter", ","),
        success_display_s=float(fb.get("success_display_s", 2.0)),
        debug=final_debug,
        log_level=str(fb.get("log_level", "INFO")).upper(),
        log_file=fb.get("log_file"),
    )
    validate_config(config)
    return config
