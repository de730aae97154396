"""Logging setup for the kvsync CLI and daemon.

One-shot commands log to stderr so stdout stays clean for their output.
``kvsync run`` is long-lived and logs to a file instead.
"""

import json
import logging
import os
import sys

DEFAULT_DAEMON_LOG = "/tmp/kvsync.log"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_NOISY_LOGGERS = ("urllib3", "requests")


class JsonFormatter(logging.Formatter):
    """Render each record as a single JSON object.

    Keys are ``ts``, ``level``, ``logger`` and ``msg``, plus ``exc`` with
    the formatted traceback when the record carries one.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def _formatter(log_format: str, include_logger: bool) -> logging.Formatter:
    if log_format == "json":
        return JsonFormatter(datefmt=DATE_FORMAT)
    name = " %(name)s" if include_logger else ""
    return logging.Formatter(
        f"[%(asctime)s] [%(levelname)s]{name} %(message)s", datefmt=DATE_FORMAT
    )


def resolve_level(debug: bool, default_level: str = "INFO") -> int:
    """``--debug`` wins, then ``LOG_LEVEL``, then *default_level*."""
    if debug:
        return logging.DEBUG
    name = (os.getenv("LOG_LEVEL") or default_level).upper()
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.INFO


def daemon_log_path(log_file: str | None = None) -> str:
    """``log_file`` if given, else ``LOG_FILE``, else ``/tmp/kvsync.log``."""
    return log_file or os.getenv("LOG_FILE") or DEFAULT_DAEMON_LOG


def setup_logging(
    mode: str = "cli",
    debug: bool = False,
    log_file: str | None = None,
    debug_format: str = "text",
    default_level: str = "INFO",
) -> None:
    """
    Configure root logging for a kvsync process.

    Args:
        mode: ``"cli"`` logs to stderr (plus *log_file* when given);
            ``"daemon"`` logs only to ``daemon_log_path(log_file)``.
        debug: Force DEBUG regardless of ``LOG_LEVEL``.
        log_file: Extra log file for cli mode, the log file for daemon mode.
        debug_format: ``"text"`` or ``"json"``.
        default_level: Level used when ``LOG_LEVEL`` is unset, usually
            from the ``logging:`` section of the config file.
    """
    level = resolve_level(debug, default_level)

    handlers: list[logging.Handler] = []
    if mode == "daemon":
        handlers.append(logging.FileHandler(daemon_log_path(log_file), mode="a"))
        handlers[0].setFormatter(_formatter(debug_format, include_logger=True))
    else:
        console = logging.StreamHandler(sys.stderr)
        console.setFormatter(_formatter(debug_format, include_logger=False))
        handlers.append(console)
        if log_file:
            extra = logging.FileHandler(log_file, mode="a")
            extra.setFormatter(_formatter(debug_format, include_logger=True))
            handlers.append(extra)

    logging.basicConfig(level=level, handlers=handlers)

    if level != logging.DEBUG:
        for name in _NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)
