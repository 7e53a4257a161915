# logging.py

import logging
import os
from logging.handlers import RotatingFileHandler

import structlog
from structlog.contextvars import merge_contextvars

from Archivist.config import Settings

_PREFIXES = {
    "debug": "DEBUG",
    "info": "INFO",
    "warning": "WARN",
    "warn": "WARN",
    "error": "ERROR",
    "critical": "ERROR",
    "exception": "ERROR",
}

# Keys that only matter to the JSON file sink
_CONSOLE_DROP = ("timestamp", "logger", "_record", "_from_structlog")


def render_console(_logger, method_name: str, event_dict: dict) -> str:
    """Render an event dict as an operator line: ``[LEVEL] message key=value``.

    ``ok=True`` turns an info line into an ``[OK]`` success line.
    """
    level = str(event_dict.pop("level", method_name)).lower()
    ok = bool(event_dict.pop("ok", False))
    prefix = "OK" if ok and level == "info" else _PREFIXES.get(level, level.upper())
    event = event_dict.pop("event", "")
    message = event_dict.pop("message", None) or event
    exc = event_dict.pop("exception", None)
    for key in _CONSOLE_DROP:
        event_dict.pop(key, None)
    extras = " ".join(f"{k}={v}" for k, v in sorted(event_dict.items()))
    line = f"[{prefix}] {message}"
    if extras:
        line = f"{line} ({extras})"
    if exc:
        line = f"{line}\n{exc}"
    return line


def setup_logging(settings: Settings | None = None) -> None:
    """Initialize structlog + stdlib logging.

    Console lines use the ``[INFO]``/``[WARN]``/``[ERROR]``/``[OK]`` prefixes
    operators script against. If settings enable it, a rotating JSON file log
    is written as well.
    """
    level_name = (settings.logging_level if settings else "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)

    logging.captureWarnings(True)

    shared_pre_chain = [
        structlog.processors.add_log_level,
        merge_contextvars,
    ]

    console_formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.format_exc_info,
            render_console,
        ],
        foreign_pre_chain=shared_pre_chain,
    )
    json_formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        foreign_pre_chain=shared_pre_chain,
    )

    root_handlers: list[logging.Handler] = []
    console_lvl_name = settings.logging_console if settings is not None else level_name
    if (console_lvl_name or "").upper() != "NONE":
        ch = logging.StreamHandler()
        ch.setLevel(getattr(logging, console_lvl_name.upper(), level))
        ch.setFormatter(console_formatter)
        root_handlers.append(ch)

    file_lvl_name = settings.logging_file if settings is not None else "NONE"
    if (file_lvl_name or "").upper() != "NONE":
        path = settings.logging_file_path
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        fh = RotatingFileHandler(
            path,
            maxBytes=settings.logging_max_bytes,
            backupCount=settings.logging_backup_count,
        )
        fh.setLevel(getattr(logging, file_lvl_name.upper(), level))
        fh.setFormatter(json_formatter)
        root_handlers.append(fh)

    # force=True replaces any prior configuration (repeated CLI invocations in tests)
    logging.basicConfig(level=level, handlers=root_handlers, force=True)

    structlog.configure(
        processors=[
            merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def redact_settings(settings: Settings) -> dict:
    """Return a dict of settings safe for logging.

    Key material paths are replaced with "[REDACTED]".
    """
    data = settings.model_dump(mode="json")
    for k in list(data.keys()):
        if k.endswith("_key") or k.endswith("_key_path") or k.endswith("_secret"):
            if data[k] is not None:
                data[k] = "[REDACTED]"
    return data
