"""Logging configuration for switchboard.

structlog renders events, stdlib logging routes them. Each subsystem
writes to its own rotating file and also propagates to the combined
``switchboard.log`` and the console:

    root                         console
      switchboard                switchboard.log
        switchboard.router       router.log   (rule matching, build errors)
        switchboard.bot          bot.log      (lifecycle, dispatch)
        switchboard.transport    transport.log (Signal HTTP / WebSocket)
        switchboard.config       config.log   (settings validation)

Signal account ids are phone numbers and appear in most bot events, so
every event passes through ``sanitize_secrets`` before rendering.
"""

import logging
import logging.handlers
import re
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import structlog

SUBSYSTEMS = ("router", "bot", "transport", "config")
LOGGER_PREFIX = "switchboard"

_DEFAULT_LOG_DIR = Path(__file__).parent.parent / "logs"

# ---------------------------------------------------------------------------
# Sanitization
# ---------------------------------------------------------------------------

_REDACTED = "***REDACTED***"

_SECRET_PATTERNS = (
    re.compile(r"Bearer\s+[a-zA-Z0-9_./-]{20,}"),
    # user:password@ in URLs
    re.compile(r"(?<=://)[^/\s:@]+:[^/\s@]+(?=@)"),
)

# E.164, 7-15 digits
_PHONE_PATTERN = re.compile(r"\+\d{7,15}")


def _mask_phone(match: "re.Match[str]") -> str:
    return "..." + match.group(0)[-4:]


def _scrub(value: Any) -> Any:
    if isinstance(value, str):
        for pattern in _SECRET_PATTERNS:
            value = pattern.sub(_REDACTED, value)
        return _PHONE_PATTERN.sub(_mask_phone, value)
    if isinstance(value, (list, tuple)):
        return type(value)(_scrub(v) for v in value)
    if isinstance(value, dict):
        return {k: _scrub(v) for k, v in value.items()}
    return value


def sanitize_secrets(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """structlog processor: redact credentials, mask phone numbers to "...1234"."""
    for key, value in event_dict.items():
        event_dict[key] = _scrub(value)
    return event_dict


# ---------------------------------------------------------------------------
# Setup
# ---------------------------------------------------------------------------

@dataclass
class _LogSettings:
    log_dir: Path = _DEFAULT_LOG_DIR
    level: int = logging.INFO
    subsystem_levels: Dict[str, int] = field(default_factory=dict)
    max_bytes: int = 10 * 1024 * 1024
    backup_count: int = 5

    @classmethod
    def from_config(cls, config) -> "_LogSettings":
        level = _level(config.logging_level, logging.INFO)
        return cls(
            log_dir=Path(config.log_dir),
            level=level,
            subsystem_levels={
                name: _level(value, level)
                for name, value in (config.logging_subsystem_levels or {}).items()
            },
            max_bytes=int(config.logging_max_file_size_mb) * 1024 * 1024,
            backup_count=int(config.logging_backup_count),
        )


def _level(name: Optional[str], default: int) -> int:
    if not name:
        return default
    value = logging.getLevelName(str(name).upper())
    return value if isinstance(value, int) else default


def _file_handler(
    path: Path, settings: _LogSettings, level: int, formatter: logging.Formatter
) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(
        path,
        maxBytes=settings.max_bytes,
        backupCount=settings.backup_count,
        encoding="utf-8",
    )
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def _reset(logger: logging.Logger, level: int) -> None:
    for handler in logger.handlers:
        handler.close()
    logger.handlers.clear()
    logger.setLevel(level)
    logger.propagate = True


def setup_logging(config=None) -> None:
    """Configure console and per-subsystem file logging.

    Called twice by the entry point: first with no config (defaults,
    logger caching off, so loggers created at import time pick up the
    second configuration), then with the loaded Config (caching on).
    Files are skipped with a warning on stderr if the log directory
    cannot be created.
    """
    settings = _LogSettings.from_config(config) if config is not None else _LogSettings()

    try:
        settings.log_dir.mkdir(parents=True, exist_ok=True)
        to_files = True
    except OSError as exc:
        print(
            f"WARNING: Cannot create log directory {settings.log_dir}: {exc}. "
            "Logging to console only.",
            file=sys.stderr,
        )
        to_files = False

    file_formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(colors=False),
        ],
    )

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)  # handlers do the filtering
    root.handlers.clear()
    console = logging.StreamHandler(sys.stdout)
    console.setLevel(settings.level)
    console.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s"))
    root.addHandler(console)

    package_logger = logging.getLogger(LOGGER_PREFIX)
    _reset(package_logger, logging.DEBUG)
    if to_files:
        package_logger.addHandler(_file_handler(
            settings.log_dir / f"{LOGGER_PREFIX}.log",
            settings, settings.level, file_formatter,
        ))

    for subsystem in SUBSYSTEMS:
        level = settings.subsystem_levels.get(subsystem, settings.level)
        sub_logger = logging.getLogger(f"{LOGGER_PREFIX}.{subsystem}")
        _reset(sub_logger, level)
        if to_files:
            sub_logger.addHandler(_file_handler(
                settings.log_dir / f"{subsystem}.log", settings, level, file_formatter,
            ))

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            sanitize_secrets,
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=config is not None,
    )
