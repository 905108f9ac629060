"""Logging configuration for promptwire.

Every module logs through structlog under a "promptwire.<subsystem>"
name. Each name is a stdlib logger, and events propagate up this tree:
    root               → ConsoleHandler (terminal)
      └─ promptwire    → RotatingFileHandler → promptwire.log (combined)
           ├─ promptwire.bot        → RFH → bot.log
           ├─ promptwire.prompts    → RFH → prompts.log
           ├─ promptwire.transport  → RFH → transport.log
           └─ promptwire.security   → RFH → security.log
"""

import logging
import logging.handlers
import re
import sys
from pathlib import Path
from typing import Any, Dict

import structlog

# One log file per subsystem
SUBSYSTEMS = ("bot", "prompts", "transport", "security")

LOGGER_PREFIX = "promptwire"

# ---------------------------------------------------------------------------
# Secret sanitization
# ---------------------------------------------------------------------------

_SECRET_PATTERNS = [
    # Bearer tokens
    re.compile(r"Bearer\s+[a-zA-Z0-9_./-]{20,}"),
    # user:password@ in a signal_api_url
    re.compile(r"(?<=://)[^/\s:@]+:[^/\s@]+(?=@)"),
]

# E.164 numbers: prompt users, senders, the bot account
_PHONE_PATTERN = re.compile(r"\+\d{7,15}")

_REDACTED = "***REDACTED***"


def _scrub_value(value: str) -> str:
    """Scrub secrets and phone numbers from a single string value."""
    for pattern in _SECRET_PATTERNS:
        value = pattern.sub(_REDACTED, value)
    value = _PHONE_PATTERN.sub(lambda m: "..." + m.group(0)[-4:], value)
    return value


def sanitize_secrets(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """structlog processor that scrubs credentials and full phone numbers.

    Walks all string values in the event dict and replaces matches
    with redacted placeholders. Phone numbers are masked to last 4
    digits ("...1234"), matching ``security.mask``.
    """
    for key, value in event_dict.items():
        if isinstance(value, str):
            event_dict[key] = _scrub_value(value)
        elif isinstance(value, (list, tuple)):
            event_dict[key] = type(value)(
                _scrub_value(v) if isinstance(v, str) else v
                for v in value
            )
        elif isinstance(value, dict):
            event_dict[key] = {
                k: _scrub_value(v) if isinstance(v, str) else v
                for k, v in value.items()
            }
    return event_dict


# ---------------------------------------------------------------------------
# Logging setup
# ---------------------------------------------------------------------------

def _rotating_handler(
    path: Path, level: int, formatter: logging.Formatter, max_bytes: int, backup_count: int
) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(
        path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
    )
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def setup_logging(config=None) -> None:
    """Route promptwire's structlog events to the console and log files.

    Prompt lifecycle events (opened, rejected, resolved, cancelled,
    timed out) land in prompts.log. Signal REST traffic goes to
    transport.log. Every event is also copied to promptwire.log and the
    console.

    Called twice by main(): once without a config so import-time loggers
    have somewhere to go, and again once settings.yaml is loaded. Only
    the second call caches bound loggers.

    Args:
        config: Loaded Config, or None for built-in defaults.
    """
    if config is not None:
        log_dir = config.log_dir
        root_level_name = config.logging_level.upper()
        subsystem_levels = config.logging_subsystem_levels
        max_bytes = config.logging_max_file_size_mb * 1024 * 1024
        backup_count = config.logging_backup_count
        cache_loggers = True
    else:
        log_dir = Path(__file__).parent.parent / "logs"
        root_level_name = "INFO"
        subsystem_levels = {}
        max_bytes = 10 * 1024 * 1024
        backup_count = 5
        cache_loggers = False

    root_level = getattr(logging, root_level_name, logging.INFO)

    write_files = True
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        write_files = False
        print(
            f"WARNING: Cannot create log directory {log_dir}: {exc}. "
            "Logging to the console only.",
            file=sys.stderr,
        )

    file_formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(colors=False),
        ],
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    root_logger.handlers.clear()
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(root_level)
    console_handler.setFormatter(
        logging.Formatter("%(asctime)s [%(levelname)s] %(message)s")
    )
    root_logger.addHandler(console_handler)

    pw_logger = logging.getLogger(LOGGER_PREFIX)
    pw_logger.setLevel(logging.DEBUG)
    pw_logger.handlers.clear()
    pw_logger.propagate = True
    if write_files:
        pw_logger.addHandler(_rotating_handler(
            log_dir / "promptwire.log", root_level, file_formatter, max_bytes, backup_count
        ))

    for subsystem in SUBSYSTEMS:
        sub_logger = logging.getLogger(f"{LOGGER_PREFIX}.{subsystem}")
        sub_level_name = subsystem_levels.get(subsystem, "").upper()
        sub_level = getattr(logging, sub_level_name, root_level) if sub_level_name else root_level
        sub_logger.setLevel(sub_level)
        sub_logger.handlers.clear()
        sub_logger.propagate = True
        if write_files:
            sub_logger.addHandler(_rotating_handler(
                log_dir / f"{subsystem}.log", sub_level, file_formatter, max_bytes, backup_count
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
        cache_logger_on_first_use=cache_loggers,
    )
