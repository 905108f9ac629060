"""Security module for promptwire.

Provides phone/UUID-based authorization, per-user in-memory rate limiting,
input sanitization and phone number masking for log privacy.
"""

import re
import time
import unicodedata
from collections import defaultdict

import structlog

from .config import get_config

logger = structlog.get_logger("promptwire.security")

# Simple in-memory rate limiter
_rate_limit_data: dict = defaultdict(list)
_rate_limit_last_cleanup: float = 0.0
RATE_LIMIT_WINDOW = 60  # seconds
RATE_LIMIT_MAX_REQUESTS = 30  # max requests per window
_RATE_LIMIT_CLEANUP_INTERVAL = 300  # Prune stale entries every 5 minutes

MAX_INPUT_LENGTH = 10000
_BIDI_CHARS = frozenset('\u202a\u202b\u202c\u202d\u202e\u2066\u2067\u2068\u2069')


def mask(sender: str) -> str:
    """Mask a phone number or UUID down to its last four characters."""
    return "..." + sender[-4:]


def check_rate_limit(sender: str) -> bool:
    """Check if a sender is within rate limits.

    Returns True if within limits, False if rate limited.
    """
    global _rate_limit_last_cleanup
    now = time.time()
    window_start = now - RATE_LIMIT_WINDOW

    _rate_limit_data[sender] = [
        ts for ts in _rate_limit_data[sender] if ts > window_start
    ]

    # Periodically prune senders with no recent activity
    if now - _rate_limit_last_cleanup > _RATE_LIMIT_CLEANUP_INTERVAL:
        _rate_limit_last_cleanup = now
        stale_keys = [
            key for key, timestamps in _rate_limit_data.items()
            if not timestamps or timestamps[-1] < window_start
        ]
        for key in stale_keys:
            del _rate_limit_data[key]

    if len(_rate_limit_data[sender]) >= RATE_LIMIT_MAX_REQUESTS:
        logger.warning(
            "rate_limit_exceeded",
            sender=mask(sender),
            requests_in_window=len(_rate_limit_data[sender]),
        )
        return False

    _rate_limit_data[sender].append(now)
    return True


def _reset_rate_limits():
    """Reset rate limit state (for testing)."""
    global _rate_limit_last_cleanup
    _rate_limit_data.clear()
    _rate_limit_last_cleanup = 0.0


_UUID_PATTERN = re.compile(
    r'^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$',
    re.IGNORECASE,
)


def is_uuid(value: str) -> bool:
    """Check if a string is a Signal UUID."""
    return bool(_UUID_PATTERN.match(value))


def normalize_phone_number(phone: str) -> str:
    """Normalize a phone number to E.164 format."""
    if phone.startswith("+"):
        return "+" + re.sub(r"[^\d]", "", phone[1:])
    return "+" + re.sub(r"[^\d]", "", phone)


def is_authorized(sender: str) -> bool:
    """Check if a sender (phone number or UUID) is authorized to use the bot."""
    config = get_config()
    allowed = config.allowed_numbers

    # Direct match first: UUIDs and already-normalized numbers
    if sender in allowed:
        return True

    if not is_uuid(sender):
        normalized = normalize_phone_number(sender)
        normalized_allowed = [normalize_phone_number(n) for n in allowed if not is_uuid(n)]
        if normalized in normalized_allowed:
            return True

    logger.warning("unauthorized_access_attempt", sender=mask(sender))
    return False


def sanitize_input(text: str) -> str:
    """Sanitize user input: strip control characters and enforce length limit."""
    # Keep newline, tab and carriage return
    text = ''.join(
        ch for ch in text
        if ch in ('\n', '\r', '\t') or not unicodedata.category(ch).startswith('C')
    )
    text = ''.join(ch for ch in text if ch not in _BIDI_CHARS)
    if len(text) > MAX_INPUT_LENGTH:
        text = text[:MAX_INPUT_LENGTH]
    return text
