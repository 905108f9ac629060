"""Chat transports for the prompt engine."""

from .base import BaseTransport
from .events import EventHub
from .signal import SignalTransport, parse_envelope

__all__ = [
    "BaseTransport",
    "EventHub",
    "SignalTransport",
    "parse_envelope",
]
