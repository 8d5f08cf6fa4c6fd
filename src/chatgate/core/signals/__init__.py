"""Scheduler start/stop signalling and the typing indicator."""

from .activity import ActivityIndicator, TypingToggle
from .bus import SignalBus, Signaler

__all__ = ["ActivityIndicator", "SignalBus", "Signaler", "TypingToggle"]
