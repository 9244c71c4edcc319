"""Session state machine and registry."""

from .models import (
    OriginKind,
    Session,
    SessionConfig,
    SessionEvent,
    SessionEventKind,
    SessionOrigin,
    SessionState,
    Turn,
)
from .registry import SessionRegistry

__all__ = [
    "OriginKind",
    "Session",
    "SessionConfig",
    "SessionEvent",
    "SessionEventKind",
    "SessionOrigin",
    "SessionRegistry",
    "SessionState",
    "Turn",
]
