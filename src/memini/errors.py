"""Error taxonomy shared by the orchestration core."""

from __future__ import annotations


class MeminiError(RuntimeError):
    """Base class for orchestration errors."""


class AddressingError(MeminiError):
    """Raised when a command targets a session, recipe, or group that cannot accept it."""


class RecipeValidationError(MeminiError):
    """Raised when a recipe definition or request is rejected."""


class TransitionError(MeminiError):
    """Raised when a session is asked to make an illegal state transition."""


__all__ = [
    "AddressingError",
    "MeminiError",
    "RecipeValidationError",
    "TransitionError",
]
