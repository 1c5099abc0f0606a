"""
Error taxonomy shared by the composition editor, repository and player.
"""

from __future__ import annotations


class StudyCycleError(RuntimeError):
    """Base class for study cycle related errors."""


class ValidationError(StudyCycleError):
    """Raised when a cycle draft cannot be saved as-is."""


class DuplicateSubjectError(ValidationError):
    """Raised when a subject is selected twice within one cycle."""


class PersistenceError(StudyCycleError):
    """Raised when the cycle store fails to create, update, delete or list."""


class CycleNotFound(PersistenceError):
    """Raised when an operation targets an unknown cycle id."""


class PlaybackError(StudyCycleError):
    """Base class for player errors."""


class InvalidTransition(PlaybackError):
    """Raised when a transport command is disabled in the current phase."""


class InvalidCommand(PlaybackError):
    """Raised when an unsupported or malformed command is requested."""
