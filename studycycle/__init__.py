"""
Study cycle package.

A study cycle is a named, ordered list of timed subject blocks. This package
hosts the composition editor that builds cycles, the drift-free player that
counts them down, and a small FastAPI control surface over both.
"""

from __future__ import annotations

from .config import StudyCycleConfig
from .errors import (
    InvalidCommand,
    InvalidTransition,
    PersistenceError,
    StudyCycleError,
    ValidationError,
)

__all__ = [
    "InvalidCommand",
    "InvalidTransition",
    "PersistenceError",
    "StudyCycleConfig",
    "StudyCycleError",
    "ValidationError",
]
