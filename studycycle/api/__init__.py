"""HTTP control surface for the study cycle service."""

from .server import create_app
from .state import AppState

__all__ = ["AppState", "create_app"]
