"""Utility helpers for the study cycle service."""

from .logging import configure_logging

__all__ = ["configure_logging"]
