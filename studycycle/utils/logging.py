"""
Logging helpers for the study cycle service.

The level comes from the caller, then ``STUDYCYCLE_LOG_LEVEL``, then INFO.
It is applied to the ``studycycle`` logger even when the host application
already owns the root handlers.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Optional, Union

ENV_LEVEL_VAR = "STUDYCYCLE_LOG_LEVEL"
PACKAGE_LOGGER = "studycycle"
DEFAULT_FORMAT = "[%(asctime)s] %(levelname)-8s %(name)s: %(message)s"


def resolve_level(level: Union[int, str, None] = None) -> int:
    """
    Turn a numeric or named level into a logging level, falling back to the
    environment and then INFO. Unknown names fall back to INFO.
    """

    if level is None:
        level = os.environ.get(ENV_LEVEL_VAR) or logging.INFO
    if isinstance(level, int):
        return level
    text = str(level).strip()
    if text.isdigit():
        return int(text)
    resolved = logging.getLevelName(text.upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def configure_logging(level: Union[int, str, None] = None, format: Optional[str] = None) -> int:
    resolved = resolve_level(level)
    logging.getLogger(PACKAGE_LOGGER).setLevel(resolved)

    if logging.getLogger().handlers:
        # Respect any user provided configuration.
        return resolved

    logging.basicConfig(
        level=resolved,
        format=format or DEFAULT_FORMAT,
        handlers=[logging.StreamHandler(sys.stdout)],
    )
    return resolved
