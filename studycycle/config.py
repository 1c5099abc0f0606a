"""
Runtime configuration loaded from YAML profiles.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

import yaml

from .models import Subject
from .repository import SubjectCatalog

CONFIG_DIR = Path(__file__).resolve().parent / "configs"
PROFILES_PATH = CONFIG_DIR / "profiles.yaml"

LOG = logging.getLogger(__name__)


def load_profiles(path: Optional[Path] = None) -> dict:
    target = Path(path) if path is not None else PROFILES_PATH
    try:
        with target.open("r", encoding="utf-8") as handle:
            profiles = yaml.safe_load(handle) or {}
    except FileNotFoundError:
        LOG.warning("Profiles file %s not found; using defaults.", target)
        profiles = {}
    if not isinstance(profiles, dict):
        raise ValueError(f"{target} must contain a mapping of profiles")
    return profiles


@dataclass
class StudyCycleConfig:
    """Top level service configuration."""

    profile: str = "default"
    tick_interval: float = 0.25
    advance_delay: float = 1.5
    activity_url: Optional[str] = None
    subjects: List[Subject] = field(default_factory=list)

    @classmethod
    def from_profile(cls, name: str = "default", path: Optional[Path] = None) -> "StudyCycleConfig":
        profiles = load_profiles(path)
        entry = profiles.get(name)
        if entry is None:
            LOG.warning("Unknown profile '%s'; using defaults.", name)
            return cls(profile=name)
        entry = entry or {}
        catalog = SubjectCatalog.from_dicts(entry.get("subjects") or [])
        return cls(
            profile=name,
            tick_interval=max(0.01, float(entry.get("tick_interval", 0.25))),
            advance_delay=max(0.0, float(entry.get("advance_delay", 1.5))),
            activity_url=entry.get("activity_url") or None,
            subjects=list(catalog),
        )

    def catalog(self) -> SubjectCatalog:
        return SubjectCatalog(self.subjects)
