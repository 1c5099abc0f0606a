"""
Shared service state container.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, TypeVar

from ..clock import MonotonicCallable, Scheduler
from ..composer import CompositionEditor
from ..config import StudyCycleConfig
from ..dispatch import ActivityRegistrar, FeedbackLog, HttpActivityRegistrar, SideEffectDispatcher, StreakBook
from ..errors import PersistenceError, StudyCycleError
from ..models import Cycle
from ..player import PlaybackEngine
from ..repository import CycleRepository, InMemoryCycleRepository, SubjectCatalog

LOG = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class AppState:
    """
    Aggregated state shared by the API handlers.

    Player sessions are keyed by cycle id; opening a cycle that already has a
    session closes the old one first.
    """

    config: StudyCycleConfig = field(default_factory=StudyCycleConfig)
    catalog: Optional[SubjectCatalog] = None
    repository: CycleRepository = field(default_factory=InMemoryCycleRepository)
    feedback: FeedbackLog = field(default_factory=FeedbackLog)
    activity: Optional[ActivityRegistrar] = None
    dispatcher: Optional[SideEffectDispatcher] = None
    scheduler: Optional[Scheduler] = None
    monotonic: Optional[MonotonicCallable] = None
    sessions: Dict[str, PlaybackEngine] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self._lock = threading.RLock()
        if self.catalog is None:
            self.catalog = self.config.catalog()
        if self.activity is None:
            if self.config.activity_url:
                self.activity = HttpActivityRegistrar(self.config.activity_url)
            else:
                self.activity = StreakBook(feedback=self.feedback)
        if self.dispatcher is None:
            self.dispatcher = SideEffectDispatcher(activity=self.activity, feedback=self.feedback)

    # ------------------------------------------------------------------ cycles

    def _storage(self, action: str, call: Callable[..., T], *args: object) -> T:
        try:
            return call(*args)
        except StudyCycleError:
            raise
        except Exception as exc:
            LOG.warning("Cycle store failed to %s: %s", action, exc)
            raise PersistenceError(f"Could not {action}: {exc}") from exc

    def editor(self, *, owner_id: Optional[str] = None, cycle_id: Optional[str] = None) -> CompositionEditor:
        cycle = self._storage("load cycle", self.repository.get, cycle_id) if cycle_id is not None else None
        return CompositionEditor(self.catalog, self.repository, owner_id=owner_id, cycle=cycle)

    def create_cycle(self, owner_id: str, name: str, blocks: Sequence[object]) -> Cycle:
        return self.editor(owner_id=owner_id).save(name, blocks)

    def update_cycle(self, cycle_id: str, name: str, blocks: Sequence[object]) -> Cycle:
        cycle = self.editor(cycle_id=cycle_id).save(name, blocks)
        self.close_player(cycle_id)
        return cycle

    def delete_cycle(self, cycle_id: str) -> None:
        self._storage("delete cycle", self.repository.delete, cycle_id)
        self.close_player(cycle_id)

    def set_cycle_active(self, cycle_id: str, active: bool) -> Cycle:
        self._storage("update cycle", self.repository.set_active, cycle_id, bool(active))
        return self._storage("load cycle", self.repository.get, cycle_id)

    def list_cycles(self, owner_id: str) -> List[Cycle]:
        return self._storage("list cycles", self.repository.list, owner_id)

    # ----------------------------------------------------------------- players

    def open_player(self, cycle_id: str, *, user_id: Optional[str] = None) -> PlaybackEngine:
        cycle = self._storage("load cycle", self.repository.get, cycle_id)
        engine = PlaybackEngine(
            cycle,
            dispatcher=self.dispatcher,
            user_id=user_id or cycle.owner_id,
            subjects=self.catalog,
            monotonic=self.monotonic,
            scheduler=self.scheduler,
            tick_interval=self.config.tick_interval,
            advance_delay=self.config.advance_delay,
        )
        with self._lock:
            previous = self.sessions.pop(cycle_id, None)
            self.sessions[cycle_id] = engine
        if previous is not None:
            previous.close()
        LOG.info("Opened player for cycle %s", cycle_id)
        return engine

    def player(self, cycle_id: str) -> PlaybackEngine:
        with self._lock:
            engine = self.sessions.get(cycle_id)
        if engine is None:
            raise KeyError(cycle_id)
        return engine

    def close_player(self, cycle_id: str) -> bool:
        with self._lock:
            engine = self.sessions.pop(cycle_id, None)
        if engine is None:
            return False
        engine.close()
        LOG.info("Closed player for cycle %s", cycle_id)
        return True

    def close_all(self) -> None:
        with self._lock:
            cycle_ids = list(self.sessions)
        for cycle_id in cycle_ids:
            self.close_player(cycle_id)
