"""
Playback engine for study cycles.

The engine walks a stored cycle block by block through a
:class:`~studycycle.clock.CountdownClock`. It never mutates the cycle; all
playback progress lives in an ephemeral :class:`PlaybackState` that is
discarded when the player closes.
"""

from __future__ import annotations

import logging
import operator
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, FrozenSet, List, Optional, Set, Tuple

from .clock import AsyncioScheduler, CountdownClock, MonotonicCallable, Scheduler, TimerHandle
from .dispatch import SideEffectDispatcher
from .errors import InvalidCommand, InvalidTransition
from .models import Block, Cycle, format_clock
from .repository import SubjectCatalog

LOG = logging.getLogger(__name__)

ADVANCE_DELAY_SECONDS = 1.5
UPCOMING_LIMIT = 3


class Phase(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    BLOCK_COMPLETED = "block_completed"
    CYCLE_COMPLETED = "cycle_completed"


@dataclass
class PlaybackState:
    """
    Mutable per-session playback state, owned by one engine.
    """

    cycle_id: str
    current_index: int = 0
    remaining_seconds: int = 0
    phase: Phase = Phase.IDLE
    completed_indices: Set[int] = field(default_factory=set)
    deadline_us: Optional[int] = None

    @property
    def running(self) -> bool:
        return self.phase is Phase.RUNNING

    @property
    def paused(self) -> bool:
        return self.phase is Phase.PAUSED


@dataclass(frozen=True, slots=True)
class PlaybackSnapshot:
    """
    Immutable view of the player after a committed change.
    """

    rev: int
    cycle_id: str
    phase: Phase
    current_index: int
    remaining_seconds: int
    total_seconds: int
    block_count: int
    completed_indices: FrozenSet[int]
    subject_id: str
    upcoming: Tuple[int, ...] = ()
    deadline_us: Optional[int] = None

    @property
    def running(self) -> bool:
        return self.phase is Phase.RUNNING

    @property
    def paused(self) -> bool:
        return self.phase is Phase.PAUSED

    @property
    def all_done(self) -> bool:
        return len(self.completed_indices) == self.block_count

    @property
    def transport_enabled(self) -> bool:
        return self.phase is not Phase.CYCLE_COMPLETED and not self.all_done

    @property
    def progress_percent(self) -> int:
        if self.total_seconds <= 0:
            return 0
        elapsed = max(0, self.total_seconds - self.remaining_seconds)
        # round half up
        return (elapsed * 200 + self.total_seconds) // (2 * self.total_seconds)

    @property
    def formatted_time(self) -> str:
        return format_clock(self.remaining_seconds)

    @property
    def status_label(self) -> str:
        if self.phase is Phase.RUNNING:
            return "Studying..."
        if self.phase is Phase.PAUSED:
            return "Paused"
        if self.all_done:
            return "Done!"
        if self.phase is Phase.CYCLE_COMPLETED:
            return "Cycle complete"
        if self.phase is Phase.BLOCK_COMPLETED:
            return "Block complete"
        return "Ready"

    def to_dict(self) -> dict:
        return {
            "rev": int(self.rev),
            "cycleId": self.cycle_id,
            "phase": self.phase.value,
            "running": self.running,
            "paused": self.paused,
            "currentIndex": int(self.current_index),
            "subjectId": self.subject_id,
            "remainingSeconds": int(self.remaining_seconds),
            "totalSeconds": int(self.total_seconds),
            "formattedTime": self.formatted_time,
            "progressPercent": self.progress_percent,
            "completedIndices": sorted(self.completed_indices),
            "allDone": self.all_done,
            "transportEnabled": self.transport_enabled,
            "statusLabel": self.status_label,
            "upcoming": list(self.upcoming),
        }


class PlaybackEngine:
    """
    State machine sequencing a cycle's blocks.

    User commands are applied synchronously: every command disarms the clock
    before returning, so a tick queued before the command cannot act on the
    new block. Block completion hands off to the dispatcher after the state
    change is committed, and dispatcher failures never reach the caller.
    """

    def __init__(
        self,
        cycle: Cycle,
        *,
        dispatcher: Optional[SideEffectDispatcher] = None,
        user_id: Optional[str] = None,
        subjects: Optional[SubjectCatalog] = None,
        monotonic: Optional[MonotonicCallable] = None,
        scheduler: Optional[Scheduler] = None,
        tick_interval: float = 0.25,
        advance_delay: float = ADVANCE_DELAY_SECONDS,
    ) -> None:
        if not cycle.blocks:
            raise InvalidCommand(f"cycle '{cycle.id}' has no blocks to play")
        self.cycle = cycle
        self.blocks: Tuple[Block, ...] = tuple(sorted(cycle.blocks, key=lambda block: block.order))
        self.dispatcher = dispatcher
        self.user_id = user_id
        self.subjects = subjects
        self.advance_delay = max(0.0, float(advance_delay))

        self._lock = threading.RLock()
        self._scheduler: Scheduler = scheduler if scheduler is not None else AsyncioScheduler()
        self._clock = CountdownClock(
            on_tick=self._handle_tick,
            on_expire=self._handle_expire,
            tick_interval=tick_interval,
            monotonic=monotonic,
            scheduler=self._scheduler,
        )
        self._state = PlaybackState(
            cycle_id=cycle.id,
            remaining_seconds=self.blocks[0].allocated_seconds,
        )
        self._rev = 0
        self._closed = False
        self._pending_advance: Optional[TimerHandle] = None
        self._advance_token = 0

        self._observer_counter = 0
        self._observers: Dict[int, Callable[[PlaybackSnapshot], None]] = {}

    # ------------------------------------------------------------------ helpers

    @property
    def state(self) -> PlaybackState:
        return self._state

    @property
    def clock(self) -> CountdownClock:
        return self._clock

    @property
    def closed(self) -> bool:
        return self._closed

    def _upcoming_locked(self) -> Tuple[int, ...]:
        count = len(self.blocks)
        current = self._state.current_index
        upcoming: List[int] = []
        for step in range(1, UPCOMING_LIMIT + 1):
            index = (current + step) % count
            if index == current or index in upcoming:
                break
            upcoming.append(index)
        return tuple(upcoming)

    def _snapshot_locked(self) -> PlaybackSnapshot:
        state = self._state
        block = self.blocks[state.current_index]
        return PlaybackSnapshot(
            rev=self._rev,
            cycle_id=state.cycle_id,
            phase=state.phase,
            current_index=state.current_index,
            remaining_seconds=state.remaining_seconds,
            total_seconds=block.allocated_seconds,
            block_count=len(self.blocks),
            completed_indices=frozenset(state.completed_indices),
            subject_id=block.subject_id,
            upcoming=self._upcoming_locked(),
            deadline_us=state.deadline_us,
        )

    def _commit_locked(self) -> PlaybackSnapshot:
        self._rev += 1
        return self._snapshot_locked()

    def _notify(self, snapshot: PlaybackSnapshot) -> None:
        with self._lock:
            observers = dict(self._observers)
        for token, callback in observers.items():
            try:
                callback(snapshot)
            except Exception:  # pragma: no cover - observer failures should not stop playback
                LOG.exception("Player observer %s failed.", token)

    def _ensure_open(self) -> None:
        if self._closed:
            raise InvalidTransition("player is closed")

    def _ensure_transport(self, command: str) -> None:
        snapshot = self._snapshot_locked()
        if not snapshot.transport_enabled:
            raise InvalidTransition(f"{command} is disabled once the cycle is complete")

    def _disarm_locked(self) -> None:
        self._clock.disarm()
        self._state.deadline_us = None

    def _cancel_advance_locked(self) -> None:
        self._advance_token += 1
        handle, self._pending_advance = self._pending_advance, None
        if handle is not None:
            handle.cancel()

    def _load_block_locked(self, index: int) -> None:
        self._state.current_index = index
        self._state.remaining_seconds = self.blocks[index].allocated_seconds
        self._state.phase = Phase.IDLE
        self._state.deadline_us = None

    def _complete_current_locked(self) -> Tuple[int, bool]:
        """Mark the current block done; returns ``(index, cycle_finished)``."""

        index = self._state.current_index
        self._state.completed_indices.add(index)
        finished = index >= len(self.blocks) - 1
        if finished:
            self._state.phase = Phase.CYCLE_COMPLETED
        return index, finished

    def _subject_name(self, index: int) -> str:
        subject_id = self.blocks[index].subject_id
        if self.subjects is None:
            return subject_id
        return self.subjects.name_of(subject_id, default=subject_id)

    def _dispatch_completion(self, index: int, finished: bool) -> None:
        if self.dispatcher is None:
            return
        subject_name = self._subject_name(index)
        try:
            if finished:
                self.dispatcher.cycle_completed(self.user_id, subject_name, self.cycle.name)
            else:
                self.dispatcher.block_completed(self.user_id, subject_name, index)
        except Exception:
            LOG.exception("Completion side effects for block %s failed.", index)

    # ------------------------------------------------------------ clock events

    def _handle_tick(self, remaining: int) -> None:
        with self._lock:
            if self._state.phase is not Phase.RUNNING:
                return
            if remaining == self._state.remaining_seconds:
                return
            self._state.remaining_seconds = remaining
            snapshot = self._commit_locked()
        self._notify(snapshot)

    def _handle_expire(self) -> None:
        with self._lock:
            if self._state.phase is not Phase.RUNNING:
                LOG.debug("Ignoring expiry outside of a running block.")
                return
            self._disarm_locked()
            self._state.remaining_seconds = 0
            index, finished = self._complete_current_locked()
            if not finished:
                self._state.phase = Phase.BLOCK_COMPLETED
                self._schedule_advance_locked()
            snapshot = self._commit_locked()
        LOG.info("Block %s of cycle %s expired", index, self.cycle.id)
        self._notify(snapshot)
        self._dispatch_completion(index, finished)

    def _schedule_advance_locked(self) -> None:
        self._cancel_advance_locked()
        token = self._advance_token
        self._pending_advance = self._scheduler.call_later(
            self.advance_delay, lambda: self._finish_advance(token)
        )

    def _finish_advance(self, token: int) -> None:
        with self._lock:
            if token != self._advance_token or self._closed:
                return
            if self._state.phase is not Phase.BLOCK_COMPLETED:
                return
            self._pending_advance = None
            self._load_block_locked(self._state.current_index + 1)
            snapshot = self._commit_locked()
        self._notify(snapshot)

    # ------------------------------------------------------------------ public API

    def subscribe(self, callback: Callable[[PlaybackSnapshot], None]) -> int:
        if not callable(callback):
            raise TypeError("callback must be callable")
        with self._lock:
            self._observer_counter += 1
            token = self._observer_counter
            self._observers[token] = callback
            snapshot = self._snapshot_locked()
        try:
            callback(snapshot)
        except Exception:  # pragma: no cover - defensive
            LOG.exception("Player observer %s failed during initial snapshot.", token)
        return token

    def unsubscribe(self, token: int) -> None:
        with self._lock:
            self._observers.pop(token, None)

    def snapshot(self) -> PlaybackSnapshot:
        with self._lock:
            return self._snapshot_locked()

    def start(self) -> PlaybackSnapshot:
        with self._lock:
            self._ensure_open()
            if self._state.phase is Phase.RUNNING:
                return self._snapshot_locked()
            self._ensure_transport("start")
            if self._state.phase is Phase.BLOCK_COMPLETED:
                raise InvalidTransition("the next block is still loading")
            self._state.phase = Phase.RUNNING
            self._clock.arm(self._state.remaining_seconds)
            self._state.deadline_us = self._clock.deadline_us
            snapshot = self._commit_locked()
        LOG.debug("Started block %s with %ss left", snapshot.current_index, snapshot.remaining_seconds)
        self._notify(snapshot)
        return snapshot

    def pause(self) -> PlaybackSnapshot:
        with self._lock:
            self._ensure_open()
            if self._state.phase is not Phase.RUNNING:
                return self._snapshot_locked()
            self._disarm_locked()
            self._state.remaining_seconds = self._clock.remaining
            self._state.phase = Phase.PAUSED
            snapshot = self._commit_locked()
        self._notify(snapshot)
        return snapshot

    def toggle(self) -> PlaybackSnapshot:
        with self._lock:
            running = self._state.phase is Phase.RUNNING
        return self.pause() if running else self.start()

    def skip(self) -> PlaybackSnapshot:
        with self._lock:
            self._ensure_open()
            self._ensure_transport("skip")
            self._disarm_locked()
            self._cancel_advance_locked()
            index = self._state.current_index
            # a block in its advance delay was already completed on expiry
            pending_advance = self._state.phase is Phase.BLOCK_COMPLETED
            finished = False
            if pending_advance:
                self._load_block_locked(index + 1)
            else:
                index, finished = self._complete_current_locked()
                if not finished:
                    self._load_block_locked(index + 1)
            snapshot = self._commit_locked()
        LOG.info("Skipped block %s of cycle %s", index, self.cycle.id)
        self._notify(snapshot)
        if not pending_advance:
            self._dispatch_completion(index, finished)
        return snapshot

    def restart(self) -> PlaybackSnapshot:
        with self._lock:
            self._ensure_open()
            self._ensure_transport("restart")
            self._disarm_locked()
            self._cancel_advance_locked()
            self._load_block_locked(self._state.current_index)
            snapshot = self._commit_locked()
        self._notify(snapshot)
        return snapshot

    def go_to(self, index: int) -> PlaybackSnapshot:
        if isinstance(index, bool):
            raise InvalidCommand(f"invalid block index {index!r}")
        try:
            target = operator.index(index)
        except TypeError:
            raise InvalidCommand(f"invalid block index {index!r}") from None
        if not 0 <= target < len(self.blocks):
            raise InvalidCommand(f"block index {index!r} out of range")
        with self._lock:
            self._ensure_open()
            self._disarm_locked()
            self._cancel_advance_locked()
            self._load_block_locked(target)
            snapshot = self._commit_locked()
        self._notify(snapshot)
        return snapshot

    def close(self) -> PlaybackSnapshot:
        with self._lock:
            self._disarm_locked()
            self._cancel_advance_locked()
            if self._state.phase is Phase.RUNNING:
                self._state.phase = Phase.PAUSED
            self._closed = True
            snapshot = self._commit_locked()
        self._notify(snapshot)
        return snapshot

    def apply(self, op: str, *, index: Optional[int] = None) -> PlaybackSnapshot:
        command = str(op or "").strip().lower()
        if command in {"start", "play", "resume"}:
            return self.start()
        if command == "pause":
            return self.pause()
        if command == "toggle":
            return self.toggle()
        if command in {"skip", "next"}:
            return self.skip()
        if command in {"restart", "reset"}:
            return self.restart()
        if command in {"goto", "go_to", "seek"}:
            if index is None:
                raise InvalidCommand("goto requires index")
            return self.go_to(index)
        raise InvalidCommand(f"Unsupported player op '{op}'")


__all__ = [
    "ADVANCE_DELAY_SECONDS",
    "Phase",
    "PlaybackEngine",
    "PlaybackSnapshot",
    "PlaybackState",
]
