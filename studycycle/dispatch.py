"""
Fire-and-forget side effects triggered by block and cycle completion.

Nothing in here may feed back into the player: registration and feedback are
advisory, so every failure is logged and dropped at this boundary.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from functools import partial
from typing import Awaitable, Callable, Deque, Dict, List, Optional, Protocol, Set, Tuple

import httpx

LOG = logging.getLogger(__name__)

CYCLE_COMPLETE_MESSAGE = "Cycle complete! Congratulations!"


class ActivityRegistrar(Protocol):
    async def register_activity(self, user_id: str) -> None: ...


class FeedbackChannel(Protocol):
    def notify(self, message: str, *, level: str = "success") -> None: ...


@dataclass(frozen=True, slots=True)
class FeedbackMessage:
    message: str
    level: str = "success"
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        return {
            "message": self.message,
            "level": self.level,
            "createdAt": self.created_at.isoformat(),
        }


class FeedbackLog:
    """Bounded in-memory feedback channel; each message is also logged."""

    def __init__(self, maxlen: int = 50) -> None:
        self._lock = threading.Lock()
        self._messages: Deque[FeedbackMessage] = deque(maxlen=max(1, int(maxlen)))

    def notify(self, message: str, *, level: str = "success") -> None:
        entry = FeedbackMessage(message=str(message), level=str(level or "info"))
        with self._lock:
            self._messages.append(entry)
        LOG.info("[%s] %s", entry.level, entry.message)

    def recent(self, limit: Optional[int] = None) -> List[FeedbackMessage]:
        with self._lock:
            messages = list(self._messages)
        if limit is not None:
            messages = messages[-max(0, int(limit)) :] if limit else []
        return messages

    def clear(self) -> None:
        with self._lock:
            self._messages.clear()


class StreakBook:
    """
    In-memory activity registrar keeping a daily streak per user.

    A first activity starts the streak at 1, a second activity on the same day
    changes nothing, an activity on the following day extends the streak and
    anything later resets it to 1.
    """

    def __init__(
        self,
        feedback: Optional[FeedbackChannel] = None,
        *,
        today: Optional[Callable[[], date]] = None,
    ) -> None:
        self.feedback = feedback
        self._today = today or date.today
        self._lock = threading.Lock()
        self._entries: Dict[str, Tuple[int, Optional[date]]] = {}

    def streak(self, user_id: str) -> Tuple[int, Optional[date]]:
        with self._lock:
            return self._entries.get(str(user_id), (0, None))

    async def register_activity(self, user_id: str) -> None:
        self.record(user_id)

    def record(self, user_id: str) -> int:
        if not user_id:
            return 0
        today = self._today()
        message: Optional[Tuple[str, str]] = None
        with self._lock:
            streak, last = self._entries.get(str(user_id), (0, None))
            if last is None:
                streak = 1
                message = ("Streak started!", "success")
            elif last == today:
                return streak
            elif last == today - timedelta(days=1):
                streak += 1
                message = (f"Keep it up! Streak: {streak} days!", "success")
            else:
                streak = 1
                message = ("Streak restarted. Keep the pace!", "info")
            self._entries[str(user_id)] = (streak, today)
        if message is not None and self.feedback is not None:
            self.feedback.notify(message[0], level=message[1])
        return streak


class HttpActivityRegistrar:
    """
    Register activity with a remote streak service over HTTP.
    """

    def __init__(
        self,
        base_url: str,
        *,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
    ) -> None:
        self.base_url = str(base_url).rstrip("/")
        self._client = client
        self._timeout = httpx.Timeout(timeout, connect=min(timeout, 5.0))

    async def register_activity(self, user_id: str) -> None:
        if not user_id:
            return
        url = f"{self.base_url}/activity"
        payload = {"user_id": str(user_id)}
        if self._client is not None:
            response = await self._client.post(url, json=payload)
            response.raise_for_status()
            return
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            response = await client.post(url, json=payload)
            response.raise_for_status()


SpawnCallable = Callable[[Awaitable[None]], None]


class SideEffectDispatcher:
    """
    Invoke completion hooks without ever blocking or failing the caller.
    """

    def __init__(
        self,
        activity: Optional[ActivityRegistrar] = None,
        feedback: Optional[FeedbackChannel] = None,
        *,
        spawn: Optional[SpawnCallable] = None,
    ) -> None:
        self.activity = activity
        self.feedback = feedback
        self._spawn = spawn
        self._tasks: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------ hooks

    def block_completed(self, user_id: Optional[str], subject_name: str, index: int) -> None:
        LOG.info("Block %s (%s) completed", index, subject_name)
        self._register(user_id)
        self._notify(f"{subject_name or 'Block'} complete!")

    def cycle_completed(self, user_id: Optional[str], subject_name: str, cycle_name: str) -> None:
        LOG.info("Cycle '%s' completed after %s", cycle_name, subject_name)
        self._register(user_id)
        self._notify(CYCLE_COMPLETE_MESSAGE)

    # ---------------------------------------------------------------- helpers

    def _register(self, user_id: Optional[str]) -> None:
        if not user_id or self.activity is None:
            return
        spawn = self._spawn
        if spawn is None:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                LOG.warning("No running event loop; skipping activity registration for %s.", user_id)
                return
            spawn = partial(self._spawn_task, loop)
        try:
            coroutine = self.activity.register_activity(user_id)
        except Exception:
            LOG.exception("Activity registration for %s failed to start.", user_id)
            return
        guarded = self._guard(coroutine, f"register_activity({user_id})")
        try:
            spawn(guarded)
        except Exception:
            guarded.close()
            LOG.exception("Could not schedule activity registration for %s.", user_id)

    def _notify(self, message: str) -> None:
        if self.feedback is None:
            return
        try:
            self.feedback.notify(message, level="success")
        except Exception:
            LOG.exception("Feedback delivery failed for %r.", message)

    async def _guard(self, awaitable: Awaitable[None], label: str) -> None:
        try:
            await awaitable
        except Exception:
            LOG.exception("Side effect %s failed.", label)

    def _spawn_task(self, loop: asyncio.AbstractEventLoop, coroutine: Awaitable[None]) -> None:
        task = loop.create_task(coroutine)  # type: ignore[arg-type]
        # keep a reference until the task finishes
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def drain(self) -> None:
        """Wait for in-flight side effects; used on shutdown."""

        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


__all__ = [
    "ActivityRegistrar",
    "CYCLE_COMPLETE_MESSAGE",
    "FeedbackChannel",
    "FeedbackLog",
    "FeedbackMessage",
    "HttpActivityRegistrar",
    "SideEffectDispatcher",
    "StreakBook",
]
