# visage/sessions.py
"""
In-memory session store. One session per browser tab; nothing survives a
restart.

Sessions expire: any session not touched for `idle_seconds` is closed,
and when `max_sessions` are held the least recently used one is closed
to make room.
"""

import asyncio
import time
import uuid
from typing import Any, Callable, Dict, List, Optional

from . import config
from .capture import CaptureProvider
from .gemini import GeminiClient
from .logger import console
from .metrics import ACTIVE_SESSIONS, SESSIONS_EVICTED
from .orchestrator import AnalysisOrchestrator


class SessionStore:
    def __init__(
        self,
        client: GeminiClient,
        camera_opener: Optional[Callable[[int], Any]] = None,
        idle_seconds: float = config.SESSION_IDLE_SECONDS,
        max_sessions: int = config.MAX_SESSIONS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.client = client
        self.camera_opener = camera_opener
        self.idle_seconds = idle_seconds
        self.max_sessions = max_sessions
        self._clock = clock
        self._sessions: Dict[str, AnalysisOrchestrator] = {}
        self._last_seen: Dict[str, float] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def _expired(self, session_id: str, now: float) -> bool:
        return now - self._last_seen[session_id] > self.idle_seconds

    async def create(self) -> str:
        await self.evict_idle()
        while self._sessions and len(self._sessions) >= self.max_sessions:
            oldest = min(self._last_seen, key=self._last_seen.get)
            await self._evict(oldest, "capacity")

        session_id = uuid.uuid4().hex
        self._sessions[session_id] = AnalysisOrchestrator(
            self.client,
            capture=CaptureProvider(opener=self.camera_opener),
            name=session_id[:8],
        )
        self._last_seen[session_id] = self._clock()
        ACTIVE_SESSIONS.inc()
        console.log(f"[event]Created session {session_id}[/event]")
        return session_id

    def get(self, session_id: str) -> Optional[AnalysisOrchestrator]:
        """Return the session and mark it used; expired sessions are gone."""
        session = self._sessions.get(session_id)
        if session is None:
            return None
        now = self._clock()
        if self._expired(session_id, now):
            return None
        self._last_seen[session_id] = now
        return session

    async def close(self, session_id: str) -> bool:
        session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        del self._last_seen[session_id]
        await session.aclose()
        ACTIVE_SESSIONS.dec()
        console.log(f"[event]Closed session {session_id}[/event]")
        return True

    async def _evict(self, session_id: str, reason: str) -> None:
        if await self.close(session_id):
            SESSIONS_EVICTED.labels(reason=reason).inc()
            console.log(f"[warn]Evicted session {session_id} ({reason})[/warn]")

    async def evict_idle(self) -> List[str]:
        now = self._clock()
        expired = [sid for sid in self._sessions if self._expired(sid, now)]
        for session_id in expired:
            await self._evict(session_id, "idle")
        return expired

    async def sweep(self, interval: float) -> None:
        """Close idle sessions every `interval` seconds until cancelled."""
        while True:
            await asyncio.sleep(interval)
            await self.evict_idle()

    async def close_all(self) -> None:
        for session_id in list(self._sessions):
            await self.close(session_id)
