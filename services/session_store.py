"""
Session store: session id -> ConversationState, with per-session serialization.

Different sessions never block each other; two requests for the same session
run one after the other for as long as they hold `session()`.
"""

from __future__ import annotations

import asyncio
import threading
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from datetime import date
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional, Tuple
from zoneinfo import ZoneInfo

from config import DEFAULT_TZ, logger
from models.state import ConversationState, MergeReport, SlotSource


class SessionStore(ABC):
    """
    Interface the pipeline depends on, so the in-memory map can be swapped for
    a distributed cache without touching callers.

    Entries are never deleted here; expiry is an external policy.
    """

    @abstractmethod
    async def get(self, session_id: str) -> ConversationState:
        """Return the state for session_id, creating an empty one if absent."""

    @abstractmethod
    async def peek(self, session_id: str) -> Optional[ConversationState]:
        """Return the state if it exists, without creating it."""

    @abstractmethod
    def session(self, session_id: str):
        """Async context manager yielding the state under the session's exclusive lock."""

    @abstractmethod
    async def list_states(self) -> List[ConversationState]:
        ...

    async def merge(
        self,
        session_id: str,
        partial: Mapping[str, Any],
        source: SlotSource,
        origin: Optional[int] = None,
        correction: bool = False,
        function_name: Optional[str] = None,
    ) -> Tuple[ConversationState, MergeReport]:
        """
        Locked read-merge-write. Do not call while already inside `session()`
        for the same id (the lock is not re-entrant); use state.merge there.
        """
        async with self.session(session_id) as state:
            report = state.merge(partial, source, origin=origin, correction=correction, function_name=function_name)
            state.refresh_stage()
            return state, report

    async def list_by_date(self, day: date) -> List[ConversationState]:
        """Sessions created on `day` in the clinic's timezone, newest first."""
        tz = ZoneInfo(DEFAULT_TZ)
        states = [s for s in await self.list_states() if s.created_at.astimezone(tz).date() == day]
        return sorted(states, key=lambda s: s.created_at, reverse=True)


class InMemorySessionStore(SessionStore):
    """
    Process-local store. One asyncio.Lock per session id; the lock map itself
    is guarded by a threading lock so lock creation never races.
    """

    def __init__(self):
        self._states: Dict[str, ConversationState] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._guard = threading.Lock()

    def _get_or_create(self, session_id: str) -> ConversationState:
        with self._guard:
            state = self._states.get(session_id)
            if state is None:
                state = ConversationState.new(session_id)
                self._states[session_id] = state
                logger.info(f"[SESSION] 🆕 Created state for {session_id} (channel={state.channel.value})")
            return state

    def _lock_for(self, session_id: str) -> asyncio.Lock:
        with self._guard:
            lock = self._locks.get(session_id)
            if lock is None:
                lock = asyncio.Lock()
                self._locks[session_id] = lock
            return lock

    async def get(self, session_id: str) -> ConversationState:
        if not session_id:
            raise ValueError("session_id is required")
        return self._get_or_create(session_id)

    async def peek(self, session_id: str) -> Optional[ConversationState]:
        with self._guard:
            return self._states.get(session_id)

    @asynccontextmanager
    async def session(self, session_id: str) -> AsyncIterator[ConversationState]:
        if not session_id:
            raise ValueError("session_id is required")
        lock = self._lock_for(session_id)
        async with lock:
            yield self._get_or_create(session_id)

    async def list_states(self) -> List[ConversationState]:
        with self._guard:
            return list(self._states.values())

    def __len__(self) -> int:
        with self._guard:
            return len(self._states)
