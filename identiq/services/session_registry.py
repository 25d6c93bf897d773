"""Session registry: the only shared mutable state in identiq.

Each session id maps to an isolated SessionState holding:
- Person records (identity and attribute lists, i.e. the token store)
- Conversation memory (sanitized turn window)
- Turn counter and access bookkeeping

Concurrency:
- One registry-level RLock guards the id -> state mapping. It is held only
  for lookups, inserts and pops, never while waiting on a session.
- Each session has its own Lock. session() holds it for one mutation, with a
  bounded wait that raises SessionBusyError, so different sessions never
  block each other and a stuck caller cannot wedge a session.

Memory management:
- LRU eviction once the registry exceeds max_sessions
- Optional idle-timeout eviction via cleanup_idle()
- Sessions being written are never evicted
"""

import logging
import re
import secrets
import threading
import time
from collections import OrderedDict
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional

from ..constants import (
    DEFAULT_HISTORY_WINDOW,
    DEFAULT_MAX_SESSIONS,
    SCOPE_CONVERSATION,
    SESSION_ID_RANDOM_BYTES,
    SESSION_LOCK_TIMEOUT,
    SESSION_SCOPES,
)
from ..exceptions import SessionBusyError
from ..logging_utils import get_audit_logger
from ..pipeline.conversation_memory import ConversationMemory
from ..types import PersonRecord

logger = logging.getLogger(__name__)

__all__ = [
    "SessionState",
    "SessionLookup",
    "SessionRegistry",
    "generate_session_id",
    "is_scoped_session_id",
    "is_legacy_session_id",
]

_SCOPED_ID = re.compile(r"^([a-z]+)_(\d+)_([0-9a-f]+)$")
_LEGACY_ID = re.compile(r"^\d+_\d+$")


def generate_session_id(scope: str = SCOPE_CONVERSATION) -> str:
    """New id of the form <scope>_<timestamp-ms>_<random-hex>."""
    if scope not in SESSION_SCOPES:
        raise ValueError(f"Unknown session scope {scope!r}")
    timestamp_ms = int(time.time() * 1000)
    return f"{scope}_{timestamp_ms}_{secrets.token_hex(SESSION_ID_RANDOM_BYTES)}"


def is_scoped_session_id(session_id: str) -> bool:
    """True for ids produced by generate_session_id()."""
    match = _SCOPED_ID.match(session_id or "")
    return match is not None and match.group(1) in SESSION_SCOPES


def is_legacy_session_id(session_id: str) -> bool:
    """True for ids of the older <timestamp>_<random> scheme."""
    return _LEGACY_ID.match(session_id or "") is not None


@dataclass
class SessionState:
    """
    State of one conversation.

    Mutate only while holding the session lock (SessionRegistry.session()).
    """
    session_id: str
    scope: str
    memory: ConversationMemory
    created_at: float
    last_accessed: float
    persons: Dict[int, PersonRecord] = field(default_factory=dict)
    turn_counter: int = 0
    access_count: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    @property
    def next_person_id(self) -> int:
        """Ids are dense from 1 and persons are never removed individually."""
        return len(self.persons) + 1

    @property
    def is_locked(self) -> bool:
        return self._lock.locked()

    def clear(self) -> None:
        """Drop every person record and all history."""
        self.persons.clear()
        self.memory.clear()
        self.turn_counter = 0


@dataclass
class SessionLookup:
    """Outcome of resolving a session id."""
    state: SessionState
    created: bool
    requested_id: Optional[str] = None

    @property
    def session_id(self) -> str:
        return self.state.session_id

    @property
    def lost(self) -> bool:
        """A known-looking id was requested but a new session was created."""
        return self.created and bool(self.requested_id)


class SessionRegistry:
    """
    Thread-safe registry of SessionState keyed by session id.

    Usage:
        registry = SessionRegistry(max_sessions=100)

        with registry.session(session_id) as lookup:
            state = lookup.state
            ...  # exclusive access to this session

        registry.evict_if_over_capacity(protect=lookup.session_id)
    """

    def __init__(
        self,
        max_sessions: int = DEFAULT_MAX_SESSIONS,
        history_window: int = DEFAULT_HISTORY_WINDOW,
        lock_timeout_seconds: float = SESSION_LOCK_TIMEOUT,
        idle_timeout_seconds: Optional[float] = None,
    ):
        """
        Initialize the registry.

        Args:
            max_sessions: Live sessions kept before LRU eviction
            history_window: Turns retained per session
            lock_timeout_seconds: Default wait for a busy session
            idle_timeout_seconds: cleanup_idle() evicts sessions idle longer
                than this; None disables idle eviction
        """
        if max_sessions < 1:
            raise ValueError("max_sessions must be at least 1")
        if lock_timeout_seconds <= 0:
            raise ValueError("lock_timeout_seconds must be positive")

        self._max_sessions = max_sessions
        self._history_window = history_window
        self._lock_timeout = lock_timeout_seconds
        self._idle_timeout = idle_timeout_seconds

        # OrderedDict for LRU tracking (most recently used at end)
        self._sessions: "OrderedDict[str, SessionState]" = OrderedDict()
        self._lock = threading.RLock()

        self._audit = get_audit_logger()

        self._stats = {
            "hits": 0,
            "misses": 0,
            "creates": 0,
            "evictions": 0,
            "erasures": 0,
        }

    @property
    def max_sessions(self) -> int:
        return self._max_sessions

    # =========================================================================
    # LOOKUP
    # =========================================================================

    def _touch_locked(self, state: SessionState) -> None:
        state.last_accessed = time.monotonic()
        state.access_count += 1
        self._sessions.move_to_end(state.session_id)

    def lookup(
        self,
        session_id: Optional[str] = None,
        scope: str = SCOPE_CONVERSATION,
    ) -> SessionLookup:
        """
        Resolve a session id, creating a new session when it is absent or
        unknown.

        A new session always gets a freshly generated id; an unknown id
        supplied by the caller is never adopted.
        """
        with self._lock:
            if session_id and session_id in self._sessions:
                state = self._sessions[session_id]
                self._touch_locked(state)
                self._stats["hits"] += 1
                return SessionLookup(state=state, created=False, requested_id=session_id)

            self._stats["misses"] += 1
            state = self._create_locked(scope)

        if session_id:
            logger.info(
                f"Session {session_id} not found, created {state.session_id}"
            )
        return SessionLookup(state=state, created=True, requested_id=session_id)

    def get_or_create(
        self,
        session_id: Optional[str] = None,
        scope: str = SCOPE_CONVERSATION,
    ) -> SessionState:
        """Get the session for an id, or a new one if absent or unknown."""
        return self.lookup(session_id, scope).state

    def get(self, session_id: str) -> Optional[SessionState]:
        """Get an existing session (touching it) without creating one."""
        with self._lock:
            state = self._sessions.get(session_id)
            if state is not None:
                self._touch_locked(state)
            return state

    def touch(self, session_id: str) -> bool:
        """Mark a session as just used. Returns False if it is not live."""
        return self.get(session_id) is not None

    def _create_locked(self, scope: str) -> SessionState:
        session_id = generate_session_id(scope)
        while session_id in self._sessions:
            session_id = generate_session_id(scope)

        now = time.monotonic()
        state = SessionState(
            session_id=session_id,
            scope=scope,
            memory=ConversationMemory(window=self._history_window),
            created_at=now,
            last_accessed=now,
            access_count=1,
        )
        self._sessions[session_id] = state
        self._stats["creates"] += 1

        self._audit.session_created(session_id, scope=scope)
        logger.debug(f"Created session {session_id} (registry size: {len(self._sessions)})")
        return state

    # =========================================================================
    # EXCLUSIVE ACCESS
    # =========================================================================

    @contextmanager
    def session(
        self,
        session_id: Optional[str] = None,
        scope: str = SCOPE_CONVERSATION,
        timeout: Optional[float] = None,
        create: bool = True,
    ) -> Iterator[SessionLookup]:
        """
        Hold a session exclusively for one mutation.

        Args:
            session_id: Session to resolve (None or unknown creates one)
            scope: Scope of a newly created session
            timeout: Seconds to wait for the session lock (default from init)
            create: When False, an unknown id raises KeyError instead

        Yields:
            SessionLookup for the locked session

        Raises:
            SessionBusyError: the lock was not acquired in time
            KeyError: create is False and the session is not live
        """
        wait = self._lock_timeout if timeout is None else timeout
        if create:
            lookup = self.lookup(session_id, scope)
        else:
            existing = self.get(session_id) if session_id else None
            if existing is None:
                raise KeyError(session_id)
            lookup = SessionLookup(state=existing, created=False, requested_id=session_id)

        while True:
            state = lookup.state
            if not state._lock.acquire(timeout=wait):
                raise SessionBusyError(state.session_id, wait)

            with self._lock:
                live = self._sessions.get(state.session_id) is state
            if live:
                break

            state._lock.release()
            if not create:
                raise KeyError(session_id)

            # Evicted or erased while we waited: continue on a fresh session
            logger.info(f"Session {state.session_id} removed while waiting, recreating")
            fresh = self.lookup(None, scope)
            lookup = SessionLookup(state=fresh.state, created=True, requested_id=session_id)

        try:
            yield lookup
        finally:
            with self._lock:
                live = self._sessions.get(state.session_id) is state
            if not live:
                # Removed while held: the remover left the wipe to us
                state.clear()
            state._lock.release()
            if live:
                self.touch(state.session_id)

    # =========================================================================
    # EVICTION / ERASURE
    # =========================================================================

    def _wipe(self, state: SessionState) -> None:
        """
        Clear a removed session's data.

        A writer still holding the lock after the wait keeps its data intact;
        session() clears it when that writer releases the session.
        """
        if not state._lock.acquire(timeout=self._lock_timeout):
            logger.warning(f"Session {state.session_id} still locked, wipe deferred to its writer")
            return
        try:
            state.clear()
        finally:
            state._lock.release()

    def evict_if_over_capacity(self, protect: Optional[str] = None) -> List[str]:
        """
        Evict least recently used sessions while over capacity.

        Args:
            protect: Session id that must survive (the one just written)

        Returns:
            Evicted session ids, oldest first
        """
        with self._lock:
            excess = len(self._sessions) - self._max_sessions
            if excess <= 0:
                return []

            victims = []
            for sid, state in self._sessions.items():
                if len(victims) >= excess:
                    break
                if sid == protect or state.is_locked:
                    continue
                victims.append(sid)

            removed = [self._sessions.pop(sid) for sid in victims]
            self._stats["evictions"] += len(removed)

        for state in removed:
            self._wipe(state)
            self._audit.session_evicted(state.session_id, reason="capacity")
            logger.info(f"Evicted session {state.session_id} (capacity)")

        if len(victims) < excess:
            logger.warning(
                f"Registry over capacity by {excess - len(victims)}: "
                f"remaining sessions are in use"
            )
        return victims

    def cleanup_idle(self) -> int:
        """
        Remove sessions idle longer than the idle timeout. Call periodically.

        Returns:
            Number of sessions evicted
        """
        if self._idle_timeout is None:
            return 0

        with self._lock:
            now = time.monotonic()
            idle = [
                sid for sid, state in self._sessions.items()
                if now - state.last_accessed > self._idle_timeout and not state.is_locked
            ]
            removed = [self._sessions.pop(sid) for sid in idle]
            self._stats["evictions"] += len(removed)

        for state in removed:
            self._wipe(state)
            self._audit.session_evicted(state.session_id, reason="idle")
            logger.info(f"Evicted session {state.session_id} (idle)")

        return len(removed)

    def delete(self, session_id: str) -> bool:
        """
        Erase a session and everything it holds.

        Idempotent: unknown ids are a no-op.

        Returns:
            True if a session was removed, False if none existed
        """
        with self._lock:
            state = self._sessions.pop(session_id, None) if session_id else None
            if state is not None:
                self._stats["erasures"] += 1

        if state is None:
            logger.debug("Delete for unknown session id (no-op)")
            return False

        self._wipe(state)
        self._audit.session_erased(session_id)
        logger.info(f"Erased session {session_id}")
        return True

    # =========================================================================
    # INTROSPECTION
    # =========================================================================

    def get_stats(self) -> Dict[str, Any]:
        """Get registry statistics."""
        with self._lock:
            lookups = self._stats["hits"] + self._stats["misses"]
            return {
                **self._stats,
                "current_size": len(self._sessions),
                "max_size": self._max_sessions,
                "hit_rate": self._stats["hits"] / lookups if lookups else 0.0,
            }

    def list_sessions(self) -> List[Dict[str, Any]]:
        """List live sessions, least recently used first. No person data."""
        with self._lock:
            now = time.monotonic()
            return [
                {
                    "session_id": state.session_id,
                    "scope": state.scope,
                    "turn_counter": state.turn_counter,
                    "person_count": len(state.persons),
                    "access_count": state.access_count,
                    "idle_seconds": now - state.last_accessed,
                }
                for state in self._sessions.values()
            ]

    def close(self) -> None:
        """Erase all sessions."""
        with self._lock:
            removed = list(self._sessions.values())
            self._sessions.clear()

        logger.info(f"Closing session registry ({len(removed)} sessions)")
        for state in removed:
            self._wipe(state)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._sessions
