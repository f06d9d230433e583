"""Session store.

Keyed storage of checkout sessions with point-atomic reads and writes.
Records are replaced wholesale and handed out as copies, so a reader
never observes a partially applied mutation.
"""

import copy
import threading
from typing import Protocol

import structlog

from acp_checkout.domain.entities import Session

logger = structlog.get_logger()


class SessionStore(Protocol):
    """Storage interface for checkout sessions."""

    def get(self, session_id: str) -> Session | None: ...

    def put(self, session: Session) -> None: ...

    def find_by_payment_reference(self, payment_intent_id: str) -> Session | None: ...

    def remove(self, session_id: str) -> bool: ...


# ============================================================================
# In-Memory Store
# ============================================================================


class InMemorySessionStore:
    """In-memory session store with a payment reference index."""

    def __init__(self) -> None:
        self._sessions: dict[str, Session] = {}
        self._by_payment_intent: dict[str, str] = {}
        self._lock = threading.Lock()

    def get(self, session_id: str) -> Session | None:
        """Get a copy of a session by ID."""
        with self._lock:
            session = self._sessions.get(session_id)
            return copy.deepcopy(session) if session is not None else None

    def put(self, session: Session) -> None:
        """Insert or replace a session."""
        snapshot = copy.deepcopy(session)
        with self._lock:
            previous = self._sessions.get(snapshot.id)
            if (
                previous is not None
                and previous.payment_intent_id
                and previous.payment_intent_id != snapshot.payment_intent_id
            ):
                self._by_payment_intent.pop(previous.payment_intent_id, None)
            self._sessions[snapshot.id] = snapshot
            if snapshot.payment_intent_id:
                self._by_payment_intent[snapshot.payment_intent_id] = snapshot.id

    def find_by_payment_reference(self, payment_intent_id: str) -> Session | None:
        """Find the session bound to a provider payment reference.

        Args:
            payment_intent_id: Provider payment intent id.

        Returns:
            Copy of the session, or None when no session carries it.
        """
        with self._lock:
            session_id = self._by_payment_intent.get(payment_intent_id)
            if session_id is None:
                return None
            session = self._sessions.get(session_id)
            return copy.deepcopy(session) if session is not None else None

    def remove(self, session_id: str) -> bool:
        """Remove a session.

        Returns:
            True if a session was removed.
        """
        with self._lock:
            session = self._sessions.pop(session_id, None)
            if session is None:
                return False
            if session.payment_intent_id:
                self._by_payment_intent.pop(session.payment_intent_id, None)
            return True

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
