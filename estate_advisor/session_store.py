from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional

logger = logging.getLogger("estate_advisor.session")


class FlowState(str, Enum):
    """Conversation states of the turn orchestrator."""
    IDLE = "idle"
    PROCESSING = "processing"
    AWAITING_FOLLOWUP = "awaiting_followup"
    CLOSING = "closing"


class PendingFlow(str, Enum):
    """Multi-step flow a conversation is waiting on."""
    NONE = "none"
    AWAITING_FOLLOWUP_ANSWER = "awaiting_followup_answer"
    AWAITING_REGISTRATION_FIELD = "awaiting_registration_field"


@dataclass
class SessionState:
    """Per-user state for an in-progress flow."""
    user_id: str
    language: str = "es"
    last_message_at: Optional[float] = None
    pending_flow: PendingFlow = PendingFlow.NONE
    flow_state: FlowState = FlowState.IDLE
    display_name: Optional[str] = None

    def reset(self) -> None:
        """Drop any pending flow and return to idle."""
        self.pending_flow = PendingFlow.NONE
        self.flow_state = FlowState.IDLE

    def await_followup(self) -> None:
        self.pending_flow = PendingFlow.AWAITING_FOLLOWUP_ANSWER
        self.flow_state = FlowState.AWAITING_FOLLOWUP

    def touch(self, now: float) -> None:
        # Never move backwards, even if events arrive out of order.
        if self.last_message_at is None or now > self.last_message_at:
            self.last_message_at = now


class SessionStore:
    """In-memory session table with one asyncio lock per user."""

    def __init__(self, timeout_minutes: int = 30) -> None:
        """Purpose: Initialize empty session and lock tables.
        Inputs/Outputs: Input is the idle timeout in minutes; no return value.
        Side Effects / State: Creates in-memory dicts keyed by user id.
        Dependencies: asyncio.Lock for per-user serialization.
        Failure Modes: None.
        If Removed: The orchestrator cannot track flows or serialize a user's turns.
        Testing Notes: Two lock() calls for the same user return the same lock.
        """
        # Keep per-user state and locks side by side; never a global lock.
        self._timeout_seconds = max(0, timeout_minutes) * 60
        self._sessions: Dict[str, SessionState] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    @property
    def timeout_seconds(self) -> int:
        return self._timeout_seconds

    def lock(self, user_id: str) -> asyncio.Lock:
        """Purpose: Return the lock that serializes one user's turns.
        Inputs/Outputs: Input is user_id; output is an asyncio.Lock.
        Side Effects / State: Creates the lock on first use.
        Dependencies: asyncio.
        Failure Modes: None; creation happens without awaiting so it is race-free
            within one event loop.
        If Removed: Concurrent messages from one user can interleave history writes.
        Testing Notes: Same user -> same lock object; different users -> different.
        """
        lock = self._locks.get(user_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[user_id] = lock
        return lock

    def get(self, user_id: str) -> SessionState:
        # Sessions are created lazily on first contact.
        session = self._sessions.get(user_id)
        if session is None:
            session = SessionState(user_id=user_id)
            self._sessions[user_id] = session
        return session

    def peek(self, user_id: str) -> Optional[SessionState]:
        return self._sessions.get(user_id)

    def users(self) -> List[str]:
        return list(self._sessions.keys())

    def expire_if_idle(self, session: SessionState, now: float) -> bool:
        """Purpose: Reset a stale flow before a new message is routed.
        Inputs/Outputs: Inputs are the session and current time; output is True
            when the session was reset.
        Side Effects / State: Mutates pending_flow and flow_state.
        Dependencies: Configured timeout in seconds.
        Failure Modes: None; sessions without a timestamp are never stale.
        If Removed: A forgotten follow-up question traps unrelated new messages.
        Testing Notes: A gap equal to the timeout must reset the flow.
        """
        # A gap at or past the threshold clears the pending flow.
        if session.last_message_at is None:
            return False
        if now - session.last_message_at < self._timeout_seconds:
            return False
        if session.pending_flow == PendingFlow.NONE and session.flow_state == FlowState.IDLE:
            return False
        logger.info(
            "user=%s session_expired idle_seconds=%.0f pending_flow=%s",
            session.user_id,
            now - session.last_message_at,
            session.pending_flow.value,
        )
        session.reset()
        return True
