from __future__ import annotations

import logging
import time
from typing import Dict, List

from .models import Turn

logger = logging.getLogger("estate_advisor.history")

ROLE_LABELS = {
    "es": {"user": "Cliente", "assistant": "Asesor"},
    "en": {"user": "Client", "assistant": "Advisor"},
}
HISTORY_PREAMBLE = {
    "es": "Historial de conversación:",
    "en": "Conversation history:",
}
QUERY_PREAMBLE = {
    "es": "Consulta actual del cliente:",
    "en": "Current client question:",
}


class ConversationHistory:
    """Per-user sliding window of conversation turns kept in memory."""

    def __init__(self, history_pairs: int = 5) -> None:
        """Purpose: Initialize an empty history map with a retention window.
        Inputs/Outputs: Input is the number of interaction pairs to keep; no return.
        Side Effects / State: Creates the in-memory user -> turns table.
        Dependencies: Uses Turn from models.
        Failure Modes: Non-positive windows are clamped to one pair.
        If Removed: Prompts lose conversational context between turns.
        Testing Notes: Append more than 2 * pairs turns and check the suffix is kept.
        """
        # One pair is a user message plus the advisor reply.
        self._max_entries = max(1, history_pairs) * 2
        self._histories: Dict[str, List[Turn]] = {}

    @property
    def max_entries(self) -> int:
        return self._max_entries

    def append(self, user_id: str, role: str, content: str) -> None:
        """Purpose: Append one turn and trim the oldest turns past the window.
        Inputs/Outputs: Inputs are user_id, role ("user"/"assistant"), content; no return.
        Side Effects / State: Mutates the user's history and logs its size.
        Dependencies: Uses Turn and the configured max entry count.
        Failure Modes: None for valid roles; invalid roles raise pydantic errors.
        If Removed: Conversations are never recorded.
        Testing Notes: Order of retained turns must match insertion order.
        """
        # Lazily create the user's log, then drop from the front to stay in bound.
        turns = self._histories.setdefault(user_id, [])
        turns.append(Turn(role=role, content=content, timestamp=time.time()))
        if len(turns) > self._max_entries:
            del turns[: len(turns) - self._max_entries]
        logger.info("user=%s history_size=%s", user_id, len(turns))

    def get_history(self, user_id: str) -> List[Turn]:
        """Purpose: Return the retained turns for a user.
        Inputs/Outputs: Input is user_id; output is a list copy (empty if unknown).
        Side Effects / State: None.
        Dependencies: In-memory history table.
        Failure Modes: None; unknown users yield an empty list.
        If Removed: Context rendering and the inspection endpoint break.
        Testing Notes: Mutating the returned list must not change the store.
        """
        return list(self._histories.get(user_id, []))

    def users(self) -> List[str]:
        return list(self._histories.keys())

    def render_as_context(self, user_id: str, current_query: str, language: str = "es") -> str:
        """Purpose: Render history plus the current query as a transcript block.
        Inputs/Outputs: Inputs are user_id, current_query, language; output is text.
        Side Effects / State: None.
        Dependencies: ROLE_LABELS and preamble tables.
        Failure Modes: Unknown languages fall back to Spanish labels.
        If Removed: The generation prompt loses the conversation transcript.
        Testing Notes: Empty history returns current_query unchanged.
        """
        # With no history the query is sent as-is.
        turns = self._histories.get(user_id)
        if not turns:
            return current_query
        lang = language if language in ROLE_LABELS else "es"
        labels = ROLE_LABELS[lang]
        lines = [f"{labels.get(turn.role, turn.role)}: {turn.content}" for turn in turns]
        transcript = "\n".join(lines)
        return f"{HISTORY_PREAMBLE[lang]}\n{transcript}\n\n{QUERY_PREAMBLE[lang]} {current_query}"
