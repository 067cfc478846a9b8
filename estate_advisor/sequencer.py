from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Protocol

logger = logging.getLogger("estate_advisor.sequencer")

DEFAULT_BASE_SECONDS = 0.5


class MessageTransport(Protocol):
    async def send_text(self, to: str, text: str) -> None: ...

    async def send_media(self, to: str, media_url: str, caption: str = "") -> None: ...


def human_delay(
    text: str,
    min_seconds: float = 1.0,
    max_seconds: float = 5.0,
    per_char: float = 0.03,
    base: float = DEFAULT_BASE_SECONDS,
) -> float:
    """Purpose: Compute the typing pause before a message is sent.
    Inputs/Outputs: Inputs are the text and delay parameters; output is seconds.
    Side Effects / State: None; pure function.
    Dependencies: None.
    Failure Modes: An inverted range collapses to max_seconds.
    If Removed: Replies arrive instantly and read as automated.
    Testing Notes: Result stays within [min, max] and never shrinks as text grows.
    """
    # Linear in length, clamped to the configured window.
    upper = max(max_seconds, 0.0)
    lower = min(max(min_seconds, 0.0), upper)
    raw = base + max(per_char, 0.0) * len(text or "")
    return min(upper, max(lower, raw))


class ReplySequencer:
    """Sends one turn's replies in order, each after a humanized pause."""

    def __init__(
        self,
        transport: MessageTransport,
        min_seconds: float = 1.0,
        max_seconds: float = 5.0,
        per_char: float = 0.03,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ) -> None:
        self._transport = transport
        self._min_seconds = min_seconds
        self._max_seconds = max_seconds
        self._per_char = per_char
        self._sleep = sleep or asyncio.sleep

    def delay_for(self, text: str) -> float:
        return human_delay(text, self._min_seconds, self._max_seconds, self._per_char)

    async def send(self, to: str, text: str) -> None:
        """Purpose: Pause for the computed delay, then deliver one text message.
        Inputs/Outputs: Inputs are recipient and text; no return value.
        Side Effects / State: Awaits the sleep function and the transport.
        Dependencies: human_delay, MessageTransport.send_text.
        Failure Modes: Transport errors propagate to the orchestrator boundary.
        If Removed: Outbound ordering and pacing are lost.
        Testing Notes: Inject a recording sleep and assert one call per message.
        """
        # The sleep yields to the loop so other users keep being served.
        delay = self.delay_for(text)
        await self._sleep(delay)
        await self._transport.send_text(to, text)
        logger.debug("to=%s sent_chars=%s delay_s=%.2f", to, len(text), delay)

    async def send_media(self, to: str, media_url: str, caption: str = "") -> None:
        delay = self.delay_for(caption)
        await self._sleep(delay)
        await self._transport.send_media(to, media_url, caption)
        logger.debug("to=%s sent_media=%s delay_s=%.2f", to, media_url, delay)
