"""Per-user turn orchestration.

One inbound message is one turn. A turn holds the user's lock from start to finish,
so history writes, session transitions, and outbound order stay sequential per user
while other users are served concurrently. Branches are tried in a fixed priority
order (media, inventory, capabilities, human handoff, domain query, welcome) and the
first one that accepts the turn answers it.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Optional, Protocol

from . import messages
from .admin import AdminCommands
from .classifier import ClassificationResult, IntentClassifier, TextGenerator
from .composer import PromptComposer
from .dialogue import DialogueAct, detect_followup_answer
from .flow_runtime import FlowBranch, FlowRouter
from .history import ConversationHistory
from .listings import Listing, ListingCatalog
from .policy import InputPolicy, RejectReason
from .sequencer import ReplySequencer
from .session_store import FlowState, PendingFlow, SessionState, SessionStore
from .utils import normalize_phone
from .whatsapp_client import InboundMessage, MediaDownloadError, WhatsAppClientError

logger = logging.getLogger("estate_advisor.orchestrator")

MAX_LISTING_IMAGES = 3
MAX_NAME_CHARS = 60


class ChatTransport(Protocol):
    async def send_text(self, to: str, text: str) -> None: ...

    async def send_media(self, to: str, media_url: str, caption: str = "") -> None: ...

    async def download_media(self, media_id: str) -> bytes: ...


class ImageAnalyzer:
    """Stand-in for image understanding; always returns the canned assessment."""

    async def analyze(self, data: bytes, language: str = "es") -> str:
        logger.info("image_analysis_stub bytes=%s", len(data))
        return messages.image_analysis_stub(language)


@dataclass
class TurnContext:
    """Mutable state shared by the branches of one turn."""
    user_id: str
    message: InboundMessage
    session: Optional[SessionState] = None
    text: str = ""
    history_context: str = ""
    listings: List[Listing] = field(default_factory=list)
    classification: Optional[ClassificationResult] = None
    force_domain: bool = False
    rejected: Optional[RejectReason] = None
    branch: Optional[str] = None

    @property
    def language(self) -> str:
        return self.session.language if self.session else "es"

    @property
    def display_name(self) -> Optional[str]:
        return self.session.display_name if self.session else None


class TurnOrchestrator:
    """Runs the per-user state machine and picks one response branch per message."""

    def __init__(
        self,
        history: ConversationHistory,
        sessions: SessionStore,
        classifier: IntentClassifier,
        composer: PromptComposer,
        generator: TextGenerator,
        catalog: ListingCatalog,
        policy: InputPolicy,
        admin: AdminCommands,
        transport: ChatTransport,
        sequencer: ReplySequencer,
        image_analyzer: Optional[ImageAnalyzer] = None,
        escalation_numbers: Iterable[str] = (),
        answer_model: Optional[str] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Purpose: Wire the orchestrator to its stores and collaborators.
        Inputs/Outputs: Inputs are the injected stores, adapters, and options; no return.
        Side Effects / State: Builds the branch router in priority order.
        Dependencies: Every conversation component; no module-level state.
        Failure Modes: None at construction.
        If Removed: Inbound messages are never answered.
        Testing Notes: Inject fakes for transport and generator plus a zero sleep.
        """
        # Stores are injected so tests and multiple instances stay isolated.
        self._history = history
        self._sessions = sessions
        self._classifier = classifier
        self._composer = composer
        self._generator = generator
        self._catalog = catalog
        self._policy = policy
        self._admin = admin
        self._transport = transport
        self._sequencer = sequencer
        self._image_analyzer = image_analyzer or ImageAnalyzer()
        self._escalation_numbers = [n for n in escalation_numbers if normalize_phone(n)]
        self._answer_model = answer_model
        self._clock = clock
        self._router = FlowRouter(
            [
                FlowBranch("media", self._wants_media, self._run_media),
                FlowBranch("inventory", self._wants_inventory, self._run_inventory),
                FlowBranch("capabilities", self._wants_capabilities, self._run_capabilities),
                FlowBranch("needs_human", self._wants_human, self._run_human),
                FlowBranch("domain", self._wants_domain, self._run_domain),
                FlowBranch("fallback", lambda ctx: True, self._run_fallback),
            ]
        )

    @property
    def history(self) -> ConversationHistory:
        return self._history

    @property
    def sessions(self) -> SessionStore:
        return self._sessions

    async def handle_message(self, message: InboundMessage) -> TurnContext:
        """Purpose: Process one inbound message end to end.
        Inputs/Outputs: Input is an InboundMessage; output is the finished TurnContext.
        Side Effects / State: Mutates history and session state, sends replies.
        Dependencies: SessionStore.lock serializes turns of the same user.
        Failure Modes: Never raises for processing failures; the user gets the
            localized apology and the flow returns to IDLE.
        If Removed: The webhook and inquiry endpoints have nothing to call.
        Testing Notes: Concurrent calls for one user must not interleave replies.
        """
        user_id = normalize_phone(message.sender) or message.sender
        async with self._sessions.lock(user_id):
            return await self._run_turn(user_id, message)

    async def handle_inquiry(self, number: str, question: str) -> TurnContext:
        # Same path as a chat message from that number.
        return await self.handle_message(InboundMessage(sender=number, body=question))

    async def start_registration(self, number: str, name: Optional[str] = None) -> None:
        """Purpose: Open a conversation with a known or to-be-asked display name.
        Inputs/Outputs: Inputs are the number and an optional name; no return.
        Side Effects / State: Sets display_name or arms the registration capture.
        Dependencies: messages.welcome / messages.registration_prompt.
        Failure Modes: Send errors propagate to the caller (HTTP layer).
        If Removed: /v1/register cannot greet new contacts.
        Testing Notes: Without a name the next message becomes the display name.
        """
        user_id = normalize_phone(number) or number
        async with self._sessions.lock(user_id):
            session = self._sessions.get(user_id)
            session.touch(self._clock())
            cleaned = (name or "").strip()[:MAX_NAME_CHARS]
            if cleaned:
                session.display_name = cleaned
                session.reset()
                await self._sequencer.send(number, messages.welcome(session.language, cleaned))
                logger.info("user=%s registration_complete source=api", user_id)
                return
            session.pending_flow = PendingFlow.AWAITING_REGISTRATION_FIELD
            session.flow_state = FlowState.AWAITING_FOLLOWUP
            await self._sequencer.send(number, messages.registration_prompt(session.language))
            logger.info("user=%s registration_started", user_id)

    async def _run_turn(self, user_id: str, message: InboundMessage) -> TurnContext:
        ctx = TurnContext(user_id=user_id, message=message, text=message.body.strip())
        started = time.monotonic()

        ctx.rejected = await self._policy.check(message)
        if ctx.rejected is not None:
            ctx.session = self._sessions.peek(user_id)
            if ctx.rejected == RejectReason.ADMIN_COMMAND and self._policy.is_admin(message.sender):
                reply = self._admin.execute(message.sender, message.body)
                try:
                    await self._transport.send_text(message.sender, reply)
                except WhatsAppClientError as exc:
                    logger.error("admin=%s reply_send_failed error=%s", user_id, exc)
                ctx.branch = "admin"
            else:
                ctx.branch = "rejected"
            return ctx

        session = self._sessions.get(user_id)
        ctx.session = session
        now = self._clock()
        self._sessions.expire_if_idle(session, now)
        session.touch(now)
        if message.push_name and not session.display_name:
            session.display_name = message.push_name.strip()[:MAX_NAME_CHARS] or None

        try:
            if await self._handle_pending_flow(ctx):
                return ctx
            session.pending_flow = PendingFlow.NONE
            session.flow_state = FlowState.PROCESSING

            # Render before appending so the current query is not duplicated.
            ctx.history_context = self._history.render_as_context(user_id, ctx.text, session.language)
            self._history.append(user_id, "user", ctx.text or "[media]")

            ctx.listings = await self._catalog.fetch_active_listings()
            ctx.classification = await self._classify(ctx)
            if ctx.classification.source in ("local", "model"):
                session.language = ctx.classification.language
            ctx.branch = await self._router.dispatch(ctx)
        except Exception:
            elapsed_ms = int((time.monotonic() - started) * 1000)
            logger.exception("user=%s turn_failed elapsed_ms=%s", user_id, elapsed_ms)
            session.reset()
            ctx.branch = "error"
            await self._send_apology(ctx)
            return ctx

        if session.flow_state == FlowState.PROCESSING:
            session.reset()
        logger.info(
            "user=%s turn_done branch=%s state=%s elapsed_ms=%s",
            user_id,
            ctx.branch,
            session.flow_state.value,
            int((time.monotonic() - started) * 1000),
        )
        return ctx

    async def _handle_pending_flow(self, ctx: TurnContext) -> bool:
        """Purpose: Consume the message when a multi-step flow is waiting on it.
        Inputs/Outputs: Input is the turn context; output is True when fully handled.
        Side Effects / State: Captures names, closes conversations, or flags a
            follow-up affirmation for the domain branch.
        Dependencies: detect_followup_answer, messages.closing / messages.welcome.
        Failure Modes: Send errors propagate to the turn boundary.
        If Removed: Follow-up questions and registration never get answered.
        Testing Notes: "no" while awaiting follow-up -> closing message, state IDLE.
        """
        session = ctx.session
        if session is None or session.pending_flow == PendingFlow.NONE:
            return False

        if session.pending_flow == PendingFlow.AWAITING_REGISTRATION_FIELD and ctx.text:
            session.display_name = ctx.text[:MAX_NAME_CHARS]
            self._history.append(ctx.user_id, "user", ctx.text)
            session.reset()
            ctx.branch = "registration"
            await self._sequencer.send(ctx.message.sender, messages.welcome(session.language, session.display_name))
            logger.info("user=%s registration_complete source=chat", ctx.user_id)
            return True

        if session.pending_flow == PendingFlow.AWAITING_FOLLOWUP_ANSWER and not ctx.message.has_media:
            act = detect_followup_answer(ctx.text)
            if act == DialogueAct.NEGATE:
                self._history.append(ctx.user_id, "user", ctx.text)
                session.pending_flow = PendingFlow.NONE
                session.flow_state = FlowState.CLOSING
                ctx.branch = "closing"
                await self._sequencer.send(ctx.message.sender, messages.closing(session.language, session.display_name))
                session.reset()
                return True
            if act == DialogueAct.AFFIRM:
                ctx.force_domain = True
        return False

    async def _classify(self, ctx: TurnContext) -> ClassificationResult:
        if ctx.force_domain:
            return ClassificationResult(language=ctx.language, is_domain_query=True, source="followup")
        if not ctx.text:
            return ClassificationResult(language=ctx.language, is_domain_query=False, source="media")
        return await self._classifier.classify(ctx.text, ctx.listings)

    async def _reply(self, ctx: TurnContext, text: str) -> None:
        await self._sequencer.send(ctx.message.sender, text)

    async def _send_apology(self, ctx: TurnContext) -> None:
        # The apology is not recorded in history.
        try:
            await self._sequencer.send(ctx.message.sender, messages.error_apology(ctx.language, ctx.display_name))
        except Exception as exc:
            logger.error("user=%s apology_send_failed error=%s", ctx.user_id, exc)

    def _wants_media(self, ctx: TurnContext) -> bool:
        return ctx.message.has_media and not ctx.force_domain

    async def _run_media(self, ctx: TurnContext) -> bool:
        """Purpose: Answer an image with the analyzing notice and the analysis result.
        Inputs/Outputs: Input is the turn context; output is False to fall through.
        Side Effects / State: Downloads media, sends two messages, awaits follow-up.
        Dependencies: ChatTransport.download_media, ImageAnalyzer.
        Failure Modes: Non-image media and download failures fall through to the
            text branches.
        If Removed: Photos sent by users are handled as empty text.
        Testing Notes: The notice must be sent strictly before the result.
        """
        message = ctx.message
        if not message.is_image or not message.media_id:
            return False
        try:
            data = await self._transport.download_media(message.media_id)
        except MediaDownloadError as exc:
            logger.warning("user=%s media_download_failed error=%s", ctx.user_id, exc)
            return False
        await self._reply(ctx, messages.image_analyzing(ctx.language, ctx.display_name))
        result = await self._image_analyzer.analyze(data, ctx.language)
        await self._reply(ctx, result)
        ctx.session.await_followup()
        return True

    def _wants_inventory(self, ctx: TurnContext) -> bool:
        cls = ctx.classification
        return bool(cls and (cls.is_inventory_query or cls.matched_listings))

    async def _run_inventory(self, ctx: TurnContext) -> bool:
        """Purpose: Reply with matched listings, a search result, or the full inventory.
        Inputs/Outputs: Input is the turn context; output is True.
        Side Effects / State: Sends the summary and optional photos, awaits follow-up.
        Dependencies: ListingCatalog.search_listings, messages formatters.
        Failure Modes: Search failures fall back inside ListingCatalog.
        If Removed: Price and zone questions go to the model instead of the data.
        Testing Notes: "casa menos de 2 millones" lists only the 1.8M house.
        """
        cls = ctx.classification
        matches = list(cls.matched_listings)
        if not matches and not cls.criteria.is_empty():
            matches = await self._catalog.search_listings(cls.criteria)
        if matches:
            await self._reply(ctx, messages.format_listing_results(matches, ctx.language))
        elif cls.criteria.is_empty():
            await self._reply(ctx, messages.full_inventory(ctx.listings, ctx.language))
            await self._reply(ctx, messages.followup_question(ctx.language))
        else:
            await self._reply(ctx, messages.no_results(ctx.language))
            await self._reply(ctx, messages.followup_question(ctx.language))
        if cls.is_image_request:
            await self._send_listing_images(ctx, matches or ctx.listings)
        ctx.session.await_followup()
        return True

    async def _send_listing_images(self, ctx: TurnContext, listings: List[Listing]) -> None:
        with_images = [listing for listing in listings if listing.image_url][:MAX_LISTING_IMAGES]
        for listing in with_images:
            await self._sequencer.send_media(ctx.message.sender, listing.image_url, caption=listing.title)

    def _wants_capabilities(self, ctx: TurnContext) -> bool:
        return bool(ctx.classification and ctx.classification.is_about_capabilities)

    async def _run_capabilities(self, ctx: TurnContext) -> bool:
        await self._reply(ctx, messages.capabilities(ctx.language, ctx.display_name))
        await self._reply(ctx, messages.followup_question(ctx.language))
        ctx.session.await_followup()
        return True

    def _wants_human(self, ctx: TurnContext) -> bool:
        return bool(ctx.classification and ctx.classification.needs_human)

    async def _run_human(self, ctx: TurnContext) -> bool:
        """Purpose: Hand the conversation to staff and keep the user engaged.
        Inputs/Outputs: Input is the turn context; output is True.
        Side Effects / State: Notifies escalation numbers, sends handoff and upsell.
        Dependencies: messages.human_handoff / escalation_notice / upsell.
        Failure Modes: A failed staff notification is logged; the user still gets
            the handoff notice.
        If Removed: Requests for a person get an automated answer.
        Testing Notes: Every configured escalation number receives one notice.
        """
        await self._reply(ctx, messages.human_handoff(ctx.language, ctx.display_name))
        notice = messages.escalation_notice(ctx.user_id, ctx.text, ctx.display_name)
        for number in self._escalation_numbers:
            try:
                await self._transport.send_text(number, notice)
            except WhatsAppClientError as exc:
                logger.error("user=%s escalation_notify_failed staff=%s error=%s", ctx.user_id, number, exc)
        logger.info("user=%s escalated notified=%s", ctx.user_id, len(self._escalation_numbers))
        await self._reply(ctx, messages.upsell(ctx.language))
        ctx.session.await_followup()
        return True

    def _wants_domain(self, ctx: TurnContext) -> bool:
        if not ctx.text:
            return False
        return ctx.force_domain or bool(ctx.classification and ctx.classification.is_domain_query)

    async def _run_domain(self, ctx: TurnContext) -> bool:
        """Purpose: Answer a general question with a grounded model response.
        Inputs/Outputs: Input is the turn context; output is True.
        Side Effects / State: One generation call; appends the answer to history.
        Dependencies: PromptComposer, the text generator, ListingCatalog instructions.
        Failure Modes: GenerationError propagates to the turn boundary (apology).
        If Removed: Open questions about the inventory get no answer.
        Testing Notes: The user prompt carries the rendered history context.
        """
        cls = ctx.classification
        instructions = await self._catalog.fetch_instructions()
        composed = self._composer.compose(
            ctx.history_context,
            ctx.listings,
            matched=cls.matched_listings if cls else None,
            display_name=ctx.display_name,
            instructions=instructions,
        )
        started = time.monotonic()
        answer = await self._generator.generate_text(
            composed.user_prompt,
            system_instruction=composed.system_prompt,
            model=self._answer_model,
        )
        logger.info(
            "user=%s answer_generated elapsed_ms=%s chars=%s",
            ctx.user_id,
            int((time.monotonic() - started) * 1000),
            len(answer),
        )
        self._history.append(ctx.user_id, "assistant", answer)
        await self._reply(ctx, answer)
        await self._reply(ctx, messages.followup_question(ctx.language))
        ctx.session.await_followup()
        return True

    async def _run_fallback(self, ctx: TurnContext) -> bool:
        await self._reply(ctx, messages.welcome(ctx.language, ctx.display_name))
        ctx.session.await_followup()
        return True
