from __future__ import annotations

import json
import logging
import os
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from fastapi import BackgroundTasks, FastAPI, HTTPException, Query, Request
from fastapi.responses import PlainTextResponse

from .admin import AdminCommands
from .blacklist import BlacklistRegistry, LocalBlacklist, RemoteContactList
from .classifier import IntentClassifier
from .composer import PromptComposer
from .config import Settings, load_settings
from .gemini_client import GeminiClient
from .history import ConversationHistory
from .listings import JsonListingSource, ListingCatalog, ListingSource, SupabaseListingSource
from .models import (
    BlacklistCheckResponse,
    BlacklistListResponse,
    BlacklistRequest,
    BlacklistResponse,
    ConversationResponse,
    RealEstateRequest,
    RegisterRequest,
    SendMessageRequest,
)
from .orchestrator import ChatTransport, TurnOrchestrator
from .policy import InputPolicy
from .sequencer import ReplySequencer
from .session_store import SessionStore
from .utils import normalize_phone
from .whatsapp_client import WhatsAppClient, WhatsAppClientError, parse_webhook_message

BASE_DIR = Path(__file__).resolve().parent

log_level_name = os.getenv("LOG_LEVEL", "INFO").upper()
log_level = getattr(logging, log_level_name, logging.INFO)
if not logging.getLogger().handlers:
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

logging.getLogger("estate_advisor").setLevel(log_level)
logger = logging.getLogger("estate_advisor.app")

ENV_PATH = BASE_DIR / ".env"
if ENV_PATH.exists():
    load_dotenv(ENV_PATH, override=True)
else:
    load_dotenv()


@dataclass
class AppServices:
    """Everything the HTTP layer talks to, built once per process."""
    settings: Settings
    orchestrator: TurnOrchestrator
    transport: ChatTransport
    whatsapp: Optional[WhatsAppClient]
    blacklist: BlacklistRegistry


def build_listing_source(settings: Settings) -> ListingSource:
    # Supabase when configured, the bundled JSON inventory otherwise.
    if settings.supabase_url and settings.supabase_key:
        return SupabaseListingSource(settings.supabase_url, settings.supabase_key, table=settings.supabase_listings_table)
    return JsonListingSource(settings.listings_path)


def build_services(settings: Settings) -> AppServices:
    """Purpose: Construct the conversation stack from Settings.
    Inputs/Outputs: Input is Settings; output is AppServices.
    Side Effects / State: Configures the Gemini SDK and loads the local blacklist.
    Dependencies: Every adapter and core component.
    Failure Modes: Missing GEMINI_API_KEY raises ValueError (fatal at startup).
    If Removed: The app has nothing to serve.
    Testing Notes: Tests skip this and pass fake AppServices to create_app.
    """
    # Adapters first, then the core components that consume them.
    gemini = GeminiClient(settings)
    whatsapp = WhatsAppClient.from_settings(settings)
    remote = None
    if settings.supabase_url and settings.supabase_key:
        remote = RemoteContactList(
            settings.supabase_url,
            settings.supabase_key,
            table=settings.supabase_contacts_table,
            ttl_seconds=settings.contact_list_ttl_seconds,
        )
    local = LocalBlacklist(settings.blacklist_path)
    blacklist = BlacklistRegistry(local, remote)
    orchestrator = TurnOrchestrator(
        history=ConversationHistory(settings.history_pairs),
        sessions=SessionStore(settings.session_timeout_minutes),
        classifier=IntentClassifier(gemini, settings.prompts_dir, model=settings.gemini_model_classifier),
        composer=PromptComposer(settings.prompts_dir),
        generator=gemini,
        catalog=ListingCatalog(build_listing_source(settings)),
        policy=InputPolicy(blacklist, settings.admin_numbers, settings.ignore_saved_contacts),
        admin=AdminCommands(local),
        transport=whatsapp,
        sequencer=ReplySequencer(
            whatsapp,
            min_seconds=settings.typing_delay_min,
            max_seconds=settings.typing_delay_max,
            per_char=settings.typing_delay_per_char,
        ),
        escalation_numbers=settings.escalation_numbers,
        answer_model=settings.gemini_model,
    )
    logger.info(
        "services_ready model=%s listings=%s remote_contacts=%s",
        settings.gemini_model,
        "supabase" if settings.supabase_url and settings.supabase_key else settings.listings_path,
        remote is not None,
    )
    return AppServices(
        settings=settings,
        orchestrator=orchestrator,
        transport=whatsapp,
        whatsapp=whatsapp,
        blacklist=blacklist,
    )


def _services(request: Request) -> AppServices:
    return request.app.state.services


def create_app(services: Optional[AppServices] = None) -> FastAPI:
    """Purpose: Build the FastAPI application and register all routes.
    Inputs/Outputs: Input is optional prebuilt services; output is the app.
    Side Effects / State: Without services, builds them from the environment at startup.
    Dependencies: FastAPI, build_services.
    Failure Modes: Startup fails when configuration is invalid.
    If Removed: No HTTP surface exists.
    Testing Notes: create_app(fake_services) works without any credentials.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if getattr(app.state, "services", None) is None:
            app.state.services = build_services(load_settings())
        yield

    app = FastAPI(title="Estate Advisor WhatsApp Agent", lifespan=lifespan)
    app.state.services = services

    @app.get("/webhook", response_class=PlainTextResponse)
    def verify_webhook(
        request: Request,
        mode: str = Query("", alias="hub.mode"),
        token: str = Query("", alias="hub.verify_token"),
        challenge: str = Query("", alias="hub.challenge"),
    ) -> str:
        """Purpose: Answer Meta's webhook verification handshake.
        Inputs/Outputs: Inputs are the hub.* query params; output is the challenge.
        Side Effects / State: None.
        Dependencies: Configured verify token.
        Failure Modes: Wrong mode or token returns 403.
        If Removed: The webhook cannot be registered with Meta.
        Testing Notes: Correct token echoes hub.challenge.
        """
        whatsapp = _services(request).whatsapp
        if mode == "subscribe" and whatsapp is not None and whatsapp.verify_webhook_token(token):
            return challenge
        raise HTTPException(status_code=403, detail="verification failed")

    @app.post("/webhook")
    async def receive_webhook(request: Request, background_tasks: BackgroundTasks) -> dict:
        """Purpose: Accept an inbound event and process it after responding.
        Inputs/Outputs: Input is the raw webhook request; output is {"status": "ok"}.
        Side Effects / State: Schedules one orchestrator turn as a background task.
        Dependencies: WhatsAppClient signature check, parse_webhook_message.
        Failure Modes: Bad signature -> 403; bad JSON -> 400; non-message events are
            acknowledged and ignored.
        If Removed: The bot never hears from users.
        Testing Notes: A text event results in one handle_message call.
        """
        services = _services(request)
        raw = await request.body()
        whatsapp = services.whatsapp
        if whatsapp is not None and not whatsapp.verify_webhook_signature(
            raw, request.headers.get("X-Hub-Signature-256")
        ):
            logger.warning("webhook_rejected reason=bad_signature")
            raise HTTPException(status_code=403, detail="invalid signature")
        try:
            body = json.loads(raw or b"{}")
        except json.JSONDecodeError as exc:
            raise HTTPException(status_code=400, detail="invalid JSON") from exc
        message = parse_webhook_message(body) if isinstance(body, dict) else None
        if message is None:
            return {"status": "ignored"}
        logger.info("user=%s webhook_message id=%s media=%s", normalize_phone(message.sender), message.message_id, message.has_media)
        background_tasks.add_task(services.orchestrator.handle_message, message)
        return {"status": "ok"}

    @app.post("/v1/messages", response_class=PlainTextResponse)
    async def send_message(payload: SendMessageRequest, request: Request) -> PlainTextResponse:
        """Purpose: Send an operator message (text or media) to a number.
        Inputs/Outputs: Input is SendMessageRequest; output is "sended" or "error".
        Side Effects / State: One outbound WhatsApp message.
        Dependencies: The configured transport.
        Failure Modes: Delivery errors return HTTP 500 with body "error".
        If Removed: Operators cannot message clients through the API.
        Testing Notes: urlMedia routes to send_media with the text as caption.
        """
        transport = _services(request).transport
        try:
            if payload.url_media:
                await transport.send_media(payload.number, payload.url_media, payload.message)
            else:
                await transport.send_text(payload.number, payload.message)
        except WhatsAppClientError as exc:
            logger.error("number=%s api_send_failed error=%s", normalize_phone(payload.number), exc)
            return PlainTextResponse("error", status_code=500)
        return PlainTextResponse("sended")

    @app.post("/v1/register", response_class=PlainTextResponse)
    async def register(payload: RegisterRequest, request: Request, background_tasks: BackgroundTasks) -> str:
        orchestrator = _services(request).orchestrator
        background_tasks.add_task(orchestrator.start_registration, payload.number, payload.name)
        return "trigger"

    @app.post("/v1/real-estate", response_class=PlainTextResponse)
    async def real_estate(payload: RealEstateRequest, request: Request, background_tasks: BackgroundTasks) -> str:
        orchestrator = _services(request).orchestrator
        background_tasks.add_task(orchestrator.handle_inquiry, payload.number, payload.question)
        return "trigger"

    @app.post("/v1/blacklist")
    def update_blacklist(payload: BlacklistRequest, request: Request) -> dict:
        """Purpose: Add, remove, or check a number on the local blacklist.
        Inputs/Outputs: Input is BlacklistRequest; output is a status dict.
        Side Effects / State: add/remove persist the blacklist file.
        Dependencies: LocalBlacklist via BlacklistRegistry.local.
        Failure Modes: File write errors surface as HTTP 500.
        If Removed: Operators lose remote control of the blacklist.
        Testing Notes: check returns isBlacklisted in camelCase.
        """
        local = _services(request).blacklist.local
        number = normalize_phone(payload.number) or payload.number
        if payload.intent == "check":
            response = BlacklistCheckResponse(number=number, is_blacklisted=local.contains(number))
            return response.model_dump(by_alias=True)
        if payload.intent == "add":
            local.add(number)
        else:
            local.remove(number)
        return BlacklistResponse(number=number, intent=payload.intent).model_dump()

    @app.get("/v1/blacklist")
    def list_blacklist(request: Request) -> dict:
        local = _services(request).blacklist.local
        return BlacklistListResponse(blacklist=local.all()).model_dump()

    @app.get("/v1/conversations/{user_id}", response_model=ConversationResponse)
    def get_conversation(user_id: str, request: Request) -> ConversationResponse:
        """Purpose: Return the retained history and flow state for one user.
        Inputs/Outputs: Input is the user id (phone number); output is ConversationResponse.
        Side Effects / State: None.
        Dependencies: ConversationHistory.get_history and SessionStore.peek.
        Failure Modes: Unknown users return 404.
        If Removed: Operators cannot inspect what the bot remembers.
        Testing Notes: After one turn the user message appears in messages.
        """
        orchestrator = _services(request).orchestrator
        key = normalize_phone(user_id) or user_id
        turns = orchestrator.history.get_history(key)
        session = orchestrator.sessions.peek(key)
        if not turns and session is None:
            raise HTTPException(status_code=404, detail="unknown user")
        return ConversationResponse(
            user_id=key,
            state=session.flow_state.value if session else "idle",
            pending_flow=session.pending_flow.value if session else "none",
            language=session.language if session else "es",
            messages=turns,
        )

    return app


app = create_app()
