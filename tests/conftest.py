from __future__ import annotations

from pathlib import Path
from typing import Callable, List, Optional, Tuple

import pytest

from estate_advisor.admin import AdminCommands
from estate_advisor.blacklist import BlacklistRegistry, LocalBlacklist
from estate_advisor.classifier import IntentClassifier
from estate_advisor.composer import PromptComposer
from estate_advisor.config import BASE_DIR
from estate_advisor.history import ConversationHistory
from estate_advisor.listings import Listing, ListingCatalog, ListingType, SearchCriteria, filter_listings
from estate_advisor.orchestrator import TurnOrchestrator
from estate_advisor.policy import InputPolicy
from estate_advisor.sequencer import ReplySequencer
from estate_advisor.session_store import SessionStore
from estate_advisor.whatsapp_client import MediaDownloadError, WhatsAppClientError

PROMPTS_DIR = BASE_DIR / "prompts"


class FakeTransport:
    """Records outbound traffic; media downloads return fixed bytes."""

    def __init__(self, media: Optional[bytes] = b"\x89PNG", fail_sends: bool = False) -> None:
        self.sent: List[Tuple[str, str]] = []
        self.media_sent: List[Tuple[str, str, str]] = []
        self.downloads: List[str] = []
        self._media = media
        self._fail_sends = fail_sends

    async def send_text(self, to: str, text: str) -> None:
        if self._fail_sends:
            raise WhatsAppClientError("send failed", status_code=500)
        self.sent.append((to, text))

    async def send_media(self, to: str, media_url: str, caption: str = "") -> None:
        if self._fail_sends:
            raise WhatsAppClientError("send failed", status_code=500)
        self.media_sent.append((to, media_url, caption))

    async def download_media(self, media_id: str) -> bytes:
        self.downloads.append(media_id)
        if self._media is None:
            raise MediaDownloadError("gone")
        return self._media

    def texts_to(self, number: str) -> List[str]:
        return [text for to, text in self.sent if to == number]


class ScriptedGenerator:
    """Returns queued answers in order; Exception items are raised instead."""

    def __init__(self, responses: Optional[List[object]] = None, default: object = "Respuesta generada") -> None:
        self.responses = list(responses or [])
        self.default = default
        self.calls: List[dict] = []

    async def generate_text(self, prompt, system_instruction=None, model=None, temperature=0.4, max_output_tokens=1024):
        self.calls.append({"prompt": prompt, "system_instruction": system_instruction, "model": model})
        item = self.responses.pop(0) if self.responses else self.default
        if isinstance(item, Exception):
            raise item
        return item


class StaticListingSource:
    def __init__(self, listings: List[Listing], instructions: Optional[List[str]] = None) -> None:
        self.listings = listings
        self.instructions = instructions or []
        self.searches: List[SearchCriteria] = []

    async def fetch_active_listings(self) -> List[Listing]:
        return list(self.listings)

    async def search_listings(self, criteria: SearchCriteria) -> List[Listing]:
        self.searches.append(criteria)
        return filter_listings(self.listings, criteria)

    async def fetch_instructions(self) -> List[str]:
        return list(self.instructions)


def make_listing(
    listing_id: str,
    title: str,
    location: str,
    price: int,
    listing_type: ListingType = ListingType.HOUSE,
    image_url: str = "",
) -> Listing:
    return Listing(
        id=listing_id,
        title=title,
        location=location,
        price=price,
        type=listing_type,
        description=f"{title} en {location}",
        image_url=image_url,
    )


async def no_sleep(seconds: float) -> None:
    return None


@pytest.fixture
def prompts_dir() -> Path:
    return PROMPTS_DIR


@pytest.fixture
def sample_listings() -> List[Listing]:
    return [
        make_listing("1", "Casa en Escobedo", "Escobedo", 1_800_000, image_url="https://img.example/1.jpg"),
        make_listing("2", "Casa en Zuazua", "Zuazua", 4_000_000, image_url="https://img.example/2.jpg"),
        make_listing("3", "Departamento Zona TEC", "Zona TEC", 3_200_000, ListingType.APARTMENT),
        make_listing("4", "Terreno en Santiago", "Santiago", 900_000, ListingType.LAND),
    ]


@pytest.fixture
def make_orchestrator(tmp_path, sample_listings) -> Callable[..., Tuple[TurnOrchestrator, FakeTransport, ScriptedGenerator]]:
    def factory(
        generator: Optional[ScriptedGenerator] = None,
        transport: Optional[FakeTransport] = None,
        listings: Optional[List[Listing]] = None,
        blacklisted: Tuple[str, ...] = (),
        admin_numbers: Tuple[str, ...] = (),
        escalation_numbers: Tuple[str, ...] = (),
        clock: Optional[Callable[[], float]] = None,
        history_pairs: int = 5,
    ):
        generator = generator or ScriptedGenerator()
        transport = transport or FakeTransport()
        local = LocalBlacklist(tmp_path / "blacklist.json")
        for number in blacklisted:
            local.add(number)
        registry = BlacklistRegistry(local)
        kwargs = {}
        if clock is not None:
            kwargs["clock"] = clock
        orchestrator = TurnOrchestrator(
            history=ConversationHistory(history_pairs),
            sessions=SessionStore(30),
            classifier=IntentClassifier(generator, PROMPTS_DIR),
            composer=PromptComposer(PROMPTS_DIR),
            generator=generator,
            catalog=ListingCatalog(StaticListingSource(sample_listings if listings is None else listings)),
            policy=InputPolicy(registry, admin_numbers),
            admin=AdminCommands(local),
            transport=transport,
            sequencer=ReplySequencer(transport, sleep=no_sleep),
            escalation_numbers=escalation_numbers,
            **kwargs,
        )
        return orchestrator, transport, generator

    return factory
