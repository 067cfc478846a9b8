"""Intent and language classification for one inbound message.

Two strategies are combined. The local keyword matcher runs first against the listing
snapshot and is always available. When it does not produce a strong match the message
is delegated to the model with a fixed JSON-only prompt, and the parsed answer is
validated against ClassificationPayload before anything routes on it.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Protocol, Sequence, Tuple

from pydantic import ValidationError

from .listings import Listing, SearchCriteria
from .matcher import detect_language, is_inventory_request, match_listings
from .models import ClassificationPayload
from .prompt_loader import load_prompt, render_prompt
from .utils import safe_json_loads, strip_accents

logger = logging.getLogger("estate_advisor.classifier")

CLASSIFICATION_PROMPT = "classification.txt"
DEFAULT_LANGUAGE = "es"

CAPABILITY_RE = re.compile(
    r"\b(que (puedes|sabes) hacer|que haces|en que (me )?(puedes|podrias) ayudar|"
    r"que servicios|tus servicios|sus servicios|como funcionas|"
    r"what can you do|what do you do|how can you help|what services|your services)\b"
)
HUMAN_RE = re.compile(
    r"\b(asesor humano|persona real|hablar con (un|una|alguien|el|la)|agente humano|"
    r"quiero un asesor|me (pueden|puedes) llamar|llamenme|llamame|"
    r"talk to (a|an|someone|somebody)|real person|human agent|speak (to|with) (a|an|someone)|"
    r"call me)\b"
)
IMAGE_RE = re.compile(r"\b(fotos?|imagen(es)?|fotografias?|photos?|pictures?|images?|pics?)\b")


class TextGenerator(Protocol):
    async def generate_text(
        self,
        prompt: str,
        system_instruction: Optional[str] = None,
        model: Optional[str] = None,
        temperature: float = 0.4,
        max_output_tokens: int = 1024,
    ) -> str: ...


@dataclass
class ClassificationResult:
    """Routing decision for one message; flags are resolved by branch priority."""
    language: str = DEFAULT_LANGUAGE
    is_domain_query: bool = True
    needs_human: bool = False
    is_about_capabilities: bool = False
    is_image_request: bool = False
    is_inventory_query: bool = False
    matched_listings: List[Listing] = field(default_factory=list)
    criteria: SearchCriteria = field(default_factory=SearchCriteria)
    source: str = "default"


def _phrase_flags(text: str) -> Tuple[bool, bool, bool]:
    # Accent-free lowercase keeps "¿qué puedes hacer?" matching.
    lowered = strip_accents(text)
    return (
        bool(CAPABILITY_RE.search(lowered)),
        bool(HUMAN_RE.search(lowered)),
        bool(IMAGE_RE.search(lowered)),
    )


class IntentClassifier:
    """Classifies messages locally and, when needed, through the model."""

    def __init__(self, generator: TextGenerator, prompts_dir: Path, model: Optional[str] = None) -> None:
        """Purpose: Wire the classifier to a text generator and its prompt template.
        Inputs/Outputs: Inputs are a generator, prompts directory, optional model name.
        Side Effects / State: Stores collaborators only.
        Dependencies: Any object exposing async generate_text (GeminiClient in production).
        Failure Modes: None at construction; a missing template surfaces as a degraded
            classification at call time.
        If Removed: Every message would be routed as a general domain query.
        Testing Notes: Inject a scripted generator returning fixed strings.
        """
        self._generator = generator
        self._prompt_path = prompts_dir / CLASSIFICATION_PROMPT
        self._model = model

    async def classify(self, text: str, listings: Sequence[Listing]) -> ClassificationResult:
        """Purpose: Produce a ClassificationResult for one message; never raises.
        Inputs/Outputs: Inputs are the raw message and the turn's listing snapshot;
            output is a ClassificationResult.
        Side Effects / State: May call the model once; logs the outcome source.
        Dependencies: match_listings, detect_language, ClassificationPayload.
        Failure Modes: Call errors, unparseable output, and schema violations all
            return the safe default (Spanish, domain query) with local matches kept.
        If Removed: The orchestrator has no basis for branch selection.
        Testing Notes: A generator that raises or returns prose must still yield a
            well-formed result with is_domain_query True.
        """
        # Local match first; a strong hit answers without a model call.
        criteria, matches = match_listings(text, listings)
        inventory = is_inventory_request(text)
        is_inventory_query = inventory or not criteria.is_empty()
        wants_capabilities, wants_human, wants_images = _phrase_flags(text)

        if not text or not text.strip():
            return ClassificationResult(criteria=criteria, source="default")

        if inventory or matches:
            result = ClassificationResult(
                language=detect_language(text),
                is_domain_query=True,
                needs_human=wants_human,
                is_about_capabilities=wants_capabilities,
                is_image_request=wants_images,
                is_inventory_query=True,
                matched_listings=list(matches),
                criteria=criteria,
                source="local",
            )
            logger.info(
                "classification source=local language=%s matches=%s inventory=%s",
                result.language,
                len(matches),
                inventory,
            )
            return result

        payload = await self._delegate(text)
        if payload is None:
            return ClassificationResult(
                matched_listings=list(matches),
                criteria=criteria,
                source="default",
            )

        result = ClassificationResult(
            language=payload.language,
            is_domain_query=payload.is_domain_query,
            needs_human=payload.needs_human or wants_human,
            is_about_capabilities=payload.is_about_capabilities or wants_capabilities,
            is_image_request=payload.is_image_request or wants_images,
            is_inventory_query=is_inventory_query,
            matched_listings=list(matches),
            criteria=criteria,
            source="model",
        )
        logger.info(
            "classification source=model language=%s domain=%s human=%s capabilities=%s images=%s",
            result.language,
            result.is_domain_query,
            result.needs_human,
            result.is_about_capabilities,
            result.is_image_request,
        )
        return result

    async def _delegate(self, text: str) -> Optional[ClassificationPayload]:
        """Purpose: Ask the model for the structured classification and validate it.
        Inputs/Outputs: Input is the message; output is a payload or None on failure.
        Side Effects / State: One model call; logs degraded outcomes.
        Dependencies: load_prompt, render_prompt, safe_json_loads, ClassificationPayload.
        Failure Modes: Returns None for any call, parse, or validation failure.
        If Removed: Language detection and nuanced intents depend on keywords only.
        Testing Notes: Fenced JSON with leading prose must still validate.
        """
        try:
            prompt = render_prompt(load_prompt(self._prompt_path), message=text)
            raw = await self._generator.generate_text(prompt, model=self._model, temperature=0.0)
        except Exception as exc:
            logger.warning("classification_degraded reason=call_failed error=%s", exc)
            return None
        raw = raw if isinstance(raw, str) else ""
        data = safe_json_loads(raw)
        if data is None:
            logger.warning("classification_degraded reason=unparseable raw=%r", raw[:200])
            return None
        try:
            return ClassificationPayload.model_validate(data)
        except ValidationError as exc:
            logger.warning("classification_degraded reason=invalid_payload errors=%s", exc.error_count())
            return None
