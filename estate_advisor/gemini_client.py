from __future__ import annotations

import logging
import time
from typing import Dict, Optional

import google.generativeai as genai

try:  # Prefer typed enums when available
    from google.generativeai import types as genai_types

    DEFAULT_SAFETY_SETTINGS = [
        {
            "category": genai_types.HarmCategory.HARM_CATEGORY_HARASSMENT,
            "threshold": genai_types.HarmBlockThreshold.BLOCK_ONLY_HIGH,
        },
        {
            "category": genai_types.HarmCategory.HARM_CATEGORY_HATE_SPEECH,
            "threshold": genai_types.HarmBlockThreshold.BLOCK_ONLY_HIGH,
        },
        {
            "category": genai_types.HarmCategory.HARM_CATEGORY_SEXUALLY_EXPLICIT,
            "threshold": genai_types.HarmBlockThreshold.BLOCK_ONLY_HIGH,
        },
        {
            "category": genai_types.HarmCategory.HARM_CATEGORY_DANGEROUS_CONTENT,
            "threshold": genai_types.HarmBlockThreshold.BLOCK_ONLY_HIGH,
        },
    ]
except (ImportError, AttributeError):  # pragma: no cover - older SDKs take plain strings
    DEFAULT_SAFETY_SETTINGS = [
        {"category": "HARM_CATEGORY_HARASSMENT", "threshold": "BLOCK_ONLY_HIGH"},
        {"category": "HARM_CATEGORY_HATE_SPEECH", "threshold": "BLOCK_ONLY_HIGH"},
        {"category": "HARM_CATEGORY_SEXUALLY_EXPLICIT", "threshold": "BLOCK_ONLY_HIGH"},
        {"category": "HARM_CATEGORY_DANGEROUS_CONTENT", "threshold": "BLOCK_ONLY_HIGH"},
    ]

from .config import Settings

logger = logging.getLogger("estate_advisor.gemini")

DEFAULT_TIMEOUT_SECONDS = 60.0


class GenerationError(Exception):
    """Raised when the text-generation call fails or returns nothing usable."""


class GeminiClient:
    """Thin async wrapper around the Gemini SDK with model caching and safety settings."""

    def __init__(self, settings: Settings, timeout: float = DEFAULT_TIMEOUT_SECONDS) -> None:
        """Purpose: Configure the Gemini SDK and initialize the model cache.
        Inputs/Outputs: Input is Settings and a request timeout; no return value.
        Side Effects / State: Configures the SDK API key and caches model instances.
        Dependencies: Uses google.generativeai and Settings from config.
        Failure Modes: Raises ValueError if API key or model name is missing.
        If Removed: Classification and answer generation cannot call the LLM.
        Testing Notes: Validate missing key raises ValueError.
        """
        # Configure API key and seed the default model cache.
        if not settings.gemini_api_key:
            raise ValueError("GEMINI_API_KEY is required")
        genai.configure(api_key=settings.gemini_api_key)
        self._timeout = timeout
        self._models: Dict[str, genai.GenerativeModel] = {}
        self._default_model = _normalize_model_name(settings.gemini_model)
        if not self._default_model:
            raise ValueError("GEMINI_MODEL is required")
        self._models[self._default_model] = genai.GenerativeModel(self._default_model)

    def _model_for(self, model_name: str, system_instruction: Optional[str]) -> genai.GenerativeModel:
        # System prompts change every turn, so only instruction-free models are cached.
        if system_instruction:
            return genai.GenerativeModel(model_name, system_instruction=system_instruction)
        if model_name not in self._models:
            self._models[model_name] = genai.GenerativeModel(model_name)
        return self._models[model_name]

    async def generate_text(
        self,
        prompt: str,
        system_instruction: Optional[str] = None,
        model: Optional[str] = None,
        temperature: float = 0.4,
        max_output_tokens: int = 1024,
    ) -> str:
        """Purpose: Generate a single text response from a prompt and system prompt.
        Inputs/Outputs: Inputs are prompt, optional system instruction, and config;
            returns the stripped response text.
        Side Effects / State: May add a model to the internal cache; logs latency.
        Dependencies: Uses genai.GenerativeModel.generate_content_async.
        Failure Modes: SDK errors and empty/blocked responses raise GenerationError.
        If Removed: The domain-query branch and delegated classification stop working.
        Testing Notes: Stub the SDK model and check GenerationError on empty text.
        """
        # Resolve model name, call the SDK without blocking the event loop.
        model_name = _normalize_model_name(model) if model else self._default_model
        generative_model = self._model_for(model_name, system_instruction)
        started = time.monotonic()
        try:
            response = await generative_model.generate_content_async(
                prompt,
                generation_config={
                    "temperature": temperature,
                    "max_output_tokens": max_output_tokens,
                },
                safety_settings=DEFAULT_SAFETY_SETTINGS,
                request_options={"timeout": self._timeout},
            )
            text: Optional[str] = getattr(response, "text", None)
        except Exception as exc:
            elapsed_ms = int((time.monotonic() - started) * 1000)
            logger.error("model=%s generation_failed elapsed_ms=%s error=%s", model_name, elapsed_ms, exc)
            raise GenerationError(str(exc)) from exc
        elapsed_ms = int((time.monotonic() - started) * 1000)
        cleaned = (text or "").strip()
        if not cleaned:
            logger.error("model=%s generation_empty elapsed_ms=%s", model_name, elapsed_ms)
            raise GenerationError("empty response from model")
        logger.info(
            "model=%s generation_ok elapsed_ms=%s prompt_chars=%s response_chars=%s",
            model_name,
            elapsed_ms,
            len(prompt),
            len(cleaned),
        )
        return cleaned


def _normalize_model_name(name: Optional[str]) -> str:
    """Purpose: Normalize model names by stripping prefix and whitespace.
    Inputs/Outputs: Input is a model name string; output is normalized name.
    Side Effects / State: None.
    Dependencies: None; used by GeminiClient.
    Failure Modes: Returns empty string for falsy input.
    If Removed: Model caching and selection may use invalid names and fail.
    Testing Notes: Ensure "models/foo" becomes "foo" and whitespace is trimmed.
    """
    # Strip "models/" prefix and whitespace.
    if not name:
        return ""
    cleaned = name.strip()
    if cleaned.startswith("models/"):
        return cleaned.split("/", 1)[1]
    return cleaned
