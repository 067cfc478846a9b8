from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, StrictBool, field_validator


class Turn(BaseModel):
    """One retained conversation message."""
    role: Literal["user", "assistant"]
    content: str
    timestamp: float


class ClassificationPayload(BaseModel):
    """Strict schema for the structured answer of the classification prompt."""
    model_config = ConfigDict(extra="ignore")

    language: str = Field(min_length=2)
    is_domain_query: StrictBool
    needs_human: StrictBool
    is_about_capabilities: StrictBool
    is_image_request: StrictBool

    @field_validator("language")
    @classmethod
    def _two_letter_language(cls, value: str) -> str:
        code = value.strip().lower()[:2]
        if not code.isalpha() or len(code) != 2:
            raise ValueError("language must be a two-letter code")
        return code


class SendMessageRequest(BaseModel):
    """Request payload for POST /v1/messages."""
    model_config = ConfigDict(populate_by_name=True)

    number: str
    message: str = ""
    url_media: Optional[str] = Field(default=None, alias="urlMedia")


class RegisterRequest(BaseModel):
    """Request payload for POST /v1/register."""
    number: str
    name: Optional[str] = None


class RealEstateRequest(BaseModel):
    """Request payload for POST /v1/real-estate."""
    number: str
    question: str


class BlacklistRequest(BaseModel):
    """Request payload for POST /v1/blacklist."""
    number: str
    intent: Literal["add", "remove", "check"]


class BlacklistCheckResponse(BaseModel):
    status: str = "ok"
    number: str
    is_blacklisted: bool = Field(serialization_alias="isBlacklisted")


class BlacklistResponse(BaseModel):
    status: str = "ok"
    number: str
    intent: str


class BlacklistListResponse(BaseModel):
    status: str = "ok"
    blacklist: List[str]


class ConversationResponse(BaseModel):
    """Retained history for one user, as returned by the inspection endpoint."""
    user_id: str
    state: str
    pending_flow: str
    language: str
    messages: List[Turn]
