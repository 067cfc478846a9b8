"""WhatsApp Cloud API connector: outbound sends, media download, webhook parsing."""

from __future__ import annotations

import hashlib
import hmac
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from .config import Settings
from .utils import normalize_phone

logger = logging.getLogger("estate_advisor.whatsapp")

GRAPH_API_BASE = "https://graph.facebook.com"
MAX_TEXT_CHARS = 4096
MEDIA_MESSAGE_TYPES = ("image", "video", "audio", "document", "sticker")
IMAGE_EXTENSIONS = (".jpg", ".jpeg", ".png", ".webp", ".gif")
VIDEO_EXTENSIONS = (".mp4", ".3gp")


class WhatsAppClientError(Exception):
    """Raised for WhatsApp API errors and missing credentials."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class MediaDownloadError(WhatsAppClientError):
    """Raised when an inbound media file cannot be fetched."""


@dataclass
class InboundMessage:
    """One inbound chat message; media bytes are fetched on demand."""
    sender: str
    body: str = ""
    message_id: str = ""
    has_media: bool = False
    media_id: Optional[str] = None
    media_mime: Optional[str] = None
    push_name: Optional[str] = None

    @property
    def is_image(self) -> bool:
        return self.has_media and (self.media_mime or "").startswith("image/")


def media_type_for_url(url: str) -> str:
    path = url.split("?", 1)[0].lower()
    if path.endswith(IMAGE_EXTENSIONS):
        return "image"
    if path.endswith(VIDEO_EXTENSIONS):
        return "video"
    return "document"


class WhatsAppClient:
    """Async client for the WhatsApp Cloud API."""

    def __init__(
        self,
        phone_number_id: str,
        access_token: str,
        api_version: str = "v18.0",
        app_secret: str = "",
        verify_token: str = "",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """Purpose: Store credentials and endpoints for the Cloud API.
        Inputs/Outputs: Inputs are credentials, API version, webhook secrets; no return.
        Side Effects / State: Logs a warning when credentials are missing.
        Dependencies: httpx for every request.
        Failure Modes: Missing credentials only fail when a request is attempted.
        If Removed: Nothing can be delivered to or fetched from WhatsApp.
        Testing Notes: Pass httpx.MockTransport to capture request payloads.
        """
        self._phone_number_id = phone_number_id
        self._access_token = access_token
        self._base_url = f"{GRAPH_API_BASE}/{api_version}"
        self._app_secret = app_secret
        self._verify_token = verify_token
        self._timeout = timeout
        self._transport = transport
        if not phone_number_id or not access_token:
            logger.warning("whatsapp_credentials_missing phone_number_id_set=%s", bool(phone_number_id))

    @classmethod
    def from_settings(cls, settings: Settings) -> "WhatsAppClient":
        return cls(
            phone_number_id=settings.whatsapp_phone_number_id,
            access_token=settings.whatsapp_access_token,
            api_version=settings.whatsapp_api_version,
            app_secret=settings.whatsapp_app_secret,
            verify_token=settings.whatsapp_verify_token,
        )

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self._access_token}"}

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._timeout, transport=self._transport)

    async def _post_message(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Purpose: POST one message payload to the messages endpoint.
        Inputs/Outputs: Input is the JSON payload; output is the decoded response.
        Side Effects / State: Performs an HTTP POST.
        Dependencies: httpx.AsyncClient.
        Failure Modes: Missing credentials, network errors and HTTP >= 400 raise
            WhatsAppClientError.
        If Removed: send_text and send_media cannot deliver anything.
        Testing Notes: A 400 with {"error": {"message": "x"}} raises with message "x".
        """
        if not self._phone_number_id or not self._access_token:
            raise WhatsAppClientError("WhatsApp credentials not configured")
        url = f"{self._base_url}/{self._phone_number_id}/messages"
        try:
            async with self._client() as client:
                response = await client.post(url, headers=self._headers(), json=payload)
        except httpx.HTTPError as exc:
            raise WhatsAppClientError(f"send failed: {exc}") from exc
        try:
            result = response.json()
        except ValueError:
            result = {}
        if response.status_code >= 400:
            error = result.get("error", {}) if isinstance(result, dict) else {}
            message = error.get("message", "Unknown error") if isinstance(error, dict) else "Unknown error"
            logger.error("whatsapp_api_error status=%s error=%s", response.status_code, message)
            raise WhatsAppClientError(message, status_code=response.status_code)
        return result if isinstance(result, dict) else {}

    async def send_text(self, to: str, text: str) -> None:
        recipient = normalize_phone(to)
        if len(text) > MAX_TEXT_CHARS:
            logger.warning("to=%s message_truncated chars=%s", recipient, len(text))
            text = text[: MAX_TEXT_CHARS - 3] + "..."
        await self._post_message(
            {
                "messaging_product": "whatsapp",
                "recipient_type": "individual",
                "to": recipient,
                "type": "text",
                "text": {"preview_url": False, "body": text},
            }
        )
        logger.info("to=%s sent_text chars=%s", recipient, len(text))

    async def send_media(self, to: str, media_url: str, caption: str = "") -> None:
        recipient = normalize_phone(to)
        media_type = media_type_for_url(media_url)
        media: Dict[str, Any] = {"link": media_url}
        if caption:
            media["caption"] = caption
        await self._post_message(
            {
                "messaging_product": "whatsapp",
                "recipient_type": "individual",
                "to": recipient,
                "type": media_type,
                media_type: media,
            }
        )
        logger.info("to=%s sent_media type=%s", recipient, media_type)

    async def download_media(self, media_id: str) -> bytes:
        """Purpose: Fetch the bytes of an inbound media attachment.
        Inputs/Outputs: Input is the media id from the webhook; output is raw bytes.
        Side Effects / State: Two HTTP GETs (metadata, then the file itself).
        Dependencies: httpx.AsyncClient and the Graph media endpoint.
        Failure Modes: Any HTTP or network failure raises MediaDownloadError.
        If Removed: The image branch cannot look at what the user sent.
        Testing Notes: Metadata without a "url" must raise MediaDownloadError.
        """
        # Resolve the short-lived download URL, then fetch it with the same token.
        if not self._access_token:
            raise MediaDownloadError("WhatsApp credentials not configured")
        try:
            async with self._client() as client:
                meta = await client.get(f"{self._base_url}/{media_id}", headers=self._headers())
                if meta.status_code >= 400:
                    raise MediaDownloadError(f"media lookup returned HTTP {meta.status_code}", meta.status_code)
                body = meta.json()
                url = body.get("url") if isinstance(body, dict) else None
                if not url:
                    raise MediaDownloadError("media lookup returned no url")
                response = await client.get(url, headers=self._headers())
        except httpx.HTTPError as exc:
            raise MediaDownloadError(f"media download failed: {exc}") from exc
        except ValueError as exc:
            raise MediaDownloadError("media lookup returned invalid JSON") from exc
        if response.status_code >= 400:
            raise MediaDownloadError(f"media download returned HTTP {response.status_code}", response.status_code)
        return response.content

    def verify_webhook_signature(self, payload: bytes, signature: Optional[str]) -> bool:
        """Purpose: Check the X-Hub-Signature-256 header against the app secret.
        Inputs/Outputs: Inputs are the raw body and header value; output is a bool.
        Side Effects / State: Logs when verification is skipped.
        Dependencies: hmac, hashlib.
        Failure Modes: No app secret configured means every payload is accepted.
        If Removed: Anyone could post forged webhook events.
        Testing Notes: Sign a body with the secret and expect True; tamper and expect False.
        """
        if not self._app_secret:
            logger.debug("webhook_signature_skipped reason=no_app_secret")
            return True
        if not signature or not signature.startswith("sha256="):
            return False
        expected = hmac.new(self._app_secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()
        return hmac.compare_digest(signature[len("sha256="):], expected)

    def verify_webhook_token(self, token: Optional[str]) -> bool:
        return bool(self._verify_token) and token == self._verify_token


def parse_webhook_message(body: Dict[str, Any]) -> Optional[InboundMessage]:
    """Purpose: Extract the first user message from a Cloud API webhook payload.
    Inputs/Outputs: Input is the decoded JSON body; output is InboundMessage or None.
    Side Effects / State: None.
    Dependencies: Cloud API payload shape entry[0].changes[0].value.messages[0].
    Failure Modes: Status callbacks and malformed payloads return None.
    If Removed: The webhook endpoint cannot feed the orchestrator.
    Testing Notes: Image messages carry caption as body and the media id.
    """
    # Meta also posts delivery statuses here; only the first message is taken.
    try:
        value = body["entry"][0]["changes"][0]["value"]
        messages = value.get("messages") or []
    except (KeyError, IndexError, TypeError, AttributeError):
        return None
    if not messages or not isinstance(messages[0], dict):
        return None
    msg = messages[0]
    sender = str(msg.get("from") or "")
    if not sender:
        return None
    message = InboundMessage(sender=sender, message_id=str(msg.get("id") or ""))
    msg_type = msg.get("type")
    if msg_type == "text":
        message.body = str((msg.get("text") or {}).get("body") or "")
    elif msg_type == "interactive":
        interactive = msg.get("interactive") or {}
        reply = interactive.get("button_reply") or interactive.get("list_reply") or {}
        message.body = str(reply.get("title") or "")
    elif msg_type in MEDIA_MESSAGE_TYPES:
        media = msg.get(msg_type) or {}
        message.has_media = True
        message.media_id = media.get("id")
        message.media_mime = media.get("mime_type") or ("image/jpeg" if msg_type == "image" else None)
        message.body = str(media.get("caption") or "")
    contacts = value.get("contacts") or []
    if contacts and isinstance(contacts[0], dict):
        message.push_name = (contacts[0].get("profile") or {}).get("name")
    return message
