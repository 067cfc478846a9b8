import hashlib
import hmac
import json

import httpx
import pytest

from estate_advisor.whatsapp_client import (
    MediaDownloadError,
    WhatsAppClient,
    WhatsAppClientError,
    media_type_for_url,
    parse_webhook_message,
)


def _envelope(message, name="Ana"):
    return {
        "object": "whatsapp_business_account",
        "entry": [
            {
                "changes": [
                    {
                        "value": {
                            "contacts": [{"profile": {"name": name}, "wa_id": message.get("from")}],
                            "messages": [message],
                        }
                    }
                ]
            }
        ],
    }


def test_parse_text_message():
    body = _envelope({"from": "5218112345678", "id": "wamid.1", "type": "text", "text": {"body": "Hola"}})
    message = parse_webhook_message(body)
    assert message.sender == "5218112345678"
    assert message.body == "Hola"
    assert message.push_name == "Ana"
    assert not message.has_media


def test_parse_image_message_uses_caption():
    body = _envelope(
        {
            "from": "5218112345678",
            "id": "wamid.2",
            "type": "image",
            "image": {"id": "media-1", "mime_type": "image/jpeg", "caption": "¿Cuánto cuesta esta?"},
        }
    )
    message = parse_webhook_message(body)
    assert message.has_media and message.is_image
    assert message.media_id == "media-1"
    assert message.body == "¿Cuánto cuesta esta?"


def test_status_callbacks_and_garbage_are_ignored():
    status = {"entry": [{"changes": [{"value": {"statuses": [{"status": "read"}]}}]}]}
    assert parse_webhook_message(status) is None
    assert parse_webhook_message({}) is None
    assert parse_webhook_message({"entry": "nope"}) is None


def test_media_type_for_url():
    assert media_type_for_url("https://cdn/x/photo.JPG?sig=1") == "image"
    assert media_type_for_url("https://cdn/x/tour.mp4") == "video"
    assert media_type_for_url("https://cdn/x/ficha.pdf") == "document"


@pytest.mark.asyncio
async def test_send_text_posts_cloud_api_payload():
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(200, json={"messages": [{"id": "wamid.out"}]})

    client = WhatsAppClient("123", "token", transport=httpx.MockTransport(handler))
    await client.send_text("+52 1 81 1234 5678", "Hola")

    sent = json.loads(requests[0].content)
    assert requests[0].url.path == "/v18.0/123/messages"
    assert requests[0].headers["Authorization"] == "Bearer token"
    assert sent["to"] == "5218112345678"
    assert sent["text"]["body"] == "Hola"


@pytest.mark.asyncio
async def test_send_error_raises_client_error():
    transport = httpx.MockTransport(lambda request: httpx.Response(400, json={"error": {"message": "bad number"}}))
    client = WhatsAppClient("123", "token", transport=transport)
    with pytest.raises(WhatsAppClientError) as excinfo:
        await client.send_text("521", "Hola")
    assert str(excinfo.value) == "bad number"
    assert excinfo.value.status_code == 400


@pytest.mark.asyncio
async def test_missing_credentials_fail_on_send():
    with pytest.raises(WhatsAppClientError):
        await WhatsAppClient("", "").send_text("521", "Hola")


@pytest.mark.asyncio
async def test_download_media_resolves_url_then_fetches():
    def handler(request):
        if request.url.path.endswith("/media-1"):
            return httpx.Response(200, json={"url": "https://lookaside.example/file"})
        return httpx.Response(200, content=b"bytes")

    client = WhatsAppClient("123", "token", transport=httpx.MockTransport(handler))
    assert await client.download_media("media-1") == b"bytes"


@pytest.mark.asyncio
async def test_download_media_without_url_raises():
    client = WhatsAppClient("123", "token", transport=httpx.MockTransport(lambda request: httpx.Response(200, json={})))
    with pytest.raises(MediaDownloadError):
        await client.download_media("media-1")


@pytest.mark.asyncio
async def test_download_media_with_non_object_metadata_raises():
    client = WhatsAppClient("123", "token", transport=httpx.MockTransport(lambda request: httpx.Response(200, json=["url"])))
    with pytest.raises(MediaDownloadError):
        await client.download_media("media-1")


def test_signature_and_token_verification():
    client = WhatsAppClient("123", "token", app_secret="secret", verify_token="verify-me")
    body = b'{"entry": []}'
    signature = "sha256=" + hmac.new(b"secret", body, hashlib.sha256).hexdigest()

    assert client.verify_webhook_signature(body, signature)
    assert not client.verify_webhook_signature(body + b" ", signature)
    assert not client.verify_webhook_signature(body, None)
    assert client.verify_webhook_token("verify-me")
    assert not client.verify_webhook_token("other")
    assert WhatsAppClient("123", "token").verify_webhook_signature(body, None)
