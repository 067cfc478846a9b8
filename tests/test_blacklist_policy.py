import json

import httpx
import pytest

from estate_advisor.admin import AdminCommands
from estate_advisor.blacklist import BlacklistRegistry, ContactListError, LocalBlacklist, RemoteContactList
from estate_advisor.policy import InputPolicy, RejectReason
from estate_advisor.whatsapp_client import InboundMessage


def _contacts_transport(numbers, calls=None):
    def handler(request):
        if calls is not None:
            calls.append(request)
        return httpx.Response(200, json=[{"numero": number} for number in numbers])

    return httpx.MockTransport(handler)


def test_local_blacklist_persists_and_reloads(tmp_path):
    path = tmp_path / "blacklist.json"
    blacklist = LocalBlacklist(path)
    assert blacklist.add("+52 1 81 1234 5678") is True
    assert blacklist.add("5218112345678") is False

    reloaded = LocalBlacklist(path)
    assert reloaded.contains("8112345678")
    assert json.loads(path.read_text(encoding="utf-8")) == {"numbers": ["5218112345678"]}

    assert reloaded.remove("528112345678") is True
    assert reloaded.all() == []


def test_malformed_file_gives_empty_blacklist(tmp_path):
    path = tmp_path / "blacklist.json"
    path.write_text("{nope", encoding="utf-8")
    assert LocalBlacklist(path).all() == []


@pytest.mark.asyncio
async def test_remote_list_is_cached_for_ttl(tmp_path):
    calls = []
    now = [0.0]
    remote = RemoteContactList(
        "https://db.example",
        "key",
        ttl_seconds=60,
        transport=_contacts_transport(["5218110000000"], calls),
        clock=lambda: now[0],
    )
    assert await remote.contains("8110000000")
    assert not await remote.contains("8119999999")
    assert len(calls) == 1
    now[0] = 61.0
    await remote.contains("8110000000")
    assert len(calls) == 2
    assert calls[0].url.params["select"] == "numero"


@pytest.mark.asyncio
async def test_registry_is_the_union_of_both_sources(tmp_path):
    local = LocalBlacklist(tmp_path / "b.json")
    local.add("5218111111111")
    remote = RemoteContactList("https://db.example", "key", transport=_contacts_transport(["5218122222222"]))
    registry = BlacklistRegistry(local, remote)

    assert await registry.contains("5218111111111")
    assert await registry.contains("5218122222222")
    assert not await registry.contains("5218133333333")


@pytest.mark.asyncio
async def test_remote_failure_is_treated_as_not_listed(tmp_path):
    local = LocalBlacklist(tmp_path / "b.json")
    local.add("5218111111111")
    remote = RemoteContactList(
        "https://db.example", "key", transport=httpx.MockTransport(lambda request: httpx.Response(500))
    )
    with pytest.raises(ContactListError):
        await remote.contains("5218122222222")

    registry = BlacklistRegistry(local, remote)
    assert await registry.contains("5218111111111")
    assert not await registry.contains("5218122222222")


@pytest.mark.asyncio
async def test_policy_rejections(tmp_path):
    local = LocalBlacklist(tmp_path / "b.json")
    local.add("5218111111111")
    policy = InputPolicy(BlacklistRegistry(local), admin_numbers=["5218199999999"])

    assert await policy.check(InboundMessage(sender="5218111111111", body="casa en venta")) == RejectReason.BLACKLISTED
    assert await policy.check(InboundMessage(sender="5218122222222", body="   ")) == RejectReason.EMPTY
    assert await policy.check(InboundMessage(sender="5218122222222", body="/blacklist list")) == RejectReason.ADMIN_COMMAND
    assert await policy.check(InboundMessage(sender="5218122222222", body="hola")) is None
    assert await policy.check(InboundMessage(sender="5218122222222", body="", has_media=True)) is None
    assert policy.is_admin("+52 1 81 9999 9999")
    assert not policy.is_admin("5218122222222")


@pytest.mark.asyncio
async def test_saved_contact_filter_is_opt_in(tmp_path):
    registry = BlacklistRegistry(LocalBlacklist(tmp_path / "b.json"))
    message = InboundMessage(sender="5218122222222", body="hola", push_name="Ana")

    assert await InputPolicy(registry).check(message) is None
    assert await InputPolicy(registry, ignore_saved_contacts=True).check(message) == RejectReason.SAVED_CONTACT
    unnamed = InboundMessage(sender="5218122222222", body="hola", push_name="5218122222222")
    assert await InputPolicy(registry, ignore_saved_contacts=True).check(unnamed) is None


def test_admin_commands(tmp_path):
    local = LocalBlacklist(tmp_path / "b.json")
    admin = AdminCommands(local)

    assert "agregado" in admin.execute("admin", "/blacklist add +52 81 1234 5678")
    assert admin.execute("admin", "/blacklist check 528112345678") == "528112345678 está en la lista negra."
    assert "528112345678" in admin.execute("admin", "/blacklist list")
    assert "eliminado" in admin.execute("admin", "/blacklist remove 528112345678")
    assert admin.execute("admin", "/help").startswith("Comandos disponibles")
    assert admin.execute("admin", "/blacklist add").startswith("Comandos disponibles")
