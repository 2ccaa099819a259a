# -*- coding: utf-8 -*-
"""Tests for the SQLAlchemy durable store."""

# Third-Party
import pytest

# First-Party
from chatwarden.errors import StorageUnavailable
from chatwarden.models import CommandKind, CustomCommandDefinition, EmojiUsage, RuleSet
from chatwarden.services.storage_service import SqlAlchemyStore


@pytest.mark.asyncio
async def test_unconnected_store_raises():
    store = SqlAlchemyStore("sqlite+aiosqlite://")
    with pytest.raises(StorageUnavailable) as exc_info:
        await store.load_all_policies()
    assert exc_info.value.operation == "load_all_policies"


@pytest.mark.asyncio
async def test_connect_failure_maps_to_storage_unavailable(tmp_path):
    missing_dir = tmp_path / "missing" / "nested" / "db.sqlite"
    store = SqlAlchemyStore(f"sqlite+aiosqlite:///{missing_dir}")
    with pytest.raises(StorageUnavailable) as exc_info:
        await store.connect()
    assert exc_info.value.operation == "connect"
    assert not store.connected


@pytest.mark.asyncio
async def test_policy_save_and_replace(store):
    await store.save_policy("t1", "roll", RuleSet(users=frozenset({"u1"})))
    await store.save_policy("t1", "roll", RuleSet(groups=frozenset({"g1"})))
    await store.save_policy("t2", "py", RuleSet(users=frozenset({"u2"})))

    snapshot = await store.load_all_policies()

    assert snapshot["t1"] == {"roll": RuleSet(groups=frozenset({"g1"}))}
    assert snapshot["t2"]["py"].users == frozenset({"u2"})


@pytest.mark.asyncio
async def test_empty_rule_set_is_stored(store):
    await store.save_policy("t1", "help", RuleSet())
    snapshot = await store.load_all_policies()
    assert snapshot["t1"]["help"].is_empty


@pytest.mark.asyncio
async def test_delete_policies_only_touches_tenant(store):
    await store.save_policy("t1", "roll", RuleSet(users=frozenset({"u1"})))
    await store.save_policy("t2", "roll", RuleSet(users=frozenset({"u1"})))
    await store.delete_policies("t1")
    snapshot = await store.load_all_policies()
    assert "t1" not in snapshot
    assert "t2" in snapshot


@pytest.mark.asyncio
async def test_custom_command_lifecycle(store):
    await store.upsert_custom_command(CustomCommandDefinition("t1", "greet", "hi", created_by="u1"))
    await store.upsert_custom_command(CustomCommandDefinition("t1", "greet", "print('hi')", kind=CommandKind.SCRIPT))
    await store.upsert_custom_command(CustomCommandDefinition("t2", "bye", "bye"))

    loaded = await store.load_all_custom_commands()
    assert [(d.tenant_id, d.name) for d in loaded] == [("t1", "greet"), ("t2", "bye")]
    assert loaded[0].kind is CommandKind.SCRIPT
    assert loaded[0].body == "print('hi')"

    assert await store.delete_custom_command("t1", "greet") is True
    assert await store.delete_custom_command("t1", "greet") is False
    assert await store.delete_custom_commands("t2") == 1
    assert await store.load_all_custom_commands() == []


@pytest.mark.asyncio
async def test_emoji_stats_replace_per_tenant(store):
    await store.save_emoji_stats({"t1": {"1": EmojiUsage("1", "pog", count=3), "2": EmojiUsage("2", "dance", animated=True, count=1)}})
    await store.save_emoji_stats({"t1": {"1": EmojiUsage("1", "pog", count=4)}, "t2": {"9": EmojiUsage("9", "wave", count=1)}})

    stats = await store.load_emoji_stats()

    assert set(stats["t1"]) == {"1"}
    assert stats["t1"]["1"].count == 4
    assert stats["t2"]["9"].name == "wave"


@pytest.mark.asyncio
async def test_emoji_settings_and_tenant_delete(store):
    await store.save_emoji_settings("t1", False)
    await store.save_emoji_settings("t1", True)
    await store.save_emoji_settings("t2", False)
    await store.save_emoji_stats({"t2": {"1": EmojiUsage("1", "pog", count=1)}})
    assert await store.load_emoji_settings() == {"t1": True, "t2": False}

    await store.delete_emoji_stats("t2")

    assert await store.load_emoji_settings() == {"t1": True}
    assert await store.load_emoji_stats() == {}


@pytest.mark.asyncio
async def test_close_marks_disconnected(store):
    await store.close()
    assert not store.connected
    with pytest.raises(StorageUnavailable):
        await store.load_emoji_settings()


def test_safe_url_masks_credentials():
    store = SqlAlchemyStore("postgresql+asyncpg://user:secret@db:5432/warden")
    assert store._safe_url() == "postgresql+asyncpg://***@db:5432/warden"
