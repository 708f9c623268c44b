"""Tests for collection_hooks.settings.HookSettings behavior."""

from typing import Any

import pytest
from pydantic import ValidationError

from collection_hooks import BulkWriteError, HookedCollection
from collection_hooks.settings import HookSettings, get_settings


def test_settings_defaults(monkeypatch: pytest.MonkeyPatch):
    """Defaults should be stable even if external env or .env sets values."""
    for var in [
        "COLLECTION_HOOKS_LOG_LEVEL",
        "COLLECTION_HOOKS_HOOK_BATCH_SIZE",
        "COLLECTION_HOOKS_ORDERED",
        "COLLECTION_HOOKS_ID_FIELD",
        "collection_hooks_ordered",
    ]:
        monkeypatch.delenv(var, raising=False)
    s = HookSettings(_env_file=None)  # ignore project .env file if present
    assert s.log_level == "INFO"
    assert s.hook_batch_size == 1000
    assert s.ordered is True
    assert s.id_field == "_id"


def test_env_overrides(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("COLLECTION_HOOKS_HOOK_BATCH_SIZE", "50")
    monkeypatch.setenv("COLLECTION_HOOKS_ORDERED", "false")
    monkeypatch.setenv("COLLECTION_HOOKS_LOG_LEVEL", "debug")
    s = HookSettings(_env_file=None)
    assert s.hook_batch_size == 50
    assert s.ordered is False
    assert s.log_level == "DEBUG"


def test_case_insensitive_env_name(monkeypatch: pytest.MonkeyPatch):
    # lower-case variable name should still be picked up due to case_sensitive=False
    monkeypatch.setenv("collection_hooks_id_field", "id")  # type: ignore[arg-type]
    s = HookSettings(_env_file=None)
    assert s.id_field == "id"


def test_invalid_values():
    with pytest.raises(ValidationError):
        HookSettings(_env_file=None, log_level="LOUD")
    with pytest.raises(ValidationError):
        HookSettings(_env_file=None, hook_batch_size=0)


def test_get_settings_singleton():
    a = get_settings()
    b = get_settings()
    assert a is b


@pytest.mark.parametrize(
    "override,expected",
    [
        ({"hook_batch_size": 7}, 7),
        ({"ordered": False}, False),
    ],
)
def test_direct_instantiation_with_overrides(override: dict[str, Any], expected: Any):
    s = HookSettings(_env_file=None, **override)
    key = next(iter(override.keys()))
    assert getattr(s, key) == expected


@pytest.mark.asyncio
async def test_unordered_default_from_settings(store):
    """Fan-out operations fall back to the configured ordering."""
    collection = HookedCollection(store, settings=HookSettings(_env_file=None, ordered=False))

    def reject_a(payload):
        if payload["_id"] == "a":
            raise ValueError("a rejected")

    collection.on("before.delete", reject_a)

    with pytest.raises(BulkWriteError):
        await collection.delete_many({})
    assert [document["_id"] for document in store.documents] == ["a"]


@pytest.mark.asyncio
async def test_custom_id_field(make_store):
    store = make_store([{"_id": 1, "key": "k1", "v": 0}])
    collection = HookedCollection(store, settings=HookSettings(_env_file=None, id_field="key"))
    seen = []
    collection.on("before.update", lambda payload: seen.append(payload["_id"]))

    await collection.update_one({"v": 0}, {"$set": {"v": 1}})

    assert seen == ["k1"]
    assert store.calls[0][1] == ({"v": 0}, {"key": 1})
