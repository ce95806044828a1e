import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from vitalai.exceptions import StorageUnavailable
from vitalai.services.key_value_store import (
    DatabaseKeyValueStore,
    InMemoryKeyValueStore,
    NullKeyValueStore,
    build_key_value_store,
)


@pytest.mark.asyncio
async def test_database_store_set_get_overwrite_remove(session_factory):
    store = DatabaseKeyValueStore(session_factory, timeout=5.0)

    assert await store.get("vital_ai_llm_parameters") is None

    await store.set("vital_ai_llm_parameters", '{"default": {}}')
    assert await store.get("vital_ai_llm_parameters") == '{"default": {}}'

    await store.set("vital_ai_llm_parameters", "[]")
    assert await store.get("vital_ai_llm_parameters") == "[]"

    await store.remove("vital_ai_llm_parameters")
    assert await store.get("vital_ai_llm_parameters") is None


@pytest.mark.asyncio
async def test_database_store_errors_become_storage_unavailable(tmp_path):
    # No tables created, so every statement fails
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'empty.db'}")
    store = DatabaseKeyValueStore(async_sessionmaker(engine, expire_on_commit=False))

    with pytest.raises(StorageUnavailable):
        await store.get("anything")
    with pytest.raises(StorageUnavailable):
        await store.set("anything", "value")

    await engine.dispose()


@pytest.mark.asyncio
async def test_in_memory_store():
    store = InMemoryKeyValueStore({"a": "1"})
    assert await store.get("a") == "1"
    await store.set("b", "2")
    await store.remove("a")
    await store.remove("missing")
    assert await store.get("a") is None
    assert await store.get("b") == "2"


@pytest.mark.asyncio
async def test_null_store_keeps_nothing():
    store = NullKeyValueStore()
    await store.set("a", "1")
    assert await store.get("a") is None


@pytest.mark.asyncio
async def test_build_key_value_store_selects_backend(session_factory):
    assert isinstance(build_key_value_store("database", session_factory, 1.0), DatabaseKeyValueStore)
    assert isinstance(build_key_value_store("MEMORY", session_factory, 1.0), InMemoryKeyValueStore)
    assert isinstance(build_key_value_store("none", session_factory, 1.0), NullKeyValueStore)
    assert isinstance(build_key_value_store("redis", session_factory, 1.0), NullKeyValueStore)
