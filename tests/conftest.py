import os
import shutil
import tempfile
from pathlib import Path

# Settings are read at import time, so point them at scratch space first
_TMP = Path(tempfile.mkdtemp(prefix="vitalai-tests-"))
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_TMP / 'api.db'}"
os.environ["LOG_DIR"] = str(_TMP / "logs")
os.environ["BLOB_STORAGE_PATH"] = str(_TMP / "blobs")
os.environ["BLOB_STORAGE_BACKEND"] = "local"
os.environ["TUNING_STORAGE_BACKEND"] = "database"
os.environ["LLM_API_KEY"] = ""

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from vitalai.database.models import Base
from vitalai.services.blob_storage import LocalBlobStorage
from vitalai.services.document_service import DocumentService


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def blob_storage(tmp_path):
    return LocalBlobStorage(root=str(tmp_path / "blobs"), public_base_url="http://testserver")


@pytest.fixture
def document_service(blob_storage, session_factory):
    return DocumentService(blob_storage, session_factory, timeout=5.0)


@pytest.fixture
def client():
    """API client with a fresh database and blob directory per test."""
    from fastapi.testclient import TestClient
    from vitalai.main import app

    with TestClient(app) as test_client:
        yield test_client

    (_TMP / "api.db").unlink(missing_ok=True)
    shutil.rmtree(_TMP / "blobs", ignore_errors=True)
