"""Shared pytest fixtures for Branchwise tests."""

import pytest
from httpx import ASGITransport, AsyncClient

from branchwise.config import Settings, load_settings
from branchwise.conversations.router import get_conversation_service
from branchwise.conversations.service import ConversationService
from branchwise.db.connection import Database
from branchwise.export.router import get_export_service
from branchwise.export.service import ExportService
from branchwise.importer.router import get_import_service
from branchwise.importer.service import ImportService
from branchwise.main import app
from branchwise.share.router import get_share_service
from branchwise.share.service import ShareService
from branchwise.store import NodeStore


@pytest.fixture
async def db():
    """In-memory database for tests."""
    database = await Database.connect(":memory:")
    yield database
    await database.close()


@pytest.fixture
async def store(db):
    """NodeStore backed by in-memory database."""
    return NodeStore(db)


@pytest.fixture
def settings() -> Settings:
    """Bundled defaults, ignoring the caller's environment."""
    return load_settings(env={})


@pytest.fixture
async def client(store, settings):
    """Async test client with in-memory DB wired into the app."""
    service = ConversationService(store, settings)
    export_service = ExportService(store)
    import_service = ImportService(store)
    share_service = ShareService(store, export_service)
    app.dependency_overrides[get_conversation_service] = lambda: service
    app.dependency_overrides[get_export_service] = lambda: export_service
    app.dependency_overrides[get_import_service] = lambda: import_service
    app.dependency_overrides[get_share_service] = lambda: share_service
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client
    app.dependency_overrides.clear()
