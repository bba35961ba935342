"""Branchwise FastAPI application entry point."""

import logging
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

from anthropic import AsyncAnthropic
from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from branchwise.config import load_settings
from branchwise.conversations.router import get_conversation_service, get_generation_service
from branchwise.conversations.router import router as conversations_router
from branchwise.conversations.service import ConversationService
from branchwise.db.connection import Database
from branchwise.export.router import get_export_service
from branchwise.export.router import router as export_router
from branchwise.export.service import ExportService
from branchwise.generation.rate_limit import RateLimiter
from branchwise.generation.service import GenerationService
from branchwise.importer.router import get_import_service
from branchwise.importer.router import router as import_router
from branchwise.importer.service import ImportService
from branchwise.providers.anthropic import AnthropicProvider
from branchwise.providers.openai import OpenAIProvider
from branchwise.providers.registry import (
    clear_providers,
    get_all_providers,
    get_default_provider,
    register_provider,
)
from branchwise.share.router import get_share_service
from branchwise.share.router import public_router as public_share_router
from branchwise.share.router import router as share_router
from branchwise.share.service import ShareService
from branchwise.store import NodeStore

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage database lifecycle and service wiring."""
    # Load .env from backend/ directory (secrets stay out of shell profile)
    load_dotenv(Path(__file__).resolve().parent.parent / ".env")

    settings = load_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    db = await Database.connect(settings.database_path)
    store = NodeStore(db)

    # Providers are registered for whichever API keys are present
    if os.environ.get("OPENAI_API_KEY"):
        register_provider(OpenAIProvider(api_key=os.environ["OPENAI_API_KEY"]))

    if os.environ.get("ANTHROPIC_API_KEY"):
        register_provider(AnthropicProvider(AsyncAnthropic()))

    if not get_all_providers():
        logger.warning("No completion provider configured; AI replies are unavailable")

    conversation_service = ConversationService(store, settings)
    app.dependency_overrides[get_conversation_service] = lambda: conversation_service

    rate_limiter = RateLimiter(
        settings.rate_limit.max_requests, settings.rate_limit.window_seconds
    )
    gen_service = GenerationService(store, rate_limiter, settings)
    app.dependency_overrides[get_generation_service] = lambda: gen_service

    export_service = ExportService(store)
    app.dependency_overrides[get_export_service] = lambda: export_service

    import_service = ImportService(store)
    app.dependency_overrides[get_import_service] = lambda: import_service

    share_service = ShareService(store, export_service)
    await share_service.purge_expired()
    app.dependency_overrides[get_share_service] = lambda: share_service

    app.state.db = db
    app.state.settings = settings
    yield

    clear_providers()
    await db.close()


app = FastAPI(
    title="Branchwise",
    description="Branching conversation trees with an AI assistant",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173"],
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(conversations_router)
app.include_router(export_router)
app.include_router(import_router)
app.include_router(share_router)
app.include_router(public_share_router)


@app.get("/api/health")
async def health() -> dict:
    return {"status": "ok", "version": "0.1.0"}


@app.get("/api/providers")
async def providers(request: Request) -> list[dict]:
    settings = getattr(request.app.state, "settings", None)
    default = None
    if settings is not None and get_all_providers():
        default = get_default_provider(settings.generation.default_provider).name
    return [
        {
            "name": p.name,
            "available": True,
            "default": p.name == default,
            "models": p.suggested_models,
        }
        for p in get_all_providers()
    ]
