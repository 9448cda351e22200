"""
Shared fixtures for the document writer backend tests.

Each test gets its own SQLite database (aiosqlite) and storage directory in
tmp_path, .docx templates freshly built with python-docx, a fake language
model and an in-memory image resolver.  The FastAPI app is driven through
httpx's ASGITransport with its services assigned onto ``app.state``.
"""
from __future__ import annotations

import base64
import os
from pathlib import Path
from typing import AsyncGenerator, Dict, List, Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

# Override DATABASE_URL *before* any app module is imported, so that
# settings.DATABASE_URL and the global engine never point at Postgres.
os.environ["DATABASE_URL"] = os.environ.get(
    "TEST_DATABASE_URL", "sqlite+aiosqlite:///./.pytest_docwriter.db"
)

from app.database import Base, get_db  # noqa: E402
from app.exceptions import GenerationFailed, LanguageModelNotConfigured  # noqa: E402
from app.main import app  # noqa: E402
from app.models import database_models  # noqa: E402,F401
from app.services.document_store import DocumentStore  # noqa: E402
from app.services.generation import DocumentGenerationService  # noqa: E402
from app.services.template_registry import load_template_registry  # noqa: E402
from app.services.template_renderer import TemplateRenderer  # noqa: E402
from scripts.build_templates import build_all  # noqa: E402

# 1x1 transparent PNG
PNG_BYTES = base64.b64decode(
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNkYPhfDwAChwGA60e6kgAAAABJRU5ErkJggg=="
)

RCA_REPLY = "\n---\n".join([
    "Database connection pool exhausted at 09:12 UTC.",
    "A misconfigured pool size caused a 40 minute outage of checkout.",
    "- 09:12 alerts fired\n- 09:20 on-call paged\n- 09:52 pool resized",
    "About 12% of customers could not complete purchases.",
    "Pool size raised and a saturation alert added.",
    "Capacity settings now go through review.",
])

GUIDE_REPLY = "\n---\n".join([
    "This guide walks through rotating an API key.",
    "Platform engineers with console access.",
    "Admin rights on the project.",
    "1. Create a new key\n2. Deploy it\n3. Revoke the old key",
    "Verify traffic before revoking the old key.",
])

RCA_INPUT = {
    "initial_findings": "Checkout failing with pool timeouts",
    "summary": "40 minute outage",
    "timeline": "09:12 to 09:52",
    "risk_assessment": "Revenue impact",
    "conclusion": "Pool resized",
}

GUIDE_INPUT = {
    "guide_overview": "Rotating an API key",
    "target_audience": "Platform engineers",
    "prerequisites": "Admin rights",
    "steps": "Create, deploy, revoke",
    "conclusion": "Done",
}


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------

class FakeLanguageModel:
    """Returns canned replies; records every prompt pair it was given."""

    model_name = "fake-gpt"

    def __init__(self, reply: str = RCA_REPLY, configured: bool = True) -> None:
        self.reply = reply
        self.configured = configured
        self.error: Optional[str] = None
        self.calls: List[Dict[str, str]] = []

    @property
    def is_configured(self) -> bool:
        return self.configured

    async def generate(self, system_prompt: str, user_prompt: str) -> str:
        if not self.configured:
            raise LanguageModelNotConfigured()
        self.calls.append({"system": system_prompt, "user": user_prompt})
        if self.error:
            raise GenerationFailed(f"Failed to generate content: {self.error}")
        return self.reply


class FakeImageResolver:
    def __init__(self, images: Optional[Dict[str, bytes]] = None) -> None:
        self.images = images or {}
        self.requested: List[str] = []

    async def resolve(self, reference: str) -> Optional[bytes]:
        self.requested.append(reference)
        return self.images.get(reference)


# ---------------------------------------------------------------------------
# Per-test fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def session_factory(tmp_path: Path) -> AsyncGenerator[async_sessionmaker, None]:
    """A fresh SQLite database with all tables created."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'docwriter.db'}", echo=False, poolclass=NullPool
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
def templates_dir(tmp_path: Path) -> Path:
    return Path(build_all(str(tmp_path / "templates")))


@pytest.fixture
def storage_dir(tmp_path: Path) -> Path:
    return tmp_path / "stored"


@pytest.fixture
def fake_llm() -> FakeLanguageModel:
    return FakeLanguageModel()


@pytest.fixture
def image_resolver() -> FakeImageResolver:
    return FakeImageResolver({"/uploads/step1.png": PNG_BYTES})


@pytest.fixture
def registry():
    return load_template_registry()


@pytest.fixture
def renderer(templates_dir: Path, image_resolver: FakeImageResolver) -> TemplateRenderer:
    return TemplateRenderer(str(templates_dir), image_resolver)


@pytest.fixture
def store(session_factory, storage_dir: Path) -> DocumentStore:
    return DocumentStore(session_factory, str(storage_dir))


@pytest.fixture
def service(registry, fake_llm, renderer, store) -> DocumentGenerationService:
    return DocumentGenerationService(registry, fake_llm, renderer, store)


@pytest_asyncio.fixture
async def client(
    session_factory, registry, fake_llm, renderer, store, service
) -> AsyncGenerator[AsyncClient, None]:
    """
    httpx AsyncClient wired to the FastAPI app, with the per-test services on
    ``app.state`` and the DB dependency using the per-test database.
    """

    async def _override_get_db():
        async with session_factory() as session:
            yield session

    app.state.registry = registry
    app.state.llm = fake_llm
    app.state.renderer = renderer
    app.state.document_store = store
    app.state.generation_service = service
    app.dependency_overrides[get_db] = _override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

AUTH_HEADERS = {
    "X-User-Id": "test-user-1",
    "X-User-Email": "alice@example.com",
}

AUTH_HEADERS_USER2 = {
    "X-User-Id": "test-user-2",
    "X-User-Email": "bob@example.com",
}
