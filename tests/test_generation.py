"""Tests for the generation orchestrator and the language-model client."""
import io
import os
from datetime import date

import httpx
import pytest
from docx import Document as DocxDocument
from sqlalchemy import select

from app.exceptions import (
    EmptyInput,
    GenerationFailed,
    LanguageModelNotConfigured,
    TemplateNotFound,
    UnknownTemplateKind,
)
from app.models.database_models import GenerationLog
from app.models.schemas import DocumentQuery, Identity
from app.services.generation import section_map_from_payload
from app.services.llm_client import AzureOpenAIClient
from app.services.section_parser import STRATEGY_DELIMITER, Step
from tests.conftest import GUIDE_INPUT, GUIDE_REPLY, RCA_INPUT

ALICE = Identity(user_id="user-alice", email="alice@example.com")


# ---------------------------------------------------------------------------
# generate_content
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_generate_content_builds_prompts_and_parses(service, fake_llm):
    content = await service.generate_content("rca", RCA_INPUT)

    assert content.section_map.strategy == STRATEGY_DELIMITER
    assert content.section_map["risk_impact"] == "About 12% of customers could not complete purchases."
    assert content.model == "fake-gpt"
    assert content.generation_time_ms >= 0

    call = fake_llm.calls[0]
    assert "Root Cause Analysis" in call["system"]
    assert "Initial Findings: Checkout failing with pool timeouts" in call["user"]


@pytest.mark.asyncio
async def test_generate_content_validates_input(service, fake_llm):
    with pytest.raises(UnknownTemplateKind) as exc_info:
        await service.generate_content("haiku", RCA_INPUT)
    assert "rca" in exc_info.value.details["available_templates"]

    with pytest.raises(EmptyInput):
        await service.generate_content("rca", {"initial_findings": "   ", "summary": ""})

    assert fake_llm.calls == []


@pytest.mark.asyncio
async def test_guide_steps_are_attached(service, fake_llm):
    fake_llm.reply = GUIDE_REPLY
    steps = [Step(step_number=1, title="Create", image="/uploads/step1.png")]

    content = await service.generate_content("step-by-step-guide", GUIDE_INPUT, steps)

    assert content.section_map.structured_steps == tuple(steps)
    assert content.original_sections["structuredSteps"][0]["image"] == "/uploads/step1.png"


@pytest.mark.asyncio
async def test_report_kinds_ignore_steps(service):
    content = await service.generate_content("rca", RCA_INPUT, [Step(step_number=1, title="x")])
    assert content.section_map.structured_steps == ()
    assert "structuredSteps" not in content.original_sections


# ---------------------------------------------------------------------------
# generate_and_store
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_generate_and_store_saves_rendered_document(service, storage_dir):
    result = await service.generate_and_store("rca", ALICE, RCA_INPUT, title="Q1 Outage")

    assert result.title == "Q1 Outage"
    assert result.saved.file_path.startswith(os.path.join(str(storage_dir), "alice_example.com"))
    assert result.saved.file_path.endswith("_rca_Q1_Outage.docx")
    assert result.saved.file_size > 0
    assert result.document.template_type == "rca"
    assert result.document.parsed_sections["sections"]["initial_findings"].startswith("Database")
    assert result.document.metadata.ai_model == "fake-gpt"

    with open(result.saved.file_path, "rb") as fh:
        text = "\n".join(p.text for p in DocxDocument(io.BytesIO(fh.read())).paragraphs)
    assert "Q1 Outage" in text
    assert "Pool size raised and a saturation alert added." in text


@pytest.mark.asyncio
async def test_default_title_uses_kind_and_date(service):
    result = await service.generate_and_store("rca", ALICE, RCA_INPUT)
    assert result.title == f"Root Cause Analysis - {date.today().strftime('%d/%m/%Y')}"


@pytest.mark.asyncio
async def test_prompt_only_kind_fails_before_model_call(service, fake_llm):
    with pytest.raises(TemplateNotFound):
        await service.generate_and_store("meeting-minutes", ALICE, {"meeting_info": "weekly sync"})
    assert fake_llm.calls == []


@pytest.mark.asyncio
async def test_failed_generation_is_logged(service, fake_llm, session_factory):
    fake_llm.error = "upstream returned HTTP 500"

    with pytest.raises(GenerationFailed):
        await service.generate_and_store("rca", ALICE, RCA_INPUT)

    async with session_factory() as session:
        logs = (await session.execute(select(GenerationLog))).scalars().all()
    assert len(logs) == 1
    assert logs[0].success is False
    assert logs[0].document_id is None
    assert "HTTP 500" in logs[0].error_message
    assert (await service.list_documents(ALICE, DocumentQuery())).total == 0


@pytest.mark.asyncio
async def test_unconfigured_model_is_logged_as_failed_generation(service, fake_llm, session_factory):
    fake_llm.configured = False

    with pytest.raises(LanguageModelNotConfigured):
        await service.generate_and_store("rca", ALICE, RCA_INPUT)

    async with session_factory() as session:
        logs = (await session.execute(select(GenerationLog))).scalars().all()
    assert [(log.success, log.document_id) for log in logs] == [(False, None)]
    assert "not configured" in logs[0].error_message
    assert fake_llm.calls == []


# ---------------------------------------------------------------------------
# render_download
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_render_download_accepts_serialised_and_flat_maps(service):
    content = await service.generate_content("rca", RCA_INPUT)

    kind, rendered = await service.render_download("rca", content.section_map.to_dict(), title="Again")
    assert kind.id == "rca"
    assert rendered[:2] == b"PK"

    flat = {key: f"{key} text" for key in kind.section_keys}
    _, rendered = await service.render_download("rca", flat)
    text = "\n".join(p.text for p in DocxDocument(io.BytesIO(rendered)).paragraphs)
    assert "lessons_learned text" in text


def test_flat_payload_carries_structured_steps(registry):
    kind = registry["step-by-step-guide"]
    section_map = section_map_from_payload(kind, {
        "guide_overview": "Overview",
        "structuredSteps": [{"title": "One"}, {"title": "Two", "image": "/uploads/b.png"}],
    })
    assert section_map["guide_overview"] == "Overview"
    assert section_map["conclusion"] == ""
    assert [s.step_number for s in section_map.structured_steps] == [1, 2]
    assert section_map.structured_steps[1].image == "/uploads/b.png"


# ---------------------------------------------------------------------------
# Azure OpenAI client
# ---------------------------------------------------------------------------

def _client(handler) -> AzureOpenAIClient:
    return AzureOpenAIClient(
        endpoint="https://example.openai.azure.com/",
        api_key="secret",
        deployment="gpt-4",
        api_version="2024-02-15-preview",
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.asyncio
async def test_azure_client_posts_chat_completion():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["api_key"] = request.headers["api-key"]
        seen["body"] = request.read()
        return httpx.Response(200, json={"choices": [{"message": {"content": "a---b"}}]})

    reply = await _client(handler).generate("system text", "user text")

    assert reply == "a---b"
    assert seen["url"] == (
        "https://example.openai.azure.com/openai/deployments/gpt-4/chat/completions"
        "?api-version=2024-02-15-preview"
    )
    assert seen["api_key"] == "secret"
    assert b'"max_tokens":3000' in seen["body"].replace(b" ", b"")


@pytest.mark.asyncio
async def test_azure_client_upstream_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(429, json={"error": {"message": "rate limited"}})

    with pytest.raises(GenerationFailed) as exc_info:
        await _client(handler).generate("s", "u")
    assert exc_info.value.details == {"upstream_status": 429}


@pytest.mark.asyncio
async def test_azure_client_malformed_payload():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"choices": []})

    with pytest.raises(GenerationFailed):
        await _client(handler).generate("s", "u")


@pytest.mark.asyncio
async def test_azure_client_transport_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(GenerationFailed):
        await _client(handler).generate("s", "u")


@pytest.mark.asyncio
async def test_azure_client_not_configured():
    client = AzureOpenAIClient(endpoint="", api_key="")
    assert client.is_configured is False
    with pytest.raises(LanguageModelNotConfigured):
        await client.generate("s", "u")
