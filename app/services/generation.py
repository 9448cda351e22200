"""
Generation orchestrator.

Ties the pieces together for one request:

    validate kind + input -> prompts -> language model (timed)
        -> parse into a SectionMap -> render .docx -> store file + metadata

Failed model calls are recorded in the generation log before the error
propagates, so analytics see them.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from app.exceptions import (
    DocWriterError,
    DocumentStoreError,
    EmptyInput,
    GenerationFailed,
    LanguageModelNotConfigured,
    UnknownTemplateKind,
)
from app.models.database_models import utcnow
from app.models.schemas import (
    DocumentPage,
    DocumentQuery,
    DocumentRecord,
    Identity,
    UserAnalytics,
)
from app.services.document_store import (
    DeleteResult,
    DocumentData,
    DocumentStore,
    GenerationLogEntry,
    SavedDocument,
)
from app.services.llm_client import LanguageModel
from app.services.section_parser import SectionMap, Step, parse_sections
from app.services.template_registry import TemplateKind, TemplateRegistry
from app.services.template_renderer import TemplateRenderer
from app.utils.helpers import has_content, text_sections

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GeneratedContent:
    kind: TemplateKind
    raw_text: str
    section_map: SectionMap
    original_sections: Dict[str, Any]
    generation_time_ms: int
    model: str
    generated_at: datetime


@dataclass(frozen=True)
class GenerationResult:
    title: str
    content: GeneratedContent
    saved: SavedDocument
    document: DocumentRecord


class DocumentGenerationService:
    """Generates, renders and stores documents for one caller at a time."""

    def __init__(
        self,
        registry: TemplateRegistry,
        llm: LanguageModel,
        renderer: TemplateRenderer,
        store: DocumentStore,
    ) -> None:
        self.registry = registry
        self.llm = llm
        self.renderer = renderer
        self.store = store

    def get_kind(self, kind_id: str) -> TemplateKind:
        kind = self.registry.get(kind_id)
        if kind is None:
            raise UnknownTemplateKind(kind_id, sorted(self.registry))
        return kind

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    async def generate_content(
        self,
        kind_id: str,
        sections: Mapping[str, Any],
        steps: Optional[Sequence[Step]] = None,
    ) -> GeneratedContent:
        """
        Ask the language model for a document of *kind_id* and parse the reply.

        Raises:
            UnknownTemplateKind: *kind_id* is not registered.
            EmptyInput: no submitted section has text.
            GenerationFailed / LanguageModelNotConfigured: the model call failed.
        """
        kind = self.get_kind(kind_id)
        text_input = text_sections(sections)
        if not has_content(text_input):
            raise EmptyInput()

        steps = list(steps or [])
        if steps and not kind.supports_images:
            logger.debug("Ignoring %d structured steps for %s", len(steps), kind.id)
            steps = []

        started = time.perf_counter()
        raw_text = await self.llm.generate(kind.system_prompt, kind.build_user_prompt(text_input))
        elapsed_ms = int((time.perf_counter() - started) * 1000)

        section_map = parse_sections(kind, raw_text)
        if steps:
            section_map = section_map.with_steps(steps)

        logger.info(
            "Generated %s in %d ms (%d chars, parsed via %s)",
            kind.id,
            elapsed_ms,
            len(raw_text),
            section_map.strategy,
        )

        original = dict(text_input)
        if steps:
            original["structuredSteps"] = [step.to_dict() for step in steps]

        return GeneratedContent(
            kind=kind,
            raw_text=raw_text,
            section_map=section_map,
            original_sections=original,
            generation_time_ms=elapsed_ms,
            model=self.llm.model_name,
            generated_at=utcnow(),
        )

    async def generate_and_store(
        self,
        kind_id: str,
        owner: Identity,
        sections: Mapping[str, Any],
        steps: Optional[Sequence[Step]] = None,
        title: Optional[str] = None,
    ) -> GenerationResult:
        kind = self.get_kind(kind_id)
        # Prompt-only kinds cannot be stored; fail before spending a model call.
        self.renderer.template_path(kind)

        try:
            content = await self.generate_content(kind_id, sections, steps)
        except (GenerationFailed, LanguageModelNotConfigured) as exc:
            await self._record_failure(owner, kind, sections, exc)
            raise

        title = (title or "").strip() or f"{kind.name} - {date.today().strftime('%d/%m/%Y')}"
        file_bytes = await self.renderer.render(kind, content.section_map, title=title)

        saved = await self.store.save_document(
            owner.owner_key,
            DocumentData(
                user_id=owner.user_id,
                title=title,
                template_type=kind.id,
                original_sections=content.original_sections,
                parsed_sections=content.section_map.to_dict(),
                content_preview=content.raw_text,
                ai_model=content.model,
                generation_time_ms=content.generation_time_ms,
                generated_content=content.raw_text,
            ),
            file_bytes,
        )
        document = await self.store.get_document(saved.id, owner.user_id)
        return GenerationResult(title=title, content=content, saved=saved, document=document)

    async def _record_failure(
        self, owner: Identity, kind: TemplateKind, sections: Mapping[str, Any], exc: DocWriterError
    ) -> None:
        try:
            await self.store.log_generation(GenerationLogEntry(
                user_id=owner.user_id,
                template_type=kind.id,
                input_data=text_sections(sections),
                success=False,
                model_used=self.llm.model_name,
                error_message=exc.message,
            ))
        except DocumentStoreError as log_exc:
            # The generation error is what the caller needs to see.
            logger.error("Could not record failed generation for %s: %s", owner.user_id, log_exc.message)

    # ------------------------------------------------------------------
    # Rendering without storage
    # ------------------------------------------------------------------

    async def render_download(
        self, kind_id: str, parsed_sections: Mapping[str, Any], title: Optional[str] = None
    ) -> Tuple[TemplateKind, bytes]:
        """Re-render a section map returned by an earlier preview generation."""
        kind = self.get_kind(kind_id)
        section_map = section_map_from_payload(kind, parsed_sections)
        return kind, await self.renderer.render(kind, section_map, title=title)

    # ------------------------------------------------------------------
    # Store pass-throughs used by the routers
    # ------------------------------------------------------------------

    async def list_documents(self, owner: Identity, query: DocumentQuery) -> DocumentPage:
        return await self.store.get_user_documents(owner.user_id, query)

    async def fetch_document(self, owner: Identity, document_id: str) -> DocumentRecord:
        return await self.store.get_document(document_id, owner.user_id)

    async def remove_document(self, owner: Identity, document_id: str) -> DeleteResult:
        return await self.store.delete_document(document_id, owner.user_id)

    async def replace_tags(self, owner: Identity, document_id: str, tags: List[str]) -> List[str]:
        return await self.store.add_document_tags(document_id, owner.user_id, tags)

    async def user_analytics(self, owner: Identity, days: int) -> UserAnalytics:
        return await self.store.get_user_analytics(owner.user_id, days)


def section_map_from_payload(kind: TemplateKind, payload: Mapping[str, Any]) -> SectionMap:
    """
    Accept either a serialised SectionMap or a flat ``{key: text}`` mapping
    (with optional ``structuredSteps``) as sent back by the front end.
    """
    if "sections" in payload and isinstance(payload.get("sections"), Mapping):
        data = dict(payload)
        data.setdefault("kind", kind.id)
        return SectionMap.from_dict(data)

    steps_payload = payload.get("structuredSteps") or payload.get("structured_steps") or []
    return SectionMap.from_dict({
        "kind": kind.id,
        "sections": {key: str(payload.get(key) or "") for key in kind.section_keys},
        "structured_steps": [step for step in steps_payload if isinstance(step, Mapping)],
    })
