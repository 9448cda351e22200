"""
Template listing and stateless generation endpoints.

GET  /templates           registered document kinds.
POST /generate-document   generate + parse, no storage (preview).
POST /download-document   render a parsed section map to .docx.
"""
from __future__ import annotations

import logging
from typing import List
from urllib.parse import quote

from fastapi import APIRouter, Depends
from fastapi.responses import Response

from app.dependencies.services import get_generation_service, get_registry
from app.models.schemas import (
    DownloadDocumentRequest,
    GenerateDocumentRequest,
    GenerateDocumentResponse,
    GeneratedDocumentResponse,
    StepInput,
    TemplateInfo,
)
from app.services.generation import DocumentGenerationService
from app.services.image_resolver import normalize_image_reference
from app.services.section_parser import Step
from app.services.template_registry import TemplateRegistry
from app.utils.helpers import sanitize_title

logger = logging.getLogger(__name__)

router = APIRouter()

DOCX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"


def to_steps(step_inputs: List[StepInput]) -> List[Step]:
    """Number submitted steps and reduce their image references to /uploads paths."""
    return [
        Step(
            step_number=position,
            title=item.title,
            description=item.description,
            image=normalize_image_reference(item.image_reference),
            notes=item.notes,
        )
        for position, item in enumerate(step_inputs, start=1)
    ]


def attachment(content: bytes, filename: str, media_type: str = DOCX_MEDIA_TYPE) -> Response:
    return Response(
        content=content,
        media_type=media_type,
        headers={
            "Content-Disposition": f"attachment; filename*=UTF-8''{quote(filename)}",
            "Content-Length": str(len(content)),
        },
    )


@router.get("/templates", response_model=List[TemplateInfo])
async def list_templates(registry: TemplateRegistry = Depends(get_registry)) -> List[TemplateInfo]:
    return [
        TemplateInfo(
            id=kind.id,
            name=kind.name,
            section_keys=list(kind.section_keys),
            has_docx_template=kind.docx_template is not None,
        )
        for kind in registry.values()
    ]


@router.post("/generate-document", response_model=GenerateDocumentResponse)
async def generate_document(
    body: GenerateDocumentRequest,
    service: DocumentGenerationService = Depends(get_generation_service),
) -> GenerateDocumentResponse:
    """Generate and parse content without storing anything."""
    content = await service.generate_content(
        body.template, body.sections, to_steps(body.structured_steps)
    )
    return GenerateDocumentResponse(
        document=GeneratedDocumentResponse(
            template=content.kind.id,
            title=body.title or content.kind.default_title,
            content=content.raw_text,
            parsed_sections=content.section_map.to_dict(),
            parsing_strategy=content.section_map.strategy,
            generated_at=content.generated_at,
            original_sections=content.original_sections,
        )
    )


@router.post("/download-document")
async def download_document(
    body: DownloadDocumentRequest,
    service: DocumentGenerationService = Depends(get_generation_service),
) -> Response:
    kind, content = await service.render_download(body.template, body.parsed_sections, title=body.title)
    filename = f"{sanitize_title(body.title or kind.default_title) or kind.id}.docx"
    logger.info("Rendered %s download (%d bytes)", kind.id, len(content))
    return attachment(content, filename)
