"""
Per-user document endpoints (all require X-User-Id).

POST   /generate-document              generate, render and store.
GET    /documents                      paginated list with search/filter/sort.
GET    /documents/{id}                 one document's metadata.
PUT    /documents/{id}                 update title / favourite / archived.
DELETE /documents/{id}                 delete file and metadata.
GET    /documents/{id}/download        stored .docx bytes.
POST   /documents/{id}/duplicate       copy as "<title> (Copy)".
POST   /documents/{id}/tags            replace the tag set.
POST   /documents/batch                delete / favorite / archive many.
POST   /documents/export               zip of several documents.
GET    /analytics                      activity and storage summary.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict

from fastapi import APIRouter, Body, Depends, Query, status

from app.config import settings
from app.dependencies.auth import get_current_identity
from app.dependencies.services import get_document_store, get_generation_service
from app.exceptions import UnsupportedExportFormat
from app.models.schemas import (
    BatchItemResponse,
    BatchRequest,
    BatchResponse,
    DeleteDocumentResponse,
    DocumentPage,
    DocumentQuery,
    DocumentRecord,
    DuplicateResponse,
    ExportRequest,
    GenerateDocumentRequest,
    GenerateDocumentResponse,
    GeneratedDocumentResponse,
    Identity,
    SortField,
    SortOrder,
    TagsRequest,
    TagsResponse,
    UserAnalytics,
)
from app.routers.generation import attachment, to_steps
from app.services.document_store import DocumentStore
from app.services.generation import DocumentGenerationService
from app.utils.helpers import sanitize_title

logger = logging.getLogger(__name__)

router = APIRouter()


# ---------------------------------------------------------------------------
# Generate + store
# ---------------------------------------------------------------------------

@router.post(
    "/generate-document",
    response_model=GenerateDocumentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def generate_and_store_document(
    body: GenerateDocumentRequest,
    identity: Identity = Depends(get_current_identity),
    service: DocumentGenerationService = Depends(get_generation_service),
) -> GenerateDocumentResponse:
    result = await service.generate_and_store(
        body.template,
        identity,
        body.sections,
        to_steps(body.structured_steps),
        title=body.title,
    )
    return GenerateDocumentResponse(
        document=GeneratedDocumentResponse(
            id=result.saved.id,
            template=result.content.kind.id,
            title=result.title,
            content=result.content.raw_text,
            parsed_sections=result.content.section_map.to_dict(),
            parsing_strategy=result.content.section_map.strategy,
            generated_at=result.content.generated_at,
            original_sections=result.content.original_sections,
            file_path=result.saved.file_path,
            file_size=result.saved.file_size,
        )
    )


# ---------------------------------------------------------------------------
# Listing / batch / export
# ---------------------------------------------------------------------------

@router.get("/documents", response_model=DocumentPage)
async def list_documents(
    page: int = Query(1, ge=1),
    limit: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    search: str = Query(""),
    template_type: str = Query(""),
    sort_by: SortField = Query("created_at"),
    sort_order: SortOrder = Query("DESC"),
    favorites: bool = Query(False),
    archived: bool = Query(False),
    identity: Identity = Depends(get_current_identity),
    service: DocumentGenerationService = Depends(get_generation_service),
) -> DocumentPage:
    query = DocumentQuery(
        page=page,
        limit=limit,
        search=search.strip(),
        template_type=template_type.strip(),
        sort_by=sort_by,
        sort_order=sort_order,
        favorites=favorites,
        archived=archived,
    )
    return await service.list_documents(identity, query)


@router.post("/documents/batch", response_model=BatchResponse)
async def batch_documents(
    body: BatchRequest,
    identity: Identity = Depends(get_current_identity),
    store: DocumentStore = Depends(get_document_store),
) -> BatchResponse:
    results = await store.apply_batch(identity.user_id, body.action, body.document_ids, body.data)
    return BatchResponse(
        results=[
            BatchItemResponse(document_id=r.document_id, success=r.success, error=r.error)
            for r in results
        ]
    )


@router.post("/documents/export")
async def export_documents(
    body: ExportRequest,
    identity: Identity = Depends(get_current_identity),
    store: DocumentStore = Depends(get_document_store),
):
    if body.format != "zip":
        raise UnsupportedExportFormat(body.format)
    archive = await store.export_documents(body.document_ids, identity.user_id)
    filename = f"documents-{datetime.now().strftime('%Y%m%d-%H%M%S')}.zip"
    return attachment(archive, filename, media_type="application/zip")


# ---------------------------------------------------------------------------
# Single document
# ---------------------------------------------------------------------------

@router.get("/documents/{document_id}", response_model=DocumentRecord)
async def get_document(
    document_id: str,
    identity: Identity = Depends(get_current_identity),
    service: DocumentGenerationService = Depends(get_generation_service),
) -> DocumentRecord:
    return await service.fetch_document(identity, document_id)


@router.put("/documents/{document_id}", response_model=DocumentRecord)
async def update_document(
    document_id: str,
    updates: Dict[str, Any] = Body(...),
    identity: Identity = Depends(get_current_identity),
    store: DocumentStore = Depends(get_document_store),
) -> DocumentRecord:
    return await store.update_document(document_id, identity.user_id, updates)


@router.delete("/documents/{document_id}", response_model=DeleteDocumentResponse)
async def delete_document(
    document_id: str,
    identity: Identity = Depends(get_current_identity),
    service: DocumentGenerationService = Depends(get_generation_service),
) -> DeleteDocumentResponse:
    result = await service.remove_document(identity, document_id)
    return DeleteDocumentResponse(outcome=result.outcome.value)


@router.get("/documents/{document_id}/download")
async def download_document(
    document_id: str,
    identity: Identity = Depends(get_current_identity),
    store: DocumentStore = Depends(get_document_store),
):
    record, content = await store.read_document_bytes(document_id, identity.user_id)
    filename = f"{sanitize_title(record.title) or record.id}.{record.file_format}"
    return attachment(content, filename)


@router.post(
    "/documents/{document_id}/duplicate",
    response_model=DuplicateResponse,
    status_code=status.HTTP_201_CREATED,
)
async def duplicate_document(
    document_id: str,
    identity: Identity = Depends(get_current_identity),
    store: DocumentStore = Depends(get_document_store),
) -> DuplicateResponse:
    saved = await store.duplicate_document(document_id, identity.user_id, identity.owner_key)
    return DuplicateResponse(document_id=saved.id)


@router.post("/documents/{document_id}/tags", response_model=TagsResponse)
async def replace_tags(
    document_id: str,
    body: TagsRequest,
    identity: Identity = Depends(get_current_identity),
    service: DocumentGenerationService = Depends(get_generation_service),
) -> TagsResponse:
    tags = await service.replace_tags(identity, document_id, body.tags)
    return TagsResponse(tags=tags)


# ---------------------------------------------------------------------------
# Analytics
# ---------------------------------------------------------------------------

@router.get("/analytics", response_model=UserAnalytics)
async def user_analytics(
    days: int = Query(settings.DEFAULT_ANALYTICS_DAYS, ge=1, le=366),
    identity: Identity = Depends(get_current_identity),
    service: DocumentGenerationService = Depends(get_generation_service),
) -> UserAnalytics:
    return await service.user_analytics(identity, days)
