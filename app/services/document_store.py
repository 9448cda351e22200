"""
Document store: generated files on disk plus their metadata rows.

Every operation opens its own session from the injected ``async_sessionmaker``
and is scoped by ``(document_id, user_id)``; another user's document behaves
exactly like a missing one.  Unexpected faults are logged and re-raised as
``DocumentStoreError("Failed to <operation>: ...")``; domain errors pass
through unchanged.
"""
from __future__ import annotations

import enum
import io
import logging
import math
import os
import time
import zipfile
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional, Sequence, Tuple

import aiofiles
import aiofiles.os
from sqlalchemy import case, delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from app.config import settings
from app.exceptions import (
    DocWriterError,
    DocumentFileMissing,
    DocumentNotFound,
    DocumentStoreError,
    InvalidBatchAction,
    NoValidUpdates,
    StorageWriteFailed,
)
from app.models.database_models import Document, DocumentTag, GenerationLog, new_id, utcnow
from app.models.schemas import (
    AnalyticsSummary,
    DailyActivity,
    DocumentMetadata,
    DocumentPage,
    DocumentQuery,
    DocumentRecord,
    UserAnalytics,
)
from app.utils.helpers import sanitize_owner_key, sanitize_title, truncate_text

logger = logging.getLogger(__name__)

ALLOWED_UPDATE_FIELDS = frozenset({"title", "is_favorite", "is_archived"})
BATCH_ACTIONS = ("delete", "favorite", "archive")


# ---------------------------------------------------------------------------
# Value objects
# ---------------------------------------------------------------------------

@dataclass
class DocumentData:
    """Everything needed to persist one generated document."""

    user_id: str
    title: str
    template_type: str
    original_sections: Dict[str, Any]
    parsed_sections: Dict[str, Any]
    content_preview: str = ""
    file_format: str = "docx"
    ai_model: str = settings.AZURE_OPENAI_DEPLOYMENT_NAME
    generation_time_ms: Optional[int] = None
    generated_content: Optional[str] = None


@dataclass(frozen=True)
class SavedDocument:
    id: str
    file_path: str
    file_size: int


class DeleteOutcome(str, enum.Enum):
    DELETED = "deleted"
    FILE_ALREADY_MISSING = "file_already_missing"


@dataclass(frozen=True)
class DeleteResult:
    document_id: str
    outcome: DeleteOutcome


@dataclass
class GenerationLogEntry:
    """One row for the append-only generation log."""

    user_id: str
    template_type: str
    input_data: Dict[str, Any]
    success: bool
    model_used: str
    generated_content: Optional[str] = None
    document_id: Optional[str] = None
    generation_time_ms: Optional[int] = None
    error_message: Optional[str] = None


@dataclass
class BatchItemResult:
    document_id: str
    success: bool
    error: Optional[str] = None
    result: Dict[str, Any] = field(default_factory=dict)


class MonotonicMillis:
    """Unix milliseconds that strictly increase across calls in this process."""

    def __init__(self) -> None:
        self._last = 0

    def next(self) -> int:
        now = time.time_ns() // 1_000_000
        if now <= self._last:
            now = self._last + 1
        self._last = now
        return now


_clock = MonotonicMillis()


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------

class DocumentStore:
    """Persists generated documents under *storage_root* and their rows in the database."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        storage_root: str,
        preview_length: int = settings.CONTENT_PREVIEW_LENGTH,
        log_content_length: int = settings.GENERATION_LOG_CONTENT_LENGTH,
        clock: Optional[MonotonicMillis] = None,
    ) -> None:
        self._session_factory = session_factory
        self.storage_root = os.path.abspath(storage_root)
        self.preview_length = preview_length
        self.log_content_length = log_content_length
        self._clock = clock or _clock

    @asynccontextmanager
    async def _session(self, operation: str) -> AsyncIterator[AsyncSession]:
        try:
            async with self._session_factory() as session:
                yield session
        except DocWriterError:
            raise
        except Exception as exc:
            logger.error("Error trying to %s: %s", operation, exc, exc_info=True)
            raise DocumentStoreError(f"Failed to {operation}: {exc}") from exc

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    def build_document_path(
        self,
        owner_key: str,
        template_type: str,
        title: str,
        file_format: str = "docx",
        now: Optional[datetime] = None,
    ) -> str:
        now = now or datetime.now()
        directory = os.path.join(
            self.storage_root,
            sanitize_owner_key(owner_key),
            "documents",
            f"{now.year:04d}",
            f"{now.month:02d}",
        )
        filename = f"{self._clock.next()}_{template_type}_{sanitize_title(title)}.{file_format}"
        return os.path.join(directory, filename)

    # ------------------------------------------------------------------
    # Save
    # ------------------------------------------------------------------

    async def save_document(
        self,
        owner_key: str,
        data: DocumentData,
        file_bytes: bytes,
        *,
        record_generation: bool = True,
    ) -> SavedDocument:
        """
        Write *file_bytes* to the owner's storage area, then insert the
        document row and (unless ``record_generation`` is off) a successful
        generation-log entry in one transaction.

        Raises:
            StorageWriteFailed: the file could not be written; nothing was inserted.
            DocumentStoreError: the metadata insert failed; the written file
                has been removed (best effort).
        """
        file_path = self.build_document_path(owner_key, data.template_type, data.title, data.file_format)
        if os.path.commonpath([os.path.abspath(file_path), self.storage_root]) != self.storage_root:
            logger.error("Refusing to write outside storage root: %s", file_path)
            raise StorageWriteFailed(file_path, "path escapes the storage root")

        try:
            await aiofiles.os.makedirs(os.path.dirname(file_path), exist_ok=True)
            async with aiofiles.open(file_path, "wb") as out:
                await out.write(file_bytes)
            file_size = (await aiofiles.os.stat(file_path)).st_size
        except OSError as exc:
            logger.error("Could not write %s: %s", file_path, exc)
            raise StorageWriteFailed(file_path, str(exc)) from exc

        document_id = new_id()
        now = utcnow()
        metadata = DocumentMetadata(generated_at=now, ai_model=data.ai_model)

        try:
            async with self._session_factory() as session:
                session.add(Document(
                    id=document_id,
                    user_id=data.user_id,
                    title=data.title,
                    template_type=data.template_type,
                    file_path=file_path,
                    content_preview=truncate_text(data.content_preview, self.preview_length, suffix=""),
                    original_sections=data.original_sections,
                    parsed_sections=data.parsed_sections,
                    metadata_json=metadata.model_dump(mode="json"),
                    file_size=file_size,
                    file_format=data.file_format,
                    created_at=now,
                    updated_at=now,
                ))
                await session.flush()

                if record_generation:
                    session.add(self._log_row(GenerationLogEntry(
                        user_id=data.user_id,
                        template_type=data.template_type,
                        input_data=data.original_sections,
                        success=True,
                        model_used=data.ai_model,
                        generated_content=data.generated_content,
                        document_id=document_id,
                        generation_time_ms=data.generation_time_ms,
                    )))
                await session.commit()
        except Exception as exc:
            logger.error("Metadata insert failed for %s: %s", file_path, exc, exc_info=True)
            await self._discard_orphan(file_path)
            raise DocumentStoreError(f"Failed to save document: {exc}") from exc

        logger.info("Saved document %s (%d bytes) at %s", document_id, file_size, file_path)
        return SavedDocument(id=document_id, file_path=file_path, file_size=file_size)

    async def _discard_orphan(self, file_path: str) -> None:
        try:
            await aiofiles.os.remove(file_path)
        except OSError as exc:
            logger.error("Orphaned document file left at %s: %s", file_path, exc)

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    async def get_user_documents(self, user_id: str, query: Optional[DocumentQuery] = None) -> DocumentPage:
        query = query or DocumentQuery()

        filters = [Document.user_id == user_id, Document.is_archived == query.archived]
        if query.search:
            filters.append(
                Document.title.icontains(query.search, autoescape=True)
                | Document.content_preview.icontains(query.search, autoescape=True)
            )
        if query.template_type:
            filters.append(Document.template_type == query.template_type)
        if query.favorites:
            filters.append(Document.is_favorite.is_(True))

        sort_column = getattr(Document, query.sort_by)
        ordering = sort_column.asc() if query.sort_order == "ASC" else sort_column.desc()

        async with self._session("retrieve documents") as session:
            total = (
                await session.execute(select(func.count(Document.id)).where(*filters))
            ).scalar_one()

            result = await session.execute(
                select(Document)
                .options(selectinload(Document.tags))
                .where(*filters)
                .order_by(ordering, Document.id)
                .offset((query.page - 1) * query.limit)
                .limit(query.limit)
            )
            documents = [_to_record(row) for row in result.scalars().all()]

        return DocumentPage(
            documents=documents,
            total=total,
            page=query.page,
            limit=query.limit,
            total_pages=math.ceil(total / query.limit) if total else 0,
        )

    async def get_document(self, document_id: str, user_id: str) -> DocumentRecord:
        async with self._session("retrieve document") as session:
            document = await _load_owned(session, document_id, user_id, with_tags=True)
            return _to_record(document)

    async def read_document_bytes(self, document_id: str, user_id: str) -> Tuple[DocumentRecord, bytes]:
        record = await self.get_document(document_id, user_id)
        try:
            async with aiofiles.open(record.file_path, "rb") as fh:
                content = await fh.read()
        except FileNotFoundError as exc:
            logger.warning("Stored file missing for document %s: %s", document_id, record.file_path)
            raise DocumentFileMissing(document_id, record.file_path) from exc
        except OSError as exc:
            logger.error("Could not read %s: %s", record.file_path, exc)
            raise DocumentStoreError(f"Failed to read document file: {exc}") from exc
        return record, content

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def delete_document(self, document_id: str, user_id: str) -> DeleteResult:
        async with self._session("delete document") as session:
            document = await _load_owned(session, document_id, user_id)

            try:
                await aiofiles.os.remove(document.file_path)
                outcome = DeleteOutcome.DELETED
            except FileNotFoundError:
                logger.warning("File not found in storage, deleting row anyway: %s", document.file_path)
                outcome = DeleteOutcome.FILE_ALREADY_MISSING

            await session.execute(delete(DocumentTag).where(DocumentTag.document_id == document_id))
            await session.execute(
                delete(Document).where(Document.id == document_id, Document.user_id == user_id)
            )
            await session.commit()

        logger.info("Deleted document %s (%s)", document_id, outcome.value)
        return DeleteResult(document_id=document_id, outcome=outcome)

    async def update_document(self, document_id: str, user_id: str, updates: Mapping[str, Any]) -> DocumentRecord:
        allowed = {}
        for key, value in updates.items():
            if key not in ALLOWED_UPDATE_FIELDS:
                continue
            if key == "title":
                if not isinstance(value, str) or not value.strip():
                    continue
                allowed[key] = value.strip()[:255]
            elif isinstance(value, bool):
                allowed[key] = value

        if not allowed:
            raise NoValidUpdates()

        async with self._session("update document") as session:
            document = await _load_owned(session, document_id, user_id)
            for key, value in allowed.items():
                setattr(document, key, value)
            document.updated_at = utcnow()
            await session.commit()

        logger.info("Updated document %s: %s", document_id, sorted(allowed))
        return await self.get_document(document_id, user_id)

    async def add_document_tags(self, document_id: str, user_id: str, tags: Sequence[Any]) -> List[str]:
        cleaned = list(dict.fromkeys(
            tag.strip() for tag in tags if isinstance(tag, str) and tag.strip()
        ))

        async with self._session("update document tags") as session:
            await _load_owned(session, document_id, user_id)
            await session.execute(delete(DocumentTag).where(DocumentTag.document_id == document_id))
            session.add_all([DocumentTag(document_id=document_id, tag_name=tag) for tag in cleaned])
            await session.commit()

        return cleaned

    async def duplicate_document(self, document_id: str, user_id: str, owner_key: str) -> SavedDocument:
        record, content = await self.read_document_bytes(document_id, user_id)
        data = DocumentData(
            user_id=user_id,
            title=f"{record.title} (Copy)",
            template_type=record.template_type,
            original_sections=record.original_sections,
            parsed_sections=record.parsed_sections,
            content_preview=record.content_preview or "",
            file_format=record.file_format,
            ai_model=record.metadata.ai_model if record.metadata else settings.AZURE_OPENAI_DEPLOYMENT_NAME,
        )
        return await self.save_document(owner_key, data, content, record_generation=False)

    # ------------------------------------------------------------------
    # Export / batch
    # ------------------------------------------------------------------

    async def export_documents(self, document_ids: Sequence[str], user_id: str) -> bytes:
        """Zip the caller's documents; unreadable or foreign ids are skipped."""
        buffer = io.BytesIO()
        used_names: Dict[str, int] = {}

        with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as archive:
            for document_id in document_ids:
                try:
                    record, content = await self.read_document_bytes(document_id, user_id)
                except (DocumentNotFound, DocumentFileMissing) as exc:
                    logger.warning("Skipping document %s in export: %s", document_id, exc.message)
                    continue

                name = f"{record.title}.{record.file_format}"
                seen = used_names.get(name, 0)
                used_names[name] = seen + 1
                if seen:
                    name = f"{record.title} ({seen + 1}).{record.file_format}"
                archive.writestr(name, content)

        return buffer.getvalue()

    async def apply_batch(
        self,
        user_id: str,
        action: str,
        document_ids: Sequence[str],
        data: Optional[Mapping[str, Any]] = None,
    ) -> List[BatchItemResult]:
        if action not in BATCH_ACTIONS:
            raise InvalidBatchAction(action)
        data = data or {}

        results: List[BatchItemResult] = []
        for document_id in document_ids:
            try:
                if action == "delete":
                    outcome = await self.delete_document(document_id, user_id)
                    detail = {"outcome": outcome.outcome.value}
                elif action == "favorite":
                    record = await self.update_document(
                        document_id, user_id, {"is_favorite": data.get("favorite", True)}
                    )
                    detail = {"is_favorite": record.is_favorite}
                else:
                    record = await self.update_document(
                        document_id, user_id, {"is_archived": data.get("archived", True)}
                    )
                    detail = {"is_archived": record.is_archived}
                results.append(BatchItemResult(document_id=document_id, success=True, result=detail))
            except DocWriterError as exc:
                results.append(BatchItemResult(document_id=document_id, success=False, error=exc.message))

        logger.info(
            "Batch %s for user %s: %d/%d succeeded",
            action,
            user_id,
            sum(1 for r in results if r.success),
            len(results),
        )
        return results

    # ------------------------------------------------------------------
    # Generation log / analytics
    # ------------------------------------------------------------------

    def _log_row(self, entry: GenerationLogEntry) -> GenerationLog:
        content = entry.generated_content
        if content is not None:
            content = truncate_text(content, self.log_content_length, suffix="")
        return GenerationLog(
            user_id=entry.user_id,
            document_id=entry.document_id,
            template_type=entry.template_type,
            input_data=entry.input_data,
            generated_content=content,
            success=entry.success,
            model_used=entry.model_used,
            generation_time_ms=entry.generation_time_ms,
            error_message=entry.error_message,
            created_at=utcnow(),
        )

    async def log_generation(self, entry: GenerationLogEntry) -> None:
        async with self._session("log generation") as session:
            session.add(self._log_row(entry))
            await session.commit()

    async def get_user_analytics(
        self, user_id: str, window_days: int = settings.DEFAULT_ANALYTICS_DAYS
    ) -> UserAnalytics:
        cutoff = utcnow() - timedelta(days=window_days)
        day = func.date(GenerationLog.created_at)

        daily_stmt = (
            select(
                day.label("date"),
                GenerationLog.template_type,
                func.count(GenerationLog.id).label("count"),
                func.avg(GenerationLog.generation_time_ms).label("avg_generation_time"),
            )
            .where(
                GenerationLog.user_id == user_id,
                GenerationLog.success.is_(True),
                GenerationLog.created_at >= cutoff,
            )
            .group_by(day, GenerationLog.template_type)
            .order_by(day.desc(), GenerationLog.template_type)
        )

        documents_stmt = select(
            func.count(Document.id),
            func.count(func.distinct(Document.template_type)),
            func.coalesce(func.sum(Document.file_size), 0),
            func.count(case((Document.is_favorite.is_(True), 1))),
        ).where(Document.user_id == user_id)

        latency_stmt = select(func.avg(GenerationLog.generation_time_ms)).where(
            GenerationLog.user_id == user_id,
            GenerationLog.success.is_(True),
        )

        async with self._session("retrieve analytics") as session:
            daily_rows = (await session.execute(daily_stmt)).all()
            total, kinds, storage, favorites = (await session.execute(documents_stmt)).one()
            avg_latency = (await session.execute(latency_stmt)).scalar_one_or_none()

        return UserAnalytics(
            daily_activity=[
                DailyActivity(
                    date=str(activity_date),
                    template_type=template_type,
                    count=count,
                    avg_generation_time=_as_float(avg_time),
                )
                for activity_date, template_type, count, avg_time in daily_rows
            ],
            summary=AnalyticsSummary(
                total_documents=total,
                templates_used=kinds,
                total_storage_bytes=int(storage or 0),
                avg_generation_time=_as_float(avg_latency),
                favorite_documents=favorites,
            ),
        )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

async def _load_owned(
    session: AsyncSession, document_id: str, user_id: str, with_tags: bool = False
) -> Document:
    stmt = select(Document).where(Document.id == document_id, Document.user_id == user_id)
    if with_tags:
        stmt = stmt.options(selectinload(Document.tags))
    document = (await session.execute(stmt)).scalar_one_or_none()
    if document is None:
        raise DocumentNotFound(document_id)
    return document


def _to_record(document: Document) -> DocumentRecord:
    return DocumentRecord(
        id=document.id,
        user_id=document.user_id,
        title=document.title,
        template_type=document.template_type,
        file_path=document.file_path,
        content_preview=document.content_preview,
        original_sections=document.original_sections or {},
        parsed_sections=document.parsed_sections or {},
        metadata=document.metadata_json or None,
        file_size=document.file_size,
        file_format=document.file_format,
        is_favorite=document.is_favorite,
        is_archived=document.is_archived,
        created_at=document.created_at,
        updated_at=document.updated_at,
        tags=sorted(tag.tag_name for tag in document.tags),
    )


def _as_float(value: Any) -> Optional[float]:
    return float(value) if value is not None else None
