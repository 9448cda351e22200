"""
Exception taxonomy shared by services and routers.

Every error carries the HTTP status the API layer should answer with, so
not-found, validation, upstream-dependency and persistence failures stay
distinguishable all the way to the client.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import status


class DocWriterError(Exception):
    """Base class for all domain errors."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


# ---------------------------------------------------------------------------
# Not found
# ---------------------------------------------------------------------------

class DocumentNotFound(DocWriterError):
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, document_id: str) -> None:
        super().__init__("Document not found", details={"document_id": document_id})
        self.document_id = document_id


class DocumentFileMissing(DocWriterError):
    """The metadata row exists but the stored file is gone."""

    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, document_id: str, file_path: str) -> None:
        super().__init__("File not found in storage", details={"document_id": document_id})
        self.file_path = file_path


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

class NoValidUpdates(DocWriterError):
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self) -> None:
        super().__init__("No valid updates provided")


class InvalidBatchAction(DocWriterError):
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, action: str) -> None:
        super().__init__(f"Invalid batch action: {action!r}", details={"action": action})


class UnknownTemplateKind(DocWriterError):
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, kind: str, available: List[str]) -> None:
        super().__init__(
            "Invalid template specified",
            details={"requested_template": kind, "available_templates": available},
        )


class EmptyInput(DocWriterError):
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self) -> None:
        super().__init__("At least one section must have content")


class UnsupportedExportFormat(DocWriterError):
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, export_format: str) -> None:
        super().__init__(f"Unsupported export format: {export_format!r}")


class InvalidSectionMap(DocWriterError):
    """A client-supplied section map could not be rebuilt."""

    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, reason: str) -> None:
        super().__init__(f"Invalid section map: {reason}")


# ---------------------------------------------------------------------------
# Upstream dependency (language model)
# ---------------------------------------------------------------------------

class GenerationFailed(DocWriterError):
    status_code = status.HTTP_502_BAD_GATEWAY


class LanguageModelNotConfigured(DocWriterError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    def __init__(self) -> None:
        super().__init__(
            "Azure OpenAI not configured. Please check environment variables."
        )


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------

class TemplateNotFound(DocWriterError):
    def __init__(self, template_name: str) -> None:
        super().__init__(f"Template file not found: {template_name}")
        self.template_name = template_name


class TemplateRenderFailed(DocWriterError):
    def __init__(self, message: str, missing_fields: Optional[List[str]] = None) -> None:
        self.missing_fields = sorted(set(missing_fields or []))
        details = {"missing_fields": self.missing_fields} if self.missing_fields else None
        super().__init__(f"Template rendering failed: {message}", details=details)


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------

class DocumentStoreError(DocWriterError):
    """Wraps unexpected storage/database faults with the failing operation."""


class StorageWriteFailed(DocumentStoreError):
    def __init__(self, file_path: str, reason: str) -> None:
        super().__init__(f"Failed to write document file: {reason}")
        self.file_path = file_path
