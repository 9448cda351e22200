"""Database and schema models for the document writer."""
from app.models.database_models import (
    Document,
    DocumentTag,
    GenerationLog,
)
from app.models.schemas import (
    DocumentMetadata,
    DocumentPage,
    DocumentQuery,
    DocumentRecord,
    GenerateDocumentRequest,
    HealthCheckResponse,
    UserAnalytics,
)

__all__ = [
    # Database models
    "Document",
    "DocumentTag",
    "GenerationLog",
    # Pydantic schemas
    "DocumentMetadata",
    "DocumentPage",
    "DocumentQuery",
    "DocumentRecord",
    "GenerateDocumentRequest",
    "HealthCheckResponse",
    "UserAnalytics",
]
