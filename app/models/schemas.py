"""
Pydantic schemas for request/response validation.
"""
from pydantic import BaseModel, Field, ConfigDict, model_validator
from typing import Optional, List, Dict, Any, Literal, Union
from datetime import datetime

from app.config import settings

SortField = Literal["created_at", "updated_at", "title", "template_type", "file_size"]
SortOrder = Literal["ASC", "DESC"]


# Identity
class Identity(BaseModel):
    """The caller, as established by the auth dependency."""

    user_id: str
    email: str

    model_config = ConfigDict(frozen=True)

    @property
    def owner_key(self) -> str:
        """Key used for the caller's storage directory."""
        return self.email or self.user_id


# Template Schemas
class TemplateInfo(BaseModel):
    """A document kind the service can generate."""

    id: str
    name: str
    section_keys: List[str]
    has_docx_template: bool


# Generation Schemas
class StepImage(BaseModel):
    """Image reference as sent by the front end after an upload."""

    url: str


class StepInput(BaseModel):
    """One user-submitted guide step."""

    title: str = ""
    description: str = ""
    image: Optional[Union[str, StepImage]] = None
    notes: str = ""

    @property
    def image_reference(self) -> Optional[str]:
        if isinstance(self.image, StepImage):
            return self.image.url
        return self.image


class GenerateDocumentRequest(BaseModel):
    """Schema for a generation request; steps may also arrive inside sections."""

    template: str = Field(..., min_length=1)
    sections: Dict[str, Any]
    structured_steps: List[StepInput] = Field(default_factory=list, alias="structuredSteps")
    title: Optional[str] = Field(None, max_length=255)

    model_config = ConfigDict(populate_by_name=True)

    @model_validator(mode="before")
    @classmethod
    def _lift_structured_steps(cls, data: Any) -> Any:
        if isinstance(data, dict) and isinstance(data.get("sections"), dict):
            sections = dict(data["sections"])
            steps = sections.pop("structuredSteps", None)
            data = {**data, "sections": sections}
            if steps and not (data.get("structuredSteps") or data.get("structured_steps")):
                data["structuredSteps"] = steps
        return data


class DownloadDocumentRequest(BaseModel):
    """Schema for rendering a previously generated section map."""

    template: str = Field(..., min_length=1)
    parsed_sections: Dict[str, Any] = Field(..., alias="parsedSections")
    title: Optional[str] = Field(None, max_length=255)

    model_config = ConfigDict(populate_by_name=True)


class GeneratedDocumentResponse(BaseModel):
    """Schema for generated content (stored or preview)."""

    id: Optional[str] = None
    template: str
    title: str
    content: str
    parsed_sections: Dict[str, Any]
    parsing_strategy: str
    generated_at: datetime
    original_sections: Dict[str, Any]
    file_path: Optional[str] = None
    file_size: Optional[int] = None


class GenerateDocumentResponse(BaseModel):
    success: bool = True
    document: GeneratedDocumentResponse


# Document Schemas
class DocumentMetadata(BaseModel):
    """Versioned metadata blob stored with every document."""

    format_version: Literal[1] = 1
    generated_at: datetime
    ai_model: str


class DocumentRecord(BaseModel):
    """Schema for stored document details."""

    id: str
    user_id: str
    title: str
    template_type: str
    file_path: str
    content_preview: Optional[str] = None
    original_sections: Dict[str, Any] = Field(default_factory=dict)
    parsed_sections: Dict[str, Any] = Field(default_factory=dict)
    metadata: Optional[DocumentMetadata] = None
    file_size: int
    file_format: str
    is_favorite: bool = False
    is_archived: bool = False
    created_at: datetime
    updated_at: datetime
    tags: List[str] = Field(default_factory=list)


class DocumentQuery(BaseModel):
    """Listing options; filters other than owner and archived apply only when set."""

    page: int = Field(1, ge=1)
    limit: int = Field(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE)
    search: str = ""
    template_type: str = ""
    sort_by: SortField = "created_at"
    sort_order: SortOrder = "DESC"
    favorites: bool = False
    archived: bool = False


class DocumentPage(BaseModel):
    """Schema for a paginated document list."""

    documents: List[DocumentRecord]
    total: int
    page: int
    limit: int
    total_pages: int


class DeleteDocumentResponse(BaseModel):
    success: bool = True
    message: str = "Document deleted successfully"
    outcome: str


class TagsRequest(BaseModel):
    tags: List[str] = Field(default_factory=list)


class TagsResponse(BaseModel):
    success: bool = True
    tags: List[str]


class DuplicateResponse(BaseModel):
    success: bool = True
    document_id: str


# Batch / Export Schemas
class BatchRequest(BaseModel):
    """Apply one action (delete, favorite, archive) to many documents."""

    action: str
    document_ids: List[str] = Field(..., alias="documentIds")
    data: Dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(populate_by_name=True)


class BatchItemResponse(BaseModel):
    document_id: str
    success: bool
    error: Optional[str] = None


class BatchResponse(BaseModel):
    success: bool = True
    results: List[BatchItemResponse]


class ExportRequest(BaseModel):
    document_ids: List[str] = Field(..., alias="documentIds")
    format: str = "zip"

    model_config = ConfigDict(populate_by_name=True)


# Analytics Schemas
class DailyActivity(BaseModel):
    date: str
    template_type: str
    count: int
    avg_generation_time: Optional[float] = None


class AnalyticsSummary(BaseModel):
    total_documents: int = 0
    templates_used: int = 0
    total_storage_bytes: int = 0
    avg_generation_time: Optional[float] = None
    favorite_documents: int = 0


class UserAnalytics(BaseModel):
    daily_activity: List[DailyActivity]
    summary: AnalyticsSummary


# Health Check Schema
class HealthCheckResponse(BaseModel):
    """Schema for health check response."""

    status: str
    database: str
    language_model: str
    timestamp: datetime
