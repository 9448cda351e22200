"""
SQLAlchemy ORM models for the document writer database.
"""
from sqlalchemy import (
    Column,
    Integer,
    String,
    Text,
    DateTime,
    ForeignKey,
    Boolean,
    JSON,
)
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
import uuid

from app.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


# Models
class Document(Base):
    """Generated document: the stored file plus its metadata."""

    __tablename__ = "documents"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(255), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    template_type = Column(String(100), nullable=False, index=True)
    file_path = Column(String(1024), nullable=False, unique=True)
    content_preview = Column(Text, nullable=True)
    original_sections = Column(JSON, nullable=True)  # user input as submitted
    parsed_sections = Column(JSON, nullable=True)  # serialised SectionMap
    metadata_json = Column("metadata", JSON, nullable=True)  # generated_at, version, model
    file_size = Column(Integer, nullable=False, default=0)
    file_format = Column(String(20), nullable=False, default="docx")
    is_favorite = Column(Boolean, default=False, nullable=False, index=True)
    is_archived = Column(Boolean, default=False, nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    # Relationships
    tags = relationship(
        "DocumentTag",
        back_populates="document",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class DocumentTag(Base):
    """Free-form tag attached to a document."""

    __tablename__ = "document_tags"

    id = Column(String(36), primary_key=True, default=new_id)
    document_id = Column(
        String(36), ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True
    )
    tag_name = Column(String(100), nullable=False)

    # Relationships
    document = relationship("Document", back_populates="tags")


class GenerationLog(Base):
    """Append-only record of one language-model generation, for analytics."""

    __tablename__ = "generation_logs"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(255), nullable=False, index=True)
    document_id = Column(String(36), nullable=True, index=True)  # null when generation failed
    template_type = Column(String(100), nullable=False)
    input_data = Column(JSON, nullable=True)
    generated_content = Column(Text, nullable=True)  # truncated
    success = Column(Boolean, nullable=False, default=True)
    model_used = Column(String(100), nullable=True)
    generation_time_ms = Column(Integer, nullable=True)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
