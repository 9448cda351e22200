"""initial schema

Revision ID: 001
Revises:
Create Date: 2026-10-18

All 3 tables as defined in app/models/database_models.py:
documents, document_tags, generation_logs.
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # ── documents ─────────────────────────────────────────────────────────
    op.create_table(
        "documents",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(255), nullable=False, index=True),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("template_type", sa.String(100), nullable=False, index=True),
        sa.Column("file_path", sa.String(1024), nullable=False, unique=True),
        sa.Column("content_preview", sa.Text, nullable=True),
        sa.Column("original_sections", sa.JSON, nullable=True),
        sa.Column("parsed_sections", sa.JSON, nullable=True),
        sa.Column("metadata", sa.JSON, nullable=True),
        sa.Column("file_size", sa.Integer, nullable=False, server_default="0"),
        sa.Column("file_format", sa.String(20), nullable=False, server_default="docx"),
        sa.Column("is_favorite", sa.Boolean, nullable=False, server_default=sa.false(), index=True),
        sa.Column("is_archived", sa.Boolean, nullable=False, server_default=sa.false(), index=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    # ── document_tags ─────────────────────────────────────────────────────
    op.create_table(
        "document_tags",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("document_id", sa.String(36), sa.ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("tag_name", sa.String(100), nullable=False),
    )

    # ── generation_logs ───────────────────────────────────────────────────
    op.create_table(
        "generation_logs",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(255), nullable=False, index=True),
        sa.Column("document_id", sa.String(36), nullable=True, index=True),
        sa.Column("template_type", sa.String(100), nullable=False),
        sa.Column("input_data", sa.JSON, nullable=True),
        sa.Column("generated_content", sa.Text, nullable=True),
        sa.Column("success", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("model_used", sa.String(100), nullable=True),
        sa.Column("generation_time_ms", sa.Integer, nullable=True),
        sa.Column("error_message", sa.Text, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False, index=True),
    )


def downgrade() -> None:
    op.drop_table("generation_logs")
    op.drop_table("document_tags")
    op.drop_table("documents")
