"""Knowledge base models.

Scraped website content is packed into size-bounded text files that are
uploaded to the voice-assistant platform's file store. kb_files keeps one
row per packed file (also when the upload failed, for auditing), kb_meta
one summary row per tenant.
"""

from sqlalchemy import Column, String, DateTime, Integer, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.types import JSON
import uuid
from datetime import datetime
from app.core.database import Base


class KnowledgeFile(Base):
    __tablename__ = "kb_files"
    __table_args__ = (
        UniqueConstraint("tenant_id", "business_name", "file_sequence", name="uq_kb_files_sequence"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(String, nullable=False, index=True)
    business_name = Column(String, nullable=False, default="")
    file_sequence = Column(Integer, nullable=False)
    vapi_file_id = Column(String, nullable=True)  # null when the upload failed
    file_name = Column(String, nullable=False)
    content_size = Column(Integer, nullable=False)  # bytes, UTF-8
    pages_included = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class KnowledgeFileCounter(Base):
    """Next free file sequence per (tenant, business); advanced atomically."""
    __tablename__ = "kb_file_counters"

    tenant_id = Column(String, primary_key=True)
    business_name = Column(String, primary_key=True)
    next_sequence = Column(Integer, nullable=False)


class KnowledgeMeta(Base):
    __tablename__ = "kb_meta"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(String, unique=True, nullable=False)
    total_files = Column(Integer, nullable=False, default=0)
    total_content_size = Column(Integer, nullable=False, default=0)
    pages_scraped = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
