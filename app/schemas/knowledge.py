"""Pydantic schemas for the knowledge base pipeline."""

from datetime import datetime
from typing import Literal
from uuid import UUID
from pydantic import BaseModel, Field


class ContactInfo(BaseModel):
    phone: str = ""
    email: str = ""
    website: str = ""


class MandatoryFields(BaseModel):
    """Business facts every assistant needs, extracted from the website."""
    services: str = ""
    opening_hours: str = ""
    contact_info: ContactInfo = Field(default_factory=ContactInfo)
    address: str = ""
    additional_notes: str = ""


class ScrapingResult(BaseModel):
    status: Literal["success", "error"]
    mandatory_fields: MandatoryFields = Field(default_factory=MandatoryFields)
    pages_processed: int = 0
    files_created: int = 0
    error: str | None = None


class ScrapeRequest(BaseModel):
    """Request to build a tenant's knowledge base from its website."""
    tenant_id: str = Field(min_length=1)
    url: str = Field(min_length=1)
    business_name: str | None = None
    business_type: str | None = None


class KnowledgeFileOut(BaseModel):
    id: UUID
    tenant_id: str
    business_name: str
    file_sequence: int
    vapi_file_id: str | None = None
    file_name: str
    content_size: int
    size_kb: int
    pages_included: list[str]
    pages_count: int
    created_at: datetime | None = None


class AttachRequest(BaseModel):
    assistant_id: str = Field(min_length=1)


class AttachResult(BaseModel):
    assistant_id: str
    file_ids: list[str]
    attached: bool
