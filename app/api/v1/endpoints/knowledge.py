"""Knowledge base endpoints.

- POST /api/v1/knowledge/scrape → crawl a website into knowledge files
- GET  /api/v1/knowledge/{tenant_id} → list a tenant's knowledge files
- GET  /api/v1/knowledge/{tenant_id}/{business_name} → files for one business
- POST /api/v1/knowledge/{tenant_id}/{business_name}/attach → point an assistant at them
"""

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.models.knowledge import KnowledgeFile
from app.schemas.knowledge import AttachRequest, AttachResult, KnowledgeFileOut, ScrapeRequest, ScrapingResult
from app.services.knowledge import attach_knowledge_to_assistant, list_knowledge_files, scrape_and_process_website
from app.services.llm import LLMClient
from app.services.scraper import scrape_website
from app.services.vapi import VapiClient

router = APIRouter()
logger = logging.getLogger(__name__)


def get_vapi_client() -> VapiClient:
    return VapiClient()


def get_llm_client() -> LLMClient:
    return LLMClient()


def get_scraper():
    return scrape_website


def _file_out(record: KnowledgeFile) -> KnowledgeFileOut:
    pages = list(record.pages_included or [])
    return KnowledgeFileOut(
        id=record.id,
        tenant_id=record.tenant_id,
        business_name=record.business_name,
        file_sequence=record.file_sequence,
        vapi_file_id=record.vapi_file_id,
        file_name=record.file_name,
        content_size=record.content_size,
        size_kb=round(record.content_size / 1024),
        pages_included=pages,
        pages_count=len(pages),
        created_at=record.created_at,
    )


@router.post("/scrape", response_model=ScrapingResult)
async def scrape_website_to_knowledge(
    data: ScrapeRequest,
    db: AsyncSession = Depends(get_db),
    vapi: VapiClient = Depends(get_vapi_client),
    llm: LLMClient = Depends(get_llm_client),
    scrape=Depends(get_scraper),
):
    """Scrape a website and upload it as knowledge files for the tenant.

    Crawl failures come back as status="error" with nothing stored.
    """
    return await scrape_and_process_website(
        db,
        data.url,
        data.tenant_id,
        data.business_name,
        data.business_type,
        scrape=scrape,
        vapi=vapi,
        llm=llm,
    )


@router.get("/{tenant_id}", response_model=list[KnowledgeFileOut])
async def list_tenant_files(tenant_id: str, db: AsyncSession = Depends(get_db)):
    records = await list_knowledge_files(db, tenant_id)
    return [_file_out(r) for r in records]


@router.get("/{tenant_id}/{business_name}", response_model=list[KnowledgeFileOut])
async def list_business_files(tenant_id: str, business_name: str, db: AsyncSession = Depends(get_db)):
    records = await list_knowledge_files(db, tenant_id, business_name)
    if not records:
        raise HTTPException(status_code=404, detail="No knowledge files for this business")
    return [_file_out(r) for r in records]


@router.post("/{tenant_id}/{business_name}/attach", response_model=AttachResult)
async def attach_to_assistant(
    tenant_id: str,
    business_name: str,
    data: AttachRequest,
    db: AsyncSession = Depends(get_db),
    vapi: VapiClient = Depends(get_vapi_client),
):
    """Replace the assistant's knowledge base with this business's uploaded files."""
    file_ids, attached = await attach_knowledge_to_assistant(db, tenant_id, business_name, data.assistant_id, vapi)
    if not file_ids:
        raise HTTPException(status_code=404, detail="No uploaded knowledge files for this business")
    if not attached:
        raise HTTPException(status_code=502, detail="Voice platform rejected the knowledge base update")
    return AttachResult(assistant_id=data.assistant_id, file_ids=file_ids, attached=True)
