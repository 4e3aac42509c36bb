"""
Knowledge base pipeline.

scrape -> extract mandatory business fields -> clean -> pack -> reserve
sequence numbers -> upload -> persist metadata.

Files are numbered per (tenant, business) from a counter row that is
advanced with a single upsert, so two runs for the same business can never
hand out the same sequence number, and numbering continues across runs.
"""

import json
import logging
from dataclasses import replace
from typing import Awaitable, Callable, Optional
from urllib.parse import urlparse

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.models.business_info import BusinessInfo
from app.models.knowledge import KnowledgeFile, KnowledgeFileCounter, KnowledgeMeta
from app.schemas.knowledge import ContactInfo, MandatoryFields, ScrapingResult
from app.services.content_cleaner import clean_page_content
from app.services.knowledge_packer import CleanedPage, knowledge_file_name, pack_pages
from app.services.llm import LLMClient, LLMError
from app.services.scraper import CrawlError, ScrapedPage, extract_page, scrape_website
from app.services.vapi import VapiClient
from app.utils.upsert import dialect_insert, insert_ignore, upsert

logger = logging.getLogger(__name__)

EXTRACTION_CHAR_BUDGET = 8000

EXTRACTION_SYSTEM_PROMPT = (
    "Extract specific business information from website content. Respond with JSON in this format: "
    '{ "services": string, "opening_hours": string, '
    '"contact_info": { "phone": string, "email": string, "website": string }, "address": string }'
)

EXTRACTION_USER_PROMPT = """Extract the following mandatory business information from this website content:

1. Services/Products: List of main services or products offered
2. Opening Hours: Business operating hours/schedule
3. Contact Info: Phone number, email address, and website URL
4. Address: Physical business address

If any information is not found, use empty string. Be precise and factual.

Website content:
{content}"""


def _as_text(value) -> str:
    if value is None:
        return ""
    if isinstance(value, list):
        return ", ".join(str(v).strip() for v in value if str(v).strip())
    return str(value).strip()


async def extract_mandatory_fields(content: str, llm: Optional[LLMClient] = None) -> MandatoryFields:
    """Ask the LLM for services, hours, contact info and address.

    Returns empty fields on any failure; extraction never blocks the pipeline.
    """
    llm = llm or LLMClient()
    if not llm.configured:
        logger.warning("OpenAI not configured - skipping mandatory field extraction")
        return MandatoryFields()

    try:
        raw = await llm.complete_json(
            EXTRACTION_SYSTEM_PROMPT,
            EXTRACTION_USER_PROMPT.format(content=content[:EXTRACTION_CHAR_BUDGET]),
            model=settings.OPENAI_EXTRACTION_MODEL,
            temperature=0.1,
        )
        data = json.loads(raw or "{}")
    except (LLMError, ValueError) as e:
        logger.error("Error extracting mandatory fields: %s", e)
        return MandatoryFields()

    if not isinstance(data, dict):
        return MandatoryFields()
    contact = data.get("contact_info")
    if not isinstance(contact, dict):
        contact = {}

    return MandatoryFields(
        services=_as_text(data.get("services")),
        opening_hours=_as_text(data.get("opening_hours")),
        contact_info=ContactInfo(
            phone=_as_text(contact.get("phone")),
            email=_as_text(contact.get("email")),
            website=_as_text(contact.get("website")),
        ),
        address=_as_text(data.get("address")),
        additional_notes=_as_text(data.get("additional_notes")),
    )


async def reserve_sequences(db: AsyncSession, tenant_id: str, business_name: str, count: int) -> int:
    """Reserve `count` consecutive file sequence numbers and return the first.

    The counter row is created on first use, seeded one past the highest
    sequence already stored in kb_files.
    """
    if count < 1:
        raise ValueError("count must be at least 1")

    result = await db.execute(
        select(func.max(KnowledgeFile.file_sequence)).where(
            KnowledgeFile.tenant_id == tenant_id,
            KnowledgeFile.business_name == business_name,
        )
    )
    seed = (result.scalar() or 0) + 1

    stmt = dialect_insert(db, KnowledgeFileCounter).values(
        tenant_id=tenant_id,
        business_name=business_name,
        next_sequence=seed + count,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["tenant_id", "business_name"],
        set_={"next_sequence": KnowledgeFileCounter.next_sequence + count},
    ).returning(KnowledgeFileCounter.next_sequence)

    next_free = (await db.execute(stmt)).scalar_one()
    return next_free - count


def _page_text(page: ScrapedPage) -> str:
    if page.text:
        return page.text
    if page.html:
        return extract_page(page.html, page.url).text
    return ""


async def _save_metadata(
    db: AsyncSession,
    tenant_id: str,
    records: list[KnowledgeFile],
    mandatory_fields: MandatoryFields,
    pages: list[ScrapedPage],
    business_name: Optional[str],
    business_type: Optional[str],
) -> None:
    db.add_all(records)

    total_size = sum(r.content_size for r in records)
    await upsert(
        db,
        KnowledgeMeta,
        {
            "tenant_id": tenant_id,
            "total_files": len(records),
            "total_content_size": total_size,
            "pages_scraped": len(pages),
        },
        conflict_keys=["tenant_id"],
    )

    # The first business scraped for a tenant owns the profile
    if business_name:
        parsed = urlparse(pages[0].url) if pages else None
        services = [s.strip() for s in mandatory_fields.services.split(",") if s.strip()]
        result = await insert_ignore(
            db,
            BusinessInfo,
            {
                "tenant_id": tenant_id,
                "business_name": business_name,
                "industry": business_type or "Business",
                "website": f"{parsed.scheme}://{parsed.netloc}" if parsed else "",
                "location": mandatory_fields.address,
                "description": mandatory_fields.additional_notes
                or f"{business_name} - Business information extracted from website",
                "services": services,
                "opening_hours": mandatory_fields.opening_hours,
                "contact_email": mandatory_fields.contact_info.email,
                "contact_phone": mandatory_fields.contact_info.phone,
            },
            conflict_keys=["tenant_id"],
        )
        if result.rowcount:
            logger.info("Business information saved for %s (first business for tenant)", business_name)
        else:
            logger.info("Business information preserved for tenant %s", tenant_id)

    logger.info("Saved metadata for %d files, total size: %dKB", len(records), round(total_size / 1024))


async def scrape_and_process_website(
    db: AsyncSession,
    url: str,
    tenant_id: str,
    business_name: Optional[str] = None,
    business_type: Optional[str] = None,
    *,
    scrape: Callable[[str], Awaitable[list[ScrapedPage]]] = scrape_website,
    vapi: Optional[VapiClient] = None,
    llm: Optional[LLMClient] = None,
    max_file_bytes: Optional[int] = None,
) -> ScrapingResult:
    """Build (or extend) a tenant's knowledge base from its website."""
    logger.info("Starting website scraping for %s, tenant: %s", url, tenant_id)
    vapi = vapi or VapiClient()

    try:
        pages = await scrape(url)
    except CrawlError as e:
        logger.error("Scraping failed for %s: %s", url, e)
        return ScrapingResult(status="error", error=str(e))

    if not pages:
        return ScrapingResult(status="error", error="No pages could be scraped from the website")

    logger.info("Processing %d scraped pages", len(pages))
    business_key = business_name or ""

    try:
        texts = [_page_text(p) for p in pages]
        mandatory_fields = await extract_mandatory_fields("\n\n".join(texts), llm)

        cleaned = [
            CleanedPage(url=p.url, title=p.title, text=clean_page_content(text, p.url))
            for p, text in zip(pages, texts)
        ]
        packed = pack_pages(cleaned, max_bytes=max_file_bytes)

        if packed:
            first = await reserve_sequences(db, tenant_id, business_key, len(packed))
            await db.commit()
            packed = [replace(f, sequence=first + i) for i, f in enumerate(packed)]

        records: list[KnowledgeFile] = []
        for packed_file in packed:
            file_name = knowledge_file_name(business_name, packed_file.sequence)
            file_id = await vapi.upload_file(packed_file.content, file_name)
            if file_id is None:
                logger.warning("Upload failed for %s; keeping metadata without a file id", file_name)
            records.append(KnowledgeFile(
                tenant_id=tenant_id,
                business_name=business_key,
                file_sequence=packed_file.sequence,
                vapi_file_id=file_id,
                file_name=file_name,
                content_size=packed_file.byte_size,
                pages_included=packed_file.source_urls,
            ))

        await _save_metadata(db, tenant_id, records, mandatory_fields, pages, business_name, business_type)
        await db.commit()
    except Exception as e:
        await db.rollback()
        logger.exception("Error processing website %s for tenant %s", url, tenant_id)
        return ScrapingResult(status="error", error=str(e))

    logger.info("Created %d knowledge base files for tenant %s", len(records), tenant_id)
    return ScrapingResult(
        status="success",
        mandatory_fields=mandatory_fields,
        pages_processed=len(pages),
        files_created=len(records),
    )


async def list_knowledge_files(
    db: AsyncSession, tenant_id: str, business_name: Optional[str] = None
) -> list[KnowledgeFile]:
    query = select(KnowledgeFile).where(KnowledgeFile.tenant_id == tenant_id)
    if business_name is not None:
        query = query.where(KnowledgeFile.business_name == business_name)
    query = query.order_by(KnowledgeFile.business_name, KnowledgeFile.file_sequence)
    result = await db.execute(query)
    return list(result.scalars().all())


async def get_assistant_file_ids(db: AsyncSession, tenant_id: str, business_name: str) -> list[str]:
    """Uploaded file IDs for a business, in sequence order. Failed uploads are excluded."""
    result = await db.execute(
        select(KnowledgeFile.vapi_file_id)
        .where(
            KnowledgeFile.tenant_id == tenant_id,
            KnowledgeFile.business_name == business_name,
            KnowledgeFile.vapi_file_id.is_not(None),
        )
        .order_by(KnowledgeFile.file_sequence)
    )
    return list(result.scalars().all())


async def attach_knowledge_to_assistant(
    db: AsyncSession,
    tenant_id: str,
    business_name: str,
    assistant_id: str,
    vapi: Optional[VapiClient] = None,
) -> tuple[list[str], bool]:
    vapi = vapi or VapiClient()
    file_ids = await get_assistant_file_ids(db, tenant_id, business_name)
    if not file_ids:
        return file_ids, False
    return file_ids, await vapi.attach_knowledge_files(assistant_id, file_ids)
