"""
Mirror assistant bookings from each tenant's assistant calendar into the
appointments table.

Events are matched on their calendar event id: the first sync inserts a
row, later syncs overwrite the event fields and bump synced_at. An
unchanged event therefore only ever changes synced_at.
"""

import logging
from calendar import monthrange
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.models.appointment import Appointment
from app.models.calendar import CalendarCredential
from app.services.calendar import (
    GoogleCalendarClient,
    get_assistant_calendar_id,
    get_credentials,
    get_valid_access_token,
)
from app.utils.upsert import upsert

logger = logging.getLogger(__name__)

LOOKBACK_MONTHS = 1
LOOKAHEAD_MONTHS = 3


def add_months(value: datetime, months: int) -> datetime:
    """Shift by whole calendar months, clamping the day (Jan 31 + 1 -> Feb 28/29)."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def sync_window(now: datetime) -> tuple[datetime, datetime]:
    return add_months(now, -LOOKBACK_MONTHS), add_months(now, LOOKAHEAD_MONTHS)


def is_assistant_event(event: dict) -> bool:
    private = (event.get("extendedProperties") or {}).get("private") or {}
    summary = event.get("summary") or ""
    description = event.get("description") or ""
    return (
        private.get("booked_by") == "assistant"
        or "AI Assistant" in summary
        or "Assistant" in summary
        or "booked by assistant" in description
        or "AI assistant" in description
    )


def parse_event_time(value: str) -> datetime:
    """RFC 3339 timestamp -> naive UTC datetime."""
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def event_to_values(tenant_id: str, event: dict) -> Optional[dict]:
    """Appointment column values for a calendar event, or None if it is incomplete."""
    start = (event.get("start") or {}).get("dateTime")
    end = (event.get("end") or {}).get("dateTime")
    if not event.get("id") or not start or not end or not event.get("summary"):
        return None

    metadata = (event.get("extendedProperties") or {}).get("private") or {}
    attendees = event.get("attendees") or []
    email = (attendees[0].get("email") if attendees else None) or metadata.get("email") or ""

    return {
        "tenant_id": tenant_id,
        "assistant_id": metadata.get("assistant_id") or "",
        "calendar_event_id": event["id"],
        "start_time": parse_event_time(start),
        "end_time": parse_event_time(end),
        "summary": event["summary"],
        "description": event.get("description") or "",
        "email": email,
        "phone": metadata.get("phone") or "",
        "service": metadata.get("service") or "",
        "patient_type": metadata.get("patient_type") or "",
    }


async def sync_tenant_appointments(
    db: AsyncSession,
    tenant_id: str,
    client: GoogleCalendarClient,
    now: Optional[datetime] = None,
) -> int:
    """Sync one tenant's assistant calendar. Returns the number of events upserted."""
    access_token = await get_valid_access_token(db, tenant_id, client)
    if not access_token:
        logger.info("No valid access token for tenant %s, skipping", tenant_id)
        return 0

    credentials = await get_credentials(db, tenant_id)
    if credentials is None or not credentials.user_email:
        logger.info("No user email found for tenant %s, skipping", tenant_id)
        return 0

    calendar_id = await get_assistant_calendar_id(db, tenant_id, credentials.user_email, access_token, client)

    time_min, time_max = sync_window(now or datetime.utcnow())
    events = await client.list_events(access_token, calendar_id, time_min, time_max)
    assistant_events = [e for e in events if is_assistant_event(e)]
    logger.info(
        "Found %d events (%d assistant bookings) in calendar %s for tenant %s",
        len(events), len(assistant_events), calendar_id, tenant_id,
    )

    synced = 0
    synced_at = datetime.utcnow()
    for event in assistant_events:
        values = event_to_values(tenant_id, event)
        if values is None:
            continue
        values["synced_at"] = synced_at
        await upsert(db, Appointment, values, conflict_keys=["calendar_event_id"])
        synced += 1

    await db.commit()
    return synced


async def sync_appointments_for_all_tenants(
    session_factory: async_sessionmaker,
    client: Optional[GoogleCalendarClient] = None,
) -> dict[str, int]:
    """Sync every tenant with Google credentials; one tenant's failure never stops the rest."""
    logger.info("Starting background appointment sync for all tenants")
    client = client or GoogleCalendarClient()

    async with session_factory() as db:
        result = await db.execute(
            select(CalendarCredential.tenant_id)
            .where(CalendarCredential.provider == "google")
            .distinct()
        )
        tenant_ids = list(result.scalars().all())

    synced: dict[str, int] = {}
    for tenant_id in tenant_ids:
        try:
            async with session_factory() as db:
                synced[tenant_id] = await sync_tenant_appointments(db, tenant_id, client)
        except Exception:
            logger.exception("Appointment sync failed for tenant %s", tenant_id)
            continue
        logger.info("Synced %d appointments for tenant %s", synced[tenant_id], tenant_id)

    logger.info("Appointment sync finished for %d/%d tenants", len(synced), len(tenant_ids))
    return synced
