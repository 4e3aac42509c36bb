"""
Google Calendar integration.

A thin REST client (token refresh, calendars, events, free/busy) plus the
database helpers that keep a tenant's OAuth tokens fresh and resolve the
dedicated assistant calendar that holds assistant bookings.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional
from urllib.parse import quote

import httpx
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.models.calendar import AssistantCalendar, CalendarCredential
from app.utils.http import default_timeout, request_with_retry

logger = logging.getLogger(__name__)

GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_CALENDAR_API = "https://www.googleapis.com/calendar/v3"

ASSISTANT_CALENDAR_NAME = "AI Assistant Bookings"
ASSISTANT_CALENDAR_DESCRIPTION = "Calendar for AI assistant appointment bookings"
ASSISTANT_CALENDAR_TIMEZONE = "Europe/London"


class CalendarAuthError(Exception):
    """Token refresh failed or the provider rejected the access token."""


class CalendarAPIError(Exception):
    def __init__(self, status_code: int, message: str = ""):
        super().__init__(f"Google Calendar API error {status_code}: {message}")
        self.status_code = status_code


class GoogleCalendarClient:
    def __init__(
        self,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.client_id = client_id if client_id is not None else settings.GOOGLE_CLIENT_ID
        self.client_secret = client_secret if client_secret is not None else settings.GOOGLE_CLIENT_SECRET
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=default_timeout(), transport=self._transport)

    async def refresh_access_token(self, refresh_token: str) -> tuple[str, Optional[datetime]]:
        """Exchange a refresh token for a new access token and its expiry (naive UTC)."""
        async with self._client() as client:
            response = await request_with_retry(
                client,
                "POST",
                GOOGLE_TOKEN_URL,
                data={
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "refresh_token": refresh_token,
                    "grant_type": "refresh_token",
                },
            )
        if response.status_code != 200:
            raise CalendarAuthError(f"Token refresh failed: {response.status_code} - {response.text[:200]}")

        data = response.json()
        access_token = data.get("access_token")
        if not access_token:
            raise CalendarAuthError("Token refresh response has no access_token")
        expires_in = data.get("expires_in")
        expiry = datetime.utcnow() + timedelta(seconds=int(expires_in)) if expires_in else None
        return access_token, expiry

    async def _api(self, access_token: str, method: str, path: str, **kwargs) -> dict:
        async with self._client() as client:
            response = await request_with_retry(
                client,
                method,
                f"{GOOGLE_CALENDAR_API}{path}",
                headers={"Authorization": f"Bearer {access_token}"},
                **kwargs,
            )
        if response.status_code == 401:
            raise CalendarAuthError("Access token rejected by Google Calendar")
        if response.status_code >= 400:
            raise CalendarAPIError(response.status_code, response.text[:200])
        return response.json() if response.content else {}

    async def get_calendar(self, access_token: str, calendar_id: str) -> dict:
        return await self._api(access_token, "GET", f"/calendars/{quote(calendar_id, safe='')}")

    async def create_calendar(
        self,
        access_token: str,
        summary: str = ASSISTANT_CALENDAR_NAME,
        description: str = ASSISTANT_CALENDAR_DESCRIPTION,
        time_zone: str = ASSISTANT_CALENDAR_TIMEZONE,
    ) -> str:
        data = await self._api(
            access_token,
            "POST",
            "/calendars",
            json={"summary": summary, "description": description, "timeZone": time_zone},
        )
        return data["id"]

    async def list_events(
        self,
        access_token: str,
        calendar_id: str,
        time_min: datetime,
        time_max: datetime,
        max_results: int = 1000,
    ) -> list[dict]:
        """Single (expanded) events in the window, ordered by start time."""
        events: list[dict] = []
        params = {
            "timeMin": _rfc3339(time_min),
            "timeMax": _rfc3339(time_max),
            "singleEvents": "true",
            "orderBy": "startTime",
            "maxResults": str(max_results),
        }
        path = f"/calendars/{quote(calendar_id, safe='')}/events"
        while True:
            data = await self._api(access_token, "GET", path, params=params)
            events.extend(data.get("items") or [])
            page_token = data.get("nextPageToken")
            if not page_token:
                return events
            params = {**params, "pageToken": page_token}

    async def free_busy(
        self,
        access_token: str,
        calendar_ids: list[str],
        time_min: datetime,
        time_max: datetime,
    ) -> dict[str, list[dict]]:
        """Busy intervals per calendar id."""
        data = await self._api(
            access_token,
            "POST",
            "/freeBusy",
            json={
                "timeMin": _rfc3339(time_min),
                "timeMax": _rfc3339(time_max),
                "items": [{"id": cid} for cid in calendar_ids],
            },
        )
        calendars = data.get("calendars") or {}
        return {cid: (calendars.get(cid) or {}).get("busy", []) for cid in calendar_ids}


def _rfc3339(value: datetime) -> str:
    if value.tzinfo is None:
        return value.strftime("%Y-%m-%dT%H:%M:%SZ")
    return value.isoformat()


# ---------------------------------------------------------------------------
# Database helpers
# ---------------------------------------------------------------------------

async def get_credentials(db: AsyncSession, tenant_id: str) -> Optional[CalendarCredential]:
    result = await db.execute(
        select(CalendarCredential)
        .where(CalendarCredential.tenant_id == tenant_id, CalendarCredential.provider == "google")
        .order_by(CalendarCredential.created_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def get_valid_access_token(
    db: AsyncSession, tenant_id: str, client: GoogleCalendarClient
) -> Optional[str]:
    """Stored access token, refreshed (and persisted) first if it has expired.

    Returns None when the tenant has no credentials, or the token expired and
    there is no refresh token.
    """
    credentials = await get_credentials(db, tenant_id)
    if credentials is None:
        return None

    if credentials.expiry_date and credentials.expiry_date <= datetime.utcnow():
        if not credentials.refresh_token:
            logger.info("Access token for tenant %s expired and no refresh token is stored", tenant_id)
            return None
        access_token, expiry = await client.refresh_access_token(credentials.refresh_token)
        credentials.access_token = access_token
        credentials.expiry_date = expiry
        await db.commit()
        logger.info("Refreshed Google access token for tenant %s", tenant_id)
        return access_token

    return credentials.access_token


async def _calendar_exists(client: GoogleCalendarClient, access_token: str, calendar_id: str) -> bool:
    try:
        await client.get_calendar(access_token, calendar_id)
        return True
    except CalendarAPIError as e:
        if e.status_code in (404, 410):
            return False
        raise


async def get_assistant_calendar_id(
    db: AsyncSession,
    tenant_id: str,
    user_email: str,
    access_token: str,
    client: GoogleCalendarClient,
) -> str:
    """Resolve the tenant's assistant calendar, creating one if none survives."""
    result = await db.execute(
        select(AssistantCalendar)
        .where(AssistantCalendar.tenant_id == tenant_id, AssistantCalendar.is_active.is_(True))
        .limit(1)
    )
    active = result.scalar_one_or_none()
    if active is not None:
        if await _calendar_exists(client, access_token, active.google_calendar_id):
            return active.google_calendar_id
        logger.info("Active calendar %s not found in Google, marking inactive", active.google_calendar_id)
        active.is_active = False
        await db.commit()

    # Any earlier calendar for this account that still exists, newest first
    result = await db.execute(
        select(AssistantCalendar)
        .where(AssistantCalendar.tenant_id == tenant_id, AssistantCalendar.user_email == user_email)
        .order_by(AssistantCalendar.created_at.desc())
    )
    for candidate in result.scalars().all():
        if await _calendar_exists(client, access_token, candidate.google_calendar_id):
            await db.execute(
                update(AssistantCalendar)
                .where(AssistantCalendar.tenant_id == tenant_id)
                .values(is_active=False)
            )
            candidate.is_active = True
            await db.commit()
            logger.info("Reusing existing assistant calendar %s", candidate.google_calendar_id)
            return candidate.google_calendar_id
        candidate.is_active = False

    logger.info("No reusable calendars found, creating new assistant calendar for tenant %s", tenant_id)
    calendar_id = await client.create_calendar(access_token)
    db.add(AssistantCalendar(
        tenant_id=tenant_id,
        google_calendar_id=calendar_id,
        calendar_name=ASSISTANT_CALENDAR_NAME,
        user_email=user_email,
        is_active=True,
    ))
    await db.commit()
    return calendar_id
