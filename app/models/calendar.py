"""Calendar connection models.

CalendarCredential holds the OAuth tokens obtained when a tenant connects
Google Calendar. AssistantCalendar records the dedicated calendar that
holds bookings made by the voice assistant.
"""

from sqlalchemy import Column, String, DateTime, Boolean, Text
from sqlalchemy.dialects.postgresql import UUID
import uuid
from datetime import datetime
from app.core.database import Base


class CalendarCredential(Base):
    __tablename__ = "calendar_credentials"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(String, nullable=False, index=True)
    provider = Column(String, nullable=False, default="google")  # google, outlook
    access_token = Column(Text, nullable=False)
    refresh_token = Column(Text, nullable=True)
    expiry_date = Column(DateTime, nullable=True)
    user_email = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)


class AssistantCalendar(Base):
    __tablename__ = "assistant_calendars"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(String, nullable=False, index=True)
    google_calendar_id = Column(String, nullable=False)
    calendar_name = Column(String, nullable=False)
    user_email = Column(String, nullable=False)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)
