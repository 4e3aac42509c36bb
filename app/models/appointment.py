"""Appointment model.

Appointments are mirrored from the tenant's assistant calendar by the
background sync. calendar_event_id is the dedup key: the first sync of an
event inserts a row, later syncs update it in place.
"""

from sqlalchemy import Column, String, DateTime, Text
from sqlalchemy.dialects.postgresql import UUID
import uuid
from datetime import datetime
from app.core.database import Base


class Appointment(Base):
    __tablename__ = "appointments"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(String, nullable=False, index=True)
    assistant_id = Column(String, nullable=False, default="", index=True)
    calendar_event_id = Column(String, unique=True, nullable=False)
    start_time = Column(DateTime, nullable=False, index=True)
    end_time = Column(DateTime, nullable=False)
    summary = Column(Text, nullable=False)
    description = Column(Text, nullable=True)

    # Booking metadata written by the assistant into the event
    email = Column(String, nullable=True)
    phone = Column(String, nullable=True)
    service = Column(String, nullable=True)
    patient_type = Column(String, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)  # first seen
    synced_at = Column(DateTime, default=datetime.utcnow, nullable=False)
