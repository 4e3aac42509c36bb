"""Call log model.

One row per call handled by the voice assistant, synced from the
voice-assistant platform. The platform's call ID is the primary key.
"""

from sqlalchemy import Column, String, DateTime, Integer, Text
from sqlalchemy.types import JSON
from datetime import datetime
from app.core.database import Base


class CallLog(Base):
    __tablename__ = "call_logs"

    id = Column(String, primary_key=True)  # platform call ID
    tenant_id = Column(String, nullable=False, index=True)
    assistant_id = Column(String, nullable=False, index=True)
    assistant_name = Column(String, nullable=False)
    phone_customer = Column(String, nullable=True)
    phone_assistant = Column(String, nullable=True)
    started_at = Column(DateTime, nullable=False, index=True)
    duration = Column(Integer, nullable=False, default=0)  # seconds
    result = Column(String, nullable=True)  # pass, fail, null
    ended_reason = Column(Text, nullable=False)
    audio_url = Column(String, nullable=True)
    transcript = Column(JSON(none_as_null=True), nullable=True)  # string, list of turns or object
    synced_at = Column(DateTime, default=datetime.utcnow)
