"""Analytics tables.

Daily rollups are recomputed from call_logs / appointments /
call_sentiment_analysis and written with an upsert on their natural key,
so re-running a day overwrites rather than double-counts.
"""

from sqlalchemy import Column, String, DateTime, Date, Integer, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.types import JSON
import uuid
from datetime import datetime
from app.core.database import Base


class SentimentLabel:
    POSITIVE = "positive"
    NEUTRAL = "neutral"
    NEGATIVE = "negative"

    ALL = (POSITIVE, NEUTRAL, NEGATIVE)


class CallSentimentAnalysis(Base):
    __tablename__ = "call_sentiment_analysis"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    call_id = Column(String, unique=True, nullable=False, index=True)
    tenant_id = Column(String, nullable=False, index=True)
    sentiment_score = Column(Integer, nullable=False)  # 0-100
    sentiment_label = Column(String, nullable=False)
    key_topics = Column(JSON, nullable=True)
    analyzed_at = Column(DateTime, default=datetime.utcnow)


class AnalyticsDailySummary(Base):
    __tablename__ = "analytics_daily_summary"
    __table_args__ = (UniqueConstraint("tenant_id", "date", name="uq_daily_summary_tenant_date"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(String, nullable=False, index=True)
    date = Column(Date, nullable=False)
    total_calls = Column(Integer, default=0, nullable=False)
    successful_calls = Column(Integer, default=0, nullable=False)
    total_appointments = Column(Integer, default=0, nullable=False)
    avg_call_duration = Column(Integer, default=0, nullable=False)  # seconds
    total_call_time = Column(Integer, default=0, nullable=False)  # minutes
    sentiment_positive = Column(Integer, default=0, nullable=False)
    sentiment_neutral = Column(Integer, default=0, nullable=False)
    sentiment_negative = Column(Integer, default=0, nullable=False)
    avg_sentiment_score = Column(Integer, default=0, nullable=False)  # 0-100
    call_outcomes = Column(JSON, nullable=True)  # {"customer-ended-call": 5, ...}
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class AssistantPerformanceDaily(Base):
    __tablename__ = "assistant_performance_daily"
    __table_args__ = (UniqueConstraint("assistant_id", "date", name="uq_assistant_perf_assistant_date"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    assistant_id = Column(String, nullable=False, index=True)
    assistant_name = Column(String, nullable=False)
    tenant_id = Column(String, nullable=False, index=True)
    date = Column(Date, nullable=False)
    call_count = Column(Integer, default=0, nullable=False)
    appointment_count = Column(Integer, default=0, nullable=False)
    avg_duration = Column(Integer, default=0, nullable=False)  # seconds
    sentiment_avg = Column(Integer, default=0, nullable=False)  # 0-100
    success_rate = Column(Integer, default=0, nullable=False)  # percent
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
