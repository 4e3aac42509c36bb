"""Pydantic schemas for analytics API responses."""

from datetime import date, datetime
from pydantic import BaseModel, ConfigDict


class DailySummaryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    tenant_id: str
    date: date
    total_calls: int
    successful_calls: int
    total_appointments: int
    avg_call_duration: int
    total_call_time: int
    sentiment_positive: int
    sentiment_neutral: int
    sentiment_negative: int
    avg_sentiment_score: int
    call_outcomes: dict[str, int] | None = None
    updated_at: datetime | None = None


class AnalyticsOverview(BaseModel):
    """Daily summaries summed over a date range."""
    tenant_id: str
    start: date
    end: date
    days: int
    total_calls: int
    successful_calls: int
    success_rate: int
    total_appointments: int
    total_call_time: int
    avg_call_duration: int
    sentiment_positive: int
    sentiment_neutral: int
    sentiment_negative: int
    avg_sentiment_score: int
    call_outcomes: dict[str, int]
