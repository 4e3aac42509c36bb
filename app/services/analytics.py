"""
Analytics aggregation.

Daily rollups (per tenant and per assistant) are recomputed from call_logs,
appointments and call_sentiment_analysis, then written with an upsert on
their natural key. Re-running a day therefore overwrites the row with the
same numbers instead of double-counting.

Sentiment is scored by the LLM one call at a time; the reply is clamped and
normalised so stored scores are always within 0-100 and labels are always
one of positive / neutral / negative.
"""

import asyncio
import json
import logging
import math
from datetime import date, datetime, time, timedelta
from typing import Any, Optional

from sqlalchemy import String, and_, case, cast, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import settings
from app.models.analytics import (
    AnalyticsDailySummary,
    AssistantPerformanceDaily,
    CallSentimentAnalysis,
    SentimentLabel,
)
from app.models.appointment import Appointment
from app.models.call_log import CallLog
from app.services.llm import LLMClient, LLMError
from app.utils.upsert import insert_ignore, upsert

logger = logging.getLogger(__name__)

SENTIMENT_BATCH_SIZE = 50
TRANSCRIPT_CHAR_BUDGET = 2000
MIN_TRANSCRIPT_LENGTH = 10
DEFAULT_SENTIMENT_SCORE = 50

SENTIMENT_SYSTEM_PROMPT = """Analyze the sentiment of this call transcript and extract key topics. Respond with valid JSON in this exact format:
{
  "sentiment_score": <number 0-100>,
  "sentiment_label": "<positive|neutral|negative>",
  "key_topics": ["topic1", "topic2", "topic3"]
}

Sentiment scoring:
- 70-100: positive (customer satisfied, issue resolved, positive interaction)
- 40-69: neutral (informational, mixed sentiment, routine interaction)
- 0-39: negative (customer frustrated, issue unresolved, poor experience)"""


class SentimentParseError(Exception):
    """The LLM reply is not a usable sentiment JSON object."""


def round_half_up(value: Any) -> int:
    if value is None:
        return 0
    return int(math.floor(float(value) + 0.5))


def day_bounds(day: date) -> tuple[datetime, datetime]:
    start = datetime.combine(day, time.min)
    return start, start + timedelta(days=1)


# ---------------------------------------------------------------------------
# Sentiment
# ---------------------------------------------------------------------------

def label_for_score(score: int) -> str:
    if score >= 70:
        return SentimentLabel.POSITIVE
    if score >= 40:
        return SentimentLabel.NEUTRAL
    return SentimentLabel.NEGATIVE


def extract_transcript_text(transcript: Any) -> str:
    """Flatten a stored transcript (string, list of turns or object) to text."""
    if transcript is None:
        return ""
    if isinstance(transcript, str):
        return transcript
    if isinstance(transcript, list):
        parts = []
        for turn in transcript:
            if isinstance(turn, dict):
                parts.append(str(turn.get("text") or turn.get("content") or ""))
            else:
                parts.append(str(turn))
        return " ".join(parts)
    if isinstance(transcript, dict):
        return str(transcript.get("text") or transcript.get("content") or json.dumps(transcript))
    return str(transcript)


def parse_sentiment_reply(reply: str) -> dict:
    try:
        payload = json.loads(reply)
    except (TypeError, ValueError) as e:
        raise SentimentParseError(f"Invalid JSON in sentiment reply: {e}") from e
    if not isinstance(payload, dict):
        raise SentimentParseError("Sentiment reply is not a JSON object")
    return payload


def normalize_sentiment(payload: dict) -> tuple[int, str, list[str]]:
    """Clamp the score into [0, 100] and re-derive the label when it is invalid.

    A missing score counts as neutral (50); a non-numeric one is a parse error.
    """
    raw_score = payload.get("sentiment_score")
    if raw_score is None or raw_score == "":
        score = float(DEFAULT_SENTIMENT_SCORE)
    else:
        if isinstance(raw_score, bool):
            raise SentimentParseError(f"Non-numeric sentiment_score: {raw_score!r}")
        try:
            score = float(raw_score)
        except (TypeError, ValueError) as e:
            raise SentimentParseError(f"Non-numeric sentiment_score: {raw_score!r}") from e
        if not math.isfinite(score):
            raise SentimentParseError(f"Non-finite sentiment_score: {raw_score!r}")

    score = round_half_up(min(100.0, max(0.0, score)))

    label = payload.get("sentiment_label")
    label = label.strip().lower() if isinstance(label, str) else None
    if label not in SentimentLabel.ALL:
        label = label_for_score(score)

    topics = payload.get("key_topics")
    if not isinstance(topics, list):
        topics = []
    topics = [str(t) for t in topics if t is not None and str(t).strip()]

    return score, label, topics


def _unanalyzed_calls_query(limit: int, offset: int = 0):
    transcript_text = cast(CallLog.transcript, String)
    return (
        select(CallLog.id, CallLog.tenant_id, CallLog.transcript)
        .outerjoin(CallSentimentAnalysis, CallSentimentAnalysis.call_id == CallLog.id)
        .where(
            CallSentimentAnalysis.id.is_(None),
            CallLog.transcript.is_not(None),
            transcript_text != "null",
            func.length(transcript_text) > MIN_TRANSCRIPT_LENGTH,
        )
        .order_by(CallLog.started_at.desc(), CallLog.id)
        .offset(offset)
        .limit(limit)
    )


async def _scorable_calls(db: AsyncSession, batch_size: int) -> list:
    """Up to batch_size unanalysed calls whose flattened transcript is long enough to score.

    Transcripts that flatten to almost nothing (e.g. turns with empty text) are
    skipped here and the batch is topped up from older calls. Rows are plain
    column tuples, so they stay readable after a rollback.
    """
    calls = []
    offset = 0
    while len(calls) < batch_size:
        rows = (await db.execute(_unanalyzed_calls_query(batch_size, offset))).all()
        for row in rows:
            if len(extract_transcript_text(row.transcript)) >= MIN_TRANSCRIPT_LENGTH:
                calls.append(row)
                if len(calls) == batch_size:
                    break
        if len(rows) < batch_size:
            break
        offset += batch_size
    return calls


# ---------------------------------------------------------------------------
# Rollups
# ---------------------------------------------------------------------------

async def compute_daily_summary(db: AsyncSession, tenant_id: str, day: date) -> dict:
    """Aggregate one tenant's day into DailySummary column values."""
    start, end = day_bounds(day)
    in_day = and_(CallLog.tenant_id == tenant_id, CallLog.started_at >= start, CallLog.started_at < end)

    calls = (await db.execute(
        select(
            func.count(CallLog.id),
            func.count(case((CallLog.result == "pass", 1))),
            func.avg(CallLog.duration),
            func.sum(CallLog.duration),
        ).where(in_day)
    )).one()

    outcome_rows = (await db.execute(
        select(CallLog.ended_reason, func.count(CallLog.id)).where(in_day).group_by(CallLog.ended_reason)
    )).all()
    outcomes: dict[str, int] = {}
    for reason, count in outcome_rows:
        key = reason or "unknown"
        outcomes[key] = outcomes.get(key, 0) + count

    # Counted by first sight so later re-syncs do not move bookings between days
    appointments = (await db.execute(
        select(func.count(Appointment.id)).where(
            Appointment.tenant_id == tenant_id,
            Appointment.created_at >= start,
            Appointment.created_at < end,
        )
    )).scalar()

    sentiment = (await db.execute(
        select(
            func.count(case((CallSentimentAnalysis.sentiment_label == SentimentLabel.POSITIVE, 1))),
            func.count(case((CallSentimentAnalysis.sentiment_label == SentimentLabel.NEUTRAL, 1))),
            func.count(case((CallSentimentAnalysis.sentiment_label == SentimentLabel.NEGATIVE, 1))),
            func.avg(CallSentimentAnalysis.sentiment_score),
        )
        .select_from(CallSentimentAnalysis)
        .join(CallLog, CallSentimentAnalysis.call_id == CallLog.id)
        .where(CallSentimentAnalysis.tenant_id == tenant_id, CallLog.started_at >= start, CallLog.started_at < end)
    )).one()

    return {
        "tenant_id": tenant_id,
        "date": day,
        "total_calls": calls[0] or 0,
        "successful_calls": calls[1] or 0,
        "total_appointments": appointments or 0,
        "avg_call_duration": round_half_up(calls[2]),
        "total_call_time": round_half_up((calls[3] or 0) / 60),
        "sentiment_positive": sentiment[0] or 0,
        "sentiment_neutral": sentiment[1] or 0,
        "sentiment_negative": sentiment[2] or 0,
        "avg_sentiment_score": round_half_up(sentiment[3]),
        "call_outcomes": dict(sorted(outcomes.items())),
    }


async def process_tenant_daily_summary(db: AsyncSession, tenant_id: str, day: date) -> dict:
    values = await compute_daily_summary(db, tenant_id, day)
    await upsert(db, AnalyticsDailySummary, values, conflict_keys=["tenant_id", "date"])
    await db.commit()
    logger.info("Processed daily summary for tenant %s on %s", tenant_id, day)
    return values


async def compute_assistant_performance(
    db: AsyncSession, assistant_id: str, assistant_name: str, tenant_id: str, day: date
) -> dict:
    start, end = day_bounds(day)
    in_day = and_(CallLog.assistant_id == assistant_id, CallLog.started_at >= start, CallLog.started_at < end)

    calls = (await db.execute(
        select(
            func.count(CallLog.id),
            func.count(case((CallLog.result == "pass", 1))),
            func.avg(CallLog.duration),
        ).where(in_day)
    )).one()

    appointments = (await db.execute(
        select(func.count(Appointment.id)).where(
            Appointment.assistant_id == assistant_id,
            Appointment.start_time >= start,
            Appointment.start_time < end,
        )
    )).scalar()

    sentiment_avg = (await db.execute(
        select(func.avg(CallSentimentAnalysis.sentiment_score))
        .select_from(CallSentimentAnalysis)
        .join(CallLog, CallSentimentAnalysis.call_id == CallLog.id)
        .where(in_day)
    )).scalar()

    call_count = calls[0] or 0
    success_rate = round_half_up((calls[1] or 0) / call_count * 100) if call_count else 0

    return {
        "assistant_id": assistant_id,
        "assistant_name": assistant_name,
        "tenant_id": tenant_id,
        "date": day,
        "call_count": call_count,
        "appointment_count": appointments or 0,
        "avg_duration": round_half_up(calls[2]),
        "sentiment_avg": round_half_up(sentiment_avg),
        "success_rate": success_rate,
    }


async def process_assistant_daily_performance(
    db: AsyncSession, assistant_id: str, assistant_name: str, tenant_id: str, day: date
) -> dict:
    values = await compute_assistant_performance(db, assistant_id, assistant_name, tenant_id, day)
    await upsert(db, AssistantPerformanceDaily, values, conflict_keys=["assistant_id", "date"])
    await db.commit()
    return values


# ---------------------------------------------------------------------------
# Read helpers
# ---------------------------------------------------------------------------

async def get_daily_summaries(
    db: AsyncSession, tenant_id: str, start: date, end: date
) -> list[AnalyticsDailySummary]:
    result = await db.execute(
        select(AnalyticsDailySummary)
        .where(
            AnalyticsDailySummary.tenant_id == tenant_id,
            AnalyticsDailySummary.date >= start,
            AnalyticsDailySummary.date <= end,
        )
        .order_by(AnalyticsDailySummary.date)
    )
    return list(result.scalars().all())


async def get_overview(db: AsyncSession, tenant_id: str, start: date, end: date) -> dict:
    """Sum stored daily summaries over a date range (inclusive)."""
    summaries = await get_daily_summaries(db, tenant_id, start, end)

    total_calls = sum(s.total_calls for s in summaries)
    successful = sum(s.successful_calls for s in summaries)
    analyzed = sum(s.sentiment_positive + s.sentiment_neutral + s.sentiment_negative for s in summaries)
    outcomes: dict[str, int] = {}
    for s in summaries:
        for reason, count in (s.call_outcomes or {}).items():
            outcomes[reason] = outcomes.get(reason, 0) + count

    return {
        "tenant_id": tenant_id,
        "start": start,
        "end": end,
        "days": len(summaries),
        "total_calls": total_calls,
        "successful_calls": successful,
        "success_rate": round_half_up(successful / total_calls * 100) if total_calls else 0,
        "total_appointments": sum(s.total_appointments for s in summaries),
        "total_call_time": sum(s.total_call_time for s in summaries),
        "avg_call_duration": (
            round_half_up(sum(s.avg_call_duration * s.total_calls for s in summaries) / total_calls)
            if total_calls else 0
        ),
        "sentiment_positive": sum(s.sentiment_positive for s in summaries),
        "sentiment_neutral": sum(s.sentiment_neutral for s in summaries),
        "sentiment_negative": sum(s.sentiment_negative for s in summaries),
        "avg_sentiment_score": (
            round_half_up(
                sum(
                    s.avg_sentiment_score * (s.sentiment_positive + s.sentiment_neutral + s.sentiment_negative)
                    for s in summaries
                ) / analyzed
            )
            if analyzed else 0
        ),
        "call_outcomes": dict(sorted(outcomes.items())),
    }


# ---------------------------------------------------------------------------
# Batch service
# ---------------------------------------------------------------------------

class AnalyticsService:
    """Runs the analytics batches, one fresh session per tenant / assistant."""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        llm: Optional[LLMClient] = None,
        request_delay: float = 0.1,
    ):
        self.session_factory = session_factory
        self.llm = llm or LLMClient()
        self.request_delay = request_delay

    async def process_daily_summaries(self, today: Optional[date] = None) -> int:
        """Recompute today's summary for every tenant with calls today."""
        today = today or datetime.utcnow().date()
        start, end = day_bounds(today)

        async with self.session_factory() as db:
            result = await db.execute(
                select(CallLog.tenant_id)
                .where(CallLog.started_at >= start, CallLog.started_at < end)
                .distinct()
            )
            tenant_ids = list(result.scalars().all())

        processed = 0
        for tenant_id in tenant_ids:
            try:
                async with self.session_factory() as db:
                    await process_tenant_daily_summary(db, tenant_id, today)
                processed += 1
            except Exception:
                logger.exception("Error processing daily summary for tenant %s", tenant_id)

        logger.info("Processed %d tenants with calls on %s", processed, today)
        return processed

    async def process_all_historical_data(self, days: int = 30, today: Optional[date] = None) -> int:
        """Backfill summaries for every tenant/day with calls in the last `days` days."""
        today = today or datetime.utcnow().date()
        since, _ = day_bounds(today - timedelta(days=days))

        async with self.session_factory() as db:
            result = await db.execute(
                select(CallLog.tenant_id, CallLog.started_at).where(CallLog.started_at >= since)
            )
            days_by_tenant: dict[str, set[date]] = {}
            for tenant_id, started_at in result.all():
                days_by_tenant.setdefault(tenant_id, set()).add(started_at.date())

        processed = 0
        for tenant_id, call_days in days_by_tenant.items():
            for day in sorted(call_days, reverse=True):
                try:
                    async with self.session_factory() as db:
                        await process_tenant_daily_summary(db, tenant_id, day)
                    processed += 1
                except Exception:
                    logger.exception("Error processing daily summary for tenant %s on %s", tenant_id, day)

        logger.info("Historical processing completed: %d tenant-days", processed)
        return processed

    async def process_assistant_performance(self, today: Optional[date] = None) -> int:
        today = today or datetime.utcnow().date()
        start, end = day_bounds(today)

        async with self.session_factory() as db:
            result = await db.execute(
                select(CallLog.assistant_id, func.max(CallLog.assistant_name), CallLog.tenant_id)
                .where(CallLog.started_at >= start, CallLog.started_at < end)
                .group_by(CallLog.assistant_id, CallLog.tenant_id)
            )
            assistants = result.all()

        processed = 0
        for assistant_id, assistant_name, tenant_id in assistants:
            try:
                async with self.session_factory() as db:
                    await process_assistant_daily_performance(db, assistant_id, assistant_name, tenant_id, today)
                processed += 1
            except Exception:
                logger.exception("Error processing assistant performance for %s", assistant_id)

        logger.info("Assistant performance processing completed: %d assistants", processed)
        return processed

    async def analyze_sentiment(self, db: AsyncSession, call) -> bool:
        """Score one call (anything with id, tenant_id and transcript) and store the result.

        Returns False if the transcript is too short.

        Raises SentimentParseError / LLMError when the call must be skipped.
        """
        text = extract_transcript_text(call.transcript)
        if len(text) < MIN_TRANSCRIPT_LENGTH:
            return False

        reply = await self.llm.complete_json(
            SENTIMENT_SYSTEM_PROMPT,
            f"Analyze this call transcript: {text[:TRANSCRIPT_CHAR_BUDGET]}",
            model=settings.OPENAI_SENTIMENT_MODEL,
            temperature=0.3,
            max_tokens=200,
        )
        score, label, topics = normalize_sentiment(parse_sentiment_reply(reply))

        await insert_ignore(
            db,
            CallSentimentAnalysis,
            {
                "call_id": call.id,
                "tenant_id": call.tenant_id,
                "sentiment_score": score,
                "sentiment_label": label,
                "key_topics": topics,
            },
            conflict_keys=["call_id"],
        )
        await db.commit()
        return True

    async def process_sentiment_analysis(self, batch_size: int = SENTIMENT_BATCH_SIZE) -> int:
        """Score up to batch_size calls that have a transcript but no sentiment row."""
        if not self.llm.configured:
            logger.warning("OpenAI not configured - skipping sentiment analysis")
            return 0

        analyzed = 0
        async with self.session_factory() as db:
            calls = await _scorable_calls(db, batch_size)
            for call in calls:
                try:
                    if await self.analyze_sentiment(db, call):
                        analyzed += 1
                except (SentimentParseError, LLMError) as e:
                    logger.error("Error analyzing sentiment for call %s: %s", call.id, e)
                except Exception:
                    await db.rollback()
                    logger.exception("Error storing sentiment for call %s", call.id)
                if self.request_delay:
                    await asyncio.sleep(self.request_delay)

        logger.info("Processed sentiment analysis for %d of %d calls", analyzed, len(calls))
        return analyzed
