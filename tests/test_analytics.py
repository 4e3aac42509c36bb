"""Tests for daily rollups, assistant performance and sentiment scoring."""

import json
from datetime import date, datetime, timedelta

import pytest
from sqlalchemy import select
from unittest.mock import patch

from app.core.config import Settings
from app.models.analytics import AnalyticsDailySummary, AssistantPerformanceDaily, CallSentimentAnalysis
from app.models.appointment import Appointment
from app.models.call_log import CallLog
from app.schemas.analytics import DailySummaryOut
from app.services import analytics
from app.services.analytics import (
    AnalyticsService,
    SentimentParseError,
    extract_transcript_text,
    get_overview,
    normalize_sentiment,
    parse_sentiment_reply,
    process_assistant_daily_performance,
    process_tenant_daily_summary,
    round_half_up,
)
from app.services.llm import LLMError

DAY = date(2025, 3, 10)
MORNING = datetime(2025, 3, 10, 8, 0)


class FakeLLM:
    """Replies with the first canned answer whose key appears in the prompt."""

    def __init__(self, replies: dict, configured: bool = True):
        self.replies = replies
        self.configured = configured
        self.prompts = []

    async def complete_json(self, system, user, model, temperature=0.1, max_tokens=None):
        self.prompts.append(user)
        for key, reply in self.replies.items():
            if key in user:
                if isinstance(reply, Exception):
                    raise reply
                return reply
        raise AssertionError(f"unexpected prompt: {user}")


def _call(call_id, tenant_id="t1", started_at=MORNING, **kwargs) -> CallLog:
    values = dict(
        id=call_id,
        tenant_id=tenant_id,
        assistant_id="asst-1",
        assistant_name="Front Desk",
        started_at=started_at,
        duration=60,
        result="pass",
        ended_reason="customer-ended-call",
    )
    values.update(kwargs)
    return CallLog(**values)


@pytest.fixture
def seeded_day():
    """Ten calls for t1 on DAY plus noise on other days and tenants."""
    durations = [60, 120, 180, 240, 300, 60, 120, 180, 240, 300]
    results = ["pass"] * 6 + ["fail"] * 3 + [None]
    reasons = ["customer-ended-call"] * 5 + ["assistant-ended-call"] * 3 + ["", ""]

    rows = []
    for i in range(10):
        rows.append(_call(
            f"call-{i}",
            started_at=MORNING + timedelta(hours=i),
            duration=durations[i],
            result=results[i],
            ended_reason=reasons[i],
            assistant_id="asst-1" if i < 7 else "asst-2",
            assistant_name="Front Desk" if i < 7 else "Out of Hours",
        ))
    rows.append(_call("call-old", started_at=MORNING - timedelta(days=3), duration=999))
    rows.append(_call("call-t2", tenant_id="t2", assistant_id="asst-9", duration=999))

    for i, (score, label) in enumerate([(80, "positive"), (90, "positive"), (70, "positive"), (50, "neutral"), (10, "negative")]):
        rows.append(CallSentimentAnalysis(call_id=f"call-{i}", tenant_id="t1", sentiment_score=score, sentiment_label=label))
    rows.append(CallSentimentAnalysis(call_id="call-old", tenant_id="t1", sentiment_score=0, sentiment_label="negative"))

    def appointment(event_id, created_at, start_time):
        return Appointment(
            tenant_id="t1", assistant_id="asst-1", calendar_event_id=event_id,
            start_time=start_time, end_time=start_time + timedelta(minutes=30),
            summary="Check-up", created_at=created_at, synced_at=created_at,
        )

    rows += [
        appointment("evt-booked-today-for-tomorrow", datetime(2025, 3, 10, 9), datetime(2025, 3, 11, 10)),
        appointment("evt-booked-today-for-today", datetime(2025, 3, 10, 11), datetime(2025, 3, 10, 15)),
        appointment("evt-booked-yesterday", datetime(2025, 3, 9, 16), datetime(2025, 3, 10, 12)),
    ]
    return rows


async def _seed(db, rows):
    db.add_all(rows)
    await db.commit()


def test_round_half_up():
    assert round_half_up(2.5) == 3
    assert round_half_up(3.5) == 4
    assert round_half_up(154.28) == 154
    assert round_half_up(None) == 0


@pytest.mark.asyncio
async def test_daily_summary_aggregates_one_tenant_day(db, seeded_day):
    await _seed(db, seeded_day)

    values = await process_tenant_daily_summary(db, "t1", DAY)

    assert values["total_calls"] == 10
    assert values["successful_calls"] == 6
    assert values["avg_call_duration"] == 180
    assert values["total_call_time"] == 30
    assert values["call_outcomes"] == {"assistant-ended-call": 3, "customer-ended-call": 5, "unknown": 2}
    assert (values["sentiment_positive"], values["sentiment_neutral"], values["sentiment_negative"]) == (3, 1, 1)
    assert values["avg_sentiment_score"] == 60
    assert values["total_appointments"] == 2

    row = (await db.execute(select(AnalyticsDailySummary))).scalar_one()
    assert row.date == DAY
    assert row.total_calls == 10


@pytest.mark.asyncio
async def test_daily_summary_is_idempotent(db, seeded_day):
    await _seed(db, seeded_day)

    first = await process_tenant_daily_summary(db, "t1", DAY)
    second = await process_tenant_daily_summary(db, "t1", DAY)

    assert first == second
    rows = (await db.execute(select(AnalyticsDailySummary))).scalars().all()
    assert len(rows) == 1
    assert rows[0].total_calls == 10
    assert rows[0].successful_calls == 6


@pytest.mark.asyncio
async def test_daily_summary_for_quiet_day_is_all_zero(db):
    values = await process_tenant_daily_summary(db, "t1", DAY)

    assert values["total_calls"] == 0
    assert values["avg_call_duration"] == 0
    assert values["avg_sentiment_score"] == 0
    assert values["call_outcomes"] == {}


@pytest.mark.asyncio
async def test_assistant_performance(db, seeded_day):
    await _seed(db, seeded_day)

    values = await process_assistant_daily_performance(db, "asst-1", "Front Desk", "t1", DAY)
    await process_assistant_daily_performance(db, "asst-1", "Front Desk", "t1", DAY)

    assert values["call_count"] == 7
    assert values["avg_duration"] == 154
    assert values["success_rate"] == 86
    assert values["sentiment_avg"] == 60
    # Counted by appointment start time
    assert values["appointment_count"] == 2
    rows = (await db.execute(select(AssistantPerformanceDaily))).scalars().all()
    assert len(rows) == 1


@pytest.mark.asyncio
async def test_overview_sums_stored_days(db, seeded_day):
    await _seed(db, seeded_day)
    await process_tenant_daily_summary(db, "t1", DAY)
    await process_tenant_daily_summary(db, "t1", DAY - timedelta(days=3))

    overview = await get_overview(db, "t1", DAY - timedelta(days=6), DAY)

    assert overview["days"] == 2
    assert overview["total_calls"] == 11
    assert overview["successful_calls"] == 7
    assert overview["success_rate"] == 64
    assert overview["call_outcomes"]["customer-ended-call"] == 6
    assert (overview["sentiment_positive"], overview["sentiment_negative"]) == (3, 2)


@pytest.mark.asyncio
async def test_service_processes_every_tenant_with_calls_today(db, session_factory, seeded_day):
    await _seed(db, seeded_day)
    service = AnalyticsService(session_factory, llm=FakeLLM({}), request_delay=0)

    assert await service.process_daily_summaries(today=DAY) == 2
    assert await service.process_assistant_performance(today=DAY) == 3

    tenants = (await db.execute(select(AnalyticsDailySummary.tenant_id))).scalars().all()
    assert sorted(tenants) == ["t1", "t2"]


@pytest.mark.asyncio
async def test_historical_backfill_covers_each_tenant_day(db, session_factory, seeded_day):
    await _seed(db, seeded_day)
    service = AnalyticsService(session_factory, llm=FakeLLM({}), request_delay=0)

    assert await service.process_all_historical_data(days=30, today=DAY + timedelta(days=1)) == 3
    assert await service.process_all_historical_data(days=1, today=DAY + timedelta(days=1)) == 2


# ---------------------------------------------------------------------------
# Sentiment
# ---------------------------------------------------------------------------

def test_normalize_sentiment_clamps_and_rederives_label():
    assert normalize_sentiment({"sentiment_score": 150, "sentiment_label": "Positive"}) == (100, "positive", [])
    assert normalize_sentiment({"sentiment_score": -20, "sentiment_label": "negative"}) == (0, "negative", [])
    assert normalize_sentiment({"sentiment_score": 30, "sentiment_label": "great"}) == (30, "negative", [])
    assert normalize_sentiment({"sentiment_score": 69.5}) == (70, "positive", [])
    assert normalize_sentiment({"sentiment_score": "55"})[:2] == (55, "neutral")
    assert normalize_sentiment({}) == (50, "neutral", [])


def test_normalize_sentiment_keeps_zero_score():
    assert normalize_sentiment({"sentiment_score": 0, "sentiment_label": "negative"})[0] == 0


def test_normalize_sentiment_filters_topics():
    _, _, topics = normalize_sentiment({"sentiment_score": 80, "key_topics": ["booking", None, " ", 42]})
    assert topics == ["booking", "42"]
    assert normalize_sentiment({"sentiment_score": 80, "key_topics": "booking"})[2] == []


@pytest.mark.parametrize("payload", [
    {"sentiment_score": "very happy"},
    {"sentiment_score": True},
    {"sentiment_score": float("nan")},
    {"sentiment_score": [1]},
])
def test_normalize_sentiment_rejects_non_numeric_scores(payload):
    with pytest.raises(SentimentParseError):
        normalize_sentiment(payload)


def test_parse_sentiment_reply():
    assert parse_sentiment_reply('{"sentiment_score": 80}') == {"sentiment_score": 80}
    with pytest.raises(SentimentParseError):
        parse_sentiment_reply("Sentiment: positive")
    with pytest.raises(SentimentParseError):
        parse_sentiment_reply("[80]")


def test_extract_transcript_text():
    assert extract_transcript_text("Hello there") == "Hello there"
    assert extract_transcript_text([{"role": "user", "text": "Hi"}, {"content": "Hello"}, "bye"]) == "Hi Hello bye"
    assert extract_transcript_text({"text": "Whole call"}) == "Whole call"
    assert extract_transcript_text(None) == ""


@pytest.mark.asyncio
async def test_sentiment_batch_clamps_scores_and_skips_bad_replies(db, session_factory):
    await _seed(db, [
        _call("c-happy", transcript="The caller was delighted with the booking.", started_at=MORNING + timedelta(hours=3)),
        _call(
            "c-turns",
            transcript=[{"role": "user", "text": "My boiler is still broken"}, {"role": "bot", "text": "Sorry to hear"}],
            started_at=MORNING + timedelta(hours=2),
        ),
        _call("c-garbled", transcript="Caller asked about parking twice.", started_at=MORNING + timedelta(hours=1)),
        _call("c-llm-down", transcript="Caller wanted opening hours again.", started_at=MORNING + timedelta(minutes=30)),
        _call("c-short", transcript="hi"),
        _call("c-none", transcript=None),
    ])
    llm = FakeLLM({
        "delighted": json.dumps({"sentiment_score": 150, "sentiment_label": "Positive", "key_topics": ["booking"]}),
        "boiler": json.dumps({"sentiment_score": 30, "sentiment_label": "great"}),
        "parking": "Sentiment: positive",
        "opening hours": LLMError("OpenAI API error: 503"),
    })
    service = AnalyticsService(session_factory, llm=llm, request_delay=0)

    assert await service.process_sentiment_analysis() == 2
    assert len(llm.prompts) == 4

    rows = {
        r.call_id: r for r in (await db.execute(select(CallSentimentAnalysis))).scalars().all()
    }
    assert set(rows) == {"c-happy", "c-turns"}
    assert (rows["c-happy"].sentiment_score, rows["c-happy"].sentiment_label) == (100, "positive")
    assert rows["c-happy"].key_topics == ["booking"]
    assert (rows["c-turns"].sentiment_score, rows["c-turns"].sentiment_label) == (30, "negative")
    assert all(0 <= r.sentiment_score <= 100 for r in rows.values())

    # Only the calls that failed are retried; analysed calls are never re-scored
    llm.prompts.clear()
    assert await service.process_sentiment_analysis() == 0
    assert len(llm.prompts) == 2
    assert len((await db.execute(select(CallSentimentAnalysis))).scalars().all()) == 2


@pytest.mark.asyncio
async def test_sentiment_batch_respects_batch_size(db, session_factory):
    await _seed(db, [
        _call(f"c-{i}", transcript=f"Caller number {i} booked a cleaning.", started_at=MORNING + timedelta(minutes=i))
        for i in range(5)
    ])
    llm = FakeLLM({"booked": json.dumps({"sentiment_score": 75, "sentiment_label": "positive"})})
    service = AnalyticsService(session_factory, llm=llm, request_delay=0)

    assert await service.process_sentiment_analysis(batch_size=3) == 3
    scored = (await db.execute(select(CallSentimentAnalysis.call_id))).scalars().all()
    # Most recent calls first
    assert sorted(scored) == ["c-2", "c-3", "c-4"]


@pytest.mark.asyncio
async def test_sentiment_batch_skipped_without_llm(db, session_factory):
    await _seed(db, [_call("c-1", transcript="A perfectly normal phone call.")])
    service = AnalyticsService(session_factory, llm=FakeLLM({}, configured=False), request_delay=0)

    assert await service.process_sentiment_analysis() == 0


@pytest.mark.asyncio
async def test_store_failure_for_one_call_does_not_stop_the_batch(db, session_factory):
    await _seed(db, [
        _call("c-new", transcript="Caller booked a hygienist visit.", started_at=MORNING + timedelta(hours=1)),
        _call("c-old", transcript="Caller booked a root canal check.", started_at=MORNING),
    ])
    llm = FakeLLM({"booked": json.dumps({"sentiment_score": 65, "sentiment_label": "neutral"})})
    service = AnalyticsService(session_factory, llm=llm, request_delay=0)
    real_insert_ignore = analytics.insert_ignore

    async def flaky_insert_ignore(db, model, values, conflict_keys):
        if values["call_id"] == "c-new":
            raise RuntimeError("connection reset by peer")
        return await real_insert_ignore(db, model, values, conflict_keys)

    with patch("app.services.analytics.insert_ignore", flaky_insert_ignore):
        assert await service.process_sentiment_analysis() == 1

    scored = (await db.execute(select(CallSentimentAnalysis.call_id))).scalars().all()
    assert scored == ["c-old"]


@pytest.mark.asyncio
async def test_unscorable_transcripts_do_not_starve_the_batch(db, session_factory):
    empty_turns = [{"role": "user", "text": ""}, {"role": "bot", "text": ""}]
    await _seed(db, [
        _call(f"c-empty-{i}", transcript=empty_turns, started_at=MORNING + timedelta(hours=1, minutes=i))
        for i in range(7)
    ] + [_call("c-real", transcript="Caller booked an emergency appointment.", started_at=MORNING)])
    llm = FakeLLM({"booked": json.dumps({"sentiment_score": 80, "sentiment_label": "positive"})})
    service = AnalyticsService(session_factory, llm=llm, request_delay=0)

    assert await service.process_sentiment_analysis(batch_size=3) == 1

    assert len(llm.prompts) == 1
    scored = (await db.execute(select(CallSentimentAnalysis.call_id))).scalars().all()
    assert scored == ["c-real"]


@pytest.mark.asyncio
async def test_daily_summary_schema_reads_orm_rows(db, seeded_day):
    await _seed(db, seeded_day)
    await process_tenant_daily_summary(db, "t1", DAY)
    row = (await db.execute(select(AnalyticsDailySummary))).scalar_one()

    out = DailySummaryOut.model_validate(row)

    assert DailySummaryOut.model_config["from_attributes"] is True
    assert Settings.model_config["env_file"] == ".env"
    assert (out.date, out.total_calls, out.call_outcomes["unknown"]) == (DAY, 10, 2)
