"""Create call log, analytics, appointment, calendar and knowledge base tables

Revision ID: 001
Revises: None
Create Date: 2026-10-19
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _uuid_pk() -> sa.Column:
    return sa.Column("id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()"))


def upgrade() -> None:
    op.create_table(
        "call_logs",
        sa.Column("id", sa.String, primary_key=True),
        sa.Column("tenant_id", sa.String, index=True, nullable=False),
        sa.Column("assistant_id", sa.String, index=True, nullable=False),
        sa.Column("assistant_name", sa.String, nullable=False),
        sa.Column("phone_customer", sa.String, nullable=True),
        sa.Column("phone_assistant", sa.String, nullable=True),
        sa.Column("started_at", sa.DateTime, index=True, nullable=False),
        sa.Column("duration", sa.Integer, nullable=False, server_default="0"),
        sa.Column("result", sa.String, nullable=True),
        sa.Column("ended_reason", sa.Text, nullable=False),
        sa.Column("audio_url", sa.String, nullable=True),
        sa.Column("transcript", sa.JSON, nullable=True),
        sa.Column("synced_at", sa.DateTime, server_default=sa.func.now()),
    )

    op.create_table(
        "call_sentiment_analysis",
        _uuid_pk(),
        sa.Column("call_id", sa.String, unique=True, index=True, nullable=False),
        sa.Column("tenant_id", sa.String, index=True, nullable=False),
        sa.Column("sentiment_score", sa.Integer, nullable=False),
        sa.Column("sentiment_label", sa.String, nullable=False),
        sa.Column("key_topics", sa.JSON, nullable=True),
        sa.Column("analyzed_at", sa.DateTime, server_default=sa.func.now()),
        sa.CheckConstraint("sentiment_score BETWEEN 0 AND 100", name="ck_sentiment_score_range"),
        sa.CheckConstraint(
            "sentiment_label IN ('positive', 'neutral', 'negative')", name="ck_sentiment_label_values"
        ),
    )

    op.create_table(
        "analytics_daily_summary",
        _uuid_pk(),
        sa.Column("tenant_id", sa.String, index=True, nullable=False),
        sa.Column("date", sa.Date, nullable=False),
        sa.Column("total_calls", sa.Integer, nullable=False, server_default="0"),
        sa.Column("successful_calls", sa.Integer, nullable=False, server_default="0"),
        sa.Column("total_appointments", sa.Integer, nullable=False, server_default="0"),
        sa.Column("avg_call_duration", sa.Integer, nullable=False, server_default="0"),
        sa.Column("total_call_time", sa.Integer, nullable=False, server_default="0"),
        sa.Column("sentiment_positive", sa.Integer, nullable=False, server_default="0"),
        sa.Column("sentiment_neutral", sa.Integer, nullable=False, server_default="0"),
        sa.Column("sentiment_negative", sa.Integer, nullable=False, server_default="0"),
        sa.Column("avg_sentiment_score", sa.Integer, nullable=False, server_default="0"),
        sa.Column("call_outcomes", sa.JSON, nullable=True),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, server_default=sa.func.now()),
        sa.UniqueConstraint("tenant_id", "date", name="uq_daily_summary_tenant_date"),
    )

    op.create_table(
        "assistant_performance_daily",
        _uuid_pk(),
        sa.Column("assistant_id", sa.String, index=True, nullable=False),
        sa.Column("assistant_name", sa.String, nullable=False),
        sa.Column("tenant_id", sa.String, index=True, nullable=False),
        sa.Column("date", sa.Date, nullable=False),
        sa.Column("call_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("appointment_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("avg_duration", sa.Integer, nullable=False, server_default="0"),
        sa.Column("sentiment_avg", sa.Integer, nullable=False, server_default="0"),
        sa.Column("success_rate", sa.Integer, nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, server_default=sa.func.now()),
        sa.UniqueConstraint("assistant_id", "date", name="uq_assistant_perf_assistant_date"),
    )

    op.create_table(
        "appointments",
        _uuid_pk(),
        sa.Column("tenant_id", sa.String, index=True, nullable=False),
        sa.Column("assistant_id", sa.String, index=True, nullable=False, server_default=""),
        sa.Column("calendar_event_id", sa.String, unique=True, nullable=False),
        sa.Column("start_time", sa.DateTime, index=True, nullable=False),
        sa.Column("end_time", sa.DateTime, nullable=False),
        sa.Column("summary", sa.Text, nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("email", sa.String, nullable=True),
        sa.Column("phone", sa.String, nullable=True),
        sa.Column("service", sa.String, nullable=True),
        sa.Column("patient_type", sa.String, nullable=True),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("synced_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        "calendar_credentials",
        _uuid_pk(),
        sa.Column("tenant_id", sa.String, index=True, nullable=False),
        sa.Column("provider", sa.String, nullable=False, server_default="google"),
        sa.Column("access_token", sa.Text, nullable=False),
        sa.Column("refresh_token", sa.Text, nullable=True),
        sa.Column("expiry_date", sa.DateTime, nullable=True),
        sa.Column("user_email", sa.String, nullable=True),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
    )

    op.create_table(
        "assistant_calendars",
        _uuid_pk(),
        sa.Column("tenant_id", sa.String, index=True, nullable=False),
        sa.Column("google_calendar_id", sa.String, nullable=False),
        sa.Column("calendar_name", sa.String, nullable=False),
        sa.Column("user_email", sa.String, nullable=False),
        sa.Column("is_active", sa.Boolean, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
    )

    op.create_table(
        "kb_files",
        _uuid_pk(),
        sa.Column("tenant_id", sa.String, index=True, nullable=False),
        sa.Column("business_name", sa.String, nullable=False, server_default=""),
        sa.Column("file_sequence", sa.Integer, nullable=False),
        sa.Column("vapi_file_id", sa.String, nullable=True),
        sa.Column("file_name", sa.String, nullable=False),
        sa.Column("content_size", sa.Integer, nullable=False),
        sa.Column("pages_included", sa.JSON, nullable=False),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, server_default=sa.func.now()),
        sa.UniqueConstraint("tenant_id", "business_name", "file_sequence", name="uq_kb_files_sequence"),
    )

    op.create_table(
        "kb_file_counters",
        sa.Column("tenant_id", sa.String, primary_key=True),
        sa.Column("business_name", sa.String, primary_key=True),
        sa.Column("next_sequence", sa.Integer, nullable=False),
    )

    op.create_table(
        "kb_meta",
        _uuid_pk(),
        sa.Column("tenant_id", sa.String, unique=True, nullable=False),
        sa.Column("total_files", sa.Integer, nullable=False, server_default="0"),
        sa.Column("total_content_size", sa.Integer, nullable=False, server_default="0"),
        sa.Column("pages_scraped", sa.Integer, nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, server_default=sa.func.now()),
    )

    op.create_table(
        "business_info",
        _uuid_pk(),
        sa.Column("tenant_id", sa.String, unique=True, nullable=False),
        sa.Column("business_name", sa.String, nullable=False),
        sa.Column("industry", sa.String, nullable=True),
        sa.Column("website", sa.String, nullable=True),
        sa.Column("location", sa.Text, nullable=True),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("services", sa.JSON, nullable=True),
        sa.Column("opening_hours", sa.Text, nullable=True),
        sa.Column("contact_email", sa.String, nullable=True),
        sa.Column("contact_phone", sa.String, nullable=True),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, server_default=sa.func.now()),
    )


def downgrade() -> None:
    for table in (
        "business_info",
        "kb_meta",
        "kb_file_counters",
        "kb_files",
        "assistant_calendars",
        "calendar_credentials",
        "appointments",
        "assistant_performance_daily",
        "analytics_daily_summary",
        "call_sentiment_analysis",
        "call_logs",
    ):
        op.drop_table(table)
