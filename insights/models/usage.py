"""
API Usage Models
================
Audit log of served B2B calls and the per-day call counters.
"""

from datetime import date, datetime
from uuid import UUID, uuid4

from sqlalchemy import (
    BigInteger,
    Date,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlalchemy.orm import Mapped, mapped_column

from insights.models.base import Base, TimestampMixin


class UsageRecord(Base):
    """
    One successfully served B2B API call.
    Append-only: rows are never updated or deleted by the service.
    """

    __tablename__ = "b2b_usage_records"

    id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    client_id: Mapped[str] = mapped_column(String(64), nullable=False)
    endpoint: Mapped[str] = mapped_column(String(255), nullable=False)
    request_params_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    response_bytes: Mapped[int] = mapped_column(BigInteger, nullable=False)
    latency_ms: Mapped[int] = mapped_column(BigInteger, nullable=False)
    usage_date: Mapped[date] = mapped_column(Date, nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("idx_usage_client_date", "client_id", "usage_date"),
        Index("idx_usage_client_timestamp", "client_id", "timestamp"),
    )


class DailyUsageCounter(Base, TimestampMixin):
    """
    Number of served calls per client and UTC date.
    Incremented with a single upsert so concurrent requests never lose a count.
    ``reset_at`` marks an operator reset; only calls after it count.
    """

    __tablename__ = "b2b_daily_usage"

    id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    client_id: Mapped[str] = mapped_column(String(64), nullable=False)
    usage_date: Mapped[date] = mapped_column(Date, nullable=False)
    call_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    reset_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("client_id", "usage_date", name="uq_daily_usage_client_date"),
    )
