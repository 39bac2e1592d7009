"""SQLAlchemy ORM models for users, polls, options, predictions, and snapshots.

Timestamps are persisted as naive UTC and always handed back timezone-aware
(see UTCDateTime), so engine code can compare them with datetime.now(UTC)
on both PostgreSQL and SQLite.

Points and payouts are integers. Confidence is a float in [0, 1].
"""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    TypeDecorator,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class UTCDateTime(TypeDecorator):
    """DateTime column that stores naive UTC and loads timezone-aware UTC."""

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect) -> datetime | None:  # noqa: ANN001
        if value is None:
            return None
        if value.tzinfo is not None:
            value = value.astimezone(UTC)
        return value.replace(tzinfo=None)

    def process_result_value(self, value: datetime | None, dialect) -> datetime | None:  # noqa: ANN001
        if value is None:
            return None
        return value.replace(tzinfo=UTC)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""


class User(Base):
    """A market participant. Reputation doubles as the spendable points balance."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    username: Mapped[str | None] = mapped_column(String, nullable=True)
    display_name: Mapped[str | None] = mapped_column(String, nullable=True)
    avatar: Mapped[str | None] = mapped_column(String, nullable=True)
    reputation: Mapped[int] = mapped_column(Integer, default=1000, nullable=False)
    is_moderator: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utcnow)

    predictions: Mapped[list[Prediction]] = relationship(back_populates="user")


class Poll(Base):
    """A question whose options users forecast. Resolved at most once."""

    __tablename__ = "polls"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    creator_id: Mapped[str | None] = mapped_column(
        String, ForeignKey("users.id"), nullable=True
    )
    title: Mapped[str] = mapped_column(String, default="", nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    expires_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    resolution_result: Mapped[str | None] = mapped_column(String, nullable=True)
    resolution_source: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utcnow)

    options: Mapped[list[PollOption]] = relationship(
        back_populates="poll",
        order_by="PollOption.order_index",
        lazy="selectin",
    )


class PollOption(Base):
    """One answer choice belonging to exactly one poll."""

    __tablename__ = "poll_options"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    poll_id: Mapped[str] = mapped_column(String, ForeignKey("polls.id"), nullable=False)
    text: Mapped[str] = mapped_column(String, default="", nullable=False)
    order_index: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    poll: Mapped[Poll] = relationship(back_populates="options")

    __table_args__ = (Index("ix_option_poll", "poll_id"),)


class Prediction(Base):
    """A user's staked forecast on a poll. One active row per (user, poll)."""

    __tablename__ = "predictions"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    user_id: Mapped[str] = mapped_column(String, ForeignKey("users.id"), nullable=False)
    poll_id: Mapped[str] = mapped_column(String, ForeignKey("polls.id"), nullable=False)
    option_id: Mapped[str] = mapped_column(
        String, ForeignKey("poll_options.id"), nullable=False
    )
    confidence: Mapped[float] = mapped_column(Float, nullable=False)
    points: Mapped[int] = mapped_column(Integer, nullable=False)
    reasoning: Mapped[str | None] = mapped_column(Text, nullable=True)
    payout: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_resolved: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utcnow)
    resolved_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    user: Mapped[User] = relationship(back_populates="predictions")

    __table_args__ = (
        UniqueConstraint("user_id", "poll_id", name="uq_prediction_user_poll"),
        CheckConstraint("confidence >= 0 AND confidence <= 1", name="ck_prediction_confidence"),
        CheckConstraint("points > 0", name="ck_prediction_points"),
        Index("ix_prediction_poll_resolved", "poll_id", "is_resolved"),
        Index("ix_prediction_poll_created", "poll_id", "created_at"),
        Index("ix_prediction_user_created", "user_id", "created_at"),
    )


class PollSnapshot(Base):
    """Daily probability snapshot written by the external aggregation job."""

    __tablename__ = "poll_snapshots"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    poll_id: Mapped[str] = mapped_column(String, ForeignKey("polls.id"), nullable=False)
    option_id: Mapped[str | None] = mapped_column(String, nullable=True)
    snapshot_date: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    percentage: Mapped[float] = mapped_column(Float, nullable=False)

    __table_args__ = (Index("ix_snapshot_poll_date", "poll_id", "snapshot_date"),)
