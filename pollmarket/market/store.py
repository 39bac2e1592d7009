"""Repository boundary between the market engine and durable storage.

The engine depends only on PredictionStore. SqlPredictionStore is the
production implementation over an async SQLAlchemy session; tests also use
a pure in-memory double.

Concurrency contracts every implementation must honour:
    - upsert_prediction is one atomic insert-or-replace keyed by
      (user_id, poll_id). Two racing submissions never both persist.
      It writes nothing once the poll is resolved, so a settled
      prediction is never reopened.
    - mark_poll_resolved is a compare-and-swap on resolved_at
      (NULL -> timestamp). Exactly one caller gets True.
    - Writes issued inside ``async with store.atomic():`` commit together
      or not at all.

Usage:
    from pollmarket.market.store import SqlPredictionStore

    store = SqlPredictionStore(db)
    async with store.atomic():
        claimed = await store.mark_poll_resolved(poll_id, option_id, "AP", now)
"""

from __future__ import annotations

import abc
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager
from datetime import datetime
from uuid import uuid4

from sqlalchemy import literal, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from pollmarket.common.logging import get_logger
from pollmarket.common.models import Poll, PollSnapshot, Prediction, User
from pollmarket.common.schemas import (
    PollRecord,
    PredictionRecord,
    PredictionSettlement,
    PredictionUpsert,
    SnapshotRecord,
    UserRecord,
)

logger = get_logger("STORE")

# Columns replaced when a user re-submits on the same poll
_UPSERT_COLUMNS = (
    "option_id",
    "confidence",
    "points",
    "reasoning",
    "payout",
    "is_resolved",
    "created_at",
    "resolved_at",
)


class PredictionStore(abc.ABC):
    """Everything the market engine reads from or writes to storage."""

    @abc.abstractmethod
    def atomic(self) -> AsyncIterator[None]:
        """Async context manager grouping writes into one all-or-nothing unit."""

    @abc.abstractmethod
    async def find_poll(self, poll_id: str) -> PollRecord | None: ...

    @abc.abstractmethod
    async def find_unresolved_predictions(self, poll_id: str) -> list[PredictionRecord]: ...

    @abc.abstractmethod
    async def find_poll_predictions(self, poll_id: str) -> list[PredictionRecord]:
        """All predictions on a poll, resolved or not."""

    @abc.abstractmethod
    async def find_predictions_since(
        self, poll_id: str, since: datetime
    ) -> list[PredictionRecord]:
        """Predictions on a poll created at or after ``since``, oldest first."""

    @abc.abstractmethod
    async def find_predictions_created_since(
        self, since: datetime | None
    ) -> list[PredictionRecord]:
        """Predictions across all polls created at or after ``since`` (None = all)."""

    @abc.abstractmethod
    async def find_user_predictions(
        self, user_id: str, since: datetime | None
    ) -> list[PredictionRecord]: ...

    @abc.abstractmethod
    async def find_users(self, user_ids: Iterable[str]) -> dict[str, UserRecord]: ...

    @abc.abstractmethod
    async def find_historical_snapshots(self, poll_id: str, limit: int) -> list[SnapshotRecord]:
        """The most recent ``limit`` snapshots, returned oldest first."""

    @abc.abstractmethod
    async def upsert_prediction(self, values: PredictionUpsert) -> PredictionRecord | None:
        """Insert or replace the (user_id, poll_id) prediction while the poll is open.

        Returns None, writing nothing, when the poll is resolved or inactive
        or the existing prediction is already settled.
        """

    @abc.abstractmethod
    async def mark_poll_resolved(
        self,
        poll_id: str,
        winning_option_id: str,
        resolution_source: str,
        resolved_at: datetime,
    ) -> bool:
        """Set the poll resolved iff it is not yet. Returns whether this call won."""

    @abc.abstractmethod
    async def batch_update_predictions(
        self, settlements: list[PredictionSettlement], resolved_at: datetime
    ) -> None: ...

    @abc.abstractmethod
    async def adjust_user_reputation(self, user_id: str, delta: int) -> None: ...

    async def find_user(self, user_id: str) -> UserRecord | None:
        users = await self.find_users([user_id])
        return users.get(user_id)


class SqlPredictionStore(PredictionStore):
    """PredictionStore over an async SQLAlchemy session (PostgreSQL or SQLite).

    Args:
        db: Async database session. The store commits it at the end of
            each atomic() block and rolls it back on error.
    """

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    @asynccontextmanager
    async def atomic(self) -> AsyncIterator[None]:
        try:
            yield
        except BaseException:
            await self.db.rollback()
            raise
        await self.db.commit()

    async def find_poll(self, poll_id: str) -> PollRecord | None:
        result = await self.db.execute(
            select(Poll)
            .where(Poll.id == poll_id)
            .execution_options(populate_existing=True)
        )
        poll = result.scalar_one_or_none()
        return PollRecord.model_validate(poll) if poll is not None else None

    async def find_unresolved_predictions(self, poll_id: str) -> list[PredictionRecord]:
        return await self._predictions(
            Prediction.poll_id == poll_id,
            Prediction.is_resolved.is_(False),
        )

    async def find_poll_predictions(self, poll_id: str) -> list[PredictionRecord]:
        return await self._predictions(Prediction.poll_id == poll_id)

    async def find_predictions_since(
        self, poll_id: str, since: datetime
    ) -> list[PredictionRecord]:
        return await self._predictions(
            Prediction.poll_id == poll_id,
            Prediction.created_at >= since,
        )

    async def find_predictions_created_since(
        self, since: datetime | None
    ) -> list[PredictionRecord]:
        if since is None:
            return await self._predictions()
        return await self._predictions(Prediction.created_at >= since)

    async def find_user_predictions(
        self, user_id: str, since: datetime | None
    ) -> list[PredictionRecord]:
        criteria = [Prediction.user_id == user_id]
        if since is not None:
            criteria.append(Prediction.created_at >= since)
        return await self._predictions(*criteria)

    async def find_users(self, user_ids: Iterable[str]) -> dict[str, UserRecord]:
        ids = set(user_ids)
        if not ids:
            return {}
        result = await self.db.execute(
            select(User).where(User.id.in_(ids)).execution_options(populate_existing=True)
        )
        return {user.id: UserRecord.model_validate(user) for user in result.scalars().all()}

    async def find_historical_snapshots(self, poll_id: str, limit: int) -> list[SnapshotRecord]:
        result = await self.db.execute(
            select(PollSnapshot)
            .where(PollSnapshot.poll_id == poll_id)
            .order_by(PollSnapshot.snapshot_date.desc())
            .limit(limit)
        )
        newest_first = [SnapshotRecord.model_validate(s) for s in result.scalars().all()]
        return list(reversed(newest_first))

    async def upsert_prediction(self, values: PredictionUpsert) -> PredictionRecord | None:
        table = Prediction.__table__
        polls = Poll.__table__
        row = {
            "id": str(uuid4()),
            **values.model_dump(),
            "payout": None,
            "is_resolved": False,
            "resolved_at": None,
        }
        # Yields a row only while the poll is open, so the write and the
        # open check happen in the same statement
        source = (
            select(
                *(
                    literal(value, type_=table.c[name].type).label(name)
                    for name, value in row.items()
                )
            )
            .select_from(polls)
            .where(
                polls.c.id == values.poll_id,
                polls.c.resolved_at.is_(None),
                polls.c.is_active.is_(True),
            )
        )
        dialect = self.db.get_bind().dialect.name
        insert = pg_insert if dialect == "postgresql" else sqlite_insert
        stmt = insert(table).from_select(list(row), source)
        stmt = stmt.on_conflict_do_update(
            index_elements=["user_id", "poll_id"],
            set_={column: stmt.excluded[column] for column in _UPSERT_COLUMNS},
            where=table.c.is_resolved.is_(False),
        ).returning(table.c.id)

        written = (await self.db.execute(stmt)).scalar_one_or_none()
        if written is None:
            logger.info(
                "Prediction write refused, poll closed",
                extra={"data": {"poll_id": values.poll_id, "user_id": values.user_id}},
            )
            return None

        result = await self.db.execute(
            select(Prediction)
            .where(Prediction.id == written)
            .execution_options(populate_existing=True)
        )
        return PredictionRecord.model_validate(result.scalar_one())

    async def mark_poll_resolved(
        self,
        poll_id: str,
        winning_option_id: str,
        resolution_source: str,
        resolved_at: datetime,
    ) -> bool:
        result = await self.db.execute(
            update(Poll)
            .where(Poll.id == poll_id, Poll.resolved_at.is_(None))
            .values(
                resolved_at=resolved_at,
                resolution_result=winning_option_id,
                resolution_source=resolution_source,
                is_active=False,
            )
            .execution_options(synchronize_session=False)
        )
        claimed = result.rowcount == 1
        logger.debug(
            "Poll resolution guard evaluated",
            extra={"data": {"poll_id": poll_id, "claimed": claimed}},
        )
        return claimed

    async def batch_update_predictions(
        self, settlements: list[PredictionSettlement], resolved_at: datetime
    ) -> None:
        if not settlements:
            return
        await self.db.execute(
            update(Prediction),
            [
                {
                    "id": s.prediction_id,
                    "payout": s.payout,
                    "is_resolved": True,
                    "resolved_at": resolved_at,
                }
                for s in settlements
            ],
        )

    async def adjust_user_reputation(self, user_id: str, delta: int) -> None:
        await self.db.execute(
            update(User)
            .where(User.id == user_id)
            .values(reputation=User.reputation + delta)
            .execution_options(synchronize_session=False)
        )

    async def _predictions(self, *criteria) -> list[PredictionRecord]:  # noqa: ANN002
        result = await self.db.execute(
            select(Prediction)
            .where(*criteria)
            .order_by(Prediction.created_at.asc(), Prediction.id.asc())
            .execution_options(populate_existing=True)
        )
        return [PredictionRecord.model_validate(p) for p in result.scalars().all()]
