"""PostgreSQL AI credit quota using SQLAlchemy Core."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Callable, Optional

from sqlalchemy import Column, Integer, MetaData, String, Table, UniqueConstraint, text
from sqlalchemy.engine import Engine

from rag_core.models.usage import QuotaStatus
from rag_core.utils.logging_config import get_logger

logger = get_logger(__name__)

metadata = MetaData()

billing_usage = Table(
    "billing_usage",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("organization_id", String(64), nullable=False),
    Column("period", String(7), nullable=False),
    Column("ai_credits_used", Integer, nullable=False, server_default="0"),
    UniqueConstraint("organization_id", "period", name="uq_billing_usage_org_period"),
)

organization_plans = Table(
    "organization_plans",
    metadata,
    Column("organization_id", String(64), primary_key=True),
    Column("ai_credits_limit", Integer, nullable=False),
)

_SELECT_USED = text(
    "SELECT ai_credits_used FROM billing_usage "
    "WHERE organization_id = :org AND period = :period"
)
_SELECT_LIMIT = text(
    "SELECT ai_credits_limit FROM organization_plans WHERE organization_id = :org"
)
_ENSURE_ROW = text(
    "INSERT INTO billing_usage (organization_id, period, ai_credits_used) "
    "VALUES (:org, :period, 0) "
    "ON CONFLICT (organization_id, period) DO NOTHING"
)
_INCREMENT = text(
    "UPDATE billing_usage SET ai_credits_used = ai_credits_used + :units "
    "WHERE organization_id = :org AND period = :period"
)
_INCREMENT_WITHIN_LIMIT = text(
    "UPDATE billing_usage SET ai_credits_used = ai_credits_used + :units "
    "WHERE organization_id = :org AND period = :period "
    "AND ai_credits_used + :units <= :limit"
)


def current_period(now: Optional[datetime] = None) -> str:
    """Billing period label, e.g. ``2024-05``."""
    return (now or datetime.now(timezone.utc)).strftime("%Y-%m")


class PostgresQuotaService:
    """Monthly AI credit accounting per organization."""

    def __init__(
        self,
        engine: Engine,
        default_limit: int = 100,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.engine = engine
        self.default_limit = default_limit
        self.clock = clock

    def create_tables(self) -> None:
        metadata.create_all(self.engine)

    async def check(self, scope_id: str) -> QuotaStatus:
        return await asyncio.to_thread(self._check, scope_id)

    async def record_usage(self, scope_id: str, units: int) -> QuotaStatus:
        return await asyncio.to_thread(self._record_usage, scope_id, units)

    async def check_and_consume(self, scope_id: str, unit_cost: int) -> QuotaStatus:
        return await asyncio.to_thread(self._check_and_consume, scope_id, unit_cost)

    def _check(self, org: str) -> QuotaStatus:
        params = {"org": org, "period": current_period(self.clock())}
        with self.engine.connect() as conn:
            used = self._used(conn, params)
            limit = self._limit(conn, org)
        return QuotaStatus.from_usage(used, limit)

    def _record_usage(self, org: str, units: int) -> QuotaStatus:
        params = {"org": org, "period": current_period(self.clock()), "units": units}
        with self.engine.begin() as conn:
            conn.execute(_ENSURE_ROW, params)
            conn.execute(_INCREMENT, params)
            used = self._used(conn, params)
            limit = self._limit(conn, org)
        logger.info(
            "AI credits recorded",
            extra={"organization_id": org, "units": units, "current": used, "limit": limit},
        )
        return QuotaStatus.from_usage(used, limit)

    def _check_and_consume(self, org: str, units: int) -> QuotaStatus:
        params = {"org": org, "period": current_period(self.clock()), "units": units}
        with self.engine.begin() as conn:
            limit = self._limit(conn, org)
            conn.execute(_ENSURE_ROW, params)
            result = conn.execute(_INCREMENT_WITHIN_LIMIT, {**params, "limit": limit})
            used = self._used(conn, params)
        return QuotaStatus.from_usage(used, limit, allowed=result.rowcount == 1)

    @staticmethod
    def _used(conn, params: dict) -> int:
        row = conn.execute(_SELECT_USED, params).fetchone()
        return int(row[0]) if row else 0

    def _limit(self, conn, org: str) -> int:
        row = conn.execute(_SELECT_LIMIT, {"org": org}).fetchone()
        return int(row[0]) if row else self.default_limit
