"""
Health Score Repository
Append-only access to persisted health score snapshots.
"""

import uuid
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from fin_analytics.models import HealthScoreSnapshot


class HealthScoreRepository:
    """Stores and reads health score snapshots. Archived rows are never returned."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, snapshot: HealthScoreSnapshot) -> HealthScoreSnapshot:
        """
        Persist a new snapshot.

        Args:
            snapshot: Snapshot to insert

        Returns:
            The flushed snapshot (id populated)
        """
        self.session.add(snapshot)
        await self.session.flush()
        return snapshot

    async def find_latest(self, organization_id: uuid.UUID) -> HealthScoreSnapshot | None:
        """Most recent snapshot for an organization."""
        query = (
            select(HealthScoreSnapshot)
            .where(
                HealthScoreSnapshot.organization_id == organization_id,
                HealthScoreSnapshot.is_archived.is_(False),
            )
            .order_by(HealthScoreSnapshot.calculated_at.desc())
            .limit(1)
        )
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def find_previous(self, organization_id: uuid.UUID, before: datetime) -> HealthScoreSnapshot | None:
        """
        Most recent snapshot calculated strictly before a cutoff.

        Args:
            organization_id: Organization
            before: Exclusive upper bound on calculated_at

        Returns:
            Snapshot if found, None otherwise
        """
        query = (
            select(HealthScoreSnapshot)
            .where(
                HealthScoreSnapshot.organization_id == organization_id,
                HealthScoreSnapshot.is_archived.is_(False),
                HealthScoreSnapshot.calculated_at < before,
            )
            .order_by(HealthScoreSnapshot.calculated_at.desc())
            .limit(1)
        )
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def find_history(
        self,
        organization_id: uuid.UUID,
        since: datetime,
        limit: int,
    ) -> list[HealthScoreSnapshot]:
        """Snapshots calculated on or after since, newest first."""
        query = (
            select(HealthScoreSnapshot)
            .where(
                HealthScoreSnapshot.organization_id == organization_id,
                HealthScoreSnapshot.is_archived.is_(False),
                HealthScoreSnapshot.calculated_at >= since,
            )
            .order_by(HealthScoreSnapshot.calculated_at.desc())
            .limit(limit)
        )
        result = await self.session.execute(query)
        return list(result.scalars().all())
