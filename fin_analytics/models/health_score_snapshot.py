"""
Health Score Snapshot Model
Append-only history of computed financial health scores.

Snapshots are never updated in place. The latest score for an organization is
the non-archived row with the greatest calculated_at.
"""

import uuid
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import Boolean, DateTime, Float, Index, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from fin_analytics.database.base import Base, JSONType, TimestampMixin, UUIDMixin


class HealthScoreSnapshot(Base, UUIDMixin, TimestampMixin):
    """
    One computed health score for an organization.

    Attributes:
        id: Unique identifier (UUID)
        organization_id: Owning organization (tenant isolation)
        calculated_at: When the score was computed
        overall_score: Weighted overall score (0-100)
        overall_status: excellent, good, fair, poor or critical
        category_scores: Per-category score, weight, weighted score and status
        recommendations: Top recommendations at calculation time
        calculation_metadata: Extra context (engine version, windows used)
        is_archived: Archived snapshots are excluded from history lookups
    """

    organization_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        nullable=False,
        index=True,
        comment="Owning organization",
    )

    calculated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        comment="When the score was computed",
    )

    overall_score: Mapped[float] = mapped_column(
        Float,
        nullable=False,
        comment="Weighted overall score (0-100)",
    )

    overall_status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        comment="excellent, good, fair, poor or critical",
    )

    category_scores: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONType,
        nullable=False,
        default=list,
        comment="Per-category scores",
    )

    recommendations: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONType,
        nullable=False,
        default=list,
        comment="Top recommendations at calculation time",
    )

    calculation_metadata: Mapped[Optional[dict[str, Any]]] = mapped_column(
        JSONType,
        nullable=True,
        comment="Extra calculation context",
    )

    is_archived: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        comment="Archived snapshots are excluded from lookups",
    )

    __table_args__ = (
        Index("ix_health_score_snapshots_org_calculated", "organization_id", "calculated_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<HealthScoreSnapshot(id={self.id}, org_id={self.organization_id}, "
            f"score={self.overall_score}, status={self.overall_status!r})>"
        )

    def category_score(self, category: str) -> Optional[float]:
        """Score recorded for a category, or None if absent."""
        for entry in self.category_scores or []:
            if entry.get("category") == category:
                return entry.get("score")
        return None
