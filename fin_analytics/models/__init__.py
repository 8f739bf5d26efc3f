"""
Models Package
SQLAlchemy ORM models owned by the analytics engine.
"""

from fin_analytics.models.health_score_snapshot import HealthScoreSnapshot

__all__ = [
    "HealthScoreSnapshot",
]
