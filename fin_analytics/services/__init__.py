"""
Services Package
Database-backed services.
"""

from fin_analytics.services.health_score_repository import HealthScoreRepository

__all__ = ["HealthScoreRepository"]
