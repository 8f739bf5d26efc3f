"""
Analysis Module
Variance, trend, unit economics and health score analysis over plans and actuals.
"""

from fin_analytics.analysis.health_score import HealthScoreComposer
from fin_analytics.analysis.trends import TrendAnalyzer
from fin_analytics.analysis.unit_economics import UnitEconomicsEngine
from fin_analytics.analysis.variance import VarianceAnalyzer

__all__ = [
    "HealthScoreComposer",
    "TrendAnalyzer",
    "UnitEconomicsEngine",
    "VarianceAnalyzer",
]
