"""
Financial Analytics Engine
Variance, trend, unit-economics and health-score analysis over plans and actuals.
"""

__version__ = "1.0.0"
