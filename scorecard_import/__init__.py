"""Scorecard import reconciliation engine.

Turns dealership productivity report spreadsheets into (user, KPI, period)
scorecard entries.
"""

__version__ = "0.1.0"
