"""Reconciliation pipeline: classify, match, resolve, derive, plan, commit."""
