"""Reconciliation worker."""
