"""Reconciliation core: inspection, planning, execution and reporting."""
