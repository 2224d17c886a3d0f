"""Grading and result reconciliation for the quiz portal."""
