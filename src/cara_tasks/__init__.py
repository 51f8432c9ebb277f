"""Cara: AI-assisted task tracker (sync, prioritization, recurrence, debounced edits)."""

__version__ = "0.1.0"
