"""Utility functions."""

from consent_gate.utils.time import ensure_utc, format_datetime, utc_now

__all__ = ["utc_now", "ensure_utc", "format_datetime"]
