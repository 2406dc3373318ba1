"""Recurring job entrypoints for settlement maintenance."""

__all__ = ["settlement"]
