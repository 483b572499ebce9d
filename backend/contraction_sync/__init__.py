"""Offline-first contraction tracking sync engine."""

__version__ = "1.0.0"
