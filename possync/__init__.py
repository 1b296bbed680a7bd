"""Offline-first synchronization core for a restaurant POS terminal."""

__version__ = "1.0.0"
