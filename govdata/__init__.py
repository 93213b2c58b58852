"""Cached, rate-limited access to government data providers."""

__version__ = "1.0.0"
