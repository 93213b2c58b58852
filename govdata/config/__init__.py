"""Configuration module for govdata."""

from .settings import settings
from .constants import HealthState, Priority, SyncState, UpdateFrequency

__all__ = ["settings", "HealthState", "Priority", "SyncState", "UpdateFrequency"]
