"""Persistence layer."""

from .base import ReconciliationRepository, record_key
from .memory import InMemoryRepository

__all__ = ["ReconciliationRepository", "InMemoryRepository", "record_key"]
