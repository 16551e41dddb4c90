"""Client for the external conversation memory service."""

from .client import MemoryApiClient, MemoryType

__all__ = ["MemoryApiClient", "MemoryType"]
