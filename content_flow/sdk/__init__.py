"""
Provider adapters for content-flow.

Each adapter turns a NormalizedRequest into one backend call.
"""

from .base import ConnectionCheck, ProviderAdapter
from .mock_client import MockAdapter
from .registry import ProviderRegistry, build_registry

__all__ = ["ConnectionCheck", "ProviderAdapter", "MockAdapter", "ProviderRegistry", "build_registry"]
