"""Generation provider implementations.

Each provider implements the async prediction pattern:
  POST create prediction -> GET status until terminal -> output URLs
"""

from mediaforge.services.providers.base import GenerationProvider
from mediaforge.services.providers.replicate import ReplicateProvider

__all__ = ["GenerationProvider", "ReplicateProvider"]
