from .interfaces import PricingRepositories
from .memory import InMemoryRepository, StaticVolumeStats

__all__ = ["InMemoryRepository", "PricingRepositories", "StaticVolumeStats"]
