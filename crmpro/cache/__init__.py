from crmpro.cache.mutator import MutationResult, OptimisticMutator
from crmpro.cache.realtime import RealtimeCache
from crmpro.cache.registry import CacheRegistry
from crmpro.cache.views import CollectionView

__all__ = ["CacheRegistry", "CollectionView", "MutationResult", "OptimisticMutator", "RealtimeCache"]
