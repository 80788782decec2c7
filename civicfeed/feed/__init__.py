from .types import Candidate, CandidateContext, FeedResult, FeedStats, Pool, Slot, SlotThresholds
from .providers import (
    CandidateProvider,
    PersonalizedPoolProvider,
    RandomPoolProvider,
    TrendingPoolProvider,
    build_providers,
)
from .slot_roll import SlotRollAllocator, determine_pool, weighted_random_select
from .store import SqlPostStore

__all__ = [
    "Candidate",
    "CandidateContext",
    "FeedResult",
    "FeedStats",
    "Pool",
    "Slot",
    "SlotThresholds",
    "CandidateProvider",
    "RandomPoolProvider",
    "TrendingPoolProvider",
    "PersonalizedPoolProvider",
    "build_providers",
    "SlotRollAllocator",
    "determine_pool",
    "weighted_random_select",
    "SqlPostStore",
]
