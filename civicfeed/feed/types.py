"""
Feed data models: pools, slots, candidates and slot thresholds.
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Set

from pydantic import BaseModel, Field, model_validator


class Pool(Enum):
    """Scoring strategy a slot's item is drawn from"""
    RANDOM = "random"
    TRENDING = "trending"
    PERSONALIZED = "personalized"


# Order in which pools are tried after the rolled pool comes up empty
FALLBACK_ORDER = (Pool.RANDOM, Pool.TRENDING, Pool.PERSONALIZED)


@dataclass
class Candidate:
    """A scored feed item drawn from a pool"""
    item_id: int
    score: float
    pool_origin: Pool
    item: Optional[Dict[str, Any]] = None  # payload handed back to the caller


@dataclass
class Slot:
    """One feed position"""
    index: int
    roll: int
    pool: Pool
    selected_item: Optional[Candidate] = None

    @property
    def served_by(self) -> Optional[Pool]:
        return self.selected_item.pool_origin if self.selected_item else None


@dataclass
class CandidateContext:
    """What a provider needs to know about the request"""
    user_id: Optional[int]
    now: datetime
    exclude_ids: FrozenSet[int] = frozenset()

    @property
    def is_logged_in(self) -> bool:
        return self.user_id is not None


@dataclass
class PostRecord:
    """Read-only snapshot of a post as the pool queries return it"""
    id: int
    author_id: int
    created_at: datetime
    likes_count: int = 0
    comments_count: int = 0
    shares_count: int = 0
    author_reputation: Optional[int] = None
    embedding: Optional[List[float]] = None
    tags: List[str] = field(default_factory=list)
    h3_index: Optional[str] = None
    content: str = ""

    def to_item(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "author_id": self.author_id,
            "content": self.content,
            "tags": self.tags,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "likes_count": self.likes_count,
            "comments_count": self.comments_count,
            "shares_count": self.shares_count,
        }


@dataclass
class InterestProfile:
    """A user's social graph and interest vector"""
    user_id: int
    subscribed_ids: Set[int] = field(default_factory=set)
    friend_ids: Set[int] = field(default_factory=set)
    followed_ids: Set[int] = field(default_factory=set)
    muted_ids: Set[int] = field(default_factory=set)
    blocked_ids: Set[int] = field(default_factory=set)
    aggregate_vector: Optional[List[float]] = None
    h3_index: Optional[str] = None

    def excludes_author(self, author_id: int) -> bool:
        return author_id in self.muted_ids or author_id in self.blocked_ids


class SlotThresholds(BaseModel):
    """
    Roll breakpoints (0-100).

    Logged in:  roll < random -> RANDOM, roll < trending -> TRENDING, else PERSONALIZED
    Logged out: roll < logged_out_random -> RANDOM, else TRENDING
    """
    logged_in_random: int = Field(default=10, ge=0, le=100)
    logged_in_trending: int = Field(default=20, ge=0, le=100)
    logged_out_random: int = Field(default=30, ge=0, le=100)

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def check_breakpoints(self):
        if self.logged_in_random > self.logged_in_trending:
            raise ValueError("logged_in_random must not exceed logged_in_trending")
        return self

    def expected_distribution(self, logged_in: bool) -> Dict[str, int]:
        """Percent of slots each pool should receive"""
        if logged_in:
            return {
                Pool.RANDOM.value: self.logged_in_random,
                Pool.TRENDING.value: self.logged_in_trending - self.logged_in_random,
                Pool.PERSONALIZED.value: 100 - self.logged_in_trending,
            }
        return {
            Pool.RANDOM.value: self.logged_out_random,
            Pool.TRENDING.value: 100 - self.logged_out_random,
        }


@dataclass
class FeedStats:
    total_slots: int
    filled_slots: int
    is_logged_in: bool
    rolls: List[int]
    pool_distribution: Dict[str, int]
    served_distribution: Dict[str, int]
    fallbacks: int
    expected_distribution: Dict[str, int]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_slots": self.total_slots,
            "filled_slots": self.filled_slots,
            "is_logged_in": self.is_logged_in,
            "rolls": self.rolls,
            "pool_distribution": self.pool_distribution,
            "served_distribution": self.served_distribution,
            "fallbacks": self.fallbacks,
            "expected_distribution": self.expected_distribution,
        }


@dataclass
class FeedResult:
    """Filled slots in index order, plus how the feed was assembled"""
    slots: List[Slot]
    stats: FeedStats

    @property
    def item_ids(self) -> List[int]:
        return [slot.selected_item.item_id for slot in self.slots]
