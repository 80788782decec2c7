"""
Pool scoring functions.

RANDOM       = recency decay x reputation (no engagement signal)
TRENDING     = engagement x recency decay x reputation
PERSONALIZED = content similarity x relationship weight x recency decay x geo boost
"""
import math
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Sequence, Tuple

from .types import InterestProfile

# ============================================================
# CONSTANTS
# ============================================================

DAILY_DECAY = 0.95  # 5% per day

ENGAGEMENT_WEIGHTS = {
    "likes": 1.0,
    "comments": 2.0,
    "shares": 3.0,
}

RELATIONSHIP_WEIGHTS = {
    "subscribe": 2.0,
    "friend": 1.5,
    "follow": 1.0,
}
BASELINE_RELATIONSHIP_WEIGHT = 0.1

# Signal weights for the aggregate interest vector
SIGNAL_WEIGHTS = {
    "liked_posts": 0.4,
    "own_posts": 0.2,
    "explicit": 0.1,
}

NEUTRAL_SIMILARITY = 0.5

# (shared H3 prefix length, boost), checked top-down
GEO_BOOSTS = ((8, 1.5), (6, 1.3), (4, 1.15), (2, 1.05))


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ============================================================
# COMPONENTS
# ============================================================

def recency_decay(created_at: datetime, now: Optional[datetime] = None) -> float:
    """0.95 per day of age. Posts dated in the future count as brand new."""
    now = as_utc(now or utcnow())
    age_hours = max((now - as_utc(created_at)).total_seconds() / 3600.0, 0.0)
    return DAILY_DECAY ** (age_hours / 24.0)


def reputation_multiplier(reputation: Optional[float]) -> float:
    if reputation is None:
        return 1.0
    if reputation >= 95:
        return 1.1
    if reputation >= 50:
        return 1.0
    if reputation >= 30:
        return 0.9
    return 0.8


def engagement_score(likes: int, comments: int, shares: int) -> float:
    return (
        (likes or 0) * ENGAGEMENT_WEIGHTS["likes"]
        + (comments or 0) * ENGAGEMENT_WEIGHTS["comments"]
        + (shares or 0) * ENGAGEMENT_WEIGHTS["shares"]
    )


def relationship_weight(author_id: int, profile: InterestProfile) -> float:
    """Strongest edge wins: subscribe > friend > follow > none"""
    if author_id in profile.subscribed_ids:
        return RELATIONSHIP_WEIGHTS["subscribe"]
    if author_id in profile.friend_ids:
        return RELATIONSHIP_WEIGHTS["friend"]
    if author_id in profile.followed_ids:
        return RELATIONSHIP_WEIGHTS["follow"]
    return BASELINE_RELATIONSHIP_WEIGHT


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    if not a or not b or len(a) != len(b):
        return 0.0
    dot = sum(x * y for x, y in zip(a, b))
    magnitude = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    return dot / magnitude if magnitude else 0.0


def content_similarity(profile_vector: Optional[Sequence[float]], embedding: Optional[Sequence[float]]) -> float:
    """Cosine similarity mapped onto [0, 1]; neutral when either side has no vector"""
    if not profile_vector or not embedding or len(profile_vector) != len(embedding):
        return NEUTRAL_SIMILARITY
    return (cosine_similarity(profile_vector, embedding) + 1.0) / 2.0


def aggregate_interest_vector(
    liked: Iterable[Sequence[float]] = (),
    own: Iterable[Sequence[float]] = (),
    explicit: Optional[Sequence[float]] = None,
) -> Optional[List[float]]:
    """
    Weighted mean of the user's signal embeddings.

    The first vector seen fixes the dimension; vectors of any other length
    are skipped.
    """
    weighted: List[Tuple[Sequence[float], float]] = []
    weighted.extend((vec, SIGNAL_WEIGHTS["liked_posts"]) for vec in liked if vec)
    weighted.extend((vec, SIGNAL_WEIGHTS["own_posts"]) for vec in own if vec)
    if explicit:
        weighted.append((explicit, SIGNAL_WEIGHTS["explicit"]))

    if not weighted:
        return None

    dimension = len(weighted[0][0])
    result = [0.0] * dimension
    total_weight = 0.0
    for vec, weight in weighted:
        if len(vec) != dimension:
            continue
        for i, value in enumerate(vec):
            result[i] += value * weight
        total_weight += weight

    if total_weight == 0:
        return None
    return [value / total_weight for value in result]


def geo_boost(user_cell: Optional[str], post_cell: Optional[str]) -> float:
    """Closer H3 cells share a longer index prefix"""
    if not user_cell or not post_cell:
        return 1.0
    common = 0
    for a, b in zip(user_cell, post_cell):
        if a != b:
            break
        common += 1
    for min_length, boost in GEO_BOOSTS:
        if common >= min_length:
            return boost
    return 1.0


# ============================================================
# POOL SCORES
# ============================================================

def random_pool_score(created_at: datetime, reputation: Optional[float], now: Optional[datetime] = None) -> float:
    return recency_decay(created_at, now) * reputation_multiplier(reputation)


def trending_pool_score(
    likes: int,
    comments: int,
    shares: int,
    created_at: datetime,
    reputation: Optional[float],
    now: Optional[datetime] = None,
) -> float:
    return (
        engagement_score(likes, comments, shares)
        * recency_decay(created_at, now)
        * reputation_multiplier(reputation)
    )


def personalized_pool_score(
    profile: InterestProfile,
    author_id: int,
    embedding: Optional[Sequence[float]],
    created_at: datetime,
    h3_index: Optional[str] = None,
    now: Optional[datetime] = None,
) -> float:
    return (
        content_similarity(profile.aggregate_vector, embedding)
        * relationship_weight(author_id, profile)
        * recency_decay(created_at, now)
        * geo_boost(profile.h3_index, h3_index)
    )
