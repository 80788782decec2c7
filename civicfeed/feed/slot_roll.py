"""
Slot Roll Feed Allocator
========================
Populates a feed by rolling a pool independently for every slot instead of
running one global ranking pass:

LOGGED IN (defaults):
  0-9   (10%) = RANDOM        - recency + reputation only (anti-echo-chamber)
  10-19 (10%) = TRENDING      - engagement + recency + reputation
  20-99 (80%) = PERSONALIZED  - interest similarity + social graph

LOGGED OUT (defaults):
  0-29  (30%) = RANDOM
  30-99 (70%) = TRENDING

Within a pool the pick is weighted random, never top-N. Items are unique
across the feed; an exhausted pool falls back RANDOM -> TRENDING ->
PERSONALIZED and a slot nothing can fill is dropped.
"""
import random
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Set

from ..logging_config import feed_logger, timed
from .scoring import utcnow
from .types import (
    FALLBACK_ORDER,
    Candidate,
    CandidateContext,
    FeedResult,
    FeedStats,
    Pool,
    Slot,
    SlotThresholds,
)

DEFAULT_SLOTS = 15


def determine_pool(roll: int, logged_in: bool, thresholds: SlotThresholds) -> Pool:
    """Map a 0-99 roll onto a pool"""
    if logged_in:
        if roll < thresholds.logged_in_random:
            return Pool.RANDOM
        if roll < thresholds.logged_in_trending:
            return Pool.TRENDING
        return Pool.PERSONALIZED

    if roll < thresholds.logged_out_random:
        return Pool.RANDOM
    return Pool.TRENDING


def fallback_chain(pool: Pool, logged_in: bool) -> List[Pool]:
    """Rolled pool first, then the rest in fixed order"""
    chain = [pool] + [p for p in FALLBACK_ORDER if p is not pool]
    if not logged_in:
        chain = [p for p in chain if p is not Pool.PERSONALIZED]
    return chain


def weighted_random_select(candidates: Sequence[Candidate], rng: random.Random) -> Optional[Candidate]:
    """
    Pick one candidate with probability proportional to its score.

    Negative scores count as zero. When every weight is zero the draw is
    uniform.
    """
    if not candidates:
        return None
    if len(candidates) == 1:
        return candidates[0]

    weights = [max(candidate.score, 0.0) for candidate in candidates]
    total = sum(weights)
    if total <= 0:
        return rng.choice(candidates)

    target = rng.random() * total
    cumulative = 0.0
    for candidate, weight in zip(candidates, weights):
        cumulative += weight
        if target < cumulative:
            return candidate

    # Float rounding can leave target == total
    for candidate, weight in zip(reversed(candidates), reversed(weights)):
        if weight > 0:
            return candidate
    return candidates[-1]


class SlotRollAllocator:
    """
    Per-request feed builder.

    providers: one CandidateProvider per Pool
    rng: random source for both the rolls and the weighted picks
    roll_source: optional override returning an int in [0, 99]
    """

    def __init__(
        self,
        providers: Dict[Pool, object],
        thresholds: Optional[SlotThresholds] = None,
        default_slots: int = DEFAULT_SLOTS,
        rng: Optional[random.Random] = None,
        roll_source: Optional[Callable[[], int]] = None,
    ):
        self.providers = providers
        self.thresholds = thresholds or SlotThresholds()
        self.default_slots = default_slots
        self.rng = rng or random.Random()
        self.roll_source = roll_source or (lambda: self.rng.randrange(100))

    @timed(feed_logger)
    def generate_feed(
        self,
        user_id: Optional[int],
        slot_count: Optional[int] = None,
        exclude_ids: Iterable[int] = (),
    ) -> FeedResult:
        """
        Build one feed.

        exclude_ids: items the caller has already shown (infinite scroll);
        they seed the dedup set and are never returned.
        """
        slot_count = self.default_slots if slot_count is None else slot_count
        logged_in = user_id is not None
        selected: Set[int] = set(exclude_ids)
        pools: Dict[Pool, List[Candidate]] = {}
        now = utcnow()

        slots: List[Slot] = []
        rolls: List[int] = []
        rolled_counts = {pool.value: 0 for pool in Pool}
        served_counts = {pool.value: 0 for pool in Pool}
        fallbacks = 0

        for index in range(slot_count):
            roll = self.roll_source()
            rolls.append(roll)
            pool = determine_pool(roll, logged_in, self.thresholds)
            rolled_counts[pool.value] += 1

            slot = Slot(index=index, roll=roll, pool=pool)
            for source in fallback_chain(pool, logged_in):
                if source not in pools:
                    pools[source] = self._fetch(source, user_id, now, selected)
                remaining = [c for c in pools[source] if c.item_id not in selected]
                choice = weighted_random_select(remaining, self.rng)
                if choice is not None:
                    slot.selected_item = choice
                    break

            if slot.selected_item is None:
                feed_logger.debug("Slot left unfilled, all pools exhausted", slot=index, pool=pool.value)
                continue

            selected.add(slot.selected_item.item_id)
            served_counts[slot.served_by.value] += 1
            if slot.served_by is not pool:
                fallbacks += 1
            slots.append(slot)

        if not logged_in:
            rolled_counts.pop(Pool.PERSONALIZED.value)
            served_counts.pop(Pool.PERSONALIZED.value)

        stats = FeedStats(
            total_slots=slot_count,
            filled_slots=len(slots),
            is_logged_in=logged_in,
            rolls=rolls,
            pool_distribution=rolled_counts,
            served_distribution=served_counts,
            fallbacks=fallbacks,
            expected_distribution=self.thresholds.expected_distribution(logged_in),
        )
        feed_logger.info(
            "Slot-roll feed generated",
            user_id=user_id,
            total_slots=slot_count,
            filled_slots=len(slots),
            fallbacks=fallbacks,
        )
        return FeedResult(slots=slots, stats=stats)

    def _fetch(self, pool: Pool, user_id: Optional[int], now, selected: Set[int]) -> List[Candidate]:
        """Load a pool once per request; a failing provider counts as empty"""
        provider = self.providers.get(pool)
        if provider is None:
            return []
        context = CandidateContext(user_id=user_id, now=now, exclude_ids=frozenset(selected))
        try:
            return list(provider.get_candidates(context))
        except Exception as e:
            feed_logger.error("Candidate pool unavailable, treating as empty", error=e, pool=pool.value, user_id=user_id)
            return []
