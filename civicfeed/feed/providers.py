"""
Candidate providers: one per pool, each returning already-scored candidates.
"""
from typing import List

from ..logging_config import feed_logger
from .scoring import personalized_pool_score, random_pool_score, trending_pool_score
from .types import Candidate, CandidateContext, Pool


class CandidateProvider:
    """Narrow contract the allocator depends on"""

    pool: Pool

    def get_candidates(self, context: CandidateContext) -> List[Candidate]:
        raise NotImplementedError


class RandomPoolProvider(CandidateProvider):
    """Recency and reputation only. No engagement signal, so new voices surface."""

    pool = Pool.RANDOM

    def __init__(self, store):
        self.store = store

    def get_candidates(self, context: CandidateContext) -> List[Candidate]:
        return [
            Candidate(
                item_id=post.id,
                score=random_pool_score(post.created_at, post.author_reputation, context.now),
                pool_origin=self.pool,
                item=post.to_item(),
            )
            for post in self.store.query_random_pool(context)
        ]


class TrendingPoolProvider(CandidateProvider):
    """Engagement weighted by recency and author reputation"""

    pool = Pool.TRENDING

    def __init__(self, store):
        self.store = store

    def get_candidates(self, context: CandidateContext) -> List[Candidate]:
        return [
            Candidate(
                item_id=post.id,
                score=trending_pool_score(
                    post.likes_count,
                    post.comments_count,
                    post.shares_count,
                    post.created_at,
                    post.author_reputation,
                    context.now,
                ),
                pool_origin=self.pool,
                item=post.to_item(),
            )
            for post in self.store.query_trending_pool(context)
        ]


class PersonalizedPoolProvider(CandidateProvider):
    """
    Interest similarity x social graph x recency.

    Muted and blocked authors are dropped before scoring; they never appear
    no matter how well they would score.
    """

    pool = Pool.PERSONALIZED

    def __init__(self, store):
        self.store = store

    def get_candidates(self, context: CandidateContext) -> List[Candidate]:
        if not context.is_logged_in:
            return []

        profile = self.store.load_interest_profile(context.user_id)
        posts = self.store.query_personalized_pool(context)
        eligible = [post for post in posts if not profile.excludes_author(post.author_id)]

        feed_logger.debug(
            "Personalized pool scored",
            user_id=context.user_id,
            original_count=len(posts),
            filtered_count=len(eligible),
            excluded_by_mute_block=len(posts) - len(eligible),
        )

        return [
            Candidate(
                item_id=post.id,
                score=personalized_pool_score(
                    profile,
                    post.author_id,
                    post.embedding,
                    post.created_at,
                    post.h3_index,
                    context.now,
                ),
                pool_origin=self.pool,
                item=post.to_item(),
            )
            for post in eligible
        ]


def build_providers(store) -> dict:
    """Default provider set over a single post store"""
    return {
        Pool.RANDOM: RandomPoolProvider(store),
        Pool.TRENDING: TrendingPoolProvider(store),
        Pool.PERSONALIZED: PersonalizedPoolProvider(store),
    }
