"""
Post store: read-only pool queries over the relational database.

Scoring happens in the candidate providers; these queries only decide
which posts are eligible for each pool.
"""
from datetime import timedelta
from typing import List, Optional

from sqlalchemy.orm import Session

from ..models.post import Post
from ..models.relationship import PostLike, Relationship, RelationshipKind
from ..models.user import User
from .scoring import aggregate_interest_vector
from .types import CandidateContext, InterestProfile, PostRecord


class SqlPostStore:
    """Pool queries backed by SQLAlchemy"""

    def __init__(
        self,
        db: Session,
        window_days: int = 30,
        random_limit: int = 200,
        trending_limit: int = 300,
        personalized_limit: int = 150,
    ):
        self.db = db
        self.window_days = window_days
        self.random_limit = random_limit
        self.trending_limit = trending_limit
        self.personalized_limit = personalized_limit

    @classmethod
    def from_settings(cls, db: Session, settings) -> "SqlPostStore":
        return cls(
            db,
            window_days=settings.feed_candidate_window_days,
            random_limit=settings.feed_random_pool_size,
            trending_limit=settings.feed_trending_pool_size,
            personalized_limit=settings.feed_personalized_pool_size,
        )

    def _eligible(self, ctx: CandidateContext):
        cutoff = ctx.now - timedelta(days=self.window_days)
        query = (
            self.db.query(Post, User.reputation)
            .join(User, Post.author_id == User.id)
            .filter(Post.visibility == "public")
            .filter(Post.created_at >= cutoff)
            .filter(User.is_active.is_(True))
        )
        if ctx.exclude_ids:
            query = query.filter(~Post.id.in_(ctx.exclude_ids))
        return query.order_by(Post.created_at.desc())

    @staticmethod
    def _to_record(post: Post, reputation: Optional[int]) -> PostRecord:
        return PostRecord(
            id=post.id,
            author_id=post.author_id,
            created_at=post.created_at,
            likes_count=post.likes_count or 0,
            comments_count=post.comments_count or 0,
            shares_count=post.shares_count or 0,
            author_reputation=reputation,
            embedding=post.embedding,
            tags=post.tags or [],
            h3_index=post.h3_index,
            content=post.content,
        )

    def query_random_pool(self, ctx: CandidateContext) -> List[PostRecord]:
        rows = self._eligible(ctx).limit(self.random_limit).all()
        return [self._to_record(post, rep) for post, rep in rows]

    def query_trending_pool(self, ctx: CandidateContext) -> List[PostRecord]:
        rows = self._eligible(ctx).limit(self.trending_limit).all()
        return [self._to_record(post, rep) for post, rep in rows]

    def query_personalized_pool(self, ctx: CandidateContext) -> List[PostRecord]:
        if ctx.user_id is None:
            return []
        rows = (
            self._eligible(ctx)
            .filter(Post.author_id != ctx.user_id)
            .limit(self.personalized_limit)
            .all()
        )
        return [self._to_record(post, rep) for post, rep in rows]

    def load_interest_profile(self, user_id: int) -> InterestProfile:
        """Social graph edges plus the aggregate interest vector"""
        profile = InterestProfile(user_id=user_id)

        edges = self.db.query(Relationship).filter(Relationship.user_id == user_id).all()
        buckets = {
            RelationshipKind.SUBSCRIBE: profile.subscribed_ids,
            RelationshipKind.FRIEND: profile.friend_ids,
            RelationshipKind.FOLLOW: profile.followed_ids,
            RelationshipKind.MUTE: profile.muted_ids,
            RelationshipKind.BLOCK: profile.blocked_ids,
        }
        for edge in edges:
            bucket = buckets.get(edge.kind)
            if bucket is not None:
                bucket.add(edge.target_id)

        # Blocks hide content in both directions
        blocked_by = (
            self.db.query(Relationship.user_id)
            .filter(Relationship.target_id == user_id, Relationship.kind == RelationshipKind.BLOCK)
            .all()
        )
        profile.blocked_ids.update(row[0] for row in blocked_by)

        liked = (
            self.db.query(Post.embedding)
            .join(PostLike, PostLike.post_id == Post.id)
            .filter(PostLike.user_id == user_id)
            .order_by(PostLike.created_at.desc())
            .limit(100)
            .all()
        )
        own = (
            self.db.query(Post.embedding)
            .filter(Post.author_id == user_id)
            .order_by(Post.created_at.desc())
            .limit(50)
            .all()
        )
        user = self.db.query(User).filter(User.id == user_id).first()

        profile.aggregate_vector = aggregate_interest_vector(
            liked=[row[0] for row in liked if row[0]],
            own=[row[0] for row in own if row[0]],
            explicit=user.embedding if user else None,
        )
        profile.h3_index = user.h3_index if user else None
        return profile
