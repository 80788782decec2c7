"""
Feed routes: slot-roll feed for anonymous and signed-in readers.
"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import List, Optional

from ..auth import get_required_user_id
from ..config import get_settings
from ..database import get_db
from ..feed import SlotRollAllocator, SlotThresholds, SqlPostStore, build_providers
from ..feed.types import FeedResult, Slot
from ..responses import bad_request, success

settings = get_settings()

router = APIRouter(prefix="/api/feed", tags=["feed"])


def build_allocator(db: Session) -> SlotRollAllocator:
    """One allocator per request over a request-scoped post store."""
    thresholds = SlotThresholds(
        logged_in_random=settings.feed_logged_in_random_threshold,
        logged_in_trending=settings.feed_logged_in_trending_threshold,
        logged_out_random=settings.feed_logged_out_random_threshold,
    )
    store = SqlPostStore.from_settings(db, settings)
    return SlotRollAllocator(build_providers(store), thresholds, default_slots=settings.feed_default_slots)


def parse_exclude_ids(raw: Optional[str]) -> List[int]:
    """Comma-separated ids of items the reader has already seen."""
    if not raw:
        return []
    try:
        return [int(part) for part in raw.split(",") if part.strip()]
    except ValueError:
        bad_request("exclude_ids must be a comma-separated list of integers", "INVALID_EXCLUDE_IDS")


def slot_to_dict(slot: Slot) -> dict:
    candidate = slot.selected_item
    return {
        "slot": slot.index,
        "roll": slot.roll,
        "pool": slot.pool.value,
        "served_by": slot.served_by.value,
        "score": round(candidate.score, 4),
        "item": candidate.item,
    }


def feed_response(result: FeedResult) -> dict:
    return success(
        {"items": [slot_to_dict(slot) for slot in result.slots]},
        meta=result.stats.to_dict(),
    )


@router.get("/public")
def public_feed(
    limit: Optional[int] = Query(None, ge=1, le=settings.feed_max_slots),
    exclude_ids: Optional[str] = None,
    db: Session = Depends(get_db),
):
    """Logged-out feed: random and trending pools only."""
    allocator = build_allocator(db)
    result = allocator.generate_feed(None, limit, parse_exclude_ids(exclude_ids))
    return feed_response(result)


@router.get("/slot-roll")
def slot_roll_feed(
    limit: Optional[int] = Query(None, ge=1, le=settings.feed_max_slots),
    exclude_ids: Optional[str] = None,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_required_user_id),
):
    """Signed-in feed mixing random, trending and personalized pools."""
    allocator = build_allocator(db)
    result = allocator.generate_feed(user_id, limit, parse_exclude_ids(exclude_ids))
    return feed_response(result)
