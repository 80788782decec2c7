from .feed import router as feed_router
from .videos import router as videos_router
from .video_pipeline import router as video_pipeline_router
from .webhooks import router as webhooks_router
from .health import router as health_router

__all__ = [
    "feed_router",
    "videos_router",
    "video_pipeline_router",
    "webhooks_router",
    "health_router",
]
