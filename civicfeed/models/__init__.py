from .user import User
from .post import Post
from .relationship import Relationship, PostLike
from .video import Video

__all__ = [
    "User",
    "Post",
    "Relationship",
    "PostLike",
    "Video",
]
