from .base import Base
from .user import User
from .post import Post

__all__ = [
    "Base",
    "User",
    "Post",
]
