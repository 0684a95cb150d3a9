"""Target writers."""

from .base import BaseLoader, LoadResult
from .discourse_loader import DiscourseLoader

__all__ = [
    "BaseLoader",
    "LoadResult",
    "DiscourseLoader",
]
