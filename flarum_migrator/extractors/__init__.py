"""Source readers."""

from .base import BaseExtractor
from .flarum_extractor import FlarumExtractor

__all__ = [
    "BaseExtractor",
    "FlarumExtractor",
]
