"""Service layer for the migration application."""

from .mapping_store import MappingStore, InMemoryMappingStore, JSONLMappingStore
from .markup import MarkupTranscoder, transcode
from .transformer import AvatarAttachment, EntityMapper
from .topics import PostMapper, TopicRole, UNKNOWN_USER_ID

__all__ = [
    "MappingStore",
    "InMemoryMappingStore",
    "JSONLMappingStore",
    "MarkupTranscoder",
    "transcode",
    "AvatarAttachment",
    "EntityMapper",
    "PostMapper",
    "TopicRole",
    "UNKNOWN_USER_ID",
]
