"""Reconstruction of topics and replies from Flarum's flat post rows."""

import logging
from enum import Enum
from typing import Optional, Union

from ..exceptions import CategoryNotMigratedError
from ..models.migration import EntityKind
from ..models.record import (
    Skip,
    SourcePost,
    TransformedRecord,
    child_category_key,
)
from .mapping_store import MappingStore
from .markup import MarkupTranscoder

logger = logging.getLogger(__name__)

# Discourse user id posts are attributed to when their author was not imported
UNKNOWN_USER_ID = -1


class TopicRole(str, Enum):
    """Role of a post inside its discussion."""
    OPENS_TOPIC = "opens_topic"
    REPLY = "reply"


def role_of(post: SourcePost) -> TopicRole:
    """A post opens its topic iff it is the discussion's first post."""
    return TopicRole.OPENS_TOPIC if post.opens_topic else TopicRole.REPLY


class PostMapper:
    """
    Maps one source post to a Discourse post payload.

    An opening post creates its topic, so its payload carries the title and
    category. A reply is attached to the topic recorded for its discussion's
    first post; when that topic is unknown the reply is skipped.
    """

    def __init__(
        self,
        store: MappingStore,
        transcoder: Optional[MarkupTranscoder] = None
    ):
        self.store = store
        self.transcoder = transcoder or MarkupTranscoder()

    def map(self, post: SourcePost) -> Union[TransformedRecord, Skip]:
        """
        Build the payload for ``post``.

        Raises:
            CategoryNotMigratedError: an opening post's category has no
                mapping, meaning categories were never imported
        """
        role = role_of(post)
        data = {
            "id": post.id,
            "user_id": self._resolve_user(post.user_id),
            "raw": self.transcoder.transcode(post.raw),
            "created_at": post.created_at,
        }

        if role == TopicRole.OPENS_TOPIC:
            data["title"] = post.unescaped_title
            # Untagged discussions land in Discourse's default category
            if post.category_id is not None:
                category_key = child_category_key(post.category_id)
                category = self.store.get(EntityKind.CATEGORY_CHILD, category_key)
                if category is None:
                    raise CategoryNotMigratedError(category_key, post.id)
                data["category"] = category
        else:
            parent = self.store.lookup_topic_by_first_post(post.first_post_id)
            if parent is None:
                reason = (
                    f"Parent post {post.first_post_id} doesn't exist. "
                    f"Skipping {post.id}: {post.title[:41]}"
                )
                logger.warning(reason)
                return Skip(reason)
            data["topic_id"] = parent["topic_id"]

        return TransformedRecord(
            id=str(post.id),
            kind=EntityKind.POST,
            data=data,
            metadata={
                "role": role.value,
                "opens_topic": role == TopicRole.OPENS_TOPIC,
                "source_topic_id": post.topic_id,
                "first_post_id": post.first_post_id,
            },
        )

    def _resolve_user(self, source_user_id: Optional[int]) -> int:
        if source_user_id is None:
            return UNKNOWN_USER_ID
        user_id = self.store.get(EntityKind.USER, source_user_id)
        return user_id if user_id is not None else UNKNOWN_USER_ID
