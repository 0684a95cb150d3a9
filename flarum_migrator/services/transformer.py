"""Mappers turning Flarum users and tags into Discourse creation payloads."""

import logging
import os
from typing import Any, Optional

from ..models.migration import EntityKind
from ..models.record import (
    SideEffectOutcome,
    SourceCategory,
    SourceUser,
    TransformedRecord,
)
from .mapping_store import MappingStore

logger = logging.getLogger(__name__)


class AvatarAttachment:
    """
    Post-create action that uploads a user's Flarum avatar.

    Best effort: a missing file, a rejected upload or any storage error
    leaves the user imported without an avatar.
    """

    def __init__(self, path: str):
        self.path = path

    def __call__(self, loader: Any, target_user_id: int) -> SideEffectOutcome:
        if not os.path.isfile(self.path):
            return SideEffectOutcome.IGNORED

        try:
            upload_id = loader.upload_avatar(target_user_id, self.path)
        except Exception as e:
            logger.debug(f"Avatar upload failed for user {target_user_id} ({self.path}): {e}")
            return SideEffectOutcome.IGNORED

        if upload_id is None:
            return SideEffectOutcome.IGNORED
        return SideEffectOutcome.APPLIED


class EntityMapper:
    """
    Converts source users and categories into target payloads.

    Foreign keys are resolved through the mapping store; the mapper itself
    never writes to it.
    """

    def __init__(self, store: MappingStore, avatar_dir: Optional[str] = None):
        """
        Initialize the mapper.

        Args:
            store: ID mapping store used to resolve parents
            avatar_dir: Directory that ``users.avatar_url`` is relative to
        """
        self.store = store
        self.avatar_dir = avatar_dir

    def map_user(self, user: SourceUser) -> TransformedRecord:
        """Build the creation payload for a user."""
        record = TransformedRecord(
            id=str(user.id),
            kind=EntityKind.USER,
            data={
                "id": user.id,
                "email": user.email,
                "username": user.username,
                "name": user.username,
                "created_at": user.joined_at,
                "last_seen_at": user.last_seen_at,
            },
        )

        if user.avatar_url and self.avatar_dir:
            path = os.path.join(self.avatar_dir, user.avatar_url)
            record.post_create_action = AvatarAttachment(path)

        return record

    def map_top_category(self, category: SourceCategory) -> TransformedRecord:
        """Payload for the top-level copy of a tag, keyed by its own id."""
        return TransformedRecord(
            id=str(category.id),
            kind=EntityKind.CATEGORY_TOP,
            data={
                "id": category.id,
                "name": category.name,
                "position": category.position,
            },
        )

    def map_child_category(self, category: SourceCategory) -> TransformedRecord:
        """Payload for the child copy of a tag, keyed by ``child#<id>``."""
        parent_id = self.store.get(EntityKind.CATEGORY_TOP, category.id)
        if parent_id is None:
            logger.warning(
                f"Top-level category for tag {category.id} is missing; "
                f"creating {category.child_id} without a parent"
            )

        return TransformedRecord(
            id=category.child_id,
            kind=EntityKind.CATEGORY_CHILD,
            data={
                "id": category.child_id,
                "name": category.name,
                "description": category.description,
                "parent_category_id": parent_id,
                "position": category.position,
            },
        )
