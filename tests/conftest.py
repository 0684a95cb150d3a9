"""Shared pytest fixtures: in-memory source and target doubles."""

import itertools
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import pytest

from flarum_migrator.exceptions import RecordRejectedError
from flarum_migrator.extractors.base import BaseExtractor
from flarum_migrator.loaders.base import BaseLoader
from flarum_migrator.models.migration import MigrationConfig, SourceEntity
from flarum_migrator.models.record import SourceCategory, SourcePost, SourceUser
from flarum_migrator.services.mapping_store import InMemoryMappingStore


class FakeExtractor(BaseExtractor):
    """Serves pre-built source records from memory."""

    def __init__(self, users=None, categories=None, posts=None):
        self.records = {
            SourceEntity.USERS: list(users or []),
            SourceEntity.CATEGORIES: list(categories or []),
            SourceEntity.POSTS: list(posts or []),
        }
        self.reads: List[tuple] = []

    def read(self, entity, limit, offset=0):
        entity = SourceEntity(entity)
        self.reads.append((entity, limit, offset))
        return self.records[entity][offset:offset + limit]

    def count(self, entity):
        return len(self.records[SourceEntity(entity)])


class FakeLoader(BaseLoader):
    """Target double that hands out sequential ids and remembers payloads."""

    def __init__(self, store, reject: Optional[Dict[str, set]] = None, avatar_error: Optional[Exception] = None):
        super().__init__(store)
        self._ids = itertools.count(1000)
        self.reject = reject or {}
        self.avatar_error = avatar_error
        self.users: List[Dict[str, Any]] = []
        self.categories: Dict[int, Dict[str, Any]] = {}
        self.posts: Dict[int, Dict[str, Any]] = {}
        self.topics: Dict[int, int] = {}
        self.avatars: List[tuple] = []

    def _check(self, entity, data):
        if data.get("id") in self.reject.get(entity, set()):
            raise RecordRejectedError(f"{entity} {data['id']} rejected", status_code=422)

    def create_user(self, data):
        self._check("users", data)
        self.users.append(data)
        return next(self._ids)

    def create_category(self, data):
        self._check("categories", data)
        category_id = next(self._ids)
        self.categories[category_id] = data
        return category_id

    def create_post(self, data):
        self._check("posts", data)
        post_id = next(self._ids)
        self.posts[post_id] = data
        topic_id = data["topic_id"] if "topic_id" in data else post_id + 50000
        self.topics[post_id] = topic_id
        return post_id, topic_id

    def topic_of(self, post_id):
        return self.topics.get(post_id)

    def upload_avatar(self, user_id, path):
        if self.avatar_error is not None:
            raise self.avatar_error
        self.avatars.append((user_id, path))
        return 1


def ts(day: int, hour: int = 0) -> datetime:
    return datetime(2020, 1, day, hour, tzinfo=timezone.utc)


def make_user(user_id, avatar_url=None):
    return SourceUser(
        id=user_id,
        username=f"user{user_id}",
        email=f"user{user_id}@example.com",
        joined_at=ts(1),
        last_seen_at=ts(2),
        avatar_url=avatar_url,
    )


def make_category(category_id, position=None):
    return SourceCategory(
        id=category_id,
        name=f"Tag {category_id}",
        description=f"About tag {category_id}",
        position=position,
    )


def make_post(post_id, topic_id, first_post_id, user_id=1, category_id=1, title="A discussion", day=1):
    return SourcePost(
        id=post_id,
        topic_id=topic_id,
        title=title,
        first_post_id=first_post_id,
        user_id=user_id,
        raw="<t><p>Body of " + str(post_id) + "</p></t>",
        created_at=ts(day, post_id % 24),
        category_id=category_id,
    )


@pytest.fixture
def store():
    return InMemoryMappingStore()


@pytest.fixture
def loader(store):
    return FakeLoader(store)


@pytest.fixture
def config(tmp_path):
    return MigrationConfig.from_dict({
        "batch_size": 2,
        "avatar_dir": str(tmp_path / "avatars"),
        "mapping_file": str(tmp_path / "id_mappings.jsonl"),
        "output_dir": str(tmp_path),
        "save_report": False,
    })
