from datetime import datetime, timezone
from unittest import mock

import pymysql
import pytest

from flarum_migrator.exceptions import SourceConnectionError
from flarum_migrator.extractors.flarum_extractor import FlarumExtractor
from flarum_migrator.models.migration import SourceConfig, SourceEntity
from flarum_migrator.models.record import SourcePost, SourceUser


def make_extractor(rows=None, prefix="flarum_"):
    connection = mock.MagicMock()
    cursor = connection.cursor.return_value.__enter__.return_value
    cursor.fetchall.return_value = rows or []
    extractor = FlarumExtractor(SourceConfig(table_prefix=prefix), connection=connection)
    return extractor, cursor


def test_read_users_builds_typed_records():
    extractor, cursor = make_extractor([
        {
            "id": 1,
            "username": "alice",
            "email": "alice@example.com",
            "joined_at": datetime(2019, 5, 1, 12, 0),
            "last_seen_at": None,
            "avatar_url": "",
        },
    ])

    users = extractor.read(SourceEntity.USERS, limit=50, offset=100)

    assert users == [SourceUser(
        id=1,
        username="alice",
        email="alice@example.com",
        joined_at=datetime(2019, 5, 1, 12, 0, tzinfo=timezone.utc),
    )]
    sql, params = cursor.execute.call_args[0]
    assert "FROM flarum_users" in sql
    assert "ORDER BY id" in sql
    assert params == (50, 100)


def test_read_posts_only_comments_ordered_by_creation():
    extractor, cursor = make_extractor([
        {
            "id": 11,
            "topic_id": 3,
            "title": "Q &amp; A",
            "first_post_id": 10,
            "user_id": None,
            "raw": "<t>hi</t>",
            "created_at": "2020-02-03 04:05:06",
            "category_id": None,
        },
    ])

    posts = extractor.read(SourceEntity.POSTS, limit=10)

    post = posts[0]
    assert isinstance(post, SourcePost)
    assert not post.opens_topic
    assert post.unescaped_title == "Q & A"
    assert post.user_id is None
    assert post.category_id is None
    assert post.created_at == datetime(2020, 2, 3, 4, 5, 6, tzinfo=timezone.utc)

    sql = cursor.execute.call_args[0][0]
    assert "p.type = 'comment'" in sql
    assert "ORDER BY p.created_at, p.id" in sql
    assert "MIN(tag_id)" in sql
    assert "{prefix}" not in sql


def test_read_categories_ordered_by_position():
    extractor, cursor = make_extractor([
        {"id": 4, "name": "General", "description": None, "position": 0},
    ], prefix="")

    categories = extractor.read(SourceEntity.CATEGORIES, limit=10)

    assert categories[0].child_id == "child#4"
    sql = cursor.execute.call_args[0][0]
    assert "FROM tags" in sql
    assert "ORDER BY position IS NULL, position, id" in sql


def test_count():
    extractor, _ = make_extractor([{"count": 17}])
    assert extractor.count(SourceEntity.USERS) == 17


def test_query_error_is_fatal():
    extractor, cursor = make_extractor()
    cursor.execute.side_effect = pymysql.err.OperationalError(2013, "Lost connection")

    with pytest.raises(SourceConnectionError):
        extractor.read(SourceEntity.USERS, limit=10)


def test_connect_error_is_fatal():
    extractor = FlarumExtractor(SourceConfig(host="db.invalid"))

    with mock.patch("pymysql.connect", side_effect=pymysql.err.OperationalError(2003, "Can't connect")):
        with pytest.raises(SourceConnectionError) as exc_info:
            extractor.validate_connection()

    assert "db.invalid" in str(exc_info.value)


def test_close_releases_connection():
    extractor, _ = make_extractor()
    connection = extractor.connection

    extractor.close()

    connection.close.assert_called_once()
    assert extractor._connection is None
