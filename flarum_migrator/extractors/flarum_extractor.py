"""Extractor for a Flarum MySQL database."""

import logging
from typing import Any, Dict, List, Optional, Sequence

import pymysql
import pymysql.cursors

from .base import BaseExtractor
from ..exceptions import SourceConnectionError
from ..models.migration import SourceConfig, SourceEntity
from ..models.record import SourceCategory, SourcePost, SourceUser

logger = logging.getLogger(__name__)


class FlarumExtractor(BaseExtractor):
    """
    Reads users, tags and posts from Flarum's tables.

    Tags become categories. Posts are joined with their discussion (title,
    first post) and a single tag, and only ``comment`` posts are returned:
    the other post types record discussion events and carry no body.
    """

    QUERIES = {
        SourceEntity.USERS: """
            SELECT id, username, email, joined_at, last_seen_at, avatar_url
            FROM {prefix}users
            ORDER BY id
            LIMIT %s OFFSET %s
        """,
        SourceEntity.CATEGORIES: """
            SELECT id, name, description, position
            FROM {prefix}tags
            ORDER BY position IS NULL, position, id
            LIMIT %s OFFSET %s
        """,
        SourceEntity.POSTS: """
            SELECT p.id AS id,
                   d.id AS topic_id,
                   d.title AS title,
                   d.first_post_id AS first_post_id,
                   p.user_id AS user_id,
                   p.content AS raw,
                   p.created_at AS created_at,
                   t.tag_id AS category_id
            FROM {prefix}posts p
            JOIN {prefix}discussions d ON p.discussion_id = d.id
            LEFT JOIN (
                SELECT discussion_id, MIN(tag_id) AS tag_id
                FROM {prefix}discussion_tag
                GROUP BY discussion_id
            ) t ON t.discussion_id = d.id
            WHERE p.type = 'comment'
            ORDER BY p.created_at, p.id
            LIMIT %s OFFSET %s
        """,
    }

    COUNT_QUERIES = {
        SourceEntity.USERS: "SELECT COUNT(*) AS count FROM {prefix}users",
        SourceEntity.CATEGORIES: "SELECT COUNT(*) AS count FROM {prefix}tags",
        SourceEntity.POSTS: """
            SELECT COUNT(*) AS count
            FROM {prefix}posts p
            JOIN {prefix}discussions d ON p.discussion_id = d.id
            WHERE p.type = 'comment'
        """,
    }

    ROW_TYPES = {
        SourceEntity.USERS: SourceUser,
        SourceEntity.CATEGORIES: SourceCategory,
        SourceEntity.POSTS: SourcePost,
    }

    def __init__(self, config: SourceConfig, connection: Optional[Any] = None):
        """
        Initialize the extractor.

        Args:
            config: Database connection settings
            connection: Existing DB-API connection (opened lazily otherwise)
        """
        self.config = config
        self._connection = connection

    @property
    def connection(self):
        """Get or open the MySQL connection."""
        if self._connection is None:
            try:
                self._connection = pymysql.connect(
                    host=self.config.host,
                    port=self.config.port,
                    user=self.config.user,
                    password=self.config.password,
                    database=self.config.database,
                    charset=self.config.charset,
                    cursorclass=pymysql.cursors.DictCursor,
                )
            except pymysql.Error as e:
                raise SourceConnectionError(
                    f"Cannot connect to Flarum database {self.config.database} "
                    f"on {self.config.host}:{self.config.port}: {e}"
                ) from e
            logger.info(f"Connected to Flarum database {self.config.database} on {self.config.host}")
        return self._connection

    def _query(self, sql: str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        try:
            with self.connection.cursor() as cursor:
                cursor.execute(sql.format(prefix=self.config.table_prefix), params)
                return list(cursor.fetchall())
        except pymysql.Error as e:
            raise SourceConnectionError(f"Flarum query failed: {e}") from e

    def read(self, entity: SourceEntity, limit: int, offset: int = 0) -> List[Any]:
        entity = SourceEntity(entity)
        rows = self._query(self.QUERIES[entity], (limit, offset))
        row_type = self.ROW_TYPES[entity]
        return [row_type.from_row(row) for row in rows]

    def count(self, entity: SourceEntity) -> int:
        rows = self._query(self.COUNT_QUERIES[SourceEntity(entity)])
        return int(rows[0]["count"]) if rows else 0

    def validate_connection(self) -> bool:
        self._query("SELECT 1")
        return True

    def close(self) -> None:
        if self._connection is not None:
            try:
                self._connection.close()
            except pymysql.Error as e:
                logger.warning(f"Error closing Flarum connection: {e}")
            self._connection = None
