"""Exceptions raised by the migration pipeline.

Everything deriving from :class:`MigrationError` is fatal: it aborts the
run. Recoverable problems (orphaned replies, rejected records, avatar
failures) are reported as outcome values instead, see
:mod:`flarum_migrator.models.record`.
"""

from typing import Any, Optional


class MigrationError(Exception):
    """Base class for fatal migration errors."""


class SourceConnectionError(MigrationError):
    """The Flarum database could not be reached or queried."""


class TargetConnectionError(MigrationError):
    """The Discourse API could not be reached."""


class CategoryNotMigratedError(MigrationError):
    """A topic references a category that has no mapping yet."""

    def __init__(self, category_id: Any, post_id: Optional[Any] = None):
        self.category_id = category_id
        self.post_id = post_id
        message = f"Category {category_id} has not been imported"
        if post_id is not None:
            message += f" (needed by post {post_id})"
        message += "; import categories before posts"
        super().__init__(message)


class DuplicateMappingError(MigrationError):
    """A mapping already exists for an (entity kind, source id) pair."""

    def __init__(self, kind: Any, source_id: str, existing: Any):
        self.kind = kind
        self.source_id = source_id
        self.existing = existing
        super().__init__(
            f"Mapping for {getattr(kind, 'value', kind)} {source_id!r} already exists "
            f"(target id {existing})"
        )


class RecordRejectedError(Exception):
    """
    The target refused to create a single record.

    Not fatal: the writer records the record as failed and moves on.
    """

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)
