"""Base loader: commits mapped records to the target and records their mappings."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, Union
from datetime import datetime
import logging

from ..exceptions import RecordRejectedError
from ..models.migration import EntityKind
from ..models.record import (
    MigrationResult,
    RecordOutcome,
    Skip,
    TransformedRecord,
)
from ..services.mapping_store import MappingStore

logger = logging.getLogger(__name__)

Transform = Callable[[Any], Union[TransformedRecord, Skip]]


@dataclass
class LoadResult:
    """Result of a load operation."""
    entity: str
    total_attempted: int = 0
    total_created: int = 0
    total_already_mapped: int = 0
    total_skipped: int = 0
    total_failed: int = 0
    results: List[MigrationResult] = field(default_factory=list)
    errors: List[Dict[str, Any]] = field(default_factory=list)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    def add(self, result: MigrationResult) -> None:
        """Count one record outcome."""
        self.results.append(result)
        self.total_attempted += 1

        if result.outcome == RecordOutcome.CREATED:
            self.total_created += 1
        elif result.outcome == RecordOutcome.ALREADY_MAPPED:
            self.total_already_mapped += 1
        elif result.outcome == RecordOutcome.SKIPPED:
            self.total_skipped += 1
        else:
            self.total_failed += 1
            self.errors.append({
                "record_id": result.record_id,
                "error": result.reason,
                "error_code": result.error_code,
            })

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entity": self.entity,
            "total_attempted": self.total_attempted,
            "total_created": self.total_created,
            "total_already_mapped": self.total_already_mapped,
            "total_skipped": self.total_skipped,
            "total_failed": self.total_failed,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_seconds": self.duration_seconds,
            "errors": self.errors,
        }


class BaseLoader(ABC):
    """
    Base class for target writers.

    Subclasses implement the single-record creation calls. This class
    drives them: it re-checks the mapping store before every record so a
    batch that is replayed after an interruption creates nothing twice,
    writes the new mapping as soon as the target confirms creation, and
    runs best-effort post-create actions.
    """

    def __init__(self, store: MappingStore, dry_run: bool = False):
        """
        Initialize the loader.

        Args:
            store: ID mapping store receiving the new mappings
            dry_run: If True, simulate without making changes
        """
        self.store = store
        self.dry_run = dry_run

    @abstractmethod
    def create_user(self, data: Dict[str, Any]) -> int:
        """Create a user and return its target id."""
        pass

    @abstractmethod
    def create_category(self, data: Dict[str, Any]) -> int:
        """Create a category and return its target id."""
        pass

    @abstractmethod
    def create_post(self, data: Dict[str, Any]) -> Tuple[int, int]:
        """
        Create a post.

        A payload with a ``title`` opens a new topic; one with a
        ``topic_id`` replies to it.

        Returns:
            ``(post_id, topic_id)``
        """
        pass

    @abstractmethod
    def upload_avatar(self, user_id: int, path: str) -> Optional[int]:
        """Upload ``path`` and make it the user's avatar. Returns the upload id."""
        pass

    def create_users(
        self,
        records: Iterable[Any],
        transform: Transform,
        total: Optional[int] = None,
        offset: int = 0
    ) -> LoadResult:
        """Create users, running each payload's post-create action."""
        return self._load(
            "users", EntityKind.USER, records, transform,
            create=lambda data: (self.create_user(data), None),
            total=total, offset=offset,
        )

    def create_categories(
        self,
        records: Iterable[Any],
        transform: Transform,
        kind: EntityKind = EntityKind.CATEGORY_TOP,
        key: Optional[Callable[[Any], str]] = None
    ) -> LoadResult:
        """Create categories under ``kind``; ``key`` gives each record's mapping key."""
        return self._load(
            "categories", kind, records, transform,
            create=lambda data: (self.create_category(data), None),
            key=key,
        )

    def create_posts(
        self,
        records: Iterable[Any],
        transform: Transform,
        total: Optional[int] = None,
        offset: int = 0
    ) -> LoadResult:
        """Create posts; topic openers also get a ``topic`` mapping."""
        return self._load(
            "posts", EntityKind.POST, records, transform,
            create=self.create_post,
            total=total, offset=offset,
        )

    def _load(
        self,
        entity: str,
        kind: EntityKind,
        records: Iterable[Any],
        transform: Transform,
        create: Callable[[Dict[str, Any]], Tuple[int, Optional[int]]],
        key: Optional[Callable[[Any], str]] = None,
        total: Optional[int] = None,
        offset: int = 0
    ) -> LoadResult:
        result = LoadResult(entity=entity)
        result.started_at = datetime.utcnow()
        key = key or (lambda record: str(record.id))

        for record in records:
            source_id = key(record)
            result.add(self._load_record(kind, source_id, record, transform, create))

        result.completed_at = datetime.utcnow()

        done = offset + result.total_attempted
        progress = f"{done}/{total}" if total is not None else str(done)
        logger.info(
            f"Imported {progress} {entity} "
            f"(created {result.total_created}, already mapped {result.total_already_mapped}, "
            f"skipped {result.total_skipped}, failed {result.total_failed})"
        )
        return result

    def _load_record(
        self,
        kind: EntityKind,
        source_id: str,
        record: Any,
        transform: Transform,
        create: Callable[[Dict[str, Any]], Tuple[int, Optional[int]]]
    ) -> MigrationResult:
        existing = self.store.get(kind, source_id)
        if existing is not None:
            if kind == EntityKind.POST and getattr(record, "opens_topic", False):
                self._restore_topic_mapping(source_id, existing)
            return MigrationResult(
                record_id=source_id,
                outcome=RecordOutcome.ALREADY_MAPPED,
                target_id=existing,
            )

        payload = transform(record)
        if isinstance(payload, Skip):
            return MigrationResult(
                record_id=source_id,
                outcome=RecordOutcome.SKIPPED,
                reason=payload.reason,
            )

        try:
            target_id, topic_id = create(payload.data)
        except RecordRejectedError as e:
            logger.error(f"Failed to import {kind.value} {source_id}: {e}")
            return MigrationResult(
                record_id=source_id,
                outcome=RecordOutcome.FAILED,
                reason=str(e),
                error_code=str(e.status_code) if e.status_code else None,
            )

        mappings = [(kind, source_id, target_id)]
        if kind == EntityKind.POST and payload.metadata.get("opens_topic"):
            mappings.append((EntityKind.TOPIC, source_id, topic_id))
        self.store.put_many(mappings)

        side_effect = None
        if payload.post_create_action is not None:
            side_effect = payload.post_create_action(self, target_id)

        return MigrationResult(
            record_id=source_id,
            outcome=RecordOutcome.CREATED,
            target_id=target_id,
            topic_id=topic_id,
            side_effect=side_effect,
            loaded_at=datetime.utcnow(),
        )

    def _restore_topic_mapping(self, source_id: str, post_id: int) -> None:
        """Record the topic of an imported opener whose topic mapping is missing."""
        if self.store.get(EntityKind.TOPIC, source_id) is not None:
            return

        try:
            topic_id = self.topic_of(post_id)
        except RecordRejectedError as e:
            logger.warning(f"Cannot look up the topic of post {source_id} ({post_id}): {e}")
            return
        if topic_id is None:
            return

        self.store.put(EntityKind.TOPIC, source_id, topic_id)
        logger.warning(f"Restored missing topic mapping for post {source_id}: topic {topic_id}")

    def topic_of(self, post_id: int) -> Optional[int]:
        """Target topic id of an existing target post, or None if unknown."""
        return None

    def validate_connection(self) -> bool:
        """Validate the connection to the target service."""
        return True

    def close(self) -> None:
        """Release network resources."""
