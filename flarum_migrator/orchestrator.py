"""Migration orchestrator - coordinates the complete migration process."""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable, Optional

from .exceptions import MigrationError, TargetConnectionError
from .extractors.base import BaseExtractor
from .extractors.flarum_extractor import FlarumExtractor
from .loaders.base import BaseLoader, LoadResult
from .loaders.discourse_loader import DiscourseLoader
from .models.migration import (
    EntityKind,
    MIGRATION_ORDER,
    MigrationConfig,
    MigrationRun,
    MigrationStatus,
    MigrationStep,
    SourceEntity,
)
from .models.record import RecordOutcome
from .services.mapping_store import InMemoryMappingStore, JSONLMappingStore, MappingStore
from .services.markup import MarkupTranscoder
from .services.topics import PostMapper
from .services.transformer import EntityMapper

logger = logging.getLogger(__name__)

STEP_STATUS = {
    SourceEntity.USERS: MigrationStatus.IMPORTING_USERS,
    SourceEntity.CATEGORIES: MigrationStatus.IMPORTING_CATEGORIES,
    SourceEntity.POSTS: MigrationStatus.IMPORTING_POSTS,
}


class MigrationOrchestrator:
    """
    Orchestrates the complete migration process.

    Imports users, then categories, then posts. Each kind is read in
    fixed-size batches in increasing offset order; a batch whose records
    are all mapped already is skipped without touching the mappers, so a
    rerun after an interruption picks up where the last one stopped.

    Handles:
    - Batched extraction from Flarum
    - The batch-level idempotency check
    - Mapping and topic reconstruction
    - Loading into Discourse and recording ID mappings
    - Progress tracking and reporting
    """

    def __init__(
        self,
        config: MigrationConfig,
        extractor: Optional[BaseExtractor] = None,
        loader: Optional[BaseLoader] = None,
        store: Optional[MappingStore] = None
    ):
        """
        Initialize the orchestrator.

        Args:
            config: Migration configuration
            extractor: Source reader (Flarum MySQL by default)
            loader: Target writer (Discourse API by default)
            store: ID mapping store (the configured mapping file by default)
        """
        self.config = config
        self.store = store if store is not None else self._create_store()
        self.extractor = extractor or FlarumExtractor(config.source)
        self.loader = loader or DiscourseLoader(config.target, self.store, dry_run=config.dry_run)

        self.mapper = EntityMapper(self.store, avatar_dir=config.avatar_dir)
        self.post_mapper = PostMapper(self.store, MarkupTranscoder())

        self.run_report: Optional[MigrationRun] = None

    def _create_store(self) -> MappingStore:
        if self.config.dry_run:
            return InMemoryMappingStore.from_file(self.config.mapping_file)
        return JSONLMappingStore(self.config.mapping_file)

    def run_migration(self) -> MigrationRun:
        """
        Run the complete migration.

        Returns:
            MigrationRun with results and statistics

        Raises:
            MigrationError: a fatal error stopped the run; the report is
                still saved
        """
        self.run_report = MigrationRun(dry_run=self.config.dry_run)
        self.run_report.started_at = datetime.utcnow()

        try:
            if not self.loader.validate_connection():
                raise TargetConnectionError("Failed to connect to target service")

            for entity in MIGRATION_ORDER:
                self.run(entity)

            self.run_report.status = MigrationStatus.COMPLETED
            logger.info("=== MIGRATION COMPLETED ===")

        except MigrationError as e:
            logger.error(f"Migration failed: {e}")
            self.run_report.errors.append({
                "phase": self.run_report.status.value,
                "error": str(e),
                "error_type": type(e).__name__,
                "timestamp": datetime.utcnow().isoformat(),
            })
            self.run_report.status = MigrationStatus.FAILED
            raise

        finally:
            self.run_report.completed_at = datetime.utcnow()
            if self.config.save_report:
                self._save_report()

        return self.run_report

    def run(self, entity: SourceEntity) -> MigrationStep:
        """Import every record of one source entity."""
        entity = SourceEntity(entity)
        if self.run_report is None:
            self.run_report = MigrationRun(dry_run=self.config.dry_run)

        step = self.run_report.add_step(name=f"Import {entity.value}", entity=entity.value)
        step.status = STEP_STATUS[entity]
        step.started_at = datetime.utcnow()
        self.run_report.status = STEP_STATUS[entity]

        logger.info(f"=== IMPORTING {entity.value.upper()} ===")
        try:
            if entity == SourceEntity.USERS:
                self._import_users(step)
            elif entity == SourceEntity.CATEGORIES:
                self._import_categories(step)
            else:
                self._import_posts(step)
            step.status = MigrationStatus.COMPLETED
        except MigrationError as e:
            step.status = MigrationStatus.FAILED
            step.errors.append({"error": str(e)})
            raise
        finally:
            step.completed_at = datetime.utcnow()

        logger.info(
            f"Finished {entity.value}: {step.records_created} created, "
            f"{step.records_already_mapped} already mapped, {step.records_skipped} skipped, "
            f"{step.records_failed} failed, {step.batches_skipped} batches skipped"
        )
        return step

    def _import_users(self, step: MigrationStep) -> None:
        total = self.extractor.count(SourceEntity.USERS)

        for offset, batch in self.extractor.stream(SourceEntity.USERS, self.config.batch_size):
            if self._batch_already_migrated(EntityKind.USER, (u.id for u in batch)):
                step.batches_skipped += 1
                continue

            result = self.loader.create_users(
                batch, self.mapper.map_user, total=total, offset=offset
            )
            self._record(step, result)

    def _import_categories(self, step: MigrationStep) -> None:
        categories = self.extractor.read_all(SourceEntity.CATEGORIES, self.config.batch_size)

        logger.info("Importing top level categories...")
        if self._batch_already_migrated(EntityKind.CATEGORY_TOP, (c.id for c in categories)):
            step.batches_skipped += 1
        else:
            self._record(step, self.loader.create_categories(
                categories, self.mapper.map_top_category, kind=EntityKind.CATEGORY_TOP,
            ))

        logger.info("Importing children categories...")
        if self._batch_already_migrated(EntityKind.CATEGORY_CHILD, (c.child_id for c in categories)):
            step.batches_skipped += 1
        else:
            self._record(step, self.loader.create_categories(
                categories, self.mapper.map_child_category, kind=EntityKind.CATEGORY_CHILD,
                key=lambda category: category.child_id,
            ))

    def _import_posts(self, step: MigrationStep) -> None:
        total = self.extractor.count(SourceEntity.POSTS)

        for offset, batch in self.extractor.stream(SourceEntity.POSTS, self.config.batch_size):
            if (self._batch_already_migrated(EntityKind.POST, (p.id for p in batch))
                    and self._batch_already_migrated(EntityKind.TOPIC, (p.id for p in batch if p.opens_topic))):
                step.batches_skipped += 1
                continue

            result = self.loader.create_posts(
                batch, self.post_mapper.map, total=total, offset=offset
            )
            self._record(step, result)

    def _batch_already_migrated(self, kind: EntityKind, source_ids: Iterable[Any]) -> bool:
        """The idempotency gate: True when every record in the batch is mapped."""
        return self.store.all_mapped(kind, source_ids)

    def _record(self, step: MigrationStep, result: LoadResult) -> None:
        step.batches_processed += 1
        step.records_processed += result.total_attempted
        step.records_created += result.total_created
        step.records_already_mapped += result.total_already_mapped
        step.records_skipped += result.total_skipped
        step.records_failed += result.total_failed
        step.errors.extend(result.errors)
        step.warnings.extend(
            r.reason for r in result.results
            if r.outcome == RecordOutcome.SKIPPED and r.reason
        )

    def _save_report(self) -> None:
        """Save the migration report."""
        logs_dir = Path(self.config.output_dir) / "logs"
        logs_dir.mkdir(parents=True, exist_ok=True)
        filepath = logs_dir / f"migration_report_{datetime.utcnow().strftime('%Y%m%d_%H%M%S')}.json"
        with open(filepath, 'w') as f:
            json.dump(self.run_report.to_dict(), f, indent=2, default=str)
        logger.info(f"Saved migration report to {filepath}")

    def close(self) -> None:
        """Close source, target and mapping store."""
        self.extractor.close()
        self.loader.close()
        self.store.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
