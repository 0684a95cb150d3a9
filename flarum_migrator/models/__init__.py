"""Data models for the migration application."""

from .migration import (
    EntityKind,
    SourceEntity,
    MIGRATION_ORDER,
    MigrationConfig,
    MigrationRun,
    MigrationStep,
    MigrationStatus,
    SourceConfig,
    TargetConfig,
)
from .record import (
    SourceUser,
    SourceCategory,
    SourcePost,
    TransformedRecord,
    MigrationResult,
    RecordOutcome,
    SideEffectOutcome,
    Skip,
    child_category_key,
    parse_timestamp,
)

__all__ = [
    "EntityKind",
    "SourceEntity",
    "MIGRATION_ORDER",
    "MigrationConfig",
    "MigrationRun",
    "MigrationStep",
    "MigrationStatus",
    "SourceConfig",
    "TargetConfig",
    "SourceUser",
    "SourceCategory",
    "SourcePost",
    "TransformedRecord",
    "MigrationResult",
    "RecordOutcome",
    "SideEffectOutcome",
    "Skip",
    "child_category_key",
    "parse_timestamp",
]
