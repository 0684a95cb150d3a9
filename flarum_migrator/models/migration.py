"""Migration execution models."""

import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from enum import Enum
from datetime import datetime
import uuid


class EntityKind(str, Enum):
    """Namespaces of the ID mapping store."""
    USER = "user"
    CATEGORY_TOP = "category-top"
    CATEGORY_CHILD = "category-child"
    POST = "post"
    TOPIC = "topic"


class SourceEntity(str, Enum):
    """Source tables the pipeline reads, in the order they must be imported."""
    USERS = "users"
    CATEGORIES = "categories"
    POSTS = "posts"


MIGRATION_ORDER = [SourceEntity.USERS, SourceEntity.CATEGORIES, SourceEntity.POSTS]


class MigrationStatus(str, Enum):
    """Status of a migration run."""
    PENDING = "pending"
    IMPORTING_USERS = "importing_users"
    IMPORTING_CATEGORIES = "importing_categories"
    IMPORTING_POSTS = "importing_posts"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class SourceConfig:
    """Connection settings for the Flarum MySQL database."""
    host: str = "localhost"
    port: int = 3306
    database: str = "flarum"
    user: str = "root"
    password: str = ""
    charset: str = "utf8mb4"
    table_prefix: str = ""

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation (without the password)."""
        return {
            "host": self.host,
            "port": self.port,
            "database": self.database,
            "user": self.user,
            "charset": self.charset,
            "table_prefix": self.table_prefix,
        }


@dataclass
class TargetConfig:
    """Settings for the Discourse API."""
    base_url: str = "http://localhost:3000"
    api_key: Optional[str] = None
    api_username: str = "system"
    rate_limit: float = 10.0  # Requests per second
    timeout: float = 30.0
    retry_config: Dict[str, Any] = field(default_factory=lambda: {
        "max_retries": 3,
        "backoff_factor": 2.0,
    })

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation (without the API key)."""
        return {
            "base_url": self.base_url,
            "api_username": self.api_username,
            "rate_limit": self.rate_limit,
            "timeout": self.timeout,
            "retry_config": self.retry_config,
        }


@dataclass
class MigrationStep:
    """Progress of importing one entity kind."""
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    name: str = ""
    entity: str = ""
    status: MigrationStatus = MigrationStatus.PENDING
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    records_processed: int = 0
    records_created: int = 0
    records_already_mapped: int = 0
    records_skipped: int = 0
    records_failed: int = 0
    batches_processed: int = 0
    batches_skipped: int = 0
    errors: List[Dict[str, Any]] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "id": self.id,
            "name": self.name,
            "entity": self.entity,
            "status": self.status.value,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "records_processed": self.records_processed,
            "records_created": self.records_created,
            "records_already_mapped": self.records_already_mapped,
            "records_skipped": self.records_skipped,
            "records_failed": self.records_failed,
            "batches_processed": self.batches_processed,
            "batches_skipped": self.batches_skipped,
            "errors": self.errors,
            "warnings": self.warnings,
        }

    @property
    def duration_seconds(self) -> Optional[float]:
        """Get duration in seconds."""
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None


@dataclass
class MigrationRun:
    """A complete migration run."""
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    status: MigrationStatus = MigrationStatus.PENDING
    dry_run: bool = False

    # Timing
    created_at: datetime = field(default_factory=datetime.utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    steps: List[MigrationStep] = field(default_factory=list)
    errors: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "id": self.id,
            "status": self.status.value,
            "dry_run": self.dry_run,
            "created_at": self.created_at.isoformat(),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_seconds": self.duration_seconds,
            "totals": self.totals(),
            "steps": [s.to_dict() for s in self.steps],
            "errors": self.errors,
        }

    @property
    def duration_seconds(self) -> Optional[float]:
        """Get duration in seconds."""
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    def add_step(self, name: str, entity: str) -> MigrationStep:
        """Add a new step to the migration."""
        step = MigrationStep(name=name, entity=entity)
        self.steps.append(step)
        return step

    def get_step(self, entity: str) -> Optional[MigrationStep]:
        """Get the most recent step for an entity."""
        for step in reversed(self.steps):
            if step.entity == entity:
                return step
        return None

    def totals(self) -> Dict[str, int]:
        """Sum record counters over all steps."""
        return {
            "processed": sum(s.records_processed for s in self.steps),
            "created": sum(s.records_created for s in self.steps),
            "already_mapped": sum(s.records_already_mapped for s in self.steps),
            "skipped": sum(s.records_skipped for s in self.steps),
            "failed": sum(s.records_failed for s in self.steps),
        }


@dataclass
class MigrationConfig:
    """Configuration for a migration."""
    source: SourceConfig = field(default_factory=SourceConfig)
    target: TargetConfig = field(default_factory=TargetConfig)

    # Execution options
    batch_size: int = 1000
    dry_run: bool = False

    # Avatar files referenced by users.avatar_url
    avatar_dir: str = "/var/discourse/shared/standalone/import/data/"

    # Output
    mapping_file: str = "./data/id_mappings.jsonl"
    output_dir: str = "./data"
    save_report: bool = True

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "source": self.source.to_dict(),
            "target": self.target.to_dict(),
            "batch_size": self.batch_size,
            "dry_run": self.dry_run,
            "avatar_dir": self.avatar_dir,
            "mapping_file": self.mapping_file,
            "output_dir": self.output_dir,
            "save_report": self.save_report,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MigrationConfig":
        """Create from dictionary representation."""
        source_data = data.get("source", {})
        target_data = data.get("target", {})
        defaults = cls()

        source = SourceConfig(
            host=source_data.get("host", defaults.source.host),
            port=int(source_data.get("port", defaults.source.port)),
            database=source_data.get("database", defaults.source.database),
            user=source_data.get("user", defaults.source.user),
            password=source_data.get("password", defaults.source.password),
            charset=source_data.get("charset", defaults.source.charset),
            table_prefix=source_data.get("table_prefix", defaults.source.table_prefix),
        )
        target = TargetConfig(
            base_url=target_data.get("base_url", defaults.target.base_url),
            api_key=target_data.get("api_key"),
            api_username=target_data.get("api_username", defaults.target.api_username),
            rate_limit=float(target_data.get("rate_limit", defaults.target.rate_limit)),
            timeout=float(target_data.get("timeout", defaults.target.timeout)),
            retry_config=target_data.get("retry_config", defaults.target.retry_config),
        )

        return cls(
            source=source,
            target=target,
            batch_size=int(data.get("batch_size", defaults.batch_size)),
            dry_run=data.get("dry_run", False),
            avatar_dir=data.get("avatar_dir", defaults.avatar_dir),
            mapping_file=data.get("mapping_file", defaults.mapping_file),
            output_dir=data.get("output_dir", defaults.output_dir),
            save_report=data.get("save_report", True),
        )

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None) -> "MigrationConfig":
        """Create from FLARUM_* / DISCOURSE_* environment variables."""
        env = os.environ if environ is None else environ
        data: Dict[str, Any] = {"source": {}, "target": {}}

        source_vars = {
            "FLARUM_HOST": "host",
            "FLARUM_PORT": "port",
            "FLARUM_DB": "database",
            "FLARUM_USER": "user",
            "FLARUM_PW": "password",
            "FLARUM_TABLE_PREFIX": "table_prefix",
        }
        target_vars = {
            "DISCOURSE_URL": "base_url",
            "DISCOURSE_API_KEY": "api_key",
            "DISCOURSE_API_USERNAME": "api_username",
        }
        for var, key in source_vars.items():
            if env.get(var) is not None:
                data["source"][key] = env[var]
        for var, key in target_vars.items():
            if env.get(var) is not None:
                data["target"][key] = env[var]

        if env.get("AVATAR_UPLOADS_DIR"):
            data["avatar_dir"] = env["AVATAR_UPLOADS_DIR"]
        if env.get("BATCH_SIZE"):
            data["batch_size"] = env["BATCH_SIZE"]
        if env.get("MAPPING_FILE"):
            data["mapping_file"] = env["MAPPING_FILE"]

        return cls.from_dict(data)
