"""Record models for migration data."""

import html
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional
from enum import Enum
from datetime import datetime, timezone

from dateutil import parser as date_parser


class RecordOutcome(str, Enum):
    """What happened to a single record handed to the writer."""
    CREATED = "created"
    ALREADY_MAPPED = "already_mapped"  # no-op, mapping existed
    SKIPPED = "skipped"  # mapper declined the record
    FAILED = "failed"  # target rejected the record


class SideEffectOutcome(str, Enum):
    """Result of a best-effort post-create action such as an avatar upload."""
    APPLIED = "applied"
    IGNORED = "ignored"


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Normalize a source timestamp to an aware UTC datetime.

    Flarum columns come back from pymysql as naive datetimes; older dumps
    store epoch seconds or ISO strings.
    """
    if value is None or value == "":
        return None

    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    else:
        text = str(value).strip()
        if text.isdigit():
            return datetime.fromtimestamp(int(text), tz=timezone.utc)
        dt = date_parser.parse(text)

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


@dataclass(frozen=True)
class SourceUser:
    """A row of the Flarum ``users`` table."""
    id: int
    username: str
    email: Optional[str] = None
    joined_at: Optional[datetime] = None
    last_seen_at: Optional[datetime] = None
    avatar_url: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "SourceUser":
        return cls(
            id=int(row["id"]),
            username=row["username"],
            email=row.get("email"),
            joined_at=parse_timestamp(row.get("joined_at")),
            last_seen_at=parse_timestamp(row.get("last_seen_at")),
            avatar_url=_optional_str(row.get("avatar_url")),
        )


@dataclass(frozen=True)
class SourceCategory:
    """A Flarum tag, imported as a Discourse category."""
    id: int
    name: str
    description: Optional[str] = None
    position: Optional[int] = None

    @property
    def child_id(self) -> str:
        """Composite key of the synthetic child category."""
        return child_category_key(self.id)

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "SourceCategory":
        position = row.get("position")
        return cls(
            id=int(row["id"]),
            name=row["name"],
            description=row.get("description"),
            position=int(position) if position is not None else None,
        )


def child_category_key(category_id: Any) -> str:
    """Return the mapping key used for the child copy of a category."""
    return f"child#{category_id}"


@dataclass(frozen=True)
class SourcePost:
    """A Flarum post joined with its discussion and one of its tags."""
    id: int
    topic_id: int
    title: str
    first_post_id: int
    user_id: Optional[int]
    raw: str
    created_at: Optional[datetime] = None
    category_id: Optional[int] = None

    @property
    def opens_topic(self) -> bool:
        """True when this post is the first post of its discussion."""
        return self.id == self.first_post_id

    @property
    def unescaped_title(self) -> str:
        return html.unescape(self.title or "")

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "SourcePost":
        user_id = row.get("user_id")
        category_id = row.get("category_id")
        return cls(
            id=int(row["id"]),
            topic_id=int(row["topic_id"]),
            title=row.get("title") or "",
            first_post_id=int(row["first_post_id"]),
            user_id=int(user_id) if user_id is not None else None,
            raw=row.get("raw") or "",
            created_at=parse_timestamp(row.get("created_at")),
            category_id=int(category_id) if category_id is not None else None,
        )


@dataclass
class TransformedRecord:
    """A creation payload for the target system."""
    id: str  # source id the mapping is recorded under
    kind: Any  # EntityKind
    data: Dict[str, Any]
    post_create_action: Optional[Callable[[Any, int], SideEffectOutcome]] = None  # (loader, target_id)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "id": self.id,
            "kind": getattr(self.kind, "value", self.kind),
            "data": {
                k: v.isoformat() if isinstance(v, datetime) else v
                for k, v in self.data.items()
            },
            "metadata": self.metadata,
        }


@dataclass(frozen=True)
class Skip:
    """Returned by a mapper instead of a payload when a record must be left out."""
    reason: str


@dataclass
class MigrationResult:
    """Result of handing one record to the writer."""
    record_id: str
    outcome: RecordOutcome
    target_id: Optional[int] = None
    topic_id: Optional[int] = None
    reason: Optional[str] = None
    error_code: Optional[str] = None
    side_effect: Optional[SideEffectOutcome] = None
    loaded_at: Optional[datetime] = None

    @property
    def success(self) -> bool:
        return self.outcome in (RecordOutcome.CREATED, RecordOutcome.ALREADY_MAPPED)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "record_id": self.record_id,
            "outcome": self.outcome.value,
            "target_id": self.target_id,
            "topic_id": self.topic_id,
            "reason": self.reason,
            "error_code": self.error_code,
            "side_effect": self.side_effect.value if self.side_effect else None,
            "loaded_at": self.loaded_at.isoformat() if self.loaded_at else None,
        }
