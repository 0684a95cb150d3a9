"""ID mapping store: (entity kind, source id) -> target id.

Every component of the pipeline reads from and appends to this store.
Mappings are written exactly once and never rewritten, which is what
makes re-running an interrupted migration safe.
"""

import json
import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from ..exceptions import DuplicateMappingError
from ..models.migration import EntityKind

logger = logging.getLogger(__name__)

Key = Tuple[EntityKind, str]


def _key(kind: Union[EntityKind, str], source_id: Any) -> Key:
    return EntityKind(kind), str(source_id)


class MappingStore(ABC):
    """
    Base class for ID mapping stores.

    Source ids are normalised to strings, so ``5`` and ``"5"`` address the
    same mapping and composite keys such as ``"child#5"`` live alongside
    plain ones.
    """

    def __init__(self):
        self._mappings: Dict[Key, int] = {}

    def get(self, kind: Union[EntityKind, str], source_id: Any) -> Optional[int]:
        """Return the target id for a source id, or None when unmapped."""
        return self._mappings.get(_key(kind, source_id))

    def put(self, kind: Union[EntityKind, str], source_id: Any, target_id: int) -> None:
        """
        Record a mapping.

        Raises:
            DuplicateMappingError: if the key is already mapped
        """
        self.put_many([(kind, source_id, target_id)])

    def put_many(self, entries: Iterable[Tuple[Union[EntityKind, str], Any, int]]) -> None:
        """
        Record several mappings as one unit: either all of them persist or none.

        Raises:
            DuplicateMappingError: if any key is already mapped, or repeated
                within ``entries``
        """
        pending: List[Tuple[Key, int]] = []
        seen: Dict[Key, int] = {}
        for kind, source_id, target_id in entries:
            key = _key(kind, source_id)
            existing = self._mappings.get(key, seen.get(key))
            if existing is not None:
                raise DuplicateMappingError(key[0], key[1], existing)
            seen[key] = target_id
            pending.append((key, target_id))

        if not pending:
            return
        self._persist(pending)
        self._mappings.update(pending)

    def all_mapped(self, kind: Union[EntityKind, str], source_ids: Iterable[Any]) -> bool:
        """True iff every id in ``source_ids`` already has a mapping."""
        kind = EntityKind(kind)
        return all((kind, str(source_id)) in self._mappings for source_id in source_ids)

    def lookup_topic_by_first_post(self, first_post_id: Any) -> Optional[Dict[str, int]]:
        """
        Resolve the target topic opened by a source post.

        Returns:
            ``{"topic_id": ..., "post_id": ...}`` or None if that post has
            not been imported as a topic opener
        """
        topic_id = self.get(EntityKind.TOPIC, first_post_id)
        if topic_id is None:
            return None
        return {
            "topic_id": topic_id,
            "post_id": self.get(EntityKind.POST, first_post_id),
        }

    def count(self, kind: Optional[Union[EntityKind, str]] = None) -> int:
        """Number of mappings, optionally restricted to one kind."""
        if kind is None:
            return len(self._mappings)
        kind = EntityKind(kind)
        return sum(1 for k, _ in self._mappings if k == kind)

    def items(self):
        """Iterate over ``((kind, source_id), target_id)`` pairs."""
        return self._mappings.items()

    def close(self) -> None:
        """Release any underlying resources."""

    @abstractmethod
    def _persist(self, entries: List[Tuple[Key, int]]) -> None:
        """Durably record new mappings, all at once, before they become visible."""
        pass


def read_mapping_file(path: Union[str, Path]) -> Dict[Key, int]:
    """
    Replay a JSON Lines mapping file.

    A line holds either one mapping or, under ``"mappings"``, a group
    that was written together. Unreadable lines are logged and skipped as
    a whole: a run killed mid-write leaves a partial last line. The first
    mapping for a key wins.
    """
    path = Path(path)
    mappings: Dict[Key, int] = {}
    if not path.exists():
        return mappings

    with open(path, "r", encoding="utf-8") as f:
        for line_no, line in enumerate(f, 1):
            line = line.strip()
            if not line:
                continue
            try:
                entry = json.loads(line)
                group = entry["mappings"] if "mappings" in entry else [entry]
                parsed = [
                    (_key(item["kind"], item["source_id"]), int(item["target_id"]))
                    for item in group
                ]
            except (ValueError, KeyError, TypeError) as e:
                logger.warning(f"Ignoring unreadable mapping at {path}:{line_no}: {e}")
                continue
            for key, target_id in parsed:
                mappings.setdefault(key, target_id)

    logger.info(f"Loaded {len(mappings)} ID mappings from {path}")
    return mappings


class InMemoryMappingStore(MappingStore):
    """Store that lives only as long as the process. Used for dry runs and tests."""

    def __init__(self, seed: Optional[Dict[Key, int]] = None):
        super().__init__()
        if seed:
            self._mappings.update(seed)

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "InMemoryMappingStore":
        """Copy of a mapping file that never writes back to it."""
        return cls(read_mapping_file(path))

    def _persist(self, entries: List[Tuple[Key, int]]) -> None:
        pass


class JSONLMappingStore(MappingStore):
    """
    Append-only JSON Lines store.

    Each mapping is one line ``{"kind": ..., "source_id": ..., "target_id": ...}``
    and a group from :meth:`put_many` is one ``{"mappings": [...]}`` line,
    flushed to disk as soon as it is written. Opening the store replays the
    file, so mappings survive process restarts.
    """

    def __init__(self, path: Union[str, Path]):
        super().__init__()
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._mappings.update(read_mapping_file(self.path))
        self._fh = open(self.path, "a", encoding="utf-8")
        if self._ends_mid_line():
            self._fh.write("\n")
            self._fh.flush()

    def _ends_mid_line(self) -> bool:
        if self.path.stat().st_size == 0:
            return False
        with open(self.path, "rb") as f:
            f.seek(-1, os.SEEK_END)
            return f.read(1) != b"\n"

    def _persist(self, entries: List[Tuple[Key, int]]) -> None:
        items = [
            {"kind": key[0].value, "source_id": key[1], "target_id": target_id}
            for key, target_id in entries
        ]
        # One line per call, so a group is replayed entirely or not at all
        line = items[0] if len(items) == 1 else {"mappings": items}
        self._fh.write(json.dumps(line) + "\n")
        self._fh.flush()
        os.fsync(self._fh.fileno())

    def close(self) -> None:
        if not self._fh.closed:
            self._fh.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
