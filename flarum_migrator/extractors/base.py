"""Base extractor interface."""

from abc import ABC, abstractmethod
from typing import Any, Iterator, List, Tuple
import logging

from ..models.migration import SourceEntity

logger = logging.getLogger(__name__)


class BaseExtractor(ABC):
    """
    Base class for source readers.

    Extractors page through one source table at a time in a fixed order,
    so repeated reads against an unchanged source return the same batches.
    They never write anything.
    """

    @abstractmethod
    def read(self, entity: SourceEntity, limit: int, offset: int = 0) -> List[Any]:
        """
        Read one window of records.

        Args:
            entity: Source table to read
            limit: Window size
            offset: Number of records to skip

        Returns:
            Typed source records in deterministic order; empty once the
            table is exhausted
        """
        pass

    @abstractmethod
    def count(self, entity: SourceEntity) -> int:
        """Total number of records ``read`` will return for ``entity``."""
        pass

    def stream(self, entity: SourceEntity, batch_size: int) -> Iterator[Tuple[int, List[Any]]]:
        """
        Stream records in batches.

        Args:
            entity: Source table to read
            batch_size: Size of each batch

        Yields:
            ``(offset, batch)`` pairs in increasing offset order
        """
        offset = 0

        while True:
            batch = self.read(entity, limit=batch_size, offset=offset)
            if not batch:
                break

            yield offset, batch
            offset += len(batch)

            if len(batch) < batch_size:
                break

    def read_all(self, entity: SourceEntity, batch_size: int) -> List[Any]:
        """Read a whole table into memory. Meant for small tables such as tags."""
        records: List[Any] = []
        for _, batch in self.stream(entity, batch_size):
            records.extend(batch)
        return records

    def validate_connection(self) -> bool:
        """Check that the source can be queried."""
        return True

    def close(self) -> None:
        """Release the source connection."""
