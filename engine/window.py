# engine/window.py
import threading
import time
from enum import Enum
from typing import Iterable, List, Optional, Set, Tuple

from engine.errors import ConfigurationError, DataIntegrityError
from engine.models import BlockRecord
from utils.logging import logger


class ApplyResult(str, Enum):
    ACCEPTED = "accepted"
    REJECTED_DUPLICATE = "rejected-duplicate"
    REJECTED_STALE = "rejected-stale"
    REJECTED_CLOSED = "rejected-closed"


class WindowBuffer:
    """
    Bounded, newest-first store of block records.

    Records are only ever prepended or replaced wholesale, never reordered,
    so an out-of-order increment keeps its arrival position. Reads return
    tuples, which callers can hold on to without observing later mutation.
    """

    def __init__(self, capacity: int, height_tolerance: Optional[int] = None):
        if capacity <= 0:
            raise ConfigurationError(f"Window capacity must be positive, got {capacity}")
        if height_tolerance is not None and height_tolerance < 0:
            raise ConfigurationError(f"Height tolerance must not be negative, got {height_tolerance}")
        self.capacity = capacity
        self.height_tolerance = height_tolerance
        self._records: List[BlockRecord] = []
        self._hashes: Set[str] = set()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, block_hash: str) -> bool:
        return block_hash in self._hashes

    @property
    def newest_height(self) -> Optional[int]:
        with self._lock:
            return self._newest_height()

    def _newest_height(self) -> Optional[int]:
        # caller holds the lock
        if not self._records:
            return None
        return max(record.height for record in self._records)

    def apply_snapshot(self, records: Iterable[BlockRecord]) -> int:
        """Replace the buffer with ``records`` sorted newest-first and cut to capacity"""
        ordered = sorted(records, key=lambda record: record.height, reverse=True)
        kept: List[BlockRecord] = []
        seen: Set[str] = set()
        for record in ordered:
            if record.hash in seen:
                logger.debug(f"Dropping duplicate hash {record.hash} at height {record.height} from snapshot")
                continue
            seen.add(record.hash)
            kept.append(record)
            if len(kept) == self.capacity:
                break

        with self._lock:
            self._records = kept
            self._hashes = seen
        return len(kept)

    def insert(self, record: BlockRecord) -> Optional[BlockRecord]:
        """
        Prepend a record, evicting the oldest when over capacity.

        Raises DataIntegrityError when the hash is already held or the height
        trails the newest record by more than the tolerance. Returns the
        evicted record, if any.
        """
        with self._lock:
            if record.hash in self._hashes:
                raise DataIntegrityError(
                    f"Block {record.hash} at height {record.height} is already in the window",
                    ApplyResult.REJECTED_DUPLICATE,
                )
            newest = self._newest_height() if self.height_tolerance is not None else None
            if newest is not None and record.height < newest - self.height_tolerance:
                raise DataIntegrityError(
                    f"Block at height {record.height} trails newest height {newest} "
                    f"by more than {self.height_tolerance}",
                    ApplyResult.REJECTED_STALE,
                )

            self._records.insert(0, record)
            self._hashes.add(record.hash)
            evicted = None
            if len(self._records) > self.capacity:
                evicted = self._records.pop()
                self._hashes.discard(evicted.hash)
            return evicted

    def apply_increment(self, record: BlockRecord) -> ApplyResult:
        """Idempotent insert: rejected records leave the buffer unchanged"""
        try:
            self.insert(record)
        except DataIntegrityError as e:
            logger.debug(f"Rejected increment: {e.detail}")
            return e.result
        return ApplyResult.ACCEPTED

    def view(self, horizon_seconds: Optional[float] = None, now: Optional[float] = None) -> Tuple[BlockRecord, ...]:
        """Copy of the buffer, limited to the last ``horizon_seconds`` when given"""
        with self._lock:
            records = tuple(self._records)
        if horizon_seconds is None:
            return records
        return filter_horizon(records, horizon_seconds, now)

    def clear(self):
        with self._lock:
            self._records = []
            self._hashes = set()


def filter_horizon(records: Iterable[BlockRecord], horizon_seconds: float, now: Optional[float] = None) -> Tuple[BlockRecord, ...]:
    now = time.time() if now is None else now
    cutoff = now - horizon_seconds
    return tuple(record for record in records if record.timestamp >= cutoff)
