# engine/fallback.py
import time
from typing import Optional, Tuple

from engine.models import Algorithm, BlockRecord

FALLBACK_HASH_PREFIX = "fallback-"
FALLBACK_POOL_LABEL = "Fallback data"


def build_fallback_records(now: Optional[float] = None, spacing: float = 15.0) -> Tuple[BlockRecord, ...]:
    """Placeholder window with one block per algorithm, newest first"""
    now = time.time() if now is None else now
    records = []
    for offset, algorithm in enumerate(Algorithm):
        height = len(Algorithm) - offset
        records.append(BlockRecord(
            height=height,
            hash=f"{FALLBACK_HASH_PREFIX}{height}",
            timestamp=now - offset * spacing,
            algorithm=algorithm,
            difficulty=0.0,
            pool_identifier=FALLBACK_POOL_LABEL,
        ))
    return tuple(records)


def is_fallback_record(record: BlockRecord) -> bool:
    return record.hash.startswith(FALLBACK_HASH_PREFIX)
