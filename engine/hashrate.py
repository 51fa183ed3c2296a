# engine/hashrate.py
"""
Per-algorithm hashrate, difficulty and block interval estimates.

Each algorithm targets one block every ``target_block_interval * algorithm_count``
seconds (15 s * 5 = 75 s on mainnet), so over a horizon of H seconds it is
expected to find ``H / 75`` blocks (48 per hour). The estimate is

    hashrate = (blocks / expected_blocks) * avg_difficulty * 2**32 / per_algorithm_interval

i.e. the work behind one average block, spread over the per-algorithm target
interval, scaled by how far the algorithm ran ahead of or behind schedule.
"""
from collections import defaultdict
from typing import Dict, Iterable, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from engine.errors import ConfigurationError
from engine.models import (
    Algorithm, AlgorithmStats, BlockRecord, DifficultyPoint, NetworkStats
)
from engine.window import filter_horizon

HASHES_PER_DIFFICULTY = 2 ** 32


class HashrateConstants(BaseModel):
    model_config = ConfigDict(frozen=True)

    target_block_interval: float = Field(default=15.0, gt=0)
    algorithm_count: int = Field(default=5, gt=0)

    @property
    def combined_target_interval(self) -> float:
        """Target seconds between two blocks of the same algorithm"""
        return self.target_block_interval * self.algorithm_count

    def expected_blocks(self, horizon_seconds: float) -> float:
        return horizon_seconds / self.combined_target_interval


def _mean(values: List[float]) -> Optional[float]:
    if not values:
        return None
    return sum(values) / len(values)


def compute_algorithm_stats(
    view: Iterable[BlockRecord],
    horizon_seconds: float,
    constants: HashrateConstants = HashrateConstants(),
    now: Optional[float] = None,
) -> Dict[Algorithm, AlgorithmStats]:
    """
    Compute stats for every algorithm over the last ``horizon_seconds``.

    Algorithms without a block in the horizon get ``None`` for every derived
    field rather than zero.
    """
    if horizon_seconds <= 0:
        raise ConfigurationError(f"Horizon must be positive, got {horizon_seconds}")

    difficulties: Dict[Algorithm, List[float]] = defaultdict(list)
    for record in filter_horizon(view, horizon_seconds, now):
        difficulties[record.algorithm].append(record.difficulty)

    expected = constants.expected_blocks(horizon_seconds)
    stats = {}
    for algorithm in Algorithm:
        values = difficulties.get(algorithm, [])
        count = len(values)
        if count == 0:
            stats[algorithm] = AlgorithmStats(algorithm=algorithm)
            continue

        avg_difficulty = _mean(values)
        hashrate = (count / expected) * avg_difficulty * HASHES_PER_DIFFICULTY / constants.combined_target_interval
        stats[algorithm] = AlgorithmStats(
            algorithm=algorithm,
            block_count=count,
            hashrate=hashrate,
            avg_difficulty=avg_difficulty,
            avg_block_interval=horizon_seconds / count,
        )
    return stats


def compute_network_stats(stats: Dict[Algorithm, AlgorithmStats], horizon_seconds: float) -> NetworkStats:
    """Whole-network totals derived from the per-algorithm stats"""
    block_count = sum(item.block_count for item in stats.values())
    if block_count == 0:
        return NetworkStats()

    hashrates = [item.hashrate for item in stats.values() if item.hashrate is not None]
    return NetworkStats(
        block_count=block_count,
        total_hashrate=sum(hashrates) if hashrates else None,
        avg_block_interval=horizon_seconds / block_count,
    )


def difficulty_series(view: Iterable[BlockRecord]) -> Dict[Algorithm, Tuple[DifficultyPoint, ...]]:
    """Difficulty per algorithm over the whole window, oldest block first"""
    series: Dict[Algorithm, List[DifficultyPoint]] = {algorithm: [] for algorithm in Algorithm}
    for record in sorted(view, key=lambda record: record.height):
        series[record.algorithm].append(
            DifficultyPoint(height=record.height, timestamp=record.timestamp, difficulty=record.difficulty)
        )
    return {algorithm: tuple(points) for algorithm, points in series.items()}
