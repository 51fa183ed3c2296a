# engine/distribution.py
from typing import Dict, Iterable, List, NamedTuple, Optional, Sequence, Tuple

from engine.errors import ConfigurationError
from engine.models import (
    Algorithm, AlgorithmShare, BlockRecord, DistributionSnapshot,
    MultiBlockMiner, SignalingShare, SingleBlockMiner
)

OTHER_LABEL = "Other"


class _MinerTally:
    __slots__ = ("address", "count", "latest_height", "pool_label", "_label_height")

    def __init__(self, address: str):
        self.address = address
        self.count = 0
        self.latest_height = -1
        self.pool_label: Optional[str] = None
        self._label_height = -1

    def add(self, record: BlockRecord):
        self.count += 1
        self.latest_height = max(self.latest_height, record.height)
        # label of the highest block that carries one
        if record.pool_identifier and record.height > self._label_height:
            self._label_height = record.height
            self.pool_label = record.pool_identifier


class ShareSlice(NamedTuple):
    label: str
    count: int
    percentage: Optional[float]


def _percentage(count: int, total: int) -> Optional[float]:
    if total == 0:
        return None
    return count * 100.0 / total


def compute_distribution(full_view: Sequence[BlockRecord], display_cap: int = 25) -> DistributionSnapshot:
    """
    Algorithm shares and miner rankings over the whole window.

    Multi-block miners are ranked by block count, then by their most recent
    height; single-block miners by height. Remaining ties fall back to the
    address so repeated calls on the same window rank identically.
    """
    if display_cap <= 0:
        raise ConfigurationError(f"Display cap must be positive, got {display_cap}")

    total = len(full_view)
    counts: Dict[Algorithm, int] = {algorithm: 0 for algorithm in Algorithm}
    tallies: Dict[str, _MinerTally] = {}
    unattributed = 0
    signaling = 0

    for record in full_view:
        counts[record.algorithm] += 1
        if record.taproot_signaling:
            signaling += 1
        if not record.miner_address:
            unattributed += 1
            continue
        tally = tallies.get(record.miner_address)
        if tally is None:
            tally = tallies[record.miner_address] = _MinerTally(record.miner_address)
        tally.add(record)

    by_algorithm = {
        algorithm: AlgorithmShare(algorithm=algorithm, count=count, percentage=_percentage(count, total))
        for algorithm, count in counts.items()
    }

    multi = sorted(
        (tally for tally in tallies.values() if tally.count > 1),
        key=lambda tally: (-tally.count, -tally.latest_height, tally.address),
    )
    single = sorted(
        (tally for tally in tallies.values() if tally.count == 1),
        key=lambda tally: (-tally.latest_height, tally.address),
    )

    return DistributionSnapshot(
        total_blocks=total,
        by_algorithm=by_algorithm,
        multi_block_miners=tuple(
            MultiBlockMiner(
                rank=rank,
                address=tally.address,
                count=tally.count,
                latest_height=tally.latest_height,
                pool_label=tally.pool_label,
            )
            for rank, tally in enumerate(multi, start=1)
        ),
        single_block_miners=tuple(
            SingleBlockMiner(
                rank=rank,
                address=tally.address,
                height=tally.latest_height,
                pool_label=tally.pool_label,
            )
            for rank, tally in enumerate(single[:display_cap], start=1)
        ),
        single_block_miner_total=len(single),
        unattributed_blocks=unattributed,
        taproot_signaling=SignalingShare(count=signaling, total=total, percentage=_percentage(signaling, total)),
    )


def collapse_shares(entries: Iterable[Tuple[str, int]], threshold_percent: float, other_label: str = OTHER_LABEL) -> List[ShareSlice]:
    """
    Fold entries below ``threshold_percent`` of the total into one bucket.

    Each input count lands in exactly one slice, so the slice counts always
    add up to the input total. The bucket is only emitted when non-empty.
    """
    entries = list(entries)
    total = sum(count for _, count in entries)
    kept: List[ShareSlice] = []
    other = 0
    for label, count in entries:
        percentage = _percentage(count, total)
        if percentage is not None and percentage < threshold_percent:
            other += count
        else:
            kept.append(ShareSlice(label, count, percentage))
    if other:
        kept.append(ShareSlice(other_label, other, _percentage(other, total)))
    return kept


def algorithm_slices(snapshot: DistributionSnapshot, threshold_percent: float) -> List[ShareSlice]:
    entries = [(share.algorithm.display_name, share.count) for share in snapshot.by_algorithm.values() if share.count]
    return collapse_shares(entries, threshold_percent)


def miner_slices(snapshot: DistributionSnapshot, threshold_percent: float) -> List[ShareSlice]:
    """Pie slices for miners; single-block miners are always pooled together"""
    entries = [(miner.address, miner.count) for miner in snapshot.multi_block_miners]
    if snapshot.single_block_miner_total:
        entries.append(("Addresses With 1 Block", snapshot.single_block_miner_total))
    if snapshot.unattributed_blocks:
        entries.append(("Unknown", snapshot.unattributed_blocks))
    return collapse_shares(entries, threshold_percent)
