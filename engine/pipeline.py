# engine/pipeline.py
import threading
import time
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from engine.distribution import compute_distribution
from engine.errors import ConfigurationError
from engine.hashrate import (
    HashrateConstants, compute_algorithm_stats, compute_network_stats, difficulty_series
)
from engine.models import (
    Algorithm, AlgorithmStats, BlockRecord, DataFreshness, Diagnostics,
    DistributionSnapshot, EngineState, FeedStatus
)
from engine.window import ApplyResult, WindowBuffer
from utils.logging import logger


class MetricsSubscriber:
    """Receives engine updates. Override the hooks you need."""

    def on_snapshot_applied(self, window: Tuple[BlockRecord, ...]):
        pass

    def on_stats_updated(self, stats: Dict[Algorithm, AlgorithmStats]):
        pass

    def on_distribution_updated(self, distribution: DistributionSnapshot):
        pass

    def on_status_changed(self, status: FeedStatus, using_fallback_data: bool):
        pass


class MetricsEngine:
    """
    Window buffer plus the aggregates derived from it.

    Every accepted mutation is followed by a full recompute under the same
    lock, and the result is published as one immutable EngineState.
    Subscribers are notified after the lock is released.
    """

    def __init__(
        self,
        capacity: int = 240,
        horizon_seconds: float = 3600.0,
        constants: Optional[HashrateConstants] = None,
        display_cap: int = 25,
        height_tolerance: Optional[int] = None,
        clock: Callable[[], float] = time.time,
    ):
        if horizon_seconds <= 0:
            raise ConfigurationError(f"Horizon must be positive, got {horizon_seconds}")
        if display_cap <= 0:
            raise ConfigurationError(f"Display cap must be positive, got {display_cap}")

        self.window = WindowBuffer(capacity, height_tolerance)
        self.horizon_seconds = horizon_seconds
        self.constants = constants or HashrateConstants()
        self.display_cap = display_cap
        self._clock = clock
        self._lock = threading.RLock()
        self._subscribers: List[MetricsSubscriber] = []
        self._closed = False

        self._connection_status = FeedStatus.CONNECTING
        self._using_fallback = False
        self._has_genuine_snapshot = False
        self._last_update: Optional[float] = None
        self._counters = Diagnostics().model_dump()
        self._computed = self._compute(())
        self._state = self._build_state()

    @classmethod
    def from_settings(cls, settings) -> "MetricsEngine":
        return cls(
            capacity=settings.WINDOW_CAPACITY,
            horizon_seconds=settings.HORIZON_SECONDS,
            constants=HashrateConstants(
                target_block_interval=settings.TARGET_BLOCK_INTERVAL,
                algorithm_count=settings.ALGORITHM_COUNT,
            ),
            display_cap=settings.MINER_DISPLAY_CAP,
            height_tolerance=settings.HEIGHT_TOLERANCE,
        )

    # Subscriptions

    def subscribe(self, subscriber: MetricsSubscriber):
        with self._lock:
            if subscriber not in self._subscribers:
                self._subscribers.append(subscriber)

    def unsubscribe(self, subscriber: MetricsSubscriber):
        with self._lock:
            if subscriber in self._subscribers:
                self._subscribers.remove(subscriber)

    # Reads

    def state(self) -> EngineState:
        return self._state

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def has_genuine_snapshot(self) -> bool:
        return self._has_genuine_snapshot

    @property
    def using_fallback_data(self) -> bool:
        return self._using_fallback

    # Mutations

    def apply_snapshot(self, records: Iterable[BlockRecord], fallback: bool = False) -> int:
        """Replace the window and recompute. ``fallback`` marks synthetic data."""
        with self._lock:
            if self._closed:
                logger.debug("Ignoring snapshot on a closed engine")
                return 0
            kept = self.window.apply_snapshot(records)
            self._using_fallback = fallback
            if not fallback:
                self._has_genuine_snapshot = True
            self._counters["snapshots_applied"] += 1
            self._recompute()
            state = self._state
            subscribers = list(self._subscribers)

        logger.info(
            f"Applied {'fallback' if fallback else 'live'} snapshot with {kept} blocks "
            f"(capacity {self.window.capacity})"
        )
        self._notify(subscribers, "on_snapshot_applied", state.window)
        self._notify(subscribers, "on_stats_updated", state.stats)
        self._notify(subscribers, "on_distribution_updated", state.distribution)
        self._notify(subscribers, "on_status_changed", state.status, state.using_fallback_data)
        return kept

    def apply_increment(self, record: BlockRecord) -> ApplyResult:
        with self._lock:
            if self._closed:
                logger.debug(f"Ignoring block {record.height} on a closed engine")
                return ApplyResult.REJECTED_CLOSED
            result = self.window.apply_increment(record)
            if result == ApplyResult.ACCEPTED:
                self._counters["increments_applied"] += 1
                self._recompute()
            else:
                if result == ApplyResult.REJECTED_DUPLICATE:
                    self._counters["duplicates_rejected"] += 1
                else:
                    self._counters["stale_rejected"] += 1
                self._state = self._build_state()
                return result
            state = self._state
            subscribers = list(self._subscribers)

        self._notify(subscribers, "on_stats_updated", state.stats)
        self._notify(subscribers, "on_distribution_updated", state.distribution)
        return result

    def record_protocol_error(self, malformed_records: int = 0):
        with self._lock:
            if malformed_records:
                self._counters["malformed_records"] += malformed_records
            else:
                self._counters["protocol_errors"] += 1
            self._state = self._build_state()

    def set_connection_status(self, status: FeedStatus):
        with self._lock:
            if self._closed or status == self._connection_status:
                return
            self._connection_status = status
            self._state = self._build_state()
            state = self._state
            subscribers = list(self._subscribers)
        self._notify(subscribers, "on_status_changed", state.status, state.using_fallback_data)

    def close(self):
        """Discard all state; the engine accepts no further mutations"""
        with self._lock:
            self._closed = True
            self._subscribers = []
            self.window.clear()
            self._using_fallback = False
            self._has_genuine_snapshot = False
            self._connection_status = FeedStatus.DISCONNECTED
            self._computed = self._compute(())
            self._state = self._build_state()

    # Internals

    def _compute(self, window: Tuple[BlockRecord, ...]):
        now = self._clock()
        stats = compute_algorithm_stats(window, self.horizon_seconds, self.constants, now=now)
        return {
            "window": window,
            "stats": stats,
            "network": compute_network_stats(stats, self.horizon_seconds),
            "difficulties": difficulty_series(window),
            "distribution": compute_distribution(window, self.display_cap),
        }

    def _recompute(self):
        self._computed = self._compute(self.window.view())
        self._last_update = self._clock()
        self._state = self._build_state()

    def _freshness(self) -> DataFreshness:
        if self._using_fallback:
            return DataFreshness.FALLBACK
        if not self._has_genuine_snapshot:
            return DataFreshness.PENDING
        if self._connection_status == FeedStatus.CONNECTED:
            return DataFreshness.LIVE
        return DataFreshness.STALE

    def _build_state(self) -> EngineState:
        status = FeedStatus.USING_FALLBACK if self._using_fallback else self._connection_status
        return EngineState(
            **self._computed,
            status=status,
            using_fallback_data=self._using_fallback,
            freshness=self._freshness(),
            diagnostics=Diagnostics(**self._counters),
            last_update=self._last_update,
            horizon_seconds=self.horizon_seconds,
        )

    @staticmethod
    def _notify(subscribers: List[MetricsSubscriber], hook: str, *args):
        for subscriber in subscribers:
            try:
                getattr(subscriber, hook)(*args)
            except Exception:
                logger.exception(f"Subscriber {type(subscriber).__name__}.{hook} failed")
