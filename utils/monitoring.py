# utils/monitoring.py
import asyncio
import time
from typing import Any, Dict, List, Optional
import psutil
from engine.models import DataFreshness, FeedStatus
from engine.pipeline import MetricsEngine
from utils.logging import logger

class FeedHealthMonitor:
    """Watches feed liveness and process resources, logging when either degrades"""

    def __init__(self, engine: MetricsEngine, feed=None, stale_after: int = 300, interval: int = 30, max_unhealthy: int = 3):
        self.engine = engine
        self.feed = feed
        self.stale_after = stale_after
        self.interval = interval
        self.max_unhealthy = max_unhealthy
        self.started_at = time.time()
        self.is_healthy = True
        self.unhealthy_count = 0
        self._process = psutil.Process()

    def process_metrics(self) -> Dict[str, Any]:
        with self._process.oneshot():
            memory = self._process.memory_info()
            return {
                "cpu_percent": self._process.cpu_percent(interval=None),
                "memory_rss_mb": round(memory.rss / (1024 * 1024), 1),
                "threads": self._process.num_threads(),
            }

    def check(self, now: Optional[float] = None) -> List[str]:
        """Return the reasons the service is currently unhealthy, if any"""
        now = time.time() if now is None else now
        state = self.engine.state()
        reasons = []

        last_message = self.feed.last_message_time if self.feed else None
        reference = last_message if last_message is not None else self.started_at
        silent_for = now - reference
        if self.feed is not None and silent_for > self.stale_after:
            reasons.append(f"No feed message for {silent_for:.0f}s")

        if state.status == FeedStatus.DISCONNECTED:
            reasons.append("Feed disconnected, serving stale data")
        if state.freshness == DataFreshness.FALLBACK:
            reasons.append("Serving fallback data")

        self.is_healthy = not reasons
        return reasons

    def resource_warnings(self) -> List[str]:
        """Host resource levels worth an alert, independent of the feed"""
        warnings = []
        cpu_percent = psutil.cpu_percent(interval=None)
        memory = psutil.virtual_memory()
        if cpu_percent > 85:
            warnings.append(f"CPU usage critical: {cpu_percent}%")
        if memory.percent > 90:
            warnings.append(f"Memory usage critical: {memory.percent}%")
        return warnings

    async def monitor_task(self):
        while True:
            try:
                for warning in self.resource_warnings():
                    logger.error(f"System resources critical: {warning}")
                reasons = self.check()
                if reasons:
                    self.unhealthy_count += 1
                    logger.warning(f"Feed unhealthy: {', '.join(reasons)}")
                    if self.unhealthy_count >= self.max_unhealthy:
                        logger.error(
                            f"Feed consistently unhealthy!\nReasons: {', '.join(reasons)}\n"
                            f"Process: {self.process_metrics()}"
                        )
                        # Reset counter to avoid spam
                        self.unhealthy_count = 0
                else:
                    self.unhealthy_count = 0
            except psutil.Error as e:
                logger.error(f"Error in health monitoring: {str(e)}")
            await asyncio.sleep(self.interval)
