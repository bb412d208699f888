from __future__ import annotations

import os
from collections import deque
from datetime import datetime, timezone
from typing import Any, Deque, Dict, List, Optional

import psutil
from loguru import logger

from crawlbox.events import EventBus
from crawlbox.models import ResourceLimits, ResourceMetrics
from crawlbox.models.resource_model import CpuMetrics, MemoryMetrics, NetworkMetrics
from crawlbox.monitoring.metrics_server import (
    PROCESS_CPU,
    PROCESS_MEMORY,
    RESOURCE_LIMIT_BREACHES,
)
from crawlbox.utils.periodic import PeriodicTask


MAX_HISTORY = 100


def find_breaches(metrics: ResourceMetrics, limits: ResourceLimits) -> List[Dict[str, Any]]:
    """Return one ``{type, used, limit}`` entry per limit the sample exceeds."""
    breaches = []
    if metrics.memory.used > limits.max_memory:
        breaches.append({"type": "memory", "used": metrics.memory.used, "limit": limits.max_memory})
    if metrics.cpu.usage > limits.max_cpu:
        breaches.append({"type": "cpu", "used": metrics.cpu.usage, "limit": limits.max_cpu})
    network = metrics.network.bytes_in + metrics.network.bytes_out
    if network > limits.max_network:
        breaches.append({"type": "network", "used": network, "limit": limits.max_network})
    return breaches


class ResourceMonitor:
    """Periodic CPU/memory sampler with a bounded history.

    Limit breaches are advisory: they are logged, counted and published, never
    raised.
    """

    def __init__(
        self,
        limits: Optional[ResourceLimits] = None,
        *,
        interval: float = 5.0,
        events: Optional[EventBus] = None,
        max_history: int = MAX_HISTORY,
    ):
        self.limits = limits or ResourceLimits()
        self.interval = interval
        self.events = events
        self._history: Deque[ResourceMetrics] = deque(maxlen=max_history)
        self._processes: Dict[int, psutil.Process] = {}
        self._sampler: Optional[PeriodicTask] = None

    # -------------------------------------------------------
    # Sampler lifecycle
    # -------------------------------------------------------
    @property
    def is_monitoring(self) -> bool:
        return self._sampler is not None and self._sampler.running

    def start_monitoring(self) -> None:
        if self.is_monitoring:
            return

        self._sampler = PeriodicTask("resource-monitor", self.interval, self.sample)
        self._sampler.start()
        logger.info(
            f"Resource monitoring started (every {self.interval}s, "
            f"max_memory={self.limits.max_memory}, max_cpu={self.limits.max_cpu}%)"
        )

    def stop_monitoring(self) -> None:
        if self._sampler is None:
            return
        self._sampler.stop()
        self._sampler = None
        logger.info("Resource monitoring stopped")

    # -------------------------------------------------------
    # Sampling
    # -------------------------------------------------------
    def sample(self) -> ResourceMetrics:
        """Collect one sample, append it to the history and check limits."""
        metrics = self.collect_metrics()
        self._history.append(metrics)
        PROCESS_MEMORY.set(metrics.memory.used)
        PROCESS_CPU.set(metrics.cpu.usage)

        self.check_limits(metrics)

        if self.events is not None:
            self.events.publish("crawler.resources.monitored", {"metrics": metrics})
        return metrics

    def collect_metrics(self, pid: Optional[int] = None) -> ResourceMetrics:
        """Point sample of the current process, or of ``pid`` when given.

        Raises ``psutil.NoSuchProcess`` when ``pid`` has already exited.
        """
        process = self._process(pid)
        with process.oneshot():
            memory_info = process.memory_info()
            memory_percent = process.memory_percent()
            cpu_percent = process.cpu_percent(interval=None)
        virtual = psutil.virtual_memory()

        return ResourceMetrics(
            timestamp=datetime.now(timezone.utc),
            cpu=CpuMetrics(usage=cpu_percent),
            memory=MemoryMetrics(
                used=memory_info.rss,
                free=virtual.available,
                total=virtual.total,
                percentage=memory_percent,
            ),
            # no per-process network accounting yet
            network=NetworkMetrics(),
        )

    def get_current_metrics(self) -> ResourceMetrics:
        return self.collect_metrics()

    def forget_process(self, pid: int) -> None:
        self._processes.pop(pid, None)

    def _process(self, pid: Optional[int]) -> psutil.Process:
        pid = pid or os.getpid()
        # psutil measures cpu_percent against the previous call on the same object
        process = self._processes.get(pid)
        if process is None:
            process = psutil.Process(pid)
            self._processes[pid] = process
        return process

    # -------------------------------------------------------
    # Limits
    # -------------------------------------------------------
    def check_limits(self, metrics: ResourceMetrics) -> List[Dict[str, Any]]:
        breaches = find_breaches(metrics, self.limits)
        for breach in breaches:
            RESOURCE_LIMIT_BREACHES.labels(source="monitor", resource=breach["type"]).inc()
            logger.warning(
                f"{breach['type']} limit exceeded: used={breach['used']} limit={breach['limit']}"
            )
            if self.events is not None:
                self.events.publish("crawler.resources.limit.exceeded", dict(breach))
        return breaches

    def update_limits(
        self,
        *,
        max_memory: Optional[int] = None,
        max_cpu: Optional[float] = None,
        max_network: Optional[int] = None,
    ) -> None:
        if max_memory is not None:
            self.limits.max_memory = max_memory
        if max_cpu is not None:
            self.limits.max_cpu = max_cpu
        if max_network is not None:
            self.limits.max_network = max_network
        logger.info(f"Resource limits updated: {self.limits}")

    def get_limits(self) -> ResourceLimits:
        return ResourceLimits(
            max_memory=self.limits.max_memory,
            max_cpu=self.limits.max_cpu,
            max_network=self.limits.max_network,
        )

    # -------------------------------------------------------
    # History
    # -------------------------------------------------------
    def get_metrics_history(self) -> List[ResourceMetrics]:
        return list(self._history)

    def get_average_metrics(self) -> Dict[str, Any]:
        count = len(self._history)
        if count == 0:
            return {"cpu": 0.0, "memory": 0.0, "network": {"bytes_in": 0.0, "bytes_out": 0.0}}

        return {
            "cpu": sum(m.cpu.usage for m in self._history) / count,
            "memory": sum(m.memory.percentage for m in self._history) / count,
            "network": {
                "bytes_in": sum(m.network.bytes_in for m in self._history) / count,
                "bytes_out": sum(m.network.bytes_out for m in self._history) / count,
            },
        }
