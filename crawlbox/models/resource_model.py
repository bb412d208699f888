from dataclasses import dataclass, field
from datetime import datetime


@dataclass
class CpuMetrics:
    usage: float = 0.0


@dataclass
class MemoryMetrics:
    used: int = 0
    free: int = 0
    total: int = 0
    percentage: float = 0.0


@dataclass
class NetworkMetrics:
    bytes_in: int = 0
    bytes_out: int = 0
    requests: int = 0


@dataclass
class ResourceMetrics:
    timestamp: datetime
    cpu: CpuMetrics = field(default_factory=CpuMetrics)
    memory: MemoryMetrics = field(default_factory=MemoryMetrics)
    network: NetworkMetrics = field(default_factory=NetworkMetrics)


@dataclass
class ResourceLimits:
    max_memory: int = 2 * 1024 * 1024 * 1024  # bytes
    max_cpu: float = 80.0  # percent
    max_network: int = 10 * 1024 * 1024  # bytes per second
