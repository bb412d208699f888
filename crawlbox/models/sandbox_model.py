from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from crawlbox.models.resource_model import ResourceLimits, ResourceMetrics


TASK_RUNNING = "running"
TASK_COMPLETED = "completed"
TASK_FAILED = "failed"
TASK_TIMEOUT = "timeout"

TERMINAL_STATUSES = (TASK_COMPLETED, TASK_FAILED, TASK_TIMEOUT)


@dataclass
class SandboxConfig:
    working_dir: str = "data/sandbox"
    isolated: bool = True
    timeout: float = 60.0  # seconds
    resource_limits: ResourceLimits = field(
        default_factory=lambda: ResourceLimits(max_memory=512 * 1024 * 1024, max_cpu=50.0)
    )
    enforce_limits: bool = False
    metrics_interval: float = 1.0
    network_access: bool = True
    file_system_access: bool = True


@dataclass
class SandboxTask:
    id: str
    command: str
    args: List[str]
    working_dir: str
    started_at: datetime
    env: Optional[Dict[str, str]] = None
    status: str = TASK_RUNNING
    ended_at: Optional[datetime] = None
    exit_code: Optional[int] = None
    output: Optional[str] = None
    error: Optional[str] = None
    metrics: List[ResourceMetrics] = field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def duration(self) -> Optional[float]:
        if self.ended_at is None:
            return None
        return (self.ended_at - self.started_at).total_seconds()
