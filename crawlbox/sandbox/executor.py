from __future__ import annotations

import asyncio
import os
import signal
import time
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import psutil
from loguru import logger

from crawlbox.errors import TaskNotFound, TaskSpawnError, TaskTimeout
from crawlbox.events import EventBus
from crawlbox.models import ResourceLimits, SandboxConfig, SandboxTask
from crawlbox.models.sandbox_model import (
    TASK_COMPLETED,
    TASK_FAILED,
    TASK_RUNNING,
    TASK_TIMEOUT,
)
from crawlbox.monitoring.metrics_server import (
    RESOURCE_LIMIT_BREACHES,
    SANDBOX_RUNNING,
    SANDBOX_TASKS,
)
from crawlbox.monitoring.resource_monitor import ResourceMonitor, find_breaches
from crawlbox.utils.periodic import PeriodicTask


KILL_GRACE_SECONDS = 0.2
# leftover writers (e.g. background grandchildren) may hold the pipes open
DRAIN_TIMEOUT_SECONDS = 0.25
READ_CHUNK_BYTES = 64 * 1024


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


async def _drain(stream: Optional[asyncio.StreamReader], chunks: List[bytes]) -> None:
    if stream is None:
        return
    while True:
        data = await stream.read(READ_CHUNK_BYTES)
        if not data:
            return
        chunks.append(data)


def _decode(chunks: List[bytes]) -> str:
    return b"".join(chunks).decode("utf-8", errors="replace")


def _signal_group(process: asyncio.subprocess.Process, sig: int) -> None:
    """Signal every process in the task's session; the leader's pid is the group id."""
    try:
        os.killpg(process.pid, sig)
    except ProcessLookupError:
        pass


class SandboxExecutor:
    """Run external commands in per-task directories under a wall-clock timeout.

    Every running task gets its own sampler that records the child's resource
    usage through the shared ``ResourceMonitor``. Breaches are logged; with
    ``enforce_limits`` they also terminate the task.
    """

    def __init__(
        self,
        monitor: ResourceMonitor,
        config: Optional[SandboxConfig] = None,
        *,
        events: Optional[EventBus] = None,
    ):
        self.monitor = monitor
        self.config = config or SandboxConfig()
        self.events = events
        self.sandbox_dir = Path(self.config.working_dir)
        self._tasks: Dict[str, SandboxTask] = {}
        self._processes: Dict[str, asyncio.subprocess.Process] = {}
        self._breaches: Dict[str, str] = {}

    # -------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------
    async def initialize(self) -> None:
        logger.info("Initializing environment sandbox...")
        self.sandbox_dir.mkdir(parents=True, exist_ok=True)
        self.monitor.start_monitoring()

        logger.info(
            f"Environment sandbox initialized (isolated={self.config.isolated}, dir={self.sandbox_dir})"
        )
        self._publish("crawler.sandbox.initialized", {"config": self.config})

    async def shutdown(self) -> None:
        for task in self.get_running_tasks():
            try:
                await self.stop_task(task.id, kill=True)
            except TaskNotFound:
                continue
        logger.info("Environment sandbox shut down")

    # -------------------------------------------------------
    # Execution
    # -------------------------------------------------------
    async def execute_task(
        self,
        command: str,
        args: Sequence[str] = (),
        *,
        env: Optional[Dict[str, str]] = None,
        working_dir: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> str:
        """Run ``command`` to completion and return the task id.

        Raises ``TaskSpawnError`` if the process cannot be started and
        ``TaskTimeout`` after killing a process that outlived ``timeout``. In
        both cases the task stays queryable with its terminal status.
        """
        task_id = f"task-{int(time.time() * 1000)}-{uuid.uuid4().hex[:7]}"
        work_dir = Path(working_dir) if working_dir else self.sandbox_dir / task_id
        timeout = timeout if timeout is not None else self.config.timeout

        task = SandboxTask(
            id=task_id,
            command=command,
            args=list(args),
            env=env,
            working_dir=str(work_dir),
            started_at=_utcnow(),
        )
        self._tasks[task_id] = task

        try:
            work_dir.mkdir(parents=True, exist_ok=True)
            process = await asyncio.create_subprocess_exec(
                command,
                *task.args,
                cwd=str(work_dir),
                env=self._build_env(env, work_dir),
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=True,
            )
        except OSError as exc:
            self._finish(task, TASK_FAILED, error=str(exc))
            logger.error(f"Task {task_id} failed to start: {exc}")
            raise TaskSpawnError(task_id, command, exc) from exc

        if process.stdin is not None:
            process.stdin.close()

        self._processes[task_id] = process
        SANDBOX_RUNNING.inc()
        stdout_chunks: List[bytes] = []
        stderr_chunks: List[bytes] = []
        readers = [
            asyncio.create_task(_drain(process.stdout, stdout_chunks)),
            asyncio.create_task(_drain(process.stderr, stderr_chunks)),
        ]
        sampler = PeriodicTask(
            f"sandbox-metrics-{task_id}",
            self.config.metrics_interval,
            lambda: self._sample_task(task, process),
        )
        sampler.start()

        timed_out = False
        try:
            try:
                exit_code = await asyncio.wait_for(process.wait(), timeout=timeout)
            except asyncio.TimeoutError:
                timed_out = True
                # terminal before the kill so observers never see a timed-out task as running
                await sampler.aclose()
                if not task.is_terminal:
                    self._finish(task, TASK_TIMEOUT, error=f"Task timed out after {timeout}s")
                logger.warning(f"Task {task_id} timed out after {timeout}s: {command}")
                exit_code = await self._terminate(process)
        except asyncio.CancelledError:
            await self._terminate(process)
            for reader in readers:
                reader.cancel()
            if not task.is_terminal:
                self._finish(task, TASK_FAILED, exit_code=process.returncode, error="Task cancelled")
            raise
        finally:
            # no samples may land after the terminal status
            await sampler.aclose()
            self._processes.pop(task_id, None)
            self.monitor.forget_process(process.pid)
            SANDBOX_RUNNING.dec()

        await self._collect(task_id, readers)
        output, error = _decode(stdout_chunks), _decode(stderr_chunks)

        if timed_out:
            task.exit_code = exit_code
            task.output = output
            if task.status == TASK_TIMEOUT:
                raise TaskTimeout(task_id, timeout)
            return task_id

        if task.is_terminal:
            # stopped through stop_task() while the process was running
            task.output = output
            return task_id

        breach = self._breaches.pop(task_id, None)
        if breach is not None:
            self._finish(task, TASK_FAILED, exit_code=exit_code, output=output, error=breach)
        else:
            status = TASK_COMPLETED if exit_code == 0 else TASK_FAILED
            self._finish(task, status, exit_code=exit_code, output=output, error=error)

        logger.info(
            f"Task {task_id} finished: status={task.status} exit_code={exit_code} "
            f"duration={task.duration:.3f}s"
        )
        self._publish("crawler.sandbox.task.completed", {"task_id": task_id, "task": task})
        return task_id

    @staticmethod
    async def _collect(task_id: str, readers: List[asyncio.Task]) -> None:
        _, pending = await asyncio.wait(readers, timeout=DRAIN_TIMEOUT_SECONDS)
        if not pending:
            return
        logger.warning(f"Task {task_id} output still open after exit; keeping what was read")
        for reader in pending:
            reader.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

    def _build_env(self, overrides: Optional[Dict[str, str]], work_dir: Path) -> Dict[str, str]:
        env = dict(os.environ)
        env.update(overrides or {})
        if self.config.isolated:
            env["HOME"] = str(work_dir)
            env["TMPDIR"] = str(work_dir)
        return env

    async def _terminate(self, process: asyncio.subprocess.Process) -> int:
        """SIGTERM the task's process group, SIGKILL it after the grace period."""
        _signal_group(process, signal.SIGTERM)
        try:
            exit_code = await asyncio.wait_for(process.wait(), timeout=KILL_GRACE_SECONDS)
        except asyncio.TimeoutError:
            _signal_group(process, signal.SIGKILL)
            exit_code = await process.wait()
        # the leader may exit on SIGTERM while its children ignore it
        _signal_group(process, signal.SIGKILL)
        return exit_code

    def _finish(
        self,
        task: SandboxTask,
        status: str,
        *,
        exit_code: Optional[int] = None,
        output: Optional[str] = None,
        error: Optional[str] = None,
    ) -> None:
        task.status = status
        task.ended_at = _utcnow()
        task.exit_code = exit_code
        task.output = output
        task.error = error
        SANDBOX_TASKS.labels(status=status).inc()

    # -------------------------------------------------------
    # Per-task sampling
    # -------------------------------------------------------
    def _sample_task(self, task: SandboxTask, process: asyncio.subprocess.Process) -> None:
        if task.is_terminal or process.returncode is not None:
            return

        try:
            metrics = self.monitor.collect_metrics(pid=process.pid)
        except psutil.Error:
            return
        task.metrics.append(metrics)

        for breach in find_breaches(metrics, self.config.resource_limits):
            RESOURCE_LIMIT_BREACHES.labels(source="sandbox", resource=breach["type"]).inc()
            logger.warning(
                f"Task {task.id} exceeded {breach['type']} limit: used={breach['used']} limit={breach['limit']}"
            )
            if self.config.enforce_limits and task.id not in self._breaches:
                self._breaches[task.id] = f"{breach['type']} limit exceeded"
                _signal_group(process, signal.SIGTERM)

    # -------------------------------------------------------
    # Control
    # -------------------------------------------------------
    async def stop_task(self, task_id: str, *, kill: bool = False) -> None:
        """Mark a running task as stopped.

        Only bookkeeping changes unless ``kill`` is set, in which case the
        process group is also sent SIGTERM.
        """
        task = self._tasks.get(task_id)
        if task is None:
            raise TaskNotFound(task_id)
        if task.status != TASK_RUNNING:
            return

        self._finish(task, TASK_FAILED, error="Task stopped manually")
        logger.info(f"Task {task_id} stopped (kill={kill})")

        process = self._processes.get(task_id)
        if kill and process is not None and process.returncode is None:
            _signal_group(process, signal.SIGTERM)

    # -------------------------------------------------------
    # Queries
    # -------------------------------------------------------
    def get_task(self, task_id: str) -> Optional[SandboxTask]:
        return self._tasks.get(task_id)

    def get_all_tasks(self) -> List[SandboxTask]:
        return list(self._tasks.values())

    def get_running_tasks(self) -> List[SandboxTask]:
        return [t for t in self._tasks.values() if t.status == TASK_RUNNING]

    def get_task_metrics(self, task_id: str) -> list:
        task = self._tasks.get(task_id)
        return list(task.metrics) if task else []

    def get_statistics(self) -> Dict[str, Any]:
        tasks = list(self._tasks.values())
        durations = [t.duration for t in tasks if t.duration is not None]

        return {
            "total_tasks": len(tasks),
            "running_tasks": sum(1 for t in tasks if t.status == TASK_RUNNING),
            "completed_tasks": sum(1 for t in tasks if t.status == TASK_COMPLETED),
            "failed_tasks": sum(1 for t in tasks if t.status == TASK_FAILED),
            "timeout_tasks": sum(1 for t in tasks if t.status == TASK_TIMEOUT),
            "average_duration": sum(durations) / len(durations) if durations else 0.0,
            "current_resources": self.monitor.get_current_metrics(),
        }

    # -------------------------------------------------------
    # Config
    # -------------------------------------------------------
    def update_config(
        self,
        *,
        timeout: Optional[float] = None,
        isolated: Optional[bool] = None,
        resource_limits: Optional[ResourceLimits] = None,
        enforce_limits: Optional[bool] = None,
    ) -> None:
        if timeout is not None:
            self.config.timeout = timeout
        if isolated is not None:
            self.config.isolated = isolated
        if resource_limits is not None:
            self.config.resource_limits = resource_limits
        if enforce_limits is not None:
            self.config.enforce_limits = enforce_limits
        logger.info(f"Sandbox config updated: {self.config}")

    def get_config(self) -> SandboxConfig:
        return self.config

    def _publish(self, topic: str, payload: Dict[str, Any]) -> None:
        if self.events is not None:
            self.events.publish(topic, payload)
