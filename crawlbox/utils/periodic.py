import asyncio
import inspect
from typing import Awaitable, Callable, Optional, Union

from loguru import logger


Callback = Callable[[], Union[None, Awaitable[None]]]


class PeriodicTask:
    """Run a callback every ``interval`` seconds on the running event loop.

    The first run happens one interval after ``start()``. Errors raised by the
    callback are logged and the loop keeps going; only ``stop()``/``aclose()``
    end it.
    """

    def __init__(self, name: str, interval: float, callback: Callback):
        self.name = name
        self.interval = interval
        self.callback = callback
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run(), name=self.name)

    def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None

    async def aclose(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                outcome = self.callback()
                if inspect.isawaitable(outcome):
                    await outcome
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"[{self.name}] periodic callback failed: {e}")
