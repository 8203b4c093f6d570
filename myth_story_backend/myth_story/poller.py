import asyncio
import logging
from typing import Callable, Optional

from .errors import ProviderError, TaskFailed
from .models import ModelTask, ModelTaskStatus

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_S = 10.0
DEFAULT_MAX_ATTEMPTS = 60


def _failed(task_id: str, error: ProviderError) -> ModelTask:
    return ModelTask(task_id=task_id, status=ModelTaskStatus.FAILED, error=error.message)


class ModelTaskPoller:
    """Polls one deferred 3D-model task at a fixed interval until it is terminal.

    The poll runs as an `asyncio.Task`; `cancel()` stops it and guarantees that the
    callback is never invoked afterwards. The callback receives exactly one terminal
    `ModelTask` (completed or failed) per poll that is not cancelled.
    """

    def __init__(self, client, interval: float = DEFAULT_INTERVAL_S, max_attempts: int = DEFAULT_MAX_ATTEMPTS,
                 api_key: Optional[str] = None):
        self.client = client
        self.interval = interval
        self.max_attempts = max_attempts
        self.api_key = api_key
        self.attempts = 0
        self._task: Optional[asyncio.Task] = None
        self._task_id: Optional[str] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def task_id(self) -> Optional[str]:
        return self._task_id if self.running else None

    def start(self, task: ModelTask, on_update: Callable[[ModelTask], None],
              api_key: Optional[str] = None) -> asyncio.Task:
        if self.running and self._task_id == task.task_id:
            return self._task
        self.cancel()
        self._task_id = task.task_id
        self.attempts = 0
        logger.info(f"Polling model task {task.task_id} every {self.interval}s")
        self._task = asyncio.create_task(self._run(task.task_id, on_update, api_key or self.api_key))
        return self._task

    async def _run(self, task_id: str, on_update: Callable[[ModelTask], None],
                   api_key: Optional[str]) -> ModelTask:
        while True:
            await asyncio.sleep(self.interval)
            self.attempts += 1
            try:
                result = await self.client.check_status(task_id, api_key=api_key)
            except ProviderError as e:
                logger.error(f"Status check for model task {task_id} failed: {e.message}")
                result = _failed(task_id, e)

            if result.is_terminal:
                logger.info(f"Model task {task_id} finished as {result.status.value} after {self.attempts} checks")
                on_update(result)
                return result

            if self.max_attempts and self.attempts >= self.max_attempts:
                logger.error(f"Model task {task_id} still processing after {self.attempts} checks, giving up")
                result = _failed(task_id, TaskFailed(f"Model generation timed out after {self.attempts} status checks"))
                on_update(result)
                return result

            logger.info(f"Model task {task_id} still processing (check {self.attempts})")

    def cancel(self) -> None:
        if self._task is not None and not self._task.done():
            logger.info(f"Cancelling poll for model task {self._task_id}")
            self._task.cancel()
        self._task = None
        self._task_id = None

    async def wait(self) -> Optional[ModelTask]:
        """Wait for the current poll; None when there is none or it was cancelled."""
        task = self._task
        if task is None:
            return None
        await asyncio.wait({task})
        if task.cancelled():
            return None
        return task.result()
