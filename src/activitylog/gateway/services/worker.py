"""DeliveryWorkerPool -- 持久化队列的 asyncio worker 池

N 个 worker 轮询 claim_next 并交给 Dispatcher 处理。
领取即提交（租约生效）；处理中崩溃的任务在租约到期后被重新领取。
"""

import asyncio

import aiosqlite
import structlog
from activitylog.core.config import ActivityLogConfig
from activitylog.core.models import DispatchStatus
from activitylog.core.store import write_transaction
from activitylog.core.store.protocols import DeliveryQueue

from .dispatcher import NotificationDispatcher

log = structlog.get_logger()


class DeliveryWorkerPool:
    """投递 worker 池"""

    def __init__(
        self,
        queue: DeliveryQueue,
        dispatcher: NotificationDispatcher,
        conn: aiosqlite.Connection,
        config: ActivityLogConfig,
    ) -> None:
        self._queue = queue
        self._dispatcher = dispatcher
        self._conn = conn
        self._config = config
        self._workers: list[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return any(not worker.done() for worker in self._workers)

    async def start(self) -> None:
        """启动 worker_concurrency 个 worker（重复调用无副作用）"""
        if self.running:
            return
        self._workers = [
            asyncio.create_task(self._run(f"delivery-worker-{i}"))
            for i in range(self._config.worker_concurrency)
        ]
        log.info(
            "delivery_workers_started",
            concurrency=self._config.worker_concurrency,
            queue_name=self._config.queue_name,
        )

    async def stop(self) -> None:
        """取消所有 worker 并等待退出"""
        for worker in self._workers:
            worker.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        log.info("delivery_workers_stopped")

    async def run_once(self, worker_name: str = "delivery-worker") -> DispatchStatus | None:
        """领取并处理一个任务

        Returns:
            处理结果；队列为空时返回 None
        """
        async with write_transaction(self._conn):
            task = await self._queue.claim_next(
                self._config.queue_connection,
                self._config.queue_name,
                self._config.worker_lease_s,
            )

        if task is None:
            return None

        log.debug(
            "delivery_task_claimed",
            worker=worker_name,
            task_id=task.task_id,
            activity_id=task.activity_id,
            attempts=task.attempts,
        )
        return await self._dispatcher.process(task)

    async def _run(self, worker_name: str) -> None:
        while True:
            try:
                status = await self.run_once(worker_name)
            except asyncio.CancelledError:
                raise
            except Exception:
                log.exception("delivery_worker_error", worker=worker_name)
                status = None

            if status is None:
                await asyncio.sleep(self._config.worker_poll_interval_s)
