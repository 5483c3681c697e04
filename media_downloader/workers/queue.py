"""任务快照发布/订阅管理器。"""

import asyncio
from typing import AsyncGenerator, Callable, Optional, Protocol
from collections import defaultdict
from loguru import logger

from media_downloader.models.job import Job
from media_downloader.schemas.job import JobResponse

# 订阅全部任务时使用的键
ALL_JOBS = "*"

TERMINAL_STATUSES = ("completed", "failed")


class Publisher(Protocol):
    """编排器依赖的发布接口：即发即忘，不得阻塞流水线。"""

    def publish(self, job: Job) -> None: ...


def job_event(job: Job) -> dict:
    """将任务快照转换为可 JSON 序列化的事件。"""
    return {"type": "job-update", **JobResponse.model_validate(job).model_dump(mode="json")}


class EventQueue:
    """管理任务快照事件队列，支持按任务或订阅全部任务，多订阅者。"""

    def __init__(self, maxsize: int = 100, heartbeat: float = 30.0):
        """
        初始化事件队列管理器。

        参数：
            maxsize: 每个订阅者队列的容量
            heartbeat: 空闲多少秒后产出一次 ping 事件
        """
        self.maxsize = maxsize
        self.heartbeat = heartbeat
        self._queues: dict[str, list[asyncio.Queue]] = defaultdict(list)

    def subscribe(self, job_id: Optional[str] = None) -> asyncio.Queue:
        """为指定任务（None 表示全部任务）创建并注册一个事件队列。"""
        key = job_id or ALL_JOBS
        q: asyncio.Queue = asyncio.Queue(maxsize=self.maxsize)
        self._queues[key].append(q)
        logger.debug(f"新订阅者注册 key={key}, 当前订阅数={len(self._queues[key])}")
        return q

    def unsubscribe(self, job_id: Optional[str], q: asyncio.Queue) -> None:
        """取消订阅，从队列列表中移除。"""
        key = job_id or ALL_JOBS
        if key in self._queues and q in self._queues[key]:
            self._queues[key].remove(q)
            if not self._queues[key]:
                del self._queues[key]
            logger.debug(f"订阅者取消注册 key={key}")

    def subscriber_count(self, job_id: Optional[str] = None) -> int:
        """返回指定任务（None 表示全部任务）的订阅者数量。"""
        return len(self._queues.get(job_id or ALL_JOBS, []))

    def publish(self, job: Job) -> None:
        """向该任务的订阅者及全部任务订阅者推送快照，队列已满时丢弃。"""
        event = job_event(job)
        for key in (job.id, ALL_JOBS):
            for q in list(self._queues.get(key, [])):
                try:
                    q.put_nowait(event)
                except asyncio.QueueFull:
                    logger.warning(f"事件队列已满，跳过 key={key} job_id={job.id}")

    async def stream(
        self,
        job_id: Optional[str] = None,
        snapshot: Optional[Callable[[], Optional[Job]]] = None,
    ) -> AsyncGenerator[dict, None]:
        """
        生成器：持续产出事件，空闲时发送心跳。

        订阅单个任务时，在收到终态快照后结束；订阅全部任务时不会自行结束。

        参数：
            job_id: 任务 ID，None 表示订阅全部任务
            snapshot: 注册订阅后调用，返回的当前快照会先行产出，
                避免订阅前已发生的状态变更被遗漏
        """
        q = self.subscribe(job_id)
        try:
            current = snapshot() if snapshot else None
            if current is not None:
                event = job_event(current)
                yield event
                if job_id and event.get("status") in TERMINAL_STATUSES:
                    return
            while True:
                try:
                    event = await asyncio.wait_for(q.get(), timeout=self.heartbeat)
                except asyncio.TimeoutError:
                    yield {"type": "ping"}
                    continue
                yield event
                if job_id and event.get("status") in TERMINAL_STATUSES:
                    break
        finally:
            self.unsubscribe(job_id, q)
