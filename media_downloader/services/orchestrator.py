"""下载编排器：批量受理请求，为每个任务启动独立流水线，并提供查询接口。"""

import asyncio
from typing import Optional
from loguru import logger

from media_downloader.config import Settings
from media_downloader.models.job import Job, JobStatus
from media_downloader.schemas.job import DownloadRequest
from media_downloader.services.pipeline import Pipeline
from media_downloader.services.registry import JobRegistry
from media_downloader.workers.queue import Publisher


class Orchestrator:
    """
    组合注册表、发布通道与流水线。

    每个任务的流水线作为独立的 asyncio Task 运行，互不阻塞；
    同时运行的 yt-dlp 进程数量没有上限。
    """

    def __init__(self, registry: JobRegistry, publisher: Publisher, settings: Settings):
        self.registry = registry
        self.publisher = publisher
        self.settings = settings
        self._tasks: set[asyncio.Task] = set()

    async def submit(self, request: DownloadRequest) -> list[Job]:
        """
        为请求中的每个 URL 创建一个 pending 任务，并在后台启动其流水线。

        参数：
            request: 批量下载请求

        返回：
            新建任务的快照列表（均为 pending），与 URL 一一对应
        """
        jobs = []
        for url in request.urls:
            job = self.registry.add(Job(
                url=url,
                media_kind=request.media_kind,
                quality=request.quality,
                format=request.format,
            ))
            self.publisher.publish(job)
            jobs.append(job)
            logger.info(f"任务已创建 job_id={job.id} url={url}")
            self._start(job.id)
        return jobs

    def _start(self, job_id: str) -> None:
        """以独立 asyncio Task 启动任务流水线。"""
        pipeline = self.create_pipeline(job_id)
        task = asyncio.create_task(pipeline.run(), name=f"job-{job_id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def create_pipeline(self, job_id: str) -> Pipeline:
        """创建任务流水线，测试中可覆盖以注入替身。"""
        return Pipeline(job_id, self.registry, self.publisher, self.settings)

    def get_job(self, job_id: str) -> Optional[Job]:
        """按 ID 查询任务快照，不存在时返回 None。"""
        return self.registry.get(job_id)

    def list_jobs(self, status: Optional[JobStatus] = None) -> list[Job]:
        """返回全部任务快照，可按状态过滤。"""
        return self.registry.list_jobs(status)

    @property
    def active_count(self) -> int:
        """仍在运行的流水线数量。"""
        return len(self._tasks)

    async def wait_idle(self) -> None:
        """等待当前所有流水线结束。"""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        """服务关闭时取消仍在运行的流水线，相关任务以 failed 结束。"""
        if not self._tasks:
            return
        logger.info(f"取消 {len(self._tasks)} 个运行中的任务...")
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*list(self._tasks), return_exceptions=True)
