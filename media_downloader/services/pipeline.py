"""单个下载任务的处理流水线：pending → downloading → completed / failed。"""

import asyncio
import re
import time
from datetime import datetime, timezone
from typing import Optional
from loguru import logger

from media_downloader.config import Settings
from media_downloader.exceptions import DownloadError
from media_downloader.models.job import JobStatus
from media_downloader.services.arguments import build_download_args
from media_downloader.services.artifacts import ArtifactResolver
from media_downloader.services.downloader import DownloadProcess, MetadataProber
from media_downloader.services.progress import ProgressParser
from media_downloader.services.registry import JobRegistry
from media_downloader.workers.queue import Publisher

_ANSI_RE = re.compile(r"\x1b\[[0-9;]*m")


class Pipeline:
    """
    单个 URL 的下载流水线。

    阶段与进度区间：
    1. 获取元数据 (0-10%)
    2. 下载 (20-95%，由 yt-dlp 输出映射)
    3. 定位产物 (95-100%)

    所有异常都在 run() 中转换为 failed 终态，不会影响其他任务。
    """

    def __init__(
        self,
        job_id: str,
        registry: JobRegistry,
        publisher: Publisher,
        settings: Settings,
        prober: Optional[MetadataProber] = None,
        parser: Optional[ProgressParser] = None,
        resolver: Optional[ArtifactResolver] = None,
    ):
        """
        初始化流水线。

        参数：
            job_id: 任务 ID
            registry: 任务注册表
            publisher: 快照发布通道
            settings: 应用配置
            prober / parser / resolver: 可替换的子步骤，默认按配置创建
        """
        self.job_id = job_id
        self.registry = registry
        self.publisher = publisher
        self.settings = settings
        self.output_dir = settings.downloads_path
        self.prober = prober or MetadataProber(settings.ytdlp_argv)
        self.parser = parser or ProgressParser()
        self.resolver = resolver or ArtifactResolver(
            self.output_dir, settings.artifact_retry_delay
        )
        self._last_publish = 0.0

    async def run(self) -> None:
        """执行完整流水线，自动捕获异常并更新任务状态。"""
        try:
            await asyncio.wait_for(self._execute(), timeout=self.settings.job_timeout_seconds)
        except asyncio.TimeoutError:
            logger.error(f"流水线超时 job_id={self.job_id}")
            self._fail(f"任务超时（超过 {self.settings.job_timeout_seconds} 秒），已自动终止")
        except asyncio.CancelledError:
            self._fail("任务被取消")
            raise
        except Exception as e:
            logger.exception(f"流水线执行失败 job_id={self.job_id}: {e}")
            self._fail(_ANSI_RE.sub("", str(e)) or e.__class__.__name__)

    async def _execute(self) -> None:
        """执行所有流水线阶段。"""
        job = self.registry.get(self.job_id)
        if not job:
            raise ValueError(f"任务 {self.job_id} 不存在")

        self.output_dir.mkdir(parents=True, exist_ok=True)

        # ── 阶段 1：获取元数据 ────────────────────────────────
        metadata = await self.prober.probe(job.url)
        self._update(
            title=metadata.title,
            duration_text=metadata.duration_text,
            thumbnail_url=metadata.thumbnail_url,
        )

        # ── 阶段 2：下载 ────────────────────────────────
        self._update(status=JobStatus.DOWNLOADING, progress=10)

        before = self.resolver.snapshot()
        job_tag = job.id if self.settings.tag_artifacts_with_job_id else None
        args = build_download_args(
            job.media_kind, job.quality, job.format, self.output_dir, job.url, job_tag
        )

        process = DownloadProcess(
            self.settings.ytdlp_argv, args, self.settings.progress_queue_size
        )
        await process.start()
        logger.info(f"开始下载 job_id={self.job_id}: {job.url}")
        try:
            async for progress in self.parser.parse(process.lines()):
                self._tick(progress)
            returncode = await process.wait()
        finally:
            await process.terminate()

        if returncode != 0:
            detail = process.diagnostics or f"yt-dlp 退出码 {returncode}"
            raise DownloadError(f"下载失败: {detail}", returncode)

        # ── 阶段 3：定位产物 ────────────────────────────────
        artifact = await self.resolver.resolve(before, job_tag)
        artifact_path = None
        if artifact is not None:
            artifact_path = f"{self.settings.artifact_url_prefix.rstrip('/')}/{artifact.name}"

        self._update(
            status=JobStatus.COMPLETED,
            progress=100,
            completed_at=datetime.now(timezone.utc),
            artifact_path=artifact_path,
        )
        logger.info(f"流水线完成 job_id={self.job_id}, artifact={artifact_path}")

    def _tick(self, progress: int) -> None:
        """记录一次进度；配置了推送间隔时合并过于频繁的推送。"""
        interval = self.settings.progress_publish_interval
        now = time.monotonic()
        publish = interval <= 0 or now - self._last_publish >= interval
        self._update(publish=publish, progress=progress)

    def _update(self, publish: bool = True, **changes) -> None:
        """更新注册表中的任务，并发布快照。"""
        job = self.registry.update(self.job_id, **changes)
        if publish:
            self._last_publish = time.monotonic()
            self.publisher.publish(job)

    def _fail(self, error: str) -> None:
        """将任务置为 failed，进度保持不变。已处于终态时不做任何事。"""
        job = self.registry.get(self.job_id)
        if job is None or job.status.is_terminal:
            return
        self._update(status=JobStatus.FAILED, error_message=error)
