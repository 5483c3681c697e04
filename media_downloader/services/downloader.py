"""yt-dlp 子进程封装：元数据探测与下载进程管理。"""

import asyncio
import json
import math
from dataclasses import dataclass
from typing import AsyncIterator, Optional
from loguru import logger

from media_downloader.exceptions import ProbeError, SpawnError
from media_downloader.services.arguments import build_probe_args


@dataclass(frozen=True)
class MediaMetadata:
    """探测得到的媒体信息。"""

    title: str
    duration_text: str
    thumbnail_url: str


def format_duration(seconds: int) -> str:
    """将秒数格式化为 H:MM:SS（有小时）或 M:SS。"""
    hours = seconds // 3600
    minutes = (seconds % 3600) // 60
    secs = seconds % 60
    if hours > 0:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"


def parse_metadata(raw: str) -> MediaMetadata:
    """
    解析 yt-dlp --dump-json 的输出。

    参数：
        raw: 子进程的完整标准输出

    返回：
        MediaMetadata

    异常：
        ProbeError: 输出不是预期的 JSON 对象
    """
    try:
        info = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ProbeError(f"无法解析媒体信息: {e}") from e
    if not isinstance(info, dict):
        raise ProbeError("无法解析媒体信息: 返回内容不是 JSON 对象")

    duration = info.get("duration")
    duration_text = ""
    if duration:
        try:
            duration_text = format_duration(int(math.floor(float(duration))))
        except (TypeError, ValueError):
            logger.warning(f"无法识别的时长字段: {duration!r}")

    return MediaMetadata(
        title=info.get("title") or "Unknown",
        duration_text=duration_text,
        thumbnail_url=info.get("thumbnail") or "",
    )


async def spawn(argv: list[str], **kwargs) -> asyncio.subprocess.Process:
    """启动子进程，启动失败统一转换为 SpawnError。"""
    try:
        return await asyncio.create_subprocess_exec(
            *argv,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            **kwargs,
        )
    except OSError as e:
        raise SpawnError(f"无法启动 {argv[0]}: {e}") from e


async def terminate(proc: asyncio.subprocess.Process) -> None:
    """结束仍在运行的子进程并回收，避免遗留孤儿进程。"""
    if proc.returncode is None:
        try:
            proc.kill()
        except ProcessLookupError:
            pass
    await proc.wait()


class MetadataProber:
    """以仅获取信息模式调用 yt-dlp，不下载任何文件。"""

    def __init__(self, command: list[str]):
        """
        初始化探测器。

        参数：
            command: yt-dlp 命令（可执行文件及其前置参数）
        """
        self.command = command

    async def probe(self, url: str) -> MediaMetadata:
        """
        获取 URL 对应的标题、时长与缩略图。

        进程结束后一次性解析其全部标准输出。
        """
        proc = await spawn([*self.command, *build_probe_args(url)])
        try:
            stdout, stderr = await proc.communicate()
        finally:
            # 超时或取消时 communicate() 不会结束子进程
            await terminate(proc)

        if proc.returncode != 0:
            err = stderr.decode("utf-8", errors="replace").strip()
            raise ProbeError(f"获取媒体信息失败: {err}")

        metadata = parse_metadata(stdout.decode("utf-8", errors="replace"))
        logger.info(f"媒体信息获取完成: {metadata.title} ({metadata.duration_text})")
        return metadata


class DownloadProcess:
    """
    单次下载的 yt-dlp 子进程。

    stdout 与 stderr 由两个读取任务并发读取，逐行写入有界队列；
    消费方通过 lines() 异步迭代。stderr 内容另行保留，作为失败时的诊断信息。
    """

    _EOF = None

    def __init__(self, command: list[str], args: list[str], queue_size: int = 100):
        self.argv = [*command, *args]
        self._queue: asyncio.Queue[Optional[str]] = asyncio.Queue(maxsize=queue_size)
        self._diagnostics: list[str] = []
        self._proc: Optional[asyncio.subprocess.Process] = None
        self._readers: list[asyncio.Task] = []

    @property
    def diagnostics(self) -> str:
        """已捕获的 stderr 文本。"""
        return "\n".join(self._diagnostics)

    async def start(self) -> None:
        """启动子进程及两个输出读取任务。"""
        self._proc = await spawn(self.argv)
        self._readers = [
            asyncio.create_task(self._pump(self._proc.stdout, capture=False)),
            asyncio.create_task(self._pump(self._proc.stderr, capture=True)),
        ]

    async def _pump(self, stream: asyncio.StreamReader, capture: bool) -> None:
        """逐行读取一个输出流写入队列，结束时写入 EOF 标记。"""
        while True:
            try:
                line_bytes = await stream.readline()
            except ValueError:
                # 超长行已被 StreamReader 丢弃，继续读取后续内容
                logger.warning("子进程输出行过长，已跳过")
                continue
            if not line_bytes:
                break
            line = line_bytes.decode("utf-8", errors="replace").rstrip()
            if capture and line:
                self._diagnostics.append(line)
            await self._queue.put(line)
        await self._queue.put(self._EOF)

    async def lines(self) -> AsyncIterator[str]:
        """按到达顺序产出子进程输出行，直到两个输出流都结束。"""
        open_streams = len(self._readers)
        while open_streams:
            line = await self._queue.get()
            if line is self._EOF:
                open_streams -= 1
                continue
            yield line

    async def wait(self) -> int:
        """等待读取任务与子进程结束，返回退出码。"""
        if self._proc is None:
            raise RuntimeError("进程尚未启动")
        await asyncio.gather(*self._readers)
        return await self._proc.wait()

    async def terminate(self) -> None:
        """强制结束仍在运行的子进程，停止读取任务并回收进程。"""
        for task in self._readers:
            task.cancel()
        await asyncio.gather(*self._readers, return_exceptions=True)
        if self._proc is not None:
            await terminate(self._proc)
