"""产物定位：对比下载前后的目录列表，找出子进程生成的文件。"""

import asyncio
from pathlib import Path
from typing import Iterable, Optional
from loguru import logger

# yt-dlp 分片/临时文件特征
TRANSIENT_SUFFIXES = (".part", ".temp", ".ytdl", ".f625", ".f625.mp4")
TRANSIENT_MARKERS = (".part-Frag",)
TRANSIENT_PREFIXES = ("tmp_",)


def is_transient(name: str) -> bool:
    """判断文件名是否为下载过程中的临时文件。"""
    return (
        name.endswith(TRANSIENT_SUFFIXES)
        or any(marker in name for marker in TRANSIENT_MARKERS)
        or name.startswith(TRANSIENT_PREFIXES)
    )


def new_candidates(
    before: Iterable[str],
    after: Iterable[str],
    job_tag: Optional[str] = None,
) -> list[str]:
    """
    计算下载后新增且非临时的文件名。

    参数：
        before: 下载前的目录列表
        after: 下载后的目录列表
        job_tag: 若给出，只保留文件名中包含该标记的条目

    返回：
        候选文件名列表
    """
    existing = set(before)
    return [
        name for name in after
        if name not in existing
        and not is_transient(name)
        and (not job_tag or job_tag in name)
    ]


class ArtifactResolver:
    """
    基于目录差异推断产物文件。

    共享目录中若有多个任务在两次快照之间同时写入，纯目录差异可能认错文件；
    传入 job_tag（文件名中嵌入任务 ID）时只认带标记的文件。
    """

    def __init__(self, output_dir: Path, retry_delay: float = 1.0):
        """
        初始化产物定位器。

        参数：
            output_dir: 共享下载目录
            retry_delay: 仅发现临时文件时，重新扫描前的等待秒数
        """
        self.output_dir = Path(output_dir)
        self.retry_delay = retry_delay

    def snapshot(self) -> frozenset[str]:
        """返回当前目录中的文件名集合。"""
        return frozenset(p.name for p in self.output_dir.iterdir())

    def _newest(self, names: list[str]) -> Optional[Path]:
        """返回修改时间最新的文件路径，列表为空时返回 None。"""
        newest: Optional[Path] = None
        newest_mtime = float("-inf")
        for name in names:
            path = self.output_dir / name
            try:
                mtime = path.stat().st_mtime
            except FileNotFoundError:
                # 两次扫描之间被移除（例如合并后删除的中间文件）
                continue
            if mtime > newest_mtime:
                newest, newest_mtime = path, mtime
        return newest

    async def resolve(
        self,
        before: frozenset[str],
        job_tag: Optional[str] = None,
    ) -> Optional[Path]:
        """
        在子进程成功退出后定位产物。

        首次差异为空时等待 retry_delay 后再扫描一次；仍为空则返回 None。
        """
        candidates = new_candidates(before, self.snapshot(), job_tag)
        if not candidates:
            logger.debug(f"未发现新文件，{self.retry_delay}s 后重新扫描 {self.output_dir}")
            await asyncio.sleep(self.retry_delay)
            candidates = new_candidates(before, self.snapshot(), job_tag)

        artifact = self._newest(candidates)
        if artifact is None:
            logger.warning(f"未能定位产物文件 dir={self.output_dir} tag={job_tag}")
        return artifact
