"""进度解析：从 yt-dlp 输出行中提取百分比并映射到全局进度区间。"""

import math
import re
from typing import AsyncIterable, AsyncIterator, Optional

# [download]  45.2% of 100.00MiB at  2.00MiB/s ETA 00:05
PROGRESS_RE = re.compile(r"\[download\]\s+(\d+(?:\.\d+)?)%")

_ANSI_RE = re.compile(r"\x1b\[[0-9;]*m")

# 0-20 留给元数据阶段，95-100 留给后处理与产物定位
DOWNLOAD_RANGE_START = 20
DOWNLOAD_RANGE_SPAN = 75


def parse_percent(line: str) -> Optional[float]:
    """返回行内的下载百分比，未匹配时返回 None。"""
    match = PROGRESS_RE.search(_ANSI_RE.sub("", line))
    if not match:
        return None
    return float(match.group(1))


def to_global_progress(raw: float) -> int:
    """将 0-100 的原始百分比映射到 20-95 的全局进度（四舍五入）。"""
    raw = max(0.0, min(100.0, raw))
    return int(math.floor(DOWNLOAD_RANGE_START + raw * DOWNLOAD_RANGE_SPAN / 100 + 0.5))


class ProgressParser:
    """
    将子进程输出行流转换为全局进度值流。

    每次调用 parse() 都是独立的惰性序列，不在不同子进程之间保留状态。
    未匹配的行直接忽略。
    """

    async def parse(self, lines: AsyncIterable[str]) -> AsyncIterator[int]:
        """逐行扫描百分比，产出映射后的全局进度。"""
        async for line in lines:
            raw = parse_percent(line)
            if raw is not None:
                yield to_global_progress(raw)
