"""yt-dlp 命令行参数构建（纯函数，无 I/O）。"""

from pathlib import Path
from typing import Optional

from media_downloader.models.job import MediaFormat, MediaKind, Quality

# 画质 → 视频格式选择器
QUALITY_SELECTORS = {
    Quality.HIGHEST: "bestvideo",
    Quality.P4K: "bestvideo[height<=2160]",
    Quality.P1080: "bestvideo[height<=1080]",
    Quality.P720: "bestvideo[height<=720]",
    Quality.P360: "bestvideo[height<=360]",
    Quality.P144: "worstvideo",
    Quality.LOWEST: "worstvideo",
}


def output_template(output_dir: Path, job_tag: Optional[str] = None) -> str:
    """返回 yt-dlp 输出模板：标题 + 原生扩展名，可选嵌入任务标记。"""
    name = "%(title)s.%(ext)s" if not job_tag else f"%(title)s.{job_tag}.%(ext)s"
    return str(Path(output_dir) / name)


def video_format_selector(quality: Quality) -> str:
    """根据画质构建视频+音频的格式选择器，未知画质回退为最佳。"""
    video = QUALITY_SELECTORS.get(quality, "bestvideo")
    return f"{video}+bestaudio/best"


def build_download_args(
    media_kind: MediaKind,
    quality: Quality,
    format: MediaFormat,
    output_dir: Path,
    url: str,
    job_tag: Optional[str] = None,
) -> list[str]:
    """
    构建下载用的 yt-dlp 参数列表（不含可执行文件本身）。

    参数：
        media_kind: 视频或音频
        quality: 画质
        format: 输出格式（视频为合并容器，音频为提取格式）
        output_dir: 共享下载目录
        url: 媒体 URL
        job_tag: 嵌入文件名的任务标记，None 时沿用纯标题命名

    返回：
        参数列表，相同输入始终得到相同结果
    """
    args = [
        "--no-playlist",
        "--newline",
        "--progress",
        "-o", output_template(output_dir, job_tag),
    ]

    fmt = MediaFormat(format).value
    if media_kind == MediaKind.AUDIO:
        # 0 = 最佳音质
        args += ["-x", "--audio-format", fmt, "--audio-quality", "0"]
    elif quality == Quality.HIGHEST:
        args += ["-f", "bestvideo+bestaudio/best", "--merge-output-format", fmt]
    else:
        args += ["-f", video_format_selector(quality), "--merge-output-format", fmt]

    args.append(url)
    return args


def build_probe_args(url: str) -> list[str]:
    """构建仅获取元数据（不下载）的 yt-dlp 参数列表。"""
    return ["--dump-json", "--no-playlist", url]
