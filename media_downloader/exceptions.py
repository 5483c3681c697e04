"""下载服务的异常类型。"""


class MediaDownloaderError(Exception):
    """所有服务内部异常的基类。"""


class ProbeError(MediaDownloaderError):
    """元数据探测失败：yt-dlp 非零退出或返回内容无法解析。"""


class SpawnError(MediaDownloaderError):
    """外部工具进程无法启动。"""


class DownloadError(MediaDownloaderError):
    """下载子进程以非零退出码结束。"""

    def __init__(self, message: str, returncode: int):
        super().__init__(message)
        self.returncode = returncode


class JobStateError(MediaDownloaderError):
    """非法的任务状态变更（状态倒退或终态后再变更）。"""
