"""应用配置模块，使用 Pydantic Settings 管理环境变量。"""

import shlex
from pathlib import Path
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """全局应用配置，从 .env 文件或环境变量读取。"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # 应用配置
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    debug: bool = False
    log_level: str = "INFO"

    # 共享下载目录（所有任务写入同一目录）
    downloads_dir: str = "downloads"

    # yt-dlp 命令行（按 shell 规则拆分，可写成 "python -m yt_dlp"）
    ytdlp_command: str = "yt-dlp"

    # 文件服务对外暴露的前缀，artifact_path = 前缀 + "/" + 文件名
    artifact_url_prefix: str = "/downloads"

    # 仅发现临时文件时，重新扫描目录前的等待时间（秒）
    artifact_retry_delay: float = 1.0

    # 在输出文件名中嵌入任务 ID，避免并发任务互相误认产物
    tag_artifacts_with_job_id: bool = True

    # 子进程输出行 → 进度解析器之间的有界队列容量
    progress_queue_size: int = 100

    # 进度推送最小间隔（秒），0 表示每次解析都推送
    progress_publish_interval: float = 0.0

    # 每个订阅者的事件队列容量
    event_queue_size: int = 100

    # SSE 空闲心跳间隔（秒）
    sse_heartbeat_seconds: float = 30.0

    # 单个任务最长运行时间（秒）
    job_timeout_seconds: int = 4 * 3600

    # CORS 允许来源（逗号分隔）
    cors_origins: str = "*"

    @property
    def downloads_path(self) -> Path:
        """返回共享下载目录的 Path 对象。"""
        return Path(self.downloads_dir)

    @property
    def ytdlp_argv(self) -> list[str]:
        """将 yt-dlp 命令字符串拆分为参数列表。"""
        return shlex.split(self.ytdlp_command)

    @property
    def cors_origins_list(self) -> list[str]:
        """将 CORS 来源字符串解析为列表。"""
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]


settings = Settings()
