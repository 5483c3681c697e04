"""任务数据模型，定义 Job 记录及相关枚举。"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field


class JobStatus(str, Enum):
    """任务处理状态枚举。"""
    PENDING = "pending"
    DOWNLOADING = "downloading"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        """是否为终态（completed / failed）。"""
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


# 状态只允许向前推进
STATUS_ORDER = {
    JobStatus.PENDING: 0,
    JobStatus.DOWNLOADING: 1,
    JobStatus.COMPLETED: 2,
    JobStatus.FAILED: 2,
}


class MediaKind(str, Enum):
    """媒体类型。"""
    VIDEO = "video"
    AUDIO = "audio"


class Quality(str, Enum):
    """画质选项。"""
    AUTO = "auto"
    HIGHEST = "highest"
    LOWEST = "lowest"
    P144 = "144p"
    P360 = "360p"
    P720 = "720p"
    P1080 = "1080p"
    P4K = "4k"


class MediaFormat(str, Enum):
    """输出容器 / 音频格式。"""
    MP4 = "mp4"
    WEBM = "webm"
    MP3 = "mp3"
    M4A = "m4a"
    AVI = "avi"
    MOV = "mov"


def _new_job_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Job(BaseModel):
    """单个 URL 的下载任务记录。"""

    id: str = Field(default_factory=_new_job_id, description="任务 ID")
    url: str = Field(description="媒体来源 URL")
    media_kind: MediaKind = Field(description="媒体类型")
    quality: Quality = Field(default=Quality.HIGHEST, description="画质")
    format: MediaFormat = Field(default=MediaFormat.MP4, description="输出格式")

    # 元数据，探测完成后写入
    title: str = ""
    duration_text: str = ""
    thumbnail_url: str = ""

    status: JobStatus = Field(default=JobStatus.PENDING, description="任务状态")
    progress: int = Field(default=0, ge=0, le=100, description="处理进度（0-100）")

    # 产出
    artifact_path: Optional[str] = Field(default=None, description="产物路径，仅完成时设置")
    error_message: Optional[str] = Field(default=None, description="错误信息，仅失败时设置")

    created_at: datetime = Field(default_factory=_utcnow)
    completed_at: Optional[datetime] = None
