"""API 请求与响应 Schema。"""

from datetime import datetime
from typing import Optional
from urllib.parse import urlparse
from pydantic import BaseModel, Field, field_validator
from media_downloader.models.job import JobStatus, MediaFormat, MediaKind, Quality


class DownloadRequest(BaseModel):
    """批量创建下载任务的请求 Schema。"""

    urls: list[str] = Field(min_length=1)
    media_kind: MediaKind
    quality: Optional[Quality] = Quality.HIGHEST
    format: Optional[MediaFormat] = MediaFormat.MP4

    @field_validator("urls")
    @classmethod
    def validate_urls(cls, v: list[str]) -> list[str]:
        """验证每个 URL 都是 http(s) 地址。"""
        cleaned = []
        for url in v:
            url = url.strip()
            parsed = urlparse(url)
            if parsed.scheme not in ("http", "https") or not parsed.netloc:
                raise ValueError(f"无效的 URL: {url!r}")
            cleaned.append(url)
        return cleaned

    @field_validator("quality")
    @classmethod
    def default_quality(cls, v: Optional[Quality]) -> Quality:
        """未指定画质时使用 highest。"""
        return v or Quality.HIGHEST

    @field_validator("format")
    @classmethod
    def default_format(cls, v: Optional[MediaFormat]) -> MediaFormat:
        """未指定格式时使用 mp4。"""
        return v or MediaFormat.MP4


class JobResponse(BaseModel):
    """任务快照响应 Schema，同时作为推送给订阅者的事件内容。"""

    id: str
    url: str
    media_kind: MediaKind
    quality: Quality
    format: MediaFormat
    title: str
    duration_text: str
    thumbnail_url: str
    status: JobStatus
    progress: int
    artifact_path: Optional[str]
    error_message: Optional[str]
    created_at: datetime
    completed_at: Optional[datetime]

    model_config = {"from_attributes": True}
