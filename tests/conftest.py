from __future__ import annotations

import sys
from pathlib import Path

import pytest

from media_downloader.config import Settings
from media_downloader.models.job import Job

FAKE_YTDLP = Path(__file__).with_name("fake_ytdlp.py")

_FAKE_ENV = (
    "FAKE_YTDLP_PROBE_EXIT",
    "FAKE_YTDLP_PROBE_JSON",
    "FAKE_YTDLP_EXIT",
    "FAKE_YTDLP_STDERR",
    "FAKE_YTDLP_PROGRESS",
    "FAKE_YTDLP_NO_OUTPUT",
    "FAKE_YTDLP_ARGS_LOG",
    "FAKE_YTDLP_PID_FILE",
    "FAKE_YTDLP_HANG",
)


class RecordingPublisher:
    def __init__(self) -> None:
        self.events: list[Job] = []

    def publish(self, job: Job) -> None:
        self.events.append(job)

    def for_job(self, job_id: str) -> list[Job]:
        return [job for job in self.events if job.id == job_id]


@pytest.fixture(autouse=True)
def _clean_fake_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _FAKE_ENV:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def downloads_dir(tmp_path: Path) -> Path:
    path = tmp_path / "downloads"
    path.mkdir()
    return path


@pytest.fixture
def settings(downloads_dir: Path) -> Settings:
    return Settings(
        downloads_dir=str(downloads_dir),
        ytdlp_command=f'"{sys.executable}" "{FAKE_YTDLP}"',
        artifact_retry_delay=0.01,
        sse_heartbeat_seconds=0.05,
    )


@pytest.fixture
def publisher() -> RecordingPublisher:
    return RecordingPublisher()


@pytest.fixture
def args_log(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    path = tmp_path / "argv.jsonl"
    monkeypatch.setenv("FAKE_YTDLP_ARGS_LOG", str(path))
    return path
