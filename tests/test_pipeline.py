from __future__ import annotations

import asyncio
import json
import os
from pathlib import Path

import pytest

from media_downloader.config import Settings
from media_downloader.models.job import Job, JobStatus, MediaFormat, MediaKind, Quality
from media_downloader.services.pipeline import Pipeline
from media_downloader.services.registry import JobRegistry

from conftest import RecordingPublisher


def _run(settings: Settings, publisher: RecordingPublisher, **job_fields) -> Job:
    registry = JobRegistry()
    fields = {"url": "https://host/x", "media_kind": MediaKind.VIDEO, **job_fields}
    job = registry.add(Job(**fields))
    asyncio.run(Pipeline(job.id, registry, publisher, settings).run())
    return registry.get(job.id)


def _argv_calls(args_log: Path) -> list:
    return [json.loads(line) for line in args_log.read_text().splitlines()]


def test_successful_download_completes_with_artifact(
    settings: Settings, publisher: RecordingPublisher, downloads_dir: Path
) -> None:
    job = _run(settings, publisher, quality=Quality.P720, format=MediaFormat.MP4)

    assert job.status == JobStatus.COMPLETED
    assert job.progress == 100
    assert job.title == "Song"
    assert job.duration_text == "3:05"
    assert job.thumbnail_url == "https://img/x.jpg"
    assert job.completed_at is not None
    assert job.error_message is None
    assert job.artifact_path == f"/downloads/Song.{job.id}.mp4"
    assert (downloads_dir / f"Song.{job.id}.mp4").exists()


def test_publishes_ordered_snapshots_with_monotonic_progress(
    settings: Settings, publisher: RecordingPublisher, monkeypatch: pytest.MonkeyPatch
) -> None:
    # second stream restarts at 0% (separate audio download)
    monkeypatch.setenv("FAKE_YTDLP_PROGRESS", "0,60,100,0,50,100")

    _run(settings, publisher)

    statuses = [e.status for e in publisher.events]
    assert statuses[0] == JobStatus.PENDING
    assert statuses[-1] == JobStatus.COMPLETED
    assert statuses.count(JobStatus.COMPLETED) == 1
    downloading = [e.progress for e in publisher.events if e.status == JobStatus.DOWNLOADING]
    assert downloading[0] == 10
    assert downloading == sorted(downloading)
    assert max(downloading) == 95
    assert publisher.events[-1].progress == 100


def test_download_failure_keeps_diagnostic_text(
    settings: Settings, publisher: RecordingPublisher, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("FAKE_YTDLP_PROGRESS", "0,30")
    monkeypatch.setenv("FAKE_YTDLP_EXIT", "1")
    monkeypatch.setenv("FAKE_YTDLP_STDERR", "ERROR: network unreachable")

    job = _run(settings, publisher)

    assert job.status == JobStatus.FAILED
    assert "network unreachable" in job.error_message
    assert job.progress == 43
    assert job.artifact_path is None
    assert job.completed_at is None
    assert publisher.events[-1].status == JobStatus.FAILED


def test_probe_failure_aborts_before_download(
    settings: Settings,
    publisher: RecordingPublisher,
    monkeypatch: pytest.MonkeyPatch,
    args_log: Path,
) -> None:
    monkeypatch.setenv("FAKE_YTDLP_PROBE_EXIT", "2")

    job = _run(settings, publisher)

    assert job.status == JobStatus.FAILED
    assert "Unsupported URL" in job.error_message
    assert job.progress == 0
    calls = _argv_calls(args_log)
    assert len(calls) == 1
    assert "--dump-json" in calls[0]
    assert JobStatus.DOWNLOADING not in [e.status for e in publisher.events]


def test_unparsable_probe_output_fails_job(
    settings: Settings, publisher: RecordingPublisher, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("FAKE_YTDLP_PROBE_JSON", "<html>")

    job = _run(settings, publisher)

    assert job.status == JobStatus.FAILED
    assert "无法解析媒体信息" in job.error_message


def test_missing_executable_fails_job(
    settings: Settings, publisher: RecordingPublisher, tmp_path: Path
) -> None:
    broken = settings.model_copy(update={"ytdlp_command": str(tmp_path / "missing-yt-dlp")})

    job = _run(broken, publisher)

    assert job.status == JobStatus.FAILED
    assert "missing-yt-dlp" in job.error_message


def test_unresolved_artifact_still_completes(
    settings: Settings, publisher: RecordingPublisher, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("FAKE_YTDLP_NO_OUTPUT", "1")

    job = _run(settings, publisher)

    assert job.status == JobStatus.COMPLETED
    assert job.progress == 100
    assert job.artifact_path is None


def test_audio_request_invokes_extraction(
    settings: Settings, publisher: RecordingPublisher, args_log: Path
) -> None:
    job = _run(settings, publisher, media_kind=MediaKind.AUDIO, format=MediaFormat.MP3)

    download_argv = _argv_calls(args_log)[-1]
    assert "-x" in download_argv
    assert download_argv[download_argv.index("--audio-format") + 1] == "mp3"
    assert job.artifact_path.endswith(".mp3")


def test_untagged_naming_uses_plain_title(
    settings: Settings, publisher: RecordingPublisher
) -> None:
    untagged = settings.model_copy(update={"tag_artifacts_with_job_id": False})

    job = _run(untagged, publisher)

    assert job.artifact_path == "/downloads/Song.mp4"


def test_progress_publishes_can_be_throttled(
    settings: Settings, publisher: RecordingPublisher, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("FAKE_YTDLP_PROGRESS", ",".join(str(i) for i in range(0, 101, 5)))
    throttled = settings.model_copy(update={"progress_publish_interval": 60.0})

    job = _run(throttled, publisher)

    ticks = [e for e in publisher.events if e.status == JobStatus.DOWNLOADING]
    # "downloading" transition only; every tick falls inside the interval
    assert len(ticks) == 1
    assert job.status == JobStatus.COMPLETED
    assert publisher.events[-1].progress == 100


def test_job_timeout_fails_job(
    settings: Settings, publisher: RecordingPublisher
) -> None:
    class SlowProber:
        async def probe(self, url: str):
            await asyncio.sleep(10)

    registry = JobRegistry()
    job = registry.add(Job(url="https://host/x", media_kind=MediaKind.VIDEO))
    timed = settings.model_copy(update={"job_timeout_seconds": 0.05})

    asyncio.run(Pipeline(job.id, registry, publisher, timed, prober=SlowProber()).run())

    result = registry.get(job.id)
    assert result.status == JobStatus.FAILED
    assert "超时" in result.error_message


def _process_gone(pid: int) -> bool:
    # a killed but unreaped child still answers signal 0 as a zombie
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return True
    return False


@pytest.mark.parametrize(("hang", "expected_calls"), [("metadata", 1), ("download", 2)])
def test_timed_out_job_kills_and_reaps_its_child(
    settings: Settings,
    publisher: RecordingPublisher,
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
    hang: str,
    expected_calls: int,
) -> None:
    pid_file = tmp_path / "pids.txt"
    monkeypatch.setenv("FAKE_YTDLP_PID_FILE", str(pid_file))
    monkeypatch.setenv("FAKE_YTDLP_HANG", hang)
    timed = settings.model_copy(update={"job_timeout_seconds": 1.5})

    job = _run(timed, publisher)

    assert job.status == JobStatus.FAILED
    assert "超时" in job.error_message
    pids = [int(line) for line in pid_file.read_text().split()]
    assert len(pids) == expected_calls
    assert _process_gone(pids[-1])
