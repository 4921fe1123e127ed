"""Tests for the processing service, Celery task base and retry policy."""

import sys
import uuid
from unittest.mock import AsyncMock, MagicMock

# Mock celery_app before importing transcoding modules
sys.modules["hlsvault.core.celery_app"] = MagicMock()

import pytest
from hypothesis import given, settings, strategies as st

from hlsvault.modules.transcoding import tasks
from hlsvault.modules.transcoding.models import AssetStatus, MediaAsset
from hlsvault.modules.transcoding.repository import InvalidTransitionError
from hlsvault.modules.transcoding.schemas import ProcessingResult
from hlsvault.modules.transcoding.service import AssetNotFoundError, MediaProcessingService
from hlsvault.modules.transcoding.tasks import (
    PROCESS_VIDEO_RETRY_CONFIG,
    ProcessVideoTask,
    RetryConfig,
)

from conftest import standard_profile


def make_asset(status: AssetStatus) -> MediaAsset:
    return MediaAsset(id=uuid.uuid4(), title="Demo", source_path="/uploads/demo.mp4", status=status)


def make_service(asset=None) -> MediaProcessingService:
    pipeline = MagicMock()
    pipeline.profile = standard_profile()
    pipeline.output_root = "/srv/hls"
    pipeline.thumbnail_root = "/srv/thumbs"
    pipeline.run = AsyncMock(
        side_effect=lambda a: ProcessingResult(asset_id=a.id, status=AssetStatus.COMPLETED, tracks=["360p"])
    )
    service = MediaProcessingService(MagicMock(), pipeline=pipeline)
    service.repo.get_by_id = AsyncMock(return_value=asset)
    return service


class TestMediaProcessingService:

    @pytest.mark.asyncio
    async def test_process_runs_pipeline(self) -> None:
        asset = make_asset(AssetStatus.UPLOADED)
        service = make_service(asset)

        result = await service.process(asset.id)

        assert result.status == AssetStatus.COMPLETED
        service.pipeline.run.assert_awaited_once_with(asset)

    @pytest.mark.asyncio
    async def test_unknown_asset(self) -> None:
        service = make_service(None)
        with pytest.raises(AssetNotFoundError):
            await service.process(uuid.uuid4())

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [AssetStatus.FAILED, AssetStatus.COMPLETED])
    async def test_reprocess_inline_from_terminal_status(self, status: AssetStatus) -> None:
        asset = make_asset(status)
        service = make_service(asset)

        result = await service.reprocess(asset.id, dispatch=False)

        assert result.status == AssetStatus.COMPLETED
        service.pipeline.run.assert_awaited_once_with(asset)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [AssetStatus.UPLOADING, AssetStatus.UPLOADED, AssetStatus.PROCESSING])
    async def test_reprocess_rejects_non_terminal_status(self, status: AssetStatus) -> None:
        asset = make_asset(status)
        service = make_service(asset)

        with pytest.raises(InvalidTransitionError):
            await service.reprocess(asset.id, dispatch=False)
        service.pipeline.run.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_reprocess_dispatches_task(self, monkeypatch) -> None:
        asset = make_asset(AssetStatus.FAILED)
        service = make_service(asset)
        task = MagicMock()
        task.delay.return_value.id = "task-1"
        monkeypatch.setattr("hlsvault.modules.transcoding.service.process_video_task", task)

        result = await service.reprocess(asset.id)

        assert result is None
        task.delay.assert_called_once_with(str(asset.id))
        service.pipeline.run.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_get_status(self) -> None:
        asset = make_asset(AssetStatus.COMPLETED)
        asset.tracks = ["audio_128k", "360p"]
        asset.manifest_path = "/srv/hls/x/master.m3u8"
        service = make_service(asset)

        status = await service.get_status(asset.id)

        assert status.id == asset.id
        assert status.status == AssetStatus.COMPLETED
        assert status.tracks == ["audio_128k", "360p"]
        assert status.manifest_path == "/srv/hls/x/master.m3u8"
        assert status.error_message is None

    def test_config_snapshot(self) -> None:
        snapshot = make_service().config_snapshot()

        assert snapshot["profile"]["parallel_jobs"] == 3
        assert [t["track_id"] for t in snapshot["profile"]["video_tracks"]] == ["360p", "720p", "1080p"]
        assert snapshot["output_root"] == "/srv/hls"
        assert snapshot["thumbnail_root"] == "/srv/thumbs"


class TestRetryConfig:

    def test_process_video_delays(self) -> None:
        config = PROCESS_VIDEO_RETRY_CONFIG
        assert config.max_attempts == 3
        assert [config.calculate_delay(a) for a in range(1, 6)] == [10.0, 20.0, 40.0, 80.0, 120.0]

    @given(
        attempt=st.integers(min_value=1, max_value=50),
        initial=st.floats(min_value=0.1, max_value=60),
        cap=st.floats(min_value=60, max_value=600),
    )
    @settings(max_examples=100)
    def test_delay_never_exceeds_cap(self, attempt: int, initial: float, cap: float) -> None:
        config = RetryConfig(initial_delay=initial, max_delay=cap, backoff_multiplier=2.0)
        delay = config.calculate_delay(attempt)
        assert initial <= delay <= cap
        assert config.calculate_delay(attempt + 1) >= delay


class TestProcessVideoTask:

    def test_retry_uses_backoff(self) -> None:
        task = ProcessVideoTask()
        task.retry = MagicMock(side_effect=RuntimeError("retry scheduled"))
        error = ValueError("db went away")

        with pytest.raises(RuntimeError, match="retry scheduled"):
            task.retry_with_backoff(error, attempt=2)
        task.retry.assert_called_once_with(exc=error, countdown=20.0)

    def test_retries_exhausted(self) -> None:
        task = ProcessVideoTask()
        task.retry = MagicMock()
        error = ValueError("db went away")

        with pytest.raises(ProcessVideoTask.MaxRetriesExceededError) as exc_info:
            task.retry_with_backoff(error, attempt=3)
        assert exc_info.value.__cause__ is error
        task.retry.assert_not_called()

    def test_on_failure_marks_asset_failed(self, monkeypatch) -> None:
        mark_failed = AsyncMock()
        monkeypatch.setattr(tasks, "mark_asset_failed", mark_failed)
        monkeypatch.setattr(tasks, "engine", MagicMock(dispose=AsyncMock()))
        asset_id = str(uuid.uuid4())
        exhausted = ProcessVideoTask.MaxRetriesExceededError("Max retries (3) exceeded for task")
        exhausted.__cause__ = ValueError("db went away")

        ProcessVideoTask().on_failure(exhausted, "task-1", (asset_id,), {}, None)

        mark_failed.assert_awaited_once_with(
            asset_id, "Video processing failed after multiple attempts: db went away"
        )

    def test_on_failure_without_asset_id(self, monkeypatch) -> None:
        mark_failed = AsyncMock()
        monkeypatch.setattr(tasks, "mark_asset_failed", mark_failed)

        ProcessVideoTask().on_failure(ValueError("x"), "task-1", (), {}, None)

        mark_failed.assert_not_called()
