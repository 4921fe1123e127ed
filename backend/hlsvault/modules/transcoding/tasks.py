"""Celery tasks for the packaging pipeline."""

import asyncio
import logging
import math
import uuid
from typing import Any, Awaitable, TypeVar

from celery import Task

from hlsvault.core.celery_app import celery_app
from hlsvault.core.database import async_session_maker, engine
from hlsvault.core.logging import log_warning
from hlsvault.modules.transcoding.pipeline import ProcessingPipeline
from hlsvault.modules.transcoding.repository import MediaAssetRepository

logger = logging.getLogger(__name__)

T = TypeVar("T")


def run_async(coro: Awaitable[T]) -> T:
    """Run a coroutine to completion from a synchronous Celery worker.

    Each call gets a fresh event loop, so pooled connections are released
    before the loop closes.
    """
    async def _runner() -> T:
        try:
            return await coro
        finally:
            await engine.dispose()

    return asyncio.run(_runner())


class RetryConfig:
    """Configuration for retry behavior with exponential backoff."""

    def __init__(
        self,
        max_attempts: int = 3,
        initial_delay: float = 1.0,
        max_delay: float = 300.0,
        backoff_multiplier: float = 2.0,
    ):
        self.max_attempts = max_attempts
        self.initial_delay = initial_delay
        self.max_delay = max_delay
        self.backoff_multiplier = backoff_multiplier

    def calculate_delay(self, attempt: int) -> float:
        """Calculate delay for a given attempt using exponential backoff.

        Args:
            attempt: The current attempt number (1-indexed).

        Returns:
            The delay in seconds, capped at max_delay.
        """
        if attempt < 1:
            return self.initial_delay

        delay = self.initial_delay * math.pow(self.backoff_multiplier, attempt - 1)
        return min(delay, self.max_delay)


PROCESS_VIDEO_RETRY_CONFIG = RetryConfig(
    max_attempts=3,
    initial_delay=10.0,
    max_delay=120.0,
    backoff_multiplier=2.0,
)


class BaseTaskWithRetry(Task):
    """Base Celery task with exponential backoff retry logic."""

    abstract = True
    retry_config: RetryConfig = RetryConfig()

    def retry_with_backoff(self, exc: Exception, attempt: int) -> None:
        """Retry the task with exponential backoff.

        Raises:
            MaxRetriesExceededError: If max attempts have been reached.
        """
        config = self.retry_config

        if attempt >= config.max_attempts:
            raise self.MaxRetriesExceededError(
                f"Max retries ({config.max_attempts}) exceeded for task"
            ) from exc

        delay = config.calculate_delay(attempt)
        raise self.retry(exc=exc, countdown=delay)


class ProcessVideoTask(BaseTaskWithRetry):
    """Base task for packaging runs.

    Once retries are exhausted the asset is left ``failed`` with the last
    error, whatever the pipeline managed to record.
    """
    abstract = True
    max_retries = 3
    retry_config = PROCESS_VIDEO_RETRY_CONFIG

    def on_failure(self, exc: Exception, task_id: str, args: tuple, kwargs: dict, einfo: Any) -> None:
        asset_id = args[0] if args else kwargs.get("asset_id")
        if asset_id:
            cause = exc.__cause__ or exc
            run_async(mark_asset_failed(asset_id, f"Video processing failed after multiple attempts: {cause}"))


async def mark_asset_failed(asset_id: str, error: str) -> None:
    """Mark an asset as failed in the database."""
    async with async_session_maker() as session:
        repo = MediaAssetRepository(session)
        asset = await repo.get_by_id(uuid.UUID(asset_id))
        if asset:
            await repo.fail(asset, error)
            await repo.commit()


@celery_app.task(bind=True, base=ProcessVideoTask, name="hlsvault.transcoding.process_video")
def process_video_task(self: ProcessVideoTask, asset_id: str) -> dict:
    """Package one uploaded asset as encrypted multi-track HLS.

    Args:
        asset_id: UUID of the media asset

    Returns:
        dict: Processing result
    """
    try:
        return run_async(_process_video_async(asset_id))
    except Exception as e:
        log_warning(
            logger,
            f"process_video attempt {self.request.retries + 1} failed: {e}",
            asset_id=asset_id,
        )
        self.retry_with_backoff(e, self.request.retries + 1)


async def _process_video_async(asset_id: str) -> dict:
    """Async implementation of the packaging task."""
    async with async_session_maker() as session:
        repo = MediaAssetRepository(session)
        asset = await repo.get_by_id(uuid.UUID(asset_id))
        if not asset:
            return {"success": False, "error": "Asset not found"}

        result = await ProcessingPipeline(repo).run(asset)
        return {"success": result.error_message is None, **result.model_dump(mode="json")}
