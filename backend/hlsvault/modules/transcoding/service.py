"""Service layer for packaging operations."""

import logging
import uuid
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from hlsvault.core.config import settings
from hlsvault.modules.transcoding.models import AssetStatus, MediaAsset
from hlsvault.modules.transcoding.pipeline import ProcessingPipeline
from hlsvault.modules.transcoding.repository import InvalidTransitionError, MediaAssetRepository
from hlsvault.modules.transcoding.schemas import (
    MediaAssetResponse,
    ProcessingResult,
)
from hlsvault.modules.transcoding.tasks import process_video_task

logger = logging.getLogger(__name__)

REPROCESSABLE_STATUSES = {AssetStatus.FAILED, AssetStatus.COMPLETED}


class AssetNotFoundError(Exception):
    """Raised when an asset id does not exist."""


class MediaProcessingService:
    """Entry point for starting and inspecting packaging runs."""

    def __init__(
        self,
        session: AsyncSession,
        pipeline: Optional[ProcessingPipeline] = None,
    ):
        self.session = session
        self.repo = MediaAssetRepository(session)
        self.pipeline = pipeline or ProcessingPipeline(self.repo)

    async def _get_asset(self, asset_id: uuid.UUID) -> MediaAsset:
        asset = await self.repo.get_by_id(asset_id)
        if not asset:
            raise AssetNotFoundError(f"Asset {asset_id} not found")
        return asset

    async def process(self, asset_id: uuid.UUID) -> ProcessingResult:
        """Run the pipeline for an asset in the current process.

        Raises:
            AssetNotFoundError: If the asset does not exist
        """
        asset = await self._get_asset(asset_id)
        return await self.pipeline.run(asset)

    async def reprocess(self, asset_id: uuid.UUID, dispatch: bool = True) -> Optional[ProcessingResult]:
        """Start a fresh run for an asset that already finished.

        Args:
            asset_id: Asset to reprocess
            dispatch: Queue the Celery task instead of running inline

        Returns:
            The run's result when processed inline, otherwise None

        Raises:
            AssetNotFoundError: If the asset does not exist
            InvalidTransitionError: If the asset is not failed or completed
        """
        asset = await self._get_asset(asset_id)
        if asset.status not in REPROCESSABLE_STATUSES:
            raise InvalidTransitionError(
                f"Asset {asset_id} is {asset.status.value}; only failed or completed assets can be reprocessed"
            )

        logger.info(f"Reprocessing asset {asset_id} (was {asset.status.value})")
        if dispatch:
            self.dispatch(asset_id)
            return None
        return await self.pipeline.run(asset)

    def dispatch(self, asset_id: uuid.UUID) -> str:
        """Queue a packaging run and return the Celery task id."""
        task = process_video_task.delay(str(asset_id))
        logger.info(f"Queued processing for asset {asset_id}: task {task.id}")
        return task.id

    async def get_status(self, asset_id: uuid.UUID) -> MediaAssetResponse:
        asset = await self._get_asset(asset_id)
        return MediaAssetResponse.model_validate(asset)

    def config_snapshot(self) -> dict:
        """Read-only view of the packaging configuration in effect."""
        return {
            "profile": self.pipeline.profile.snapshot(),
            "output_root": str(self.pipeline.output_root),
            "thumbnail_root": str(self.pipeline.thumbnail_root),
            "ffmpeg_path": settings.FFMPEG_PATH,
            "ffprobe_path": settings.FFPROBE_PATH,
        }
