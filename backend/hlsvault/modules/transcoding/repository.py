"""Repository for media asset database operations."""

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hlsvault.modules.transcoding.models import AssetStatus, MediaAsset, can_transition

MAX_ERROR_LENGTH = 4000


class InvalidTransitionError(Exception):
    """Raised when a status change is not part of the asset lifecycle."""


class MediaAssetRepository:
    """Repository for MediaAsset operations.

    Methods mutate the loaded object; callers decide when to ``commit``.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        source_path: str,
        title: str = "",
        file_size: Optional[int] = None,
    ) -> MediaAsset:
        """Register an uploaded source file."""
        asset = MediaAsset(
            source_path=source_path,
            title=title,
            file_size=file_size,
            status=AssetStatus.UPLOADED,
        )
        self.session.add(asset)
        await self.session.flush()
        return asset

    async def get_by_id(self, asset_id: uuid.UUID) -> Optional[MediaAsset]:
        """Get an asset by ID."""
        result = await self.session.execute(
            select(MediaAsset).where(MediaAsset.id == asset_id)
        )
        return result.scalar_one_or_none()

    async def get_by_status(self, status: AssetStatus, limit: int = 50) -> list[MediaAsset]:
        """Get assets in a given status, oldest first."""
        result = await self.session.execute(
            select(MediaAsset)
            .where(MediaAsset.status == status)
            .order_by(MediaAsset.created_at)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def mark_processing(self, asset: MediaAsset) -> None:
        """Enter PROCESSING and clear the outcome of any previous run.

        Raises:
            InvalidTransitionError: If the asset is not ready to be processed
        """
        _transition(asset, AssetStatus.PROCESSING)
        asset.error_message = None
        asset.tracks = None
        asset.manifest_path = None

    async def record_duration(self, asset: MediaAsset, duration: int) -> None:
        asset.duration = duration

    async def set_thumbnail(self, asset: MediaAsset, thumbnail_path: str) -> None:
        asset.thumbnail_path = thumbnail_path

    async def complete(
        self,
        asset: MediaAsset,
        tracks: list[str],
        manifest_path: str,
    ) -> None:
        """Mark the asset as packaged.

        Args:
            asset: The asset being processed
            tracks: Track ids present in the master playlist
            manifest_path: Path of the master playlist
        """
        _transition(asset, AssetStatus.COMPLETED)
        asset.tracks = list(tracks)
        asset.manifest_path = manifest_path
        asset.error_message = None
        asset.processed_at = datetime.now(timezone.utc)

    async def fail(self, asset: MediaAsset, error_message: str) -> None:
        """Mark the asset as failed with a human-readable reason.

        Always succeeds, whatever state the asset was left in.
        """
        asset.status = AssetStatus.FAILED
        asset.error_message = (error_message or "Unknown error")[:MAX_ERROR_LENGTH]

    async def commit(self) -> None:
        await self.session.commit()

    async def rollback(self) -> None:
        """Discard pending changes and leave the session usable again."""
        await self.session.rollback()


def _transition(asset: MediaAsset, target: AssetStatus) -> None:
    current = asset.status
    if not can_transition(current, target):
        raise InvalidTransitionError(
            f"Asset {asset.id} cannot move from {current.value if current else None} to {target.value}"
        )
    asset.status = target
