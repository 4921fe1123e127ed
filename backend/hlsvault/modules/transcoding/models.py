"""Database models and enums for the HLS packaging pipeline."""

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import BigInteger, DateTime, Integer, String, Text, JSON
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from hlsvault.core.database import Base


class AssetStatus(str, Enum):
    """Lifecycle status of an uploaded media asset."""
    UPLOADING = "uploading"
    UPLOADED = "uploaded"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


# Transitions a pipeline run may perform. Reprocessing re-enters
# PROCESSING from either terminal state; a redelivered or retried task
# reclaims a row left in PROCESSING by an attempt that never finished.
ALLOWED_TRANSITIONS = {
    AssetStatus.UPLOADED: {AssetStatus.PROCESSING},
    AssetStatus.PROCESSING: {AssetStatus.PROCESSING, AssetStatus.COMPLETED, AssetStatus.FAILED},
    AssetStatus.FAILED: {AssetStatus.PROCESSING},
    AssetStatus.COMPLETED: {AssetStatus.PROCESSING},
}


def can_transition(current: AssetStatus, target: AssetStatus) -> bool:
    """Check whether ``current -> target`` is a legal status change."""
    return target in ALLOWED_TRANSITIONS.get(current, set())


class TrackKind(str, Enum):
    """Kind of rendition produced by one encoder invocation."""
    VIDEO = "video"
    AUDIO = "audio"


class HardwareAccel(str, Enum):
    """Hardware encoder families, ordered by preference in capability.py."""
    NVENC = "nvenc"
    VIDEOTOOLBOX = "videotoolbox"
    QSV = "qsv"
    NONE = "none"


class MediaAsset(Base):
    """An uploaded video and the HLS package produced from it."""

    __tablename__ = "media_assets"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False, default="")

    # Source file
    source_path: Mapped[str] = mapped_column(String(1024), nullable=False)
    file_size: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)  # bytes
    duration: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)  # whole seconds

    # Lifecycle
    status: Mapped[AssetStatus] = mapped_column(
        SQLEnum(AssetStatus, name="assetstatus"),
        default=AssetStatus.UPLOADED,
        nullable=False,
    )
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Package
    tracks: Mapped[Optional[list[str]]] = mapped_column(JSON, nullable=True)
    manifest_path: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    thumbnail_path: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
    processed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    def __repr__(self) -> str:
        status = self.status.value if self.status else None
        return f"<MediaAsset {self.id} - {status}>"
