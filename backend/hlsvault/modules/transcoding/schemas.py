"""Pydantic schemas for the packaging pipeline."""

import re
from datetime import datetime
from pathlib import Path
from typing import Any, Optional, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from hlsvault.modules.transcoding.models import AssetStatus, HardwareAccel, TrackKind


_BITRATE_RE = re.compile(r"^\s*(\d+)\s*([kKmM]?)\s*$")
_BITRATE_UNITS = {"": 1, "k": 1000, "m": 1000000}


def parse_bitrate(value: str) -> int:
    """Convert an ffmpeg bitrate string to bits per second.

    ``"1800k"`` becomes 1800000, ``"2M"`` becomes 2000000 and plain digits
    are taken as-is.

    Raises:
        ValueError: If the string has no numeric prefix or an unknown unit
    """
    match = _BITRATE_RE.match(value or "")
    if not match:
        raise ValueError(f"Unparseable bitrate: {value!r}")
    number, unit = match.groups()
    return int(number) * _BITRATE_UNITS[unit.lower()]


class TrackSpec(BaseModel):
    """One rendition to produce from the source."""
    model_config = ConfigDict(frozen=True)

    track_id: str = Field(..., pattern=r"^[A-Za-z0-9_]+$", description="e.g. 720p, audio_128k")
    kind: TrackKind
    bitrate: str = Field(..., description="ffmpeg bitrate string, e.g. 1800k")

    @property
    def bandwidth(self) -> int:
        """Configured bitrate in bits per second."""
        return parse_bitrate(self.bitrate)


class VideoTrackSpec(TrackSpec):
    """Video-only rendition at a fixed resolution."""
    kind: TrackKind = TrackKind.VIDEO
    width: int = Field(..., gt=0)
    height: int = Field(..., gt=0)

    @property
    def resolution(self) -> str:
        return f"{self.width}x{self.height}"


class AudioTrackSpec(TrackSpec):
    """Audio-only rendition."""
    kind: TrackKind = TrackKind.AUDIO
    codec: str = "aac"


AnyTrackSpec = Union[VideoTrackSpec, AudioTrackSpec]


class TranscodeProfile(BaseModel):
    """Everything a pipeline run needs to know about what to encode."""
    model_config = ConfigDict(frozen=True)

    video_tracks: tuple[VideoTrackSpec, ...] = ()
    audio_tracks: tuple[AudioTrackSpec, ...] = ()
    preset: str = "ultrafast"
    tune: str = "zerolatency"
    threads: int = Field(default=0, ge=0)
    crf: int = Field(default=28, ge=0, le=51)
    segment_time: int = Field(default=6, ge=1)
    parallel_jobs: int = Field(default=3, ge=1)
    hardware_acceleration: bool = True
    process_timeout: float = Field(default=7200, gt=0)
    probe_timeout: float = Field(default=60, gt=0)
    default_audio_bandwidth: int = 128000
    key_uri_prefix: str = "/api/hls/key"
    cleanup_temp_files: bool = True

    @classmethod
    def from_settings(cls, settings: Any) -> "TranscodeProfile":
        """Build the standard 360p/720p/1080p + 128k/64k ladder from settings."""
        return cls(
            video_tracks=(
                VideoTrackSpec(track_id="360p", width=640, height=360, bitrate=settings.VIDEO_BITRATE_360P),
                VideoTrackSpec(track_id="720p", width=1280, height=720, bitrate=settings.VIDEO_BITRATE_720P),
                VideoTrackSpec(track_id="1080p", width=1920, height=1080, bitrate=settings.VIDEO_BITRATE_1080P),
            ),
            audio_tracks=(
                AudioTrackSpec(track_id="audio_128k", bitrate="128k", codec="aac"),
                AudioTrackSpec(track_id="audio_64k", bitrate="64k", codec="aac"),
            ),
            preset=settings.VIDEO_PRESET,
            tune=settings.VIDEO_TUNE,
            threads=settings.VIDEO_THREADS,
            crf=settings.VIDEO_CRF,
            segment_time=settings.VIDEO_SEGMENT_TIME,
            parallel_jobs=settings.VIDEO_PARALLEL_JOBS,
            hardware_acceleration=settings.VIDEO_HARDWARE_ACCELERATION,
            process_timeout=settings.VIDEO_PROCESS_TIMEOUT,
            probe_timeout=settings.VIDEO_PROBE_TIMEOUT,
            default_audio_bandwidth=settings.DEFAULT_AUDIO_BANDWIDTH,
            key_uri_prefix=settings.HLS_KEY_URI_PREFIX,
            cleanup_temp_files=settings.VIDEO_CLEANUP_TEMP_FILES,
        )

    @property
    def tracks(self) -> tuple[AnyTrackSpec, ...]:
        """All tracks in configuration order, audio first."""
        return self.audio_tracks + self.video_tracks

    def snapshot(self) -> dict:
        """Plain read-only view of the profile for diagnostics."""
        return self.model_dump(mode="json")


class EncoderConfig(BaseModel):
    """Binaries and hardware encoder selected for one pipeline run."""
    model_config = ConfigDict(frozen=True)

    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"
    hw_accel: HardwareAccel = HardwareAccel.NONE


class KeyMaterial(BaseModel):
    """AES-128 key and IV issued to one track."""
    model_config = ConfigDict(frozen=True)

    track_id: str
    key_hex: str = Field(..., pattern=r"^[0-9a-f]{32}$", repr=False)
    iv_hex: str = Field(..., pattern=r"^[0-9a-f]{32}$", repr=False)
    key_file_name: str
    key_file_path: Path
    key_info_path: Path
    key_uri: str

    @property
    def key_bytes(self) -> bytes:
        return bytes.fromhex(self.key_hex)

    @property
    def iv_bytes(self) -> bytes:
        return bytes.fromhex(self.iv_hex)


class EncoderJobResult(BaseModel):
    """Outcome of one track's ffmpeg process."""
    track_id: str
    kind: TrackKind
    success: bool
    playlist_path: Path
    segment_paths: list[Path] = Field(default_factory=list)
    exit_code: Optional[int] = None
    stderr: str = ""
    timed_out: bool = False
    error_message: Optional[str] = None
    duration_seconds: float = 0.0


class ChunkMapping(BaseModel):
    """Temporary segment name to opaque name, for one track."""
    track_id: str
    kind: TrackKind
    entries: dict[str, str] = Field(default_factory=dict)

    @property
    def segment_count(self) -> int:
        return len(self.entries)


class ProcessingResult(BaseModel):
    """Summary returned by a pipeline run."""
    asset_id: UUID
    status: AssetStatus
    tracks: list[str] = Field(default_factory=list)
    failed_tracks: list[str] = Field(default_factory=list)
    manifest_path: Optional[str] = None
    thumbnail_path: Optional[str] = None
    duration: Optional[int] = None
    error_message: Optional[str] = None


class MediaAssetResponse(BaseModel):
    """Externally visible state of an asset."""
    id: UUID
    title: str
    status: AssetStatus
    duration: Optional[int]
    tracks: Optional[list[str]]
    manifest_path: Optional[str]
    thumbnail_path: Optional[str]
    error_message: Optional[str]
    processed_at: Optional[datetime]

    class Config:
        from_attributes = True
