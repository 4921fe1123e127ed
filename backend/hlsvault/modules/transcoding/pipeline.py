"""Packaging pipeline for one media asset.

uploaded -> processing -> completed | failed. A failed or completed asset may
re-enter processing for a fresh run. Every run builds its own ``RunContext``;
nothing is carried over from a previous asset.

Blocking steps (ffprobe, the encoders, file renames) run in worker threads so
the event loop stays free for database I/O.
"""

import asyncio
import logging
import shutil
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Union

from hlsvault.core.config import settings
from hlsvault.core.logging import correlation_scope, log_error, log_info
from hlsvault.core.metrics import PIPELINE_DURATION_SECONDS, PIPELINE_RUNS_TOTAL
from hlsvault.core.tracing import create_span, record_exception
from hlsvault.modules.transcoding.capability import CapabilityDetector
from hlsvault.modules.transcoding.errors import (
    NoTracksSucceededError,
    ObfuscationError,
    TranscodingError,
)
from hlsvault.modules.transcoding.ffmpeg import TrackTranscoder, playlist_path, temp_segment_files
from hlsvault.modules.transcoding.keys import EncryptionKeyManager
from hlsvault.modules.transcoding.manifest import ManifestComposer
from hlsvault.modules.transcoding.models import AssetStatus, MediaAsset
from hlsvault.modules.transcoding.obfuscation import SegmentObfuscator, write_mapping_artifact
from hlsvault.modules.transcoding.orchestrator import ParallelOrchestrator
from hlsvault.modules.transcoding.probe import MediaProbe, extract_thumbnail
from hlsvault.modules.transcoding.repository import MAX_ERROR_LENGTH, MediaAssetRepository
from hlsvault.modules.transcoding.schemas import (
    ChunkMapping,
    EncoderConfig,
    EncoderJobResult,
    KeyMaterial,
    ProcessingResult,
    TranscodeProfile,
)

logger = logging.getLogger(__name__)


@dataclass
class RunContext:
    """State of a single pipeline run."""
    asset_id: uuid.UUID
    source_path: Path
    output_dir: Path
    profile: TranscodeProfile
    encoder_config: EncoderConfig
    key_manager: EncryptionKeyManager
    duration: Optional[int] = None
    thumbnail_path: Optional[str] = None
    results: dict[str, EncoderJobResult] = field(default_factory=dict)
    keys: dict[str, KeyMaterial] = field(default_factory=dict)
    mappings: dict[str, ChunkMapping] = field(default_factory=dict)
    failed_tracks: list[str] = field(default_factory=list)

    @property
    def published_tracks(self) -> list[str]:
        """Secured track ids in configuration order."""
        return [t.track_id for t in self.profile.tracks if t.track_id in self.mappings]


def describe_error(exc: BaseException) -> str:
    """Human-readable failure reason stored on the asset."""
    if isinstance(exc, TranscodingError):
        message = str(exc)
    else:
        message = f"{type(exc).__name__}: {exc}"
    return message[:MAX_ERROR_LENGTH]


class ProcessingPipeline:
    """Turns an uploaded asset into an encrypted multi-track HLS package."""

    def __init__(
        self,
        repository: MediaAssetRepository,
        profile: Optional[TranscodeProfile] = None,
        output_root: Union[str, Path, None] = None,
        thumbnail_root: Union[str, Path, None] = None,
        detector: Optional[CapabilityDetector] = None,
    ):
        self.repository = repository
        self.profile = profile or TranscodeProfile.from_settings(settings)
        self.output_root = Path(output_root or settings.HLS_OUTPUT_ROOT)
        self.thumbnail_root = Path(thumbnail_root or settings.THUMBNAIL_ROOT)
        self.detector = detector or CapabilityDetector(
            ffmpeg_path=settings.FFMPEG_PATH,
            ffprobe_path=settings.FFPROBE_PATH,
            hardware_acceleration=self.profile.hardware_acceleration,
        )

    def output_dir_for(self, asset_id: uuid.UUID) -> Path:
        return self.output_root / str(asset_id)

    async def run(self, asset: MediaAsset) -> ProcessingResult:
        """Process ``asset`` to a terminal status.

        Domain failures (unprobeable source, every track failed, no manifest)
        leave the asset ``failed`` and are reported in the result. Any other
        exception also leaves the asset ``failed`` and is then re-raised, as
        is the original error when the failure itself cannot be recorded.
        """
        # Rolling back expires the instance, so the id is read once up front
        asset_id = asset.id
        with correlation_scope(str(asset_id)), create_span(
            "pipeline.process_video", {"asset.id": str(asset_id)}
        ):
            started = time.monotonic()
            await self.repository.mark_processing(asset)
            await self.repository.commit()
            logger.info(f"Processing started for asset {asset_id}")

            ctx: Optional[RunContext] = None
            try:
                ctx = await self._prepare(asset)
                await self._execute(asset, ctx)
            except Exception as e:
                record_exception(e)
                message = describe_error(e)
                if ctx is not None:
                    await asyncio.to_thread(_remove_package, ctx.output_dir)
                recorded = await self._record_failure(asset, asset_id, message)
                PIPELINE_RUNS_TOTAL.labels(status="failed").inc()
                PIPELINE_DURATION_SECONDS.observe(time.monotonic() - started)

                if not recorded or not isinstance(e, TranscodingError):
                    logger.exception(f"Processing crashed for asset {asset_id}")
                    raise
                log_error(
                    logger,
                    f"Processing failed for asset {asset_id}: {message}",
                    asset_id=str(asset_id),
                    failed_tracks=ctx.failed_tracks if ctx else [],
                )
                return ProcessingResult(
                    asset_id=asset_id,
                    status=AssetStatus.FAILED,
                    failed_tracks=ctx.failed_tracks if ctx else [],
                    thumbnail_path=ctx.thumbnail_path if ctx else None,
                    duration=ctx.duration if ctx else None,
                    error_message=message,
                )

            PIPELINE_RUNS_TOTAL.labels(status="completed").inc()
            PIPELINE_DURATION_SECONDS.observe(time.monotonic() - started)
            log_info(
                logger,
                f"Processing completed for asset {asset_id}",
                asset_id=str(asset_id),
                tracks=ctx.published_tracks,
                failed_tracks=ctx.failed_tracks,
            )
            return ProcessingResult(
                asset_id=asset_id,
                status=AssetStatus.COMPLETED,
                tracks=ctx.published_tracks,
                failed_tracks=ctx.failed_tracks,
                manifest_path=asset.manifest_path,
                thumbnail_path=ctx.thumbnail_path,
                duration=ctx.duration,
            )

    async def _record_failure(self, asset: MediaAsset, asset_id: uuid.UUID, message: str) -> bool:
        """Persist the FAILED status on a clean transaction.

        A database error earlier in the run leaves the session needing a
        rollback, which also drops any half-made change to the asset.
        """
        try:
            await self.repository.rollback()
            await self.repository.fail(asset, message)
            await self.repository.commit()
        except Exception:
            logger.exception(f"Could not record failure for asset {asset_id}")
            return False
        return True

    async def _prepare(self, asset: MediaAsset) -> RunContext:
        """Detect encoders and give the run an empty output directory."""
        encoder_config = await asyncio.to_thread(self.detector.detect)
        output_dir = self.output_dir_for(asset.id)
        await asyncio.to_thread(_reset_directory, output_dir)
        return RunContext(
            asset_id=asset.id,
            source_path=Path(asset.source_path),
            output_dir=output_dir,
            profile=self.profile,
            encoder_config=encoder_config,
            key_manager=EncryptionKeyManager(output_dir, self.profile.key_uri_prefix),
        )

    async def _execute(self, asset: MediaAsset, ctx: RunContext) -> None:
        # Probe: the only step that needs the source to be readable media
        with create_span("pipeline.probe"):
            probe = MediaProbe(ctx.encoder_config, timeout=ctx.profile.probe_timeout)
            ctx.duration = await asyncio.to_thread(probe.probe, ctx.source_path)
        await self.repository.record_duration(asset, ctx.duration)
        await self.repository.commit()

        await self._thumbnail(asset, ctx)

        with create_span("pipeline.orchestrate", {"tracks.count": len(ctx.profile.tracks)}):
            orchestrator = ParallelOrchestrator(
                TrackTranscoder(ctx.profile),
                ctx.key_manager,
                ctx.encoder_config,
                max_parallel_video=ctx.profile.parallel_jobs,
            )
            try:
                ctx.results = await asyncio.to_thread(
                    orchestrator.run, ctx.source_path, ctx.output_dir, ctx.profile.tracks
                )
            except NoTracksSucceededError:
                ctx.failed_tracks = [t.track_id for t in ctx.profile.tracks]
                raise
            finally:
                ctx.keys.update(orchestrator.keys)

        with create_span("pipeline.obfuscate"):
            await asyncio.to_thread(self._secure_tracks, ctx)

        with create_span("pipeline.manifest"):
            composer = ManifestComposer(
                ctx.profile.video_tracks,
                ctx.profile.audio_tracks,
                default_audio_bandwidth=ctx.profile.default_audio_bandwidth,
            )
            manifest = await asyncio.to_thread(composer.compose, ctx.output_dir, ctx.mappings.keys())
            await asyncio.to_thread(write_mapping_artifact, ctx.output_dir, ctx.mappings, ctx.keys)
            await asyncio.to_thread(self._finish_directory, ctx)

        await self.repository.complete(asset, ctx.published_tracks, str(manifest))
        await self.repository.commit()

    async def _thumbnail(self, asset: MediaAsset, ctx: RunContext) -> None:
        destination = self.thumbnail_root / f"{asset.id}.jpg"
        try:
            ok = await asyncio.to_thread(
                extract_thumbnail, ctx.encoder_config, ctx.source_path, destination
            )
        except OSError as e:
            logger.warning(f"Thumbnail skipped for asset {asset.id}: {e}")
            return
        if ok:
            ctx.thumbnail_path = str(destination)
            await self.repository.set_thumbnail(asset, ctx.thumbnail_path)
            await self.repository.commit()

    def _secure_tracks(self, ctx: RunContext) -> None:
        """Obfuscate every successful track; demote the ones that cannot be."""
        obfuscator = SegmentObfuscator()
        for track in ctx.profile.tracks:
            result = ctx.results.get(track.track_id)
            if result is None or not result.success:
                self._discard_track(ctx, track.track_id)
                ctx.failed_tracks.append(track.track_id)
                continue
            try:
                ctx.mappings[track.track_id] = obfuscator.secure(ctx.output_dir, track.track_id, track.kind)
            except ObfuscationError as e:
                logger.error(f"Demoting track {track.track_id}: {e}")
                self._discard_track(ctx, track.track_id)
                ctx.failed_tracks.append(track.track_id)

        if not ctx.mappings:
            raise NoTracksSucceededError("No track could be secured")

    def _discard_track(self, ctx: RunContext, track_id: str) -> None:
        """Remove every file a non-published track left behind."""
        material = ctx.keys.pop(track_id, None)
        if material is not None:
            ctx.key_manager.discard(material)
        for path in temp_segment_files(ctx.output_dir, track_id):
            path.unlink(missing_ok=True)
        playlist_path(ctx.output_dir, track_id).unlink(missing_ok=True)

    def _finish_directory(self, ctx: RunContext) -> None:
        removed = ctx.key_manager.cleanup_key_info()
        logger.debug(f"Removed {removed} key-info descriptors")
        if ctx.profile.cleanup_temp_files:
            for path in ctx.output_dir.glob("temp_*.ts"):
                path.unlink(missing_ok=True)


def _reset_directory(path: Path) -> None:
    if path.exists():
        shutil.rmtree(path)
    path.mkdir(parents=True, exist_ok=True)


def _remove_package(path: Path) -> None:
    """Delete whatever a failed run left in its output directory."""
    try:
        shutil.rmtree(path)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning(f"Could not remove partial package {path}: {e}")
