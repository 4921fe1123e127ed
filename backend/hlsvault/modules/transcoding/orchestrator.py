"""Concurrent scheduling of track encodes.

Audio encodes are cheap and start first without a limit. Video encodes are
bounded by the configured ceiling; extra video tracks wait in the executor
queue and start one at a time as slots free up. Each track's outcome is
written exactly once into its own slot of the result map.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from pathlib import Path
from typing import Callable, Iterable, Optional, Union

from hlsvault.core.logging import correlation_scope, get_correlation_id
from hlsvault.core.metrics import TRACKS_TOTAL, VIDEO_ENCODES_IN_PROGRESS
from hlsvault.core.tracing import create_span
from hlsvault.modules.transcoding.errors import NoTracksSucceededError
from hlsvault.modules.transcoding.ffmpeg import TrackTranscoder, playlist_path
from hlsvault.modules.transcoding.keys import EncryptionKeyManager
from hlsvault.modules.transcoding.models import TrackKind
from hlsvault.modules.transcoding.schemas import (
    AnyTrackSpec,
    EncoderConfig,
    EncoderJobResult,
    KeyMaterial,
)

logger = logging.getLogger(__name__)

TrackCallback = Callable[[EncoderJobResult], None]


class ParallelOrchestrator:
    """Runs every track of one asset and waits for all of them."""

    def __init__(
        self,
        transcoder: TrackTranscoder,
        key_manager: EncryptionKeyManager,
        encoder_config: EncoderConfig,
        max_parallel_video: int = 3,
        on_complete: Optional[TrackCallback] = None,
    ):
        if max_parallel_video < 1:
            raise ValueError("max_parallel_video must be at least 1")
        self.transcoder = transcoder
        self.key_manager = key_manager
        self.encoder_config = encoder_config
        self.max_parallel_video = max_parallel_video
        self.on_complete = on_complete
        self.keys: dict[str, KeyMaterial] = {}
        self._keys_lock = threading.Lock()
        self._active_video = 0
        self._peak_video = 0
        self._active_lock = threading.Lock()

    @property
    def peak_video_concurrency(self) -> int:
        """Highest number of video encodes observed running at once."""
        return self._peak_video

    def run(
        self,
        input_path: Union[str, Path],
        output_dir: Union[str, Path],
        tracks: Iterable[AnyTrackSpec],
    ) -> dict[str, EncoderJobResult]:
        """Encode all tracks and return one result per track id.

        Returns only once every started process has terminated.

        Raises:
            NoTracksSucceededError: If not a single track succeeded
        """
        output_dir = Path(output_dir)
        tracks = list(tracks)
        audio = [t for t in tracks if t.kind == TrackKind.AUDIO]
        video = [t for t in tracks if t.kind == TrackKind.VIDEO]
        results: dict[str, EncoderJobResult] = {}
        correlation_id = get_correlation_id()

        audio_pool = ThreadPoolExecutor(max_workers=max(1, len(audio)), thread_name_prefix="audio")
        video_pool = ThreadPoolExecutor(max_workers=self.max_parallel_video, thread_name_prefix="video")
        futures: dict[Future, AnyTrackSpec] = {}
        try:
            for track in audio:
                futures[audio_pool.submit(self._run_track, input_path, output_dir, track, correlation_id)] = track
            for track in video:
                futures[video_pool.submit(self._run_track, input_path, output_dir, track, correlation_id)] = track
            wait(futures)
        finally:
            audio_pool.shutdown(wait=True)
            video_pool.shutdown(wait=True)

        for future, track in futures.items():
            results[track.track_id] = future.result()

        succeeded = [r.track_id for r in results.values() if r.success]
        failed = [r.track_id for r in results.values() if not r.success]
        logger.info(f"Orchestration finished: succeeded={succeeded} failed={failed}")

        if not succeeded:
            raise NoTracksSucceededError(
                f"All {len(results)} tracks failed: "
                + "; ".join(r.error_message or r.track_id for r in results.values())
            )
        return results

    def _run_track(
        self,
        input_path: Union[str, Path],
        output_dir: Path,
        track: AnyTrackSpec,
        correlation_id: str,
    ) -> EncoderJobResult:
        """Issue a key, encode, and never let an exception escape the slot."""
        with correlation_scope(correlation_id), create_span(
            "transcode.track",
            {"track.id": track.track_id, "track.kind": track.kind.value},
        ):
            is_video = track.kind == TrackKind.VIDEO
            if is_video:
                self._enter_video()
            try:
                material = self.key_manager.issue(track.track_id)
                with self._keys_lock:
                    self.keys[track.track_id] = material
                handle = self.transcoder.start(input_path, output_dir, track, material, self.encoder_config)
                result = handle.wait()
            except Exception as e:
                logger.exception(f"Track {track.track_id} crashed before completing")
                result = EncoderJobResult(
                    track_id=track.track_id,
                    kind=track.kind,
                    success=False,
                    playlist_path=playlist_path(output_dir, track.track_id),
                    error_message=f"{track.track_id}: {e}",
                )
            finally:
                if is_video:
                    self._leave_video()

            status = "succeeded" if result.success else "failed"
            TRACKS_TOTAL.labels(kind=track.kind.value, status=status).inc()
            logger.info(f"{track.kind.value} track {status}: {track.track_id}")

            if self.on_complete is not None:
                try:
                    self.on_complete(result)
                except Exception:
                    logger.exception(f"Completion callback failed for {track.track_id}")
            return result

    def _enter_video(self) -> None:
        with self._active_lock:
            self._active_video += 1
            self._peak_video = max(self._peak_video, self._active_video)
        VIDEO_ENCODES_IN_PROGRESS.inc()

    def _leave_video(self) -> None:
        with self._active_lock:
            self._active_video -= 1
        VIDEO_ENCODES_IN_PROGRESS.dec()
