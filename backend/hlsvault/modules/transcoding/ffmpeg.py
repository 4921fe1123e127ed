"""FFmpeg track transcoding.

Builds and runs one ffmpeg invocation per track. Audio tracks drop the video
stream, video tracks drop the audio stream; both write encrypted HLS segments
under a per-track temporary name pattern so concurrent encodes in the same
directory never collide.
"""

import logging
import re
from pathlib import Path
from typing import Optional, Union

from hlsvault.core.metrics import TRACK_ENCODE_DURATION_SECONDS
from hlsvault.modules.transcoding.capability import SOFTWARE_ENCODER, encoder_for
from hlsvault.modules.transcoding.errors import CapabilityError, TrackEncodeError, TrackTimeoutError
from hlsvault.modules.transcoding.models import HardwareAccel, TrackKind
from hlsvault.modules.transcoding.process import ProcessOutcome, SupervisedProcess
from hlsvault.modules.transcoding.schemas import (
    AnyTrackSpec,
    AudioTrackSpec,
    EncoderConfig,
    EncoderJobResult,
    KeyMaterial,
    TranscodeProfile,
    VideoTrackSpec,
)

logger = logging.getLogger(__name__)

TEMP_SEGMENT_PREFIX = "temp_"


def temp_segment_pattern(output_dir: Path, track_id: str) -> Path:
    """ffmpeg segment filename pattern, unique per track."""
    return output_dir / f"{TEMP_SEGMENT_PREFIX}{track_id}_%03d.ts"


def temp_segment_glob(track_id: str) -> str:
    return f"{TEMP_SEGMENT_PREFIX}{track_id}_*.ts"


def temp_segment_files(output_dir: Path, track_id: str) -> list[Path]:
    """Temporary segments of exactly this track, in sequence order.

    The glob alone would also match a track whose id extends this one
    (``audio`` vs ``audio_64k``).
    """
    name_re = re.compile(rf"{TEMP_SEGMENT_PREFIX}{re.escape(track_id)}_\d+\.ts")
    return sorted(p for p in output_dir.glob(temp_segment_glob(track_id)) if name_re.fullmatch(p.name))


def playlist_path(output_dir: Path, track_id: str) -> Path:
    return output_dir / f"{track_id}.m3u8"


class TranscodeHandle:
    """A running track encode. Poll it, block on it, or kill it."""

    def __init__(
        self,
        track: AnyTrackSpec,
        process: SupervisedProcess,
        output_dir: Path,
        key_material: KeyMaterial,
    ):
        self.track = track
        self.process = process
        self.output_dir = output_dir
        self.key_material = key_material
        self.playlist_path = playlist_path(output_dir, track.track_id)
        self._result: Optional[EncoderJobResult] = None

    def poll(self) -> Optional[int]:
        return self.process.poll()

    def is_running(self) -> bool:
        return self.process.is_running()

    def terminate(self) -> None:
        self.process.terminate()

    def wait(self) -> EncoderJobResult:
        """Block until ffmpeg exits and judge the outcome."""
        if self._result is None:
            outcome = self.process.wait()
            self._result = self._to_result(outcome)
            TRACK_ENCODE_DURATION_SECONDS.labels(kind=self.track.kind.value).observe(outcome.elapsed)
        return self._result

    def _to_result(self, outcome: ProcessOutcome) -> EncoderJobResult:
        track_id = self.track.track_id
        segments = temp_segment_files(self.output_dir, track_id)
        error: Optional[Exception] = None

        if not outcome.started:
            error = CapabilityError(f"{track_id}: encoder could not be started: {outcome.start_error}")
        elif outcome.timed_out:
            error = TrackTimeoutError(
                track_id, f"encode exceeded {self.process.timeout}s and was killed", outcome.stderr
            )
        elif outcome.exit_code != 0:
            error = TrackEncodeError(track_id, f"ffmpeg exited with code {outcome.exit_code}", outcome.stderr)
        elif not self.playlist_path.exists():
            error = TrackEncodeError(track_id, f"playlist {self.playlist_path.name} was not written", outcome.stderr)

        if error is not None:
            logger.error(f"Track {track_id} failed: {error}", extra={"stderr_tail": outcome.stderr[-2000:]})

        return EncoderJobResult(
            track_id=track_id,
            kind=self.track.kind,
            success=error is None,
            playlist_path=self.playlist_path,
            segment_paths=segments,
            exit_code=outcome.exit_code,
            stderr=outcome.stderr,
            timed_out=outcome.timed_out,
            error_message=str(error) if error else None,
            duration_seconds=outcome.elapsed,
        )


class TrackTranscoder:
    """Starts one ffmpeg process per track."""

    def __init__(self, profile: TranscodeProfile):
        self.profile = profile

    def _video_codec_args(self, hw_accel: HardwareAccel) -> list[str]:
        """Encoder flags; x264 tuning only applies to the software path."""
        strategy = encoder_for(hw_accel)
        args = strategy.video_codec_args()
        if strategy is SOFTWARE_ENCODER:
            args += [
                "-preset", self.profile.preset,
                "-tune", self.profile.tune,
                "-crf", str(self.profile.crf),
            ]
        return args

    def _hls_args(self, output_dir: Path, track_id: str, key_material: KeyMaterial) -> list[str]:
        return [
            "-threads", str(self.profile.threads),
            "-f", "hls",
            "-hls_time", str(self.profile.segment_time),
            "-hls_list_size", "0",
            "-hls_segment_filename", str(temp_segment_pattern(output_dir, track_id)),
            "-hls_key_info_file", str(key_material.key_info_path),
            "-y",
            str(playlist_path(output_dir, track_id)),
        ]

    def build_audio_command(
        self,
        input_path: Union[str, Path],
        output_dir: Path,
        track: AudioTrackSpec,
        key_material: KeyMaterial,
        encoder_config: EncoderConfig,
    ) -> list[str]:
        return [
            encoder_config.ffmpeg_path,
            "-i", str(input_path),
            "-vn",
            "-c:a", track.codec,
            "-b:a", track.bitrate,
            *self._hls_args(output_dir, track.track_id, key_material),
        ]

    def build_video_command(
        self,
        input_path: Union[str, Path],
        output_dir: Path,
        track: VideoTrackSpec,
        key_material: KeyMaterial,
        encoder_config: EncoderConfig,
    ) -> list[str]:
        return [
            encoder_config.ffmpeg_path,
            "-i", str(input_path),
            "-an",
            *self._video_codec_args(encoder_config.hw_accel),
            "-b:v", track.bitrate,
            "-vf", f"scale={track.width}:{track.height}",
            *self._hls_args(output_dir, track.track_id, key_material),
        ]

    def build_command(
        self,
        input_path: Union[str, Path],
        output_dir: Path,
        track: AnyTrackSpec,
        key_material: KeyMaterial,
        encoder_config: EncoderConfig,
    ) -> list[str]:
        if track.kind == TrackKind.AUDIO:
            return self.build_audio_command(input_path, output_dir, track, key_material, encoder_config)
        return self.build_video_command(input_path, output_dir, track, key_material, encoder_config)

    def start(
        self,
        input_path: Union[str, Path],
        output_dir: Union[str, Path],
        track: AnyTrackSpec,
        key_material: KeyMaterial,
        encoder_config: EncoderConfig,
    ) -> TranscodeHandle:
        """Spawn the encoder and return immediately."""
        output_dir = Path(output_dir)
        command = self.build_command(input_path, output_dir, track, key_material, encoder_config)
        process = SupervisedProcess(command, timeout=self.profile.process_timeout).start()
        logger.info(
            f"Started {track.kind.value} transcoding: {track.track_id} "
            f"(hw={encoder_config.hw_accel.value}, pid={process.pid})"
        )
        return TranscodeHandle(track, process, output_dir, key_material)
