"""Encoder binary and hardware-acceleration detection."""

import logging
import os
import shutil
from dataclasses import dataclass
from typing import Optional, Sequence

from hlsvault.modules.transcoding.models import HardwareAccel
from hlsvault.modules.transcoding.process import run_process
from hlsvault.modules.transcoding.schemas import EncoderConfig

logger = logging.getLogger(__name__)

DEFAULT_FFMPEG = "ffmpeg"
DEFAULT_FFPROBE = "ffprobe"

# Checked in order after any configured path
FFMPEG_SEARCH_PATHS = (
    "/opt/homebrew/bin/ffmpeg",  # macOS Homebrew (Apple Silicon)
    "/usr/local/bin/ffmpeg",     # macOS Homebrew (Intel) / source builds
    "/usr/bin/ffmpeg",           # Linux distributions
    DEFAULT_FFMPEG,              # whatever PATH resolves
)


@dataclass(frozen=True)
class HardwareEncoder:
    """How one hardware family is detected and how it changes the command."""
    accel: HardwareAccel
    encoder: str
    extra_args: tuple[str, ...] = ()

    def video_codec_args(self) -> list[str]:
        return ["-c:v", self.encoder, *self.extra_args]


# First match wins
HARDWARE_PREFERENCE: tuple[HardwareEncoder, ...] = (
    HardwareEncoder(HardwareAccel.NVENC, "h264_nvenc", ("-preset", "fast")),
    HardwareEncoder(HardwareAccel.VIDEOTOOLBOX, "h264_videotoolbox", ("-realtime", "1")),
    HardwareEncoder(HardwareAccel.QSV, "h264_qsv", ("-preset", "fast")),
)

SOFTWARE_ENCODER = HardwareEncoder(HardwareAccel.NONE, "libx264")


def encoder_for(accel: HardwareAccel) -> HardwareEncoder:
    """Look up the encoder strategy for an acceleration family."""
    for candidate in HARDWARE_PREFERENCE:
        if candidate.accel == accel:
            return candidate
    return SOFTWARE_ENCODER


def command_exists(command: str) -> bool:
    """True if ``command`` is an executable path or resolvable on PATH."""
    return shutil.which(command) is not None


class CapabilityDetector:
    """Locates ffmpeg/ffprobe and picks a hardware encoder.

    Detection only reads; it never fails. When nothing is found the
    conservative defaults are kept and the first track that cannot start its
    process reports the problem.
    """

    def __init__(
        self,
        ffmpeg_path: Optional[str] = None,
        ffprobe_path: Optional[str] = None,
        hardware_acceleration: bool = True,
        search_paths: Sequence[str] = FFMPEG_SEARCH_PATHS,
        probe_timeout: float = 30,
    ):
        self.configured_ffmpeg = ffmpeg_path
        self.configured_ffprobe = ffprobe_path
        self.hardware_acceleration = hardware_acceleration
        self.search_paths = tuple(search_paths)
        self.probe_timeout = probe_timeout

    def detect(self) -> EncoderConfig:
        """Resolve binaries and hardware support for one pipeline run."""
        ffmpeg_path, ffprobe_path = self._detect_paths()
        hw_accel = HardwareAccel.NONE
        if self.hardware_acceleration:
            hw_accel = self.detect_hardware(ffmpeg_path)

        config = EncoderConfig(
            ffmpeg_path=ffmpeg_path,
            ffprobe_path=ffprobe_path,
            hw_accel=hw_accel,
        )
        logger.info(
            f"Encoder capabilities: ffmpeg={ffmpeg_path} ffprobe={ffprobe_path} "
            f"hw_accel={hw_accel.value}"
        )
        return config

    def _detect_paths(self) -> tuple[str, str]:
        ffmpeg_path = DEFAULT_FFMPEG
        ffprobe_path = DEFAULT_FFPROBE

        if self.configured_ffmpeg and command_exists(self.configured_ffmpeg):
            ffmpeg_path = self.configured_ffmpeg
        else:
            for candidate in self.search_paths:
                if command_exists(candidate):
                    ffmpeg_path = candidate
                    break
            else:
                logger.warning("No ffmpeg binary found, falling back to PATH lookup at spawn time")

        if self.configured_ffprobe and command_exists(self.configured_ffprobe):
            ffprobe_path = self.configured_ffprobe
        else:
            ffprobe_path = derive_ffprobe_path(ffmpeg_path)

        return ffmpeg_path, ffprobe_path

    def detect_hardware(self, ffmpeg_path: str) -> HardwareAccel:
        """Ask ffmpeg which encoders it was built with."""
        outcome = run_process([ffmpeg_path, "-hide_banner", "-encoders"], timeout=self.probe_timeout)
        if not outcome.succeeded:
            logger.info("Encoder listing unavailable, using software encoding")
            return HardwareAccel.NONE

        for candidate in HARDWARE_PREFERENCE:
            if candidate.encoder in outcome.stdout:
                logger.info(f"Hardware acceleration: {candidate.accel.value} ({candidate.encoder})")
                return candidate.accel

        logger.info("Hardware acceleration: none, using software encoding")
        return HardwareAccel.NONE


def derive_ffprobe_path(ffmpeg_path: str) -> str:
    """ffprobe normally lives next to ffmpeg under the same naming scheme."""
    directory, name = os.path.split(ffmpeg_path)
    return os.path.join(directory, name.replace("ffmpeg", "ffprobe"))
