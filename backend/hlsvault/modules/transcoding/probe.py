"""Source inspection with ffprobe and thumbnail extraction."""

import json
import logging
import math
from pathlib import Path
from typing import Optional, Union

from hlsvault.modules.transcoding.errors import ProbeError
from hlsvault.modules.transcoding.process import run_process
from hlsvault.modules.transcoding.schemas import EncoderConfig

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


class MediaProbe:
    """Reads container metadata from the source file."""

    def __init__(self, encoder_config: EncoderConfig, timeout: Optional[float] = 60):
        self.encoder_config = encoder_config
        self.timeout = timeout

    def build_probe_command(self, path: PathLike) -> list[str]:
        return [
            self.encoder_config.ffprobe_path,
            "-v", "quiet",
            "-print_format", "json",
            "-show_format",
            "-show_streams",
            str(path),
        ]

    def get_info(self, path: PathLike) -> dict:
        """Return ffprobe's parsed JSON report.

        Raises:
            ProbeError: If ffprobe cannot run, fails, or prints garbage
        """
        outcome = run_process(self.build_probe_command(path), timeout=self.timeout)
        if not outcome.started:
            raise ProbeError(f"ffprobe could not be started: {outcome.start_error}")
        if outcome.timed_out:
            raise ProbeError(f"ffprobe timed out after {self.timeout}s on {path}")
        if outcome.exit_code != 0:
            detail = outcome.stderr.strip() or f"exit code {outcome.exit_code}"
            raise ProbeError(f"ffprobe failed on {path}: {detail}")

        try:
            return json.loads(outcome.stdout)
        except json.JSONDecodeError as e:
            raise ProbeError(f"ffprobe output is not valid JSON: {e}")

    def probe(self, path: PathLike) -> int:
        """Duration of the source in whole seconds, rounded down.

        Raises:
            ProbeError: If the duration is missing or not a finite number
        """
        info = self.get_info(path)
        raw = (info.get("format") or {}).get("duration")
        try:
            duration = float(raw)
        except (TypeError, ValueError):
            raise ProbeError(f"ffprobe reported no usable duration for {path}: {raw!r}")
        if not math.isfinite(duration) or duration < 0:
            raise ProbeError(f"ffprobe reported an invalid duration for {path}: {raw!r}")
        return int(duration)


def extract_thumbnail(
    encoder_config: EncoderConfig,
    source: PathLike,
    destination: PathLike,
    timeout: Optional[float] = 120,
) -> bool:
    """Grab a single frame one second in. Failure is logged, never raised."""
    destination = Path(destination)
    destination.parent.mkdir(parents=True, exist_ok=True)
    outcome = run_process(
        [
            encoder_config.ffmpeg_path,
            "-i", str(source),
            "-ss", "00:00:01",
            "-vframes", "1",
            "-y",
            str(destination),
        ],
        timeout=timeout,
    )
    if outcome.succeeded and destination.exists():
        return True

    logger.warning(f"Thumbnail extraction failed for {source}: {outcome.start_error or outcome.stderr[-500:]}")
    return False
