"""Master playlist assembly."""

import logging
from pathlib import Path
from typing import Iterable, Sequence, Union

from hlsvault.modules.transcoding.errors import ManifestError
from hlsvault.modules.transcoding.obfuscation import write_atomic
from hlsvault.modules.transcoding.schemas import (
    AudioTrackSpec,
    VideoTrackSpec,
    parse_bitrate,
)

logger = logging.getLogger(__name__)

MASTER_PLAYLIST = "master.m3u8"
AUDIO_GROUP_ID = "audio"
HEADER = "#EXTM3U\n#EXT-X-VERSION:6\n#EXT-X-INDEPENDENT-SEGMENTS\n\n"


class ManifestComposer:
    """Builds the multivariant playlist from the tracks that made it.

    Tracks are emitted in configuration order, never in completion order,
    so the same inputs always yield the same lines.
    """

    def __init__(
        self,
        video_tracks: Sequence[VideoTrackSpec],
        audio_tracks: Sequence[AudioTrackSpec],
        default_audio_bandwidth: int = 128000,
    ):
        self.video_tracks = tuple(video_tracks)
        self.audio_tracks = tuple(audio_tracks)
        self.default_audio_bandwidth = default_audio_bandwidth

    def video_bandwidth(self, track: VideoTrackSpec) -> int:
        """Advertised BANDWIDTH: video bitrate plus the default audio rendition."""
        try:
            return parse_bitrate(track.bitrate) + self.default_audio_bandwidth
        except ValueError as e:
            raise ManifestError(f"{track.track_id}: {e}")

    def render(self, successful_tracks: Iterable[str]) -> str:
        """Master playlist text for the given successful track ids.

        Raises:
            ManifestError: If no configured track is in the set
        """
        successful = set(successful_tracks)
        audio = [t for t in self.audio_tracks if t.track_id in successful]
        video = [t for t in self.video_tracks if t.track_id in successful]
        if not audio and not video:
            raise ManifestError("No track succeeded, nothing to advertise")
        if not video:
            logger.warning("No video track succeeded, publishing audio renditions only")

        lines = [HEADER]
        if audio:
            for index, track in enumerate(audio):
                default = "YES" if index == 0 else "NO"
                lines.append(
                    f'#EXT-X-MEDIA:TYPE=AUDIO,GROUP-ID="{AUDIO_GROUP_ID}",NAME="{track.track_id}",'
                    f'DEFAULT={default},AUTOSELECT=YES,URI="{track.track_id}.m3u8"\n'
                )
            lines.append("\n")

        audio_attr = f',AUDIO="{AUDIO_GROUP_ID}"' if audio else ""
        for track in video:
            lines.append(
                f"#EXT-X-STREAM-INF:BANDWIDTH={self.video_bandwidth(track)},"
                f"RESOLUTION={track.resolution}{audio_attr}\n"
            )
            lines.append(f"{track.track_id}.m3u8\n")
        return "".join(lines)

    def compose(self, output_dir: Union[str, Path], successful_tracks: Iterable[str]) -> Path:
        """Write ``master.m3u8`` and return its path."""
        output_dir = Path(output_dir)
        content = self.render(successful_tracks)
        path = output_dir / MASTER_PLAYLIST
        try:
            write_atomic(path, content)
        except OSError as e:
            raise ManifestError(f"Could not write {path}: {e}")
        logger.info(f"Master playlist written: {path}")
        return path
