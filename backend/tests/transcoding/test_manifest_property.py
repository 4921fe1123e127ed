"""Property-based tests for master playlist composition."""

import tempfile
from pathlib import Path

import pytest
from hypothesis import given, settings, strategies as st

from hlsvault.modules.transcoding.errors import ManifestError
from hlsvault.modules.transcoding.manifest import MASTER_PLAYLIST, ManifestComposer

from conftest import standard_profile


PROFILE = standard_profile()
VIDEO_IDS = [t.track_id for t in PROFILE.video_tracks]
AUDIO_IDS = [t.track_id for t in PROFILE.audio_tracks]

EXPECTED_FULL_MANIFEST = (
    "#EXTM3U\n"
    "#EXT-X-VERSION:6\n"
    "#EXT-X-INDEPENDENT-SEGMENTS\n"
    "\n"
    '#EXT-X-MEDIA:TYPE=AUDIO,GROUP-ID="audio",NAME="audio_128k",DEFAULT=YES,AUTOSELECT=YES,URI="audio_128k.m3u8"\n'
    '#EXT-X-MEDIA:TYPE=AUDIO,GROUP-ID="audio",NAME="audio_64k",DEFAULT=NO,AUTOSELECT=YES,URI="audio_64k.m3u8"\n'
    "\n"
    '#EXT-X-STREAM-INF:BANDWIDTH=728000,RESOLUTION=640x360,AUDIO="audio"\n'
    "360p.m3u8\n"
    '#EXT-X-STREAM-INF:BANDWIDTH=1928000,RESOLUTION=1280x720,AUDIO="audio"\n'
    "720p.m3u8\n"
    '#EXT-X-STREAM-INF:BANDWIDTH=3628000,RESOLUTION=1920x1080,AUDIO="audio"\n'
    "1080p.m3u8\n"
)

successful_sets = st.sets(st.sampled_from(VIDEO_IDS + AUDIO_IDS), min_size=1)


def composer() -> ManifestComposer:
    return ManifestComposer(PROFILE.video_tracks, PROFILE.audio_tracks, default_audio_bandwidth=128000)


def referenced_playlists(manifest: str) -> list[str]:
    uris = []
    for line in manifest.splitlines():
        if line.startswith("#EXT-X-MEDIA:"):
            uris.append(line.split('URI="')[1].rstrip('"'))
        elif line and not line.startswith("#"):
            uris.append(line)
    return uris


class TestManifestComposition:

    def test_full_five_track_manifest(self) -> None:
        assert composer().render(AUDIO_IDS + VIDEO_IDS) == EXPECTED_FULL_MANIFEST

    def test_completion_order_does_not_matter(self) -> None:
        assert composer().render(["1080p", "audio_64k", "360p", "audio_128k", "720p"]) == EXPECTED_FULL_MANIFEST

    @given(successful=successful_sets)
    @settings(max_examples=100)
    def test_lists_exactly_the_successful_tracks(self, successful: set) -> None:
        manifest = composer().render(successful)
        assert sorted(referenced_playlists(manifest)) == sorted(f"{t}.m3u8" for t in successful)

    @given(successful=successful_sets)
    @settings(max_examples=100)
    def test_bandwidth_is_video_bitrate_plus_audio(self, successful: set) -> None:
        manifest = composer().render(successful)
        for track in PROFILE.video_tracks:
            line = f"BANDWIDTH={track.bandwidth + 128000},RESOLUTION={track.resolution}"
            assert (line in manifest) == (track.track_id in successful)

    @given(successful=successful_sets)
    @settings(max_examples=100)
    def test_exactly_one_default_audio(self, successful: set) -> None:
        manifest = composer().render(successful)
        audio_lines = [l for l in manifest.splitlines() if l.startswith("#EXT-X-MEDIA:")]
        if audio_lines:
            assert sum("DEFAULT=YES" in l for l in audio_lines) == 1
            assert "DEFAULT=YES" in audio_lines[0]

    def test_video_without_audio_has_no_group_reference(self) -> None:
        manifest = composer().render(["720p"])
        assert "#EXT-X-MEDIA" not in manifest
        assert 'AUDIO="audio"' not in manifest
        assert "#EXT-X-STREAM-INF:BANDWIDTH=1928000,RESOLUTION=1280x720\n720p.m3u8\n" in manifest

    def test_audio_only_manifest(self) -> None:
        assert composer().render(["audio_64k", "audio_128k"]) == (
            "#EXTM3U\n"
            "#EXT-X-VERSION:6\n"
            "#EXT-X-INDEPENDENT-SEGMENTS\n"
            "\n"
            '#EXT-X-MEDIA:TYPE=AUDIO,GROUP-ID="audio",NAME="audio_128k",DEFAULT=YES,AUTOSELECT=YES,URI="audio_128k.m3u8"\n'
            '#EXT-X-MEDIA:TYPE=AUDIO,GROUP-ID="audio",NAME="audio_64k",DEFAULT=NO,AUTOSELECT=YES,URI="audio_64k.m3u8"\n'
            "\n"
        )
        assert "#EXT-X-STREAM-INF" not in composer().render(["audio_64k"])

    def test_nothing_successful_is_rejected(self) -> None:
        with pytest.raises(ManifestError):
            composer().render([])

    def test_unknown_track_ids_are_ignored(self) -> None:
        manifest = composer().render(["360p", "4k"])
        assert "4k" not in manifest

    def test_bad_bitrate_is_a_manifest_error(self) -> None:
        profile = standard_profile(
            video_tracks=(PROFILE.video_tracks[0].model_copy(update={"bitrate": "fast"}),)
        )
        with pytest.raises(ManifestError):
            ManifestComposer(profile.video_tracks, profile.audio_tracks).render(["360p"])


class TestManifestFile:

    @given(successful=successful_sets)
    @settings(max_examples=50)
    def test_compose_is_idempotent(self, successful: set) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            first = composer().compose(tmp, successful).read_bytes()
            second_path = composer().compose(tmp, successful)
            assert second_path == Path(tmp) / MASTER_PLAYLIST
            assert second_path.read_bytes() == first

    def test_compose_leaves_no_temporary_files(self, tmp_path: Path) -> None:
        composer().compose(tmp_path, VIDEO_IDS)
        assert [p.name for p in tmp_path.iterdir()] == [MASTER_PLAYLIST]
        assert (tmp_path / MASTER_PLAYLIST).stat().st_mode & 0o777 == 0o644

    def test_compose_into_missing_directory_fails(self, tmp_path: Path) -> None:
        with pytest.raises(ManifestError):
            composer().compose(tmp_path / "missing", VIDEO_IDS)
