"""Shared fixtures for packaging tests.

``ffmpeg`` and ``ffprobe`` are replaced by small executable Python scripts so
the real subprocess, timeout and file-handling paths are exercised. The fake
encoder honours ``-hls_key_info_file`` and writes AES-128-CBC encrypted
segments, so produced packages can be decrypted like real ones.

Environment knobs read by the fakes:
    FAKE_FFMPEG_FAIL       comma separated track ids that exit non-zero
    FAKE_FFMPEG_HANG       comma separated track ids that never finish
    FAKE_FFMPEG_SLEEP      seconds every encode takes
    FAKE_FFMPEG_SEGMENTS   segments per track (default 3)
    FAKE_FFMPEG_LOG        file receiving "<track> <start> <end>" lines
    FAKE_FFMPEG_ENCODERS   text printed for ``-encoders``
    FAKE_FFMPEG_NO_THUMBNAIL  fail single-frame extraction
    FAKE_FFPROBE_FAIL      make ffprobe exit non-zero
    FAKE_FFPROBE_DURATION  reported duration ("none" omits it)
"""

import re
import stat
import sys
from pathlib import Path

import pytest

from hlsvault.modules.transcoding.models import HardwareAccel
from hlsvault.modules.transcoding.schemas import (
    AudioTrackSpec,
    EncoderConfig,
    TranscodeProfile,
    VideoTrackSpec,
)


FAKE_FFMPEG_BODY = r'''
import os
import sys
import time


def option(argv, name):
    return argv[argv.index(name) + 1]


def listed(name, track):
    return track in [t for t in os.environ.get(name, "").split(",") if t]


def encode(argv):
    from cryptography.hazmat.primitives import padding
    from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

    playlist = argv[-1]
    track = os.path.splitext(os.path.basename(playlist))[0]
    started = time.time()

    delay = float(os.environ.get("FAKE_FFMPEG_SLEEP", "0"))
    if listed("FAKE_FFMPEG_HANG", track):
        delay = 600
    time.sleep(delay)

    if listed("FAKE_FFMPEG_FAIL", track):
        sys.stderr.write("Error while processing %s: Conversion failed!\n" % track)
        return 1

    with open(option(argv, "-hls_key_info_file")) as f:
        uri, key_path, iv_hex = f.read().splitlines()
    with open(key_path, "rb") as f:
        key = f.read()
    iv = bytes.fromhex(iv_hex)

    pattern = option(argv, "-hls_segment_filename")
    hls_time = option(argv, "-hls_time")
    count = int(os.environ.get("FAKE_FFMPEG_SEGMENTS", "3"))
    lines = [
        "#EXTM3U",
        "#EXT-X-VERSION:3",
        "#EXT-X-TARGETDURATION:%s" % hls_time,
        "#EXT-X-MEDIA-SEQUENCE:0",
        '#EXT-X-KEY:METHOD=AES-128,URI="%s",IV=0x%s' % (uri, iv_hex),
    ]
    for index in range(count):
        segment = pattern % index
        padder = padding.PKCS7(128).padder()
        plain = padder.update(("%s:%d:" % (track, index)).encode() * 32) + padder.finalize()
        encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
        with open(segment, "wb") as f:
            f.write(encryptor.update(plain) + encryptor.finalize())
        lines.append("#EXTINF:%s.000000," % hls_time)
        lines.append(os.path.basename(segment))
    lines.append("#EXT-X-ENDLIST")
    with open(playlist, "w") as f:
        f.write("\n".join(lines) + "\n")

    log = os.environ.get("FAKE_FFMPEG_LOG")
    if log:
        with open(log, "a") as f:
            f.write("%s %f %f\n" % (track, started, time.time()))
    return 0


def main(argv):
    if "-encoders" in argv:
        sys.stdout.write(os.environ.get(
            "FAKE_FFMPEG_ENCODERS",
            " V....D libx264              libx264 H.264 / AVC\n A....D aac                  AAC\n",
        ))
        return 0
    if "-vframes" in argv:
        if os.environ.get("FAKE_FFMPEG_NO_THUMBNAIL"):
            sys.stderr.write("Output file is empty, nothing was encoded\n")
            return 1
        with open(argv[-1], "wb") as f:
            f.write(b"\xff\xd8fake-jpeg\xff\xd9")
        return 0
    return encode(argv)


if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
'''


FAKE_FFPROBE_BODY = r'''
import json
import os
import sys

if os.environ.get("FAKE_FFPROBE_FAIL"):
    sys.stderr.write("%s: Invalid data found when processing input\n" % sys.argv[-1])
    sys.exit(1)

fmt = {"filename": sys.argv[-1], "format_name": "mov,mp4,m4a,3gp,3g2,mj2"}
duration = os.environ.get("FAKE_FFPROBE_DURATION", "125.7")
if duration != "none":
    fmt["duration"] = duration
print(json.dumps({
    "streams": [{"codec_type": "video", "width": 1920, "height": 1080}, {"codec_type": "audio"}],
    "format": fmt,
}))
'''

TRACK_IDS = ["audio_128k", "audio_64k", "360p", "720p", "1080p"]
OPAQUE_SEGMENT_RE = re.compile(r"^(seg|aud)_[0-9a-f]{12}\.ts$")


def write_executable(path: Path, body: str) -> Path:
    path.write_text(f"#!{sys.executable}\n{body}")
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


def playlist_segments(playlist: Path) -> list[str]:
    """File names referenced by a media playlist."""
    return [
        line.strip()
        for line in playlist.read_text().splitlines()
        if line.strip() and not line.startswith("#")
    ]


def playlist_key(playlist: Path) -> tuple[str, bytes]:
    """(key URI, IV) from the playlist's EXT-X-KEY tag."""
    match = re.search(r'#EXT-X-KEY:METHOD=AES-128,URI="([^"]+)",IV=0x([0-9a-f]{32})', playlist.read_text())
    assert match, f"No EXT-X-KEY in {playlist}"
    return match.group(1), bytes.fromhex(match.group(2))


def decrypt_segment(data: bytes, key: bytes, iv: bytes) -> bytes:
    from cryptography.hazmat.primitives import padding
    from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

    decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
    padded = decryptor.update(data) + decryptor.finalize()
    unpadder = padding.PKCS7(128).unpadder()
    return unpadder.update(padded) + unpadder.finalize()


def standard_profile(**overrides) -> TranscodeProfile:
    values = dict(
        video_tracks=(
            VideoTrackSpec(track_id="360p", width=640, height=360, bitrate="600k"),
            VideoTrackSpec(track_id="720p", width=1280, height=720, bitrate="1800k"),
            VideoTrackSpec(track_id="1080p", width=1920, height=1080, bitrate="3500k"),
        ),
        audio_tracks=(
            AudioTrackSpec(track_id="audio_128k", bitrate="128k"),
            AudioTrackSpec(track_id="audio_64k", bitrate="64k"),
        ),
        hardware_acceleration=False,
        process_timeout=30,
        probe_timeout=30,
    )
    values.update(overrides)
    return TranscodeProfile(**values)


@pytest.fixture
def fake_ffmpeg(tmp_path: Path) -> Path:
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir(exist_ok=True)
    return write_executable(bin_dir / "ffmpeg", FAKE_FFMPEG_BODY)


@pytest.fixture
def fake_ffprobe(tmp_path: Path) -> Path:
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir(exist_ok=True)
    return write_executable(bin_dir / "ffprobe", FAKE_FFPROBE_BODY)


@pytest.fixture
def encoder_config(fake_ffmpeg: Path, fake_ffprobe: Path) -> EncoderConfig:
    return EncoderConfig(
        ffmpeg_path=str(fake_ffmpeg),
        ffprobe_path=str(fake_ffprobe),
        hw_accel=HardwareAccel.NONE,
    )


@pytest.fixture
def source_video(tmp_path: Path) -> Path:
    path = tmp_path / "uploads" / "source.mp4"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"\x00\x00\x00\x18ftypmp42" + b"\x00" * 1024)
    return path


@pytest.fixture
def output_dir(tmp_path: Path) -> Path:
    path = tmp_path / "hls" / "asset"
    path.mkdir(parents=True)
    return path


@pytest.fixture
def profile() -> TranscodeProfile:
    return standard_profile()
