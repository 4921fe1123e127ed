"""AES-128 key issuance for HLS segment encryption.

Each track gets its own key and IV. The raw key is written next to the
package under an unguessable name so the key-serving endpoint can find it; the
key-info descriptor tells ffmpeg where the player will fetch the key from,
where to read it now, and which IV to use.
"""

import hashlib
import logging
import os
import re
import secrets
import time
from pathlib import Path
from typing import Union

from hlsvault.modules.transcoding.schemas import KeyMaterial

logger = logging.getLogger(__name__)

KEY_FILE_PREFIX = "key_"
KEY_FILE_SUFFIX = ".key"
KEY_INFO_GLOB = "keyinfo_*.txt"

# Names the key-serving endpoint accepts
KEY_FILE_NAME_RE = re.compile(r"^key_[a-f0-9]{12}\.key$")

OWNER_ONLY = 0o600


def generate_secure_name(prefix: str = "", length: int = 12) -> str:
    """Opaque name from fresh randomness and a high-resolution clock.

    Carries no information about the track or the segment position.
    """
    digest = hashlib.sha256(secrets.token_bytes(16) + str(time.time_ns()).encode()).hexdigest()
    return prefix + digest[:length]


def is_valid_key_file_name(name: str) -> bool:
    """Check a requested key file name against the agreed pattern."""
    return bool(KEY_FILE_NAME_RE.fullmatch(name))


def write_private(path: Path, data: Union[bytes, str]) -> None:
    """Create ``path`` readable and writable by the owner only."""
    if isinstance(data, str):
        data = data.encode("utf-8")
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, OWNER_ONLY)
    with os.fdopen(fd, "wb") as f:
        f.write(data)
    os.chmod(path, OWNER_ONLY)


class EncryptionKeyManager:
    """Issues and cleans up per-track key material in one output directory."""

    def __init__(self, output_dir: Union[str, Path], key_uri_prefix: str = "/api/hls/key"):
        self.output_dir = Path(output_dir)
        self.key_uri_prefix = key_uri_prefix.rstrip("/")

    def key_info_path(self, track_id: str) -> Path:
        return self.output_dir / f"keyinfo_{track_id}.txt"

    def issue(self, track_id: str) -> KeyMaterial:
        """Create a key, an IV, the key file and the key-info descriptor.

        Must run before the track's encoder starts: ffmpeg reads the
        descriptor when it opens the first segment.
        """
        self.output_dir.mkdir(parents=True, exist_ok=True)

        key = secrets.token_bytes(16)
        iv = secrets.token_bytes(16)
        key_file_name = generate_secure_name(KEY_FILE_PREFIX) + KEY_FILE_SUFFIX
        key_file_path = self.output_dir / key_file_name
        key_uri = f"{self.key_uri_prefix}/{key_file_name}"
        key_info_path = self.key_info_path(track_id)

        write_private(key_file_path, key)
        # URI for the player, local path for ffmpeg, IV
        write_private(key_info_path, f"{key_uri}\n{key_file_path}\n{iv.hex()}")

        logger.info(f"Issued key {key_file_name} for track {track_id}")
        return KeyMaterial(
            track_id=track_id,
            key_hex=key.hex(),
            iv_hex=iv.hex(),
            key_file_name=key_file_name,
            key_file_path=key_file_path,
            key_info_path=key_info_path,
            key_uri=key_uri,
        )

    def discard(self, material: KeyMaterial) -> None:
        """Remove everything issued for a track that will not be published."""
        for path in (material.key_file_path, material.key_info_path):
            path.unlink(missing_ok=True)

    def cleanup_key_info(self) -> int:
        """Delete the transient key-info descriptors. Key files stay."""
        removed = 0
        for path in self.output_dir.glob(KEY_INFO_GLOB):
            path.unlink(missing_ok=True)
            removed += 1
        return removed
