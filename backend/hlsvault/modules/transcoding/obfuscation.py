"""Segment renaming and the sealed chunk/key mapping artifact.

After a track's encoder exits successfully its sequentially named temporary
segments are given opaque names. For every segment the new name is created
on disk before the playlist is switched over, and the old name is removed
only after that, so the playlist never points at a missing file.
"""

import json
import logging
import os
import re
import shutil
import tempfile
from pathlib import Path
from typing import Mapping, Union

from hlsvault.core.encryption import seal, unseal
from hlsvault.modules.transcoding.errors import ObfuscationError
from hlsvault.modules.transcoding.ffmpeg import playlist_path, temp_segment_files
from hlsvault.modules.transcoding.keys import generate_secure_name, write_private
from hlsvault.modules.transcoding.models import TrackKind
from hlsvault.modules.transcoding.schemas import ChunkMapping, KeyMaterial

logger = logging.getLogger(__name__)

CHUNK_MAP_FILE = ".chunk_map.json"
ENCRYPTION_MAP_FILE = ".encryption_map.json"

SEGMENT_PREFIXES = {
    TrackKind.VIDEO: "seg_",
    TrackKind.AUDIO: "aud_",
}

_NAME_CHARS = r"A-Za-z0-9_.\-"


def _name_pattern(name: str) -> str:
    return rf"(?<![{_NAME_CHARS}]){re.escape(name)}(?![{_NAME_CHARS}])"


def _references(text: str, name: str) -> bool:
    return re.search(_name_pattern(name), text) is not None


def _replace_name(text: str, old: str, new: str) -> str:
    """Replace whole-file-name occurrences of ``old`` only."""
    return re.sub(_name_pattern(old), new, text)


def write_atomic(path: Path, text: str, mode: int = 0o644) -> None:
    """Replace ``path`` in one step; readers see the old or the new text."""
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=".tmp_", suffix=path.suffix)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
        os.chmod(tmp, mode)
        os.replace(tmp, path)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise


def _link_or_copy(src: Path, dst: Path) -> None:
    try:
        os.link(src, dst)
    except OSError:
        shutil.copy2(src, dst)


class SegmentObfuscator:
    """Renames one track's segments and rewrites its playlist."""

    def secure(
        self,
        output_dir: Union[str, Path],
        track_id: str,
        kind: TrackKind,
    ) -> ChunkMapping:
        """Give every temporary segment of ``track_id`` an opaque name.

        Raises:
            ObfuscationError: If the track playlist is missing or unreadable
        """
        output_dir = Path(output_dir)
        playlist = playlist_path(output_dir, track_id)
        try:
            content = playlist.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise ObfuscationError(track_id, f"playlist unreadable: {e}")

        prefix = SEGMENT_PREFIXES[kind]
        mapping = ChunkMapping(track_id=track_id, kind=kind)
        temp_files = temp_segment_files(output_dir, track_id)

        try:
            for temp_file in temp_files:
                old_name = temp_file.name
                if not _references(content, old_name):
                    # Not referenced by the playlist: a leftover from an earlier run
                    continue

                new_name = self._unused_name(output_dir, prefix)
                new_file = output_dir / new_name

                _link_or_copy(temp_file, new_file)
                content = _replace_name(content, old_name, new_name)
                write_atomic(playlist, content)
                temp_file.unlink()

                mapping.entries[old_name] = new_name
        except OSError as e:
            raise ObfuscationError(track_id, f"segment rename failed: {e}")

        removed = 0
        for stray in temp_segment_files(output_dir, track_id):
            stray.unlink(missing_ok=True)
            removed += 1
        if removed:
            logger.warning(f"Removed {removed} stray temporary segments for {track_id}")

        logger.info(f"Secured {mapping.segment_count} segments for {track_id} ({kind.value})")
        return mapping

    @staticmethod
    def _unused_name(output_dir: Path, prefix: str) -> str:
        while True:
            name = generate_secure_name(prefix) + ".ts"
            if not (output_dir / name).exists():
                return name


def write_mapping_artifact(
    output_dir: Union[str, Path],
    mappings: Mapping[str, ChunkMapping],
    keys: Mapping[str, KeyMaterial],
) -> tuple[Path, Path]:
    """Persist the sealed chunk and key maps for audit/debug.

    Only tracks present in ``mappings`` are recorded. Both files are owner-only
    and must never be served.
    """
    output_dir = Path(output_dir)
    chunk_map = {track_id: dict(m.entries) for track_id, m in mappings.items()}
    key_map = {
        track_id: {
            "key": material.key_hex,
            "iv": material.iv_hex,
            "key_file": material.key_file_name,
        }
        for track_id, material in keys.items()
        if track_id in mappings
    }

    chunk_path = output_dir / CHUNK_MAP_FILE
    key_path = output_dir / ENCRYPTION_MAP_FILE
    write_private(chunk_path, seal(json.dumps(chunk_map, sort_keys=True).encode()))
    write_private(key_path, seal(json.dumps(key_map, sort_keys=True).encode()))
    return chunk_path, key_path


def read_mapping_artifact(output_dir: Union[str, Path]) -> tuple[dict, dict]:
    """Load the chunk and key maps written by ``write_mapping_artifact``."""
    output_dir = Path(output_dir)
    chunk_map = json.loads(unseal((output_dir / CHUNK_MAP_FILE).read_bytes()))
    key_map = json.loads(unseal((output_dir / ENCRYPTION_MAP_FILE).read_bytes()))
    return chunk_map, key_map
