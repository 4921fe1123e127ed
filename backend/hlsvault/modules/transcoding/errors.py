"""Exceptions raised by the packaging pipeline.

Track-scoped errors are caught at the orchestrator or obfuscation boundary
and recorded on that track's result. Asset-scoped errors propagate to the
pipeline's top-level handler, which marks the asset as failed.
"""

from typing import Optional


class TranscodingError(Exception):
    """Base class for all packaging errors."""


class CapabilityError(TranscodingError):
    """No usable encoder or prober binary could be started."""


class ProbeError(TranscodingError):
    """The source could not be probed for a duration. Fatal to the asset."""


class TrackEncodeError(TranscodingError):
    """A single track failed to encode. Fatal only to that track."""

    def __init__(self, track_id: str, message: str, stderr: Optional[str] = None):
        super().__init__(f"{track_id}: {message}")
        self.track_id = track_id
        self.stderr = stderr


class TrackTimeoutError(TrackEncodeError):
    """A track encode exceeded its wall-clock budget and was killed."""


class ObfuscationError(TranscodingError):
    """A track claimed success but its playlist could not be secured.

    The track is demoted to failed; the asset continues with its siblings.
    """

    def __init__(self, track_id: str, message: str):
        super().__init__(f"{track_id}: {message}")
        self.track_id = track_id


class ManifestError(TranscodingError):
    """The master playlist could not be composed. Fatal to the asset."""


class NoTracksSucceededError(TranscodingError):
    """Every configured track failed, so there is nothing to package."""
