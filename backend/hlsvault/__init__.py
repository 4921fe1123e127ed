"""hlsvault backend application.

Turns an uploaded video into an encrypted, multi-bitrate, multi-track HLS
package with obfuscated segment names.

Modules:
    - core: Configuration, logging, tracing, metrics, database, Celery setup
    - modules.transcoding: Capability detection, per-track ffmpeg supervision,
      segment obfuscation, key lifecycle and manifest assembly
"""

__version__ = "0.1.0"
