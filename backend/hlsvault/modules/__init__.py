"""Application modules.

This package contains the feature modules of the hlsvault backend:
- transcoding: HLS packaging pipeline driven by background jobs
"""
