"""Prometheus metrics for the packaging workers."""

import os

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    Info,
    generate_latest,
    multiprocess,
)

REGISTRY = CollectorRegistry()

# Celery prefork workers export through the multiprocess collector
if "prometheus_multiproc_dir" in os.environ:
    multiprocess.MultiProcessCollector(REGISTRY)


APP_INFO = Info(
    "hlsvault_app",
    "Application information",
    registry=REGISTRY,
)


# ============================================
# Pipeline Metrics
# ============================================
PIPELINE_RUNS_TOTAL = Counter(
    "hls_pipeline_runs_total",
    "Packaging pipeline runs by terminal status",
    ["status"],
    registry=REGISTRY,
)

PIPELINE_DURATION_SECONDS = Histogram(
    "hls_pipeline_duration_seconds",
    "Wall-clock duration of a packaging pipeline run",
    buckets=[10, 30, 60, 120, 300, 600, 1200, 1800, 3600, 7200, 10800],
    registry=REGISTRY,
)


# ============================================
# Track Metrics
# ============================================
TRACKS_TOTAL = Counter(
    "hls_tracks_total",
    "Transcoded tracks by kind and outcome",
    ["kind", "status"],
    registry=REGISTRY,
)

TRACK_ENCODE_DURATION_SECONDS = Histogram(
    "hls_track_encode_duration_seconds",
    "Duration of a single ffmpeg track encode",
    ["kind"],
    buckets=[1, 5, 15, 30, 60, 120, 300, 600, 1800, 3600, 7200],
    registry=REGISTRY,
)

VIDEO_ENCODES_IN_PROGRESS = Gauge(
    "hls_video_encodes_in_progress",
    "Video track encodes currently running in this process",
    registry=REGISTRY,
)


def get_metrics() -> bytes:
    """Generate latest metrics in Prometheus format."""
    return generate_latest(REGISTRY)


def set_app_info(version: str, environment: str) -> None:
    """Set application info metrics."""
    APP_INFO.info({
        "version": version,
        "environment": environment,
    })
