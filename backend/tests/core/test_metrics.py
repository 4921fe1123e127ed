"""Tests for the worker metrics registry."""

from hlsvault.core.metrics import REGISTRY, get_metrics, set_app_info


class TestMetricsRegistry:

    def test_app_info(self) -> None:
        set_app_info("1.2.3", "staging")

        labels = {"version": "1.2.3", "environment": "staging"}
        assert REGISTRY.get_sample_value("hlsvault_app_info", labels) == 1.0

    def test_pipeline_metrics_are_registered(self) -> None:
        output = get_metrics()
        for name in (
            b"hls_pipeline_runs_total",
            b"hls_pipeline_duration_seconds",
            b"hls_tracks_total",
            b"hls_track_encode_duration_seconds",
            b"hls_video_encodes_in_progress",
        ):
            assert name in output
