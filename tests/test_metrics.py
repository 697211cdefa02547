"""Tests for the metrics recorder."""

import threading

import pytest

from doc_image_optimizer.core.metrics import MetricsRecorder
from doc_image_optimizer.core.models import (
    BatchStats,
    ImageRole,
    OptimizedImage,
    Technique,
)
from doc_image_optimizer.testing.fakes import FakeMetricsExporter


def make_image(**overrides):
    values = dict(
        data=b"x" * 250,
        original_size=1000,
        optimized_size=250,
        compression_ratio=0.75,
        format="jpeg",
        quality_used=55,
        processing_time=0.5,
        technique=Technique.AGGRESSIVE,
        role=ImageRole.PHOTO,
        psnr=30.0,
    )
    values.update(overrides)
    return OptimizedImage(**values)


class TestMetricsRecorder:
    """Tests for MetricsRecorder."""

    def test_records_images(self):
        recorder = MetricsRecorder()
        recorder.record(make_image())
        recorder.record(make_image(role=ImageRole.LOGO, format="png", psnr=40.0))

        snapshot = recorder.snapshot()
        assert snapshot["total_images_processed"] == 2
        assert snapshot["successful_optimizations"] == 2
        assert snapshot["total_original_size"] == 2000
        assert snapshot["total_optimized_size"] == 500
        assert snapshot["overall_compression_ratio"] == pytest.approx(0.75)
        assert snapshot["average_processing_time"] == pytest.approx(0.5)
        assert snapshot["average_psnr"] == pytest.approx(35.0)
        assert snapshot["format_breakdown"]["png"]["count"] == 1
        assert snapshot["role_breakdown"]["photo"]["compression_ratio"] == pytest.approx(0.75)

    def test_degraded_and_passthrough(self):
        recorder = MetricsRecorder()
        recorder.record(
            make_image(
                technique=Technique.FALLBACK,
                degraded=True,
                optimized_size=1000,
                compression_ratio=0.0,
                quality_used=None,
                psnr=None,
            )
        )
        recorder.record(
            make_image(
                technique=Technique.PASSTHROUGH,
                optimized_size=1000,
                compression_ratio=0.0,
                quality_used=None,
                psnr=None,
            )
        )

        snapshot = recorder.snapshot()
        assert snapshot["degraded_optimizations"] == 1
        assert snapshot["successful_optimizations"] == 1
        assert snapshot["passthrough_images"] == 1
        assert snapshot["average_psnr"] is None

    def test_records_batches(self):
        recorder = MetricsRecorder()
        recorder.record(
            BatchStats(total_images=3, cache_hits=2, omitted_count=1, retry_count=4, processing_time=1.0)
        )
        recorder.record_status("completed")
        recorder.record_status("aborted")

        snapshot = recorder.snapshot()
        batches = snapshot["batches"]
        assert batches["total"] == 1
        assert batches["completed"] == 1
        assert batches["aborted"] == 1
        assert batches["cache_hits"] == 2
        assert batches["omitted_images"] == 1
        assert batches["retries"] == 4
        assert snapshot["batch_performance"]["total_operations"] == 1

    def test_records_errors_by_category(self):
        recorder = MetricsRecorder()
        recorder.record_error("timeout")
        recorder.record_error("timeout")
        recorder.record_error("fetch")
        assert recorder.snapshot()["error_breakdown"] == {"timeout": 2, "fetch": 1}

    def test_unknown_type_rejected(self):
        with pytest.raises(TypeError):
            MetricsRecorder().record("not metrics")

    def test_snapshot_is_a_copy(self):
        recorder = MetricsRecorder()
        recorder.record(make_image())
        snapshot = recorder.snapshot()
        snapshot["role_breakdown"]["photo"]["count"] = 99
        assert recorder.snapshot()["role_breakdown"]["photo"]["count"] == 1

    def test_empty_snapshot(self):
        snapshot = MetricsRecorder().snapshot()
        assert snapshot["overall_compression_ratio"] == 0.0
        assert snapshot["average_processing_time"] == 0.0
        assert snapshot["batch_performance"] == {}
        assert "timestamp" in snapshot

    def test_export(self):
        recorder = MetricsRecorder()
        recorder.record(make_image())
        exporter = FakeMetricsExporter()

        snapshot = recorder.export(exporter)

        assert exporter.snapshots == [snapshot]

    def test_reset(self):
        recorder = MetricsRecorder()
        recorder.record(make_image())
        recorder.record(BatchStats(total_images=1))
        recorder.reset()
        snapshot = recorder.snapshot()
        assert snapshot["total_images_processed"] == 0
        assert snapshot["batch_performance"] == {}
        assert recorder.history() == []

    def test_concurrent_recording(self):
        recorder = MetricsRecorder()

        def worker():
            for _ in range(100):
                recorder.record(make_image())

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert recorder.snapshot()["total_images_processed"] == 800


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, hours: float) -> None:
        self.now += hours * 3600


def batch(images=2, original=2000, optimized=500, degraded=0, processing_time=1.0):
    return BatchStats(
        total_images=images,
        total_original_size=original,
        total_optimized_size=optimized,
        success_count=images - degraded,
        degraded_count=degraded,
        processing_time=processing_time,
    )


class TestBatchHistory:
    """Period aggregates, effectiveness and the monitoring summary."""

    def test_period_only_counts_recent_batches(self):
        clock = FakeClock()
        recorder = MetricsRecorder(clock=clock)
        recorder.record(batch(images=4, original=4000, optimized=1000))
        clock.advance(30)
        recorder.record(batch(images=2, original=2000, optimized=1000, degraded=1))
        recorder.record(batch(images=1, original=1000, optimized=500, processing_time=3.0))

        period = recorder.metrics_for_period(hours=24)

        assert period["batches"] == 2
        assert period["total_images"] == 3
        assert period["degraded_images"] == 1
        assert period["total_size_saved"] == 1500
        assert period["overall_compression_ratio"] == pytest.approx(0.5)
        assert period["success_rate"] == pytest.approx(2 / 3)
        assert period["average_processing_time"] == pytest.approx(2.0)
        assert period["max_processing_time"] == 3.0

        assert recorder.metrics_for_period(hours=48)["batches"] == 3

    def test_empty_period(self):
        period = MetricsRecorder().metrics_for_period()
        assert period["batches"] == 0
        assert period["overall_compression_ratio"] == 0.0
        assert period["max_processing_time"] == 0.0

    def test_history_is_bounded(self):
        recorder = MetricsRecorder(max_history=2)
        for images in (1, 2, 3):
            recorder.record(batch(images=images))
        assert [r.total_images for r in recorder.history()] == [2, 3]

    def test_effectiveness_picks_best_format_and_role(self):
        recorder = MetricsRecorder()
        recorder.record(make_image())
        recorder.record(
            make_image(
                role=ImageRole.LOGO,
                format="png",
                original_size=1000,
                optimized_size=900,
                compression_ratio=0.1,
                data=b"x" * 900,
            )
        )

        effectiveness = recorder.effectiveness()

        assert effectiveness["best_format"] == "jpeg"
        assert effectiveness["best_role"] == "photo"
        assert effectiveness["total_size_saved"] == 850
        assert effectiveness["average_size_reduction"] == 425
        assert effectiveness["overall_compression_ratio"] == pytest.approx(0.425)

    def test_effectiveness_trend_keeps_recent_batches(self):
        clock = FakeClock()
        recorder = MetricsRecorder(clock=clock)
        for optimized in (1500, 1000, 500):
            recorder.record(batch(optimized=optimized))
            clock.advance(1)

        trend = recorder.effectiveness(trend_length=2)["trend"]

        assert [point["compression_ratio"] for point in trend] == [0.5, 0.75]
        assert trend[0]["timestamp"].startswith("2023-11-14T")

    def test_effectiveness_without_data(self):
        effectiveness = MetricsRecorder().effectiveness()
        assert effectiveness["best_format"] is None
        assert effectiveness["best_role"] is None
        assert effectiveness["trend"] == []

    def test_monitoring_summary_uses_percentages(self):
        recorder = MetricsRecorder()
        recorder.record(make_image())
        recorder.record(make_image())
        recorder.record(make_image())
        recorder.record(
            make_image(
                degraded=True,
                technique=Technique.FALLBACK,
                optimized_size=1000,
                compression_ratio=0.0,
                data=b"x" * 1000,
                quality_used=None,
                psnr=None,
            )
        )

        summary = recorder.monitoring_summary()

        assert summary["total_images_processed"] == 4
        assert summary["success_rate"] == 75.0
        assert summary["error_rate"] == 25.0
        assert summary["compression_ratio"] == 56.25
        assert summary["total_size_saved"] == 2250
        assert "last_updated" in summary
