"""Tests for Prometheus metrics."""

from gacha_engine.metrics import MetricsCollector


class TestMetricsCollector:
    def test_record_gesture(self):
        m = MetricsCollector()
        m.record_gesture("shake")
        m.record_gesture("shake")
        m.record_gesture("blow")
        assert m.gesture_counts == {"shake": 2, "blow": 1}

    def test_record_rejection(self):
        m = MetricsCollector()
        m.record_rejection("swing", "reversal")
        m.record_rejection("swing", "reversal")
        m.record_rejection("shake", "cooldown")
        assert m.rejection_counts == {("swing", "reversal"): 2, ("shake", "cooldown"): 1}

    def test_render_prometheus_format(self):
        m = MetricsCollector()
        m.record_gesture("grab")
        m.record_rejection("swing", "reversal")
        m.record_completion("grab")
        m.record_session("grab")
        m.record_sample("motion", 0.0002)
        m.set_progress(40)
        m.set_connections(3)

        output = m.render()
        assert 'gacha_engine_gestures_total{gesture="grab"} 1' in output
        assert 'gacha_engine_rejections_total{classifier="swing",reason="reversal"} 1' in output
        assert 'gacha_engine_completions_total{mode="grab"} 1' in output
        assert 'gacha_engine_samples_total{source="motion"} 1' in output
        assert "gacha_engine_progress 40" in output
        assert "gacha_engine_active_connections 3" in output
        assert "# HELP" in output
        assert "# TYPE" in output

    def test_histogram_buckets(self):
        m = MetricsCollector()
        for _ in range(10):
            m.record_sample("audio", 0.0003)
        output = m.render()
        assert 'gacha_engine_sample_latency_seconds_bucket{le="0.0005"} 10' in output
        assert 'gacha_engine_sample_latency_seconds_bucket{le="0.0001"} 0' in output
        assert "gacha_engine_sample_latency_seconds_count 10" in output
