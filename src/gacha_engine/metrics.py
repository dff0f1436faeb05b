"""Prometheus-compatible metrics for GachaEngine.

Exposes counters and gauges in the Prometheus text exposition format,
generated directly without a client library.

Tracked metrics:
- gacha_engine_gestures_total (counter, by gesture kind)
- gacha_engine_rejections_total (counter, by classifier and reason)
- gacha_engine_completions_total (counter, by mode)
- gacha_engine_sessions_total (counter, by mode)
- gacha_engine_samples_total (counter, by source)
- gacha_engine_sample_latency_seconds (histogram)
- gacha_engine_progress (gauge, last published value)
- gacha_engine_active_connections (gauge)
"""

from __future__ import annotations

import threading
import time
from collections import Counter


class _Histogram:
    """Cumulative-bucket histogram."""

    def __init__(self, buckets: list[float]):
        self.buckets = sorted(buckets)
        self.bucket_counts = [0] * len(self.buckets)
        self.count = 0
        self.sum = 0.0
        self._lock = threading.Lock()

    def observe(self, value: float):
        with self._lock:
            self.count += 1
            self.sum += value
            for i, b in enumerate(self.buckets):
                if value <= b:
                    self.bucket_counts[i] += 1
                    break

    def render(self, name: str, help_text: str) -> list[str]:
        lines = [
            f"# HELP {name} {help_text}",
            f"# TYPE {name} histogram",
        ]
        with self._lock:
            cumulative = 0
            for b, n in zip(self.buckets, self.bucket_counts):
                cumulative += n
                lines.append(f'{name}_bucket{{le="{b}"}} {cumulative}')
            lines.append(f'{name}_bucket{{le="+Inf"}} {self.count}')
            lines.append(f"{name}_sum {self.sum:.6f}")
            lines.append(f"{name}_count {self.count}")
        return lines


def _render_counter(name: str, help_text: str, label: str, counts: Counter) -> list[str]:
    lines = [f"# HELP {name} {help_text}", f"# TYPE {name} counter"]
    for key, count in sorted(counts.items()):
        if isinstance(key, tuple):
            labels = ",".join(f'{k}="{v}"' for k, v in zip(label.split(","), key))
        else:
            labels = f'{label}="{key}"'
        lines.append(f"{name}{{{labels}}} {count}")
    return lines


class MetricsCollector:
    """Collects and renders engine metrics. Safe to share between sessions."""

    def __init__(self):
        self._gestures: Counter = Counter()
        self._rejections: Counter = Counter()
        self._completions: Counter = Counter()
        self._sessions: Counter = Counter()
        self._samples: Counter = Counter()
        self._progress = 0
        self._active_connections = 0
        self._lock = threading.Lock()

        # Per-sample processing cost, 10µs to 5ms
        self._latency = _Histogram(
            [0.00001, 0.00005, 0.0001, 0.0005, 0.001, 0.002, 0.005]
        )
        self._start_time = time.time()

    def record_gesture(self, kind: str):
        with self._lock:
            self._gestures[kind] += 1

    def record_rejection(self, classifier: str, reason: str):
        with self._lock:
            self._rejections[(classifier, reason)] += 1

    def record_completion(self, mode: str):
        with self._lock:
            self._completions[mode] += 1

    def record_session(self, mode: str):
        with self._lock:
            self._sessions[mode] += 1

    def record_sample(self, source: str, latency_seconds: float):
        with self._lock:
            self._samples[source] += 1
        self._latency.observe(latency_seconds)

    def set_progress(self, value: int):
        self._progress = value

    def set_connections(self, count: int):
        self._active_connections = count

    def render(self) -> str:
        """Render all metrics in Prometheus text exposition format."""
        lines: list[str] = []

        uptime = time.time() - self._start_time
        lines.append("# HELP gacha_engine_uptime_seconds Time since collector start")
        lines.append("# TYPE gacha_engine_uptime_seconds gauge")
        lines.append(f"gacha_engine_uptime_seconds {uptime:.1f}")
        lines.append("")

        with self._lock:
            blocks = [
                ("gacha_engine_gestures_total", "Accepted gesture events by kind", "gesture", self._gestures),
                ("gacha_engine_rejections_total", "Classifier fires rejected", "classifier,reason", self._rejections),
                ("gacha_engine_completions_total", "Sessions that reached completion", "mode", self._completions),
                ("gacha_engine_sessions_total", "Sessions entered", "mode", self._sessions),
                ("gacha_engine_samples_total", "Sensor samples processed", "source", self._samples),
            ]
            for name, help_text, label, counts in blocks:
                lines.extend(_render_counter(name, help_text, label, Counter(counts)))
                lines.append("")

        lines.extend(self._latency.render(
            "gacha_engine_sample_latency_seconds",
            "Per-sample classification latency in seconds",
        ))
        lines.append("")

        lines.append("# HELP gacha_engine_progress Last published progress value")
        lines.append("# TYPE gacha_engine_progress gauge")
        lines.append(f"gacha_engine_progress {self._progress}")
        lines.append("")

        lines.append("# HELP gacha_engine_active_connections Current WebSocket connections")
        lines.append("# TYPE gacha_engine_active_connections gauge")
        lines.append(f"gacha_engine_active_connections {self._active_connections}")
        lines.append("")

        return "\n".join(lines) + "\n"

    @property
    def gesture_counts(self) -> dict[str, int]:
        with self._lock:
            return dict(self._gestures)

    @property
    def completion_counts(self) -> dict[str, int]:
        with self._lock:
            return dict(self._completions)

    @property
    def rejection_counts(self) -> dict[tuple[str, str], int]:
        with self._lock:
            return dict(self._rejections)
