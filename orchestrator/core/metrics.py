# orchestrator/core/metrics.py
"""
Metrics sink

Counters and duration summaries kept per instance and rendered in the
Prometheus text exposition format. The app creates one sink and injects
it into the reconciler and drift detector.
"""

import threading
from collections import defaultdict
from typing import Dict, Optional, Any, Tuple

APPLY_TOTAL = "headscale_orchestrator_apply_total"
DRIFT_CHECKS_TOTAL = "headscale_orchestrator_drift_checks_total"
CONFIG_SYNC_DURATION = "headscale_orchestrator_config_sync_duration_seconds"
AUTH_KEYS_ISSUED_TOTAL = "headscale_orchestrator_auth_keys_issued_total"

HELP = {
    APPLY_TOTAL: "Total number of apply operations",
    DRIFT_CHECKS_TOTAL: "Total number of drift checks",
    CONFIG_SYNC_DURATION: "Duration of config synchronization operations",
    AUTH_KEYS_ISSUED_TOTAL: "Total number of pre-auth key issue attempts",
}


class MetricsSink:
    """Thread-safe in-process metrics"""

    def __init__(self):
        self._lock = threading.Lock()
        self._counters: Dict[str, float] = defaultdict(float)
        self._summaries: Dict[str, Tuple[int, float]] = {}

    def inc(self, name: str, labels: Optional[Dict[str, str]] = None, value: float = 1):
        key = self._key(name, labels)
        with self._lock:
            self._counters[key] += value

    def observe(self, name: str, seconds: float, labels: Optional[Dict[str, str]] = None):
        key = self._key(name, labels)
        with self._lock:
            count, total = self._summaries.get(key, (0, 0.0))
            self._summaries[key] = (count + 1, total + seconds)

    def get(self, name: str, labels: Optional[Dict[str, str]] = None) -> float:
        """Current counter value, 0 if never incremented"""
        with self._lock:
            return self._counters.get(self._key(name, labels), 0)

    def count(self, name: str, labels: Optional[Dict[str, str]] = None) -> int:
        """Number of observations recorded for a summary"""
        with self._lock:
            return self._summaries.get(self._key(name, labels), (0, 0.0))[0]

    def _key(self, name: str, labels: Optional[Dict[str, str]] = None) -> str:
        if not labels:
            return name
        label_str = ",".join(f'{k}="{v}"' for k, v in sorted(labels.items()))
        return f"{name}{{{label_str}}}"

    def export_prometheus(self) -> str:
        lines = []
        described = set()

        def describe(key: str, kind: str):
            base = key.split("{")[0]
            if base in described:
                return
            described.add(base)
            if base in HELP:
                lines.append(f"# HELP {base} {HELP[base]}")
            lines.append(f"# TYPE {base} {kind}")

        with self._lock:
            for k, v in sorted(self._counters.items()):
                describe(k, "counter")
                lines.append(f"{k} {v}")
            for k, (count, total) in sorted(self._summaries.items()):
                describe(k, "summary")
                base, _, labels = k.partition("{")
                suffix = "{" + labels if labels else ""
                lines.append(f"{base}_count{suffix} {count}")
                lines.append(f"{base}_sum{suffix} {total}")
        return "\n".join(lines) + "\n"

    def export_dict(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "counters": dict(self._counters),
                "summaries": {
                    k: {"count": c, "sum": s} for k, (c, s) in self._summaries.items()
                },
            }
