"""
In-memory per-tenant counters and timings.

Backs GET /api/metrics/summary. Values live in the process only; the
Prometheus exporter in conductor.middleware.metrics covers scraping.
"""

from collections import defaultdict
from typing import Any, Dict, List, Optional
import threading


class _Timing:
    __slots__ = ("count", "total", "max")

    def __init__(self):
        self.count = 0
        self.total = 0.0
        self.max = 0.0

    def add(self, duration_ms: float):
        self.count += 1
        self.total += duration_ms
        self.max = max(self.max, duration_ms)

    def to_dict(self):
        return {
            "count": self.count,
            "total_ms": round(self.total, 2),
            "avg_ms": round(self.total / self.count, 2) if self.count else 0.0,
            "max_ms": round(self.max, 2),
        }


class MetricsService:
    """Thread-safe counters and timings keyed by tenant."""

    def __init__(self):
        self._lock = threading.Lock()
        self._counters: Dict[str, Dict[str, float]] = defaultdict(lambda: defaultdict(float))
        self._timings: Dict[str, Dict[str, _Timing]] = defaultdict(lambda: defaultdict(_Timing))

    def increment(self, tenant_id, name: str, value: float = 1) -> None:
        with self._lock:
            self._counters[str(tenant_id)][name] += value

    def record_timing(self, tenant_id, name: str, duration_ms: float) -> None:
        with self._lock:
            self._timings[str(tenant_id)][name].add(duration_ms)

    def snapshot(self, tenant_id) -> Dict[str, Any]:
        key = str(tenant_id)
        with self._lock:
            counters = dict(self._counters.get(key, {}))
            timings = {name: t.to_dict() for name, t in self._timings.get(key, {}).items()}
        return {"tenant_id": key, "counters": counters, "timings": timings}

    def reset(self, tenant_id: Optional[Any] = None) -> None:
        with self._lock:
            if tenant_id is None:
                self._counters.clear()
                self._timings.clear()
            else:
                self._counters.pop(str(tenant_id), None)
                self._timings.pop(str(tenant_id), None)

    def tenants(self) -> List[str]:
        with self._lock:
            return sorted(set(self._counters) | set(self._timings))


metrics_service = MetricsService()
