from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Sequence

QUANTILES = (0.50, 0.90, 0.95, 0.99)
MIN_ELAPSED_SECONDS = 1e-9


def percentile(sorted_values: Sequence[int], q: float) -> int:
    """Nearest-rank percentile over an ascending sequence."""
    n = len(sorted_values)
    if n == 0:
        return 0
    idx = int(math.ceil(q * n) - 1)
    idx = min(max(idx, 0), n - 1)
    return int(sorted_values[idx])


@dataclass(slots=True)
class LatencySummary:
    count: int
    p50_us: int
    p90_us: int
    p95_us: int
    p99_us: int
    max_us: int

    def to_dict(self) -> dict[str, int]:
        return {
            "count": int(self.count),
            "p50_us": int(self.p50_us),
            "p90_us": int(self.p90_us),
            "p95_us": int(self.p95_us),
            "p99_us": int(self.p99_us),
            "max_us": int(self.max_us),
        }


def summarize(values: Sequence[int]) -> LatencySummary | None:
    if not values:
        return None
    ordered = sorted(values)
    p50, p90, p95, p99 = (percentile(ordered, q) for q in QUANTILES)
    return LatencySummary(
        count=len(ordered),
        p50_us=p50,
        p90_us=p90,
        p95_us=p95,
        p99_us=p99,
        max_us=int(ordered[-1]),
    )


@dataclass(slots=True)
class SampleSeries:
    serve_us: list[int] = field(default_factory=list)
    latency_us: list[int] = field(default_factory=list)

    def observe(self, serve_us: int, latency_us: int) -> None:
        self.serve_us.append(int(serve_us))
        self.latency_us.append(int(latency_us))


def throughput(ok_count: int, elapsed_seconds: float) -> float:
    return ok_count / max(float(elapsed_seconds), MIN_ELAPSED_SECONDS)


def build_stats_payload(
    *,
    total_read: int,
    ok: int,
    bad: int,
    duration_sec: float,
    samples: SampleSeries,
) -> dict[str, object]:
    duration = max(float(duration_sec), MIN_ELAPSED_SECONDS)
    payload: dict[str, object] = {
        "total_read": int(total_read),
        "ok": int(ok),
        "bad": int(bad),
        "duration_sec": duration,
        "ok_throughput_msg_s": throughput(ok, duration),
    }
    # omitted entirely when no record was ok
    serve = summarize(samples.serve_us)
    latency = summarize(samples.latency_us)
    if serve is not None:
        payload["serve_us"] = serve.to_dict()
    if latency is not None:
        payload["latency_us"] = latency.to_dict()
    return payload
