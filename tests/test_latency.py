import random

from propher.latency import (
    MIN_ELAPSED_SECONDS,
    SampleSeries,
    build_stats_payload,
    percentile,
    summarize,
    throughput,
)


def test_percentile_nearest_rank() -> None:
    values = list(range(1, 101))
    assert percentile(values, 0.50) == 50
    assert percentile(values, 0.90) == 90
    assert percentile(values, 0.99) == 99
    assert percentile(values, 1.0) == 100
    assert percentile([7], 0.5) == 7
    assert percentile([], 0.5) == 0


def test_percentile_clamps_tiny_quantile() -> None:
    assert percentile([3, 4, 5], 0.0001) == 3


def test_summary_is_monotonic() -> None:
    rng = random.Random(7)
    for size in (1, 2, 5, 17, 250):
        values = [rng.randint(0, 1_000_000) for _ in range(size)]
        summary = summarize(values)
        assert summary is not None
        assert summary.count == size
        assert summary.p50_us <= summary.p90_us <= summary.p95_us <= summary.p99_us <= summary.max_us
        assert summary.max_us == max(values)


def test_summarize_empty_is_none() -> None:
    assert summarize([]) is None


def test_stats_payload_omits_percentiles_without_ok_records() -> None:
    payload = build_stats_payload(total_read=2, ok=0, bad=2, duration_sec=1.0, samples=SampleSeries())
    assert payload["ok_throughput_msg_s"] == 0.0
    assert "serve_us" not in payload
    assert "latency_us" not in payload


def test_stats_payload_with_samples() -> None:
    samples = SampleSeries()
    samples.observe(5_000, 100)
    samples.observe(7_000, 300)
    payload = build_stats_payload(total_read=3, ok=2, bad=1, duration_sec=2.0, samples=samples)
    assert payload["total_read"] == 3
    assert payload["ok_throughput_msg_s"] == 1.0
    assert payload["serve_us"]["p50_us"] == 5_000
    assert payload["serve_us"]["max_us"] == 7_000
    assert payload["latency_us"]["p99_us"] == 300


def test_throughput_floors_elapsed() -> None:
    assert throughput(1, 0.0) == 1 / MIN_ELAPSED_SECONDS
