from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable

from .config import Config
from .latency import build_stats_payload
from .lost import export_lost
from .reconcile import Reconciler, ResultFields, wall_clock_us
from .restore import RestoreResult, restore_hold
from .runlog import RunLog
from .source_index import SourceIndexStats, load_source_index
from .transport import ListTransport, RedisListTransport
from .writers import NdjsonWriter, write_json


@dataclass(slots=True)
class MeasureSummary:
    stop_reason: str | None
    total_read: int
    ok: int
    bad: int
    found: int
    target: int
    lost: int
    duration_sec: float
    source: SourceIndexStats
    out_jsonl: str
    stats_path: str
    lost_path: str
    stats: dict[str, Any]
    warnings: list[str] = field(default_factory=list)
    restore: RestoreResult | None = None


def transport_from_config(config: Config) -> RedisListTransport:
    return RedisListTransport.connect(
        url=(config.redis_url or "").strip() or None,
        addr=config.redis_addr,
        password=config.redis_pass,
        db=config.redis_db,
    )


def run_measure_list_latency(
    config: Config,
    transport: ListTransport | None = None,
    *,
    runlog: RunLog | None = None,
    clock_us: Callable[[], int] = wall_clock_us,
) -> MeasureSummary:
    config.validate_measure()
    runlog = runlog or RunLog.to_stdout(config.runlog_path, debug=config.debug)

    index, source_stats = load_source_index(
        config.source_dump,
        config.message_id_field,
        config.source_sent_field,
        config.source_sent_unit,
    )
    runlog.emit("source_index", path=config.source_dump, **source_stats.to_dict())

    if transport is None:
        transport = transport_from_config(config)
    hold_queue = config.resolved_hold_queue()

    with NdjsonWriter(config.out_jsonl) as writer:
        reconciler = Reconciler(
            transport,
            index,
            ResultFields(
                id_field=config.message_id_field,
                sent_field=config.t0_field,
                sent_unit=config.t0_unit,
            ),
            obs_queue=config.obs_queue,
            hold_queue=hold_queue,
            duration_sec=config.duration_sec,
            block_sec=config.block_sec,
            max_messages=config.max_messages,
            sink=writer.write,
            runlog=runlog,
            clock_us=clock_us,
        )
        state = reconciler.run()

    lost = export_lost(config.lost_path, index, state.found)
    runlog.emit("lost", path=config.lost_path, count=len(lost))

    stats = build_stats_payload(
        total_read=state.total,
        ok=state.ok,
        bad=state.bad,
        duration_sec=state.elapsed_seconds,
        samples=state.samples,
    )
    runlog.emit(
        "result",
        total_read=stats["total_read"],
        ok=stats["ok"],
        bad=stats["bad"],
        duration_sec=stats["duration_sec"],
        ok_throughput_msg_s=stats["ok_throughput_msg_s"],
    )
    if "serve_us" in stats:
        runlog.emit("serve_stats", **stats["serve_us"])
        runlog.emit("latency_stats", **stats["latency_us"])
    stats_path = config.stats_path()
    write_json(stats_path, stats)
    runlog.emit("stats", path=stats_path)

    summary = MeasureSummary(
        stop_reason=state.stop_reason,
        total_read=state.total,
        ok=state.ok,
        bad=state.bad,
        found=len(state.found),
        target=state.target,
        lost=len(lost),
        duration_sec=float(stats["duration_sec"]),
        source=source_stats,
        out_jsonl=config.out_jsonl,
        stats_path=stats_path,
        lost_path=config.lost_path,
        stats=stats,
        warnings=[r["message"] for r in runlog.of_type("timeout_warning")],
    )

    if config.restore:
        result = restore_hold(
            transport,
            config.obs_queue,
            hold_queue,
            verify_empty=config.restore_verify_empty,
        )
        runlog.emit(
            "restore",
            moved_back=result.moved_back,
            **{"from": result.hold_queue, "to": result.obs_queue},
        )
        summary.restore = result
    return summary
