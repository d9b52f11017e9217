"""Rewrite a JSONL dump with fresh send timestamps and optionally publish it."""

from __future__ import annotations

import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

import orjson

from .config import Config
from .errors import DumpError
from .measure import transport_from_config
from .runlog import RunLog
from .source_index import decode_object
from .transport import ListTransport
from .writers import NdjsonWriter


@dataclass(slots=True)
class RewriteSummary:
    in_lines: int = 0
    out_lines: int = 0
    bad_lines: int = 0
    pushed: int = 0
    base: int = 0
    unit: str = "ms"
    mode: str = "increment"
    queue_len: int | None = None


def resolve_base(base_epoch: int, unit: str, now_ns: Callable[[], int] = time.time_ns) -> int:
    if base_epoch:
        return int(base_epoch)
    if unit == "ms":
        return now_ns() // 1_000_000
    return now_ns() // 1_000_000_000


def run_load_dump_and_rewrite(
    config: Config,
    transport: ListTransport | None = None,
    *,
    runlog: RunLog | None = None,
    now_ns: Callable[[], int] = time.time_ns,
) -> RewriteSummary:
    config.validate_rewrite()
    runlog = runlog or RunLog.to_stdout(config.runlog_path, debug=config.debug)
    queue = (config.redis_queue or "").strip() or None
    if queue is not None and transport is None:
        transport = transport_from_config(config)

    summary = RewriteSummary(
        base=resolve_base(config.base_epoch, config.epoch_unit, now_ns),
        unit=config.epoch_unit,
        mode=config.rewrite_mode,
    )
    if queue is not None and config.clear_queue:
        transport.delete(queue)
        runlog.emit("publish", action="del", queue=queue)

    pending: list[bytes] = []

    def _flush_pending() -> None:
        if not pending:
            return
        summary.pushed += transport.push_many(queue, pending, how=config.redis_push)
        pending.clear()
        runlog.emit("publish", action=config.redis_push, queue=queue, pushed=summary.pushed)

    current = summary.base
    try:
        in_handle = Path(config.in_dump).open("rb")
    except OSError as exc:
        raise DumpError(f"open in dump {config.in_dump}: {exc}") from exc
    with in_handle, NdjsonWriter(config.out_dump) as writer:
        for raw_line in in_handle:
            summary.in_lines += 1
            line = raw_line.strip()
            obj = decode_object(line) if line else None
            if obj is None:
                summary.bad_lines += 1
                continue
            if config.rewrite_mode == "same":
                obj[config.sent_field] = summary.base
            else:
                obj[config.sent_field] = current
                current += config.step
            writer.write(obj)
            summary.out_lines += 1
            if queue is not None:
                pending.append(orjson.dumps(obj))
                if len(pending) >= config.batch_size:
                    _flush_pending()
        if queue is not None:
            _flush_pending()

    runlog.emit(
        "dump",
        in_lines=summary.in_lines,
        out_lines=summary.out_lines,
        bad_lines_skipped=summary.bad_lines,
        base=summary.base,
        unit=summary.unit,
        mode=summary.mode,
    )
    if queue is not None:
        summary.queue_len = transport.length(queue)
        runlog.emit("publish", action="done", queue=queue, llen=summary.queue_len)
    return summary
