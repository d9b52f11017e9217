from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping

from . import errors
from .epoch import normalize_epoch_us
from .errors import TimestampError
from .latency import SampleSeries
from .runlog import RunLog
from .source_index import SourceRecord, decode_object, extract_id
from .transport import ListTransport

STOP_TIMEOUT = "timeout"
STOP_ALL_FOUND = "all_found"
STOP_MAX_MESSAGES = "max_messages"


def wall_clock_us() -> int:
    return time.time_ns() // 1_000


@dataclass(slots=True)
class Outcome:
    ok: bool
    error: str | None = None
    message_id: str | None = None
    source_sent_us: int | None = None
    result_sent_us: int | None = None
    serve_us: int | None = None
    latency_us: int | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"ok": self.ok}
        for name in (
            "error",
            "message_id",
            "source_sent_us",
            "result_sent_us",
            "serve_us",
            "latency_us",
        ):
            value = getattr(self, name)
            if value is not None:
                payload[name] = value
        return payload


@dataclass(frozen=True, slots=True)
class ResultFields:
    id_field: str
    sent_field: str
    sent_unit: str = "auto"


@dataclass(slots=True)
class ReconState:
    target: int
    total: int = 0
    ok: int = 0
    bad: int = 0
    found: set[str] = field(default_factory=set)
    samples: SampleSeries = field(default_factory=SampleSeries)
    stop_reason: str | None = None
    started_us: int = 0
    finished_us: int = 0

    @property
    def missing(self) -> int:
        return self.target - len(self.found)

    @property
    def elapsed_seconds(self) -> float:
        return max(0, self.finished_us - self.started_us) / 1_000_000.0


def classify(
    payload: bytes | str,
    read_time_us: int,
    index: Mapping[str, SourceRecord],
    fields: ResultFields,
) -> Outcome:
    """Correlate one observed message against the source index."""
    obj = decode_object(payload)
    if obj is None:
        return Outcome(ok=False, error=errors.JSON_PARSE_ERROR)
    if fields.id_field not in obj:
        return Outcome(ok=False, error=errors.missing_field(fields.id_field))
    msg_id = extract_id(obj[fields.id_field])
    if msg_id is None:
        return Outcome(ok=False, error=errors.bad_field(fields.id_field))

    try:
        result_sent_us = normalize_epoch_us(obj.get(fields.sent_field), fields.sent_unit)
    except TimestampError:
        return Outcome(
            ok=False,
            error=errors.missing_or_bad_field(fields.sent_field),
            message_id=msg_id,
        )

    source = index.get(msg_id)
    if source is None:
        return Outcome(
            ok=False,
            error=errors.SOURCE_NOT_FOUND,
            message_id=msg_id,
            result_sent_us=result_sent_us,
        )

    outcome = Outcome(
        ok=False,
        message_id=msg_id,
        source_sent_us=source.sent_time_us,
        result_sent_us=result_sent_us,
    )
    serve_us = result_sent_us - source.sent_time_us
    if serve_us < 0:
        outcome.error = errors.RESULT_SENT_BEFORE_SOURCE
        return outcome
    latency_us = read_time_us - result_sent_us
    if latency_us < 0:
        # clock skew between producer and reader
        outcome.error = errors.RESULT_SENT_IN_FUTURE
        return outcome
    outcome.ok = True
    outcome.serve_us = serve_us
    outcome.latency_us = latency_us
    return outcome


class Reconciler:
    """Drains the observation list into the hold list and records outcomes."""

    def __init__(
        self,
        transport: ListTransport,
        index: Mapping[str, SourceRecord],
        fields: ResultFields,
        *,
        obs_queue: str,
        hold_queue: str,
        duration_sec: float,
        block_sec: float,
        max_messages: int = 0,
        sink: Callable[[dict[str, Any]], None] | None = None,
        runlog: RunLog | None = None,
        clock_us: Callable[[], int] = wall_clock_us,
    ):
        self.transport = transport
        self.index = index
        self.fields = fields
        self.obs_queue = obs_queue
        self.hold_queue = hold_queue
        self.duration_sec = duration_sec
        self.block_sec = block_sec
        self.max_messages = max_messages
        self.sink = sink
        self.runlog = runlog or RunLog()
        self.clock_us = clock_us
        self.state = ReconState(target=len(index))

    def _record(self, outcome: Outcome) -> None:
        state = self.state
        if outcome.ok:
            state.ok += 1
            state.samples.observe(outcome.serve_us or 0, outcome.latency_us or 0)
        else:
            state.bad += 1
        payload = outcome.to_dict()
        if self.sink is not None:
            self.sink(payload)
        if self.runlog.debug:
            self.runlog.emit("record", **payload)

    def _stop_reason(self) -> str | None:
        state = self.state
        if len(state.found) >= state.target:
            return STOP_ALL_FOUND
        if self.max_messages > 0 and state.total >= self.max_messages:
            return STOP_MAX_MESSAGES
        return None

    def step(self, payload: bytes) -> Outcome:
        state = self.state
        state.total += 1
        read_time_us = self.clock_us()
        outcome = classify(payload, read_time_us, self.index, self.fields)
        msg_id = outcome.message_id
        if msg_id is not None and msg_id in self.index:
            state.found.add(msg_id)
        self._record(outcome)
        return outcome

    def run(self) -> ReconState:
        state = self.state
        state.started_us = self.clock_us()
        deadline_us = state.started_us + int(self.duration_sec * 1_000_000)
        try:
            while True:
                if self.clock_us() >= deadline_us:
                    state.stop_reason = STOP_TIMEOUT
                    break
                payload = self.transport.move(self.obs_queue, self.hold_queue, self.block_sec)
                if payload is None:
                    continue
                self.step(payload)
                reason = self._stop_reason()
                if reason is not None:
                    state.stop_reason = reason
                    break
        finally:
            state.finished_us = self.clock_us()
        self.runlog.emit(
            "stop",
            reason=state.stop_reason,
            found=len(state.found),
            target=state.target,
            total_read=state.total,
        )
        if state.stop_reason == STOP_TIMEOUT and state.missing > 0:
            self.runlog.warn(
                "timeout_warning",
                (
                    f"timeout before all dump messages were found: "
                    f"found={len(state.found)} target={state.target} missing={state.missing}"
                ),
                found=len(state.found),
                target=state.target,
                missing=state.missing,
                duration_sec=self.duration_sec,
                total_read=state.total,
            )
        return state
