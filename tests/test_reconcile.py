import io

import pytest
import orjson

from propher.errors import TransportError
from propher.reconcile import (
    STOP_ALL_FOUND,
    STOP_MAX_MESSAGES,
    STOP_TIMEOUT,
    Outcome,
    Reconciler,
    ResultFields,
    classify,
)
from propher.runlog import RunLog
from propher.source_index import SourceRecord
from propher.transport import PUSH_LEFT, MemoryListTransport

FIELDS = ResultFields(id_field="message_id", sent_field="sent_epoch", sent_unit="us")


class FakeClock:
    def __init__(self, start_us: int = 10_000_000, step_us: int = 1_000):
        self.now = start_us
        self.step_us = step_us

    def __call__(self) -> int:
        value = self.now
        self.now += self.step_us
        return value


def _index(*ids: str) -> dict[str, SourceRecord]:
    index = {}
    for i, msg_id in enumerate(ids, start=1):
        sent = i * 1_000_000
        raw = orjson.dumps({"message_id": msg_id, "sent_epoch": sent})
        index[msg_id] = SourceRecord(id=msg_id, sent_time_us=sent, raw=raw)
    return index


def _msg(msg_id: str, sent_us: int) -> bytes:
    return orjson.dumps({"message_id": msg_id, "sent_epoch": sent_us})


def _reconciler(transport, index, **kwargs):
    records: list[dict] = []
    params = dict(
        obs_queue="obs",
        hold_queue="obs:hold",
        duration_sec=60,
        block_sec=0.01,
        sink=records.append,
        runlog=RunLog(),
        clock_us=FakeClock(),
    )
    params.update(kwargs)
    return Reconciler(transport, index, FIELDS, **params), records


def test_classify_ok_computes_serve_and_latency() -> None:
    outcome = classify(_msg("a", 1_005_000), 1_010_000, _index("a"), FIELDS)
    assert outcome == Outcome(
        ok=True,
        message_id="a",
        source_sent_us=1_000_000,
        result_sent_us=1_005_000,
        serve_us=5_000,
        latency_us=5_000,
    )


@pytest.mark.parametrize(
    "payload, error",
    [
        (b"not json", "json_parse_error"),
        (b"[1, 2]", "json_parse_error"),
        (b'{"sent_epoch": 1}', "missing_message_id"),
        (b'{"message_id": "  ", "sent_epoch": 1}', "bad_message_id"),
        (b'{"message_id": "a"}', "missing_or_bad_sent_epoch"),
        (b'{"message_id": "a", "sent_epoch": "later"}', "missing_or_bad_sent_epoch"),
        (b'{"message_id": "zz", "sent_epoch": 1005000}', "source_not_found"),
        (b'{"message_id": "a", "sent_epoch": 999000}', "result_sent_before_source"),
        (b'{"message_id": "a", "sent_epoch": 2000000}', "result_sent_in_future"),
    ],
)
def test_classify_failures(payload: bytes, error: str) -> None:
    outcome = classify(payload, 1_500_000, _index("a"), FIELDS)
    assert outcome.ok is False
    assert outcome.error == error
    assert outcome.serve_us is None
    assert outcome.latency_us is None


def test_outcome_to_dict_omits_unset_fields() -> None:
    payload = Outcome(ok=False, error="source_not_found", message_id="zz").to_dict()
    assert payload == {"ok": False, "error": "source_not_found", "message_id": "zz"}


def test_stops_when_all_found_and_leaves_rest_queued() -> None:
    transport = MemoryListTransport(sleep=lambda _s: None)
    index = _index("a", "b", "c")
    payloads = [_msg("a", 1_005_000), _msg("b", 2_005_000), _msg("c", 3_005_000), _msg("d", 1)]
    transport.push_many("obs", payloads, how=PUSH_LEFT)
    recon, records = _reconciler(transport, index)
    state = recon.run()
    assert state.stop_reason == STOP_ALL_FOUND
    assert state.total == 3
    assert state.ok == 3
    assert state.found == {"a", "b", "c"}
    assert [r["message_id"] for r in records] == ["a", "b", "c"]
    assert transport.length("obs") == 1
    assert transport.length("obs:hold") == 3
    assert sorted(state.samples.serve_us) == [5_000, 5_000, 5_000]


def test_last_record_is_recorded_before_stopping() -> None:
    transport = MemoryListTransport(sleep=lambda _s: None)
    index = _index("a", "b")
    transport.push_many(
        "obs",
        [_msg("a", 1_005_000), b'{"message_id": "b", "sent_epoch": "bad"}', _msg("a", 1_006_000)],
        how=PUSH_LEFT,
    )
    recon, records = _reconciler(transport, index)
    state = recon.run()
    assert state.stop_reason == STOP_ALL_FOUND
    assert state.total == 2
    assert state.bad == 1
    assert records[-1] == {"ok": False, "error": "missing_or_bad_sent_epoch", "message_id": "b"}


def test_repeated_ids_are_found_once() -> None:
    transport = MemoryListTransport(sleep=lambda _s: None)
    index = _index("a", "b")
    transport.push_many(
        "obs",
        [_msg("a", 1_005_000), _msg("a", 1_006_000), _msg("x", 5), _msg("b", 2_001_000)],
        how=PUSH_LEFT,
    )
    recon, records = _reconciler(transport, index)
    state = recon.run()
    assert state.total == 4
    assert state.ok == 3
    assert state.bad == 1
    assert state.found == {"a", "b"}
    assert state.found <= set(index)


def test_max_messages_stop() -> None:
    transport = MemoryListTransport(sleep=lambda _s: None)
    index = _index("a", "b", "c")
    transport.push_many("obs", [_msg("a", 1_005_000), _msg("b", 2_005_000)], how=PUSH_LEFT)
    recon, _ = _reconciler(transport, index, max_messages=1)
    state = recon.run()
    assert state.stop_reason == STOP_MAX_MESSAGES
    assert state.total == 1
    assert transport.length("obs") == 1


def test_timeout_warns_about_missing_ids() -> None:
    transport = MemoryListTransport(sleep=lambda _s: None)
    index = _index("a", "b")
    transport.push_many("obs", [_msg("a", 1_005_000)], how=PUSH_LEFT)
    runlog = RunLog()
    recon, _ = _reconciler(
        transport,
        index,
        duration_sec=1,
        runlog=runlog,
        clock_us=FakeClock(step_us=100_000),
    )
    state = recon.run()
    assert state.stop_reason == STOP_TIMEOUT
    assert state.missing == 1
    warnings = runlog.of_type("timeout_warning")
    assert len(warnings) == 1
    assert warnings[0]["missing"] == 1
    assert runlog.of_type("stop")[0]["reason"] == STOP_TIMEOUT


def test_zero_duration_never_dequeues() -> None:
    transport = MemoryListTransport(sleep=lambda _s: None)
    transport.push_many("obs", [_msg("a", 1_005_000)])
    recon, records = _reconciler(transport, _index("a"), duration_sec=0)
    state = recon.run()
    assert state.stop_reason == STOP_TIMEOUT
    assert state.total == 0
    assert records == []
    assert transport.length("obs") == 1


class _BrokenTransport(MemoryListTransport):
    def __init__(self, fail_after: int):
        super().__init__(sleep=lambda _s: None)
        self.fail_after = fail_after
        self.calls = 0

    def move(self, src, dst, timeout_sec):
        self.calls += 1
        if self.calls > self.fail_after:
            raise TransportError("brpoplpush obs -> obs:hold: connection reset")
        return super().move(src, dst, timeout_sec)


def test_transport_error_is_fatal_and_keeps_written_records() -> None:
    transport = _BrokenTransport(fail_after=1)
    transport.push_many("obs", [_msg("a", 1_005_000), _msg("b", 2_005_000)], how=PUSH_LEFT)
    recon, records = _reconciler(transport, _index("a", "b"))
    with pytest.raises(TransportError):
        recon.run()
    assert len(records) == 1
    assert recon.state.finished_us > 0


def test_debug_runlog_echoes_records() -> None:
    transport = MemoryListTransport(sleep=lambda _s: None)
    transport.push_many("obs", [_msg("a", 1_005_000)])
    stream = io.BytesIO()
    runlog = RunLog(stream, debug=True)
    recon, _ = _reconciler(transport, _index("a"), runlog=runlog)
    recon.run()
    lines = [orjson.loads(line) for line in stream.getvalue().splitlines()]
    echoed = [line for line in lines if line["record_type"] == "record"]
    assert len(echoed) == 1
    assert echoed[0]["ok"] is True
    assert echoed[0]["message_id"] == "a"


def test_debug_runlog_does_not_keep_per_record_entries() -> None:
    transport = MemoryListTransport(sleep=lambda _s: None)
    ids = [f"m{i}" for i in range(5001)]
    index = _index(*ids)
    transport.push_many(
        "obs",
        [_msg(msg_id, index[msg_id].sent_time_us + 5_000) for msg_id in ids],
        how=PUSH_LEFT,
    )
    stream = io.BytesIO()
    runlog = RunLog(stream, debug=True)
    recon, _ = _reconciler(
        transport, index, runlog=runlog, clock_us=FakeClock(start_us=10_000_000_000)
    )
    state = recon.run()
    assert state.ok == 5001
    assert len(runlog.records) < 100
    assert runlog.of_type("record") == []
    assert stream.getvalue().count(b'"record_type":"record"') == 5001
