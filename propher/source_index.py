from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping

import orjson

from .epoch import normalize_epoch_us
from .errors import SourceIndexError, TimestampError


@dataclass(frozen=True, slots=True)
class SourceRecord:
    id: str
    sent_time_us: int
    raw: bytes


@dataclass(slots=True)
class SourceIndexStats:
    total_lines: int = 0
    indexed: int = 0
    bad: int = 0
    duplicates: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "lines": int(self.total_lines),
            "indexed": int(self.indexed),
            "bad": int(self.bad),
            "duplicates": int(self.duplicates),
        }


def extract_id(value: Any) -> str | None:
    """Coerce an id field to a non-empty string, or None if it cannot be."""
    if value is None:
        return None
    if isinstance(value, str):
        text = value.strip()
        return text or None
    if isinstance(value, (bytes, bytearray)):
        text = bytes(value).decode("utf-8", errors="replace").strip()
        return text or None
    try:
        text = orjson.dumps(value).decode("utf-8")
    except TypeError:
        text = str(value)
    return text.strip() or None


def decode_object(payload: bytes | str) -> dict[str, Any] | None:
    try:
        obj = orjson.loads(payload)
    except orjson.JSONDecodeError:
        return None
    if not isinstance(obj, dict):
        return None
    return obj


def _index_line(
    line: bytes,
    id_field: str,
    sent_field: str,
    unit: str,
) -> SourceRecord | None:
    obj = decode_object(line)
    if obj is None or id_field not in obj or sent_field not in obj:
        return None
    msg_id = extract_id(obj[id_field])
    if msg_id is None:
        return None
    try:
        sent_us = normalize_epoch_us(obj[sent_field], unit)
    except TimestampError:
        return None
    return SourceRecord(id=msg_id, sent_time_us=sent_us, raw=line)


def load_source_index(
    path: str | Path,
    id_field: str,
    sent_field: str,
    unit: str,
) -> tuple[Mapping[str, SourceRecord], SourceIndexStats]:
    """Index a JSONL source dump by id; the first occurrence of an id wins."""
    stats = SourceIndexStats()
    if not str(path or "").strip():
        raise SourceIndexError("source dump path is empty")
    index: dict[str, SourceRecord] = {}
    try:
        with Path(path).open("rb") as handle:
            for raw_line in handle:
                stats.total_lines += 1
                line = raw_line.strip()
                if not line:
                    stats.bad += 1
                    continue
                record = _index_line(line, id_field, sent_field, unit)
                if record is None:
                    stats.bad += 1
                    continue
                if record.id in index:
                    stats.duplicates += 1
                    continue
                index[record.id] = record
                stats.indexed += 1
    except OSError as exc:
        raise SourceIndexError(f"read source dump {path}: {exc}") from exc
    if not index:
        raise SourceIndexError(
            f"source dump {path} contains no valid {id_field} entries"
        )
    return MappingProxyType(index), stats
