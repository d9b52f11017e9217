from __future__ import annotations

import sys
import time
from dataclasses import asdict, is_dataclass
from pathlib import Path
from typing import Any, BinaryIO

import orjson

from .errors import OutputError
from .writers import _ORJSON_NDJSON_OPTIONS

# Emitted once per message read; written out but never kept in `records`.
STREAM_ONLY_TYPES = frozenset({"record"})


def _normalize(value: Any) -> Any:
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode("utf-8", errors="replace")
    if is_dataclass(value) and not isinstance(value, type):
        return _normalize(asdict(value))
    if isinstance(value, dict):
        return {str(key): _normalize(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_normalize(item) for item in value]
    return str(value)


class RunLog:
    """Structured run log: one JSON object per line, keyed by ``record_type``."""

    def __init__(
        self,
        stream: BinaryIO | None = None,
        path: str | Path | None = None,
        *,
        debug: bool = False,
    ) -> None:
        self._stream = stream
        self._path = Path(path) if path else None
        self.debug = debug
        self.records: list[dict[str, Any]] = []

    @classmethod
    def to_stdout(cls, path: str | Path | None = None, *, debug: bool = False) -> "RunLog":
        return cls(sys.stdout.buffer, path, debug=debug)

    def emit(self, record_type: str, **fields: Any) -> dict[str, Any]:
        record = {"record_type": record_type, "ts_wall_us": time.time_ns() // 1_000}
        record.update(_normalize(fields))
        if record_type not in STREAM_ONLY_TYPES:
            self.records.append(record)
        line = orjson.dumps(record, option=_ORJSON_NDJSON_OPTIONS)
        if self._stream is not None:
            self._stream.write(line)
            self._stream.flush()
        if self._path is not None:
            try:
                self._path.parent.mkdir(parents=True, exist_ok=True)
                with self._path.open("ab") as handle:
                    handle.write(line)
            except OSError as exc:
                raise OutputError(f"write runlog {self._path}: {exc}") from exc
        return record

    def warn(self, record_type: str, message: str, **fields: Any) -> dict[str, Any]:
        print(f"warning: {message}", file=sys.stderr)
        return self.emit(record_type, message=message, **fields)

    def of_type(self, record_type: str) -> list[dict[str, Any]]:
        return [r for r in self.records if r["record_type"] == record_type]
