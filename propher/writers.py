from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import orjson

from .errors import OutputError

_ORJSON_NDJSON_OPTIONS = orjson.OPT_APPEND_NEWLINE
if hasattr(orjson, "OPT_ESCAPE_NON_ASCII"):
    _ORJSON_NDJSON_OPTIONS |= orjson.OPT_ESCAPE_NON_ASCII

DEFAULT_BUFFER_BYTES = 1 << 20


class NdjsonWriter:
    """Buffered one-object-per-line writer; flushed on every exit path."""

    def __init__(
        self,
        path: str | Path,
        *,
        buffer_bytes: int = DEFAULT_BUFFER_BYTES,
        fsync_on_close: bool = False,
    ) -> None:
        self.path = Path(path)
        self._fsync_on_close = fsync_on_close
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._handle = self.path.open("wb", buffering=buffer_bytes)
        except OSError as exc:
            raise OutputError(f"create out file {self.path}: {exc}") from exc
        self.lines = 0

    def write(self, record: dict[str, Any]) -> None:
        try:
            self._handle.write(orjson.dumps(record, option=_ORJSON_NDJSON_OPTIONS))
        except OSError as exc:
            raise OutputError(f"write {self.path}: {exc}") from exc
        self.lines += 1

    def flush(self) -> None:
        self._handle.flush()

    def close(self) -> None:
        if self._handle.closed:
            return
        try:
            self._handle.flush()
            if self._fsync_on_close:
                os.fsync(self._handle.fileno())
        except OSError as exc:
            raise OutputError(f"close {self.path}: {exc}") from exc
        finally:
            self._handle.close()

    def __enter__(self) -> "NdjsonWriter":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def _replace_file(path: Path, data: bytes) -> None:
    tmp_path = path.with_name(path.name + ".tmp")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path.write_bytes(data)
        tmp_path.replace(path)
    except OSError as exc:
        raise OutputError(f"write {path}: {exc}") from exc


def write_json(path: str | Path, payload: Any) -> None:
    _replace_file(Path(path), orjson.dumps(payload, option=orjson.OPT_INDENT_2))


def write_raw_json_array(path: str | Path, items: list[bytes]) -> None:
    """Write a JSON array whose elements are embedded byte-for-byte."""
    fragments = [orjson.Fragment(item) for item in items]
    _replace_file(Path(path), orjson.dumps(fragments, option=orjson.OPT_INDENT_2))
