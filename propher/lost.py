from __future__ import annotations

from pathlib import Path
from typing import AbstractSet, Mapping

from .source_index import SourceRecord
from .writers import write_raw_json_array


def lost_records(
    index: Mapping[str, SourceRecord],
    found: AbstractSet[str],
) -> list[SourceRecord]:
    """Indexed records never observed, ordered by id."""
    return [index[msg_id] for msg_id in sorted(index.keys() - found)]


def export_lost(
    path: str | Path,
    index: Mapping[str, SourceRecord],
    found: AbstractSet[str],
) -> list[SourceRecord]:
    lost = lost_records(index, found)
    write_raw_json_array(path, [record.raw for record in lost])
    return lost
