from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation, ROUND_FLOOR
from typing import Any, Union

from .errors import TimestampError

UNIT_AUTO = "auto"
UNIT_FACTORS = {"s": 1_000_000, "ms": 1_000, "us": 1}
VALID_UNITS = frozenset({UNIT_AUTO, *UNIT_FACTORS})

# auto-detection thresholds, checked from the finest unit down
AUTO_US_MIN = Decimal(10) ** 15
AUTO_MS_MIN = Decimal(10) ** 12
AUTO_S_MIN = Decimal(10) ** 9

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_ONE_US = timedelta(microseconds=1)

_RFC3339_RE = re.compile(
    r"^(\d{4})-(\d{2})-(\d{2})[Tt](\d{2}):(\d{2}):(\d{2})(?:\.(\d{1,9}))?"
    r"([Zz]|[+-]\d{2}:\d{2})$"
)
_NAIVE_ISO_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})T(\d{2}):(\d{2}):(\d{2})(?:\.(\d{1,6}))?$")
_NUMERIC_RE = re.compile(r"^[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?$")


@dataclass(frozen=True, slots=True)
class EpochNumber:
    value: Decimal


@dataclass(frozen=True, slots=True)
class NumericString:
    text: str
    value: Decimal


@dataclass(frozen=True, slots=True)
class IsoString:
    text: str
    micros: int


EpochValue = Union[EpochNumber, NumericString, IsoString]


def parse_unit(unit: str | None) -> str:
    text = str(unit or "").strip().lower()
    if text not in VALID_UNITS:
        raise TimestampError(f"unsupported unit {unit!r}: must be auto, s, ms, or us")
    return text


def _to_decimal(value: Any) -> Decimal:
    try:
        dec = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError) as exc:
        raise TimestampError(f"invalid number: {value!r}") from exc
    if not dec.is_finite():
        raise TimestampError(f"non-finite number: {value!r}")
    return dec


def _match_to_micros(match: re.Match[str], offset_text: str | None) -> int:
    year, month, day, hour, minute, second = (int(part) for part in match.groups()[:6])
    fraction = match.group(7) or ""
    try:
        parsed = datetime(year, month, day, hour, minute, second, tzinfo=timezone.utc)
    except ValueError as exc:
        raise TimestampError(f"invalid timestamp {match.string!r}: {exc}") from exc
    if offset_text and offset_text not in {"Z", "z"}:
        sign = -1 if offset_text[0] == "-" else 1
        hours, minutes = int(offset_text[1:3]), int(offset_text[4:6])
        parsed -= sign * timedelta(hours=hours, minutes=minutes)
    # sub-microsecond digits are truncated
    frac_us = int(fraction[:6].ljust(6, "0")) if fraction else 0
    return (parsed - _EPOCH) // _ONE_US + frac_us


def _parse_iso(text: str) -> int | None:
    match = _RFC3339_RE.match(text)
    if match is not None:
        return _match_to_micros(match, match.group(8))
    match = _NAIVE_ISO_RE.match(text)
    if match is not None:
        return _match_to_micros(match, None)
    return None


def classify(raw: Any) -> EpochValue:
    """Tag a raw field value as a number, numeric string or ISO-8601 string.

    Strings are tried as RFC-3339 (explicit designator) first, then as a
    UTC-naive ISO layout, and only then as a plain number.
    """
    if raw is None:
        raise TimestampError("nil value")
    if isinstance(raw, bool):
        raise TimestampError(f"unsupported type {type(raw).__name__}")
    if isinstance(raw, (int, float, Decimal)):
        return EpochNumber(_to_decimal(raw))
    if isinstance(raw, (bytes, bytearray)):
        raw = bytes(raw).decode("utf-8", errors="replace")
    if not isinstance(raw, str):
        raise TimestampError(f"unsupported type {type(raw).__name__}")
    text = raw.strip()
    if not text:
        raise TimestampError("empty string")
    micros = _parse_iso(text)
    if micros is not None:
        return IsoString(text, micros)
    if _NUMERIC_RE.match(text):
        return NumericString(text, _to_decimal(text))
    raise TimestampError(f"failed to parse {text!r}")


def scale_to_micros(value: Decimal, unit: str) -> int:
    if unit == UNIT_AUTO:
        if value >= AUTO_US_MIN:
            factor = UNIT_FACTORS["us"]
        elif value >= AUTO_MS_MIN:
            factor = UNIT_FACTORS["ms"]
        elif value >= AUTO_S_MIN:
            factor = UNIT_FACTORS["s"]
        else:
            raise TimestampError(f"unknown epoch precision for {value}")
    else:
        factor = UNIT_FACTORS[unit]
    return int((value * factor).to_integral_value(rounding=ROUND_FLOOR))


def normalize_epoch_us(raw: Any, unit: str = UNIT_AUTO) -> int:
    """Convert a timestamp field to integer microseconds since the epoch.

    ISO-8601 strings are self-describing and ignore ``unit``.
    """
    unit = parse_unit(unit)
    tagged = classify(raw)
    if isinstance(tagged, IsoString):
        return tagged.micros
    return scale_to_micros(tagged.value, unit)
