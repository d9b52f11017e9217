from __future__ import annotations

from dataclasses import dataclass, fields
import types
import typing
from typing import Any, get_args, get_origin

from .epoch import parse_unit
from .errors import ConfigError, TimestampError
from .transport import PUSH_LEFT, PUSH_RIGHT

ENV_PREFIX = "PROPHER_"

REWRITE_MODES = ("same", "increment")
REWRITE_UNITS = ("ms", "s")


def _parse_bool(value: str) -> bool:
    val = str(value).strip().lower()
    if val in {"1", "true", "yes", "y", "on"}:
        return True
    if val in {"0", "false", "no", "n", "off"}:
        return False
    raise ValueError(f"invalid bool: {value}")


def _parse_number(value: str, target_type: type) -> Any:
    if target_type is int:
        return int(value)
    if target_type is float:
        return float(value)
    return value


def _unwrap_optional(field_type: Any) -> tuple[Any, bool]:
    origin = get_origin(field_type)
    union_type = getattr(types, "UnionType", None)
    if origin not in (typing.Union, union_type):
        if isinstance(field_type, str) and field_type.endswith(" | None"):
            return field_type[: -len(" | None")], True
        return field_type, False
    args = get_args(field_type)
    if args and type(None) in args and len(args) == 2:
        base = args[0] if args[1] is type(None) else args[1]
        return base, True
    return field_type, False


def _is_field_type(field_type: Any, expected: type, expected_name: str) -> bool:
    base_type, _is_optional = _unwrap_optional(field_type)
    if base_type is expected:
        return True
    if isinstance(base_type, str) and base_type == expected_name:
        return True
    return False


def _parse_optional(raw: str, target_type: Any) -> Any:
    text = str(raw).strip()
    if text == "":
        return None
    lower = text.lower()
    if lower in {"none", "null"}:
        return None
    if _is_field_type(target_type, bool, "bool"):
        return _parse_bool(text)
    if _is_field_type(target_type, int, "int"):
        return _parse_number(text, int)
    if _is_field_type(target_type, float, "float"):
        return _parse_number(text, float)
    return text


def stats_path_for(out_jsonl: str) -> str:
    trimmed = str(out_jsonl or "").strip()
    if not trimmed:
        return "latency.stats.json"
    for suffix in (".jsonl", ".json"):
        if trimmed.endswith(suffix):
            return trimmed[: -len(suffix)] + ".stats.json"
    return trimmed + ".stats.json"


@dataclass
class Config:
    debug: bool = False
    runlog_path: str | None = None
    redis_url: str | None = None
    redis_addr: str = "127.0.0.1:6379"
    redis_pass: str | None = None
    redis_db: int = 0
    # measure-list-latency
    obs_queue: str = ""
    hold_queue: str | None = None
    duration_sec: float = 600.0
    block_sec: float = 1.0
    max_messages: int = 0
    source_dump: str = ""
    message_id_field: str = "message_id"
    source_sent_field: str = "sent_epoch"
    source_sent_unit: str = "auto"
    t0_field: str = "sent_epoch"
    t0_unit: str = "auto"
    out_jsonl: str = "latency.jsonl"
    lost_path: str = "lost.json"
    restore: bool = False
    restore_verify_empty: bool = False
    # load-dump-and-rewrite
    in_dump: str = ""
    out_dump: str = ""
    sent_field: str = "sent_epoch"
    epoch_unit: str = "ms"
    rewrite_mode: str = "increment"
    step: int = 1
    base_epoch: int = 0
    redis_queue: str | None = None
    redis_push: str = PUSH_RIGHT
    clear_queue: bool = False
    batch_size: int = 1000

    def resolved_hold_queue(self) -> str:
        hold = (self.hold_queue or "").strip()
        return hold or f"{self.obs_queue}:hold"

    def stats_path(self) -> str:
        return stats_path_for(self.out_jsonl)

    def validate_measure(self) -> "Config":
        for name in ("obs_queue", "source_dump", "message_id_field", "source_sent_field", "t0_field"):
            if not str(getattr(self, name) or "").strip():
                raise ConfigError(f"{name.replace('_', '-')} is required")
        for name in ("source_sent_unit", "t0_unit"):
            try:
                setattr(self, name, parse_unit(getattr(self, name) or "auto"))
            except TimestampError as exc:
                raise ConfigError(f"{name.replace('_', '-')}: {exc}") from exc
        if self.block_sec <= 0:
            raise ConfigError("block-sec must be > 0")
        if self.duration_sec < 0:
            raise ConfigError("duration-sec must be >= 0")
        if self.max_messages < 0:
            raise ConfigError("max-messages must be >= 0")
        if self.resolved_hold_queue() == self.obs_queue:
            raise ConfigError("hold-queue must differ from obs-queue")
        return self

    def validate_rewrite(self) -> "Config":
        if not self.in_dump or not self.out_dump:
            raise ConfigError("in-dump and out-dump are required")
        self.epoch_unit = str(self.epoch_unit).strip().lower()
        if self.epoch_unit not in REWRITE_UNITS:
            raise ConfigError("epoch-unit must be ms or s")
        if self.rewrite_mode not in REWRITE_MODES:
            raise ConfigError("rewrite-mode must be same or increment")
        if self.redis_push not in (PUSH_RIGHT, PUSH_LEFT):
            raise ConfigError("redis-push must be rpush or lpush")
        if self.batch_size <= 0:
            self.batch_size = 1000
        return self

    def apply_overrides(self, overrides: dict[str, Any]) -> "Config":
        for field in fields(self):
            name = field.name
            if name in overrides:
                value = overrides[name]
                if value is None:
                    _base_type, is_optional = _unwrap_optional(field.type)
                    if is_optional:
                        setattr(self, name, None)
                    continue
                setattr(self, name, value)
        return self

    @classmethod
    def from_env_and_cli(cls, cli_overrides: dict[str, Any], env: dict[str, str]) -> "Config":
        cfg = cls().apply_overrides(cli_overrides)
        for field in fields(cfg):
            env_key = ENV_PREFIX + field.name.upper()
            if env_key not in env:
                continue
            raw = env[env_key]
            base_type, is_optional = _unwrap_optional(field.type)
            try:
                if is_optional:
                    value = _parse_optional(raw, base_type)
                elif _is_field_type(field.type, bool, "bool"):
                    value = _parse_bool(raw)
                elif _is_field_type(field.type, int, "int"):
                    value = _parse_number(raw, int)
                elif _is_field_type(field.type, float, "float"):
                    value = _parse_number(raw, float)
                else:
                    value = raw
            except ValueError as exc:
                raise ConfigError(f"invalid {env_key}: {exc}") from exc
            setattr(cfg, field.name, value)
        return cfg
