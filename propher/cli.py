from __future__ import annotations

import argparse
import os
import sys
from dataclasses import fields
from typing import Any

from .config import Config, _is_field_type
from .errors import PropherError
from .measure import run_measure_list_latency
from .rewrite import run_load_dump_and_rewrite

CMD_MEASURE = "measure-list-latency"
CMD_REWRITE = "load-dump-and-rewrite"

COMMON_FIELDS = (
    "debug",
    "runlog_path",
    "redis_url",
    "redis_addr",
    "redis_pass",
    "redis_db",
)
MEASURE_FIELDS = (
    "obs_queue",
    "hold_queue",
    "duration_sec",
    "block_sec",
    "max_messages",
    "source_dump",
    "message_id_field",
    "source_sent_field",
    "source_sent_unit",
    "t0_field",
    "t0_unit",
    "out_jsonl",
    "lost_path",
    "restore",
    "restore_verify_empty",
)
REWRITE_FIELDS = (
    "in_dump",
    "out_dump",
    "sent_field",
    "epoch_unit",
    "rewrite_mode",
    "step",
    "base_epoch",
    "redis_queue",
    "redis_push",
    "clear_queue",
    "batch_size",
)


def _str2bool(value: str | bool) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in {"1", "true", "yes", "y", "on"}:
        return True
    if text in {"0", "false", "no", "n", "off"}:
        return False
    raise argparse.ArgumentTypeError(f"invalid bool: {value}")


def _add_config_args(parser: argparse.ArgumentParser, names: tuple[str, ...]) -> None:
    by_name = {field.name: field for field in fields(Config)}
    for field_name in names:
        field = by_name[field_name]
        name = field.name.replace("_", "-")
        if _is_field_type(field.type, bool, "bool"):
            group = parser.add_mutually_exclusive_group()
            group.add_argument(f"--{name}", dest=field.name, action="store_true")
            group.add_argument(f"--no-{name}", dest=field.name, action="store_false")
            parser.set_defaults(**{field.name: None})
        else:
            parser.add_argument(f"--{name}", dest=field.name, default=None)


def _cli_overrides(ns: argparse.Namespace) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    for field in fields(Config):
        value = getattr(ns, field.name, None)
        if value is None:
            continue
        if _is_field_type(field.type, bool, "bool"):
            overrides[field.name] = _str2bool(value)
        elif _is_field_type(field.type, int, "int"):
            overrides[field.name] = int(value)
        elif _is_field_type(field.type, float, "float"):
            overrides[field.name] = float(value)
        else:
            overrides[field.name] = value
    return overrides


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="propher")
    subparsers = parser.add_subparsers(dest="command", required=True)

    common = argparse.ArgumentParser(add_help=False)
    _add_config_args(common, COMMON_FIELDS)

    measure = subparsers.add_parser(CMD_MEASURE, parents=[common])
    _add_config_args(measure, MEASURE_FIELDS)

    rewrite = subparsers.add_parser(CMD_REWRITE, parents=[common])
    _add_config_args(rewrite, REWRITE_FIELDS)
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        overrides = _cli_overrides(args)
    except (ValueError, argparse.ArgumentTypeError) as exc:
        print(f"error: invalid flag value: {exc}", file=sys.stderr)
        return 2
    try:
        config = Config.from_env_and_cli(overrides, dict(os.environ))
        if args.command == CMD_MEASURE:
            run_measure_list_latency(config)
            return 0
        if args.command == CMD_REWRITE:
            run_load_dump_and_rewrite(config)
            return 0
    except PropherError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
