"""Error taxonomy for measurement runs."""

from __future__ import annotations


class PropherError(RuntimeError):
    """Fatal error surfaced to the CLI as a single diagnostic line."""

    code = "INTERNAL_ERROR"

    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__(detail)


class ConfigError(PropherError):
    code = "CONFIG_ERROR"


class SourceIndexError(PropherError):
    code = "INDEX_ERROR"


class TransportError(PropherError):
    code = "TRANSPORT_ERROR"


class RestoreRefused(PropherError):
    code = "RESTORE_REFUSED"


class DumpError(PropherError):
    code = "DUMP_ERROR"


class OutputError(PropherError):
    code = "OUTPUT_ERROR"


class TimestampError(ValueError):
    pass


# Per-record outcome codes. These never raise out of the reconciliation loop.
JSON_PARSE_ERROR = "json_parse_error"
SOURCE_NOT_FOUND = "source_not_found"
RESULT_SENT_BEFORE_SOURCE = "result_sent_before_source"
RESULT_SENT_IN_FUTURE = "result_sent_in_future"


def missing_field(name: str) -> str:
    return f"missing_{name}"


def bad_field(name: str) -> str:
    return f"bad_{name}"


def missing_or_bad_field(name: str) -> str:
    return f"missing_or_bad_{name}"

