"""Queue latency measurement against a recorded source dump."""

__all__ = [
    "cli",
    "config",
    "epoch",
    "errors",
    "latency",
    "lost",
    "measure",
    "reconcile",
    "restore",
    "rewrite",
    "runlog",
    "source_index",
    "transport",
    "writers",
]
