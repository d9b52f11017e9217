from __future__ import annotations

from dataclasses import dataclass

from .errors import RestoreRefused
from .transport import ListTransport


@dataclass(frozen=True, slots=True)
class RestoreResult:
    moved_back: int
    hold_queue: str
    obs_queue: str


def restore_hold(
    transport: ListTransport,
    obs_queue: str,
    hold_queue: str,
    *,
    verify_empty: bool = False,
) -> RestoreResult:
    """Move every held message back onto the observation list.

    Not atomic as a whole: an interrupted restore leaves the rest in the hold
    list and a second call resumes from there.
    """
    if verify_empty:
        current = transport.length(obs_queue)
        if current != 0:
            raise RestoreRefused(
                f"refuse restore: obs-queue {obs_queue!r} is not empty (LLEN={current})"
            )
    moved = 0
    while transport.move_nowait(hold_queue, obs_queue) is not None:
        moved += 1
    return RestoreResult(moved_back=moved, hold_queue=hold_queue, obs_queue=obs_queue)
