import pytest

from propher.errors import RestoreRefused
from propher.restore import restore_hold
from propher.transport import MemoryListTransport


def test_restore_moves_everything_back_in_order() -> None:
    transport = MemoryListTransport(sleep=lambda _s: None)
    transport.push_many("obs", [b"1", b"2", b"3"])
    before = transport.items("obs")
    while transport.move("obs", "obs:hold", 0) is not None:
        pass
    result = restore_hold(transport, "obs", "obs:hold")
    assert result.moved_back == 3
    assert transport.length("obs:hold") == 0
    assert transport.items("obs") == before


def test_restore_twice_is_idempotent() -> None:
    transport = MemoryListTransport(sleep=lambda _s: None)
    assert restore_hold(transport, "obs", "obs:hold").moved_back == 0
    assert restore_hold(transport, "obs", "obs:hold").moved_back == 0


def test_restore_refuses_non_empty_obs() -> None:
    transport = MemoryListTransport(sleep=lambda _s: None)
    transport.push_many("obs", [b"organic"])
    transport.push_many("obs:hold", [b"held-1", b"held-2"])
    with pytest.raises(RestoreRefused):
        restore_hold(transport, "obs", "obs:hold", verify_empty=True)
    assert transport.length("obs:hold") == 2
    assert transport.items("obs") == [b"organic"]


def test_restore_verify_passes_on_empty_obs() -> None:
    transport = MemoryListTransport(sleep=lambda _s: None)
    transport.push_many("obs:hold", [b"held"])
    result = restore_hold(transport, "obs", "obs:hold", verify_empty=True)
    assert result.moved_back == 1
    assert transport.items("obs") == [b"held"]
