"""List transport contract plus Redis and in-memory adapters.

Both adapters share Redis list semantics: a move pops from the right of the
source list and pushes onto the left of the destination list, atomically.
"""

from __future__ import annotations

import time
from collections import deque
from typing import Callable, Iterable, Protocol

import redis

from .errors import TransportError

PUSH_RIGHT = "rpush"
PUSH_LEFT = "lpush"


class ListTransport(Protocol):
    def move(self, src: str, dst: str, timeout_sec: float) -> bytes | None:
        """Blocking atomic move; None when nothing arrived within the wait."""
        ...

    def move_nowait(self, src: str, dst: str) -> bytes | None:
        ...

    def length(self, name: str) -> int:
        ...

    def push_many(self, name: str, payloads: Iterable[bytes], *, how: str = PUSH_RIGHT) -> int:
        ...

    def delete(self, name: str) -> None:
        ...


def _redis_timeout(timeout_sec: float) -> int | float:
    if float(timeout_sec).is_integer():
        return int(timeout_sec)
    return float(timeout_sec)


def _split_addr(addr: str) -> tuple[str, int]:
    host, sep, port = str(addr).strip().rpartition(":")
    if not sep:
        return port or "127.0.0.1", 6379
    try:
        return host or "127.0.0.1", int(port)
    except ValueError as exc:
        raise TransportError(f"invalid redis address {addr!r}") from exc


class RedisListTransport:
    def __init__(self, client: redis.Redis):
        self.client = client

    @classmethod
    def connect(
        cls,
        *,
        url: str | None = None,
        addr: str = "127.0.0.1:6379",
        password: str | None = None,
        db: int = 0,
    ) -> "RedisListTransport":
        if url:
            return cls(redis.Redis.from_url(url))
        host, port = _split_addr(addr)
        return cls(redis.Redis(host=host, port=port, password=password or None, db=db))

    def move(self, src: str, dst: str, timeout_sec: float) -> bytes | None:
        try:
            return self.client.brpoplpush(src, dst, timeout=_redis_timeout(timeout_sec))
        except redis.exceptions.RedisError as exc:
            raise TransportError(f"brpoplpush {src} -> {dst}: {exc}") from exc

    def move_nowait(self, src: str, dst: str) -> bytes | None:
        try:
            return self.client.rpoplpush(src, dst)
        except redis.exceptions.RedisError as exc:
            raise TransportError(f"rpoplpush {src} -> {dst}: {exc}") from exc

    def length(self, name: str) -> int:
        try:
            return int(self.client.llen(name))
        except redis.exceptions.RedisError as exc:
            raise TransportError(f"llen {name}: {exc}") from exc

    def push_many(self, name: str, payloads: Iterable[bytes], *, how: str = PUSH_RIGHT) -> int:
        pipe = self.client.pipeline(transaction=False)
        count = 0
        for payload in payloads:
            if how == PUSH_LEFT:
                pipe.lpush(name, payload)
            else:
                pipe.rpush(name, payload)
            count += 1
        if not count:
            return 0
        try:
            pipe.execute()
        except redis.exceptions.RedisError as exc:
            raise TransportError(f"pipeline {how} {name}: {exc}") from exc
        return count

    def delete(self, name: str) -> None:
        try:
            self.client.delete(name)
        except redis.exceptions.RedisError as exc:
            raise TransportError(f"del {name}: {exc}") from exc


class MemoryListTransport:
    """Process-local lists for tests and dry runs."""

    def __init__(self, sleep: Callable[[float], None] = time.sleep) -> None:
        self.lists: dict[str, deque[bytes]] = {}
        self._sleep = sleep

    def _list(self, name: str) -> deque[bytes]:
        if name not in self.lists:
            self.lists[name] = deque()
        return self.lists[name]

    def items(self, name: str) -> list[bytes]:
        """Left-to-right snapshot, as LRANGE 0 -1 would return it."""
        return list(self._list(name))

    def move(self, src: str, dst: str, timeout_sec: float) -> bytes | None:
        payload = self.move_nowait(src, dst)
        if payload is None and timeout_sec > 0:
            self._sleep(timeout_sec)
            payload = self.move_nowait(src, dst)
        return payload

    def move_nowait(self, src: str, dst: str) -> bytes | None:
        source = self._list(src)
        if not source:
            return None
        payload = source.pop()
        self._list(dst).appendleft(payload)
        return payload

    def length(self, name: str) -> int:
        return len(self._list(name))

    def push_many(self, name: str, payloads: Iterable[bytes], *, how: str = PUSH_RIGHT) -> int:
        target = self._list(name)
        count = 0
        for payload in payloads:
            if isinstance(payload, str):
                payload = payload.encode("utf-8")
            if how == PUSH_LEFT:
                target.appendleft(bytes(payload))
            else:
                target.append(bytes(payload))
            count += 1
        return count

    def delete(self, name: str) -> None:
        self.lists.pop(name, None)
