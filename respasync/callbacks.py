"""Reply objects, callback records and command-framing helpers."""

from __future__ import annotations

import dataclasses
import enum
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Iterator, Optional, Union

__all__ = [
    "ReplyType",
    "Reply",
    "Callback",
    "CallbackQueue",
    "is_push_reply",
    "is_subscribe_reply",
    "is_spontaneous_push_reply",
    "format_command_argv",
    "split_formatted_command",
]

BytesLike = Union[bytes, bytearray, memoryview]
Argument = Union[BytesLike, str]


class ReplyType(enum.IntEnum):
    """Kinds of protocol replies."""

    STRING = 1
    ARRAY = 2
    INTEGER = 3
    NIL = 4
    STATUS = 5
    ERROR = 6
    DOUBLE = 7
    BOOL = 8
    MAP = 9
    SET = 10
    ATTR = 11
    PUSH = 12
    BIGNUM = 13
    VERB = 14


@dataclass
class Reply:
    """A parsed server reply."""

    type: ReplyType
    string: bytes = b""
    integer: int = 0
    elements: list["Reply"] = field(default_factory=list)


@dataclass
class Callback:
    """A reply handler together with its subscription bookkeeping."""

    fn: Optional[Callable[..., Any]] = None
    privdata: Any = None
    pending_subs: int = 1
    unsubscribe_sent: bool = False


class CallbackQueue:
    """FIFO of callbacks; each pushed callback is stored as a copy."""

    def __init__(self, callbacks: Iterable[Callback] = ()) -> None:
        self._items: deque[Callback] = deque()
        for callback in callbacks:
            self.push(callback)

    def push(self, callback: Callback) -> None:
        """Append a copy of ``callback`` to the tail."""
        self._items.append(dataclasses.replace(callback))

    def shift(self) -> Callback:
        """Remove and return the head. Raises IndexError when empty."""
        if not self._items:
            raise IndexError("shift from an empty callback queue")
        return self._items.popleft()

    def __len__(self) -> int:
        return len(self._items)

    def __bool__(self) -> bool:
        return bool(self._items)

    def __iter__(self) -> Iterator[Callback]:
        return iter(list(self._items))


def is_push_reply(reply: Reply) -> bool:
    """Return whether ``reply`` is an out-of-band push message."""
    return reply.type == ReplyType.PUSH


def is_subscribe_reply(reply: Reply) -> bool:
    """Return whether ``reply`` looks like a (p)subscribe/message/unsubscribe."""
    if not reply.elements:
        return False
    head = reply.elements[0]
    if head.type != ReplyType.STRING or len(head.string) < len("message"):
        return False
    name = head.string.lower()
    if name[:1] == b"p":
        name = name[1:]
    return any(
        target.startswith(name) for target in (b"subscribe", b"message", b"unsubscribe")
    )


def is_spontaneous_push_reply(reply: Reply) -> bool:
    """Return whether ``reply`` is a push message unrelated to pub/sub."""
    return is_push_reply(reply) and not is_subscribe_reply(reply)


def _to_bytes(value: Argument) -> bytes:
    if isinstance(value, str):
        return value.encode("utf-8")
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value)
    raise TypeError(f"command arguments must be str or bytes, not {type(value).__name__}")


def format_command_argv(argv: Iterable[Argument]) -> bytes:
    """Encode ``argv`` as a multi-bulk request."""
    args = [_to_bytes(arg) for arg in argv]
    parts = [b"*%d\r\n" % len(args)]
    for arg in args:
        parts.append(b"$%d\r\n" % len(arg))
        parts.append(arg)
        parts.append(b"\r\n")
    return b"".join(parts)


def split_formatted_command(cmd: Argument) -> list[bytes]:
    """Return the bulk arguments contained in a formatted request.

    Raises ValueError when a bulk header is malformed or truncated.
    """
    data = _to_bytes(cmd)
    arguments: list[bytes] = []
    pos = 0
    while True:
        start = data.find(b"$", pos)
        if start == -1:
            return arguments
        end = data.find(b"\r", start)
        if end == -1:
            raise ValueError("bulk header is not terminated")
        digits = data[start + 1:end]
        if not digits.isdigit():
            raise ValueError(f"invalid bulk length {digits!r}")
        length = int(digits)
        body = end + 2
        if body + length > len(data):
            raise ValueError("bulk argument is truncated")
        arguments.append(data[body:body + length])
        pos = body + length + 2