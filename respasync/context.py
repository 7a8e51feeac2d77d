"""Asynchronous client context: command queueing, reply dispatch and pub/sub.

The context does no I/O of its own. It drives a *transport*, an object with
these methods:

``connect_done()``
    Return True once the connection is established and False while it is
    still in progress. Raise ``OSError`` if connecting failed.
``read()``
    Read whatever is available from the socket into the reply parser.
    Raise ``EOFError`` when the peer closed the connection, ``OSError`` on
    I/O errors and ``ValueError`` on protocol errors.
``get_reply()``
    Return the next complete :class:`~respasync.callbacks.Reply`, or None.
``send(data)``
    Write as much of ``data`` as possible and return the number of bytes
    written.
``close()``
    Release the connection.

An event loop drives the context by calling :meth:`AsyncContext.handle_read`,
:meth:`AsyncContext.handle_write` and :meth:`AsyncContext.handle_timeout`,
and is told what to watch through the hooks in :attr:`AsyncContext.ev`.
"""

from __future__ import annotations

import dataclasses
import enum
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Callable, Optional, Union

from respasync.callbacks import (
    Callback,
    CallbackQueue,
    Reply,
    ReplyType,
    format_command_argv,
    is_push_reply,
    is_spontaneous_push_reply,
    split_formatted_command,
)
from respasync.hashtable import HashTable, gen_hash_function

__all__ = [
    "AsyncError",
    "ContextFlags",
    "Status",
    "EventHooks",
    "AsyncContext",
    "ERR_IO",
    "ERR_OTHER",
    "ERR_EOF",
    "ERR_PROTOCOL",
    "ERR_OOM",
    "ERR_TIMEOUT",
]

ERR_IO = 1
ERR_OTHER = 2
ERR_EOF = 3
ERR_PROTOCOL = 4
ERR_OOM = 5
ERR_TIMEOUT = 6

_TRANSPORT_ERRORS = (OSError, EOFError, ValueError)


class AsyncError(Exception):
    """Raised when the context refuses an operation."""


class ContextFlags(enum.IntFlag):
    """State bits of an asynchronous context."""

    BLOCK = 0x1
    CONNECTED = 0x2
    DISCONNECTING = 0x4
    FREEING = 0x8
    IN_CALLBACK = 0x10
    SUBSCRIBED = 0x20
    MONITORING = 0x40
    REUSEADDR = 0x80
    SUPPORTS_PUSH = 0x100
    NO_AUTO_FREE = 0x200
    NO_AUTO_FREE_REPLIES = 0x400


class Status(enum.IntEnum):
    """Status passed to connect and disconnect callbacks."""

    OK = 0
    ERR = -1


Hook = Optional[Callable[[Any], None]]


@dataclass
class EventHooks:
    """Event-loop hooks; each is called with :attr:`data`. All are idempotent."""

    data: Any = None
    add_read: Hook = None
    del_read: Hook = None
    add_write: Hook = None
    del_write: Hook = None
    cleanup: Hook = None
    schedule_timer: Optional[Callable[[Any, float], None]] = None


def _new_table() -> HashTable:
    return HashTable(gen_hash_function)


class AsyncContext:
    """Non-blocking client context that pairs replies with callbacks."""

    def __init__(self, transport: Any) -> None:
        self.transport = transport
        self.flags = ContextFlags(0)
        self.err = 0
        self.errstr: Optional[str] = None
        self.data: Any = None
        self.data_cleanup: Optional[Callable[[Any], None]] = None
        self.ev = EventHooks()
        self.on_connect: Optional[Callable[["AsyncContext", Status], None]] = None
        self.on_connect_nc: Optional[Callable[["AsyncContext", Status], None]] = None
        self.on_disconnect: Optional[Callable[["AsyncContext", Status], None]] = None
        self.push_cb: Optional[Callable[["AsyncContext", Reply], None]] = None
        self.command_timeout: Optional[float] = None
        self.obuf = bytearray()
        self.replies = CallbackQueue()
        self.sub_replies = CallbackQueue()
        self.channels = _new_table()
        self.patterns = _new_table()
        self.pending_unsubs = 0
        self._freed = False

    # -- event-loop hooks --------------------------------------------------

    def _call_hook(self, hook: Hook) -> None:
        if hook is not None:
            hook(self.ev.data)

    def _el_add_read(self) -> None:
        self._call_hook(self.ev.add_read)

    def _el_add_write(self) -> None:
        self._call_hook(self.ev.add_write)

    def _el_del_write(self) -> None:
        self._call_hook(self.ev.del_write)

    def _el_cleanup(self) -> None:
        hook, self.ev.cleanup = self.ev.cleanup, None
        self._call_hook(hook)

    # -- errors ------------------------------------------------------------

    def _set_error(self, kind: int, message: str) -> None:
        self.err = kind
        self.errstr = message

    def _set_error_from(self, exc: BaseException) -> None:
        if isinstance(exc, EOFError):
            self._set_error(ERR_EOF, str(exc) or "Server closed the connection")
        elif isinstance(exc, OSError):
            self._set_error(ERR_IO, str(exc) or "I/O error")
        else:
            self._set_error(ERR_PROTOCOL, str(exc) or "Protocol error")

    # -- callback registration --------------------------------------------

    def _set_connect_callback(self, fn: Any, fn_nc: Any) -> None:
        if self.on_connect is not None or self.on_connect_nc is not None:
            raise AsyncError("connect callback already set")
        if fn is not None:
            self.on_connect = fn
        elif fn_nc is not None:
            self.on_connect_nc = fn_nc
        # Connection completion is detected by the first write event.
        self._el_add_write()

    def set_connect_callback(self, fn: Callable[["AsyncContext", Status], None]) -> None:
        """Register the callback run once connecting succeeds or fails."""
        self._set_connect_callback(fn, None)

    def set_connect_callback_nc(self, fn: Callable[["AsyncContext", Status], None]) -> None:
        """Register a connect callback that may modify the context."""
        self._set_connect_callback(None, fn)

    def set_disconnect_callback(self, fn: Callable[["AsyncContext", Status], None]) -> None:
        """Register the disconnect callback. Raises AsyncError if one is set."""
        if self.on_disconnect is not None:
            raise AsyncError("disconnect callback already set")
        self.on_disconnect = fn

    def set_push_callback(self, fn: Optional[Callable[["AsyncContext", Reply], None]]):
        """Install a handler for push messages; return the previous one."""
        old, self.push_cb = self.push_cb, fn
        return old

    def set_timeout(self, timeout: Union[float, int, timedelta]) -> None:
        """Set the command timeout in seconds; zero disables it."""
        seconds = timeout.total_seconds() if isinstance(timeout, timedelta) else float(timeout)
        if seconds < 0:
            raise ValueError("timeout must not be negative")
        self.command_timeout = seconds

    # -- running callbacks -------------------------------------------------

    def _run_callback(self, cb: Callback, reply: Optional[Reply]) -> None:
        if cb.fn is None:
            return
        self.flags |= ContextFlags.IN_CALLBACK
        try:
            cb.fn(self, reply, cb.privdata)
        finally:
            self.flags &= ~ContextFlags.IN_CALLBACK

    def _run_push_callback(self, reply: Reply) -> None:
        if self.push_cb is None:
            return
        self.flags |= ContextFlags.IN_CALLBACK
        try:
            self.push_cb(self, reply)
        finally:
            self.flags &= ~ContextFlags.IN_CALLBACK

    def _run_guarded(self, fn: Callable[["AsyncContext", Status], None], status: Status) -> None:
        if self.flags & ContextFlags.IN_CALLBACK:
            fn(self, status)
            return
        self.flags |= ContextFlags.IN_CALLBACK
        try:
            fn(self, status)
        finally:
            self.flags &= ~ContextFlags.IN_CALLBACK

    def _run_connect_callback(self, status: Status) -> None:
        fn = self.on_connect if self.on_connect is not None else self.on_connect_nc
        if fn is not None:
            self._run_guarded(fn, status)

    def _run_disconnect_callback(self, status: Status) -> None:
        if self.on_disconnect is not None:
            self._run_guarded(self.on_disconnect, status)

    # -- teardown ----------------------------------------------------------

    def _free(self) -> None:
        if self._freed:
            return
        self._freed = True
        while self.replies:
            self._run_callback(self.replies.shift(), None)
        while self.sub_replies:
            self._run_callback(self.sub_replies.shift(), None)
        for table in (self.channels, self.patterns):
            for _name, cb in table:
                self._run_callback(cb, None)
            table.clear()

        self._el_cleanup()

        if self.flags & ContextFlags.CONNECTED:
            status = Status.OK if self.err == 0 else Status.ERR
            if self.flags & ContextFlags.FREEING:
                status = Status.OK
            self._run_disconnect_callback(status)

        if self.data_cleanup is not None:
            self.data_cleanup(self.data)

        self.flags |= ContextFlags.FREEING
        self.transport.close()

    def free(self) -> None:
        """Free the context, deferring to the dispatch loop inside callbacks."""
        self.flags |= ContextFlags.FREEING
        if not self.flags & ContextFlags.IN_CALLBACK:
            self._free()

    def _disconnect(self) -> None:
        if self.err != 0:
            # Pending callbacks must not be able to issue new commands.
            self.flags |= ContextFlags.DISCONNECTING
        self._el_cleanup()
        if not self.flags & ContextFlags.NO_AUTO_FREE:
            self._free()

    def disconnect(self) -> None:
        """Stop accepting commands and disconnect once pending replies arrive."""
        self.flags |= ContextFlags.DISCONNECTING
        self.flags &= ~ContextFlags.NO_AUTO_FREE
        if not self.flags & ContextFlags.IN_CALLBACK and not self.replies:
            self._disconnect()

    # -- commands ----------------------------------------------------------

    def _command(self, fn: Any, privdata: Any, cmd: bytes) -> None:
        if self.flags & (ContextFlags.DISCONNECTING | ContextFlags.FREEING):
            raise AsyncError("connection is closing")

        cb = Callback(fn=fn, privdata=privdata)
        args = split_formatted_command(cmd)
        if not args:
            raise AsyncError("command has no arguments")
        first, rest = args[0], args[1:]
        pvariant = first[:1].lower() == b"p"
        name = first[1:].lower() if pvariant else first.lower()
        table = self.patterns if pvariant else self.channels

        if rest and name == b"subscribe":
            self.flags |= ContextFlags.SUBSCRIBED
            for channel in rest:
                existing = table.find(channel)
                if existing is not None:
                    cb.pending_subs = existing.pending_subs + 1
                table.replace(channel, dataclasses.replace(cb))
        elif name == b"unsubscribe":
            if not self.flags & ContextFlags.SUBSCRIBED:
                raise AsyncError("not subscribed")
            if rest:
                for channel in rest:
                    existing = table.find(channel)
                    if existing is not None and not existing.unsubscribe_sent:
                        existing.unsubscribe_sent = True
                    else:
                        self.pending_unsubs += 1
            else:
                no_subs = True
                for _channel, existing in table:
                    if not existing.unsubscribe_sent:
                        existing.unsubscribe_sent = True
                        no_subs = False
                if no_subs:
                    self.pending_unsubs += 1
        elif name == b"monitor":
            self.flags |= ContextFlags.MONITORING
            self.replies.push(cb)
        elif self.flags & ContextFlags.SUBSCRIBED:
            self.sub_replies.push(cb)
        else:
            self.replies.push(cb)

        self.obuf += cmd
        self._el_add_write()

    def command(self, fn: Any, *args: Union[str, bytes], privdata: Any = None) -> None:
        """Queue a command built from ``args`` and register ``fn`` for its reply."""
        self._command(fn, privdata, format_command_argv(args))

    def command_argv(self, fn: Any, argv: Any, privdata: Any = None) -> None:
        """Queue a command given as a sequence of arguments."""
        self._command(fn, privdata, format_command_argv(argv))

    def formatted_command(self, fn: Any, cmd: Union[str, bytes], privdata: Any = None) -> None:
        """Queue an already encoded multi-bulk command."""
        data = cmd.encode("utf-8") if isinstance(cmd, str) else bytes(cmd)
        self._command(fn, privdata, data)

    # -- reply dispatch ----------------------------------------------------

    def _subscribe_callback(self, reply: Reply) -> Callback:
        dst = Callback()
        is_message = (
            reply.type == ReplyType.ARRAY
            and not self.flags & ContextFlags.SUPPORTS_PUSH
            and len(reply.elements) >= 3
        ) or reply.type == ReplyType.PUSH
        if not is_message:
            if self.sub_replies:
                dst = self.sub_replies.shift()
            return dst

        stype = reply.elements[0].string.lower()
        pvariant = stype[:1] == b"p"
        kind = stype[1:] if pvariant else stype
        table = self.patterns if pvariant else self.channels

        cb: Optional[Callback] = None
        sname: Optional[bytes] = None
        if reply.elements[1].type == ReplyType.STRING:
            sname = reply.elements[1].string
            cb = table.find(sname)
            if cb is not None:
                dst = dataclasses.replace(cb)

        if kind == b"subscribe":
            if cb is not None:
                cb.pending_subs -= 1
        elif kind == b"unsubscribe":
            if cb is None:
                self.pending_unsubs -= 1
            elif cb.pending_subs == 0:
                table.delete(sname)
            if (
                reply.elements[2].integer == 0
                and len(self.channels) == 0
                and len(self.patterns) == 0
                and self.pending_unsubs == 0
            ):
                self.flags &= ~ContextFlags.SUBSCRIBED
                while self.sub_replies:
                    self.replies.push(self.sub_replies.shift())
        return dst

    def process_callbacks(self) -> None:
        """Dispatch every complete reply to its callback."""
        failed = False
        while True:
            try:
                reply = self.transport.get_reply()
            except _TRANSPORT_ERRORS as exc:
                self._set_error_from(exc)
                failed = True
                break

            if reply is None:
                if (
                    self.flags & ContextFlags.DISCONNECTING
                    and not self.obuf
                    and not self.replies
                ):
                    self._disconnect()
                    return
                break

            if is_push_reply(reply):
                self.flags |= ContextFlags.SUPPORTS_PUSH

            if is_spontaneous_push_reply(reply):
                self._run_push_callback(reply)
                continue

            if self.replies:
                cb = self.replies.shift()
            else:
                if reply.type == ReplyType.ERROR:
                    # The server closes the connection after such a reply.
                    self._set_error(ERR_OTHER, reply.string.decode("utf-8", "replace"))
                    self._disconnect()
                    return
                if self.flags & ContextFlags.SUBSCRIBED:
                    cb = self._subscribe_callback(reply)
                else:
                    cb = Callback()

            if cb.fn is not None:
                self._run_callback(cb, reply)
                if self.flags & ContextFlags.FREEING:
                    self._free()
                    return

            if self.flags & ContextFlags.MONITORING:
                self.replies.push(cb)

        if failed:
            self._disconnect()

    # -- connection and I/O events ----------------------------------------

    def _handle_connect_failure(self) -> None:
        self._run_connect_callback(Status.ERR)
        self._disconnect()

    def _handle_connect(self) -> bool:
        try:
            completed = self.transport.connect_done()
        except _TRANSPORT_ERRORS as exc:
            self._set_error_from(exc)
            self._handle_connect_failure()
            return False
        if not completed:
            return True
        self.flags |= ContextFlags.CONNECTED
        self._run_connect_callback(Status.OK)
        if self.flags & ContextFlags.DISCONNECTING:
            self.disconnect()
            return False
        if self.flags & ContextFlags.FREEING:
            self.free()
            return False
        return True

    def _ensure_connected(self) -> bool:
        if self.flags & ContextFlags.IN_CALLBACK:
            raise AsyncError("event handlers must not be called from a callback")
        if not self.flags & ContextFlags.CONNECTED:
            if not self._handle_connect():
                return False
            if not self.flags & ContextFlags.CONNECTED:
                return False
        return True

    def read(self) -> None:
        """Read from the transport and dispatch the replies."""
        try:
            self.transport.read()
        except _TRANSPORT_ERRORS as exc:
            self._set_error_from(exc)
            self._disconnect()
            return
        self._el_add_read()
        self.process_callbacks()

    def handle_read(self) -> None:
        """Handle a readable socket."""
        if self._ensure_connected():
            self.read()

    def write(self) -> None:
        """Flush as much of the output buffer as the transport accepts."""
        try:
            if self.obuf:
                written = self.transport.send(bytes(self.obuf))
                del self.obuf[:written]
        except _TRANSPORT_ERRORS as exc:
            self._set_error_from(exc)
            self._disconnect()
            return
        if self.obuf:
            self._el_add_write()
        else:
            self._el_del_write()
        self._el_add_read()

    def handle_write(self) -> None:
        """Handle a writable socket."""
        if self._ensure_connected():
            self.write()

    def handle_timeout(self) -> None:
        """Handle a timer expiry: fail pending commands and disconnect."""
        if self.flags & ContextFlags.IN_CALLBACK:
            raise AsyncError("event handlers must not be called from a callback")

        if self.flags & ContextFlags.CONNECTED:
            if not self.replies and not self.sub_replies:
                return
            if not self.command_timeout:
                return

        if not self.err:
            self._set_error(ERR_TIMEOUT, "Timeout")

        if not self.flags & ContextFlags.CONNECTED:
            self._run_connect_callback(Status.ERR)

        while self.replies:
            self._run_callback(self.replies.shift(), None)

        self._disconnect()