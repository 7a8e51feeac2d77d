# respasync

This package is the core of an asynchronous client for the RESP protocol. It
has no event loop of its own and does no socket I/O. Your code supplies a
*transport* and calls the context whenever the socket is readable or writable,
or when a timer fires. The context then queues commands, moves bytes through
the transport and hands each reply to the callback registered for it. This
includes the bookkeeping for pub/sub and MONITOR.

## Modules

- `respasync.hashtable` provides `HashTable` and `gen_hash_function`.
  `HashTable` is a chained hash table. Its bucket count is a power of two, at
  least 4, and it doubles when full. Keys are hashed by a function you pass in
  and compared with `key_compare`, which defaults to `==`. The methods are
  `add` (raises `KeyError` on a duplicate), `replace` (returns `True` if the
  key was new), `delete` (raises `KeyError` if the key is missing), `find`
  (returns `None` if the key is missing), `expand` (raises `ValueError` if the
  new size is below the entry count), `clear` and `slots`. The table also
  supports `len()`, `in` and iteration over `(key, value)` pairs.
  `gen_hash_function` computes the 32-bit djb2 hash of bytes or a str.
- `respasync.callbacks` provides the following:
  - `ReplyType` and `Reply`, which has the fields `type`, `string`, `integer`
    and `elements`.
  - The `Callback` record, which holds `fn`, `privdata`, `pending_subs` and
    `unsubscribe_sent`.
  - `CallbackQueue`, a FIFO that stores a copy of each callback pushed onto it.
    `shift` raises `IndexError` when the queue is empty.
  - `is_push_reply`, `is_subscribe_reply` and `is_spontaneous_push_reply`.
  - `format_command_argv`, which encodes arguments as a multi-bulk request.
  - `split_formatted_command`, which returns the bulk arguments of an encoded
    request. It raises `ValueError` on a malformed request.
- `respasync.context` provides `AsyncContext`, `ContextFlags`, `Status`,
  `EventHooks`, `AsyncError` and the error codes `ERR_IO`, `ERR_OTHER`,
  `ERR_EOF`, `ERR_PROTOCOL`, `ERR_OOM` and `ERR_TIMEOUT`.

## The transport

`AsyncContext(transport)` expects an object with these methods:

- `connect_done()` returns `True` once the connection is established. It
  returns `False` while the connection is still in progress, and raises
  `OSError` if connecting failed.
- `read()` pulls the available data into the transport's reply parser. It
  raises `EOFError` when the peer has closed the connection, `OSError` on an
  I/O error and `ValueError` on a protocol error.
- `get_reply()` returns the next complete `Reply`, or `None`.
- `send(data)` writes what it can and returns the number of bytes written.
- `close()` releases the connection.

If a transport method raises one of these exceptions, the context sets `err`
and `errstr` and then disconnects.

## Using it

```python
from respasync.context import AsyncContext

ctx = AsyncContext(transport)
ctx.set_connect_callback(lambda ac, status: print("connected", status))
ctx.set_disconnect_callback(lambda ac, status: print("disconnected", status))

def on_get(ac, reply, privdata):
    if reply is not None:
        print(privdata, reply.string)
    ac.disconnect()

ctx.command(None, "SET", "key", "value")
ctx.command(on_get, "GET", "key", privdata="end-1")

# From your event loop:
#   socket writable -> ctx.handle_write()
#   socket readable -> ctx.handle_read()
#   timer expired   -> ctx.handle_timeout()
```

The context tells your loop what to watch through the hooks in `ctx.ev`, an
`EventHooks` instance. The hooks are `add_read`, `del_read`, `add_write`,
`del_write` and `cleanup`, and each one is called with `ev.data`.

### Callbacks

- A reply callback is called as `fn(context, reply, privdata)`. At teardown,
  every callback that is still pending is called with `None` in place of the
  reply.
- The connect and disconnect callbacks receive `Status.OK` or `Status.ERR`.
  Setting a second connect callback or a second disconnect callback raises
  `AsyncError`.
- `set_push_callback` installs a handler for RESP3 push messages that are not
  part of pub/sub. It returns the handler it replaced.

### Commands

- `command(fn, *args, privdata=None)` builds a request from `args`.
  `command_argv(fn, argv, privdata=None)` takes the arguments as one sequence.
  `formatted_command(fn, cmd, privdata=None)` queues a request that is already
  encoded.
- While the context is disconnecting or being freed, a new command raises
  `AsyncError`. So does `UNSUBSCRIBE` when nothing is subscribed.
- `SUBSCRIBE` and `PSUBSCRIBE` register the callback for each channel or
  pattern, and that callback then receives every message.
- `UNSUBSCRIBE` and `PUNSUBSCRIBE` count the confirmations still outstanding.
  The context leaves subscribed mode once the last one arrives.
- `MONITOR` keeps its callback queued, so the callback sees every line.

### Timeouts and teardown

- `set_timeout(seconds)` accepts seconds as a number or a `timedelta`, and
  zero disables the timeout.
- `handle_timeout()` does nothing in two cases: when the context is connected
  and idle, and when the context is connected with no command timeout set.
  Otherwise it sets `ERR_TIMEOUT` and fails the pending callbacks. If the
  connection was not yet established, it also calls the connect callback with
  `Status.ERR`. Then it disconnects.
- `disconnect()` stops new commands from being queued and closes the
  connection once the pending replies have been dispatched.
- `free()` tears the context down at once. When it is called from inside a
  callback, the teardown is deferred until that callback returns.

## What it does not do

The package contains no socket transport, no RESP reply parser and no
adapters for particular event loops. It also has no synchronous,
request-and-wait client. You have to supply the transport, including the
parser behind `get_reply()`, and the code that connects the context to your
event loop.

## Tests

```
pip install -e .[test]
pytest
```