import pytest

from respasync.callbacks import (
    Callback,
    CallbackQueue,
    Reply,
    ReplyType,
    format_command_argv,
    is_push_reply,
    is_spontaneous_push_reply,
    is_subscribe_reply,
    split_formatted_command,
)


def _msg(kind, *rest, reply_type=ReplyType.PUSH):
    elements = [Reply(ReplyType.STRING, string=kind)]
    elements.extend(rest)
    return Reply(reply_type, elements=elements)


def test_queue_is_fifo():
    queue = CallbackQueue()
    for tag in ("a", "b", "c"):
        queue.push(Callback(privdata=tag))
    assert len(queue) == 3
    assert [queue.shift().privdata for _ in range(3)] == ["a", "b", "c"]
    assert not queue


def test_queue_shift_empty_raises():
    with pytest.raises(IndexError):
        CallbackQueue().shift()


def test_queue_push_stores_copy():
    queue = CallbackQueue()
    original = Callback(privdata="x", pending_subs=2)
    queue.push(original)
    original.pending_subs = 9
    assert queue.shift().pending_subs == 2


def test_queue_iter_and_bool():
    queue = CallbackQueue([Callback(privdata=1), Callback(privdata=2)])
    assert bool(queue) is True
    assert [cb.privdata for cb in queue] == [1, 2]
    assert len(queue) == 2


def test_callback_defaults():
    cb = Callback()
    assert cb.fn is None
    assert cb.pending_subs == 1
    assert cb.unsubscribe_sent is False


@pytest.mark.parametrize(
    "kind",
    [b"message", b"pmessage", b"subscribe", b"PSUBSCRIBE", b"unsubscribe", b"punsubscribe"],
)
def test_subscribe_replies_recognised(kind):
    assert is_subscribe_reply(_msg(kind)) is True


@pytest.mark.parametrize("kind", [b"invalidate", b"foo", b"subscribed", b"messages"])
def test_non_subscribe_replies(kind):
    assert is_subscribe_reply(_msg(kind)) is False


def test_subscribe_reply_requires_string_head():
    reply = Reply(ReplyType.PUSH, elements=[Reply(ReplyType.INTEGER, integer=1)])
    assert is_subscribe_reply(reply) is False
    assert is_subscribe_reply(Reply(ReplyType.PUSH)) is False


def test_push_and_spontaneous():
    invalidate = _msg(b"invalidate", Reply(ReplyType.ARRAY))
    message = _msg(b"message", Reply(ReplyType.STRING, string=b"ch"))
    array_message = _msg(b"message", reply_type=ReplyType.ARRAY)
    assert is_push_reply(invalidate) is True
    assert is_spontaneous_push_reply(invalidate) is True
    assert is_spontaneous_push_reply(message) is False
    assert is_push_reply(array_message) is False
    assert is_spontaneous_push_reply(array_message) is False


def test_format_wire_bytes():
    assert format_command_argv(["SET", "foo", "bar"]) == (
        b"*3\r\n$3\r\nSET\r\n$3\r\nfoo\r\n$3\r\nbar\r\n"
    )


def test_format_empty_argument():
    assert format_command_argv([b""]) == b"*1\r\n$0\r\n\r\n"


def test_format_rejects_other_types():
    with pytest.raises(TypeError):
        format_command_argv(["SET", 1])


@pytest.mark.parametrize(
    "argv",
    [
        [b"GET", b"key"],
        [b"SET", b"k", b"va\r\nl$ue"],
        [b"SUBSCRIBE", b"a", b"b", b""],
        [b"PING"],
    ],
)
def test_round_trip(argv):
    assert split_formatted_command(format_command_argv(argv)) == argv


def test_split_accepts_str():
    assert split_formatted_command("*1\r\n$4\r\nPING\r\n") == [b"PING"]


def test_split_truncated_raises():
    with pytest.raises(ValueError):
        split_formatted_command(b"*1\r\n$10\r\nabc\r\n")


def test_split_unterminated_header_raises():
    with pytest.raises(ValueError):
        split_formatted_command(b"*1\r\n$3")


def test_split_no_bulk_returns_empty():
    assert split_formatted_command(b"*0\r\n") == []