import pytest

from chat_relay.api.models import Message
from chat_relay.client.reassembler import Reassembler, ReassemblerState
from chat_relay.relay.frames import StreamFrame


def test_accumulates_chunks_into_one_assistant_message():
    r = Reassembler()
    r.begin("Hi")
    assert r.state == ReassemblerState.AWAITING_FIRST_CHUNK
    assert [m.role for m in r.messages] == ["user"]

    seen = []
    for text in ["Hel", "lo, ", "world"]:
        r.apply(StreamFrame(chunk=text))
        seen.append(r.messages[-1].content)
        assert r.state == ReassemblerState.ACCUMULATING

    r.apply(StreamFrame(done=True))
    assert seen == ["Hel", "Hello, ", "Hello, world"]
    assert r.messages[-1].content == "Hello, world"
    assert r.state == ReassemblerState.COMPLETE
    assert len(r.messages) == 2


def test_thread_id_is_latched_once_and_reported():
    reported = []
    r = Reassembler(on_thread_id=reported.append)
    r.begin("Hi")
    r.apply(StreamFrame(thread_id="t1"))
    r.apply(StreamFrame(thread_id="t2", chunk="x"))
    assert r.thread_id == "t1"
    assert reported == ["t1"]


def test_existing_thread_id_is_not_replaced():
    reported = []
    r = Reassembler(thread_id="t0", on_thread_id=reported.append)
    r.begin("Hi")
    r.apply(StreamFrame(thread_id="t1"))
    assert r.thread_id == "t0"
    assert reported == []


def test_error_before_any_chunk_keeps_user_message():
    r = Reassembler()
    r.begin("Hi")
    r.apply(StreamFrame(error="overloaded"))
    assert r.state == ReassemblerState.ERROR
    assert r.error == "overloaded"
    assert [m.content for m in r.messages] == ["Hi"]
    r.dismiss_error()
    assert r.error is None


def test_error_after_chunks_keeps_partial_reply():
    r = Reassembler()
    r.begin("Hi")
    r.apply(StreamFrame(chunk="partial"))
    r.fail("connection lost")
    assert r.state == ReassemblerState.ERROR
    assert r.messages[-1].content == "partial"


def test_empty_assistant_message_is_removed_on_error():
    r = Reassembler()
    r.begin("Hi")
    r.complete_with_reply("")
    assert r.messages[-1].role == "assistant"
    r.begin("again")
    r.apply(StreamFrame(chunk="x"))
    r.assistant_message.content = ""
    r.fail("boom")
    assert r.messages[-1].content == "again"


def test_done_without_chunks_completes_with_no_reply():
    r = Reassembler()
    r.begin("Hi")
    r.apply(StreamFrame(done=True))
    assert r.state == ReassemblerState.COMPLETE
    assert len(r.messages) == 1


def test_frames_after_completion_are_ignored():
    r = Reassembler()
    r.begin("Hi")
    r.apply(StreamFrame(chunk="a", done=True))
    r.apply(StreamFrame(chunk="b"))
    assert r.messages[-1].content == "a"


def test_cannot_begin_while_streaming():
    r = Reassembler()
    r.begin("one")
    with pytest.raises(RuntimeError):
        r.begin("two")


def test_replace_messages_refused_while_streaming():
    r = Reassembler()
    r.begin("one")
    with pytest.raises(RuntimeError):
        r.replace_messages([])
    r.apply(StreamFrame(done=True))
    r.replace_messages([Message(role="user", content="x")])
    assert [m.content for m in r.messages] == ["x"]
