"""Tests for the conversation state machine."""
import asyncio
import json

import httpx
import pytest
from pydantic import ValidationError

from conftest import FakeInferenceClient, FlakyStore, generate_body, settle
from ollachat.chat import ChatSession, SessionCallback, SessionState, TurnPhase
from ollachat.llm import ChatMessage, ServerError, ServerUnreachable
from ollachat.store import (
    Conversation,
    Message,
    MessageRole,
    create_conversation_store,
    decode_conversations,
)


class Recorder(SessionCallback):
    """Collects every hook invocation."""

    def __init__(self):
        self.events: list[tuple] = []

    def on_state_changed(self, session):
        self.events.append(("state",))

    def on_stream_fragment(self, conversation_id, fragment, content):
        self.events.append(("fragment", conversation_id, fragment, content))

    def on_message_committed(self, conversation_id, message):
        self.events.append(("committed", conversation_id, message.content))

    def on_error(self, conversation_id, message):
        self.events.append(("error", conversation_id, message))

    def of(self, kind: str) -> list[tuple]:
        return [event for event in self.events if event[0] == kind]


@pytest.fixture
async def session(fake_client, memory_store):
    """A started session over the scripted client and a memory store."""
    chat = ChatSession(fake_client, memory_store)
    await chat.start()
    yield chat
    await chat.close()


def contents(conversation: Conversation) -> list[tuple[str, str]]:
    return [(m.role.value, m.content) for m in conversation.messages]


class TestStartup:
    """Tests for loading state and the model catalog."""

    @pytest.mark.asyncio
    async def test_start_on_empty_store(self, session):
        """Test the initial state with no saved history."""
        assert session.conversations == []
        assert session.selected_conversation is None
        assert session.available_models == ["llama3.2", "qwen3"]
        assert session.selected_model == "llama3.2"
        assert session.error_message is None
        assert not session.is_loading

    @pytest.mark.asyncio
    async def test_start_selects_most_recent(self, fake_client, memory_store):
        """Test that the head of the saved list is selected."""
        older = Conversation(messages=[Message(role=MessageRole.USER, content="older")])
        newer = Conversation(messages=[Message(role=MessageRole.USER, content="newer")])
        await memory_store.upsert(older)
        await memory_store.upsert(newer)
        fresh_store = create_conversation_store("memory", initial_blob=memory_store.blob)

        chat = ChatSession(fake_client, fresh_store)
        await chat.start()

        assert [c.id for c in chat.conversations] == [newer.id, older.id]
        assert chat.selected_conversation_id == newer.id

    @pytest.mark.asyncio
    @pytest.mark.parametrize("preferred,expected", [("qwen3", "qwen3"), ("missing", "llama3.2"), (None, "llama3.2")])
    async def test_model_preference(self, fake_client, memory_store, preferred, expected):
        """Test that an installed preferred model is kept, otherwise the first one is used."""
        chat = ChatSession(fake_client, memory_store, model=preferred)
        await chat.start()

        assert chat.selected_model == expected

    @pytest.mark.asyncio
    async def test_model_load_failure_and_retry(self, fake_client, memory_store):
        """Test that a catalog failure is reported and retrying recovers."""
        fake_client.list_error = ServerUnreachable("Connection refused")
        chat = ChatSession(fake_client, memory_store)

        await chat.start()

        assert chat.available_models == []
        assert chat.error_message == "Failed to load models: Connection refused"

        fake_client.list_error = None
        assert await chat.load_models() == ["llama3.2", "qwen3"]
        assert chat.selected_model == "llama3.2"

        chat.dismiss_error()
        assert chat.error_message is None

    @pytest.mark.asyncio
    async def test_empty_catalog(self, memory_store):
        """Test that an empty catalog leaves no model selected."""
        chat = ChatSession(FakeInferenceClient(models=[]), memory_store)
        await chat.start()

        assert chat.available_models == []
        assert chat.selected_model == ""


class TestSendMessage:
    """Tests for the turn lifecycle."""

    @pytest.mark.asyncio
    async def test_fragments_are_committed(self, session, fake_client):
        """Test that streamed fragments become one assistant message."""
        fake_client.script(["Hello", " world"])

        task = await session.send_message("Hi")
        await task

        conversation = session.selected_conversation
        assert contents(conversation) == [("user", "Hi"), ("assistant", "Hello world")]
        assert session.current_stream_content == ""
        assert not session.is_loading
        assert not session.is_streaming
        assert session.error_message is None

    @pytest.mark.asyncio
    async def test_creates_conversation_when_none_selected(self, session):
        """Test that sending with no selection creates and selects a conversation."""
        task = await session.send_message("Hi")
        await task

        [conversation] = session.conversations
        assert session.selected_conversation_id == conversation.id
        assert conversation.model == "llama3.2"
        assert contents(conversation) == [("user", "Hi"), ("assistant", "ok")]

    @pytest.mark.asyncio
    async def test_observable_mid_stream(self, session, fake_client):
        """Test loading and streaming state while a turn is in flight."""
        gate = asyncio.Event()
        fake_client.script(["Hello", " world"], gate=gate, gate_after=1)

        task = await session.send_message("Hi")
        await settle()

        assert session.is_loading
        assert session.is_streaming
        assert session.current_stream_content == "Hello"
        assert contents(session.selected_conversation) == [("user", "Hi")]

        gate.set()
        await task

        assert contents(session.selected_conversation)[-1] == ("assistant", "Hello world")
        assert session.current_stream_content == ""

    @pytest.mark.asyncio
    async def test_pending_before_first_fragment(self, session, fake_client):
        """Test that a turn is loading but not streaming until text arrives."""
        gate = asyncio.Event()
        fake_client.script(["Hi"], gate=gate, gate_after=0)

        task = await session.send_message("Hello")
        await settle()

        assert session.is_loading
        assert not session.is_streaming
        assert session.turn_for(session.selected_conversation_id).phase is TurnPhase.PENDING

        gate.set()
        await task

    @pytest.mark.asyncio
    async def test_second_send_while_in_flight_is_ignored(self, session, fake_client):
        """Test that a conversation never runs two turns at once."""
        gate = asyncio.Event()
        fake_client.script(["one"], gate=gate)

        task = await session.send_message("first")
        await settle()

        assert await session.send_message("second") is None

        gate.set()
        await task

        assert contents(session.selected_conversation) == [("user", "first"), ("assistant", "one")]
        assert len(fake_client.calls) == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("text", ["", "   ", "\n\t"])
    async def test_blank_message_is_ignored(self, session, fake_client, text):
        """Test that whitespace-only input does nothing."""
        assert await session.send_message(text) is None
        assert session.conversations == []
        assert fake_client.calls == []

    @pytest.mark.asyncio
    async def test_input_message_is_used_and_cleared(self, session):
        """Test sending the pending input field."""
        session.input_message = "  typed text  "

        task = await session.send_message()
        await task

        assert session.input_message == ""
        assert contents(session.selected_conversation)[0] == ("user", "typed text")

    @pytest.mark.asyncio
    async def test_history_and_model_are_passed(self, session, fake_client):
        """Test that prior messages and the selected model reach the client."""
        await (await session.send_message("first"))
        session.select_model("qwen3")

        await (await session.send_message("second"))

        prompt, history, model = fake_client.calls[1]
        assert prompt == "second"
        assert history == [
            ChatMessage(role="user", content="first"),
            ChatMessage(role="assistant", content="ok"),
        ]
        assert model == "qwen3"

    @pytest.mark.asyncio
    async def test_concurrent_sends_create_one_conversation(self, fake_client):
        """Test that two sends racing with nothing selected share one conversation."""
        store = FlakyStore()
        store.yield_on_write = True
        chat = ChatSession(fake_client, store)
        await chat.start()

        first, second = await asyncio.gather(chat.send_message("one"), chat.send_message("two"))

        assert first is not None
        assert second is None
        await first
        [conversation] = chat.conversations
        assert chat.selected_conversation_id == conversation.id
        assert contents(conversation) == [("user", "one"), ("assistant", "ok")]
        await chat.close()

    @pytest.mark.asyncio
    async def test_no_model_selected(self, memory_store):
        """Test that sending without any model reports an error."""
        chat = ChatSession(FakeInferenceClient(models=[]), memory_store)
        await chat.start()

        assert await chat.send_message("Hi") is None
        assert chat.error_message == "Failed to send message: no model selected"
        assert chat.conversations == []

    @pytest.mark.asyncio
    async def test_conversation_model_is_fallback(self, memory_store):
        """Test that a conversation's own model is used when none is selected."""
        client = FakeInferenceClient(models=[])
        await memory_store.upsert(Conversation(model="mistral"))
        chat = ChatSession(client, memory_store)
        await chat.start()

        await (await chat.send_message("Hi"))

        assert client.calls[0][2] == "mistral"


class TestTurnFailures:
    """Tests for failed turns."""

    @pytest.mark.asyncio
    async def test_empty_generation_keeps_user_message(self, session, fake_client):
        """Test that a reply with no text fails but keeps the user's message."""
        fake_client.script([])

        await (await session.send_message("Hi"))

        assert contents(session.selected_conversation) == [("user", "Hi")]
        assert session.error_message == (
            "Failed to send message: Model failed to generate a response. Please try again."
        )
        assert not session.is_loading

    @pytest.mark.asyncio
    async def test_server_error_discards_partial_reply(self, session, fake_client):
        """Test that a mid-stream failure commits nothing."""
        fake_client.script(["partial"], error=ServerError("model 'nope' not found", 404))

        await (await session.send_message("Hi"))

        assert contents(session.selected_conversation) == [("user", "Hi")]
        assert session.error_message == "Failed to send message: model 'nope' not found"
        assert session.current_stream_content == ""

    @pytest.mark.asyncio
    async def test_unexpected_exception_is_reported(self, session, fake_client):
        """Test that unexpected errors still fail the turn cleanly."""
        fake_client.script(["x"], error=RuntimeError("boom"))

        await (await session.send_message("Hi"))

        assert session.error_message == "Failed to send message: boom"
        assert not session.is_loading

    @pytest.mark.asyncio
    async def test_failed_save_discards_reply(self, fake_client):
        """Test that a reply the store cannot save is dropped, in memory and on disk."""
        store = FlakyStore()
        chat = ChatSession(fake_client, store)
        await chat.start()
        gate = asyncio.Event()
        fake_client.script(["Hello"], gate=gate)

        task = await chat.send_message("Hi")
        await settle()
        store.write_error = OSError("disk full")
        gate.set()
        await task

        assert chat.error_message == "Failed to send message: disk full"
        assert contents(chat.selected_conversation) == [("user", "Hi")]

        # A later successful write must not resurrect the reply
        store.write_error = None
        await chat.rename_conversation(chat.selected_conversation_id, "Saved later")
        [saved] = decode_conversations(store.blob)
        assert contents(saved) == [("user", "Hi")]
        await chat.close()

    @pytest.mark.asyncio
    async def test_conversation_usable_after_failure(self, session, fake_client):
        """Test that a failed turn returns the conversation to idle."""
        fake_client.script([])
        fake_client.script(["second try"])

        await (await session.send_message("Hi"))
        session.dismiss_error()
        await (await session.send_message("Hi again"))

        assert contents(session.selected_conversation) == [
            ("user", "Hi"),
            ("user", "Hi again"),
            ("assistant", "second try"),
        ]
        assert session.error_message is None


class TestConcurrentConversations:
    """Tests for turns in several conversations."""

    @pytest.mark.asyncio
    async def test_switching_mid_stream_commits_to_origin(self, session, fake_client):
        """Test that a reply lands in the conversation that asked for it."""
        gate = asyncio.Event()
        fake_client.script(["Hello", " there"], gate=gate)
        origin = await session.new_conversation()

        task = await session.send_message("Hi")
        await settle()
        other = await session.new_conversation()

        assert session.selected_conversation_id == other.id
        assert not session.is_loading
        assert session.current_stream_content == ""
        assert session.turn_for(origin.id).content == "Hello"

        gate.set()
        await task

        assert session.selected_conversation_id == other.id
        assert contents(session.selected_conversation) == []
        committed = next(c for c in session.conversations if c.id == origin.id)
        assert contents(committed) == [("user", "Hi"), ("assistant", "Hello there")]

    @pytest.mark.asyncio
    async def test_two_turns_in_flight(self, session, fake_client):
        """Test that different conversations stream side by side."""
        gate_a, gate_b = asyncio.Event(), asyncio.Event()
        fake_client.script(["from A"], gate=gate_a, gate_after=0)
        fake_client.script(["from B"], gate=gate_b, gate_after=0)

        a = await session.new_conversation()
        task_a = await session.send_message("to A")
        b = await session.new_conversation()
        task_b = await session.send_message("to B")
        await settle()

        assert set(session.snapshot().in_flight) == {a.id, b.id}

        gate_b.set()
        await task_b
        assert session.turn_for(a.id) is not None
        assert session.turn_for(b.id) is None

        gate_a.set()
        await task_a

        by_id = {c.id: c for c in session.conversations}
        assert contents(by_id[a.id])[-1] == ("assistant", "from A")
        assert contents(by_id[b.id])[-1] == ("assistant", "from B")

    @pytest.mark.asyncio
    async def test_reselecting_preserves_order_and_content(self, session, fake_client):
        """Test that leaving a conversation and coming back changes nothing, even mid-stream."""
        a = await session.new_conversation()
        await (await session.send_message("to A"))
        b = await session.new_conversation()
        gate = asyncio.Event()
        fake_client.script(["partial", " reply"], gate=gate)
        task = await session.send_message("to B")
        await settle()

        session.select_conversation(a.id)
        order_before = [c.id for c in session.conversations]
        a_before = contents(session.selected_conversation)

        session.select_conversation(b.id)
        assert session.current_stream_content == "partial"
        session.select_conversation(a.id)

        assert [c.id for c in session.conversations] == order_before == [b.id, a.id]
        assert contents(session.selected_conversation) == a_before == [("user", "to A"), ("assistant", "ok")]

        gate.set()
        await task

        assert [c.id for c in session.conversations] == order_before
        assert contents(session.selected_conversation) == a_before

    @pytest.mark.asyncio
    async def test_order_is_stable_when_replying(self, session):
        """Test that messaging an older conversation does not reorder the list."""
        first = await session.new_conversation()
        second = await session.new_conversation()
        session.select_conversation(first.id)

        await (await session.send_message("Hi"))

        assert [c.id for c in session.conversations] == [second.id, first.id]


class TestConversationManagement:
    """Tests for create, select, rename and delete."""

    @pytest.mark.asyncio
    async def test_new_conversation_uses_selected_model(self, session):
        """Test that new conversations record the selected model and go first."""
        session.select_model("qwen3")

        conversation = await session.new_conversation()

        assert conversation.model == "qwen3"
        assert session.conversations[0].id == conversation.id
        assert session.selected_conversation_id == conversation.id
        assert session.selected_conversation.display_title == "New Chat"

    @pytest.mark.asyncio
    async def test_select_unknown_conversation(self, session):
        """Test that selecting an unknown id raises ValueError."""
        with pytest.raises(ValueError, match="Unknown conversation"):
            session.select_conversation("7f1c1a56-3c6f-4d0e-9a3e-7b0e5b6f7c11")

    @pytest.mark.asyncio
    async def test_select_none(self, session):
        """Test clearing the selection."""
        await session.new_conversation()

        session.select_conversation(None)

        assert session.selected_conversation is None

    @pytest.mark.asyncio
    async def test_delete_selected_selects_head(self, session):
        """Test that deleting the selection falls back to the most recent."""
        first = await session.new_conversation()
        second = await session.new_conversation()

        await session.delete_conversation(second.id)

        assert session.selected_conversation_id == first.id

        await session.delete_conversation(first.id)

        assert session.selected_conversation_id is None
        assert session.conversations == []

    @pytest.mark.asyncio
    async def test_delete_other_keeps_selection(self, session):
        """Test that deleting an unselected conversation keeps the selection."""
        first = await session.new_conversation()
        second = await session.new_conversation()

        await session.delete_conversation(str(first.id))

        assert session.selected_conversation_id == second.id
        assert [c.id for c in session.conversations] == [second.id]

    @pytest.mark.asyncio
    async def test_delete_mid_stream_cancels_turn(self, session, fake_client):
        """Test that deleting a conversation stops its stream and commits nothing."""
        gate = asyncio.Event()
        fake_client.script(["Hello", " world"], gate=gate)
        conversation = await session.new_conversation()
        task = await session.send_message("Hi")
        await settle()

        await session.delete_conversation(conversation.id)

        assert task.done()
        assert task.cancelled()
        assert fake_client.closed_streams == 1
        assert session.turn_for(conversation.id) is None
        assert session.error_message is None
        assert session.conversations == []

    @pytest.mark.asyncio
    async def test_rename(self, session):
        """Test setting and clearing an explicit title."""
        conversation = await session.new_conversation()

        renamed = await session.rename_conversation(conversation.id, "  Trip plans ")

        assert renamed.title == "Trip plans"
        assert session.selected_conversation.display_title == "Trip plans"

        cleared = await session.rename_conversation(conversation.id, "")
        assert cleared.title is None

    @pytest.mark.asyncio
    async def test_rename_unknown(self, session):
        """Test that renaming an unknown id raises ValueError."""
        with pytest.raises(ValueError):
            await session.rename_conversation("7f1c1a56-3c6f-4d0e-9a3e-7b0e5b6f7c11", "x")

    @pytest.mark.asyncio
    async def test_cancel_turn(self, session, fake_client):
        """Test stopping generation for the active conversation."""
        gate = asyncio.Event()
        fake_client.script(["Hel", "lo"], gate=gate)
        task = await session.send_message("Hi")
        await settle()

        assert await session.cancel_turn() is True

        assert task.cancelled()
        assert not session.is_loading
        assert contents(session.selected_conversation) == [("user", "Hi")]
        assert await session.cancel_turn() is False

    @pytest.mark.asyncio
    async def test_close_cancels_everything(self, session, fake_client):
        """Test that closing the session stops every in-flight turn."""
        gate = asyncio.Event()
        fake_client.script(["a"], gate=gate, gate_after=0)
        fake_client.script(["b"], gate=gate, gate_after=0)
        await session.new_conversation()
        task_a = await session.send_message("A")
        await session.new_conversation()
        task_b = await session.send_message("B")
        await settle()

        await session.close()

        assert task_a.cancelled() and task_b.cancelled()
        assert session.snapshot().in_flight == ()


class TestObservers:
    """Tests for callbacks and snapshots."""

    @pytest.mark.asyncio
    async def test_callbacks_follow_the_turn(self, session, fake_client):
        """Test the order of hook calls for a successful turn."""
        recorder = Recorder()
        session.subscribe(recorder)
        fake_client.script(["Hel", "lo"])

        await (await session.send_message("Hi"))
        cid = session.selected_conversation_id

        assert recorder.of("fragment") == [
            ("fragment", cid, "Hel", "Hel"),
            ("fragment", cid, "lo", "Hello"),
        ]
        assert recorder.of("committed") == [("committed", cid, "Hello")]
        assert recorder.of("error") == []
        kinds = [event[0] for event in recorder.events]
        assert kinds.index("committed") > kinds.index("fragment")
        assert kinds[-1] == "state"

    @pytest.mark.asyncio
    async def test_error_callback(self, session, fake_client):
        """Test that failures reach on_error with their conversation."""
        recorder = Recorder()
        session.subscribe(recorder)
        fake_client.script([])

        await (await session.send_message("Hi"))

        [(_, cid, message)] = recorder.of("error")
        assert cid == session.selected_conversation_id
        assert message.startswith("Failed to send message:")

    @pytest.mark.asyncio
    async def test_unsubscribe(self, session):
        """Test that an unsubscribed observer hears nothing more."""
        recorder = Recorder()
        unsubscribe = session.subscribe(recorder)
        unsubscribe()
        unsubscribe()

        await (await session.send_message("Hi"))

        assert recorder.events == []

    @pytest.mark.asyncio
    async def test_failing_callback_does_not_break_turn(self, session):
        """Test that an observer raising does not affect the session."""

        class Broken(SessionCallback):
            def on_stream_fragment(self, conversation_id, fragment, content):
                raise RuntimeError("observer bug")

        session.subscribe(Broken())

        await (await session.send_message("Hi"))

        assert contents(session.selected_conversation)[-1] == ("assistant", "ok")
        assert session.error_message is None

    @pytest.mark.asyncio
    async def test_snapshot(self, session, fake_client):
        """Test that the snapshot mirrors the observable fields and is frozen."""
        gate = asyncio.Event()
        fake_client.script(["Hello"], gate=gate, gate_after=1)
        task = await session.send_message("Hi")
        await settle()

        state = session.snapshot()

        assert isinstance(state, SessionState)
        assert state.selected_conversation_id == session.selected_conversation_id
        assert state.is_loading and state.is_streaming
        assert state.current_stream_content == "Hello"
        assert state.available_models == ("llama3.2", "qwen3")
        with pytest.raises(ValidationError):
            state.is_loading = False

        gate.set()
        await task


class TestEndToEnd:
    """ChatSession driving the real HTTP client over a mock transport."""

    @pytest.mark.asyncio
    async def test_two_turns_against_ollama(self, mock_ollama, memory_store):
        """Test that a follow-up prompt carries the earlier exchange."""
        prompts: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/api/tags":
                return httpx.Response(200, json={"models": [{"name": "llama3.2"}]})
            prompts.append(json.loads(request.content)["prompt"])
            return httpx.Response(200, content=generate_body("Assistant: Hello", " world"))

        chat = ChatSession(mock_ollama(handler), memory_store)
        await chat.start()

        await (await chat.send_message("Hi"))
        await (await chat.send_message("And again?"))

        assert prompts[0] == "Human: Hi"
        assert "Human: Hi\nAssistant: Hello world" in prompts[1]
        assert prompts[1].endswith("Human: And again?")
        assert contents(chat.selected_conversation) == [
            ("user", "Hi"),
            ("assistant", "Hello world"),
            ("user", "And again?"),
            ("assistant", "Hello world"),
        ]
        await chat.close()
