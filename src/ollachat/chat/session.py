"""Conversation state machine.

``ChatSession`` is the single source of truth for what the user sees: the
conversation list, the selection, the model catalog and the in-flight turns.
All of its state is mutated on one event loop. Each turn streams in its own
task and reconciles into its own conversation, so turns for different
conversations can run side by side while a conversation never has more than
one.
"""

import asyncio
import logging
from collections.abc import Callable
from uuid import UUID

from ..llm import ChatMessage, EmptyGeneration, InferenceClient, InferenceError
from ..store import Conversation, ConversationStore, Message, MessageRole
from .callbacks import SessionCallback
from .models import SessionState, Turn, TurnPhase

logger = logging.getLogger(__name__)


def _as_uuid(conversation_id: UUID | str) -> UUID:
    if isinstance(conversation_id, UUID):
        return conversation_id
    return UUID(str(conversation_id))


class ChatSession:
    """Drives conversations against an inference client and a store.

    Turn lifecycle: pending (request issued) -> streaming (first fragment)
    -> settled or failed, after which the conversation is idle again.

    Usage:
        session = ChatSession(client, store)
        await session.start()
        task = await session.send_message("Hello")
        await task
        print(session.selected_conversation.messages[-1].content)
    """

    def __init__(
        self,
        client: InferenceClient,
        store: ConversationStore,
        model: str | None = None,
    ) -> None:
        self._client = client
        self._store = store
        self._selected_id: UUID | None = None
        self._selected_model = model or ""
        self._available_models: list[str] = []
        self._error_message: str | None = None
        self._turns: dict[UUID, Turn] = {}
        self._callbacks: list[SessionCallback] = []
        self.input_message = ""

    # ------------------------------------------------------------------
    # Observable state
    # ------------------------------------------------------------------

    @property
    def conversations(self) -> list[Conversation]:
        return self._store.list()

    @property
    def selected_conversation_id(self) -> UUID | None:
        return self._selected_id

    @property
    def selected_conversation(self) -> Conversation | None:
        if self._selected_id is None:
            return None
        return self._store.get(self._selected_id)

    @property
    def selected_model(self) -> str:
        return self._selected_model

    @property
    def available_models(self) -> list[str]:
        return list(self._available_models)

    @property
    def error_message(self) -> str | None:
        return self._error_message

    @property
    def is_loading(self) -> bool:
        """A turn is in flight for the active conversation."""
        return self._active_turn() is not None

    @property
    def is_streaming(self) -> bool:
        turn = self._active_turn()
        return turn is not None and turn.phase is TurnPhase.STREAMING

    @property
    def current_stream_content(self) -> str:
        """Text streamed so far for the active conversation's turn."""
        turn = self._active_turn()
        return turn.content if turn is not None else ""

    def turn_for(self, conversation_id: UUID | str) -> Turn | None:
        """The in-flight turn of any conversation, if there is one."""
        return self._turns.get(_as_uuid(conversation_id))

    def snapshot(self) -> SessionState:
        """Immutable copy of the observable state, for polling consumers."""
        return SessionState(
            conversations=tuple(self._store.list()),
            selected_conversation_id=self._selected_id,
            input_message=self.input_message,
            is_loading=self.is_loading,
            is_streaming=self.is_streaming,
            current_stream_content=self.current_stream_content,
            error_message=self._error_message,
            selected_model=self._selected_model,
            available_models=tuple(self._available_models),
            in_flight=tuple(self._turns),
        )

    def subscribe(self, callback: SessionCallback) -> Callable[[], None]:
        """Register an observer. Returns a function that unregisters it."""
        self._callbacks.append(callback)

        def unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return unsubscribe

    # ------------------------------------------------------------------
    # Intents
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Load saved conversations, select the most recent, load the catalog."""
        conversations = await self._store.load()
        self._selected_id = conversations[0].id if conversations else None
        self._notify_state()
        await self.load_models()

    async def load_models(self) -> list[str]:
        """Refresh the model catalog. Also the "retry" intent after a failure."""
        try:
            models = await self._client.list_models()
        except InferenceError as exc:
            logger.warning("Loading models failed: %s", exc)
            self._set_error(None, f"Failed to load models: {exc}")
            return []

        self._available_models = models
        if models and self._selected_model not in models:
            self._selected_model = models[0]
        logger.info("Loaded %d model(s); selected %r", len(models), self._selected_model)
        self._notify_state()
        return list(models)

    def select_model(self, name: str) -> None:
        self._selected_model = name
        self._notify_state()

    def select_conversation(self, conversation_id: UUID | str | None) -> None:
        """Switch the active conversation.

        In-flight turns of other conversations keep running and commit into
        their own conversation.

        Raises:
            ValueError: If no conversation has that id
        """
        if conversation_id is None:
            self._selected_id = None
        else:
            cid = _as_uuid(conversation_id)
            if self._store.get(cid) is None:
                raise ValueError(f"Unknown conversation: {cid}")
            self._selected_id = cid
        self._notify_state()

    async def new_conversation(self) -> Conversation:
        """Create a conversation with the selected model and select it."""
        conversation = Conversation(model=self._selected_model or None)
        await self._store.upsert(conversation)
        self._selected_id = conversation.id
        self._notify_state()
        return conversation

    async def delete_conversation(self, conversation_id: UUID | str) -> None:
        """Delete a conversation, abandoning its in-flight turn.

        If it was selected, the most recent remaining conversation (or none)
        becomes selected.
        """
        cid = _as_uuid(conversation_id)
        await self._abandon_turn(cid)
        await self._store.remove(cid)
        if self._selected_id == cid:
            remaining = self._store.list()
            self._selected_id = remaining[0].id if remaining else None
        self._notify_state()

    async def rename_conversation(self, conversation_id: UUID | str, title: str | None) -> Conversation:
        """Set the explicit title of a conversation (blank clears it).

        Raises:
            ValueError: If no conversation has that id
        """
        cid = _as_uuid(conversation_id)
        conversation = self._store.get(cid)
        if conversation is None:
            raise ValueError(f"Unknown conversation: {cid}")
        renamed = conversation.with_title(title)
        await self._store.upsert(renamed)
        self._notify_state()
        return renamed

    async def cancel_turn(self, conversation_id: UUID | str | None = None) -> bool:
        """Stop generating for a conversation (the active one by default).

        Nothing is committed for the abandoned turn.

        Returns:
            True if a turn was cancelled
        """
        cid = _as_uuid(conversation_id) if conversation_id is not None else self._selected_id
        if cid is None:
            return False
        cancelled = await self._abandon_turn(cid)
        self._notify_state()
        return cancelled

    def dismiss_error(self) -> None:
        self._error_message = None
        self._notify_state()

    async def send_message(self, text: str | None = None) -> "asyncio.Task[None] | None":
        """Send a user message in the active conversation.

        Uses ``input_message`` when ``text`` is None. Creates a conversation
        when none is selected.

        Returns:
            The task running the turn, or None when the message was ignored
            (blank text, or a turn already in flight for the conversation).
        """
        raw = self.input_message if text is None else text
        prompt = raw.strip()
        if not prompt:
            return None

        if self._selected_id is not None and self._selected_id in self._turns:
            logger.debug("Turn already in flight for %s; ignoring send", self._selected_id)
            return None

        conversation = self.selected_conversation
        model = self._selected_model or (conversation.model if conversation else None)
        if not model:
            self._set_error(self._selected_id, "Failed to send message: no model selected")
            return None

        previous_selection = self._selected_id
        if conversation is None:
            # Saved together with the user message below
            conversation = Conversation(model=self._selected_model or None)
            self._selected_id = conversation.id

        # Register before the first await so a concurrent send sees the turn
        turn = Turn(conversation_id=conversation.id, prompt=prompt, model=model)
        self._turns[conversation.id] = turn

        history = [
            ChatMessage(role=message.role.value, content=message.content)
            for message in conversation.messages
        ]
        user_message = Message(role=MessageRole.USER, content=prompt)
        try:
            await self._store.upsert(conversation.with_message(user_message))
        except BaseException:
            self._turns.pop(conversation.id, None)
            if self._selected_id == conversation.id and self._store.get(conversation.id) is None:
                self._selected_id = previous_selection
            raise

        if self._turns.get(conversation.id) is not turn:
            # Conversation deleted while the user message was being saved
            return None

        self.input_message = ""
        self._notify_state()

        turn.task = asyncio.create_task(
            self._run_turn(turn, history),
            name=f"turn-{conversation.id}",
        )
        return turn.task

    async def close(self) -> None:
        """Cancel every in-flight turn and wait for them to finish."""
        for cid in list(self._turns):
            await self._abandon_turn(cid)

    # ------------------------------------------------------------------
    # Turn execution
    # ------------------------------------------------------------------

    async def _run_turn(self, turn: Turn, history: list[ChatMessage]) -> None:
        stream = None
        try:
            stream = await self._client.stream_generate(turn.prompt, history, turn.model)
            async for fragment in stream:
                if turn.phase is TurnPhase.PENDING:
                    turn.phase = TurnPhase.STREAMING
                    self._notify_state()
                turn.append(fragment)
                self._emit("on_stream_fragment", turn.conversation_id, fragment, turn.content)

            if not turn.content:
                raise EmptyGeneration()
            await self._commit(turn)
        except asyncio.CancelledError:
            turn.phase = TurnPhase.FAILED
            logger.info("Turn for %s cancelled after %d fragment(s)", turn.conversation_id, turn.fragments)
            raise
        except InferenceError as exc:
            self._fail(turn, str(exc))
        except Exception as exc:
            logger.exception("Unexpected failure in turn for %s", turn.conversation_id)
            self._fail(turn, str(exc) or type(exc).__name__)
        finally:
            if stream is not None:
                await stream.aclose()
            if self._turns.get(turn.conversation_id) is turn:
                del self._turns[turn.conversation_id]
            self._notify_state()

    async def _commit(self, turn: Turn) -> None:
        # Read-modify-write against the store; the conversation may have
        # gained messages or a title since the turn started
        conversation = self._store.get(turn.conversation_id)
        if conversation is None:
            turn.phase = TurnPhase.FAILED
            logger.info("Conversation %s deleted mid-turn; dropping reply", turn.conversation_id)
            return

        message = Message(role=MessageRole.ASSISTANT, content=turn.content)
        await self._store.upsert(conversation.with_message(message))
        turn.phase = TurnPhase.SETTLED
        self._emit("on_message_committed", turn.conversation_id, message)

    def _fail(self, turn: Turn, reason: str) -> None:
        turn.phase = TurnPhase.FAILED
        turn.error = reason
        logger.warning("Turn for %s failed: %s", turn.conversation_id, reason)
        self._set_error(turn.conversation_id, f"Failed to send message: {reason}")

    async def _abandon_turn(self, conversation_id: UUID) -> bool:
        turn = self._turns.pop(conversation_id, None)
        if turn is None or turn.task is None:
            return False
        turn.task.cancel()
        await asyncio.wait({turn.task})
        return True

    # ------------------------------------------------------------------
    # Notification
    # ------------------------------------------------------------------

    def _active_turn(self) -> Turn | None:
        if self._selected_id is None:
            return None
        return self._turns.get(self._selected_id)

    def _set_error(self, conversation_id: UUID | None, message: str) -> None:
        self._error_message = message
        self._emit("on_error", conversation_id, message)
        self._notify_state()

    def _notify_state(self) -> None:
        self._emit("on_state_changed", self)

    def _emit(self, hook: str, *args: object) -> None:
        for callback in list(self._callbacks):
            try:
                getattr(callback, hook)(*args)
            except Exception:
                logger.exception("Session callback %s.%s failed", type(callback).__name__, hook)
