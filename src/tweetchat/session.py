"""Client-side chat view-model.

State lives in an immutable :class:`ViewState`; every change goes through
:func:`reduce`, which takes the current state and one event and returns the
next state. :class:`ChatController` performs the side effects (HTTP calls,
streaming, persistence) and feeds the resulting events back into ``reduce``.

Phases of one submission::

    idle/settled --Submitted--> awaiting_first_fragment
    awaiting_first_fragment --FragmentReceived--> streaming
    streaming --FragmentReceived--> streaming
    awaiting/streaming --StreamCompleted | StreamFailed--> settled
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from .client import ChatStoreClient, GenerationClient
from .errors import ClientError, InvalidTransition, RecordFormatError
from .llm import DEFAULT_HISTORY_WINDOW, Audience, Goal, PromptSpec, Tone
from .records import ChatRecord, Message

logger = logging.getLogger(__name__)

FALLBACK_MESSAGE = "Sorry, I encountered an error. Please try again."


class Phase(str, Enum):
    IDLE = "idle"
    AWAITING = "awaiting_first_fragment"
    STREAMING = "streaming"
    SETTLED = "settled"


_AT_REST = (Phase.IDLE, Phase.SETTLED)
_IN_FLIGHT = (Phase.AWAITING, Phase.STREAMING)


class ViewState(BaseModel):
    model_config = ConfigDict(frozen=True)

    chats: List[ChatRecord] = Field(default_factory=list)
    current_chat_id: Optional[str] = None
    phase: Phase = Phase.IDLE
    buffer: str = ""
    is_loading: bool = False
    tone: Optional[Tone] = None
    goal: Optional[Goal] = None
    audience: Optional[Audience] = None

    @property
    def current_chat(self) -> Optional[ChatRecord]:
        for chat in self.chats:
            if chat.id == self.current_chat_id:
                return chat
        return None

    @property
    def messages(self) -> List[Message]:
        chat = self.current_chat
        return list(chat.messages) if chat else []

    def _with_current(self, record: ChatRecord, **changes) -> "ViewState":
        chats = [record if c.id == record.id else c for c in self.chats]
        return self.model_copy(update={"chats": chats, **changes})


# -----------------------------
# Events
# -----------------------------
@dataclass(frozen=True)
class ChatsLoaded:
    chats: List[ChatRecord]


@dataclass(frozen=True)
class NewChat:
    record: ChatRecord


@dataclass(frozen=True)
class SelectChat:
    chat_id: str


@dataclass(frozen=True)
class SetPreferences:
    tone: Optional[Tone] = None
    goal: Optional[Goal] = None
    audience: Optional[Audience] = None


@dataclass(frozen=True)
class Submitted:
    content: str
    at: datetime


@dataclass(frozen=True)
class FragmentReceived:
    text: str


@dataclass(frozen=True)
class StreamCompleted:
    at: datetime


@dataclass(frozen=True)
class StreamFailed:
    at: datetime


Event = Union[
    ChatsLoaded,
    NewChat,
    SelectChat,
    SetPreferences,
    Submitted,
    FragmentReceived,
    StreamCompleted,
    StreamFailed,
]


# -----------------------------
# Reducer
# -----------------------------
def _require_at_rest(state: ViewState, event: Event) -> None:
    if state.is_loading or state.phase not in _AT_REST:
        raise InvalidTransition(f"{type(event).__name__} not allowed while {state.phase.value}")


def _require_in_flight(state: ViewState, event: Event) -> ChatRecord:
    chat = state.current_chat
    if state.phase not in _IN_FLIGHT or chat is None:
        raise InvalidTransition(f"{type(event).__name__} not allowed while {state.phase.value}")
    return chat


def _settle(state: ViewState, chat: ChatRecord, content: str, at: datetime) -> ViewState:
    record = chat.with_message(Message(role="assistant", content=content), now=at)
    return state._with_current(record, phase=Phase.SETTLED, buffer="", is_loading=False)


def reduce(state: ViewState, event: Event) -> ViewState:
    """Return the state that follows ``event``. Raises InvalidTransition."""
    if isinstance(event, ChatsLoaded):
        _require_at_rest(state, event)
        chats = sorted(event.chats, key=lambda c: c.created_at)
        latest = max(chats, key=lambda c: c.updated_at) if chats else None
        return state.model_copy(
            update={
                "chats": chats,
                "current_chat_id": latest.id if latest else None,
                "phase": Phase.IDLE,
                "buffer": "",
            }
        )

    if isinstance(event, NewChat):
        _require_at_rest(state, event)
        if any(c.id == event.record.id for c in state.chats):
            raise InvalidTransition(f"Chat {event.record.id} already exists")
        return state.model_copy(
            update={
                "chats": [*state.chats, event.record],
                "current_chat_id": event.record.id,
                "phase": Phase.IDLE,
                "buffer": "",
            }
        )

    if isinstance(event, SelectChat):
        _require_at_rest(state, event)
        if not any(c.id == event.chat_id for c in state.chats):
            raise InvalidTransition(f"Unknown chat {event.chat_id}")
        return state.model_copy(update={"current_chat_id": event.chat_id, "phase": Phase.IDLE, "buffer": ""})

    if isinstance(event, SetPreferences):
        return state.model_copy(update={"tone": event.tone, "goal": event.goal, "audience": event.audience})

    if isinstance(event, Submitted):
        _require_at_rest(state, event)
        chat = state.current_chat
        if chat is None:
            raise InvalidTransition("No active chat")
        if not event.content.strip():
            raise InvalidTransition("Cannot submit an empty message")
        record = chat.with_message(Message(role="user", content=event.content), now=event.at)
        return state._with_current(record, phase=Phase.AWAITING, buffer="", is_loading=True)

    if isinstance(event, FragmentReceived):
        _require_in_flight(state, event)
        return state.model_copy(update={"phase": Phase.STREAMING, "buffer": state.buffer + event.text})

    if isinstance(event, StreamCompleted):
        chat = _require_in_flight(state, event)
        return _settle(state, chat, state.buffer, event.at)

    if isinstance(event, StreamFailed):
        chat = _require_in_flight(state, event)
        return _settle(state, chat, FALLBACK_MESSAGE, event.at)

    raise TypeError(f"Unknown event: {event!r}")


# -----------------------------
# Controller
# -----------------------------
def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ChatController:
    """Drive a ViewState against the persistence and generation endpoints.

    ``on_change`` is called with every new state, which is enough for a UI to
    render the streaming buffer as it grows.
    """

    def __init__(
        self,
        store: ChatStoreClient,
        generator: GenerationClient,
        *,
        history_window: int = DEFAULT_HISTORY_WINDOW,
        on_change: Optional[Callable[[ViewState], None]] = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.store = store
        self.generator = generator
        self.history_window = history_window
        self.on_change = on_change
        self.clock = clock
        self.state = ViewState()

    def dispatch(self, event: Event) -> ViewState:
        self.state = reduce(self.state, event)
        if self.on_change is not None:
            self.on_change(self.state)
        return self.state

    def bootstrap(self) -> ViewState:
        """Load every stored chat; start a fresh one if there are none."""
        try:
            records = []
            for chat_id in self.store.list_ids():
                record = self.store.load(chat_id)
                if record is not None:
                    records.append(record)
        except (ClientError, RecordFormatError):
            logger.exception("Loading chats failed; starting a new chat")
            records = []

        self.dispatch(ChatsLoaded(records))
        if not records:
            self.new_chat()
        return self.state

    def new_chat(self) -> ChatRecord:
        now = self.clock()
        taken = {c.id for c in self.state.chats}
        record = ChatRecord.new(now)
        while record.id in taken:
            now += timedelta(milliseconds=1)
            record = ChatRecord.new(now)
        self.dispatch(NewChat(record))
        self._persist(record)
        return record

    def select_chat(self, chat_id: str) -> ViewState:
        return self.dispatch(SelectChat(chat_id))

    def set_preferences(
        self,
        tone: Optional[Tone] = None,
        goal: Optional[Goal] = None,
        audience: Optional[Audience] = None,
    ) -> ViewState:
        return self.dispatch(SetPreferences(tone=tone, goal=goal, audience=audience))

    def submit(self, text: str) -> ViewState:
        """Send one prompt, stream the reply into the buffer and persist both turns."""
        window = self.history_window
        history = self.state.messages[-window:] if window > 0 else []
        self.dispatch(Submitted(text, self.clock()))
        self._persist(self.state.current_chat)

        spec = PromptSpec(
            prompt=text,
            tone=self.state.tone,
            goal=self.state.goal,
            audience=self.state.audience,
            conversation_history=history,
        )
        try:
            for fragment in self.generator.stream(spec):
                self.dispatch(FragmentReceived(fragment))
        except ClientError as e:
            logger.warning("Generation failed: %s", e)
            self.dispatch(StreamFailed(self.clock()))
        else:
            self.dispatch(StreamCompleted(self.clock()))

        self._persist(self.state.current_chat)
        return self.state

    def _persist(self, record: Optional[ChatRecord]) -> None:
        if record is None:
            return
        try:
            self.store.save(record.id, record)
        except ClientError:
            logger.exception("Saving chat %s failed", record.id)
