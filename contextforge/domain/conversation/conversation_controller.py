from typing import Awaitable, Callable, Dict, List, Mapping, Optional, Set
from dataclasses import dataclass
import asyncio
import structlog

from contextforge.domain.context.content_store import ContentStore
from contextforge.domain.context.context_assembler import assemble
from contextforge.domain.context.skills import SkillRegistry
from contextforge.domain.errors import ContextForgeError, ProviderError
from contextforge.domain.generation.cancellation import GenerationCancelled
from contextforge.domain.generation.provider import GenerationOptions
from contextforge.domain.generation.transports import GenerationHandle, Transport
from contextforge.domain.models.content import Zone
from contextforge.domain.models.conversation import Message, MessageRole, STOPPED_MARKER
from contextforge.domain.models.generation import ProviderKind

logger = structlog.get_logger(__name__)

# (session_id, content, role, zone) -> id of the stored item
MessageSink = Callable[[str, str, MessageRole, Zone], Awaitable[str]]
ErrorCallback = Callable[[str], None]


@dataclass
class _ActiveTurn:
    transport: Transport
    handle: Optional[GenerationHandle] = None
    text: str = ""
    cancel_requested: bool = False


class ConversationController:
    """
    Client-side state for one ephemeral conversation over a session's content.

    Owns the message list and the single in-flight turn. A turn belongs to the
    controller only while it is ``self._turn``: stop, close and reset detach
    it first, so anything the detached turn produces afterwards is dropped.
    """

    def __init__(
        self,
        session_id: str,
        content_store: ContentStore,
        transports: Mapping[ProviderKind, Transport],
        skills: Optional[SkillRegistry] = None,
        provider: ProviderKind = ProviderKind.OLLAMA,
        model: Optional[str] = None,
        temperature: float = 0.7,
        disable_agent_behavior: bool = True,
        message_sink: Optional[MessageSink] = None,
        on_error: Optional[ErrorCallback] = None
    ):
        self.session_id = session_id
        self.content_store = content_store
        self.transports = dict(transports)
        self.skills = skills or SkillRegistry()
        self.provider = provider
        self.model = model
        self.temperature = temperature
        self.disable_agent_behavior = disable_agent_behavior
        self.message_sink = message_sink
        self.on_error = on_error

        self.messages: List[Message] = []
        self.active_skills: Dict[str, bool] = self.skills.default_active()
        self.streaming_text = ""
        self.error: Optional[str] = None
        self.generation_id: Optional[str] = None
        self.has_unsaved_content = False
        self.is_open = False

        self._turn: Optional[_ActiveTurn] = None
        self._background: Set[asyncio.Task] = set()

    @property
    def is_streaming(self) -> bool:
        return self._turn is not None

    # Lifecycle

    def open(self, provider: Optional[ProviderKind] = None):
        if provider is not None:
            self.set_provider(provider)
        self.is_open = True

    async def close(self):
        """Stop any generation (keeping its partial text) and close. Messages survive."""

        await self.stop()
        self.is_open = False

    async def reset(self):
        """Discard all ephemeral state; an in-flight turn is cancelled without capture"""

        turn = self._detach_turn()
        self.messages = []
        self.error = None
        self.has_unsaved_content = False
        self.active_skills = self.skills.default_active()

        if turn is not None:
            await self._cancel_turn(turn)

    async def switch_session(self, session_id: str):
        await self.reset()
        self.session_id = session_id

    def unload(self):
        """
        Page-unload path: schedule a best-effort cancel and drop everything.

        Does not wait for the cancel to be acknowledged.
        """

        turn = self._detach_turn()
        if turn is not None:
            task = asyncio.ensure_future(self._cancel_turn(turn))
            self._background.add(task)
            task.add_done_callback(self._background.discard)

        self.messages = []
        self.error = None
        self.has_unsaved_content = False
        self.is_open = False

    # Settings

    def set_provider(self, provider: ProviderKind):
        if provider not in self.transports:
            raise ContextForgeError(f"Provider not available: {provider.value}")
        self.provider = provider

    def toggle_skill(self, skill_id: str) -> bool:
        self.active_skills[skill_id] = not self.active_skills.get(skill_id, False)
        return self.active_skills[skill_id]

    # Turns

    async def send_turn(self, text: str):
        """
        Send a user message and stream the reply.

        Blank input, or input while a turn is streaming, is ignored. Assembly
        errors raise before anything is started and leave the history as it
        was. Provider failures land in ``self.error``.
        """

        if not text or not text.strip() or self.is_streaming:
            return

        content = text.strip()
        user_message = Message(role=MessageRole.USER, content=content)

        def commit():
            self.messages.append(user_message)

        await self._run_turn(list(self.messages), content, commit)

    async def retry_message(self, message_id: str):
        """Regenerate from a message: its user turn is kept, everything after is dropped"""

        if self.is_streaming:
            return

        index = self._index_of(message_id)
        if index is None:
            return

        user_index = index
        while user_index >= 0 and self.messages[user_index].role != MessageRole.USER:
            user_index -= 1
        if user_index < 0:
            return

        user_message = self.messages[user_index]
        history = self.messages[:user_index]

        def commit():
            self.messages = self.messages[:user_index + 1]

        await self._run_turn(history, user_message.content, commit)

    async def edit_message(self, message_id: str, content: str):
        """Replace a user message's content and regenerate from it"""

        if self.is_streaming or not content or not content.strip():
            return

        index = self._index_of(message_id)
        if index is None or self.messages[index].role != MessageRole.USER:
            return

        edited = self.messages[index].model_copy(update={"content": content.strip()})
        history = self.messages[:index]

        def commit():
            self.messages = self.messages[:index] + [edited]

        await self._run_turn(history, edited.content, commit)

    async def clear_conversation(self):
        turn = self._detach_turn()
        self.messages = []
        self.error = None
        self.has_unsaved_content = False

        if turn is not None:
            await self._cancel_turn(turn)

    async def stop(self):
        """
        Stop the in-flight turn.

        Partial text is kept as an assistant message ending in the stopped
        marker. Cancellation is best-effort: failures are logged, not raised.
        """

        turn = self._turn
        if turn is None:
            return

        partial = self.streaming_text
        if partial.strip():
            self.messages.append(Message(role=MessageRole.ASSISTANT, content=partial + STOPPED_MARKER))

        self._detach_turn()
        await self._cancel_turn(turn)

    async def save_message(self, message_id: str, zone: Zone) -> str:
        """Store a message as content in ``zone`` and remember the stored id"""

        if self.message_sink is None:
            raise ContextForgeError("No message sink configured")

        index = self._index_of(message_id)
        if index is None:
            raise ContextForgeError(f"Message not found: {message_id}")

        message = self.messages[index]
        ref = await self.message_sink(self.session_id, message.content, message.role, zone)
        self.messages[index] = message.model_copy(update={"saved_ref": ref})
        return ref

    # Internals

    def _index_of(self, message_id: str) -> Optional[int]:
        for index, message in enumerate(self.messages):
            if message.id == message_id:
                return index
        return None

    def _detach_turn(self) -> Optional[_ActiveTurn]:
        turn = self._turn
        self._turn = None
        self.streaming_text = ""
        self.generation_id = None
        return turn

    async def _cancel_turn(self, turn: _ActiveTurn):
        turn.cancel_requested = True
        if turn.handle is None:
            # Still starting; _run_turn cancels once the handle exists
            return

        try:
            await turn.transport.cancel(turn.handle)
        except Exception as e:
            logger.warning(
                "Cancel request failed",
                session_id=self.session_id,
                generation_id=turn.handle.generation_id,
                error=str(e)
            )

    def _report_error(self, message: str):
        self.error = message
        if self.on_error is not None:
            self.on_error(message)

    async def _run_turn(self, history: List[Message], user_text: str, commit: Callable[[], None]):
        # Owned from here on: stop and reset reach the turn during the content read.
        # Session and transport are fixed for the whole turn.
        session_id = self.session_id
        transport = self.transports[self.provider]
        options = GenerationOptions(
            model=self.model,
            temperature=self.temperature,
            disable_agent_behavior=self.disable_agent_behavior
        )
        injections = self.skills.render(self.active_skills)

        turn = _ActiveTurn(transport=transport)
        self._turn = turn
        self.streaming_text = ""

        try:
            items = await self.content_store.list_zoned_content(session_id)
            prompt = assemble(items, history, injections, user_text)
        except Exception:
            if self._turn is turn:
                self._detach_turn()
            raise

        if self._turn is not turn or turn.cancel_requested:
            logger.info("Turn dropped before start", session_id=session_id)
            return

        commit()
        self.error = None
        self.has_unsaved_content = True

        try:
            turn.handle = await transport.start(session_id, prompt, options)
            if self._turn is turn:
                self.generation_id = turn.handle.generation_id
            if turn.cancel_requested:
                await self._cancel_turn(turn)

            async for delta in transport.subscribe(turn.handle):
                turn.text += delta
                if self._turn is turn:
                    self.streaming_text = turn.text

            if self._turn is turn and turn.text.strip():
                self.messages.append(Message(role=MessageRole.ASSISTANT, content=turn.text))

        except GenerationCancelled:
            # Cancelled from elsewhere while still ours: keep what arrived
            if self._turn is turn and turn.text.strip():
                self.messages.append(Message(role=MessageRole.ASSISTANT, content=turn.text + STOPPED_MARKER))

        except ProviderError as e:
            if self._turn is turn:
                logger.warning("Generation failed", session_id=session_id, provider=e.provider, error=e.message)
                self._report_error(e.full_message)

        finally:
            if self._turn is turn:
                self._detach_turn()
