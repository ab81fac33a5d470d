"""
Context assembly.

Turns stored zone content, conversation history, ephemeral injections and the
new user input into one ordered, role-tagged prompt. Ordering runs from least
to most volatile so consecutive turns share the longest possible prefix and a
provider-side prefix cache keeps getting hits.

Everything here is pure: no I/O, no clocks, no randomness.
"""

from typing import Dict, List, Optional, Sequence
from enum import Enum
import math

from pydantic import BaseModel, Field
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage

from contextforge.domain.errors import AssemblyInputError, ContextNotLoadedError
from contextforge.domain.models.content import ContentItem, ContextStats, Zone, ZONE_ORDER
from contextforge.domain.models.conversation import Message, MessageRole


REFERENCE_HEADER = "Reference Material:"
CURRENT_CONTEXT_HEADER = "Current Context:"
ITEM_SEPARATOR = "\n\n"

# Rough heuristic, good enough for budgeting
CHARS_PER_TOKEN = 4


class PromptSegment(str, Enum):
    """Where an assembled message came from, in assembly order"""
    PERMANENT = "permanent"
    STABLE = "stable"
    WORKING = "working"
    INJECTION = "injection"
    HISTORY = "history"
    INPUT = "input"


SEGMENT_ORDER = tuple(PromptSegment)
ZONE_SEGMENTS = (PromptSegment.PERMANENT, PromptSegment.STABLE, PromptSegment.WORKING)

_ROLE_BY_TYPE = {"system": "system", "human": "user", "ai": "assistant"}


def _tag(message: BaseMessage, segment: PromptSegment) -> BaseMessage:
    message.additional_kwargs["segment"] = segment.value
    return message


def segment_of(message: BaseMessage) -> PromptSegment:
    """Return the segment an assembled message was tagged with"""

    return PromptSegment(message.additional_kwargs["segment"])


def role_of(message: BaseMessage) -> str:
    """Provider-facing role name for a message"""

    return _ROLE_BY_TYPE[message.type]


class AssembledPrompt(BaseModel):
    """Ordered prompt ready to hand to a provider"""
    system_instruction: Optional[str] = Field(None, description="Content for the provider's system parameter")
    messages: List[BaseMessage] = Field(default_factory=list)

    def segments(self) -> List[PromptSegment]:
        return [segment_of(message) for message in self.messages]

    def zone_prefix(self) -> List[BaseMessage]:
        """Messages built from zone content, the part meant to stay cache-warm"""

        return [message for message in self.messages if segment_of(message) in ZONE_SEGMENTS]

    def to_provider_messages(self, system_suffix: str = "") -> List[Dict[str, str]]:
        """
        Flatten into the {"role", "content"} shape chat APIs accept.

        The system instruction goes first. ``system_suffix`` is only appended
        when an instruction exists.
        """

        provider_messages = []
        if self.system_instruction:
            provider_messages.append({
                "role": "system",
                "content": self.system_instruction + system_suffix,
            })

        for message in self.messages:
            provider_messages.append({"role": role_of(message), "content": message.content})

        return provider_messages

    def estimate_tokens(self) -> int:
        chars = sum(len(message.content) for message in self.messages)
        if self.system_instruction:
            chars += len(self.system_instruction)
        return math.ceil(chars / CHARS_PER_TOKEN)


def _sorted_by_position(items: Sequence[ContentItem]) -> List[ContentItem]:
    # Ties on position fall back to id so the order is still total
    return sorted(items, key=lambda item: (item.position, item.id))


def extract_system_instruction(content_items: Sequence[ContentItem]) -> Optional[str]:
    """
    Find the active system instruction.

    The first system-prompt item in the PERMANENT zone (by position) wins.
    Blank instructions count as absent.
    """

    candidates = _sorted_by_position([
        item for item in content_items
        if item.is_system_prompt and item.zone == Zone.PERMANENT
    ])

    if not candidates or not candidates[0].content.strip():
        return None
    return candidates[0].content


def _group_by_zone(content_items: Sequence[ContentItem]) -> Dict[Zone, List[ContentItem]]:
    by_zone: Dict[Zone, List[ContentItem]] = {zone: [] for zone in ZONE_ORDER}

    for item in content_items:
        # System prompts travel through the system slot, never inline
        if item.is_system_prompt:
            continue
        by_zone[item.zone].append(item)

    return {zone: _sorted_by_position(items) for zone, items in by_zone.items()}


def _join(items: Sequence[ContentItem]) -> str:
    return ITEM_SEPARATOR.join(item.content for item in items if item.content)


def assemble(
    content_items: Optional[Sequence[ContentItem]],
    conversation_history: Sequence[Message],
    ephemeral_injections: Sequence[str],
    new_user_input: str
) -> AssembledPrompt:
    """
    Assemble a prompt.

    Order: system slot, PERMANENT, STABLE, WORKING, ephemeral injections,
    history (oldest first), new user input. Empty zones and blank injections
    contribute nothing.

    Raises:
        ContextNotLoadedError: If ``content_items`` is None
        AssemblyInputError: If ``new_user_input`` is blank
    """

    if content_items is None:
        raise ContextNotLoadedError()
    if not new_user_input or not new_user_input.strip():
        raise AssemblyInputError("New user input is empty")

    messages: List[BaseMessage] = []
    by_zone = _group_by_zone(content_items)

    # 1. PERMANENT zone, changes least often
    permanent = _join(by_zone[Zone.PERMANENT])
    if permanent:
        messages.append(_tag(SystemMessage(content=permanent), PromptSegment.PERMANENT))

    # 2. STABLE zone as reference material
    stable = _join(by_zone[Zone.STABLE])
    if stable:
        messages.append(_tag(
            HumanMessage(content=f"{REFERENCE_HEADER}{ITEM_SEPARATOR}{stable}"),
            PromptSegment.STABLE
        ))

    # 3. WORKING zone, changes most often
    working = _join(by_zone[Zone.WORKING])
    if working:
        messages.append(_tag(
            HumanMessage(content=f"{CURRENT_CONTEXT_HEADER}{ITEM_SEPARATOR}{working}"),
            PromptSegment.WORKING
        ))

    # 4. Ephemeral injections, toggling these only invalidates the suffix
    for injection in ephemeral_injections:
        if injection and injection.strip():
            messages.append(_tag(HumanMessage(content=injection), PromptSegment.INJECTION))

    # 5. Prior turns
    for message in conversation_history:
        if message.role == MessageRole.USER:
            history_message: BaseMessage = HumanMessage(content=message.content)
        else:
            history_message = AIMessage(content=message.content)
        messages.append(_tag(history_message, PromptSegment.HISTORY))

    # 6. New user input, always last
    messages.append(_tag(HumanMessage(content=new_user_input), PromptSegment.INPUT))

    return AssembledPrompt(
        system_instruction=extract_system_instruction(content_items),
        messages=messages
    )


def context_stats(content_items: Sequence[ContentItem]) -> ContextStats:
    """Count items and characters per zone"""

    stats = ContextStats()
    for item in content_items:
        zone_stats = stats.zones[item.zone]
        zone_stats.count += 1
        zone_stats.chars += len(item.content)
        stats.total.count += 1
        stats.total.chars += len(item.content)
    return stats
