from enum import Enum
from typing import Dict, FrozenSet

from ..core.errors import InvalidTransition


class ConversationState(str, Enum):
    GREETING = "greeting"
    ASKING = "asking"
    PAUSED_FOR_CRISIS = "paused_for_crisis"
    COMPLETE = "complete"


S = ConversationState

# paused -> asking only happens through the safety confirmation; the
# orchestrator never calls it from a user text turn.
TRANSITIONS: Dict[ConversationState, FrozenSet[ConversationState]] = {
    S.GREETING: frozenset({S.ASKING, S.PAUSED_FOR_CRISIS}),
    S.ASKING: frozenset({S.ASKING, S.PAUSED_FOR_CRISIS, S.COMPLETE}),
    S.PAUSED_FOR_CRISIS: frozenset({S.ASKING, S.PAUSED_FOR_CRISIS}),
    S.COMPLETE: frozenset({S.PAUSED_FOR_CRISIS}),
}


def can_transition(current: ConversationState, target: ConversationState) -> bool:
    return target in TRANSITIONS[current]


def transition(current: ConversationState | str, target: ConversationState) -> ConversationState:
    current = ConversationState(current)
    if not can_transition(current, target):
        raise InvalidTransition(current.value, target.value)
    return target
