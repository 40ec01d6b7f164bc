"""Pre-approved safety language and crisis resources.

Nothing in this module is generated; every string a user can see during a
safety pivot is fixed here.
"""
from typing import Any, Dict, List

from .risk import RiskLevel

PRIMARY_RESOURCES: List[Dict[str, Any]] = [
    {
        "id": "988-lifeline",
        "name": "988 Suicide & Crisis Lifeline",
        "description": "Free, confidential support for people in distress",
        "phone": "988",
        "text": "988",
        "available": "24/7",
        "type": "hotline",
    },
    {
        "id": "crisis-text",
        "name": "Crisis Text Line",
        "description": "Text with a trained crisis counselor",
        "text": "Text HOME to 741741",
        "available": "24/7",
        "type": "text",
    },
    {
        "id": "911",
        "name": "Emergency Services",
        "description": "For immediate danger or medical emergency",
        "phone": "911",
        "available": "24/7",
        "type": "emergency",
    },
]

SECONDARY_RESOURCES: List[Dict[str, Any]] = [
    {
        "id": "trevor-project",
        "name": "The Trevor Project",
        "description": "For LGBTQ+ young people",
        "phone": "1-866-488-7386",
        "text": "Text START to 678-678",
        "available": "24/7",
        "type": "hotline",
    },
    {
        "id": "childhelp",
        "name": "Childhelp National Child Abuse Hotline",
        "description": "Help for child abuse situations",
        "phone": "1-800-422-4453",
        "available": "24/7",
        "type": "hotline",
    },
]

SAFETY_MESSAGE = (
    "I hear you, and I want you to know that what you're feeling matters. "
    "Thank you for sharing that with me.\n\n"
    "Right now, I want to make sure you're safe. If you're having thoughts of hurting yourself, "
    "please reach out to someone who can help:\n\n"
    "- 988 Suicide & Crisis Lifeline: call or text 988\n"
    "- Crisis Text Line: text HOME to 741741\n"
    "- Emergency: call 911\n\n"
    "You don't have to go through this alone. When you're ready, let me know you're safe "
    "using the \"I'm safe\" option and we can pick up where we left off."
)

PAUSED_REMINDER = (
    "Thank you for telling me. We've paused the questions for now so we can focus on your safety. "
    "If you need to talk to someone right away, you can call or text 988, or text HOME to 741741. "
    "If you're in immediate danger, call 911.\n\n"
    "When you feel safe to continue, choose the \"I'm safe\" option and we'll pick up where we left off."
)

NEED_HELP_MESSAGE = (
    "We encourage you to reach out to one of these resources right now. "
    "You don't have to go through this alone."
)

RESUMED_MESSAGE = "Thank you for letting me know you're safe. Let's pick up where we left off."

# How the assistant should treat each non-critical level; critical never reaches the model.
RISK_GUIDANCE: Dict[RiskLevel, str] = {
    RiskLevel.CRITICAL: "Pause the conversation and show safety resources immediately.",
    RiskLevel.HIGH: (
        "The user's last message showed serious distress. Acknowledge it with empathy first and "
        "mention that the 988 Suicide & Crisis Lifeline (call or text 988) is available any time."
    ),
    RiskLevel.MEDIUM: "The user's last message showed elevated distress. Respond with extra warmth before continuing.",
    RiskLevel.LOW: "Acknowledge the user's feelings briefly and warmly before continuing.",
    RiskLevel.NONE: "Continue the normal conversation flow.",
}


def pivot_type(level: RiskLevel) -> str:
    if level == RiskLevel.CRITICAL:
        return "full_screen"
    if level == RiskLevel.HIGH:
        return "overlay"
    return "inline"
