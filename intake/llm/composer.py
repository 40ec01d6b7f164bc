"""Prompt assembly for the screener conversation.

The composer only stitches together pre-approved template text; it never
generates wording of its own, so what the model is told on any turn can be
reproduced exactly from the conversation state.
"""
from collections.abc import AsyncIterator
from typing import Dict, List

from ..core.config import settings
from ..safety.resources import RISK_GUIDANCE
from ..safety.risk import RiskLevel
from ..screeners.loader import get_screener
from ..screeners.types import Question, RespondentRole, ScreenerType
from .openai_client import chat_completion, stream_chat_completion
from .prompts import (
    CLOSING_INSTRUCTIONS,
    CURRENT_RISK_TEMPLATE,
    GREETING_TEMPLATE,
    GREETING_WHOM,
    NEARING_END,
    QUESTION_TEMPLATE,
    REASK_TEMPLATE,
    RESPONSE_GUIDELINES,
    ROLE_INSTRUCTIONS,
    SAFETY_INSTRUCTIONS,
    SCREENER_FRAMING,
    SYSTEM,
)


def build_system_prompt(screener_type: ScreenerType, respondent_role: RespondentRole) -> str:
    return "\n".join(
        [
            SYSTEM,
            RESPONSE_GUIDELINES,
            SCREENER_FRAMING[screener_type],
            ROLE_INSTRUCTIONS[respondent_role],
            SAFETY_INSTRUCTIONS,
        ]
    ).strip()


def options_text(screener_type: ScreenerType) -> str:
    labels = [o.label for o in get_screener(screener_type).response_options]
    return ", ".join(labels[:-1]) + f", or {labels[-1]}"


def build_question_prompt(
    question: Question,
    remaining_count: int,
    risk_level: RiskLevel = RiskLevel.NONE,
) -> str:
    screener = get_screener(question.screener_type)
    parts = [
        QUESTION_TEMPLATE.format(
            order=question.order,
            total=screener.total_questions,
            text=question.text,
            scale=screener.scale_description(),
        )
    ]
    if remaining_count <= 3:
        parts.append(NEARING_END)
    if risk_level > RiskLevel.NONE:
        parts.append(CURRENT_RISK_TEMPLATE.format(guidance=RISK_GUIDANCE[risk_level]))
    return "\n".join(parts).strip()


def build_closing_prompt(risk_level: RiskLevel = RiskLevel.NONE) -> str:
    parts = [CLOSING_INSTRUCTIONS]
    if risk_level > RiskLevel.NONE:
        parts.append(CURRENT_RISK_TEMPLATE.format(guidance=RISK_GUIDANCE[risk_level]))
    return "\n".join(parts).strip()


def build_greeting(screener_type: ScreenerType, respondent_role: RespondentRole) -> str:
    return GREETING_TEMPLATE.format(
        label=get_screener(screener_type).greeting_label,
        whom=GREETING_WHOM[respondent_role],
    )


def build_reask(question: Question) -> str:
    return REASK_TEMPLATE.format(text=question.text, options=options_text(question.screener_type))


def build_messages(system_prompt: str, history: List[Dict[str, str]], turn_prompt: str) -> List[Dict[str, str]]:
    return [{"role": "system", "content": system_prompt}, *history, {"role": "system", "content": turn_prompt}]


async def compose(messages: List[Dict[str, str]]) -> str:
    text = await chat_completion(
        messages,
        temperature=settings.CHAT_TEMPERATURE,
        max_tokens=settings.CHAT_MAX_TOKENS,
    )
    return text.strip()


async def compose_stream(messages: List[Dict[str, str]]) -> AsyncIterator[str]:
    async for chunk in stream_chat_completion(
        messages,
        temperature=settings.CHAT_TEMPERATURE,
        max_tokens=settings.CHAT_MAX_TOKENS,
    ):
        yield chunk
