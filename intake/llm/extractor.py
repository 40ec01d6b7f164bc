"""Map a free-text reply onto one of the open question's response values.

The model path asks the language model for a constrained structured answer.
Anything short of a well-formed, in-range value falls through to the local
rule-based path, which tries phrase matches, then 3-letter prefix matches,
then a bare number. Each strategy carries a fixed confidence lower than the
one before it. If nothing matches the value is None and the caller re-asks.
"""
from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError

from ..core.config import settings
from ..core.errors import LLMError
from ..safety.risk import normalize
from ..screeners.loader import get_screener
from ..screeners.types import Question, Screener
from .openai_client import chat_completion, is_configured
from .prompts import EXTRACTOR_INSTRUCTIONS, SYSTEM

logger = logging.getLogger(__name__)

PHRASE_CONFIDENCE = 0.9
FUZZY_CONFIDENCE = 0.7
NUMERIC_CONFIDENCE = 0.6
FUZZY_PREFIX = 3

# Filler tokens inside multi-word phrases that say nothing about frequency.
_FUZZY_STOPWORDS = {"the", "than", "all", "at", "a", "in", "of", "to", "and", "or", "it", "kind", "not"}

_NUMBER = re.compile(r"\b(\d+)\b")


class ExtractionMethod(str, Enum):
    MODEL = "model"
    RULE_BASED = "rule_based"


@dataclass(frozen=True)
class ExtractionResult:
    value: Optional[int]
    confidence: float
    method: ExtractionMethod
    question_id: Optional[str] = None
    strategy: Optional[str] = None
    rationale: Optional[str] = None

    @property
    def matched(self) -> bool:
        return self.value is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "questionId": self.question_id,
            "value": self.value,
            "confidence": self.confidence,
            "method": self.method.value,
            "strategy": self.strategy,
            "rationale": self.rationale,
        }


class ModelExtraction(BaseModel):
    value: Optional[int]
    confidence: float = Field(ge=0.0, le=1.0)
    reasoning: str = ""


def _no_match(question: Question) -> ExtractionResult:
    return ExtractionResult(None, 0.0, ExtractionMethod.RULE_BASED, question_id=question.id, strategy="no_match")


def _phrase_match(words_text: str, screener: Screener) -> Optional[int]:
    padded = f" {words_text} "
    best: Optional[tuple] = None
    for option in screener.response_options:
        for phrase in option.phrases:
            p = normalize(phrase)
            if p and f" {p} " in padded:
                # longest (most specific) phrase wins; ties go to the lower value
                key = (-len(p), option.value)
                if best is None or key < best[0]:
                    best = (key, option.value)
    return best[1] if best else None


def _fuzzy_match(words: List[str], screener: Screener) -> Optional[int]:
    hits: Dict[int, int] = {}
    candidates = [w for w in words if len(w) >= FUZZY_PREFIX and w not in _FUZZY_STOPWORDS]
    for option in screener.response_options:
        tokens = {
            t for phrase in option.phrases for t in normalize(phrase).split()
            if len(t) >= FUZZY_PREFIX and t not in _FUZZY_STOPWORDS
        }
        for word in candidates:
            if any(word[:FUZZY_PREFIX] == t[:FUZZY_PREFIX] for t in tokens):
                hits[option.value] = hits.get(option.value, 0) + 1
    if not hits:
        return None
    return sorted(hits.items(), key=lambda kv: (-kv[1], kv[0]))[0][0]


def _numeric_match(text: str, screener: Screener) -> Optional[int]:
    m = _NUMBER.search(text)
    if not m:
        return None
    value = int(m.group(1))
    if screener.min_value <= value <= screener.max_value:
        return value
    return None


def rule_based_extract(text: str, question: Question) -> ExtractionResult:
    screener = get_screener(question.screener_type)
    normalized = normalize(text)
    if not normalized:
        return _no_match(question)

    value = _phrase_match(normalized, screener)
    if value is not None:
        return ExtractionResult(value, PHRASE_CONFIDENCE, ExtractionMethod.RULE_BASED, question.id, "phrase")

    value = _fuzzy_match(normalized.split(), screener)
    if value is not None:
        return ExtractionResult(value, FUZZY_CONFIDENCE, ExtractionMethod.RULE_BASED, question.id, "fuzzy_prefix")

    value = _numeric_match(normalized, screener)
    if value is not None:
        return ExtractionResult(value, NUMERIC_CONFIDENCE, ExtractionMethod.RULE_BASED, question.id, "numeric")

    return _no_match(question)


def _response_format(screener: Screener) -> dict:
    allowed = [o.value for o in screener.response_options]
    return {
        "type": "json_schema",
        "json_schema": {
            "name": "extract_response",
            "strict": True,
            "schema": {
                "type": "object",
                "properties": {
                    "value": {"anyOf": [{"type": "integer", "enum": allowed}, {"type": "null"}]},
                    "confidence": {"type": "number"},
                    "reasoning": {"type": "string"},
                },
                "required": ["value", "confidence", "reasoning"],
                "additionalProperties": False,
            },
        },
    }


async def model_extract(text: str, question: Question) -> Optional[ExtractionResult]:
    """Returns None whenever the model gives no usable, in-range value."""
    screener = get_screener(question.screener_type)
    messages = [
        {"role": "system", "content": SYSTEM},
        {
            "role": "system",
            "content": EXTRACTOR_INSTRUCTIONS.format(
                screener=screener.short_name, scale=screener.scale_description()
            ),
        },
        {"role": "user", "content": f'Question: "{question.text}"\nUser response: "{text}"'},
    ]
    raw = await chat_completion(
        messages,
        temperature=settings.EXTRACTION_TEMPERATURE,
        response_format=_response_format(screener),
        model=settings.OPENAI_EXTRACTION_MODEL,
    )
    try:
        parsed = ModelExtraction.model_validate(json.loads(raw))
    except (ValueError, ValidationError):
        logger.info("EXTRACTION_MODEL_MALFORMED", extra={"question_id": question.id})
        return None
    if parsed.value is None:
        return None
    if not (screener.min_value <= parsed.value <= screener.max_value):
        logger.info("EXTRACTION_MODEL_OUT_OF_RANGE", extra={"question_id": question.id})
        return None
    return ExtractionResult(
        parsed.value,
        parsed.confidence,
        ExtractionMethod.MODEL,
        question_id=question.id,
        strategy="structured_output",
        rationale=parsed.reasoning[:500] or None,
    )


async def extract(text: str, expected_question: Question) -> ExtractionResult:
    """Never raises for bad input or model failure; degrades to the rule-based path."""
    if not normalize(text):
        return _no_match(expected_question)
    if is_configured():
        try:
            result = await model_extract(text, expected_question)
        except LLMError:
            logger.warning("EXTRACTION_MODEL_FAILED", extra={"question_id": expected_question.id})
            result = None
        if result is not None:
            return result
    result = rule_based_extract(text, expected_question)
    logger.info(
        "EXTRACTION_FALLBACK",
        extra={"question_id": expected_question.id, "strategy": result.strategy, "matched": result.matched},
    )
    return result
