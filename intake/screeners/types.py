from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Tuple

from ..core.errors import UnknownScreenerError


class ScreenerType(str, Enum):
    PSC17 = "psc17"
    PHQ9A = "phq9a"
    SCARED = "scared"

    @classmethod
    def parse(cls, value: str) -> "ScreenerType":
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise UnknownScreenerError(f"unsupported screener type: {value!r}") from None

    @property
    def category(self) -> str:
        match self:
            case ScreenerType.PSC17:
                return "broadband"
            case ScreenerType.PHQ9A:
                return "mood"
            case ScreenerType.SCARED:
                return "anxiety_specific"


class RespondentRole(str, Enum):
    MINOR = "minor"
    PARENT = "parent"
    FRIEND = "friend"

    @classmethod
    def parse(cls, value: str) -> "RespondentRole":
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise UnknownScreenerError(f"unsupported respondent role: {value!r}") from None


@dataclass(frozen=True)
class ResponseOption:
    value: int
    label: str
    phrases: Tuple[str, ...]


@dataclass(frozen=True)
class Question:
    id: str
    order: int
    text: str
    screener_type: ScreenerType
    subscale: str | None = None
    safety_item: bool = False


@dataclass(frozen=True)
class Screener:
    type: ScreenerType
    version: str
    name: str
    short_name: str
    greeting_label: str
    instructions: str
    response_options: Tuple[ResponseOption, ...]
    questions: Tuple[Question, ...]
    scoring: dict = field(default_factory=dict, compare=False, hash=False)

    @property
    def question_ids(self) -> list[str]:
        return [q.id for q in self.questions]

    @property
    def total_questions(self) -> int:
        return len(self.questions)

    @property
    def min_value(self) -> int:
        return min(o.value for o in self.response_options)

    @property
    def max_value(self) -> int:
        return max(o.value for o in self.response_options)

    def question(self, question_id: str) -> Question:
        for q in self.questions:
            if q.id == question_id:
                return q
        raise KeyError(question_id)

    def scale_description(self) -> str:
        return ", ".join(f"{o.value} = {o.label}" for o in self.response_options)
