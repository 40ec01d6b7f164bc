from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .types import Screener


@dataclass
class SubscaleScore:
    name: str
    score: int
    cutoff: int
    positive: bool
    answered: int
    total: int


@dataclass
class ScreenerScore:
    screener_type: str
    total_score: int
    max_score: int
    answered: int
    total_questions: int
    is_final: bool
    severity: Optional[str] = None
    severity_label: Optional[str] = None
    positive: bool = False
    subscales: List[SubscaleScore] = field(default_factory=list)
    safety_flags: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "screenerType": self.screener_type,
            "totalScore": self.total_score,
            "maxScore": self.max_score,
            "answered": self.answered,
            "totalQuestions": self.total_questions,
            "isFinal": self.is_final,
            "severity": self.severity,
            "severityLabel": self.severity_label,
            "positive": self.positive,
            "subscales": [
                {
                    "name": s.name,
                    "score": s.score,
                    "cutoff": s.cutoff,
                    "positive": s.positive,
                    "answered": s.answered,
                    "total": s.total,
                }
                for s in self.subscales
            ],
            "safetyFlags": self.safety_flags,
        }


def _band(bands: List[Dict[str, Any]], total: int) -> Optional[Dict[str, Any]]:
    for b in bands:
        if int(b["min"]) <= total <= int(b["max"]):
            return b
    return None


def score_responses(screener: Screener, values: Dict[str, int]) -> ScreenerScore:
    """Score answered items; unanswered items count as zero and mark the score partial."""
    known = {q.id for q in screener.questions}
    answered = {qid: int(v) for qid, v in values.items() if qid in known and v is not None}
    total = sum(answered.values())
    rules = screener.scoring or {}

    result = ScreenerScore(
        screener_type=screener.type.value,
        total_score=total,
        max_score=screener.max_value * screener.total_questions,
        answered=len(answered),
        total_questions=screener.total_questions,
        is_final=len(answered) == screener.total_questions,
    )

    for sub in rules.get("subscales", []) or []:
        qids = [q.id for q in screener.questions if q.subscale == sub["name"]]
        score = sum(answered.get(qid, 0) for qid in qids)
        cutoff = int(sub["cutoff"])
        result.subscales.append(
            SubscaleScore(
                name=sub["name"],
                score=score,
                cutoff=cutoff,
                positive=score >= cutoff,
                answered=sum(1 for qid in qids if qid in answered),
                total=len(qids),
            )
        )

    band = _band(rules.get("bands", []) or [], total)
    if band:
        result.severity = band["level"]
        result.severity_label = band["label"]

    if "total_cutoff" in rules:
        result.positive = total >= int(rules["total_cutoff"]) or any(s.positive for s in result.subscales)
    elif band:
        result.positive = band["level"] not in ("minimal",)

    for q in screener.questions:
        if q.safety_item and answered.get(q.id, 0) > 0:
            result.safety_flags.append(q.id)

    return result
