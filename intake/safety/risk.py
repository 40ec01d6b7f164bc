"""Crisis risk classification for a single utterance.

Deterministic keyword classifier over an immutable, versioned phrase table.
Evaluation is critical-first: a critical match short-circuits every other
rule, so the most dangerous reading of a message is never downgraded by
weaker signals in the same text. Medium-tier matches are escalated to high
when the text also carries a severity modifier ("always", "every day",
"going to", ...), because asserted, temporally anchored distress is treated
as riskier than hedged distress.
"""
from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from enum import IntEnum
from functools import lru_cache
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Tuple

import yaml

logger = logging.getLogger(__name__)

PHRASES_PATH = os.path.join(os.path.dirname(__file__), "phrases.yaml")

_APOSTROPHES = re.compile(r"['’`]")
_NON_WORD = re.compile(r"[^\w\s]")
_SPACES = re.compile(r"\s+")


class RiskLevel(IntEnum):
    NONE = 0
    LOW = 1
    MEDIUM = 2
    HIGH = 3
    CRITICAL = 4

    @property
    def label(self) -> str:
        return self.name.lower()

    @classmethod
    def parse(cls, value: str) -> "RiskLevel":
        return cls[str(value).strip().upper()]


# Tier names in evaluation order.
TIERS: Tuple[RiskLevel, ...] = (RiskLevel.CRITICAL, RiskLevel.HIGH, RiskLevel.MEDIUM, RiskLevel.LOW)


def normalize(text: str) -> str:
    t = _APOSTROPHES.sub("", str(text or "").lower())
    t = _NON_WORD.sub(" ", t).replace("_", " ")
    return _SPACES.sub(" ", t).strip()


def _contains(normalized_text: str, phrase: str) -> bool:
    # whole-word containment: "cut" must not match "cute"
    return f" {phrase} " in f" {normalized_text} "


@dataclass(frozen=True)
class PhraseTable:
    version: str
    tiers: Mapping[RiskLevel, Mapping[str, Tuple[str, ...]]]
    modifiers: Mapping[str, Tuple[str, ...]]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PhraseTable":
        tiers: Dict[RiskLevel, Mapping[str, Tuple[str, ...]]] = {}
        for tier_name, categories in (data.get("tiers") or {}).items():
            level = RiskLevel.parse(tier_name)
            tiers[level] = MappingProxyType(
                {cat: tuple(normalize(p) for p in phrases) for cat, phrases in (categories or {}).items()}
            )
        modifiers = MappingProxyType(
            {kind: tuple(normalize(p) for p in words) for kind, words in (data.get("modifiers") or {}).items()}
        )
        return cls(version=str(data.get("version", "")), tiers=MappingProxyType(tiers), modifiers=modifiers)


@lru_cache(maxsize=1)
def load_phrase_table(path: str = PHRASES_PATH) -> PhraseTable:
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f)
    table = PhraseTable.from_dict(data)
    logger.info(
        "PHRASE_TABLE_LOADED",
        extra={
            "phrase_table_version": table.version,
            "category_count": sum(len(c) for c in table.tiers.values()),
        },
    )
    return table


@dataclass(frozen=True)
class RiskAssessment:
    level: RiskLevel
    evidence: Tuple[str, ...] = ()
    matched_categories: Tuple[str, ...] = ()
    modifiers: Tuple[str, ...] = ()
    table_version: str = ""
    detection_method: str = field(default="keyword")

    @property
    def requires_safety_pivot(self) -> bool:
        return self.level == RiskLevel.CRITICAL

    @property
    def show_resources(self) -> bool:
        return self.level >= RiskLevel.HIGH

    @property
    def flags(self) -> Dict[str, Any]:
        cats = self.matched_categories
        return {
            "has_suicide_ideation": any(c.endswith(".suicide") for c in cats),
            "has_self_harm": any("self_harm" in c for c in cats),
            "has_abuse_indicators": any(c.endswith(".abuse") for c in cats),
            "has_hopelessness": any(c.endswith(".hopelessness") for c in cats),
            "has_worthlessness": any(c.endswith(".worthlessness") for c in cats),
            "match_count": len(self.evidence),
            "category_count": len(cats),
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "level": self.level.label,
            "evidence": list(self.evidence),
            "matchedCategories": list(self.matched_categories),
            "modifiers": list(self.modifiers),
            "flags": self.flags,
            "tableVersion": self.table_version,
        }


class RiskClassifier:
    def __init__(self, table: PhraseTable | None = None):
        self.table = table or load_phrase_table()

    def _match_tier(self, normalized_text: str, level: RiskLevel) -> Tuple[List[str], List[str]]:
        evidence: List[str] = []
        categories: List[str] = []
        for category, phrases in self.table.tiers.get(level, {}).items():
            found = [p for p in phrases if p and _contains(normalized_text, p)]
            if found:
                categories.append(f"{level.label}.{category}")
                evidence.extend(found)
        return evidence, categories

    def _modifiers(self, normalized_text: str) -> List[str]:
        return [
            m for words in self.table.modifiers.values() for m in words if m and _contains(normalized_text, m)
        ]

    def classify(self, text: str) -> RiskAssessment:
        t = normalize(text)
        version = self.table.version
        if not t:
            return RiskAssessment(RiskLevel.NONE, table_version=version)

        evidence, categories = self._match_tier(t, RiskLevel.CRITICAL)
        if categories:
            return RiskAssessment(RiskLevel.CRITICAL, tuple(evidence), tuple(categories), table_version=version)

        # Remaining tiers are collected together so the evidence trail is complete.
        all_evidence: List[str] = []
        all_categories: List[str] = []
        hits: Dict[RiskLevel, bool] = {}
        for level in (RiskLevel.HIGH, RiskLevel.MEDIUM, RiskLevel.LOW):
            ev, cats = self._match_tier(t, level)
            hits[level] = bool(cats)
            all_evidence.extend(ev)
            all_categories.extend(cats)

        if hits[RiskLevel.HIGH]:
            level = RiskLevel.HIGH
            modifiers: List[str] = []
        elif hits[RiskLevel.MEDIUM]:
            modifiers = self._modifiers(t)
            level = RiskLevel.HIGH if modifiers else RiskLevel.MEDIUM
        elif hits[RiskLevel.LOW]:
            level, modifiers = RiskLevel.LOW, []
        else:
            level, modifiers = RiskLevel.NONE, []

        return RiskAssessment(
            level,
            tuple(all_evidence),
            tuple(all_categories),
            tuple(modifiers),
            table_version=version,
        )


@lru_cache(maxsize=1)
def default_classifier() -> RiskClassifier:
    return RiskClassifier()


def classify(text: str) -> RiskAssessment:
    return default_classifier().classify(text)
