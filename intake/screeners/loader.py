import os
from functools import lru_cache
from typing import Any, Dict

import yaml

from ..core.errors import UnknownScreenerError
from .types import Question, ResponseOption, Screener, ScreenerType

DEFINITIONS_DIR = os.path.join(os.path.dirname(__file__), "definitions")


def _build(stype: ScreenerType, data: Dict[str, Any]) -> Screener:
    options = tuple(
        ResponseOption(
            value=int(o["value"]),
            label=str(o["label"]),
            phrases=tuple(str(p).lower() for p in o.get("phrases", [])),
        )
        for o in data["response_options"]
    )
    questions = tuple(
        sorted(
            (
                Question(
                    id=str(q["id"]),
                    order=int(q["order"]),
                    text=str(q["text"]),
                    screener_type=stype,
                    subscale=q.get("subscale"),
                    safety_item=bool(q.get("safety_item", False)),
                )
                for q in data["questions"]
            ),
            key=lambda q: q.order,
        )
    )
    return Screener(
        type=stype,
        version=str(data.get("version", "")),
        name=data["name"],
        short_name=data.get("short_name", data["name"]),
        greeting_label=data.get("greeting_label", "wellness check"),
        instructions=data.get("instructions", ""),
        response_options=options,
        questions=questions,
        scoring=data.get("scoring", {}) or {},
    )


@lru_cache(maxsize=1)
def load_screeners() -> Dict[ScreenerType, Screener]:
    out: Dict[ScreenerType, Screener] = {}
    for fn in sorted(os.listdir(DEFINITIONS_DIR)):
        if fn.endswith(".yaml") or fn.endswith(".yml"):
            path = os.path.join(DEFINITIONS_DIR, fn)
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
            stype = ScreenerType.parse(data["id"])
            out[stype] = _build(stype, data)
    missing = set(ScreenerType) - set(out)
    if missing:
        raise UnknownScreenerError(f"no definition for screener(s): {sorted(m.value for m in missing)}")
    return out


def get_screener(screener_type: ScreenerType | str) -> Screener:
    if not isinstance(screener_type, ScreenerType):
        screener_type = ScreenerType.parse(screener_type)
    return load_screeners()[screener_type]
