from fastapi import APIRouter
from ...core.config import settings
from ...llm.openai_client import is_configured
from ...llm.prompts import PROMPT_VERSION
from ...safety.risk import load_phrase_table
from ...screeners.loader import load_screeners

router = APIRouter(tags=["misc"])

@router.get("/health")
def health():
    return {"ok": True}

@router.get("/version")
def version():
    return {
        "version": settings.API_VERSION,
        "phraseTableVersion": load_phrase_table().version,
        "promptVersion": PROMPT_VERSION,
        "llmConfigured": is_configured(),
    }

@router.get("/screeners")
def screeners():
    return {
        "items": [
            {
                "type": s.type.value,
                "category": s.type.category,
                "name": s.name,
                "shortName": s.short_name,
                "version": s.version,
                "totalQuestions": s.total_questions,
                "responseOptions": [{"value": o.value, "label": o.label} for o in s.response_options],
            }
            for s in load_screeners().values()
        ]
    }
