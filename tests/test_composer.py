import pytest
from intake.llm import composer
from intake.llm.composer import (
    build_closing_prompt, build_greeting, build_messages, build_question_prompt, build_reask,
    build_system_prompt, options_text,
)
from intake.llm.prompts import SAFETY_INSTRUCTIONS
from intake.safety.risk import RiskLevel
from intake.screeners.loader import get_screener
from intake.screeners.types import RespondentRole, ScreenerType

@pytest.mark.parametrize("stype", list(ScreenerType))
@pytest.mark.parametrize("role", list(RespondentRole))
def test_system_prompt_always_has_safety_clause(stype, role):
    p = build_system_prompt(stype, role)
    assert SAFETY_INSTRUCTIONS.strip() in p
    assert p == build_system_prompt(stype, role)

def test_role_changes_framing():
    minor = build_system_prompt(ScreenerType.PSC17, RespondentRole.MINOR)
    parent = build_system_prompt(ScreenerType.PSC17, RespondentRole.PARENT)
    friend = build_system_prompt(ScreenerType.PSC17, RespondentRole.FRIEND)
    assert '"you" language' in minor
    assert '"your child"' in parent
    assert '"your friend"' in friend
    assert len({minor, parent, friend}) == 3

def test_screener_changes_framing():
    assert "PHQ-9A" in build_system_prompt(ScreenerType.PHQ9A, RespondentRole.MINOR)
    assert "PSC-17" in build_system_prompt(ScreenerType.PSC17, RespondentRole.MINOR)

def test_question_prompt_has_text_and_ordinal():
    screener = get_screener(ScreenerType.PSC17)
    q = screener.questions[3]
    p = build_question_prompt(q, remaining_count=14)
    assert "Question 4 of 17" in p
    assert q.text in p
    assert "0 = Never, 1 = Sometimes, 2 = Often" in p
    assert "nearing the end" not in p
    assert "Risk Guidance" not in p

def test_question_prompt_near_end_and_risk():
    q = get_screener(ScreenerType.SCARED).questions[-1]
    p = build_question_prompt(q, remaining_count=1, risk_level=RiskLevel.HIGH)
    assert "nearing the end" in p
    assert "988" in p

def test_closing_prompt():
    assert "All questions have been answered" in build_closing_prompt()
    assert "Risk Guidance" in build_closing_prompt(RiskLevel.MEDIUM)

def test_greeting_and_reask_are_fixed_text():
    g = build_greeting(ScreenerType.PHQ9A, RespondentRole.MINOR)
    assert "mood and feelings check-in" in g
    assert "best support you." in g
    q = get_screener(ScreenerType.PSC17).questions[0]
    r = build_reask(q)
    assert q.text in r
    assert options_text(ScreenerType.PSC17) == "Never, Sometimes, or Often"
    assert options_text(ScreenerType.PSC17) in r

def test_build_messages_order():
    history = [{"role": "user", "content": "hi"}]
    msgs = build_messages("SYS", history, "TURN")
    assert msgs[0] == {"role": "system", "content": "SYS"}
    assert msgs[1] == history[0]
    assert msgs[-1] == {"role": "system", "content": "TURN"}

@pytest.mark.asyncio
async def test_compose_passes_chat_settings(monkeypatch):
    seen = {}
    async def fake_chat_completion(messages, temperature=0.2, response_format=None, model=None, max_tokens=None):
        seen.update(temperature=temperature, max_tokens=max_tokens)
        return "  Hello there.  "
    monkeypatch.setattr(composer, "chat_completion", fake_chat_completion)
    assert await composer.compose([{"role": "system", "content": "x"}]) == "Hello there."
    assert seen == {"temperature": 0.4, "max_tokens": 500}
