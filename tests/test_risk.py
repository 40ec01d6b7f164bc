import dataclasses

import pytest
from intake.safety.risk import PhraseTable, RiskClassifier, RiskLevel, classify, load_phrase_table, normalize
from intake.safety.notifier import should_notify
from intake.safety.resources import pivot_type

@pytest.mark.parametrize("text", [
    "I want to kill myself",
    "i want to die but i guess i'm just sad",
    "Sometimes I think about suicide, I feel hopeless every day",
    "I've been cutting myself and I'm being abused",
    "KILL MYSELF!!!",
    "I keep punching walls",
    "I'm going to hurt someone tonight",
])
def test_critical_phrases_short_circuit(text):
    a = classify(text)
    assert a.level == RiskLevel.CRITICAL
    assert a.requires_safety_pivot
    assert all(c.startswith("critical.") for c in a.matched_categories)

def test_medium_plus_modifier_escalates_to_high():
    a = classify("I feel hopeless every day")
    assert a.level == RiskLevel.HIGH
    assert "every day" in a.modifiers
    assert "medium.hopelessness" in a.matched_categories

@pytest.mark.parametrize("text", [
    "I feel worthless, always",
    "I am going to be a burden",
    "I've felt all alone lately",
])
def test_each_modifier_kind_escalates(text):
    assert classify(text).level == RiskLevel.HIGH

def test_medium_without_modifier_stays_medium():
    a = classify("I feel hopeless")
    assert a.level == RiskLevel.MEDIUM
    assert a.modifiers == ()

def test_high_and_medium_without_modifiers_resolves_high():
    a = classify("I can't go on and I feel worthless")
    assert a.level == RiskLevel.HIGH
    assert "high.severe_distress" in a.matched_categories
    assert "medium.worthlessness" in a.matched_categories

def test_low_only():
    a = classify("I feel sad sometimes")
    assert a.level == RiskLevel.LOW
    assert a.evidence == ("sad",)

def test_low_is_not_escalated_by_modifiers():
    assert classify("I feel sad every day").level == RiskLevel.LOW

@pytest.mark.parametrize("text", ["", "   ", "Often", "my dog likes the burdensome stick", "asdkfj random text"])
def test_no_match_is_none(text):
    a = classify(text)
    assert a.level == RiskLevel.NONE
    assert a.evidence == ()

def test_normalize():
    assert normalize("  I CAN'T   take it...anymore!! ") == "i cant take it anymore"
    assert normalize(None) == ""

def test_classify_is_deterministic():
    text = "I can't take it anymore, I'm worthless and nobody to talk to"
    assert classify(text) == classify(text)

def test_table_substitution():
    table = PhraseTable.from_dict({
        "version": "test-1",
        "tiers": {"critical": {"custom": ["red balloon"]}, "low": {"meh": ["meh"]}},
        "modifiers": {},
    })
    c = RiskClassifier(table)
    assert c.classify("the red balloon").level == RiskLevel.CRITICAL
    assert c.classify("meh").level == RiskLevel.LOW
    assert c.classify("I want to kill myself").level == RiskLevel.NONE
    assert c.classify("meh").table_version == "test-1"

def test_phrase_table_is_immutable():
    table = load_phrase_table()
    assert table.version
    with pytest.raises(TypeError):
        table.tiers[RiskLevel.CRITICAL]["suicide"] = ("nope",)
    with pytest.raises(dataclasses.FrozenInstanceError):
        table.version = "x"

def test_flags_and_notify_policy():
    critical = classify("I want to kill myself")
    assert critical.flags["has_suicide_ideation"]
    assert should_notify(critical)
    self_harm = classify("sometimes I want to hurt myself")
    assert self_harm.level == RiskLevel.HIGH
    assert should_notify(self_harm)
    assert not should_notify(classify("I can't go on"))
    assert not should_notify(classify("I feel hopeless"))

def test_pivot_type():
    assert pivot_type(RiskLevel.CRITICAL) == "full_screen"
    assert pivot_type(RiskLevel.HIGH) == "overlay"
    assert pivot_type(RiskLevel.LOW) == "inline"
