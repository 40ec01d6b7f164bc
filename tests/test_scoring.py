import pytest
from intake.core.errors import UnknownScreenerError
from intake.screeners.loader import get_screener, load_screeners
from intake.screeners.scoring import score_responses
from intake.screeners.types import ScreenerType

def test_definitions_load():
    screeners = load_screeners()
    assert set(screeners) == set(ScreenerType)
    assert get_screener("psc17").total_questions == 17
    assert get_screener("phq9a").total_questions == 9
    assert get_screener("scared").total_questions == 5
    assert [q.order for q in get_screener("psc17").questions] == list(range(1, 18))
    assert get_screener("phq9a").max_value == 3

def test_screener_categories():
    assert ScreenerType.PSC17.category == "broadband"
    assert ScreenerType.PHQ9A.category == "mood"
    assert ScreenerType.SCARED.category == "anxiety_specific"

@pytest.mark.parametrize("bad", ["gad7", "", "PSC-17"])
def test_unknown_screener(bad):
    with pytest.raises(UnknownScreenerError):
        get_screener(bad)

def test_psc17_subscales_and_cutoff():
    s = get_screener("psc17")
    values = {q.id: 0 for q in s.questions}
    for q in s.questions:
        if q.subscale == "internalizing":
            values[q.id] = 1
    res = score_responses(s, values)
    assert res.total_score == 5
    assert res.is_final
    internalizing = next(x for x in res.subscales if x.name == "internalizing")
    assert internalizing.score == 5 and internalizing.positive
    # a positive subscale makes the screen positive even under the total cutoff
    assert res.positive
    assert res.max_score == 34

def test_partial_score_is_not_final():
    s = get_screener("psc17")
    res = score_responses(s, {"psc17_1": 2, "psc17_2": 1, "unknown_q": 2})
    assert res.answered == 2
    assert res.total_score == 3
    assert not res.is_final
    assert not res.positive

def test_phq9a_bands_and_safety_item():
    s = get_screener("phq9a")
    values = {q.id: 2 for q in s.questions}
    values["phq9a_9"] = 1
    res = score_responses(s, values)
    assert res.total_score == 17
    assert res.severity == "moderately_severe"
    assert res.positive
    assert res.safety_flags == ["phq9a_9"]
    d = res.to_dict()
    assert d["severityLabel"] == "Moderately severe depression"
    assert d["safetyFlags"] == ["phq9a_9"]

def test_scared_minimal_is_negative():
    s = get_screener("scared")
    res = score_responses(s, {q.id: 0 for q in s.questions})
    assert res.severity == "minimal"
    assert not res.positive
