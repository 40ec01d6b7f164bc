import pytest
from sqlalchemy.exc import IntegrityError

from intake.conversation.memory import ConversationMemory
from intake.models import Conversation, CrisisEvent, Message, ScreenerResponse
from intake.safety.risk import classify
from intake.screeners.loader import get_screener

def _conversation(db, screener_type="psc17"):
    conv = Conversation(screener_type=screener_type, respondent_role="parent")
    db.add(conv)
    db.flush()
    return conv

def test_sequence_numbers_strictly_increase_without_gaps(db):
    conv = _conversation(db)
    mem = ConversationMemory(db, conv)
    mem.add_assistant_message("hello")
    mem.add_user_message("ready", classify("ready"))
    mem.add_system_message("note")
    mem.add_assistant_message("q1?")
    db.commit()
    seqs = [m.sequence_number for m in db.query(Message).filter(Message.conversation_id == conv.id).order_by(Message.sequence_number)]
    assert seqs == [1, 2, 3, 4]
    assert conv.last_sequence_number == 4

def test_sequence_numbers_are_per_conversation(db):
    a, b = _conversation(db), _conversation(db)
    ConversationMemory(db, a).add_assistant_message("a1")
    ConversationMemory(db, b).add_assistant_message("b1")
    ConversationMemory(db, a).add_assistant_message("a2")
    db.commit()
    assert [m.sequence_number for m in a.messages] == [1, 2]
    assert [m.sequence_number for m in b.messages] == [1]

def test_duplicate_sequence_number_is_rejected(db):
    conv = _conversation(db)
    db.add(Message(conversation_id=conv.id, sequence_number=1, role="user", content="x"))
    db.add(Message(conversation_id=conv.id, sequence_number=1, role="user", content="y"))
    with pytest.raises(IntegrityError):
        db.commit()
    db.rollback()

def test_window_keeps_most_recent_oldest_first(db):
    conv = _conversation(db)
    mem = ConversationMemory(db, conv, window=5)
    for i in range(12):
        mem.add_assistant_message(f"m{i}")
    db.commit()
    window = mem.recent_messages()
    assert [m.content for m in window] == ["m7", "m8", "m9", "m10", "m11"]
    assert mem.to_llm_messages(limit=2) == [
        {"role": "assistant", "content": "m10"},
        {"role": "assistant", "content": "m11"},
    ]
    # older turns stay in storage
    assert db.query(Message).filter(Message.conversation_id == conv.id).count() == 12
    summary = mem.summary()
    assert summary["window_size"] == 5
    assert summary["first_sequence"] == 8
    assert summary["message_count"] == 12

def test_window_skips_incomplete_messages(db):
    conv = _conversation(db)
    mem = ConversationMemory(db, conv)
    mem.add_assistant_message("done")
    mem.add_assistant_message("half a repl", complete=False)
    db.commit()
    assert [m.content for m in mem.recent_messages()] == ["done"]
    assert [m.content for m in mem.presented_messages()] == ["done"]

def test_user_message_carries_risk(db):
    conv = _conversation(db)
    msg = ConversationMemory(db, conv).add_user_message("I feel hopeless", classify("I feel hopeless"))
    db.commit()
    assert msg.risk_level == "medium"
    assert msg.risk_flags["flags"]["has_hopelessness"] is True

def test_record_response_overwrites(db):
    conv = _conversation(db)
    mem = ConversationMemory(db, conv)
    m1 = mem.add_user_message("sometimes", classify("sometimes"))
    mem.record_response("psc17_1", m1, "sometimes", 1, 0.9, "rule_based")
    m2 = mem.add_user_message("actually often", classify("actually often"))
    mem.record_response("psc17_1", m2, "actually often", 2, 0.9, "rule_based")
    db.commit()
    rows = db.query(ScreenerResponse).filter(ScreenerResponse.conversation_id == conv.id).all()
    assert len(rows) == 1
    assert rows[0].extracted_value == 2
    assert rows[0].message_id == m2.id
    assert mem.extracted_responses() == {"psc17_1": 2}

def test_unanswered_questions_in_screener_order(db):
    conv = _conversation(db)
    mem = ConversationMemory(db, conv)
    ids = get_screener("psc17").question_ids
    msg = mem.add_user_message("often", classify("often"))
    for qid in ("psc17_3", "psc17_1"):
        mem.record_response(qid, msg, "often", 2, 0.9, "rule_based")
    db.commit()
    remaining = mem.unanswered_questions(ids)
    assert remaining[:3] == ["psc17_2", "psc17_4", "psc17_5"]
    assert len(remaining) == 15
    # custom order is respected
    assert mem.unanswered_questions(["psc17_9", "psc17_1", "psc17_2"]) == ["psc17_9", "psc17_2"]

def test_progress_and_sync(db):
    conv = _conversation(db, "scared")
    mem = ConversationMemory(db, conv)
    msg = mem.add_user_message("often", classify("often"))
    for qid in get_screener("scared").question_ids:
        mem.record_response(qid, msg, "often", 2, 0.9, "rule_based")
    assert mem.sync_progress() == 5
    p = mem.progress()
    assert p["questionsCompleted"] == 5
    assert p["remainingQuestions"] == 0
    assert p["percent"] == 100
    assert p["nextQuestionId"] is None
    assert mem.unanswered_questions() == []

def test_crisis_events_are_append_only(db):
    conv = _conversation(db)
    msg = ConversationMemory(db, conv).add_user_message("I want to die", classify("I want to die"))
    ev = CrisisEvent(conversation_id=conv.id, message_id=msg.id, risk_level="critical")
    db.add(ev)
    db.commit()
    ev.risk_level = "low"
    with pytest.raises(ValueError):
        db.commit()
    db.rollback()
    db.delete(db.get(CrisisEvent, ev.id))
    with pytest.raises(ValueError):
        db.commit()
    db.rollback()
    assert db.get(CrisisEvent, ev.id).risk_level == "critical"
