"""Bounded conversation history and derived progress for one conversation.

Writes are append-only: every message gets the next per-conversation sequence
number from the conversation's counter, inside the caller's transaction. The
live prompt only ever sees a sliding window of the most recent complete
messages; older turns stay in storage for audit.
"""
from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..core.config import settings
from ..models import Conversation, Message, ScreenerResponse
from ..safety.risk import RiskAssessment
from ..screeners.loader import get_screener
from ..screeners.types import Screener

# Rough characters-per-token ratio used for the prompt size estimate.
CHARS_PER_TOKEN = 4


class ConversationMemory:
    def __init__(self, db: Session, conversation: Conversation, window: int | None = None):
        self.db = db
        self.conversation = conversation
        self.window = window or settings.CONTEXT_WINDOW_MESSAGES

    @property
    def screener(self) -> Screener:
        return get_screener(self.conversation.screener_type)

    # writes

    def _next_sequence(self) -> int:
        self.conversation.last_sequence_number = (self.conversation.last_sequence_number or 0) + 1
        return self.conversation.last_sequence_number

    def _append(self, role: str, content: str, **fields: Any) -> Message:
        msg = Message(
            conversation_id=self.conversation.id,
            sequence_number=self._next_sequence(),
            role=role,
            content=content,
            **fields,
        )
        self.db.add(msg)
        self.conversation.updated_at = datetime.utcnow()
        self.db.flush()
        return msg

    def add_user_message(self, text: str, risk: RiskAssessment) -> Message:
        return self._append(
            "user",
            text,
            risk_level=risk.level.label,
            risk_flags_json=json.dumps(risk.to_dict()),
        )

    def add_assistant_message(
        self,
        content: str,
        extracted: Optional[Dict[str, Any]] = None,
        risk: Optional[RiskAssessment] = None,
        complete: bool = True,
    ) -> Message:
        return self._append(
            "assistant",
            content,
            extracted_json=json.dumps(extracted) if extracted is not None else None,
            risk_flags_json=json.dumps(risk.to_dict()) if risk is not None else None,
            risk_level=risk.level.label if risk is not None else "none",
            is_complete=complete,
        )

    def add_system_message(self, content: str) -> Message:
        return self._append("system", content)

    def record_response(
        self,
        question_id: str,
        message: Message,
        text: str,
        value: int,
        confidence: float,
        method: str,
        rationale: str | None = None,
    ) -> ScreenerResponse:
        """Insert or overwrite the answer for one question."""
        existing = self.db.execute(
            select(ScreenerResponse).where(
                ScreenerResponse.conversation_id == self.conversation.id,
                ScreenerResponse.question_id == question_id,
            )
        ).scalar_one_or_none()
        if existing is None:
            existing = ScreenerResponse(conversation_id=self.conversation.id, question_id=question_id)
            self.db.add(existing)
        existing.message_id = message.id
        existing.response_text = text
        existing.extracted_value = value
        existing.confidence = confidence
        existing.method = method
        existing.rationale = rationale
        existing.updated_at = datetime.utcnow()
        self.db.flush()
        return existing

    # reads

    def recent_messages(self, limit: int | None = None) -> List[Message]:
        limit = limit or self.window
        rows = self.db.execute(
            select(Message)
            .where(Message.conversation_id == self.conversation.id, Message.is_complete.is_(True))
            .order_by(Message.sequence_number.desc())
            .limit(limit)
        ).scalars().all()
        return list(reversed(rows))

    def presented_messages(self) -> List[Message]:
        return list(
            self.db.execute(
                select(Message)
                .where(Message.conversation_id == self.conversation.id, Message.is_complete.is_(True))
                .order_by(Message.sequence_number.asc())
            ).scalars()
        )

    def to_llm_messages(self, limit: int | None = None) -> List[Dict[str, str]]:
        return [{"role": m.role, "content": m.content} for m in self.recent_messages(limit)]

    def estimated_token_count(self, messages: List[Message] | None = None) -> int:
        if messages is None:
            messages = self.recent_messages()
        return sum(len(m.content or "") for m in messages) // CHARS_PER_TOKEN

    def extracted_responses(self) -> Dict[str, int]:
        rows = self.db.execute(
            select(ScreenerResponse.question_id, ScreenerResponse.extracted_value).where(
                ScreenerResponse.conversation_id == self.conversation.id
            )
        ).all()
        return {qid: value for qid, value in rows}

    def responses(self) -> List[ScreenerResponse]:
        order = {qid: i for i, qid in enumerate(self.screener.question_ids)}
        rows = self.db.execute(
            select(ScreenerResponse).where(ScreenerResponse.conversation_id == self.conversation.id)
        ).scalars().all()
        return sorted(rows, key=lambda r: order.get(r.question_id, len(order)))

    def unanswered_questions(self, all_ids: List[str] | None = None) -> List[str]:
        """Question ids without a response, in the order given (screener order by default)."""
        if all_ids is None:
            all_ids = self.screener.question_ids
        answered = set(self.extracted_responses())
        return [qid for qid in all_ids if qid not in answered]

    def sync_progress(self) -> int:
        total = self.screener.total_questions
        answered = total - len(self.unanswered_questions())
        self.conversation.questions_completed = min(answered, total)
        return self.conversation.questions_completed

    def progress(self) -> Dict[str, Any]:
        screener = self.screener
        remaining = self.unanswered_questions(screener.question_ids)
        answered = screener.total_questions - len(remaining)
        return {
            "conversationId": self.conversation.id,
            "screenerType": screener.type.value,
            "state": self.conversation.state,
            "status": self.conversation.status,
            "questionsCompleted": answered,
            "totalQuestions": screener.total_questions,
            "remainingQuestions": len(remaining),
            "percent": round(100 * answered / screener.total_questions),
            "currentQuestionId": self.conversation.current_question_id,
            "nextQuestionId": remaining[0] if remaining else None,
        }

    def summary(self) -> Dict[str, Any]:
        """Window statistics for logging; no message text."""
        window = self.recent_messages()
        return {
            "message_count": self.conversation.last_sequence_number,
            "window_size": len(window),
            "first_sequence": window[0].sequence_number if window else None,
            "last_sequence": window[-1].sequence_number if window else None,
            "estimated_tokens": self.estimated_token_count(window),
        }
