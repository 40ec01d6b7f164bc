import json
import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Index, Integer, String, Text, UniqueConstraint, event, inspect
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .core.db import Base


def _uuid() -> str:
    return str(uuid.uuid4())


def _loads(raw: str | None, default: Any) -> Any:
    if not raw:
        return default
    return json.loads(raw)


class Conversation(Base):
    __tablename__ = "conversations"
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    screener_type: Mapped[str] = mapped_column(String(20), index=True)  # psc17/phq9a/scared
    respondent_role: Mapped[str] = mapped_column(String(20), default="parent")  # minor/parent/friend
    # state machine: greeting/asking/paused_for_crisis/complete
    state: Mapped[str] = mapped_column(String(30), default="greeting", index=True)
    current_question_id: Mapped[str | None] = mapped_column(String(40), nullable=True)
    questions_completed: Mapped[int] = mapped_column(Integer, default=0)
    last_sequence_number: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)

    messages: Mapped[list["Message"]] = relationship(
        back_populates="conversation", cascade="all, delete-orphan", order_by="Message.sequence_number"
    )
    responses: Mapped[list["ScreenerResponse"]] = relationship(
        back_populates="conversation", cascade="all, delete-orphan"
    )
    # no cascade: crisis events outlive conversation archival
    crisis_events: Mapped[list["CrisisEvent"]] = relationship(back_populates="conversation")

    @property
    def status(self) -> str:
        if self.state in ("greeting", "asking"):
            return "active"
        return self.state


class Message(Base):
    __tablename__ = "messages"
    __table_args__ = (UniqueConstraint("conversation_id", "sequence_number", name="uq_messages_conversation_sequence"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    conversation_id: Mapped[str] = mapped_column(String(36), ForeignKey("conversations.id", ondelete="CASCADE"), index=True)
    sequence_number: Mapped[int] = mapped_column(Integer)
    role: Mapped[str] = mapped_column(String(20))  # user/assistant/system
    content: Mapped[str] = mapped_column(Text, default="")
    extracted_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    risk_flags_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    risk_level: Mapped[str] = mapped_column(String(20), default="none")
    # false only while an assistant reply is streaming, or when that stream was cancelled
    is_complete: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)

    conversation: Mapped["Conversation"] = relationship(back_populates="messages")

    @property
    def extracted(self) -> dict | None:
        return _loads(self.extracted_json, None)

    @property
    def risk_flags(self) -> dict:
        return _loads(self.risk_flags_json, {})


class ScreenerResponse(Base):
    __tablename__ = "screener_responses"
    __table_args__ = (UniqueConstraint("conversation_id", "question_id", name="uq_responses_conversation_question"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    conversation_id: Mapped[str] = mapped_column(String(36), ForeignKey("conversations.id", ondelete="CASCADE"), index=True)
    message_id: Mapped[str] = mapped_column(String(36), ForeignKey("messages.id"), index=True)
    question_id: Mapped[str] = mapped_column(String(40))
    response_text: Mapped[str] = mapped_column(Text)
    extracted_value: Mapped[int] = mapped_column(Integer)
    confidence: Mapped[float] = mapped_column(Float, default=0.0)
    method: Mapped[str] = mapped_column(String(20))  # model/rule_based
    rationale: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    conversation: Mapped["Conversation"] = relationship(back_populates="responses")


class CrisisEvent(Base):
    __tablename__ = "crisis_events"
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    conversation_id: Mapped[str] = mapped_column(String(36), ForeignKey("conversations.id"), index=True)
    message_id: Mapped[str] = mapped_column(String(36), ForeignKey("messages.id"), index=True)
    risk_level: Mapped[str] = mapped_column(String(20), index=True)
    evidence_json: Mapped[str] = mapped_column(Text, default="[]")
    matched_categories_json: Mapped[str] = mapped_column(Text, default="[]")
    context_json: Mapped[str] = mapped_column(Text, default="{}")
    detection_method: Mapped[str] = mapped_column(String(20), default="keyword")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)

    conversation: Mapped["Conversation"] = relationship(back_populates="crisis_events")

    @property
    def evidence(self) -> list:
        return _loads(self.evidence_json, [])

    @property
    def matched_categories(self) -> list:
        return _loads(self.matched_categories_json, [])

    @property
    def context(self) -> dict:
        return _loads(self.context_json, {})


@event.listens_for(CrisisEvent, "before_update")
def _crisis_event_is_immutable(mapper, connection, target):
    state = inspect(target)
    changed = [a.key for a in mapper.column_attrs if state.attrs[a.key].history.has_changes()]
    if changed:
        raise ValueError(f"crisis events are append-only (attempted change: {changed})")


@event.listens_for(CrisisEvent, "before_delete")
def _crisis_event_is_permanent(mapper, connection, target):
    raise ValueError("crisis events cannot be deleted")


Index("ix_crisis_events_conversation_created", CrisisEvent.conversation_id, CrisisEvent.created_at)
