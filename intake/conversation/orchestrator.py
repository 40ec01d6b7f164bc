"""Screener conversation state machine.

Every inbound user turn is persisted with its risk classification before
anything else happens. A critical classification pauses the conversation in
any state and answers with fixed safety language; the extractor never sees
that text. Otherwise, while asking, the reply is mapped onto the open
question and the next question is the lowest-order one still unanswered.

Only the reply text touches the language model. When the model fails, the
turn still completes with fixed fallback text and no recorded data is lost.
"""
from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator
from contextlib import aclosing, asynccontextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..core.errors import ConversationNotFound, InvalidTransition, LLMError
from ..llm.composer import (
    build_closing_prompt,
    build_greeting,
    build_messages,
    build_question_prompt,
    build_reask,
    build_system_prompt,
    compose,
    compose_stream,
    options_text,
)
from ..llm.extractor import ExtractionResult, extract
from ..llm.prompts import (
    CLOSING_FALLBACK,
    COMPLETE_ACK,
    FALLBACK_NEXT_QUESTION,
    FALLBACK_REPLY,
    PROMPT_VERSION,
    RESUME_QUESTION,
)
from ..models import Conversation, CrisisEvent, Message
from ..safety.notifier import CrisisNotifier, LoggingCrisisNotifier, should_notify
from ..safety.resources import (
    NEED_HELP_MESSAGE,
    PAUSED_REMINDER,
    PRIMARY_RESOURCES,
    RESUMED_MESSAGE,
    SAFETY_MESSAGE,
    SECONDARY_RESOURCES,
    pivot_type,
)
from ..safety.risk import RiskAssessment, RiskClassifier, RiskLevel, default_classifier
from ..screeners.loader import get_screener
from ..screeners.scoring import score_responses
from ..screeners.types import RespondentRole, ScreenerType
from .memory import ConversationMemory
from .state import ConversationState, transition

logger = logging.getLogger(__name__)

S = ConversationState


class SafetyResponse(str, Enum):
    SAFE = "safe"
    NEED_HELP = "need_help"


class ConversationLocks:
    """One asyncio.Lock per conversation id, dropped once its last holder leaves."""

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._holders: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, conversation_id: str) -> AsyncIterator[None]:
        lock = self._locks.get(conversation_id)
        if lock is None:
            lock = self._locks[conversation_id] = asyncio.Lock()
        self._holders[conversation_id] = self._holders.get(conversation_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._holders[conversation_id] -= 1
            if not self._holders[conversation_id]:
                del self._holders[conversation_id]
                del self._locks[conversation_id]

    def __len__(self) -> int:
        return len(self._locks)


conversation_locks = ConversationLocks()


@dataclass
class TurnResult:
    conversation_id: str
    reply: str
    state: ConversationState
    risk: RiskAssessment
    question_id: Optional[str]
    remaining_questions: int
    extraction: Optional[ExtractionResult] = None
    user_message_id: Optional[str] = None
    assistant_message_id: Optional[str] = None
    used_fallback: bool = False

    @property
    def is_complete(self) -> bool:
        return self.state == S.COMPLETE

    @property
    def show_safety_pivot(self) -> bool:
        return self.state == S.PAUSED_FOR_CRISIS

    @property
    def extracted_value(self) -> Optional[int]:
        return self.extraction.value if self.extraction else None

    def meta(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "state": self.state.value,
            "riskLevel": self.risk.level.label,
            "questionId": self.question_id,
            "extractedValue": self.extracted_value,
            "confidence": self.extraction.confidence if self.extraction else None,
            "method": self.extraction.method.value if self.extraction else None,
            "remainingQuestions": self.remaining_questions,
            "isComplete": self.is_complete,
            "showSafetyPivot": self.show_safety_pivot,
            "usedFallback": self.used_fallback,
        }
        if self.risk.show_resources or self.show_safety_pivot:
            out["pivotType"] = pivot_type(self.risk.level)
            out["resources"] = PRIMARY_RESOURCES
        return out


@dataclass
class StreamChunk:
    text: str
    index: int


@dataclass
class StreamComplete:
    result: TurnResult


StreamEvent = Union[StreamChunk, StreamComplete]


@dataclass
class SafetyConfirmation:
    conversation_id: str
    response: SafetyResponse
    state: ConversationState
    reply: str
    question_id: Optional[str]
    resources: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class _TurnPlan:
    """Everything decided before the reply text is produced."""

    risk: RiskAssessment
    user_message: Message
    extraction: Optional[ExtractionResult] = None
    fixed_reply: Optional[str] = None
    llm_messages: Optional[List[Dict[str, str]]] = None
    fallback_reply: str = FALLBACK_REPLY


class ScreenerOrchestrator:
    def __init__(
        self,
        db: Session,
        classifier: RiskClassifier | None = None,
        notifier: CrisisNotifier | None = None,
        locks: ConversationLocks | None = None,
    ):
        self.db = db
        self.classifier = classifier or default_classifier()
        self.notifier = notifier or LoggingCrisisNotifier()
        self.locks = locks or conversation_locks

    # lifecycle

    def start_conversation(self, screener_type: ScreenerType | str, respondent_role: RespondentRole | str) -> Conversation:
        # both validated before any row is written
        stype = screener_type if isinstance(screener_type, ScreenerType) else ScreenerType.parse(screener_type)
        role = respondent_role if isinstance(respondent_role, RespondentRole) else RespondentRole.parse(respondent_role)
        get_screener(stype)

        conv = Conversation(screener_type=stype.value, respondent_role=role.value, state=S.GREETING.value)
        self.db.add(conv)
        self.db.flush()
        ConversationMemory(self.db, conv).add_assistant_message(build_greeting(stype, role))
        self.db.commit()
        logger.info(
            "CONVERSATION_STARTED",
            extra={"conversation_id": conv.id, "screener_type": stype.value, "respondent_role": role.value},
        )
        return conv

    def get_conversation(self, conversation_id: str) -> Conversation:
        conv = self.db.get(Conversation, conversation_id)
        if conv is None:
            raise ConversationNotFound(conversation_id)
        return conv

    def get_greeting(self, conversation_id: str) -> Dict[str, Any]:
        conv = self.get_conversation(conversation_id)
        screener = get_screener(conv.screener_type)
        return {
            "conversationId": conv.id,
            "greeting": build_greeting(screener.type, RespondentRole(conv.respondent_role)),
            "screenerName": screener.name,
            "totalQuestions": screener.total_questions,
            "instructions": screener.instructions,
        }

    def get_progress(self, conversation_id: str) -> Dict[str, Any]:
        return ConversationMemory(self.db, self.get_conversation(conversation_id)).progress()

    def presented_messages(self, conversation_id: str) -> List[Message]:
        return ConversationMemory(self.db, self.get_conversation(conversation_id)).presented_messages()

    # turn handling

    def _record_crisis_event(self, conv: Conversation, message: Message, risk: RiskAssessment) -> CrisisEvent:
        screener = get_screener(conv.screener_type)
        event = CrisisEvent(
            conversation_id=conv.id,
            message_id=message.id,
            risk_level=risk.level.label,
            evidence_json=json.dumps(list(risk.evidence)),
            matched_categories_json=json.dumps(list(risk.matched_categories)),
            context_json=json.dumps(
                {
                    "screener_type": conv.screener_type,
                    "respondent_role": conv.respondent_role,
                    "state": conv.state,
                    "question_id": conv.current_question_id,
                    "questions_completed": conv.questions_completed,
                    "total_questions": screener.total_questions,
                    "modifiers": list(risk.modifiers),
                    "table_version": risk.table_version,
                }
            ),
            detection_method=risk.detection_method,
        )
        self.db.add(event)
        self.db.flush()
        logger.info(
            "CRISIS_EVENT_RECORDED",
            extra={"conversation_id": conv.id, "crisis_event_id": event.id, "risk_level": risk.level.label},
        )
        return event

    def _question_turn(self, conv: Conversation, memory: ConversationMemory, risk: RiskAssessment, remaining: int):
        question = memory.screener.question(conv.current_question_id)
        system = build_system_prompt(ScreenerType(conv.screener_type), RespondentRole(conv.respondent_role))
        turn = build_question_prompt(question, remaining, risk.level)
        fallback = FALLBACK_REPLY + "\n\n" + FALLBACK_NEXT_QUESTION.format(
            text=question.text, options=options_text(question.screener_type)
        )
        return build_messages(system, memory.to_llm_messages(), turn), fallback

    def _closing_turn(self, conv: Conversation, memory: ConversationMemory, risk: RiskAssessment):
        conv.state = transition(conv.state, S.COMPLETE).value
        conv.current_question_id = None
        logger.info(
            "CONVERSATION_COMPLETED",
            extra={"conversation_id": conv.id, "questions_completed": conv.questions_completed},
        )
        system = build_system_prompt(ScreenerType(conv.screener_type), RespondentRole(conv.respondent_role))
        return build_messages(system, memory.to_llm_messages(), build_closing_prompt(risk.level)), CLOSING_FALLBACK

    async def _prepare(self, conv: Conversation, text: str) -> _TurnPlan:
        memory = ConversationMemory(self.db, conv)
        risk = self.classifier.classify(text)
        user_msg = memory.add_user_message(text, risk)
        logger.info(
            "RISK_CLASSIFIED",
            extra={
                "conversation_id": conv.id,
                "message_id": user_msg.id,
                "risk_level": risk.level.label,
                "matched_categories": ",".join(risk.matched_categories),
                "text_length": len(text),
            },
        )
        plan = _TurnPlan(risk=risk, user_message=user_msg)

        event = self._record_crisis_event(conv, user_msg, risk) if risk.level > RiskLevel.NONE else None

        if risk.requires_safety_pivot:
            previous = conv.state
            conv.state = transition(conv.state, S.PAUSED_FOR_CRISIS).value
            plan.fixed_reply = SAFETY_MESSAGE
            self.db.commit()
            logger.warning(
                "CRISIS_PIVOT",
                extra={"conversation_id": conv.id, "previous_state": previous, "crisis_event_id": event.id},
            )
            self.notifier.notify(conv.id, event.id, risk)
            return plan

        if event is not None and should_notify(risk):
            self.notifier.notify(conv.id, event.id, risk)

        state = S(conv.state)
        if state == S.PAUSED_FOR_CRISIS:
            plan.fixed_reply = PAUSED_REMINDER
        elif state == S.COMPLETE:
            plan.fixed_reply = COMPLETE_ACK
        else:
            if state == S.GREETING:
                # the reply to the greeting starts the questions; it is not an answer
                conv.state = transition(state, S.ASKING).value
                memory.sync_progress()
                unanswered = memory.unanswered_questions()
                if not unanswered:
                    plan.llm_messages, plan.fallback_reply = self._closing_turn(conv, memory, risk)
                else:
                    conv.current_question_id = unanswered[0]
                    plan.llm_messages, plan.fallback_reply = self._question_turn(conv, memory, risk, len(unanswered))
            else:
                await self._asking_turn(conv, memory, plan, text)
        self.db.commit()
        return plan

    async def _asking_turn(self, conv: Conversation, memory: ConversationMemory, plan: _TurnPlan, text: str) -> None:
        memory.sync_progress()
        unanswered = memory.unanswered_questions()
        if not unanswered:
            plan.llm_messages, plan.fallback_reply = self._closing_turn(conv, memory, plan.risk)
            return
        if conv.current_question_id not in unanswered:
            conv.current_question_id = unanswered[0]
        question = memory.screener.question(conv.current_question_id)

        plan.extraction = await extract(text, question)
        if plan.extraction.value is None:
            plan.fixed_reply = build_reask(question)
            return

        memory.record_response(
            question.id,
            plan.user_message,
            text,
            plan.extraction.value,
            plan.extraction.confidence,
            plan.extraction.method.value,
            plan.extraction.rationale,
        )
        memory.sync_progress()
        unanswered = memory.unanswered_questions()
        if not unanswered:
            plan.llm_messages, plan.fallback_reply = self._closing_turn(conv, memory, plan.risk)
            return
        conv.state = transition(conv.state, S.ASKING).value
        conv.current_question_id = unanswered[0]
        plan.llm_messages, plan.fallback_reply = self._question_turn(conv, memory, plan.risk, len(unanswered))

    def _result(self, conv: Conversation, plan: _TurnPlan, reply: str, assistant: Message, used_fallback: bool) -> TurnResult:
        memory = ConversationMemory(self.db, conv)
        logger.info(
            "TURN_COMPLETED",
            extra={
                "conversation_id": conv.id,
                "state": conv.state,
                "risk_level": plan.risk.level.label,
                "prompt_version": PROMPT_VERSION,
                "used_fallback": used_fallback,
                **memory.summary(),
            },
        )
        return TurnResult(
            conversation_id=conv.id,
            reply=reply,
            state=S(conv.state),
            risk=plan.risk,
            question_id=conv.current_question_id,
            remaining_questions=len(memory.unanswered_questions()),
            extraction=plan.extraction,
            user_message_id=plan.user_message.id,
            assistant_message_id=assistant.id,
            used_fallback=used_fallback,
        )

    def _persist_reply(self, conv: Conversation, plan: _TurnPlan, reply: str, complete: bool = True) -> Message:
        memory = ConversationMemory(self.db, conv)
        msg = memory.add_assistant_message(
            reply,
            extracted=plan.extraction.to_dict() if plan.extraction else None,
            risk=plan.risk,
            complete=complete,
        )
        self.db.commit()
        return msg

    async def handle_turn(self, conversation_id: str, text: str) -> TurnResult:
        conv = self.get_conversation(conversation_id)
        async with self.locks.hold(conv.id):
            # another session may have advanced the row while we waited
            self.db.refresh(conv)
            plan = await self._prepare(conv, text)

            used_fallback = False
            if plan.fixed_reply is not None:
                reply = plan.fixed_reply
            else:
                try:
                    reply = await compose(plan.llm_messages)
                except LLMError:
                    logger.warning("LLM_FALLBACK_REPLY", extra={"conversation_id": conv.id})
                    reply, used_fallback = plan.fallback_reply, True

            assistant = self._persist_reply(conv, plan, reply)
            return self._result(conv, plan, reply, assistant, used_fallback)

    async def stream_turn(self, conversation_id: str, text: str) -> AsyncIterator[StreamEvent]:
        """Yield reply chunks in generation order, then one StreamComplete.

        Closing the generator early leaves the assistant message stored with
        ``is_complete=False``; the user message and its risk record are
        already committed by then.
        """
        conv = self.get_conversation(conversation_id)
        async with self.locks.hold(conv.id):
            self.db.refresh(conv)
            plan = await self._prepare(conv, text)

            if plan.fixed_reply is not None:
                assistant = self._persist_reply(conv, plan, plan.fixed_reply)
                yield StreamChunk(plan.fixed_reply, 0)
                yield StreamComplete(self._result(conv, plan, plan.fixed_reply, assistant, False))
                return

            assistant = self._persist_reply(conv, plan, "", complete=False)
            parts: List[str] = []
            used_fallback = False
            try:
                try:
                    async with aclosing(compose_stream(plan.llm_messages)) as stream:
                        async for chunk in stream:
                            parts.append(chunk)
                            yield StreamChunk(chunk, len(parts) - 1)
                except LLMError:
                    logger.warning(
                        "LLM_FALLBACK_REPLY",
                        extra={"conversation_id": conv.id, "stream": True, "chunks_before_failure": len(parts)},
                    )
                    fallback = plan.fallback_reply if not parts else "\n\n" + plan.fallback_reply
                    parts.append(fallback)
                    used_fallback = True
                    yield StreamChunk(fallback, len(parts) - 1)
            except (asyncio.CancelledError, GeneratorExit):
                assistant.content = "".join(parts)
                self.db.commit()
                logger.info(
                    "STREAM_CANCELLED",
                    extra={"conversation_id": conv.id, "message_id": assistant.id, "chunks": len(parts)},
                )
                raise

            reply = "".join(parts).strip()
            assistant.content = reply
            assistant.is_complete = True
            self.db.commit()
            yield StreamComplete(self._result(conv, plan, reply, assistant, used_fallback))

    # safety gate

    async def confirm_safety(self, conversation_id: str, response: SafetyResponse | str) -> SafetyConfirmation:
        choice = SafetyResponse(response)
        conv = self.get_conversation(conversation_id)
        async with self.locks.hold(conv.id):
            self.db.refresh(conv)
            if conv.state != S.PAUSED_FOR_CRISIS.value:
                raise InvalidTransition(conv.state, S.ASKING.value)
            memory = ConversationMemory(self.db, conv)

            if choice == SafetyResponse.NEED_HELP:
                conv.state = transition(conv.state, S.PAUSED_FOR_CRISIS).value
                memory.add_system_message("Safety check: the user asked for help. Screening remains paused.")
                memory.add_assistant_message(NEED_HELP_MESSAGE)
                self.db.commit()
                logger.warning("SAFETY_HELP_REQUESTED", extra={"conversation_id": conv.id})
                return SafetyConfirmation(
                    conv.id,
                    choice,
                    S.PAUSED_FOR_CRISIS,
                    NEED_HELP_MESSAGE,
                    conv.current_question_id,
                    PRIMARY_RESOURCES + SECONDARY_RESOURCES,
                )

            conv.state = transition(conv.state, S.ASKING).value
            memory.add_system_message("Safety check: the user confirmed they are safe. Screening resumed.")
            memory.sync_progress()
            unanswered = memory.unanswered_questions()
            if not unanswered:
                conv.state = transition(conv.state, S.COMPLETE).value
                conv.current_question_id = None
                reply = CLOSING_FALLBACK
            else:
                if conv.current_question_id not in unanswered:
                    conv.current_question_id = unanswered[0]
                question = memory.screener.question(conv.current_question_id)
                reply = RESUMED_MESSAGE + "\n\n" + RESUME_QUESTION.format(
                    text=question.text, options=options_text(question.screener_type)
                )
            memory.add_assistant_message(reply)
            self.db.commit()
            logger.info(
                "CONVERSATION_RESUMED",
                extra={"conversation_id": conv.id, "state": conv.state, "question_id": conv.current_question_id},
            )
            return SafetyConfirmation(conv.id, choice, S(conv.state), reply, conv.current_question_id)

    # read-only views

    def build_summary(self, conversation_id: str) -> Dict[str, Any]:
        conv = self.get_conversation(conversation_id)
        memory = ConversationMemory(self.db, conv)
        screener = memory.screener
        score = score_responses(screener, memory.extracted_responses())
        return {
            "conversationId": conv.id,
            "screenerName": screener.name,
            "screenerVersion": screener.version,
            "status": conv.status,
            "score": score.to_dict(),
            "responses": [
                {
                    "questionId": r.question_id,
                    "questionText": screener.question(r.question_id).text,
                    "value": r.extracted_value,
                    "confidence": r.confidence,
                    "method": r.method,
                }
                for r in memory.responses()
            ],
            "crisisEventCount": len(self._crisis_events(conv.id)),
        }

    def _crisis_events(self, conversation_id: str) -> List[CrisisEvent]:
        return list(
            self.db.execute(
                select(CrisisEvent)
                .where(CrisisEvent.conversation_id == conversation_id)
                .order_by(CrisisEvent.created_at.asc())
            ).scalars()
        )

    def crisis_events(self, conversation_id: str) -> List[Dict[str, Any]]:
        self.get_conversation(conversation_id)
        return [
            {
                "id": e.id,
                "messageId": e.message_id,
                "riskLevel": e.risk_level,
                "evidence": e.evidence,
                "matchedCategories": e.matched_categories,
                "context": e.context,
                "detectionMethod": e.detection_method,
                "createdAt": e.created_at,
            }
            for e in self._crisis_events(conversation_id)
        ]
