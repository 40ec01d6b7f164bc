from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse
from datetime import datetime
import json

from ...core.db import SessionLocal
from ...core.config import settings
from ..deps import get_orchestrator, notifier
from ...models import Conversation, Message
from ..schemas import (
    ConversationCreate, ConversationCreated, ConversationDetail, ConversationOut, MessageOut,
    UserTurnIn, AssistantTurnOut, SafetyResponseIn, SafetyResponseOut,
)
from ...conversation.orchestrator import ScreenerOrchestrator, StreamChunk, StreamComplete, TurnResult
from ...screeners.loader import get_screener

router = APIRouter(prefix="/conversations", tags=["conversations"])

def _iso(dt: datetime) -> str:
    return dt.replace(microsecond=0).isoformat() + "Z"

def _conversation_out(c: Conversation) -> ConversationOut:
    return ConversationOut(
        id=c.id,
        screenerType=c.screener_type,
        respondentRole=c.respondent_role,
        state=c.state,
        status=c.status,
        currentQuestionId=c.current_question_id,
        questionsCompleted=c.questions_completed,
        totalQuestions=get_screener(c.screener_type).total_questions,
        createdAt=_iso(c.created_at),
        updatedAt=_iso(c.updated_at),
    )

def _message_out(m: Message) -> MessageOut:
    return MessageOut(
        id=m.id, sequenceNumber=m.sequence_number, role=m.role, text=m.content,
        riskLevel=m.risk_level, extracted=m.extracted, createdAt=_iso(m.created_at),
    )

def _turn_out(result: TurnResult) -> AssistantTurnOut:
    # include meta optionally (dev)
    meta_out = result.meta() if settings.ALLOW_DEV_DEBUG_META else None
    return AssistantTurnOut(
        conversationId=result.conversation_id,
        messageId=result.assistant_message_id,
        text=result.reply,
        state=result.state.value,
        isComplete=result.is_complete,
        showSafetyPivot=result.show_safety_pivot,
        remainingQuestions=result.remaining_questions,
        meta=meta_out,
    )

def _sse(event: str, data: dict) -> str:
    return f"event: {event}\ndata: {json.dumps(data)}\n\n"

@router.post("", response_model=ConversationCreated)
def create_conversation(payload: ConversationCreate, orch: ScreenerOrchestrator = Depends(get_orchestrator)):
    conv = orch.start_conversation(payload.screenerType, payload.respondentRole)
    greeting = orch.get_greeting(conv.id)["greeting"]
    return ConversationCreated(conversation=_conversation_out(conv), greeting=greeting)

@router.get("/{conversation_id}", response_model=ConversationDetail)
def conversation_detail(conversation_id: str, orch: ScreenerOrchestrator = Depends(get_orchestrator)):
    conv = orch.get_conversation(conversation_id)
    msgs = orch.presented_messages(conversation_id)
    return ConversationDetail(conversation=_conversation_out(conv), messages=[_message_out(m) for m in msgs])

@router.get("/{conversation_id}/greeting")
def greeting(conversation_id: str, orch: ScreenerOrchestrator = Depends(get_orchestrator)):
    return orch.get_greeting(conversation_id)

@router.get("/{conversation_id}/progress")
def progress(conversation_id: str, orch: ScreenerOrchestrator = Depends(get_orchestrator)):
    return orch.get_progress(conversation_id)

@router.post("/{conversation_id}/messages", response_model=AssistantTurnOut)
async def post_message(conversation_id: str, payload: UserTurnIn, orch: ScreenerOrchestrator = Depends(get_orchestrator)):
    text = payload.message.strip()
    if not text:
        raise HTTPException(status_code=422, detail="message required")
    result = await orch.handle_turn(conversation_id, text)
    return _turn_out(result)

@router.post("/{conversation_id}/messages/stream")
async def post_message_stream(conversation_id: str, payload: UserTurnIn, orch: ScreenerOrchestrator = Depends(get_orchestrator)):
    text = payload.message.strip()
    if not text:
        raise HTTPException(status_code=422, detail="message required")
    # 404 before the response starts
    orch.get_conversation(conversation_id)

    async def events():
        # request-scoped session may already be closed while the body streams
        db = SessionLocal()
        try:
            stream_orch = ScreenerOrchestrator(db, notifier=notifier)
            async for ev in stream_orch.stream_turn(conversation_id, text):
                if isinstance(ev, StreamChunk):
                    yield _sse("chunk", {"index": ev.index, "text": ev.text})
                elif isinstance(ev, StreamComplete):
                    yield _sse("complete", _turn_out(ev.result).model_dump())
        finally:
            db.close()

    return StreamingResponse(events(), media_type="text/event-stream", headers={"Cache-Control": "no-cache"})

@router.post("/{conversation_id}/safety-response", response_model=SafetyResponseOut)
async def safety_response(conversation_id: str, payload: SafetyResponseIn, orch: ScreenerOrchestrator = Depends(get_orchestrator)):
    res = await orch.confirm_safety(conversation_id, payload.response)
    return SafetyResponseOut(
        conversationId=res.conversation_id,
        state=res.state.value,
        text=res.reply,
        currentQuestionId=res.question_id,
        resources=res.resources,
    )

@router.get("/{conversation_id}/summary")
def summary(conversation_id: str, orch: ScreenerOrchestrator = Depends(get_orchestrator)):
    return orch.build_summary(conversation_id)

@router.get("/{conversation_id}/crisis-events")
def crisis_events(conversation_id: str, orch: ScreenerOrchestrator = Depends(get_orchestrator)):
    events = orch.crisis_events(conversation_id)
    return {"conversationId": conversation_id, "items": [{**e, "createdAt": _iso(e["createdAt"])} for e in events]}
