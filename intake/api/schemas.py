from pydantic import BaseModel, Field
from typing import Optional, Dict, Any, List, Literal

class ConversationCreate(BaseModel):
    screenerType: str
    respondentRole: str = "parent"

class MessageOut(BaseModel):
    id: str
    sequenceNumber: int
    role: str
    text: str
    riskLevel: str
    extracted: Optional[dict] = None
    createdAt: str

class ConversationOut(BaseModel):
    id: str
    screenerType: str
    respondentRole: str
    state: str
    status: str
    currentQuestionId: Optional[str] = None
    questionsCompleted: int
    totalQuestions: int
    createdAt: str
    updatedAt: str

class ConversationCreated(BaseModel):
    conversation: ConversationOut
    greeting: str

class ConversationDetail(BaseModel):
    conversation: ConversationOut
    messages: List[MessageOut]

class UserTurnIn(BaseModel):
    message: str = Field(min_length=1, max_length=4000)

class AssistantTurnOut(BaseModel):
    conversationId: str
    messageId: Optional[str] = None
    text: str
    state: str
    isComplete: bool
    showSafetyPivot: bool
    remainingQuestions: int
    meta: Optional[Dict[str, Any]] = None

class SafetyResponseIn(BaseModel):
    response: Literal["safe", "need_help"]

class SafetyResponseOut(BaseModel):
    conversationId: str
    state: str
    text: str
    currentQuestionId: Optional[str] = None
    resources: List[Dict[str, Any]] = []
