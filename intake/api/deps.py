from fastapi import Depends
from sqlalchemy.orm import Session
from ..core.db import get_db
from ..conversation.orchestrator import ScreenerOrchestrator
from ..safety.notifier import LoggingCrisisNotifier

notifier = LoggingCrisisNotifier()

def get_orchestrator(db: Session = Depends(get_db)) -> ScreenerOrchestrator:
    return ScreenerOrchestrator(db, notifier=notifier)
