from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .core.config import settings
from .core.db import engine, Base
from .core.errors import ConversationNotFound, InvalidTransition, UnknownScreenerError
from .core.logging import configure_logging
from .api.routes.conversations import router as conversations_router
from .api.routes.misc import router as misc_router
from .safety.risk import load_phrase_table
from .screeners.loader import load_screeners

app = FastAPI(title="Conversational Intake Screener", version=settings.API_VERSION)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.exception_handler(ConversationNotFound)
async def _not_found(request: Request, exc: ConversationNotFound):
    return JSONResponse(status_code=404, content={"detail": "Conversation not found"})

@app.exception_handler(InvalidTransition)
async def _invalid_transition(request: Request, exc: InvalidTransition):
    return JSONResponse(status_code=409, content={"detail": str(exc), "state": exc.current})

@app.exception_handler(UnknownScreenerError)
async def _unknown_screener(request: Request, exc: UnknownScreenerError):
    return JSONResponse(status_code=422, content={"detail": str(exc)})

@app.on_event("startup")
def on_startup():
    configure_logging(settings.LOG_LEVEL)
    # static resources load once; a broken definition fails startup, not a turn
    load_screeners()
    load_phrase_table()
    Base.metadata.create_all(bind=engine)

app.include_router(misc_router)
app.include_router(conversations_router)
