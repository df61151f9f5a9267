"""FastAPI backend for multi-model homework answers."""

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field
from typing import List, Dict, Any, Optional, Literal
import uuid
import asyncio

from . import storage
from .orchestrator import AnswerOrchestrator, stream_answers
from .titles import generate_session_title
from .config import (
    AVAILABLE_MODELS,
    REASONING_TIERS,
    DEFAULT_TIER,
    EFFORT_LEVELS,
    LANGUAGES,
    MAX_HISTORY_TURNS,
    MAX_CHARS_PER_TURN,
)

app = FastAPI(title="Homework Helper API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Cancel signals of the answer streams currently in flight, by request id
_active_streams: Dict[str, asyncio.Event] = {}


class AskRequest(BaseModel):
    question: str = ""
    images: List[str] = []
    pdfs: List[str] = []
    models: List[str] = []
    language: Literal["Chinese", "English"] = "Chinese"
    history: List[Any] = []
    session_id: Optional[str] = Field(default=None, alias="sessionId")


class TitleRequest(BaseModel):
    question: str = ""
    session_id: Optional[str] = Field(default=None, alias="sessionId")


class CreateSessionRequest(BaseModel):
    pass


class SessionMetadata(BaseModel):
    id: str
    created_at: str
    title: str
    turn_count: int


class Session(BaseModel):
    id: str
    created_at: str
    title: str
    turns: List[Dict[str, Any]]


def _record_turn(request: AskRequest, orchestrator: AnswerOrchestrator):
    if not request.session_id or storage.get_session(request.session_id) is None:
        return
    answers = orchestrator.completed_answers()
    if not answers:
        return
    storage.add_turn(request.session_id, request.question, request.images, answers)


@app.get("/")
async def root():
    return {"status": "ok", "service": "Homework Helper API"}


@app.get("/api/models")
async def list_models():
    return {
        "available_models": AVAILABLE_MODELS,
        "reasoning_tiers": REASONING_TIERS,
        "default_tier": DEFAULT_TIER,
        "default_models": REASONING_TIERS[DEFAULT_TIER],
        "effort_levels": EFFORT_LEVELS,
        "languages": LANGUAGES,
        "max_history_turns": MAX_HISTORY_TURNS,
        "max_chars_per_turn": MAX_CHARS_PER_TURN,
    }


@app.post("/api/ask")
async def ask(request: AskRequest):
    """Stream answers from every selected model as Server-Sent Events."""
    if not request.question and not request.images and not request.pdfs:
        raise HTTPException(status_code=400, detail="No question or images provided")
    if not request.models:
        raise HTTPException(status_code=400, detail="No models selected")

    history = request.history
    if request.session_id and not history:
        history = storage.get_history(request.session_id)

    print(
        f"[Ask API] Processing request. Language: {request.language}, "
        f"Models: {', '.join(request.models)}, Images: {len(request.images)}, "
        f"PDFs: {len(request.pdfs)}, History turns: {len(history)}"
    )

    request_id = str(uuid.uuid4())
    cancel_event = asyncio.Event()
    orchestrator = AnswerOrchestrator(
        request.question,
        request.images,
        request.pdfs,
        request.models,
        language=request.language,
        history=history,
        cancel_event=cancel_event,
    )

    async def event_generator():
        _active_streams[request_id] = cancel_event
        try:
            async for frame in stream_answers(orchestrator):
                yield frame
        finally:
            _active_streams.pop(request_id, None)
            _record_turn(request, orchestrator)

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive", "X-Request-Id": request_id}
    )


@app.post("/api/ask/{request_id}/cancel")
async def cancel_ask(request_id: str):
    cancel_event = _active_streams.get(request_id)
    if cancel_event is None:
        raise HTTPException(status_code=404, detail="Stream not found")
    cancel_event.set()
    return {"status": "cancelled"}


@app.post("/api/generate-title")
async def generate_title(request: TitleRequest):
    if not request.question.strip():
        raise HTTPException(status_code=400, detail="No question provided")
    try:
        title = await generate_session_title(request.question)
    except Exception as e:
        print(f"Generate title error: {e}")
        raise HTTPException(status_code=500, detail=str(e))

    if title and request.session_id and storage.get_session(request.session_id) is not None:
        storage.update_session_title(request.session_id, title)
    return {"title": title}


@app.get("/api/sessions", response_model=List[SessionMetadata])
async def list_sessions():
    return storage.list_sessions()


@app.post("/api/sessions", response_model=Session)
async def create_session(request: CreateSessionRequest):
    session_id = str(uuid.uuid4())
    return storage.create_session(session_id)


@app.get("/api/sessions/{session_id}", response_model=Session)
async def get_session(session_id: str):
    session = storage.get_session(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return session


@app.delete("/api/sessions/{session_id}")
async def delete_session(session_id: str):
    try:
        storage.delete_session(session_id)
        return {"status": "deleted"}
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("backend.main:app", host="0.0.0.0", port=8001, reload=True)
