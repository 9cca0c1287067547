"""
Nexus Scheduling Agent - FastAPI Backend
Chat, approvals, detector recommendations and knowledge management over HTTP
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import List, Optional

from fastapi import Depends, FastAPI, File, HTTPException, Query, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ai_client import AIClient
from calendar_client import GoogleCalendarClient
from canvas_client import CanvasClient
from clock import build_clock
from config import (
    get_canvas_config, get_config_summary, get_database_url,
    get_knowledge_config, get_schedule_config
)
from database import Database, InMemoryStore, PostgresStore
from errors import (
    DocumentRejected, IllegalTransition, MessageNotFound, NexusError,
    ProviderConnectionError, ProviderError, RecommendationNotFound
)
from fetch_coordinator import FetchCoordinator
from file_handler import format_size, ingest_document
from logger import setup_logger
from models import ChatRequest, ChatResponse, ContextHints, KnowledgeSearchRequest, Message, SettingUpdate
from normalizer import filter_course_items_from_month
from orchestrator import COURSE_ITEMS_KEY, Orchestrator
from retrieval import RetrievalIndex
from settings_manager import SettingsManager

logger = logging.getLogger(__name__)

VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    setup_logger()
    schedule = get_schedule_config()
    knowledge = get_knowledge_config()

    # Startup
    db = None
    database_url = get_database_url()
    if database_url:
        db = Database(database_url)
        await db.connect()
        store = PostgresStore(db)
        await store.initialize()
    else:
        logger.warning("DATABASE_URL not set; session state lives in memory only")
        store = InMemoryStore()

    clock = build_clock(schedule.timezone, schedule.fixed_today)
    ai = AIClient()
    calendar = GoogleCalendarClient()
    canvas = CanvasClient() if get_canvas_config().base_url else None

    orchestrator = Orchestrator(
        calendar=calendar,
        completion=ai,
        retrieval=RetrievalIndex(ai, store, cache_key=knowledge.cache_key),
        fetcher=FetchCoordinator(clock, store, default_ttl=schedule.fetch_cache_ttl_seconds),
        clock=clock,
        config=schedule,
        courses=canvas,
        store=store,
        top_k=knowledge.top_k,
    )
    await orchestrator.load_session()
    app.state.orchestrator = orchestrator

    logger.info(f"Server started (version {VERSION})")
    yield
    # Shutdown
    logger.info("Server shutting down")
    await calendar.close()
    await ai.close()
    if canvas is not None:
        await canvas.close()
    if db is not None:
        await db.disconnect()


app = FastAPI(
    title="Nexus Scheduling Agent",
    description="Conversational scheduling assistant for MBA students",
    version=VERSION,
    lifespan=lifespan
)

# CORS for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://127.0.0.1:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_orchestrator(request: Request) -> Orchestrator:
    return request.app.state.orchestrator


def status_for(error: NexusError) -> int:
    if isinstance(error, IllegalTransition):
        return 409
    if isinstance(error, (MessageNotFound, RecommendationNotFound)):
        return 404
    if isinstance(error, DocumentRejected):
        return 400
    if isinstance(error, ProviderConnectionError):
        return 503
    if isinstance(error, ProviderError):
        return 502
    return 500


@app.exception_handler(NexusError)
async def nexus_error_handler(request: Request, exc: NexusError):
    status_code = status_for(exc)
    headers = {"Retry-After": "5"} if status_code == 503 else None
    if status_code >= 500:
        logger.warning(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(
        status_code=status_code,
        content={"detail": str(exc), "next_step": exc.next_step},
        headers=headers,
    )


# ============================================
# HEALTH & STATUS
# ============================================

@app.get("/health")
@app.get("/api/health")
async def health_check(orchestrator: Orchestrator = Depends(get_orchestrator)):
    """Report knowledge readiness and the course fetch state."""
    return {
        "status": "healthy",
        "version": VERSION,
        "knowledge_ready": orchestrator.retrieval.is_ready,
        "knowledge_version": orchestrator.retrieval.version,
        "now": orchestrator.now().isoformat(),
        "canvas": orchestrator.fetcher.get_state(COURSE_ITEMS_KEY).model_dump(mode="json"),
    }


@app.get("/api/config")
async def config_summary():
    return get_config_summary()


@app.get("/api/ai/test")
async def test_ai_connection(orchestrator: Orchestrator = Depends(get_orchestrator)):
    """Check the configured AI service answers."""
    return await orchestrator.completion.test_connection()


# ============================================
# CONVERSATION
# ============================================

@app.post("/api/chat", response_model=ChatResponse)
async def chat(request: ChatRequest, orchestrator: Orchestrator = Depends(get_orchestrator)):
    """Send a user message; returns the user message and the reply."""
    messages = await orchestrator.send_message(request.message)
    return ChatResponse(messages=messages)


@app.get("/api/messages", response_model=List[Message])
async def list_messages(orchestrator: Orchestrator = Depends(get_orchestrator)):
    return orchestrator.messages


@app.post("/api/actions/{message_id}/approve", response_model=ChatResponse)
async def approve_action(message_id: str, orchestrator: Orchestrator = Depends(get_orchestrator)):
    """Apply a pending action. Failures come back as a message, the action stays pending."""
    return ChatResponse(messages=await orchestrator.approve(message_id))


@app.post("/api/actions/{message_id}/reject", response_model=ChatResponse)
async def reject_action(message_id: str, orchestrator: Orchestrator = Depends(get_orchestrator)):
    return ChatResponse(messages=await orchestrator.reject(message_id))


@app.get("/api/memory")
async def get_memory(orchestrator: Orchestrator = Depends(get_orchestrator)):
    return orchestrator.memory


@app.delete("/api/session")
async def reset_session(orchestrator: Orchestrator = Depends(get_orchestrator)):
    """Clear the conversation and its memory."""
    await orchestrator.reset()
    return {"success": True}


# ============================================
# SCHEDULE & RECOMMENDATIONS
# ============================================

@app.get("/api/recommendations")
async def list_recommendations(
    force: bool = False,
    orchestrator: Orchestrator = Depends(get_orchestrator)
):
    return await orchestrator.scan(force=force)


@app.post("/api/recommendations/{recommendation_id}/accept", response_model=Message)
async def accept_recommendation(recommendation_id: str, orchestrator: Orchestrator = Depends(get_orchestrator)):
    """Turn a recommendation into a pending action message."""
    return await orchestrator.accept_recommendation(recommendation_id)


@app.get("/api/events")
async def list_events(
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    force: bool = False,
    orchestrator: Orchestrator = Depends(get_orchestrator)
):
    """Normalized events; defaults to the current week."""
    default_start, default_end = orchestrator.default_window()
    start = start or default_start
    end = end or default_end
    if start.tzinfo is None:
        start = start.replace(tzinfo=orchestrator.tz)
    if end.tzinfo is None:
        end = end.replace(tzinfo=orchestrator.tz)
    if end <= start:
        raise HTTPException(status_code=400, detail="end must be after start")

    events = await orchestrator.load_events(start, end, force=force)
    now = orchestrator.now()
    return [
        {**event.model_dump(mode="json"), "status": event.status_at(now).value}
        for event in events
    ]


@app.get("/api/course-items")
async def list_course_items(
    force: bool = False,
    month: Optional[int] = Query(default=None, ge=1, le=12),
    orchestrator: Orchestrator = Depends(get_orchestrator)
):
    """Canvas assignments, quizzes and announcements with their current priority."""
    items = await orchestrator.load_course_items(force=force)
    now = orchestrator.now()
    if month is not None:
        items = filter_course_items_from_month(items, now.year, month)

    config = orchestrator.config
    return [
        {
            **item.model_dump(mode="json"),
            "priority": item.priority_at(now, config.high_priority_hours, config.medium_priority_hours).value,
        }
        for item in items
    ]


# ============================================
# KNOWLEDGE
# ============================================

@app.post("/api/knowledge/documents")
async def upload_document(
    file: UploadFile = File(...),
    orchestrator: Orchestrator = Depends(get_orchestrator)
):
    """Add a .txt, .md or .pdf file to the knowledge the agent cites."""
    knowledge = get_knowledge_config()
    content = await file.read()
    document_id, chunks, _ = await ingest_document(
        content, file.filename, knowledge.upload_dir, knowledge.max_chunk_chars
    )
    orchestrator.retrieval.add_documents(document_id, chunks)
    logger.info(f"Indexed {file.filename} as {document_id} ({len(chunks)} chunks)")

    return {
        "success": True,
        "document_id": document_id,
        "chunks": len(chunks),
        "size": format_size(len(content)),
        "version": orchestrator.retrieval.version,
    }


@app.get("/api/knowledge/documents")
async def list_documents(orchestrator: Orchestrator = Depends(get_orchestrator)):
    return {"documents": orchestrator.retrieval.document_ids(), "version": orchestrator.retrieval.version}


@app.delete("/api/knowledge/documents/{document_id}")
async def delete_document(document_id: str, orchestrator: Orchestrator = Depends(get_orchestrator)):
    if not orchestrator.retrieval.remove_document(document_id):
        raise HTTPException(status_code=404, detail="Document not found")
    return {"success": True, "version": orchestrator.retrieval.version}


@app.delete("/api/knowledge/cache")
async def clear_knowledge_cache(orchestrator: Orchestrator = Depends(get_orchestrator)):
    """Drop cached embeddings; the next search regenerates them."""
    await orchestrator.retrieval.clear_cache()
    return {"success": True}


@app.post("/api/knowledge/search")
async def search_knowledge(
    request: KnowledgeSearchRequest,
    orchestrator: Orchestrator = Depends(get_orchestrator)
):
    """Top-K chunks for a query, with similarity scores."""
    hints = ContextHints(month=request.month) if request.month else None
    top_k = request.top_k or get_knowledge_config().top_k
    results = await orchestrator.retrieval.search_scored(request.query, top_k, hints)
    return {
        "results": [
            {**chunk.model_dump(mode="json", exclude={"embedding"}), "score": round(score, 4)}
            for chunk, score in results
        ]
    }


# ============================================
# SETTINGS
# ============================================

@app.get("/api/settings")
async def get_settings():
    return SettingsManager.get_manageable_settings()


@app.put("/api/settings/{key}")
async def update_setting(key: str, update: SettingUpdate):
    """Write one setting to .env; provider clients pick it up on restart."""
    if not SettingsManager.is_manageable(key):
        raise HTTPException(status_code=404, detail=f"Unknown setting {key}")
    if not SettingsManager.update_setting(key, update.value):
        raise HTTPException(status_code=500, detail=f"Could not update {key}")
    return {"success": True, "key": key}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
