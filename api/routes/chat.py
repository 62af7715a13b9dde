"""
Chat endpoint for CRM contact extraction.

Each POST carries one user message; the continuation resolver keeps the
per-user conversation state between calls so short follow-ups ("Sarah
Williams", "the second one") complete earlier requests.
"""

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from typing import Optional, Dict, Any
from datetime import datetime, timezone
import logging

from config import settings
from core.conversation import ContinuationResolver, StorageUnavailable, create_session_store
from core.services.gemini_service import gemini_service
from models.schemas import TokenUsage

logger = logging.getLogger(__name__)

router = APIRouter()


class ChatRequest(BaseModel):
    """Chat request model"""
    message: str
    userId: str = "anonymous"
    timezone: str = "UTC"


_resolver: Optional[ContinuationResolver] = None


def get_resolver() -> ContinuationResolver:
    """Shared resolver wired from settings, built on first request"""
    global _resolver
    if _resolver is None:
        _resolver = ContinuationResolver(
            store=create_session_store(settings.SESSION_BACKEND, settings.SESSION_TTL_MINUTES),
            extract=gemini_service.extract_contacts,
            summarize=gemini_service.summarize,
            history_window=settings.HISTORY_WINDOW,
            extraction_timeout=settings.EXTRACTION_TIMEOUT_SECONDS,
            summary_timeout=settings.SUMMARY_TIMEOUT_SECONDS,
        )
        logger.info(f"✅ Continuation resolver ready (session backend: {settings.SESSION_BACKEND})")
    return _resolver


def _token_usage_payload(usage: TokenUsage) -> Optional[Dict[str, Any]]:
    if not usage.messages_count:
        return None
    return {
        "totalTokens": usage.total_tokens,
        "promptTokens": usage.prompt_tokens,
        "completionTokens": usage.completion_tokens,
        "messagesCount": usage.messages_count,
        "lastUpdated": usage.last_updated.isoformat() if usage.last_updated else None,
    }


def _storage_error(e: StorageUnavailable) -> JSONResponse:
    logger.error(f"Session storage unavailable: {str(e)}")
    return JSONResponse(
        status_code=503,
        content={
            "success": False,
            "error": "Session storage unavailable",
            "message": str(e),
        },
    )


async def storage_unavailable_handler(request: Request, exc: StorageUnavailable) -> JSONResponse:
    """Registered on the app for storage failures raised while building the resolver"""
    return _storage_error(exc)


@router.post("/chat")
async def chat_endpoint(request: ChatRequest, resolver: ContinuationResolver = Depends(get_resolver)):
    """
    Extract structured contact information from one message.

    Returns the extraction result together with the clarifying question and
    staged items when the request could not be tied to a contact yet.
    """
    if not request.message or not request.message.strip():
        raise HTTPException(status_code=400, detail="Message must not be empty")

    logger.info(f"📨 Chat request from {request.userId} ({request.timezone}): {len(request.message)} chars")

    try:
        result = await resolver.process_turn(request.userId, request.message, timezone=request.timezone)
        usage = resolver.get_token_usage(request.userId)
    except StorageUnavailable as e:
        return _storage_error(e)
    except Exception as e:
        logger.error(f"Error processing chat request: {str(e)}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={
                "success": False,
                "error": "Failed to process request",
                "message": str(e),
            },
        )

    return {
        "success": True,
        "message": "Contact information extracted successfully",
        "data": result.model_dump(mode="json"),
        "tokenUsage": _token_usage_payload(usage),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.delete("/chat/sessions/{session_id}")
async def clear_session(session_id: str, resolver: ContinuationResolver = Depends(get_resolver)):
    """Clear the stored conversation for a session"""
    try:
        resolver.reset_session(session_id)
    except StorageUnavailable as e:
        return _storage_error(e)
    return {"success": True, "session_id": session_id}


@router.get("/chat/sessions")
async def list_sessions(resolver: ContinuationResolver = Depends(get_resolver)):
    """List sessions with stored conversation state"""
    try:
        sessions = resolver.list_active_sessions()
    except StorageUnavailable as e:
        return _storage_error(e)
    return {"sessions": sessions, "count": len(sessions)}
