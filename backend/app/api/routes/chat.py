from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse, StreamingResponse

from ...chat import ChatEngine, InputValidationError, OpenRouterLanguageClient, QueryChainExhausted
from ...chat.prompts import APOLOGY
from ...chat.streaming import sse_body, start_session
from ...chat.suggestions import suggestions_for
from ...chat.types import ChatRequest, ChatTurn, UserLocation
from ...schemas import ChatRequestBody, ChatResponse, SuggestionsResponse
from ...storage import STORE
from ...utils import get_request_id

logger = logging.getLogger(__name__)

router = APIRouter(tags=["chat"])

ENGINE = ChatEngine(STORE, OpenRouterLanguageClient())

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def get_engine() -> ChatEngine:
    return ENGINE


def _to_request(body: ChatRequestBody) -> ChatRequest:
    location = None
    if body.userLocation is not None:
        location = UserLocation(body.userLocation.latitude, body.userLocation.longitude)
    return ChatRequest(
        message=body.message,
        history=tuple(ChatTurn.from_payload(turn.model_dump()) for turn in body.conversationHistory),
        city=body.city if isinstance(body.city, str) else None,
        user_location=location,
        user_id=body.userId,
        event_id=body.eventId,
        screen=body.screen,
        preferences=dict(body.preferences or {}),
    )


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message})


@router.post(
    "/chat",
    response_model=ChatResponse,
    responses={200: {"content": {"text/event-stream": {}}}},
)
async def chat(body: ChatRequestBody, engine: ChatEngine = Depends(get_engine)):
    """Answer one assistant message, as JSON or as a server-sent event stream."""
    request = _to_request(body)
    if body.stream:
        channel = start_session(engine, request)
        return StreamingResponse(
            sse_body(channel), media_type="text/event-stream", headers=SSE_HEADERS
        )
    try:
        outcome = await engine.run(request)
    except InputValidationError as exc:
        return _error(400, str(exc))
    except QueryChainExhausted as exc:
        logger.error("Chat request %s failed: %s", get_request_id() or "-", exc)
        return _error(500, APOLOGY)
    return {"success": True, "data": outcome.to_payload()}


@router.get("/chat/suggestions", response_model=SuggestionsResponse)
async def chat_suggestions(
    city: str | None = Query(default=None, max_length=80),
    screen: str | None = Query(default=None, max_length=20),
    engine: ChatEngine = Depends(get_engine),
):
    data = await suggestions_for(engine.store, city, screen)
    return {"success": True, "data": data}
