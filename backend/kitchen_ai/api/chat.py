"""Chat assistant and daily usage routes"""
import logging

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from kitchen_ai.core.errors import ApiError, ForbiddenError, UpstreamError
from kitchen_ai.core.security import AuthUser, require_auth
from kitchen_ai.db.session import get_db
from kitchen_ai.schemas.chat import ChatRequest
from kitchen_ai.services.chat_service import canned_sse, prepare_chat, relay_as_sse
from kitchen_ai.services.llm_client import open_chat_stream
from kitchen_ai.services.usage_service import check_usage, increment_usage

router = APIRouter(tags=["chat"])
logger = logging.getLogger(__name__)

SSE_HEADERS = {"Cache-Control": "no-cache", "Connection": "keep-alive"}


@router.post("/chat")
async def chat_route(
    body: ChatRequest,
    user: AuthUser = Depends(require_auth),
    db: Session = Depends(get_db)
):
    """Stream the assistant's reply as OpenAI-style server-sent events"""
    if body.user_id and body.user_id != user.id:
        raise ForbiddenError("No autorizado")

    prepared = prepare_chat(db, body.messages, body.conversation_history, user.id)
    if prepared.canned_reply is not None:
        return StreamingResponse(canned_sse(prepared.canned_reply), media_type="text/event-stream", headers=SSE_HEADERS)

    try:
        deltas = await open_chat_stream(prepared.system_prompt, prepared.messages)
    except UpstreamError as e:
        if e.upstream_status == 429:
            raise ApiError(
                "Demasiadas solicitudes. Por favor espera un momento.",
                code="rate_limited",
                status_code=429,
            )
        raise

    return StreamingResponse(relay_as_sse(deltas), media_type="text/event-stream", headers=SSE_HEADERS)


@router.post("/check-usage")
def check_usage_route(user: AuthUser = Depends(require_auth), db: Session = Depends(get_db)):
    """Remaining chat queries for today"""
    return check_usage(db, user.id)


@router.post("/increment-usage")
def increment_usage_route(user: AuthUser = Depends(require_auth), db: Session = Depends(get_db)):
    """Count one chat query against today's quota"""
    count = increment_usage(db, user.id)
    return {"success": True, "current_count": count}
