"""Message endpoints."""

import structlog
from fastapi import APIRouter, Depends

from ..dependencies import get_registry
from ..errors import MessageSendFailed, RequestValidationFailed, SessionNotConnected
from ..whatsapp.protocol import normalize_recipient
from ..whatsapp.registry import SessionRegistry
from ..whatsapp.types import SendTextRequest, SendTextResponse

logger = structlog.get_logger()

router = APIRouter(prefix="/api/message", tags=["message"])


@router.post("/send-text", response_model=SendTextResponse)
async def send_text(
    request: SendTextRequest,
    registry: SessionRegistry = Depends(get_registry),
):
    """Send a text message through a connected session."""
    session = registry.get(request.session_id)
    if session is None or session.connection is None or not session.is_connected:
        raise SessionNotConnected(request.session_id)

    try:
        jid = normalize_recipient(request.phone)
    except ValueError as e:
        raise RequestValidationFailed(str(e), fields=["phone"]) from e

    try:
        await session.connection.send_text(jid, request.message)
    except Exception as e:
        logger.error(
            "Send message error",
            session_id=request.session_id,
            to=jid,
            error=str(e),
        )
        raise MessageSendFailed(str(e) or type(e).__name__) from e

    logger.info("Message sent successfully", session_id=request.session_id, to=jid)
    return SendTextResponse(to=jid)
