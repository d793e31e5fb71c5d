"""Instance endpoints: create, inspect, list and delete sessions."""

import structlog
from fastapi import APIRouter, Depends

from ..dependencies import get_registry, get_supervisor
from ..errors import InstanceCreateFailed, SessionNotFound
from ..whatsapp.registry import SessionRegistry
from ..whatsapp.supervisor import ConnectionSupervisor
from ..whatsapp.types import (
    CreateInstanceRequest,
    CreateInstanceResponse,
    DeleteResponse,
    QRCodeResponse,
    SessionListResponse,
    StatusResponse,
)

logger = structlog.get_logger()

router = APIRouter(prefix="/api/instance", tags=["instance"])


@router.post("/create", response_model=CreateInstanceResponse)
async def create_instance(
    request: CreateInstanceRequest,
    supervisor: ConnectionSupervisor = Depends(get_supervisor),
):
    """Create a session and start connecting it.

    Creating an id that already exists returns the existing session.
    """
    try:
        session = await supervisor.connect(
            request.session_id,
            request.instance_name,
            request.webhook_secret or "",
        )
    except Exception as e:
        logger.error(
            "Create instance error",
            session_id=request.session_id,
            instance_name=request.instance_name,
            error=str(e),
        )
        raise InstanceCreateFailed(str(e)) from e

    return CreateInstanceResponse(
        session_id=session.session_id,
        instance_name=session.instance_name,
        is_connected=session.is_connected,
    )


@router.get("/list", response_model=SessionListResponse)
async def list_instances(registry: SessionRegistry = Depends(get_registry)):
    """List registered sessions."""
    return SessionListResponse(sessions=registry.list())


@router.get("/{session_id}/qr", response_model=QRCodeResponse)
async def get_qr_code(session_id: str, registry: SessionRegistry = Depends(get_registry)):
    """Last pairing code of a session, as a PNG data URL."""
    session = registry.get(session_id)
    if session is None:
        raise SessionNotFound(session_id)

    return QRCodeResponse(
        qr_code=session.qr_code,
        is_connected=session.is_connected,
        phone_number=session.phone_number,
        push_name=session.push_name,
    )


@router.get("/{session_id}/status", response_model=StatusResponse)
async def get_status(session_id: str, registry: SessionRegistry = Depends(get_registry)):
    """Connection status of a session."""
    session = registry.get(session_id)
    if session is None:
        raise SessionNotFound(session_id, status="not_found")

    return StatusResponse(
        status=session.status,
        is_connected=session.is_connected,
        phone_number=session.phone_number,
        push_name=session.push_name,
    )


@router.delete("/{session_id}", response_model=DeleteResponse)
async def delete_instance(
    session_id: str, supervisor: ConnectionSupervisor = Depends(get_supervisor)
):
    """Log out a session and erase its stored credentials.

    A session waiting to reconnect is stopped as well.
    """
    if not await supervisor.delete(session_id):
        raise SessionNotFound(session_id)
    return DeleteResponse()
