"""FastAPI dependencies resolving the service objects of the running app."""

from fastapi import Request

from .whatsapp.registry import SessionRegistry
from .whatsapp.supervisor import ConnectionSupervisor


def get_registry(request: Request) -> SessionRegistry:
    return request.app.state.registry


def get_supervisor(request: Request) -> ConnectionSupervisor:
    return request.app.state.supervisor
