"""FastAPI dependencies resolving the engine owned by the app."""

from fastapi import Request

from backend.services import ReviewServices, SessionRegistry


def get_services(request: Request) -> ReviewServices:
    return request.app.state.services


def get_registry(request: Request) -> SessionRegistry:
    return request.app.state.sessions
