"""FastAPI application entry point and configuration."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from backend.api.session_router import router as session_router
from backend.api.topics_router import router as topics_router
from backend.config import settings
from backend.services import SessionRegistry, build_services

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Build the review engine on startup unless one was installed already."""
    if getattr(app.state, "services", None) is None:
        app.state.services = build_services(settings)
    if getattr(app.state, "sessions", None) is None:
        app.state.sessions = SessionRegistry(ttl_seconds=settings.session_ttl_seconds)
    yield
    llm = app.state.services.tutor.llm
    if hasattr(llm, "aclose"):
        await llm.aclose()


app = FastAPI(
    title=settings.app_name,
    description="Spaced repetition tutoring over a vault of Markdown notes",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://localhost:3000"],
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(topics_router)
app.include_router(session_router)


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Return service status."""
    return {"status": "ok"}
