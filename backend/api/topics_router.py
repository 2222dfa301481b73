"""API routes for listing topics in the vault."""

import logging

from fastapi import APIRouter, Depends

from backend.api.deps import get_services
from backend.api.schemas import TopicResponse
from backend.services import ReviewServices
from backend.srs.topic_store import TopicCard

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/topics", tags=["topics"])


def _topic_response(topic: TopicCard, services: ReviewServices) -> TopicResponse:
    return TopicResponse(
        name=topic.name,
        source_ref=topic.source_ref,
        next_review=topic.next_review,
        rating=topic.rating.value if topic.rating else None,
        interval=topic.interval,
        stability=topic.stability,
        difficulty=topic.difficulty,
        reps=topic.reps,
        is_due=topic.is_due(services.store.clock()),
    )


@router.get("", response_model=list[TopicResponse])
def list_topics(services: ReviewServices = Depends(get_services)) -> list[TopicResponse]:
    """List every topic in the vault."""
    return [_topic_response(t, services) for t in services.store.get_all_topics()]


@router.get("/due", response_model=list[TopicResponse])
def list_due_topics(services: ReviewServices = Depends(get_services)) -> list[TopicResponse]:
    """List topics due for review now."""
    return [_topic_response(t, services) for t in services.store.get_due_topics()]
