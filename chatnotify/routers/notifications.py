from typing import Any, Dict

from fastapi import APIRouter, Body, Depends, status

from chatnotify.routers.dependencies import get_session
from chatnotify.schemas.notification import (
    IngestResponse,
    MutationResult,
    NotificationCounts,
    NotificationSummary,
    ViewedResponse,
)
from chatnotify.services.session import NotificationSession


router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("", response_model=NotificationSummary)
async def list_notifications(session: NotificationSession = Depends(get_session)):
    return session.summary()


@router.get("/all-counts", response_model=NotificationCounts)
async def all_counts(session: NotificationSession = Depends(get_session)):
    return session.counts()


@router.post("/clear/{chat_id}", response_model=MutationResult)
async def clear_chat_notifications(chat_id: str, session: NotificationSession = Depends(get_session)):
    return await session.clear_chat_notifications(chat_id)


@router.post("/mark-contacts-viewed", response_model=ViewedResponse)
async def mark_contacts_viewed(session: NotificationSession = Depends(get_session)):
    return ViewedResponse(marked=await session.mark_requests_viewed())


@router.post("/events", response_model=IngestResponse, status_code=status.HTTP_202_ACCEPTED)
async def ingest_event(event: Dict[str, Any] = Body(...), session: NotificationSession = Depends(get_session)):
    # malformed payloads are dropped by the ingestor, not rejected here
    return IngestResponse(outcome=session.ingest(event))
