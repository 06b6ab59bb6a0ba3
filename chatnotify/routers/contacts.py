from typing import List

from fastapi import APIRouter, Depends, HTTPException, status

from chatnotify.models.contact_request import MutationStatus
from chatnotify.routers.dependencies import get_session
from chatnotify.schemas.notification import ContactRequest, MutationResult
from chatnotify.services.session import NotificationSession


router = APIRouter(prefix="/contacts", tags=["contacts"])


def _settle(result: MutationResult) -> MutationResult:
    if result.status is MutationStatus.ROLLED_BACK:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=result.model_dump(mode="json", by_alias=True),
        )
    return result


@router.get("/pending", response_model=List[ContactRequest])
async def pending_requests(session: NotificationSession = Depends(get_session)):
    return list(session.store.pending_requests())


@router.patch("/request/{request_id}/accept", response_model=MutationResult)
async def accept_contact_request(request_id: str, session: NotificationSession = Depends(get_session)):
    return _settle(await session.accept_request(request_id))


@router.delete("/request/{request_id}/reject", response_model=MutationResult)
async def reject_contact_request(request_id: str, session: NotificationSession = Depends(get_session)):
    return _settle(await session.reject_request(request_id))
