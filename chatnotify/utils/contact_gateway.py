from typing import Optional, Protocol

import httpx
import structlog

from chatnotify.utils.config import SessionConfig
from chatnotify.utils.exceptions import TransientRemoteFailure


logger = structlog.get_logger()


class ContactGateway(Protocol):

    enabled: bool

    async def accept_contact_request(self, request_id: str) -> bool: ...

    async def reject_contact_request(self, request_id: str) -> bool: ...

    async def mark_chat_read(self, chat_id: str) -> bool: ...

    async def mark_contact_requests_viewed(self) -> bool: ...

    async def aclose(self) -> None: ...


class NoopGateway:
    """Used when no backend is configured; every action succeeds locally."""

    enabled = False

    async def accept_contact_request(self, request_id: str) -> bool:
        return True

    async def reject_contact_request(self, request_id: str) -> bool:
        return True

    async def mark_chat_read(self, chat_id: str) -> bool:
        return True

    async def mark_contact_requests_viewed(self) -> bool:
        return True

    async def aclose(self) -> None:
        return


class HttpContactGateway:

    enabled = True

    def __init__(
        self,
        base_url: str,
        access_token: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        headers = {"Authorization": f"Bearer {access_token}"} if access_token else {}
        self._client = httpx.AsyncClient(base_url=base_url, headers=headers, timeout=timeout, transport=transport)

    async def accept_contact_request(self, request_id: str) -> bool:
        return await self._send("accept", "PATCH", f"/contacts/request/{request_id}/accept", request_id)

    async def reject_contact_request(self, request_id: str) -> bool:
        return await self._send("reject", "DELETE", f"/contacts/request/{request_id}/reject", request_id)

    async def mark_chat_read(self, chat_id: str) -> bool:
        return await self._send("mark_read", "POST", f"/notifications/clear/{chat_id}", chat_id, missing_ok=False)

    async def mark_contact_requests_viewed(self) -> bool:
        return await self._send(
            "mark_viewed", "POST", "/notifications/mark-contacts-viewed", "contact_requests", missing_ok=False
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _send(self, action: str, method: str, url: str, subject_id: str, missing_ok: bool = True) -> bool:
        try:
            response = await self._client.request(method, url)
        except httpx.HTTPError as exc:
            raise TransientRemoteFailure(action, subject_id, str(exc) or type(exc).__name__) from exc

        if response.is_success:
            return True
        # the backend answers 404 once a request is no longer pending
        if response.status_code == 404 and missing_ok:
            logger.info("remote_already_resolved", action=action, subject_id=subject_id)
            return True
        raise TransientRemoteFailure(action, subject_id, f"HTTP {response.status_code}: {_error_detail(response)}")


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(body, dict):
        return str(body.get("error") or body.get("detail") or body.get("message") or body)
    return str(body)


def get_gateway(config: SessionConfig) -> ContactGateway:
    if not config.api_base_url:
        return NoopGateway()
    return HttpContactGateway(config.api_base_url, config.access_token, timeout=config.request_timeout)
