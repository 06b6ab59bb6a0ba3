from typing import Any, Optional


class ChatNotifyError(Exception):
    """Base error for the notification core."""


class TransientRemoteFailure(ChatNotifyError):

    def __init__(self, action: str, subject_id: str, detail: Optional[str] = None) -> None:
        self.action = action
        self.subject_id = subject_id
        self.detail = detail
        message = f"{action} failed for '{subject_id}'"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class StaleMutation(ChatNotifyError):

    def __init__(self, request_id: str) -> None:
        self.request_id = request_id
        super().__init__(f"Contact request '{request_id}' is already resolved")


class MalformedEvent(ChatNotifyError):

    def __init__(self, reason: str, payload: Any = None) -> None:
        self.reason = reason
        self.payload = payload
        super().__init__(reason)


class SessionClosedError(ChatNotifyError):

    def __init__(self, user_id: str) -> None:
        self.user_id = user_id
        super().__init__(f"Notification session for '{user_id}' is closed")
