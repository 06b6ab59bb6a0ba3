from fastapi import HTTPException, Request, status

from chatnotify.services.session import NotificationSession


def get_session(request: Request) -> NotificationSession:
    session = getattr(request.app.state, "session", None)
    if session is None or session.closed:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="No active notification session.")
    return session
