import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from chatnotify.routers.contacts import router as contacts_router
from chatnotify.routers.notifications import router as notifications_router
from chatnotify.services.session import NotificationSession
from chatnotify.utils.config import SessionConfig
from chatnotify.utils.logging import configure_logging


def session_from_env() -> NotificationSession:
    user_id = os.getenv("CHAT_USER_ID")
    if not user_id:
        raise RuntimeError("CHAT_USER_ID is not set")
    config = SessionConfig.from_env(user_id, access_token=os.getenv("CHAT_ACCESS_TOKEN"))
    return NotificationSession(config)


def create_app(session: Optional[NotificationSession] = None) -> FastAPI:

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(os.getenv("LOG_LEVEL", "INFO"), json_output=os.getenv("LOG_JSON") == "1")
        active = session if session is not None else session_from_env()
        await active.start()
        app.state.session = active
        try:
            yield
        finally:
            await active.close()

    app = FastAPI(title="Chat Notifications", lifespan=lifespan)
    app.include_router(notifications_router)
    app.include_router(contacts_router)

    @app.get("/")
    async def root():
        active = getattr(app.state, "session", None)
        return {"user_id": active.config.user_id if active else None, "active": bool(active and not active.closed)}

    return app


app = create_app()
