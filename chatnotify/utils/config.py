import os
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


_TRUTHY = ("1", "true", "yes", "on")


class SessionConfig(BaseModel):

    model_config = ConfigDict(frozen=True)

    user_id: str = Field(min_length=1)
    access_token: Optional[str] = None
    # REST backend for accept/reject and read-state sync; None disables remote calls
    api_base_url: Optional[str] = None
    redis_url: Optional[str] = None
    channel_template: str = "user:{user_id}"
    request_timeout: float = Field(default=10.0, gt=0)
    sync_read_state: bool = False
    badge_cap: int = Field(default=99, ge=1)
    # per-chat memory of message keys used to drop redelivered events
    seen_message_limit: int = Field(default=1000, ge=1)
    # number of chats whose message keys are remembered, least recently active dropped first
    seen_chat_limit: int = Field(default=1000, ge=1)

    @property
    def channel(self) -> str:
        return self.channel_template.format(user_id=self.user_id)

    @classmethod
    def from_env(cls, user_id: str, access_token: Optional[str] = None) -> "SessionConfig":
        return cls(
            user_id=user_id,
            access_token=access_token,
            api_base_url=os.getenv("CHAT_API_URL") or None,
            redis_url=os.getenv("REDIS_URL") or None,
            channel_template=os.getenv("CHAT_CHANNEL_TEMPLATE", "user:{user_id}"),
            request_timeout=float(os.getenv("CHAT_REQUEST_TIMEOUT", "10")),
            sync_read_state=os.getenv("CHAT_SYNC_READ_STATE", "").lower() in _TRUTHY,
        )
