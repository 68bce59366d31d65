"""Wire frames: a closed tagged union per direction, validated with pydantic."""

import json
import time
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from .exceptions import InvalidFrameError, ProtocolParseError, UnknownMessageTypeError

# Range of the store's integer ids
DbInt = Annotated[int, Field(ge=-(2**63), le=2**63 - 1)]


class _Frame(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    def dump(self) -> dict[str, Any]:
        """Serialize with wire field names."""
        return self.model_dump(by_alias=True)


# Inbound


class PingFrame(_Frame):
    type: Literal["ping"] = "ping"


class PongFrame(_Frame):
    type: Literal["pong"] = "pong"


class ChatMessageFrame(_Frame):
    type: Literal["message"] = "message"
    to: Optional[int] = None
    content: Optional[str] = None

    @property
    def is_forwardable(self) -> bool:
        return self.to is not None and bool(self.content)


class CheckOnlineUsersFrame(_Frame):
    type: Literal["check_online_users"] = "check_online_users"
    user_ids: list[DbInt] = Field(default_factory=list, alias="userIds")


InboundFrame = Annotated[
    Union[PingFrame, PongFrame, ChatMessageFrame, CheckOnlineUsersFrame],
    Field(discriminator="type"),
]

_inbound_adapter: TypeAdapter = TypeAdapter(InboundFrame)

INBOUND_TYPES = frozenset({"ping", "pong", "message", "check_online_users"})


# Outbound


class WelcomeFrame(_Frame):
    type: Literal["welcome"] = "welcome"
    user_id: int = Field(alias="userId")


class AckFrame(_Frame):
    type: Literal["ack"] = "ack"
    received: bool = True


class ErrorFrame(_Frame):
    type: Literal["error"] = "error"
    message: str


class ChatDeliveryFrame(_Frame):
    type: Literal["message"] = "message"
    from_user: int = Field(alias="from")
    content: str
    timestamp: int = Field(default_factory=lambda: int(time.time() * 1000))


class OnlineStatusResultFrame(_Frame):
    type: Literal["online_status_result"] = "online_status_result"
    status: dict[str, Literal["online", "offline"]]


class NotificationFrame(_Frame):
    type: Literal["notification"] = "notification"
    id: Optional[int] = None
    notification_type: str = Field(alias="notificationType")
    content: str
    created_at: str = Field(alias="createdAt")


class ServerPingFrame(_Frame):
    type: Literal["ping"] = "ping"
    timestamp: int = Field(default_factory=lambda: int(time.time() * 1000))


def parse_inbound(raw: str) -> Union[PingFrame, PongFrame, ChatMessageFrame, CheckOnlineUsersFrame]:
    """Parse one inbound text frame.

    Args:
        raw: Frame text as received

    Returns:
        The validated frame

    Raises:
        ProtocolParseError: If the text is not JSON
        UnknownMessageTypeError: If the object has no known ``type``
        InvalidFrameError: If a known type carries malformed fields
    """
    try:
        data = json.loads(raw)
    except (TypeError, ValueError, RecursionError) as e:
        raise ProtocolParseError(str(e)) from e

    frame_type = data.get("type") if isinstance(data, dict) else None
    if not isinstance(frame_type, str) or frame_type not in INBOUND_TYPES:
        raise UnknownMessageTypeError(repr(frame_type))

    try:
        return _inbound_adapter.validate_python(data)
    except ValidationError as e:
        raise InvalidFrameError(frame_type, str(e)) from e
