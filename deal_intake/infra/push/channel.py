"""Push notification channel for recognition events."""
from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol, Union

from deal_intake.shared.logging import get_logger

logger = get_logger(__name__)

EVENT_COMPLETED = "completed"
EVENT_ERROR = "error"


@dataclass(frozen=True)
class PushEvent:
    """Inbound `completed{remote_id, extracted_data}` or `error{remote_id, message}`."""

    kind: str
    remote_id: str
    extracted_data: Optional[Dict[str, Any]] = None
    message: Optional[str] = None

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "PushEvent":
        kind = str(raw.get("event") or raw.get("kind") or "").lower()
        if kind not in {EVENT_COMPLETED, EVENT_ERROR}:
            raise ValueError(f"Unknown push event kind: {kind!r}")
        remote_id = raw.get("remote_id") or raw.get("document_id")
        if not remote_id:
            raise ValueError("Push event without remote_id")
        return cls(
            kind=kind,
            remote_id=str(remote_id),
            extracted_data=raw.get("extracted_data"),
            message=raw.get("message") or raw.get("error"),
        )

    @classmethod
    def from_json(cls, payload: Union[str, bytes]) -> "PushEvent":
        data = json.loads(payload)
        if not isinstance(data, dict):
            raise ValueError("Push event payload must be an object")
        return cls.from_dict(data)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"event": self.kind, "remote_id": self.remote_id}
        if self.extracted_data is not None:
            out["extracted_data"] = self.extracted_data
        if self.message is not None:
            out["message"] = self.message
        return out

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)


PushHandler = Callable[[PushEvent], Optional[Awaitable[None]]]


class PushChannel(Protocol):
    @property
    def connected(self) -> bool: ...

    async def connect(self, handler: PushHandler) -> None: ...

    async def disconnect(self) -> None: ...


async def dispatch(handler: Optional[PushHandler], event: PushEvent) -> None:
    """Deliver one event; handler failures are logged, not raised."""
    if handler is None:
        return
    try:
        result = handler(event)
        if asyncio.iscoroutine(result):
            await result
    except Exception as exc:  # pylint: disable=broad-exception-caught
        logger.warning("Push handler failed for %s: %s", event.remote_id, exc)


class InMemoryPushChannel:
    """Process-local channel; events are delivered through `publish`."""

    def __init__(self, *, available: bool = True) -> None:
        self.available = available
        self._handler: Optional[PushHandler] = None
        self._connected = False

    @property
    def connected(self) -> bool:
        return self._connected

    async def connect(self, handler: PushHandler) -> None:
        self._handler = handler
        self._connected = self.available

    async def disconnect(self) -> None:
        self._handler = None
        self._connected = False

    def set_available(self, available: bool) -> None:
        """Simulate the transport going down or coming back."""
        self.available = available
        self._connected = available and self._handler is not None

    async def publish(self, event: PushEvent) -> bool:
        """Deliver an event when connected; returns whether it was delivered."""
        if not self._connected:
            return False
        await dispatch(self._handler, event)
        return True
