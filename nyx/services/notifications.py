from __future__ import annotations

import logging
from collections import defaultdict, deque
from typing import Deque, Dict, List, Optional, Protocol, Sequence

import httpx
from fastapi import APIRouter, Depends, Request

from ..schemas import AuthUser, CamelModel
from .auth import current_identity, require_identity
from .common import now_iso

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/notifications", tags=["notifications"])

VIBRATE_PATTERN = [500, 200, 500]


class Notification(CamelModel):
    title: str
    body: str
    vibrate: List[int] = VIBRATE_PATTERN
    created_at: str = ""


def rest_over_notification() -> Notification:
    return Notification(title="Rest over!", body="Time for your next set!", created_at=now_iso())


class Channel(Protocol):
    async def send(self, user_id: str, notification: Notification) -> None: ...


class ToastInbox:
    """In-app toasts waiting for the client to pick them up."""

    def __init__(self, max_per_user: int = 20) -> None:
        self._items: Dict[str, Deque[Notification]] = defaultdict(lambda: deque(maxlen=max_per_user))

    async def send(self, user_id: str, notification: Notification) -> None:
        self._items[user_id].append(notification)

    def drain(self, user_id: str) -> List[Notification]:
        items = list(self._items.pop(user_id, []))
        return items


class LogChannel:
    async def send(self, user_id: str, notification: Notification) -> None:
        logger.info("notify: %s (user %s)", notification.title, user_id)


class WebhookChannel:
    """Forwards notifications to a push gateway for system notifications and vibration."""

    def __init__(self, url: str, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self.url = url
        self._client = httpx.AsyncClient(timeout=10.0, transport=transport)

    async def close(self) -> None:
        await self._client.aclose()

    async def send(self, user_id: str, notification: Notification) -> None:
        payload = {"userId": user_id, **notification.model_dump(by_alias=True)}
        resp = await self._client.post(self.url, json=payload)
        resp.raise_for_status()


class NotificationDispatcher:
    def __init__(self, channels: Sequence[Channel]) -> None:
        self.channels = list(channels)

    async def dispatch(self, user_id: str, notification: Notification) -> None:
        for channel in self.channels:
            try:
                await channel.send(user_id, notification)
            except Exception:
                # one failing channel must not keep the others from firing
                logger.exception("notify: channel %s failed", type(channel).__name__)


def get_toasts(request: Request) -> ToastInbox:
    return request.app.state.toasts


@router.get("", response_model=List[Notification])
async def drain_notifications_route(
    toasts: ToastInbox = Depends(get_toasts),
    identity: Optional[AuthUser] = Depends(current_identity),
):
    identity = require_identity(identity)
    return toasts.drain(identity.id)
