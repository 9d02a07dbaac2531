import asyncio
import logging
import uuid

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect, WebSocketException, status
from sqlalchemy.orm import sessionmaker

from app.core.auth import Identity, identity_from_headers
from app.core.db import get_session_factory
from app.core.errors import Unauthorized
from app.services.access import get_membership
from app.services.realtime import (
    RealtimeBroker,
    RealtimeEvent,
    family_channel,
    get_broker,
    user_notifications_channel,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/realtime", tags=["realtime"])

QUEUE_SIZE = 256


def get_ws_identity(websocket: WebSocket) -> Identity:
    try:
        return identity_from_headers(websocket.headers)
    except Unauthorized as exc:
        raise WebSocketException(code=status.WS_1008_POLICY_VIOLATION, reason=exc.detail) from None


def _offer(queue: asyncio.Queue, event: RealtimeEvent) -> None:
    try:
        queue.put_nowait(event)
    except asyncio.QueueFull:
        logger.warning("realtime consumer queue full; dropping event channel=%s type=%s", event.channel, event.type)


def _revokes_access(event: RealtimeEvent, feed: str | None, user_id: str) -> bool:
    if feed is None or event.channel != feed:
        return False
    if event.type == "family.deleted":
        return True
    return event.type == "member.removed" and event.payload.get("user_id") == user_id


async def _wait_for_disconnect(websocket: WebSocket) -> None:
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        return


@router.websocket("/ws")
async def realtime_ws(
    websocket: WebSocket,
    family_id: int | None = None,
    identity: Identity = Depends(get_ws_identity),
    broker: RealtimeBroker = Depends(get_broker),
    session_factory: sessionmaker = Depends(get_session_factory),
):
    """
    Streams the caller's notification channel and, optionally, one family channel.

    Publishers only enqueue into a bounded per-connection queue, so a slow socket drops
    its own events instead of holding up the request that published them.
    """
    channels = [user_notifications_channel(identity.user_id)]
    feed: str | None = None
    if family_id is not None:
        db = session_factory()
        try:
            is_member = get_membership(db, family_id, identity.user_id) is not None
        finally:
            db.close()
        if not is_member:
            raise WebSocketException(code=status.WS_1008_POLICY_VIOLATION, reason="not a member of this family group")
        feed = family_channel(family_id)
        channels.append(feed)

    loop = asyncio.get_running_loop()
    queue: asyncio.Queue = asyncio.Queue(maxsize=QUEUE_SIZE)
    consumer_id = f"ws:{uuid.uuid4()}"

    def enqueue(event: RealtimeEvent) -> None:
        # Membership is only checked at connect time; drop the family feed as soon as it is revoked.
        if _revokes_access(event, feed, identity.user_id):
            broker.unsubscribe(consumer_id, event.channel)
        loop.call_soon_threadsafe(_offer, queue, event)

    # Subscribe before accepting so nothing published after the handshake is missed.
    for channel in channels:
        broker.subscribe(consumer_id, channel, enqueue)

    receiver: asyncio.Task | None = None
    try:
        await websocket.accept()
        receiver = asyncio.create_task(_wait_for_disconnect(websocket))
        while True:
            getter = asyncio.create_task(queue.get())
            done, _ = await asyncio.wait({getter, receiver}, return_when=asyncio.FIRST_COMPLETED)
            if receiver in done:
                getter.cancel()
                break
            event = getter.result()
            await websocket.send_json(event.to_dict())
            if _revokes_access(event, feed, identity.user_id):
                await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason="family access revoked")
                break
    finally:
        broker.unsubscribe_all(consumer_id)
        if receiver is not None:
            receiver.cancel()
