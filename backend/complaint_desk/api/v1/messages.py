from typing import Any, List
from uuid import UUID
import asyncio
from fastapi import APIRouter, Depends, Response, WebSocket, WebSocketDisconnect, WebSocketException, status
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from complaint_desk.db.session import get_db
from complaint_desk.api.deps import get_current_actor, get_ws_actor
from complaint_desk.core.exceptions import ComplaintDeskError
from complaint_desk.schemas.message import MessageCreate, MessageRead
from complaint_desk.schemas.user import Actor
from complaint_desk.services.live_channel import LiveChannel, live_channel
from complaint_desk.services.message_thread import MessageThread, ThreadFeed

router = APIRouter()
logger = structlog.get_logger()


def get_live_channel() -> LiveChannel:
    return live_channel


@router.get("/{complaint_id}/messages", response_model=List[MessageRead])
async def read_messages(
    complaint_id: UUID,
    after_seq: int = 0,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    channel: LiveChannel = Depends(get_live_channel),
) -> Any:
    """
    Full thread, oldest first. Pass after_seq to fetch only newer messages.
    """
    return await MessageThread(db, channel).history(complaint_id, actor, after_seq=after_seq)


@router.post(
    "/{complaint_id}/messages",
    response_model=MessageRead,
    status_code=status.HTTP_201_CREATED,
    responses={204: {"description": "Blank message ignored"}},
)
async def post_message(
    complaint_id: UUID,
    request: MessageCreate,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    channel: LiveChannel = Depends(get_live_channel),
) -> Any:
    """
    Append to the thread. Other viewers receive it over the live socket.
    """
    message = await MessageThread(db, channel).post(complaint_id, request.message, actor)
    if message is None:
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    return message


@router.websocket("/{complaint_id}/messages/live")
async def live_messages(
    websocket: WebSocket,
    complaint_id: UUID,
    actor: Actor = Depends(get_ws_actor),
    db: AsyncSession = Depends(get_db),
    channel: LiveChannel = Depends(get_live_channel),
):
    """
    Sends {"type": "history", "messages": [...]} once, then one
    {"type": "message", "message": {...}} per new post.
    The subscription lives exactly as long as the socket.
    """
    thread = MessageThread(db, channel)
    try:
        async with thread.follow(complaint_id, actor) as feed:
            await websocket.accept()
            await websocket.send_json({
                "type": "history",
                "messages": [m.model_dump(mode="json") for m in feed.history],
            })
            await _serve_feed(websocket, feed)
    except ComplaintDeskError as e:
        # Raised by follow() before the socket was accepted
        raise WebSocketException(code=status.WS_1008_POLICY_VIOLATION, reason=e.message)


async def _serve_feed(websocket: WebSocket, feed: ThreadFeed) -> None:
    receiver = asyncio.create_task(_drain_client(websocket))
    sender = asyncio.create_task(_pump(websocket, feed))

    done, pending = await asyncio.wait({receiver, sender}, return_when=asyncio.FIRST_COMPLETED)
    for task in pending:
        task.cancel()
    await asyncio.gather(*pending, return_exceptions=True)

    exc = sender.exception() if sender in done else None
    if exc is None or isinstance(exc, WebSocketDisconnect):
        logger.info("live_viewer_left", complaint_id=str(feed.complaint_id))
        return

    logger.error("live_feed_failed", complaint_id=str(feed.complaint_id), error=str(exc))
    await websocket.close(code=status.WS_1011_INTERNAL_ERROR)


async def _drain_client(websocket: WebSocket) -> None:
    # Incoming frames are ignored; this only watches for the disconnect
    while True:
        event = await websocket.receive()
        if event["type"] == "websocket.disconnect":
            return


async def _pump(websocket: WebSocket, feed: ThreadFeed) -> None:
    async for message in feed:
        await websocket.send_json({"type": "message", "message": message.model_dump(mode="json")})
