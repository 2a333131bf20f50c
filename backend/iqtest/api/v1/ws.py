"""
WebSocket endpoint for live session notifications.

Messages from the client:
    {"type": "ping"}                          -> {"type": "pong", "timestamp": ...}
    {"type": "subscribe", "sessionId": "...", "token": "..."}
                                              -> session.progress / session.completed events

A session that has an owner only accepts subscribers that present
the owner's access token, either in the subscribe message or as the `token`
query parameter of the connection. Refused subscriptions get an
{"type": "error", ...} reply and the socket stays open.
"""
import json
import logging
from typing import Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from sqlalchemy import select

from iqtest.core.auth import decode_user_id
from iqtest.core.datetime_utils import utc_now
from iqtest.core.error_responses import (
    AuthorizationError,
    ErrorMessages,
    NotFoundError,
    ServiceError,
)
from iqtest.core.notifications import NotificationHub
from iqtest.models import Database, TestSession

router = APIRouter()
logger = logging.getLogger(__name__)


async def authorize_subscription(
    database: Database, session_id: str, token: Optional[str]
) -> None:
    """
    Check that the holder of `token` may follow `session_id`.

    Raises:
        NotFoundError: the session does not exist
        AuthorizationError: the session is owned and the token is missing,
            invalid or belongs to someone else
    """
    async with database.session() as db:
        row = (
            await db.execute(select(TestSession.user_id).where(TestSession.id == session_id))
        ).one_or_none()
    if row is None:
        raise NotFoundError(ErrorMessages.TEST_SESSION_NOT_FOUND)

    owner_id = row[0]
    if owner_id is None:
        return
    if not token or decode_user_id(token, "access") != owner_id:
        raise AuthorizationError(ErrorMessages.SESSION_ACCESS_DENIED)


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    hub: NotificationHub = websocket.app.state.notifications
    connection_token = websocket.query_params.get("token")
    await hub.connect(websocket)
    try:
        while True:
            raw = await websocket.receive_text()
            try:
                message = json.loads(raw)
            except json.JSONDecodeError:
                logger.info("Ignoring WebSocket message that is not JSON")
                continue
            if not isinstance(message, dict):
                logger.info("Ignoring WebSocket message that is not an object")
                continue

            message_type = message.get("type")
            if message_type == "ping":
                await websocket.send_json({"type": "pong", "timestamp": utc_now().isoformat()})
            elif message_type == "subscribe" and message.get("sessionId"):
                session_id = str(message["sessionId"])
                try:
                    await authorize_subscription(
                        websocket.app.state.database,
                        session_id,
                        message.get("token") or connection_token,
                    )
                except ServiceError as e:
                    logger.info(f"Refused subscription to {session_id}: {e.message}")
                    await websocket.send_json(
                        {"type": "error", "sessionId": session_id, "message": e.message}
                    )
                    continue
                hub.subscribe(websocket, session_id)
                await websocket.send_json({"type": "subscribed", "sessionId": session_id})
            else:
                logger.info(f"Ignoring WebSocket message of type {message_type!r}")
    except WebSocketDisconnect:
        pass
    finally:
        hub.disconnect(websocket)
