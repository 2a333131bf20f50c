"""
Live session notifications over WebSocket.

Delivery is best-effort: a failed send drops that connection, and nothing
in the test session pipeline depends on a notification arriving.
"""
import logging
from typing import Any, Dict, Set

from fastapi import Request, WebSocket

from iqtest.core.datetime_utils import utc_now

logger = logging.getLogger(__name__)


class NotificationHub:
    """Tracks open sockets and the sessions each one subscribed to."""

    def __init__(self) -> None:
        self._connections: Set[WebSocket] = set()
        self._subscriptions: Dict[str, Set[WebSocket]] = {}

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    def subscriber_count(self, session_id: str) -> int:
        return len(self._subscriptions.get(session_id, ()))

    async def connect(self, websocket: WebSocket) -> None:
        await websocket.accept()
        self._connections.add(websocket)
        await websocket.send_json(
            {
                "type": "connection",
                "message": "Connected to IQ test server",
                "timestamp": utc_now().isoformat(),
            }
        )

    def disconnect(self, websocket: WebSocket) -> None:
        self._connections.discard(websocket)
        for session_id in list(self._subscriptions):
            subscribers = self._subscriptions[session_id]
            subscribers.discard(websocket)
            if not subscribers:
                del self._subscriptions[session_id]

    def subscribe(self, websocket: WebSocket, session_id: str) -> None:
        self._subscriptions.setdefault(session_id, set()).add(websocket)

    async def publish(self, session_id: str, event_type: str, data: Dict[str, Any]) -> int:
        """Send an event to a session's subscribers; returns the delivered count."""
        message = {
            "type": event_type,
            "sessionId": session_id,
            "data": data,
            "timestamp": utc_now().isoformat(),
        }
        delivered = 0
        for websocket in list(self._subscriptions.get(session_id, ())):
            try:
                await websocket.send_json(message)
                delivered += 1
            except Exception as e:
                logger.info(f"Dropping WebSocket subscriber of {session_id}: {e}")
                self.disconnect(websocket)
        return delivered


def get_notification_hub(request: Request) -> NotificationHub:
    return request.app.state.notifications
