"""WebSocket routes for feed streaming."""
from fastapi import APIRouter, WebSocket, status
from ..streaming.websocket import handle_websocket_stream

router = APIRouter(tags=["websocket"])


@router.websocket("/ws/feed")
async def feed_stream_endpoint(websocket: WebSocket):
    """
    WebSocket endpoint for the live token activity feed.

    On connect the client receives a welcome message with the session status
    and the current feed snapshot; afterwards one "record" message per new
    feed entry. The server pings every WS_PING_INTERVAL seconds and answers
    "ping" with "pong".

    Example client (JavaScript):
    ```javascript
    const ws = new WebSocket('ws://localhost:8080/ws/feed');
    ws.onmessage = async (event) => {
        const text = typeof event.data === 'string' ? event.data : await event.data.text();
        const data = JSON.parse(text);
        if (data.type === 'ping') {
            ws.send('pong');
        }
    };
    ```
    """
    state = websocket.app.state
    session = getattr(state, "session", None)
    manager = getattr(state, "stream_manager", None)
    if session is None or manager is None:
        await websocket.close(code=status.WS_1013_TRY_AGAIN_LATER)
        return
    await handle_websocket_stream(
        websocket,
        manager,
        session,
        ping_interval=session.settings.WS_PING_INTERVAL,
    )
