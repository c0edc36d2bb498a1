import json
import logging
from typing import Optional

import jwt
from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from siro.core.container import Services
from siro.core.dependencies import decode_token
from siro.core.exceptions import StoreError

from .presence import Session, SessionState, TransportClosed


logger = logging.getLogger(__name__)
router = APIRouter()

# handshake close codes, sent before the connection is accepted
MISSING_USER = 4400
UNAUTHORIZED = 4401
UNKNOWN_USER = 4404
SERVER_ERROR = 1011


def _transport(websocket: WebSocket):
    async def send(payload: dict):
        try:
            await websocket.send_json(payload)
        except (WebSocketDisconnect, RuntimeError) as error:
            raise TransportClosed(str(error)) from error

    async def close(code: int):
        try:
            await websocket.close(code=code)
        except RuntimeError:
            logger.debug(f"ws_close_ignored code={code} reason=already_closed")

    return send, close


async def _handshake(websocket: WebSocket, services: Services) -> Optional[str]:
    """Return the user id to bind, or close the socket and return None."""
    user_id = websocket.query_params.get("user_id")
    token = websocket.query_params.get("token")

    if not user_id:
        await websocket.close(code=MISSING_USER)
        return None

    if token or services.settings.ws_require_token:
        try:
            payload = decode_token(token or "", services.settings)
        except jwt.InvalidTokenError as error:
            logger.warning(f"ws_rejected user_id={user_id} reason=invalid_token error={error}")
            await websocket.close(code=UNAUTHORIZED)
            return None

        if payload.get("sub") != user_id:
            logger.warning(f"ws_rejected user_id={user_id} reason=token_subject_mismatch")
            await websocket.close(code=UNAUTHORIZED)
            return None

    try:
        user = await services.directory.get(user_id)
    except StoreError:
        logger.exception(f"ws_rejected user_id={user_id} reason=store_error")
        await websocket.close(code=SERVER_ERROR)
        return None

    if not user:
        logger.warning(f"ws_rejected user_id={user_id} reason=unknown_user")
        await websocket.close(code=UNKNOWN_USER)
        return None

    return user.id


@router.websocket("/ws")
async def realtime(websocket: WebSocket):
    """
    Realtime chat connection.

    **Input**
    - `user_id` (query): the user this connection speaks for.
    - `token` (query, optional unless `WS_REQUIRE_TOKEN`): Supabase access
      token whose `sub` must equal `user_id`.

    Frames are JSON `{"event": ..., "data": {...}, "ack": <optional id>}`.
    A newer connection for the same user replaces this one (close code 4000).

    **Close codes**
    - `4400`: missing `user_id`
    - `4401`: invalid token
    - `4404`: unknown user
    """
    services: Services = websocket.app.state.services

    user_id = await _handshake(websocket, services)
    if not user_id:
        return

    await websocket.accept()

    send, close = _transport(websocket)
    session = Session(send, close)

    try:
        await services.presence.bind(user_id, session)

        while session.state != SessionState.CLOSED:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000))

            raw = message.get("text")
            if raw is None:
                logger.warning(f"ws_frame_not_text user_id={user_id} session={session.handle}")
                continue

            try:
                payload = json.loads(raw)
            except ValueError:
                logger.warning(f"ws_frame_invalid_json user_id={user_id} session={session.handle}")
                continue

            await services.events.receive(session, payload)

    except WebSocketDisconnect as disconnect:
        logger.info(f"ws_disconnected user_id={user_id} session={session.handle} code={disconnect.code}")

    except StoreError:
        logger.exception(f"ws_store_error user_id={user_id} session={session.handle}")
        await session.close(SERVER_ERROR)

    finally:
        try:
            await services.presence.unbind(session)
        except StoreError:
            logger.exception(f"ws_unbind_failed user_id={user_id} session={session.handle}")
