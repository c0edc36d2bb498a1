"""
Presence & routing core.

Owns the in-process routing table: user id -> handle of the one live session
that currently speaks for that user, and handle -> Session. Nothing else holds
a reference to the table; the event router and the websocket endpoint get the
core injected.

Rules:
  - last bind wins: binding a user supersedes (and closes) any earlier session
  - guarded unbind: a disconnect only clears the route if it still points at
    the disconnecting session, so a stale close never clobbers a newer bind
  - delivery is best effort: no route, or a dead transport, means the event
    is dropped; nothing is queued or retried
  - on bind, messages still ``sent`` to the user become ``delivered`` and
    their senders are told (the recipient only acks deliveries while online)
"""

import logging
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional

from siro.chat.store import ConversationStore
from siro.core.exceptions import StoreError
from siro.users.directory import UserDirectory
from siro.utils.ids import new_id

from .events import MessageDelivered, OutboundEvent, SessionReplaced


logger = logging.getLogger(__name__)

# websocket close code for a session replaced by a newer connection
SESSION_REPLACED = 4000

SendFn = Callable[[dict], Awaitable[None]]
CloseFn = Callable[[int], Awaitable[None]]


class TransportClosed(Exception):
    """Raised by a session's send function when the peer is gone."""


class SessionState(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    BOUND = "bound"
    CLOSED = "closed"


class Session:
    """One live connection. ``handle`` is the opaque routing token."""

    def __init__(self, send: SendFn, close: Optional[CloseFn] = None, handle: Optional[str] = None):
        self.handle = handle or new_id()
        self.user_id: Optional[str] = None
        self.state = SessionState.UNAUTHENTICATED
        self._send = send
        self._close = close

    def __repr__(self):
        return f"<Session {self.handle} user={self.user_id} {self.state.value}>"

    @property
    def is_bound(self) -> bool:
        return self.state == SessionState.BOUND

    def mark_bound(self, user_id: str):
        if self.state != SessionState.UNAUTHENTICATED:
            raise RuntimeError(f"session {self.handle} cannot bind while {self.state.value}")
        self.user_id = user_id
        self.state = SessionState.BOUND

    def mark_closed(self):
        self.state = SessionState.CLOSED

    async def send(self, event: OutboundEvent) -> bool:
        if self.state == SessionState.CLOSED:
            return False
        try:
            await self._send(event.to_wire())
        except TransportClosed:
            logger.debug(f"send_dropped session={self.handle} event={event.event}")
            return False
        return True

    async def close(self, code: int = 1000):
        self.mark_closed()
        close, self._close = self._close, None
        if close is not None:
            await close(code)


class PresenceCore:
    def __init__(self, directory: UserDirectory, conversations: ConversationStore):
        self._directory = directory
        self._conversations = conversations
        self._routes: Dict[str, str] = {}
        self._sessions: Dict[str, Session] = {}

    def route_of(self, user_id: str) -> Optional[str]:
        return self._routes.get(user_id)

    def session_of(self, handle: str) -> Optional[Session]:
        return self._sessions.get(handle)

    def is_online(self, user_id: str) -> bool:
        return user_id in self._routes

    def online_users(self) -> List[str]:
        return list(self._routes)

    async def bind(self, user_id: str, session: Session) -> Optional[Session]:
        """
        Make ``session`` the live route for ``user_id``.

        Returns the session it superseded, if any. That session has been told
        ``session_replaced`` and closed.
        """
        session.mark_bound(user_id)

        previous = self._routes.get(user_id)
        self._routes[user_id] = session.handle
        self._sessions[session.handle] = session

        superseded = None
        if previous is not None and previous != session.handle:
            superseded = self._sessions.pop(previous, None)

        logger.info(f"user_connected user_id={user_id} session={session.handle}")

        if superseded is not None:
            logger.info(f"session_superseded user_id={user_id} session={superseded.handle}")
            await superseded.send(SessionReplaced())
            await superseded.close(SESSION_REPLACED)

        await self._directory.set_online(
            user_id,
            session.handle,
            still_current=lambda: self._routes.get(user_id) == session.handle,
        )

        try:
            await self._catch_up(user_id)
        except StoreError:
            logger.exception(f"delivery_catch_up_failed user_id={user_id}")

        return superseded

    async def unbind(self, session: Session) -> bool:
        """
        Drop ``session``. Returns True when it was the user's live route and the
        user is now offline, False for stale or never-bound sessions.
        """
        user_id = session.user_id
        session.mark_closed()

        if self._sessions.get(session.handle) is session:
            del self._sessions[session.handle]

        if user_id is None or self._routes.get(user_id) != session.handle:
            logger.debug(f"unbind_ignored user_id={user_id} session={session.handle}")
            return False

        del self._routes[user_id]
        await self._directory.set_offline(user_id, session.handle)
        logger.info(f"user_disconnected user_id={user_id} session={session.handle}")
        return True

    async def emit(self, user_id: str, event: OutboundEvent) -> bool:
        """Send to the user's live session, if there is one."""
        handle = self._routes.get(user_id)
        session = self._sessions.get(handle) if handle else None
        if session is None:
            logger.debug(f"emit_skipped user_id={user_id} event={event.event} reason=offline")
            return False
        return await session.send(event)

    async def _catch_up(self, user_id: str):
        delivered = await self._conversations.deliver_pending(user_id)
        for message in delivered:
            await self.emit(
                message.sender_id,
                MessageDelivered(conversation_id=message.conversation_id, message_id=message.id),
            )
        if delivered:
            logger.info(f"delivery_catch_up user_id={user_id} count={len(delivered)}")
