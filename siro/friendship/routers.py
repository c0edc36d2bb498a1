import logging
from typing import List

from fastapi import APIRouter, Depends

from siro.core.container import Services
from siro.core.dependencies import get_current_user_id, get_services
from siro.users.directory import UserDirectory

from .models import FriendRequest
from .schemas import (
    FriendRequestItem,
    FriendRequestsResponseModel,
    FriendsResponseModel,
)


logger = logging.getLogger(__name__)
router = APIRouter()


async def request_items(
    requests: List[FriendRequest], directory: UserDirectory
) -> List[FriendRequestItem]:
    """Attach sender and recipient summaries to each request."""
    user_ids = [r.sender_id for r in requests] + [r.recipient_id for r in requests]
    users = {user.id: user.summary() for user in await directory.get_many(user_ids)}

    return [
        FriendRequestItem(
            id=r.id,
            sender=users.get(r.sender_id),
            recipient=users.get(r.recipient_id),
            status=r.status,
            created_at=r.created_at,
        )
        for r in requests
    ]


@router.get("", response_model=FriendsResponseModel, status_code=200)
async def list_friends(
    user_id: str = Depends(get_current_user_id),
    services: Services = Depends(get_services),
):
    """
    List the authenticated user's friends.

    **Returns**
    - `friends`: user summaries (id, username, display name, avatar, presence status)

    **Errors**
    - `401`: Invalid or expired token.
    - `503`: Storage temporarily unavailable.
    """
    friends = await services.directory.friends_of(user_id)
    return {"friends": [friend.summary() for friend in sorted(friends, key=lambda u: u.username)]}


@router.get("/requests", response_model=FriendRequestsResponseModel, status_code=200)
async def incoming_requests(
    user_id: str = Depends(get_current_user_id),
    services: Services = Depends(get_services),
):
    """
    Friend requests other users sent to you that are still open, newest first.

    Requests are sent and accepted over the realtime connection
    (`friend_request` / `accept_request` events); this endpoint only reads.

    **Errors**
    - `401`: Invalid or expired token.
    """
    requests = await services.ledger.incoming(user_id)
    return {"requests": await request_items(requests, services.directory)}


@router.get("/requests/sent", response_model=FriendRequestsResponseModel, status_code=200)
async def outgoing_requests(
    user_id: str = Depends(get_current_user_id),
    services: Services = Depends(get_services),
):
    """
    Friend requests you sent that have not been accepted yet, newest first.

    **Errors**
    - `401`: Invalid or expired token.
    """
    requests = await services.ledger.outgoing(user_id)
    return {"requests": await request_items(requests, services.directory)}
