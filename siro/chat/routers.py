import logging

from fastapi import APIRouter, Depends, HTTPException, status

from siro.core.container import Services
from siro.core.dependencies import get_current_user_id, get_services

from .schemas import GetConversationsResponseModel, GetMessagesResponseModel


logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/conversations", response_model=GetConversationsResponseModel, status_code=200)
async def get_conversations(
    user_id: str = Depends(get_current_user_id),
    services: Services = Depends(get_services),
):
    """
    Get all conversations the authenticated user participates in.

    **Returns**
    - `conversations`: most recently active first, each with:
        - `participants`: summaries of both users
        - `last_message`: the newest message, if any
        - `unread_count`: messages sent to you that you have not read

    **Errors**
    - `401`: Unauthorized
    - `503`: Storage temporarily unavailable
    """
    summaries = await services.conversations.summaries_for(user_id)
    return {"conversations": summaries}


@router.get("/messages/{conversation_id}", response_model=GetMessagesResponseModel, status_code=200)
async def get_messages(
    conversation_id: str,
    user_id: str = Depends(get_current_user_id),
    services: Services = Depends(get_services),
):
    """
    Get the message history of a conversation, oldest first.

    **Errors**
    - `401`: Unauthorized
    - `403`: You are not a participant of this conversation
    - `404`: Conversation not found
    """
    conversation = await services.conversations.get(conversation_id)
    if not conversation:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Conversation not found.")

    if not conversation.has_participant(user_id):
        logger.warning(f"messages_forbidden conversation_id={conversation_id} user_id={user_id}")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You are not a participant of this conversation.",
        )

    return {"conversation_id": conversation.id, "messages": conversation.messages}
