from typing import List

from pydantic import BaseModel

from .models import ConversationSummary, Message


# Get Conversations
class GetConversationsResponseModel(BaseModel):
    conversations: List[ConversationSummary]


# Get messages
class GetMessagesResponseModel(BaseModel):
    conversation_id: str
    messages: List[Message]
