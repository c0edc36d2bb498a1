import logging
from dataclasses import dataclass
from typing import Optional

from siro.chat.store import ConversationStore
from siro.friendship.ledger import FriendRequestLedger
from siro.realtime.presence import PresenceCore
from siro.realtime.router import EventRouter
from siro.users.directory import UserDirectory

from .config import Settings
from .documents import DocumentStore, InMemoryDocumentStore
from .supabase_client import get_supabase
from .supabase_store import SupabaseDocumentStore


logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Everything the routers and the websocket endpoint share for one app."""

    settings: Settings
    store: DocumentStore
    directory: UserDirectory
    conversations: ConversationStore
    ledger: FriendRequestLedger
    presence: PresenceCore
    events: EventRouter


def build_store(settings: Settings) -> DocumentStore:
    if settings.document_store == "memory":
        return InMemoryDocumentStore()

    if settings.document_store == "supabase":
        return SupabaseDocumentStore(get_supabase(settings))

    raise ValueError(f"unknown DOCUMENT_STORE {settings.document_store!r}")


def build_services(settings: Settings, store: Optional[DocumentStore] = None) -> Services:
    store = store or build_store(settings)
    logger.info(f"services_built store={type(store).__name__}")

    directory = UserDirectory(store)
    conversations = ConversationStore(store, directory)
    ledger = FriendRequestLedger(store, directory, conversations)
    presence = PresenceCore(directory, conversations)
    events = EventRouter(presence, directory, ledger, conversations)

    return Services(
        settings=settings,
        store=store,
        directory=directory,
        conversations=conversations,
        ledger=ledger,
        presence=presence,
        events=events,
    )
