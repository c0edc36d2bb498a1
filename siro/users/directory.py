import logging
from typing import Callable, Iterable, List, Optional

from siro.core.documents import DocumentStore, USERS

from .models import PresenceStatus, User


logger = logging.getLogger(__name__)

PROFILE_FIELDS = ("display_name", "about", "avatar")


class UserDirectory:
    """Profiles, friend lists and the persisted presence record of each user."""

    def __init__(self, store: DocumentStore):
        self._store = store

    async def create(
        self,
        user_id: str,
        username: str,
        email: Optional[str] = None,
        display_name: Optional[str] = None,
    ) -> User:
        """Raises DuplicateKeyError when the id or username is taken."""
        user = User(
            id=str(user_id),
            username=username.lower(),
            email=email,
            display_name=display_name or username,
        )
        await self._store.insert(USERS, user.model_dump(mode="json"))
        logger.info(f"user_created user_id={user.id} username={user.username}")
        return user

    async def get(self, user_id: str) -> Optional[User]:
        doc = await self._store.get(USERS, str(user_id))
        return User.model_validate(doc) if doc else None

    async def get_many(self, user_ids: Iterable[str]) -> List[User]:
        users = []
        for user_id in dict.fromkeys(user_ids):
            user = await self.get(user_id)
            if user:
                users.append(user)
        return users

    async def find_by_username(self, username: str) -> Optional[User]:
        docs = await self._store.find(USERS, where={"username": username.lower()})
        return User.model_validate(docs[0]) if docs else None

    async def friends_of(self, user_id: str) -> List[User]:
        user = await self.get(user_id)
        if not user:
            return []
        return await self.get_many(user.friends)

    async def discoverable(self, user_id: str) -> List[User]:
        """Everyone except the user and their friends."""
        user = await self.get(user_id)
        if not user:
            return []

        docs = await self._store.find(USERS)
        others = [
            User.model_validate(doc)
            for doc in docs
            if doc["id"] != user.id and doc["id"] not in user.friends
        ]
        return sorted(others, key=lambda u: u.username)

    async def add_friend(self, user_id: str, friend_id: str) -> Optional[User]:
        """Idempotent: an id already in the friend set is left alone."""

        def mutate(doc: dict):
            if friend_id in doc["friends"]:
                return None
            doc["friends"].append(friend_id)
            return doc

        doc = await self._store.update(USERS, str(user_id), mutate)
        return User.model_validate(doc) if doc else None

    async def update_profile(self, user_id: str, **fields) -> Optional[User]:
        changes = {k: v for k, v in fields.items() if k in PROFILE_FIELDS and v is not None}

        def mutate(doc: dict):
            if not changes:
                return None
            doc.update(changes)
            return doc

        doc = await self._store.update(USERS, str(user_id), mutate)
        return User.model_validate(doc) if doc else None

    async def set_online(
        self,
        user_id: str,
        session_id: str,
        still_current: Optional[Callable[[], bool]] = None,
    ) -> Optional[User]:
        """``still_current`` is checked at write time; a bind that has been
        superseded in the meantime must not overwrite the newer session."""

        def mutate(doc: dict):
            if still_current is not None and not still_current():
                return None
            doc["status"] = PresenceStatus.ONLINE.value
            doc["session_id"] = session_id
            return doc

        doc = await self._store.update(USERS, str(user_id), mutate)
        return User.model_validate(doc) if doc else None

    async def set_offline(self, user_id: str, session_id: str) -> bool:
        """Only clears presence still owned by ``session_id``."""
        cleared = False

        def mutate(doc: dict):
            nonlocal cleared
            if doc.get("session_id") != session_id:
                return None
            doc["status"] = PresenceStatus.OFFLINE.value
            doc["session_id"] = None
            cleared = True
            return doc

        await self._store.update(USERS, str(user_id), mutate)
        return cleared
