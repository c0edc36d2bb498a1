import pytest

from siro.core.exceptions import DuplicateKeyError
from siro.users.models import PresenceStatus


class TestUserDirectory:
    @pytest.mark.asyncio
    async def test_create_lowercases_username(self, directory):
        user = await directory.create("u1", "Alice")

        assert user.username == "alice"
        assert user.display_name == "Alice"
        assert user.status == PresenceStatus.OFFLINE
        assert (await directory.find_by_username("ALICE")).id == "u1"

    @pytest.mark.asyncio
    async def test_username_taken(self, directory, alice):
        with pytest.raises(DuplicateKeyError):
            await directory.create("u-other", "alice")

    @pytest.mark.asyncio
    async def test_add_friend_is_idempotent(self, directory, alice, bob):
        await directory.add_friend(alice.id, bob.id)
        user = await directory.add_friend(alice.id, bob.id)

        assert user.friends == [bob.id]

    @pytest.mark.asyncio
    async def test_discoverable_excludes_self_and_friends(self, directory, alice, bob, carol):
        await directory.add_friend(alice.id, bob.id)
        await directory.add_friend(bob.id, alice.id)

        found = await directory.discoverable(alice.id)

        assert [u.id for u in found] == [carol.id]

    @pytest.mark.asyncio
    async def test_update_profile_ignores_unknown_fields(self, directory, alice):
        user = await directory.update_profile(alice.id, about="hi", friends=["x"], status="Online")

        assert user.about == "hi"
        assert user.friends == []
        assert user.status == PresenceStatus.OFFLINE


class TestPresenceRecord:
    @pytest.mark.asyncio
    async def test_set_offline_only_for_owning_session(self, directory, alice):
        await directory.set_online(alice.id, "s1")
        await directory.set_online(alice.id, "s2")

        assert await directory.set_offline(alice.id, "s1") is False
        user = await directory.get(alice.id)
        assert user.status == PresenceStatus.ONLINE
        assert user.session_id == "s2"

        assert await directory.set_offline(alice.id, "s2") is True
        user = await directory.get(alice.id)
        assert user.status == PresenceStatus.OFFLINE
        assert user.session_id is None

    @pytest.mark.asyncio
    async def test_set_online_skipped_when_no_longer_current(self, directory, alice):
        await directory.set_online(alice.id, "s2")
        await directory.set_online(alice.id, "s1", still_current=lambda: False)

        assert (await directory.get(alice.id)).session_id == "s2"
