"""
Tests for prompt storage and the admin audit log.

Each test gets its own SQLite file under pytest's tmp_path.
"""

import pytest
import pytest_asyncio

from discord_ai_bot.database.repositories import DatabaseManager, to_async_url
from discord_ai_bot.utils.exceptions import DatabaseError


@pytest_asyncio.fixture
async def db_manager(database_config):
    manager = DatabaseManager(database_config)
    await manager.initialize()
    yield manager
    await manager.close()


class TestUrls:

    def test_sqlite_url(self):
        assert to_async_url("sqlite:///./bot.db") == "sqlite+aiosqlite:///./bot.db"

    def test_postgres_url(self):
        assert to_async_url("postgresql://u:p@host/db") == "postgresql+asyncpg://u:p@host/db"

    def test_async_url_unchanged(self):
        assert to_async_url("sqlite+aiosqlite:///x.db") == "sqlite+aiosqlite:///x.db"


class TestLifecycle:

    @pytest.mark.asyncio
    async def test_health_check(self, db_manager):
        assert await db_manager.health_check() is True

    @pytest.mark.asyncio
    async def test_uninitialized_manager(self, database_config):
        manager = DatabaseManager(database_config)
        assert await manager.health_check() is False
        with pytest.raises(DatabaseError):
            async with manager.get_session():
                pass

    @pytest.mark.asyncio
    async def test_closed_manager_cannot_initialize(self, database_config):
        manager = DatabaseManager(database_config)
        await manager.close()
        with pytest.raises(DatabaseError):
            await manager.initialize()


class TestUserPrompts:

    @pytest.mark.asyncio
    async def test_missing_prompt(self, db_manager):
        assert await db_manager.get_user_prompt("123") is None
        assert await db_manager.get_user_prompt_record("123") is None

    @pytest.mark.asyncio
    async def test_set_and_get(self, db_manager):
        record = await db_manager.set_user_prompt("123", "Be terse.")
        assert record.user_id == "123"
        assert await db_manager.get_user_prompt("123") == "Be terse."

        data = record.to_dict()
        assert data["userId"] == "123"
        assert data["customPrompt"] == "Be terse."
        assert data["createdAt"] is not None

    @pytest.mark.asyncio
    async def test_set_replaces_existing(self, db_manager):
        first = await db_manager.set_user_prompt("123", "Be terse.")
        second = await db_manager.set_user_prompt("123", "Be verbose.")
        assert second.id == first.id
        assert await db_manager.get_user_prompt("123") == "Be verbose."

    @pytest.mark.asyncio
    async def test_prompts_are_per_user(self, db_manager):
        await db_manager.set_user_prompt("1", "one")
        await db_manager.set_user_prompt("2", "two")
        assert await db_manager.get_user_prompt("1") == "one"
        assert await db_manager.get_user_prompt("2") == "two"

    @pytest.mark.asyncio
    async def test_delete(self, db_manager):
        await db_manager.set_user_prompt("123", "Be terse.")
        assert await db_manager.delete_user_prompt("123") is True
        assert await db_manager.delete_user_prompt("123") is False
        assert await db_manager.get_user_prompt("123") is None


class TestAdminActions:

    @pytest.mark.asyncio
    async def test_record_and_list_newest_first(self, db_manager):
        await db_manager.record_admin_action("reset-global", "42", details={"previousCount": 7})
        await db_manager.record_admin_action("reset-user", "42", target="99")

        actions = await db_manager.get_admin_actions()
        assert [a.action for a in actions] == ["reset-user", "reset-global"]
        assert actions[0].target == "99"
        assert actions[1].details == {"previousCount": 7}
        assert actions[0].to_dict()["adminId"] == "42"

    @pytest.mark.asyncio
    async def test_limit(self, db_manager):
        for i in range(5):
            await db_manager.record_admin_action("reset-users", str(i))
        actions = await db_manager.get_admin_actions(limit=2)
        assert [a.admin_id for a in actions] == ["4", "3"]
