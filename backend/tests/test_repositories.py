"""
Tests for the account, connection and auth-state repositories.
"""

from datetime import timedelta

import pytest

from journal.db.models import CTraderAuthState
from journal.db.repositories import (
    CTraderAuthStateRepository,
    CTraderConnectionRepository,
    TradingAccountRepository,
)

from conftest import ACCOUNT_ID, ACCOUNT_NUMBER, NOW, USER_ID, add_account, add_connection


class TestBaseRepository:

    @pytest.mark.asyncio
    async def test_get_by_primary_key(self, session_factory):
        await add_account(session_factory)

        async with session_factory() as session:
            repo = TradingAccountRepository(session)
            assert (await repo.get(ACCOUNT_ID)).user_id == USER_ID
            assert await repo.get("missing") is None

    @pytest.mark.asyncio
    async def test_get_by_unknown_field(self, session_factory):
        async with session_factory() as session:
            with pytest.raises(ValueError):
                await TradingAccountRepository(session).get_by_field("nope", 1)

    @pytest.mark.asyncio
    async def test_create_without_commit_is_rolled_back(self, session_factory):
        await add_account(session_factory)

        async with session_factory() as session:
            repo = CTraderAuthStateRepository(session)
            await repo.create(
                {
                    "state": "s1",
                    "user_id": USER_ID,
                    "trading_account_id": ACCOUNT_ID,
                    "expires_at": NOW + timedelta(hours=1),
                },
                commit=False,
            )
            assert await repo.get_by_state("s1") is not None
            await session.rollback()

        async with session_factory() as session:
            assert await CTraderAuthStateRepository(session).get_by_state("s1") is None


class TestTradingAccountRepository:

    @pytest.mark.asyncio
    async def test_get_for_user_scopes_owner(self, session_factory):
        await add_account(session_factory)

        async with session_factory() as session:
            repo = TradingAccountRepository(session)
            assert await repo.get_for_user(ACCOUNT_ID, USER_ID) is not None
            assert await repo.get_for_user(ACCOUNT_ID, "someone-else") is None

    @pytest.mark.asyncio
    async def test_update_balances(self, session_factory):
        await add_account(session_factory)

        async with session_factory() as session:
            repo = TradingAccountRepository(session)
            assert await repo.update_balances(ACCOUNT_ID, 10.0, 12.0, "USD") is True
            assert await repo.update_balances("missing", 1.0, 1.0, "USD") is False

        async with session_factory() as session:
            account = await TradingAccountRepository(session).get(ACCOUNT_ID)
            assert (account.current_balance, account.current_equity, account.currency) == (10.0, 12.0, "USD")


class TestConnectionRepository:

    @pytest.mark.asyncio
    async def test_list_active_orders_by_connected_at(self, session_factory):
        await add_account(session_factory, account_id="late")
        await add_account(session_factory, account_id="early")
        await add_account(session_factory, account_id="off", is_active=False)
        await add_connection(session_factory, account_id="late", connected_at=NOW - timedelta(days=1))
        await add_connection(session_factory, account_id="early", connected_at=NOW - timedelta(days=5))
        await add_connection(session_factory, account_id="off")

        async with session_factory() as session:
            connections = await CTraderConnectionRepository(session).list_active()

        assert [c.trading_account_id for c in connections] == ["early", "late"]

    @pytest.mark.asyncio
    async def test_upsert_updates_existing_pair(self, session_factory):
        await add_account(session_factory)
        connection_id = await add_connection(session_factory)

        async with session_factory() as session:
            connection = await CTraderConnectionRepository(session).upsert(
                USER_ID, ACCOUNT_ID, ACCOUNT_NUMBER, "new-access", "new-refresh", NOW + timedelta(days=30)
            )

        assert connection.id == connection_id
        assert connection.access_token == "new-access"

    @pytest.mark.asyncio
    async def test_get_for_account_scoped_to_owner(self, session_factory):
        await add_account(session_factory)
        await add_connection(session_factory)

        async with session_factory() as session:
            repo = CTraderConnectionRepository(session)
            assert await repo.get_for_account(ACCOUNT_ID) is not None
            assert await repo.get_for_account(ACCOUNT_ID, USER_ID) is not None
            assert await repo.get_for_account(ACCOUNT_ID, "someone-else") is None


class TestAuthStateRepository:

    @pytest.mark.asyncio
    async def test_purge_expired(self, session_factory):
        await add_account(session_factory)
        async with session_factory() as session:
            for state, offset in (("old", -timedelta(minutes=1)), ("live", timedelta(minutes=30))):
                session.add(CTraderAuthState(
                    state=state,
                    user_id=USER_ID,
                    trading_account_id=ACCOUNT_ID,
                    expires_at=NOW + offset,
                ))
            await session.commit()

        async with session_factory() as session:
            repo = CTraderAuthStateRepository(session)
            assert await repo.purge_expired(NOW) == 1
            assert await repo.get_by_state("old") is None
            assert await repo.get_by_state("live") is not None
