from decimal import Decimal
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from cuca.config import Settings
from cuca.database import Database
from cuca.models import Decision
from cuca.services import Services, build_services

PASSWORD = "1234"


@pytest.fixture
def settings(tmp_path) -> Settings:
    # file-backed SQLite: every connection sees the same data and BEGIN IMMEDIATE serialises writers
    return Settings(
        _env_file=None,
        ENV="local",
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'cuca_test.db'}",
        SCHEDULER_ENABLED=False,
        BCRYPT_ROUNDS=4,
    )


@pytest_asyncio.fixture
async def database(settings) -> AsyncGenerator[Database, None]:
    db = Database.from_settings(settings)
    await db.create_all()
    yield db
    await db.dispose()


@pytest.fixture
def services(database, settings) -> Services:
    return build_services(database, settings)


@pytest_asyncio.fixture
async def admin(services):
    return await services.accounts.open_account("admin", PASSWORD, is_admin=True)


@pytest_asyncio.fixture
async def client(settings, database) -> AsyncGenerator[AsyncClient, None]:
    from cuca.main import create_app

    app = create_app(settings, database)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


# ------------------------------------------------------------
# helpers
# ------------------------------------------------------------
async def open_user(services, username, referrer_id=None, linked=True):
    user = await services.accounts.open_account(username, PASSWORD, referrer_id=referrer_id)
    if linked:
        await services.accounts.link_payout_account(
            user.id, "Banco BAI", f"AO06-{username}", username.title(), PASSWORD
        )
    return user


async def fund_recharge(services, user_id, amount, admin_id=None):
    deposit = await services.deposits.submit_deposit(user_id, Decimal(str(amount)), f"receipt-{user_id[:8]}")
    return await services.deposits.decide_deposit(deposit.id, Decision.APPROVED, admin_id=admin_id)


async def fund_withdrawable(services, user_id, amount):
    async with services.database.transaction() as db:
        await services.ledger.credit_earning(db, user_id, Decimal(str(amount)))


async def balances(services, user_id):
    d = await services.accounts.get_dashboard(user_id)
    return d.balance, d.balance_recharge, d.balance_withdraw


async def make_package(services, name="Ouro", category="longo", rate="2", days=10, lo="100", hi="10000", **extra):
    return await services.packages.create_package(
        name=name,
        category=category,
        min_amount=Decimal(lo),
        max_amount=Decimal(hi),
        daily_return_rate=Decimal(rate),
        duration_days=days,
        **extra,
    )
