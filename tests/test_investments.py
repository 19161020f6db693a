from datetime import timedelta
from decimal import Decimal

import pytest

from cuca.errors import (
    AlreadyPurchased,
    AmountOutOfRange,
    InsufficientFunds,
    MissingPrerequisite,
    NotFound,
    PackageInactive,
)
from cuca.scheduler import find_accrual_mismatches, run_accrual_tick
from cuca.utils import base_package_name

from conftest import balances, fund_recharge, make_package, open_user


async def test_open_long_term_position(services):
    user = await open_user(services, "alice")
    await fund_recharge(services, user.id, "1000")
    pkg = await make_package(services, name="Ouro", rate="2", days=10)

    inv = await services.investments.open_investment(user.id, pkg.id, Decimal("500"))

    assert inv.status == "Active"
    assert inv.daily_earning == Decimal("10.00")
    assert inv.days_remaining == 10
    assert inv.last_accrual_at is None
    assert inv.package_name == "Ouro"
    assert await balances(services, user.id) == (Decimal("1000.00"), Decimal("500.00"), Decimal("0"))

    stored = await services.investments.list_active_investments(user.id)
    assert [i.id for i in stored] == [inv.id]


async def test_daily_earning_is_rounded_to_cents(services):
    user = await open_user(services, "bob")
    await fund_recharge(services, user.id, "1000")
    pkg = await make_package(services, rate="1.3333")

    inv = await services.investments.open_investment(user.id, pkg.id, Decimal("333.33"))
    # 333.33 × 1.3333 / 100 = 4.44428...
    assert inv.daily_earning == Decimal("4.44")


async def test_amount_that_earns_nothing_per_day_is_refused(services):
    user = await open_user(services, "bea")
    await fund_recharge(services, user.id, "10")
    pkg = await make_package(services, rate="0.1", lo="1", days=2)
    before = await balances(services, user.id)

    # 1.00 × 0.1 / 100 = 0.001 → 0.00 per day
    with pytest.raises(AmountOutOfRange):
        await services.investments.open_investment(user.id, pkg.id, Decimal("1"))
    assert await balances(services, user.id) == before
    assert await services.investments.list_investments(user.id) == []

    inv = await services.investments.open_investment(user.id, pkg.id, Decimal("10"))
    assert inv.daily_earning == Decimal("0.01")

    report = await run_accrual_tick(services.database, services.settings, services.ledger,
                                    now=inv.created_at + timedelta(days=5))
    assert (report.earnings_created, report.failed, report.completed) == (2, 0, 1)
    assert await find_accrual_mismatches(services.database, services.settings,
                                         now=inv.created_at + timedelta(days=5)) == []


async def test_eligibility_failures_leave_balances_alone(services):
    user = await open_user(services, "carol")
    await fund_recharge(services, user.id, "150")
    pkg = await make_package(services, lo="100", hi="1000")
    off = await make_package(services, name="Prata", status="Inactive")
    before = await balances(services, user.id)

    with pytest.raises(AmountOutOfRange):
        await services.investments.open_investment(user.id, pkg.id, Decimal("99.99"))
    with pytest.raises(AmountOutOfRange):
        await services.investments.open_investment(user.id, pkg.id, Decimal("1000.01"))
    with pytest.raises(PackageInactive):
        await services.investments.open_investment(user.id, off.id, Decimal("100"))
    with pytest.raises(NotFound):
        await services.investments.open_investment(user.id, "missing", Decimal("100"))
    with pytest.raises(InsufficientFunds):
        await services.investments.open_investment(user.id, pkg.id, Decimal("150.01"))

    assert await balances(services, user.id) == before
    assert await services.investments.list_investments(user.id) == []


async def test_short_term_requires_matching_long_term(services):
    user = await open_user(services, "dave")
    await fund_recharge(services, user.id, "2000")
    short = await make_package(services, name="Ouro VIP", category="curto", days=3)
    other_long = await make_package(services, name="Prata")
    before = await balances(services, user.id)

    with pytest.raises(MissingPrerequisite):
        await services.investments.open_investment(user.id, short.id, Decimal("100"))
    assert await balances(services, user.id) == before

    await services.investments.open_investment(user.id, other_long.id, Decimal("100"))
    with pytest.raises(MissingPrerequisite):
        await services.investments.open_investment(user.id, short.id, Decimal("100"))

    long = await make_package(services, name="ouro")
    await services.investments.open_investment(user.id, long.id, Decimal("100"))
    inv = await services.investments.open_investment(user.id, short.id, Decimal("100"))
    assert inv.category == "curto"


async def test_short_term_only_once(services):
    user = await open_user(services, "erin")
    await fund_recharge(services, user.id, "2000")
    long = await make_package(services, name="Diamante")
    short = await make_package(services, name="Diamante - VIP", category="curto", days=3)
    await services.investments.open_investment(user.id, long.id, Decimal("500"))

    await services.investments.open_investment(user.id, short.id, Decimal("100"))
    with pytest.raises(AlreadyPurchased):
        await services.investments.open_investment(user.id, short.id, Decimal("100"))

    # long-term packages have no such limit
    await services.investments.open_investment(user.id, long.id, Decimal("500"))
    assert len(await services.investments.list_active_investments(user.id)) == 3


async def test_package_edits_do_not_reach_open_positions(services):
    user = await open_user(services, "frank")
    await fund_recharge(services, user.id, "1000")
    pkg = await make_package(services, rate="2", days=10)
    inv = await services.investments.open_investment(user.id, pkg.id, Decimal("500"))

    await services.packages.update_package(pkg.id, daily_return_rate=Decimal("5"), duration_days=30, name="Ouro 2")

    [stored] = await services.investments.list_active_investments(user.id)
    assert (stored.daily_earning, stored.duration_days, stored.package_name) == (Decimal("10.00"), 10, "Ouro")
    assert stored.id == inv.id


async def test_history_reads_the_earning_rows(services):
    user = await open_user(services, "gina")
    await fund_recharge(services, user.id, "1000")
    pkg = await make_package(services, rate="2", days=10)
    inv = await services.investments.open_investment(user.id, pkg.id, Decimal("500"))

    history = await services.investments.investment_history(user.id)
    assert [(h.type, h.amount) for h in history] == [("investment", Decimal("500.00"))]

    await run_accrual_tick(services.database, services.settings, services.ledger,
                           now=inv.created_at + timedelta(days=2, minutes=1))
    history = await services.investments.investment_history(user.id)
    earnings = [h for h in history if h.type == "earning"]
    assert [h.day_number for h in earnings] == [2, 1]
    assert all(h.amount == Decimal("10.00") and h.package_name == "Ouro" for h in earnings)


@pytest.mark.parametrize(
    "name, expected",
    [
        ("Ouro VIP", "ouro"),
        ("Ouro - VIP", "ouro"),
        ("Ouro (VIP)", "ouro"),
        ("ouro vip", "ouro"),
        ("Ouro", "ouro"),
        ("  Ouro   Premium  VIP ", "ouro premium"),
        ("VIP", "vip"),
        ("OuroVIP", "ourovip"),
    ],
)
def test_base_package_name(name, expected):
    assert base_package_name(name, ["VIP"]) == expected
