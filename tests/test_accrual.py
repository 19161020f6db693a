import asyncio
from datetime import timedelta
from decimal import Decimal

from sqlalchemy import func, select

from cuca.models import InvestmentEarning
from cuca.scheduler import AccrualScheduler, find_accrual_mismatches, run_accrual_tick

from conftest import balances, fund_recharge, make_package, open_user

DAY = timedelta(hours=24)


async def earning_count(services, investment_id):
    async with services.database.session() as db:
        return (await db.execute(
            select(func.count(InvestmentEarning.id)).where(InvestmentEarning.investment_id == investment_id)
        )).scalar_one()


async def position(services, user_id, investment_id):
    for inv in await services.investments.list_investments(user_id):
        if inv.id == investment_id:
            return inv
    raise AssertionError(investment_id)


async def tick(services, now):
    return await run_accrual_tick(services.database, services.settings, services.ledger, now=now)


async def opened(services, username="alice", amount="500", days=10):
    user = await open_user(services, username)
    await fund_recharge(services, user.id, "1000")
    pkg = await make_package(services, rate="2", days=days)
    inv = await services.investments.open_investment(user.id, pkg.id, Decimal(amount))
    return user, inv


async def test_three_missed_days_catch_up_in_one_tick(services):
    user, inv = await opened(services)
    assert await balances(services, user.id) == (Decimal("1000.00"), Decimal("500.00"), Decimal("0"))

    report = await tick(services, inv.created_at + 3 * DAY + timedelta(minutes=5))

    assert report.earnings_created == 3
    assert report.total_credited == Decimal("30.00")
    assert await earning_count(services, inv.id) == 3
    assert await balances(services, user.id) == (Decimal("1030.00"), Decimal("500.00"), Decimal("30.00"))
    pos = await position(services, user.id, inv.id)
    assert pos.days_remaining == 7
    assert pos.status == "Active"
    assert pos.last_accrual_at is not None


async def test_nothing_before_the_first_full_day(services):
    user, inv = await opened(services)
    report = await tick(services, inv.created_at + DAY - timedelta(seconds=1))
    assert report.positions_due == 0
    assert await earning_count(services, inv.id) == 0
    assert (await position(services, user.id, inv.id)).last_accrual_at is None


async def test_repeated_tick_is_a_no_op(services):
    user, inv = await opened(services)
    now = inv.created_at + 2 * DAY + timedelta(hours=1)

    await tick(services, now)
    again = await tick(services, now)
    later_same_day = await tick(services, now + timedelta(hours=5))

    assert again.earnings_created == 0
    assert later_same_day.earnings_created == 0
    assert await earning_count(services, inv.id) == 2
    assert await balances(services, user.id) == (Decimal("1020.00"), Decimal("500.00"), Decimal("20.00"))


async def test_irregular_ticks_keep_the_reconciliation_invariant(services):
    user, inv = await opened(services, days=5)
    offsets = [
        timedelta(hours=3),
        DAY + timedelta(minutes=1),
        DAY + timedelta(hours=23),
        3 * DAY + timedelta(hours=12),
        3 * DAY + timedelta(hours=13),
        4 * DAY,
        9 * DAY,
        12 * DAY,
    ]
    for offset in offsets:
        now = inv.created_at + offset
        await tick(services, now)
        expected = min(offset // DAY, 5)
        assert await earning_count(services, inv.id) == expected
        assert await find_accrual_mismatches(services.database, services.settings, now=now) == []

    pos = await position(services, user.id, inv.id)
    assert pos.status == "Completed"
    assert pos.days_remaining == 0
    assert pos.completed_at is not None
    assert await balances(services, user.id) == (Decimal("1050.00"), Decimal("500.00"), Decimal("50.00"))


async def test_overlapping_ticks_do_not_double_credit(services):
    user, inv = await opened(services)
    now = inv.created_at + 4 * DAY + timedelta(minutes=1)

    reports = await asyncio.gather(*(tick(services, now) for _ in range(4)))

    assert sum(r.earnings_created for r in reports) == 4
    assert await earning_count(services, inv.id) == 4
    assert await balances(services, user.id) == (Decimal("1040.00"), Decimal("500.00"), Decimal("40.00"))


async def test_completed_position_never_accrues_again(services):
    user, inv = await opened(services, days=2)

    first = await tick(services, inv.created_at + 5 * DAY)
    assert first.completed == 1
    second = await tick(services, inv.created_at + 50 * DAY)

    assert second.positions_due == 0
    assert await earning_count(services, inv.id) == 2
    assert await balances(services, user.id) == (Decimal("1020.00"), Decimal("500.00"), Decimal("20.00"))


async def test_several_positions_and_small_batches(services, settings):
    user = await open_user(services, "bob")
    await fund_recharge(services, user.id, "1000")
    pkg = await make_package(services, rate="1", days=10)
    invs = [await services.investments.open_investment(user.id, pkg.id, Decimal("100")) for _ in range(5)]

    small = settings.model_copy(update={"ACCRUAL_BATCH_SIZE": 2})
    report = await run_accrual_tick(services.database, small, services.ledger,
                                    now=max(i.created_at for i in invs) + DAY)

    assert report.positions_due == 5
    assert report.earnings_created == 5
    assert await balances(services, user.id) == (Decimal("1005.00"), Decimal("500.00"), Decimal("5.00"))


async def test_audit_reports_lagging_positions(services):
    user, inv = await opened(services)
    lagging = await find_accrual_mismatches(services.database, services.settings, now=inv.created_at + 2 * DAY)
    assert [(m.investment_id, m.expected_days, m.credited_days, m.failures) for m in lagging] == [
        (inv.id, 2, 0, ["behind"])
    ]


async def test_scheduler_tick_and_lifecycle(services, settings):
    user, inv = await opened(services)
    scheduler = AccrualScheduler(services.database, settings.model_copy(update={"ACCRUAL_INTERVAL_MINUTES": 60}))

    report = await scheduler.tick(now=inv.created_at + DAY)
    assert report.earnings_created == 1
    assert scheduler.last_report == report

    scheduler.start(run_immediately=False)
    assert scheduler.running
    assert scheduler.scheduler.get_job("cuca_accrual") is not None
    scheduler.shutdown()
    # let the event loop process the shutdown
    await asyncio.sleep(0)
