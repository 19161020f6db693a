# 📂 backend/cuca/scheduler.py — daily earning accrual (APScheduler)
# -----------------------------------------------------------------------------
# Purpose:
#   • Every ACCRUAL_INTERVAL_MINUTES credit the daily earnings of investment
#     positions whose next whole day since creation has elapsed.
#
# Business rules:
#   • Selection: status = 'Active' AND next_accrual_at <= now, where
#     next_accrual_at = created_at + (credited days + 1) × ACCRUAL_PERIOD_HOURS.
#   • Per position, own transaction, position row locked:
#       elapsed   = floor((now − created_at) / period)
#       to_credit = min(elapsed, duration_days)
#       credited  = count(investment_earnings for the position)   ← audit table
#       for day in credited+1 .. to_credit:
#           insert investment_earnings(day_number = day) + Ledger.credit_earning
#       days_remaining = duration_days − to_credit; last_accrual_at = now;
#       days_remaining = 0 → Completed, never selected again.
#   • The count comes from the audit table, never from a counter, so a tick
#     after an outage catches up, and a duplicate tick (overlapping run,
#     another instance) finds the count already caught up and credits nothing.
#     UNIQUE(investment_id, day_number) backs this if the lock is bypassed.
#   • One failing position is logged and skipped; the tick goes on.
#
# Integration:
#   • main.py lifespan → AccrualScheduler(database, settings).start() / shutdown().
#   • run_accrual_tick() can also be called directly (admin endpoint, tests, cron).
# -----------------------------------------------------------------------------

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import List, Optional, Tuple

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy import func, select

from .config import Settings
from .database import Database
from .ledger import Ledger
from .models import Investment, InvestmentEarning, InvestmentStatus
from .schemas import AccrualMismatch, AccrualReport
from .utils import as_naive_utc, gen_uuid, q2, utcnow

log = logging.getLogger("cuca.scheduler")

JOB_ID = "cuca_accrual"


def _elapsed_days(created_at: datetime, now: datetime, period: timedelta) -> int:
    if now <= created_at:
        return 0
    return (now - created_at) // period


# =============================================================================
# Tick
# =============================================================================
async def run_accrual_tick(
    database: Database,
    settings: Settings,
    ledger: Optional[Ledger] = None,
    now: Optional[datetime] = None,
) -> AccrualReport:
    """
    One accrual pass over every due position. Safe to run concurrently with
    itself and with user requests.
    """
    ledger = ledger or Ledger()
    now = as_naive_utc(now) if now is not None else utcnow()
    period = timedelta(hours=settings.ACCRUAL_PERIOD_HOURS)
    batch_size = max(1, settings.ACCRUAL_BATCH_SIZE)
    report = AccrualReport(ran_at=now)

    last_id = ""
    while True:
        async with database.session() as db:
            res = await db.execute(
                select(Investment.id)
                .where(
                    Investment.status == InvestmentStatus.ACTIVE.value,
                    Investment.next_accrual_at <= now,
                    Investment.id > last_id,
                )
                .order_by(Investment.id)
                .limit(batch_size)
            )
            due_ids = list(res.scalars().all())
        if not due_ids:
            break

        for investment_id in due_ids:
            report.positions_due += 1
            try:
                created, credited_amount, completed = await _accrue_position(
                    database, ledger, investment_id, now, period
                )
            except Exception:
                report.failed += 1
                log.exception("accrual failed for investment %s", investment_id)
                continue
            if created:
                report.positions_credited += 1
                report.earnings_created += created
                report.total_credited = q2(report.total_credited + credited_amount)
            if completed:
                report.completed += 1

        last_id = due_ids[-1]

    log.info(
        "accrual tick at %s: due=%d credited=%d earnings=%d total=%s completed=%d failed=%d",
        now.isoformat(), report.positions_due, report.positions_credited, report.earnings_created,
        report.total_credited, report.completed, report.failed,
    )
    return report


async def _accrue_position(
    database: Database,
    ledger: Ledger,
    investment_id: str,
    now: datetime,
    period: timedelta,
) -> Tuple[int, Decimal, bool]:
    """Returns (earning rows created, amount credited, completed now)."""
    async with database.transaction() as db:
        res = await db.execute(
            select(Investment).where(Investment.id == investment_id).with_for_update()
        )
        inv = res.scalar_one_or_none()
        if inv is None or inv.status != InvestmentStatus.ACTIVE.value:
            return 0, Decimal("0.00"), False

        credited = int((await db.execute(
            select(func.count(InvestmentEarning.id)).where(InvestmentEarning.investment_id == inv.id)
        )).scalar_one() or 0)
        to_credit = min(_elapsed_days(inv.created_at, now, period), inv.duration_days)

        created = 0
        daily = q2(inv.daily_earning)
        for day in range(credited + 1, to_credit + 1):
            db.add(InvestmentEarning(
                id=gen_uuid(),
                investment_id=inv.id,
                user_id=inv.user_id,
                day_number=day,
                amount=daily,
                due_at=inv.created_at + day * period,
                credited_at=now,
            ))
            await ledger.credit_earning(db, inv.user_id, daily, reference_id=inv.id)
            created += 1

        done = max(credited, to_credit)
        inv.days_remaining = max(inv.duration_days - done, 0)
        inv.last_accrual_at = now
        inv.next_accrual_at = inv.created_at + (done + 1) * period

        completed = False
        if inv.days_remaining <= 0:
            inv.status = InvestmentStatus.COMPLETED.value
            inv.completed_at = now
            completed = True

    if created:
        log.debug("investment %s: +%d day(s) × %s", investment_id, created, daily)
    if completed:
        log.info("investment %s completed", investment_id)
    return created, q2(daily * created), completed


# =============================================================================
# Reconciliation audit
# =============================================================================
async def find_accrual_mismatches(
    database: Database,
    settings: Settings,
    now: Optional[datetime] = None,
) -> List[AccrualMismatch]:
    """
    Positions where count(earnings) != min(elapsed days, duration_days), plus
    any whose days_remaining disagrees with its earning rows.
    """
    now = as_naive_utc(now) if now is not None else utcnow()
    period = timedelta(hours=settings.ACCRUAL_PERIOD_HOURS)

    async with database.session() as db:
        counts = (
            select(InvestmentEarning.investment_id, func.count(InvestmentEarning.id).label("n"))
            .group_by(InvestmentEarning.investment_id)
            .subquery()
        )
        res = await db.execute(
            select(Investment, func.coalesce(counts.c.n, 0))
            .outerjoin(counts, counts.c.investment_id == Investment.id)
            .order_by(Investment.created_at)
        )
        rows = res.all()

    mismatches: List[AccrualMismatch] = []
    for inv, n in rows:
        n = int(n)
        expected = min(_elapsed_days(inv.created_at, now, period), inv.duration_days)
        failures: List[str] = []
        if n < expected:
            failures.append("behind")
        if n > expected:
            failures.append("ahead")
        if inv.days_remaining != inv.duration_days - n:
            failures.append("days_remaining")
        if (inv.status == InvestmentStatus.COMPLETED.value) != (n >= inv.duration_days):
            failures.append("status")
        if failures:
            mismatches.append(AccrualMismatch(
                investment_id=inv.id, expected_days=expected, credited_days=n, failures=failures,
            ))

    if mismatches:
        log.warning("accrual audit: %d position(s) out of line", len(mismatches))
    return mismatches


# =============================================================================
# Periodic job
# =============================================================================
class AccrualScheduler:
    """
    AsyncIOScheduler with one interval job. max_instances=1 + coalesce keep a
    single process from stacking runs; ticks from other processes are handled
    by the row locks and the audit count.
    """

    def __init__(self, database: Database, settings: Settings, ledger: Optional[Ledger] = None) -> None:
        self.database = database
        self.settings = settings
        self.ledger = ledger or Ledger()
        self.scheduler = AsyncIOScheduler(timezone="UTC")
        self.last_report: Optional[AccrualReport] = None

    @property
    def running(self) -> bool:
        return self.scheduler.running

    def start(self, run_immediately: bool = True) -> None:
        if self.scheduler.running:
            return
        extra = {"next_run_time": datetime.now(timezone.utc)} if run_immediately else {}
        self.scheduler.add_job(
            self._job,
            IntervalTrigger(minutes=self.settings.ACCRUAL_INTERVAL_MINUTES),
            id=JOB_ID,
            max_instances=1,
            coalesce=True,
            replace_existing=True,
            **extra,
        )
        self.scheduler.start()
        log.info("accrual scheduler started (every %d min)", self.settings.ACCRUAL_INTERVAL_MINUTES)

    def shutdown(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            log.info("accrual scheduler stopped")

    async def tick(self, now: Optional[datetime] = None) -> AccrualReport:
        report = await run_accrual_tick(self.database, self.settings, self.ledger, now=now)
        self.last_report = report
        return report

    async def _job(self) -> None:
        try:
            await self.tick()
        except Exception:
            # retried on the next interval
            log.exception("accrual tick failed")
