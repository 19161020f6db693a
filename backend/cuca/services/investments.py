# 📂 backend/cuca/services/investments.py — investment engine
# -----------------------------------------------------------------------------
# open_investment (one transaction, nothing partial):
#   1) package exists → NotFound; Active → PackageInactive;
#   2) min ≤ amount ≤ max, and a daily earning of at least 0.01
#      → AmountOutOfRange;
#   3) account row lock (serialises concurrent purchases of one user);
#   4) short-term ("curto") only:
#        - no earlier position on this package, ever → AlreadyPurchased;
#        - an Active long-term ("longo") position whose name equals the short
#          package's name minus its suffix marker ("Ouro VIP" → "Ouro")
#          → MissingPrerequisite;
#   5) debit_recharge(amount) → InsufficientFunds;
#   6) daily_earning = round(amount × rate / 100, 2), position snapshot:
#        days_remaining = duration, last_accrual_at = NULL,
#        next_accrual_at = created_at + ACCRUAL_PERIOD_HOURS.
#
# Reads: list_active_investments, list_investments, investment_history. History
# earnings come from investment_earnings (the audit table), never from the clock.
# -----------------------------------------------------------------------------

from __future__ import annotations

import logging
from datetime import timedelta
from typing import List, Optional

from sqlalchemy import select

from ..config import Settings
from ..database import Database
from ..errors import AlreadyPurchased, AmountOutOfRange, MissingPrerequisite, NotFound, PackageInactive
from ..ledger import Ledger
from ..models import (
    Investment,
    InvestmentEarning,
    InvestmentPackage,
    InvestmentStatus,
    PackageCategory,
    PackageStatus,
)
from ..schemas import InvestmentHistoryItem, InvestmentOut, OpenInvestmentInput, parse_input
from ..utils import base_package_name, dec, gen_uuid, money_str, q2, utcnow

log = logging.getLogger("cuca.investments")


class InvestmentService:
    def __init__(self, database: Database, settings: Settings, ledger: Optional[Ledger] = None) -> None:
        self.database = database
        self.settings = settings
        self.ledger = ledger or Ledger()

    async def open_investment(self, user_id: str, package_id: str, amount) -> InvestmentOut:
        data = parse_input(OpenInvestmentInput, package_id=package_id, amount=amount)
        amount = q2(data.amount)

        async with self.database.transaction() as db:
            pkg = await db.get(InvestmentPackage, data.package_id)
            if pkg is None:
                raise NotFound("Package not found", details={"package_id": data.package_id})
            if pkg.status != PackageStatus.ACTIVE.value:
                raise PackageInactive(details={"package_id": pkg.id})
            if amount < dec(pkg.min_amount) or amount > dec(pkg.max_amount):
                raise AmountOutOfRange(details={
                    "min": money_str(pkg.min_amount),
                    "max": money_str(pkg.max_amount),
                    "requested": money_str(amount),
                })
            daily_earning = q2(amount * dec(pkg.daily_return_rate) / 100)
            if daily_earning <= 0:
                raise AmountOutOfRange("Amount too small to earn at this package's rate", details={
                    "requested": money_str(amount),
                    "daily_return_rate": str(pkg.daily_return_rate),
                })

            await self.ledger.lock_account(db, user_id)

            if pkg.category == PackageCategory.SHORT_TERM.value:
                await self._check_short_term_eligibility(db, user_id, pkg)

            investment_id = gen_uuid()
            await self.ledger.debit_recharge(db, user_id, amount, reference_id=investment_id)

            now = utcnow()
            investment = Investment(
                id=investment_id,
                user_id=user_id,
                package_id=pkg.id,
                package_name=pkg.name,
                category=pkg.category,
                amount=amount,
                daily_return_rate=pkg.daily_return_rate,
                daily_earning=daily_earning,
                duration_days=pkg.duration_days,
                days_remaining=pkg.duration_days,
                status=InvestmentStatus.ACTIVE.value,
                created_at=now,
                last_accrual_at=None,
                next_accrual_at=now + timedelta(hours=self.settings.ACCRUAL_PERIOD_HOURS),
            )
            db.add(investment)

        log.info(
            "investment opened id=%s user=%s package=%s amount=%s daily=%s days=%s",
            investment.id, user_id, investment.package_name, amount,
            investment.daily_earning, investment.duration_days,
        )
        return InvestmentOut.model_validate(investment)

    async def _check_short_term_eligibility(self, db, user_id: str, pkg: InvestmentPackage) -> None:
        bought = await db.execute(
            select(Investment.id)
            .where(Investment.user_id == user_id, Investment.package_id == pkg.id)
            .limit(1)
        )
        if bought.scalar_one_or_none() is not None:
            raise AlreadyPurchased(details={"package_id": pkg.id})

        wanted = base_package_name(pkg.name, self.settings.SHORT_TERM_NAME_SUFFIXES)
        res = await db.execute(
            select(Investment.package_name).where(
                Investment.user_id == user_id,
                Investment.category == PackageCategory.LONG_TERM.value,
                Investment.status == InvestmentStatus.ACTIVE.value,
            )
        )
        if not any(base_package_name(name, ()) == wanted for name in res.scalars().all()):
            raise MissingPrerequisite(details={"package_id": pkg.id, "requires": wanted})

    async def list_active_investments(self, user_id: str) -> List[InvestmentOut]:
        return await self.list_investments(user_id, status=InvestmentStatus.ACTIVE.value)

    async def list_investments(self, user_id: str, status: Optional[str] = None) -> List[InvestmentOut]:
        stmt = select(Investment).where(Investment.user_id == user_id)
        if status:
            stmt = stmt.where(Investment.status == status)
        stmt = stmt.order_by(Investment.created_at.desc())
        async with self.database.session() as db:
            res = await db.execute(stmt)
            return [InvestmentOut.model_validate(i) for i in res.scalars().all()]

    async def investment_history(self, user_id: str) -> List[InvestmentHistoryItem]:
        """Purchases and credited days of every position, newest first."""
        async with self.database.session() as db:
            positions = (
                await db.execute(select(Investment).where(Investment.user_id == user_id))
            ).scalars().all()
            earnings = (
                await db.execute(select(InvestmentEarning).where(InvestmentEarning.user_id == user_id))
            ).scalars().all()

        names = {p.id: p.package_name for p in positions}
        items: List[InvestmentHistoryItem] = [
            InvestmentHistoryItem(
                id=p.id,
                type="investment",
                investment_id=p.id,
                package_name=p.package_name,
                amount=p.amount,
                status=p.status,
                timestamp=p.created_at,
            )
            for p in positions
        ]
        items.extend(
            InvestmentHistoryItem(
                id=e.id,
                type="earning",
                investment_id=e.investment_id,
                package_name=names.get(e.investment_id, ""),
                amount=e.amount,
                status="Credited",
                timestamp=e.credited_at,
                day_number=e.day_number,
            )
            for e in earnings
        )
        items.sort(key=lambda i: (i.timestamp, i.day_number or 0), reverse=True)
        return items
