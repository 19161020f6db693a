# 📂 backend/cuca/services/deposits.py — deposit workflow
# -----------------------------------------------------------------------------
# States: Pending → Approved | Rejected (terminal, one-shot).
#
# submit_deposit:
#   • validated amount > 0 and a receipt reference (opaque id of the uploaded
#     proof); creates a Pending row. No balance effect.
#
# decide_deposit (admin):
#   • Conditional UPDATE … WHERE id = :id AND status = 'Pending'. Zero rows →
#     AlreadyProcessed (or NotFound). A retried / duplicated call therefore never
#     re-applies the credit.
#   • Approved, same transaction:
#       - lock owner (+ referrer) in ascending id order,
#       - credit_recharge(owner, amount),
#       - credit_commission(referrer, amount × REFERRAL_COMMISSION_RATE) if any.
#   • Rejected: status only, funds were never held.
# -----------------------------------------------------------------------------

from __future__ import annotations

import logging
from typing import List, Optional

from sqlalchemy import select, update

from ..config import Settings
from ..database import Database
from ..errors import AlreadyProcessed, NotFound, ValidationError
from ..ledger import Ledger
from ..models import Decision, Deposit, DepositStatus, User
from ..schemas import DecisionInput, DepositOut, SubmitDepositInput, parse_input
from ..utils import dec, gen_uuid, q2, utcnow

log = logging.getLogger("cuca.deposits")


class DepositService:
    def __init__(self, database: Database, settings: Settings, ledger: Optional[Ledger] = None) -> None:
        self.database = database
        self.settings = settings
        self.ledger = ledger or Ledger()

    async def submit_deposit(self, user_id: str, amount, receipt_ref: str) -> DepositOut:
        data = parse_input(SubmitDepositInput, amount=amount, receipt_ref=receipt_ref)

        async with self.database.transaction() as db:
            if await db.get(User, user_id) is None:
                raise NotFound("User not found", details={"user_id": user_id})
            deposit = Deposit(
                id=gen_uuid(),
                user_id=user_id,
                amount=q2(data.amount),
                status=DepositStatus.PENDING.value,
                receipt_ref=data.receipt_ref,
                created_at=utcnow(),
            )
            db.add(deposit)

        log.info("deposit submitted id=%s user=%s amount=%s", deposit.id, user_id, deposit.amount)
        return DepositOut.model_validate(deposit)

    async def decide_deposit(self, deposit_id: str, decision, admin_id: Optional[str] = None) -> DepositOut:
        data = parse_input(DecisionInput, decision=decision)
        new_status = (
            DepositStatus.APPROVED if data.decision == Decision.APPROVED else DepositStatus.REJECTED
        ).value
        commission = None

        async with self.database.transaction() as db:
            res = await db.execute(
                update(Deposit)
                .where(Deposit.id == deposit_id, Deposit.status == DepositStatus.PENDING.value)
                .values(status=new_status, decided_at=utcnow(), decided_by=admin_id)
                .execution_options(synchronize_session=False)
            )
            if res.rowcount == 0:
                current = await db.execute(select(Deposit.status).where(Deposit.id == deposit_id))
                status = current.scalar_one_or_none()
                if status is None:
                    raise NotFound("Deposit not found", details={"deposit_id": deposit_id})
                raise AlreadyProcessed(details={"deposit_id": deposit_id, "status": status})

            deposit = (await db.execute(select(Deposit).where(Deposit.id == deposit_id))).scalar_one()

            if new_status == DepositStatus.APPROVED.value:
                owner = await db.get(User, deposit.user_id)
                referrer_id = owner.referrer_id if owner is not None else None
                await self.ledger.lock_accounts(db, deposit.user_id, referrer_id)

                await self.ledger.credit_recharge(db, deposit.user_id, deposit.amount, reference_id=deposit.id)

                if referrer_id:
                    commission = q2(dec(deposit.amount) * dec(self.settings.REFERRAL_COMMISSION_RATE))
                    if commission > 0:
                        await self.ledger.credit_commission(db, referrer_id, commission, reference_id=deposit.id)

        log.info(
            "deposit decided id=%s status=%s amount=%s commission=%s by=%s",
            deposit.id, deposit.status, deposit.amount, commission, admin_id,
        )
        return DepositOut.model_validate(deposit)

    async def list_deposits(self, user_id: str) -> List[DepositOut]:
        async with self.database.session() as db:
            res = await db.execute(
                select(Deposit).where(Deposit.user_id == user_id).order_by(Deposit.created_at.desc())
            )
            return [DepositOut.model_validate(d) for d in res.scalars().all()]

    async def list_all_deposits(self, status: Optional[str] = None, limit: int = 200) -> List[DepositOut]:
        stmt = select(Deposit)
        if status:
            if status not in {s.value for s in DepositStatus}:
                raise ValidationError("Unknown deposit status", details={"status": status})
            stmt = stmt.where(Deposit.status == status)
        stmt = stmt.order_by(Deposit.created_at.desc()).limit(max(1, min(int(limit), 1000)))
        async with self.database.session() as db:
            res = await db.execute(stmt)
            return [DepositOut.model_validate(d) for d in res.scalars().all()]
