# 📂 backend/cuca/services/withdrawals.py — withdrawal workflow
# -----------------------------------------------------------------------------
# States: Pending → Approved | Rejected (terminal, one-shot).
#
# request_withdrawal:
#   1) amount > 0 and ≥ WITHDRAW_MIN_AMOUNT (checked before any DB access);
#   2) account row lock;
#   3) transaction password (bcrypt) → BadCredentials;
#   4) linked payout account → NoLinkedAccount;
#   5) reserve_for_withdrawal (balance_withdraw and balance −amount) → InsufficientFunds;
#   6) fee = amount × WITHDRAW_FEE_RATE, net = amount − fee, destination copied.
#   Funds are deducted at request time, so concurrent requests cannot together
#   take more than the balance held when the first one locked the row.
#
# decide_withdrawal (admin):
#   • Conditional UPDATE on status = 'Pending'; zero rows → AlreadyProcessed.
#   • Rejected → release_withdrawal_reservation(requested_amount), exactly once.
#   • Approved → no balance movement; on_withdrawal_approved hooks run after
#     commit. A failing hook is logged, the decision stays.
# -----------------------------------------------------------------------------

from __future__ import annotations

import logging
from typing import Awaitable, Callable, List, Optional

from sqlalchemy import select, update

from ..config import Settings
from ..database import Database
from ..errors import AlreadyProcessed, BadCredentials, NoLinkedAccount, NotFound, ValidationError
from ..ledger import Ledger
from ..models import Decision, Withdrawal, WithdrawalStatus
from ..schemas import DecisionInput, WithdrawalOut, WithdrawalRequestInput, parse_input
from ..utils import dec, gen_uuid, money_str, q2, utcnow, verify_password

log = logging.getLogger("cuca.withdrawals")

ApprovalHook = Callable[[WithdrawalOut], Awaitable[None]]


class WithdrawalService:
    def __init__(self, database: Database, settings: Settings, ledger: Optional[Ledger] = None) -> None:
        self.database = database
        self.settings = settings
        self.ledger = ledger or Ledger()
        self._approval_hooks: List[ApprovalHook] = []

    def on_withdrawal_approved(self, hook: ApprovalHook) -> ApprovalHook:
        """Registers an async callback for approved withdrawals. Usable as a decorator."""
        self._approval_hooks.append(hook)
        return hook

    def quote(self, amount) -> dict:
        """Fee / net for an amount, as it would be fixed on the request."""
        amount = q2(amount)
        fee = q2(amount * dec(self.settings.WITHDRAW_FEE_RATE))
        return {"amount": amount, "fee": fee, "net_amount": q2(amount - fee)}

    async def request_withdrawal(self, user_id: str, amount, transaction_password: str) -> WithdrawalOut:
        data = parse_input(WithdrawalRequestInput, amount=amount, transaction_password=transaction_password)
        minimum = q2(self.settings.WITHDRAW_MIN_AMOUNT)
        if data.amount < minimum:
            raise ValidationError(
                "Amount is below the withdrawal minimum",
                details={"minimum": money_str(minimum), "requested": money_str(data.amount)},
            )
        quote = self.quote(data.amount)

        async with self.database.transaction() as db:
            user = await self.ledger.lock_account(db, user_id)
            if not verify_password(data.transaction_password, user.transaction_password_hash):
                raise BadCredentials()
            if not user.has_linked_account:
                raise NoLinkedAccount()

            withdrawal_id = gen_uuid()
            await self.ledger.reserve_for_withdrawal(db, user_id, quote["amount"], reference_id=withdrawal_id)

            withdrawal = Withdrawal(
                id=withdrawal_id,
                user_id=user_id,
                requested_amount=quote["amount"],
                fee=quote["fee"],
                net_amount=quote["net_amount"],
                status=WithdrawalStatus.PENDING.value,
                destination_bank_name=user.linked_account_bank_name,
                destination_account_number=user.linked_account_number,
                destination_account_holder=user.linked_account_holder,
                created_at=utcnow(),
            )
            db.add(withdrawal)

        log.info(
            "withdrawal requested id=%s user=%s amount=%s fee=%s net=%s",
            withdrawal.id, user_id, withdrawal.requested_amount, withdrawal.fee, withdrawal.net_amount,
        )
        return WithdrawalOut.model_validate(withdrawal)

    async def decide_withdrawal(self, withdrawal_id: str, decision, admin_id: Optional[str] = None) -> WithdrawalOut:
        data = parse_input(DecisionInput, decision=decision)
        new_status = (
            WithdrawalStatus.APPROVED if data.decision == Decision.APPROVED else WithdrawalStatus.REJECTED
        ).value

        async with self.database.transaction() as db:
            res = await db.execute(
                update(Withdrawal)
                .where(Withdrawal.id == withdrawal_id, Withdrawal.status == WithdrawalStatus.PENDING.value)
                .values(status=new_status, decided_at=utcnow(), decided_by=admin_id)
                .execution_options(synchronize_session=False)
            )
            if res.rowcount == 0:
                current = await db.execute(select(Withdrawal.status).where(Withdrawal.id == withdrawal_id))
                status = current.scalar_one_or_none()
                if status is None:
                    raise NotFound("Withdrawal not found", details={"withdrawal_id": withdrawal_id})
                raise AlreadyProcessed(details={"withdrawal_id": withdrawal_id, "status": status})

            withdrawal = (await db.execute(select(Withdrawal).where(Withdrawal.id == withdrawal_id))).scalar_one()

            if new_status == WithdrawalStatus.REJECTED.value:
                await self.ledger.release_withdrawal_reservation(
                    db, withdrawal.user_id, withdrawal.requested_amount, reference_id=withdrawal.id
                )

        out = WithdrawalOut.model_validate(withdrawal)
        log.info("withdrawal decided id=%s status=%s by=%s", out.id, out.status, admin_id)

        if new_status == WithdrawalStatus.APPROVED.value:
            await self._run_approval_hooks(out)
        return out

    async def list_withdrawals(self, user_id: str) -> List[WithdrawalOut]:
        async with self.database.session() as db:
            res = await db.execute(
                select(Withdrawal).where(Withdrawal.user_id == user_id).order_by(Withdrawal.created_at.desc())
            )
            return [WithdrawalOut.model_validate(w) for w in res.scalars().all()]

    async def list_all_withdrawals(self, status: Optional[str] = None, limit: int = 200) -> List[WithdrawalOut]:
        stmt = select(Withdrawal)
        if status:
            if status not in {s.value for s in WithdrawalStatus}:
                raise ValidationError("Unknown withdrawal status", details={"status": status})
            stmt = stmt.where(Withdrawal.status == status)
        stmt = stmt.order_by(Withdrawal.created_at.desc()).limit(max(1, min(int(limit), 1000)))
        async with self.database.session() as db:
            res = await db.execute(stmt)
            return [WithdrawalOut.model_validate(w) for w in res.scalars().all()]

    async def _run_approval_hooks(self, withdrawal: WithdrawalOut) -> None:
        for hook in self._approval_hooks:
            try:
                await hook(withdrawal)
            except Exception:
                log.exception("withdrawal approval hook %r failed for %s", hook, withdrawal.id)
