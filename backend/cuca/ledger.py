# 📂 backend/cuca/ledger.py — account ledger: the only writer of balances
# -----------------------------------------------------------------------------
# Rules:
#   1. users.balance / balance_recharge / balance_withdraw change ONLY here.
#   2. Every primitive runs inside the caller's transaction (AsyncSession from
#      Database.transaction()) under the owner's row lock:
#         SELECT … FROM users WHERE id = :id FOR UPDATE
#      The caller's status flip / audit insert shares that transaction, so the
#      balance change and its reason commit or roll back together.
#   3. Several accounts in one transaction → lock_accounts() first, ascending id.
#   4. Every mutation leaves one ledger_entries row with signed deltas.
#
# Buckets:
#   reserve_for_withdrawal          withdraw −, balance −
#   release_withdrawal_reservation  withdraw +, balance +
#   credit_recharge                 recharge +, balance +
#   debit_recharge                  recharge −           (principal stays in balance)
#   credit_earning                  withdraw +, balance +
#   credit_commission               withdraw +, balance + (commissions are withdrawable)
# -----------------------------------------------------------------------------

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Dict, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .errors import InsufficientFunds, NotFound, ValidationError
from .models import LedgerEntry, User
from .utils import dec, gen_uuid, money_str, q2, utcnow

log = logging.getLogger("cuca.ledger")

ZERO = Decimal("0.00")

_LOCKED_KEY = "cuca.locked_users"


class Ledger:
    """Balance mutation primitives. Stateless; one instance is shared by all services."""

    # =========================
    # 🔒 Locks
    # =========================
    async def lock_account(self, session: AsyncSession, user_id: str) -> User:
        """
        SELECT … FOR UPDATE on the account row. populate_existing refreshes an
        object the session read earlier without a lock. A second call inside
        the same transaction returns the locked object as-is (with its pending
        changes).
        """
        locked = session.info.setdefault(_LOCKED_KEY, set())
        if user_id in locked:
            user = await session.get(User, user_id)
            if user is not None:
                return user

        res = await session.execute(
            select(User)
            .where(User.id == user_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        user = res.scalar_one_or_none()
        if user is None:
            raise NotFound("User not found", details={"user_id": user_id})
        locked.add(user_id)
        return user

    async def lock_accounts(self, session: AsyncSession, *user_ids: Optional[str]) -> Dict[str, User]:
        """
        Locks several accounts in ascending id order (deadlock-free for two
        concurrent cross-crediting transactions). None ids are skipped.
        """
        locked: Dict[str, User] = {}
        for uid in sorted({u for u in user_ids if u}):
            locked[uid] = await self.lock_account(session, uid)
        return locked

    # =========================
    # 💸 Primitives
    # =========================
    async def reserve_for_withdrawal(
        self, session: AsyncSession, user_id: str, amount, reference_id: Optional[str] = None
    ) -> User:
        amount = self._positive(amount)
        user = await self.lock_account(session, user_id)
        if dec(user.balance_withdraw) < amount or dec(user.balance) < amount:
            raise InsufficientFunds(
                "Insufficient withdrawable balance",
                details={"available": money_str(user.balance_withdraw), "requested": money_str(amount)},
            )
        return self._apply(session, user, "reserve_withdrawal", amount,
                           d_balance=-amount, d_withdraw=-amount,
                           reference_type="withdrawal", reference_id=reference_id)

    async def release_withdrawal_reservation(
        self, session: AsyncSession, user_id: str, amount, reference_id: Optional[str] = None
    ) -> User:
        amount = self._positive(amount)
        user = await self.lock_account(session, user_id)
        return self._apply(session, user, "release_withdrawal", amount,
                           d_balance=amount, d_withdraw=amount,
                           reference_type="withdrawal", reference_id=reference_id)

    async def credit_recharge(
        self, session: AsyncSession, user_id: str, amount, reference_id: Optional[str] = None
    ) -> User:
        amount = self._positive(amount)
        user = await self.lock_account(session, user_id)
        return self._apply(session, user, "credit_recharge", amount,
                           d_balance=amount, d_recharge=amount,
                           reference_type="deposit", reference_id=reference_id)

    async def debit_recharge(
        self, session: AsyncSession, user_id: str, amount, reference_id: Optional[str] = None
    ) -> User:
        amount = self._positive(amount)
        user = await self.lock_account(session, user_id)
        if dec(user.balance_recharge) < amount:
            raise InsufficientFunds(
                "Insufficient recharge balance",
                details={"available": money_str(user.balance_recharge), "requested": money_str(amount)},
            )
        return self._apply(session, user, "debit_recharge", amount,
                           d_recharge=-amount,
                           reference_type="investment", reference_id=reference_id)

    async def credit_earning(
        self, session: AsyncSession, user_id: str, amount, reference_id: Optional[str] = None
    ) -> User:
        amount = self._positive(amount)
        user = await self.lock_account(session, user_id)
        return self._apply(session, user, "credit_earning", amount,
                           d_balance=amount, d_withdraw=amount,
                           reference_type="investment", reference_id=reference_id)

    async def credit_commission(
        self, session: AsyncSession, user_id: str, amount, reference_id: Optional[str] = None
    ) -> User:
        amount = self._positive(amount)
        user = await self.lock_account(session, user_id)
        return self._apply(session, user, "credit_commission", amount,
                           d_balance=amount, d_withdraw=amount,
                           reference_type="deposit", reference_id=reference_id)

    # =========================
    # 🔧 Internals
    # =========================
    @staticmethod
    def _positive(amount) -> Decimal:
        value = q2(amount)
        if value <= ZERO:
            raise ValidationError("Amount must be positive", details={"amount": str(amount)})
        return value

    @staticmethod
    def _apply(
        session: AsyncSession,
        user: User,
        operation: str,
        amount: Decimal,
        *,
        d_balance: Decimal = ZERO,
        d_recharge: Decimal = ZERO,
        d_withdraw: Decimal = ZERO,
        reference_type: Optional[str] = None,
        reference_id: Optional[str] = None,
    ) -> User:
        user.balance = q2(dec(user.balance) + d_balance)
        user.balance_recharge = q2(dec(user.balance_recharge) + d_recharge)
        user.balance_withdraw = q2(dec(user.balance_withdraw) + d_withdraw)
        user.updated_at = utcnow()

        session.add(LedgerEntry(
            id=gen_uuid(),
            user_id=user.id,
            operation=operation,
            amount=amount,
            delta_balance=d_balance,
            delta_recharge=d_recharge,
            delta_withdraw=d_withdraw,
            reference_type=reference_type,
            reference_id=reference_id,
        ))
        log.debug("%s user=%s amount=%s ref=%s:%s", operation, user.id, amount, reference_type, reference_id)
        return user
