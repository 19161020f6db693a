# 📂 backend/cuca/services/accounts.py — accounts, payout account, dashboard
# -----------------------------------------------------------------------------
# • open_account       — registration: zero balances, bcrypt transaction
#                        password, referrer set once (must exist).
# • link_payout_account — stores the payout destination after a password check.
# • get_dashboard / get_linked_account / list_ledger_entries — reads.
# • list_accounts — admin listing, newest first.
# Balances are never touched here: accounts start at zero and every later
# change goes through ledger.Ledger.
# -----------------------------------------------------------------------------

from __future__ import annotations

import logging
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from ..config import Settings
from ..database import Database
from ..errors import BadCredentials, NoLinkedAccount, NotFound, ValidationError
from ..ledger import Ledger
from ..models import LedgerEntry, User
from ..schemas import (
    AccountSummaryOut,
    DashboardOut,
    LedgerEntryOut,
    LinkAccountInput,
    LinkedAccountOut,
    OpenAccountInput,
    parse_input,
)
from ..utils import gen_uuid, hash_password, utcnow, verify_password

log = logging.getLogger("cuca.accounts")


def dashboard_of(user: User) -> DashboardOut:
    out = DashboardOut.model_validate(user)
    return out.model_copy(update={"linked_account_exists": user.has_linked_account})


class AccountService:
    def __init__(self, database: Database, settings: Settings, ledger: Optional[Ledger] = None) -> None:
        self.database = database
        self.settings = settings
        self.ledger = ledger or Ledger()

    async def open_account(
        self,
        username: str,
        transaction_password: str,
        referrer_id: Optional[str] = None,
        is_admin: bool = False,
    ) -> DashboardOut:
        data = parse_input(
            OpenAccountInput,
            username=username,
            transaction_password=transaction_password,
            referrer_id=referrer_id,
            is_admin=is_admin,
        )
        password_hash = hash_password(data.transaction_password, rounds=self.settings.BCRYPT_ROUNDS)

        try:
            async with self.database.transaction() as db:
                taken = await db.execute(select(User.id).where(User.username == data.username))
                if taken.scalar_one_or_none() is not None:
                    raise ValidationError("Username already taken", details={"username": data.username})

                if data.referrer_id:
                    referrer = await db.get(User, data.referrer_id)
                    if referrer is None:
                        raise NotFound("Referrer not found", details={"referrer_id": data.referrer_id})

                now = utcnow()
                user = User(
                    id=gen_uuid(),
                    username=data.username,
                    transaction_password_hash=password_hash,
                    balance=0,
                    balance_recharge=0,
                    balance_withdraw=0,
                    referrer_id=data.referrer_id,
                    is_admin=data.is_admin,
                    created_at=now,
                    updated_at=now,
                )
                db.add(user)
        except IntegrityError:
            # lost a race on the unique username
            raise ValidationError("Username already taken", details={"username": data.username}) from None

        log.info("account opened id=%s username=%s referrer=%s", user.id, user.username, user.referrer_id)
        return dashboard_of(user)

    async def link_payout_account(
        self,
        user_id: str,
        bank_name: str,
        account_number: str,
        account_holder: str,
        transaction_password: str,
    ) -> LinkedAccountOut:
        data = parse_input(
            LinkAccountInput,
            bank_name=bank_name,
            account_number=account_number,
            account_holder=account_holder,
            transaction_password=transaction_password,
        )
        async with self.database.transaction() as db:
            user = await self.ledger.lock_account(db, user_id)
            if not verify_password(data.transaction_password, user.transaction_password_hash):
                raise BadCredentials()
            user.linked_account_bank_name = data.bank_name
            user.linked_account_number = data.account_number
            user.linked_account_holder = data.account_holder
            user.updated_at = utcnow()

        log.info("payout account linked user=%s", user_id)
        return LinkedAccountOut(
            bank_name=data.bank_name,
            account_number=data.account_number,
            account_holder=data.account_holder,
        )

    async def get_linked_account(self, user_id: str) -> LinkedAccountOut:
        user = await self._get_user(user_id)
        if not user.has_linked_account:
            raise NoLinkedAccount()
        return LinkedAccountOut(
            bank_name=user.linked_account_bank_name,
            account_number=user.linked_account_number,
            account_holder=user.linked_account_holder,
        )

    async def get_dashboard(self, user_id: str) -> DashboardOut:
        return dashboard_of(await self._get_user(user_id))

    async def list_ledger_entries(self, user_id: str, limit: int = 50) -> List[LedgerEntryOut]:
        limit = max(1, min(int(limit), 500))
        async with self.database.session() as db:
            if await db.get(User, user_id) is None:
                raise NotFound("User not found", details={"user_id": user_id})
            res = await db.execute(
                select(LedgerEntry)
                .where(LedgerEntry.user_id == user_id)
                .order_by(LedgerEntry.created_at.desc(), LedgerEntry.id)
                .limit(limit)
            )
            return [LedgerEntryOut.model_validate(e) for e in res.scalars().all()]

    async def list_accounts(self, limit: int = 100) -> List[AccountSummaryOut]:
        limit = max(1, min(int(limit), 500))
        async with self.database.session() as db:
            res = await db.execute(
                select(User).order_by(User.created_at.desc(), User.id).limit(limit)
            )
            return [AccountSummaryOut.model_validate(u) for u in res.scalars().all()]

    async def _get_user(self, user_id: str) -> User:
        async with self.database.session() as db:
            user = await db.get(User, user_id)
        if user is None:
            raise NotFound("User not found", details={"user_id": user_id})
        return user
