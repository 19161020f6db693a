# 📂 backend/cuca/models.py — SQLAlchemy ORM models
# -----------------------------------------------------------------------------
# Purpose:
#   • One set of ORM models for the ledger core: accounts with three balance
#     buckets, deposit and withdrawal requests, the investment catalogue,
#     investment positions, the per-day earning audit table and the balance
#     journal (ledger_entries).
#
# Business rules (summary):
#   • Money is NUMERIC(18, 2); rates are NUMERIC(9, 4) percentages.
#   • users.balance / balance_recharge / balance_withdraw are written ONLY by
#     ledger.Ledger, under the owner's row lock, and every write leaves one
#     ledger_entries row in the same transaction.
#   • Deposit / withdrawal status leaves Pending exactly once (conditional UPDATE).
#   • Investment positions snapshot name, category, rate, daily earning and
#     duration at creation. Catalogue edits never reach open positions.
#   • investment_earnings has one row per credited day: UNIQUE(investment_id, day_number).
#     count(rows) == min(elapsed whole days, duration_days) is the accrual invariant.
# -----------------------------------------------------------------------------

from __future__ import annotations

import enum
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()

MONEY = Numeric(18, 2)
RATE = Numeric(9, 4)


def _utcnow() -> datetime:
    # naive UTC: identical round-trip on PostgreSQL TIMESTAMP and SQLite
    return datetime.now(timezone.utc).replace(tzinfo=None)


# =============================================================================
# Status / category values
# =============================================================================
class DepositStatus(str, enum.Enum):
    PENDING = "Pending"
    APPROVED = "Approved"
    REJECTED = "Rejected"


class WithdrawalStatus(str, enum.Enum):
    PENDING = "Pending"
    APPROVED = "Approved"
    REJECTED = "Rejected"


class Decision(str, enum.Enum):
    """Admin verdict on a pending deposit or withdrawal."""
    APPROVED = "Approved"
    REJECTED = "Rejected"


class PackageStatus(str, enum.Enum):
    ACTIVE = "Active"
    INACTIVE = "Inactive"


class PackageCategory(str, enum.Enum):
    SHORT_TERM = "curto"
    LONG_TERM = "longo"


class InvestmentStatus(str, enum.Enum):
    ACTIVE = "Active"
    COMPLETED = "Completed"


# =============================================================================
# Accounts
# =============================================================================
class User(Base):
    """
    Platform account.
      • balance          — display total; moves together with the other buckets
                           except on investment debits (principal stays counted).
      • balance_recharge — approved deposits, spendable only on investments.
      • balance_withdraw — earnings, commissions, refunded withdrawals; payable out.
      • referrer_id      — set once at registration, never changed.
    """
    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_users_balance_nonneg"),
        CheckConstraint("balance_recharge >= 0", name="ck_users_balance_recharge_nonneg"),
        CheckConstraint("balance_withdraw >= 0", name="ck_users_balance_withdraw_nonneg"),
        Index("ix_users_referrer", "referrer_id"),
    )

    id = Column(String(36), primary_key=True)
    username = Column(String(64), nullable=False, unique=True)
    transaction_password_hash = Column(String(128), nullable=False)

    balance = Column(MONEY, nullable=False, default=0)
    balance_recharge = Column(MONEY, nullable=False, default=0)
    balance_withdraw = Column(MONEY, nullable=False, default=0)

    linked_account_bank_name = Column(String(128), nullable=True)
    linked_account_number = Column(String(64), nullable=True)
    linked_account_holder = Column(String(128), nullable=True)

    referrer_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    is_admin = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime, nullable=False, default=_utcnow)
    updated_at = Column(DateTime, nullable=False, default=_utcnow, onupdate=_utcnow)

    @property
    def has_linked_account(self) -> bool:
        return bool(self.linked_account_number)


# =============================================================================
# Deposits
# =============================================================================
class Deposit(Base):
    """
    Deposit request. No balance effect until an admin approves it; approval
    credits balance_recharge (+ referrer commission) in the same transaction
    that flips the status.
    """
    __tablename__ = "deposits"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_deposits_amount_positive"),
        Index("ix_deposits_user", "user_id"),
        Index("ix_deposits_status", "status"),
    )

    id = Column(String(36), primary_key=True)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    amount = Column(MONEY, nullable=False)
    status = Column(String(16), nullable=False, default=DepositStatus.PENDING.value)
    receipt_ref = Column(String(255), nullable=False)     # opaque id from the upload collaborator
    created_at = Column(DateTime, nullable=False, default=_utcnow)
    decided_at = Column(DateTime, nullable=True)
    decided_by = Column(String(36), nullable=True)


# =============================================================================
# Withdrawals
# =============================================================================
class Withdrawal(Base):
    """
    Withdrawal request:
      • requested_amount is reserved (taken off balance_withdraw and balance)
        when the request is created.
      • fee / net_amount are fixed at creation.
      • destination_* is a copy of the linked account at request time.
      • Rejected → exactly requested_amount goes back. Approved → nothing more moves.
    """
    __tablename__ = "withdrawals"
    __table_args__ = (
        CheckConstraint("requested_amount > 0", name="ck_withdrawals_amount_positive"),
        Index("ix_withdrawals_user", "user_id"),
        Index("ix_withdrawals_status", "status"),
    )

    id = Column(String(36), primary_key=True)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    requested_amount = Column(MONEY, nullable=False)
    fee = Column(MONEY, nullable=False)
    net_amount = Column(MONEY, nullable=False)
    status = Column(String(16), nullable=False, default=WithdrawalStatus.PENDING.value)
    destination_bank_name = Column(String(128), nullable=True)
    destination_account_number = Column(String(64), nullable=False)
    destination_account_holder = Column(String(128), nullable=True)
    created_at = Column(DateTime, nullable=False, default=_utcnow)
    decided_at = Column(DateTime, nullable=True)
    decided_by = Column(String(36), nullable=True)


# =============================================================================
# Investment catalogue and positions
# =============================================================================
class InvestmentPackage(Base):
    """
    Catalogue entry (admin-managed). daily_return_rate is a percentage of the
    principal credited per day, e.g. 2.0000 → 2%.
    """
    __tablename__ = "investment_packages"
    __table_args__ = (
        CheckConstraint("min_amount > 0", name="ck_packages_min_positive"),
        CheckConstraint("max_amount >= min_amount", name="ck_packages_range"),
        CheckConstraint("duration_days >= 1", name="ck_packages_duration"),
        Index("ix_packages_status", "status"),
    )

    id = Column(String(36), primary_key=True)
    name = Column(String(128), nullable=False)
    description = Column(Text, nullable=True)
    category = Column(String(16), nullable=False, default=PackageCategory.LONG_TERM.value)
    min_amount = Column(MONEY, nullable=False)
    max_amount = Column(MONEY, nullable=False)
    daily_return_rate = Column(RATE, nullable=False)
    duration_days = Column(Integer, nullable=False)
    status = Column(String(16), nullable=False, default=PackageStatus.ACTIVE.value)
    created_at = Column(DateTime, nullable=False, default=_utcnow)
    updated_at = Column(DateTime, nullable=False, default=_utcnow, onupdate=_utcnow)


class Investment(Base):
    """
    Open investment position.
      • daily_earning = round(amount × rate / 100, 2), fixed at creation.
      • days_remaining only goes down; 0 → Completed, never accrues again.
      • last_accrual_at — last tick that touched the position (NULL → never).
      • next_accrual_at — created_at + (credited days + 1) × 24h; the scheduler
        picks positions with next_accrual_at <= now.
    """
    __tablename__ = "investments"
    __table_args__ = (
        CheckConstraint("days_remaining >= 0", name="ck_investments_days_nonneg"),
        Index("ix_investments_user", "user_id"),
        Index("ix_investments_due", "status", "next_accrual_at"),
    )

    id = Column(String(36), primary_key=True)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    package_id = Column(String(36), ForeignKey("investment_packages.id"), nullable=False)

    package_name = Column(String(128), nullable=False)
    category = Column(String(16), nullable=False)
    amount = Column(MONEY, nullable=False)
    daily_return_rate = Column(RATE, nullable=False)
    daily_earning = Column(MONEY, nullable=False)
    duration_days = Column(Integer, nullable=False)
    days_remaining = Column(Integer, nullable=False)

    status = Column(String(16), nullable=False, default=InvestmentStatus.ACTIVE.value)
    created_at = Column(DateTime, nullable=False, default=_utcnow)
    last_accrual_at = Column(DateTime, nullable=True)
    next_accrual_at = Column(DateTime, nullable=False)
    completed_at = Column(DateTime, nullable=True)


class InvestmentEarning(Base):
    """
    One row per credited day. day_number runs 1..duration_days; due_at is the
    moment that day finished elapsing (created_at + day_number × 24h).
    """
    __tablename__ = "investment_earnings"
    __table_args__ = (
        UniqueConstraint("investment_id", "day_number", name="uq_investment_earnings_day"),
        Index("ix_investment_earnings_user", "user_id"),
    )

    id = Column(String(36), primary_key=True)
    investment_id = Column(String(36), ForeignKey("investments.id"), nullable=False)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    day_number = Column(Integer, nullable=False)
    amount = Column(MONEY, nullable=False)
    due_at = Column(DateTime, nullable=False)
    credited_at = Column(DateTime, nullable=False, default=_utcnow)


# =============================================================================
# Balance journal
# =============================================================================
class LedgerEntry(Base):
    """
    Journal of every balance mutation:
      • operation — reserve_withdrawal | release_withdrawal | credit_recharge |
                    debit_recharge | credit_earning | credit_commission
      • delta_*   — signed change applied to each bucket.
      • reference_type / reference_id — the deposit / withdrawal / investment behind it.
    """
    __tablename__ = "ledger_entries"
    __table_args__ = (
        Index("ix_ledger_entries_user", "user_id", "created_at"),
        Index("ix_ledger_entries_reference", "reference_type", "reference_id"),
    )

    id = Column(String(36), primary_key=True)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    operation = Column(String(32), nullable=False)
    amount = Column(MONEY, nullable=False)
    delta_balance = Column(MONEY, nullable=False, default=0)
    delta_recharge = Column(MONEY, nullable=False, default=0)
    delta_withdraw = Column(MONEY, nullable=False, default=0)
    reference_type = Column(String(32), nullable=True)
    reference_id = Column(String(36), nullable=True)
    created_at = Column(DateTime, nullable=False, default=_utcnow)
