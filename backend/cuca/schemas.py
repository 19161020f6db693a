# 📂 backend/cuca/schemas.py — pydantic contracts of the core
# --------------------------------------------------------
# - Input structs: one validated model per operation. Services build them from
#   their arguments through parse_input(), so malformed input is rejected as a
#   domain ValidationError before any database access.
# - Output payloads: what the services hand back to the HTTP adapter
#   (model_dump(mode="json") gives plain JSON).

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Annotated, Any, List, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from .errors import ValidationError
from .models import Decision, PackageCategory, PackageStatus

M = TypeVar("M", bound=BaseModel)

Money = Annotated[Decimal, Field(gt=0, max_digits=16, decimal_places=2)]


def parse_input(model: Type[M], **data: Any) -> M:
    """Builds an input struct or raises the domain ValidationError."""
    try:
        return model(**data)
    except PydanticValidationError as exc:
        errors = [
            {"field": ".".join(str(p) for p in e["loc"]), "message": e["msg"], "type": e["type"]}
            for e in exc.errors()
        ]
        raise ValidationError("Invalid input", details={"errors": errors}) from None


def _not_blank(v: str) -> str:
    v = (v or "").strip()
    if not v:
        raise ValueError("must not be blank")
    return v


# ======================
# ✍️ Inputs
# ======================
class OpenAccountInput(BaseModel):
    username: str = Field(..., min_length=3, max_length=64)
    transaction_password: str = Field(..., min_length=4, max_length=72)
    referrer_id: Optional[str] = None
    is_admin: bool = False

    @field_validator("username")
    @classmethod
    def not_blank(cls, v: str) -> str:
        return _not_blank(v)


class LinkAccountInput(BaseModel):
    bank_name: str = Field(..., max_length=128)
    account_number: str = Field(..., max_length=64)
    account_holder: str = Field(..., max_length=128)
    transaction_password: str = Field(..., min_length=1)

    @field_validator("bank_name", "account_number", "account_holder")
    @classmethod
    def not_blank(cls, v: str) -> str:
        return _not_blank(v)


class SubmitDepositInput(BaseModel):
    amount: Money
    receipt_ref: str = Field(..., max_length=255)

    @field_validator("receipt_ref")
    @classmethod
    def not_blank(cls, v: str) -> str:
        return _not_blank(v)


class DecisionInput(BaseModel):
    decision: Decision


class WithdrawalRequestInput(BaseModel):
    amount: Money
    transaction_password: str = Field(..., min_length=1)


class OpenInvestmentInput(BaseModel):
    package_id: str = Field(..., min_length=1)
    amount: Money


class PackageCreateInput(BaseModel):
    name: str = Field(..., max_length=128)
    description: Optional[str] = None
    category: PackageCategory = PackageCategory.LONG_TERM
    min_amount: Money
    max_amount: Money
    daily_return_rate: Decimal = Field(..., gt=0, max_digits=9, decimal_places=4)
    duration_days: int = Field(..., ge=1, le=3650)
    status: PackageStatus = PackageStatus.ACTIVE

    @field_validator("name")
    @classmethod
    def not_blank(cls, v: str) -> str:
        return _not_blank(v)

    @model_validator(mode="after")
    def check_range(self) -> "PackageCreateInput":
        if self.max_amount < self.min_amount:
            raise ValueError("max_amount must be >= min_amount")
        return self


class PackageUpdateInput(BaseModel):
    """Partial update: only the fields that are set are written."""
    name: Optional[str] = Field(None, max_length=128)
    description: Optional[str] = None
    category: Optional[PackageCategory] = None
    min_amount: Optional[Decimal] = Field(None, gt=0, max_digits=16, decimal_places=2)
    max_amount: Optional[Decimal] = Field(None, gt=0, max_digits=16, decimal_places=2)
    daily_return_rate: Optional[Decimal] = Field(None, gt=0, max_digits=9, decimal_places=4)
    duration_days: Optional[int] = Field(None, ge=1, le=3650)
    status: Optional[PackageStatus] = None

    @field_validator("name")
    @classmethod
    def not_blank(cls, v: Optional[str]) -> Optional[str]:
        return v if v is None else _not_blank(v)


# ======================
# 📤 Outputs
# ======================
class _Out(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class DashboardOut(_Out):
    id: str
    username: str
    balance: Decimal
    balance_recharge: Decimal
    balance_withdraw: Decimal
    linked_account_bank_name: Optional[str] = None
    linked_account_number: Optional[str] = None
    linked_account_holder: Optional[str] = None
    linked_account_exists: bool = False
    referrer_id: Optional[str] = None
    is_admin: bool = False


class AccountSummaryOut(_Out):
    """Admin listing row: balances only, no payout details."""
    id: str
    username: str
    balance: Decimal
    balance_recharge: Decimal
    balance_withdraw: Decimal
    is_admin: bool = False
    created_at: datetime


class LinkedAccountOut(BaseModel):
    bank_name: Optional[str] = None
    account_number: str
    account_holder: Optional[str] = None


class DepositOut(_Out):
    id: str
    user_id: str
    amount: Decimal
    status: str
    receipt_ref: str
    created_at: datetime
    decided_at: Optional[datetime] = None


class WithdrawalOut(_Out):
    id: str
    user_id: str
    requested_amount: Decimal
    fee: Decimal
    net_amount: Decimal
    status: str
    destination_bank_name: Optional[str] = None
    destination_account_number: str
    destination_account_holder: Optional[str] = None
    created_at: datetime
    decided_at: Optional[datetime] = None


class PackageOut(_Out):
    id: str
    name: str
    description: Optional[str] = None
    category: str
    min_amount: Decimal
    max_amount: Decimal
    daily_return_rate: Decimal
    duration_days: int
    status: str


class InvestmentOut(_Out):
    id: str
    user_id: str
    package_id: str
    package_name: str
    category: str
    amount: Decimal
    daily_return_rate: Decimal
    daily_earning: Decimal
    duration_days: int
    days_remaining: int
    status: str
    created_at: datetime
    last_accrual_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class InvestmentHistoryItem(BaseModel):
    id: str
    type: str                      # "investment" | "earning"
    investment_id: str
    package_name: str
    amount: Decimal
    status: str
    timestamp: datetime
    day_number: Optional[int] = None


class LedgerEntryOut(_Out):
    id: str
    operation: str
    amount: Decimal
    delta_balance: Decimal
    delta_recharge: Decimal
    delta_withdraw: Decimal
    reference_type: Optional[str] = None
    reference_id: Optional[str] = None
    created_at: datetime


class AccrualReport(BaseModel):
    """Summary of one scheduler tick."""
    ran_at: datetime
    positions_due: int = 0
    positions_credited: int = 0
    earnings_created: int = 0
    total_credited: Decimal = Decimal("0.00")
    completed: int = 0
    failed: int = 0


class AccrualMismatch(BaseModel):
    investment_id: str
    expected_days: int
    credited_days: int
    failures: List[str] = []
