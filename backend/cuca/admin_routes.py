# 📂 backend/cuca/admin_routes.py — admin endpoints
# -----------------------------------------------------------------------------
# Purpose:
#   • List accounts (read only; balances move only through the ledger).
#   • Decide pending deposits / withdrawals (one-shot: a second decision → 409).
#   • Manage the investment package catalogue.
#   • Run an accrual tick by hand and audit the accrual invariant.
#
# Access check:
#   • "X-User-Id" header required; the account must carry is_admin.
#     Otherwise 401 (no header) / 403 (not an admin).
# -----------------------------------------------------------------------------

from __future__ import annotations

from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel

from .errors import Forbidden
from .models import Decision, PackageCategory, PackageStatus
from .scheduler import find_accrual_mismatches
from .schemas import AccountSummaryOut, AccrualMismatch, AccrualReport, DepositOut, PackageOut, WithdrawalOut
from .services import Services
from .user_routes import current_user_id, get_services

router = APIRouter(prefix="/admin")


async def require_admin(
    user_id: str = Depends(current_user_id),
    services: Services = Depends(get_services),
) -> str:
    account = await services.accounts.get_dashboard(user_id)
    if not account.is_admin:
        raise Forbidden("Admin rights required")
    return user_id


class DecisionBody(BaseModel):
    decision: Decision


class PackageBody(BaseModel):
    name: str
    description: Optional[str] = None
    category: PackageCategory = PackageCategory.LONG_TERM
    min_amount: Decimal
    max_amount: Decimal
    daily_return_rate: Decimal
    duration_days: int
    status: PackageStatus = PackageStatus.ACTIVE


class PackagePatchBody(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    category: Optional[PackageCategory] = None
    min_amount: Optional[Decimal] = None
    max_amount: Optional[Decimal] = None
    daily_return_rate: Optional[Decimal] = None
    duration_days: Optional[int] = None
    status: Optional[PackageStatus] = None


# ------------------------------------------------------------
# Accounts
# ------------------------------------------------------------
@router.get("/users", response_model=List[AccountSummaryOut])
async def list_users(
    limit: int = Query(100, ge=1, le=500),
    admin_id: str = Depends(require_admin),
    services: Services = Depends(get_services),
):
    return await services.accounts.list_accounts(limit=limit)


# ------------------------------------------------------------
# Deposits / withdrawals
# ------------------------------------------------------------
@router.get("/deposits", response_model=List[DepositOut])
async def list_deposits(
    status: Optional[str] = Query(None),
    admin_id: str = Depends(require_admin),
    services: Services = Depends(get_services),
):
    return await services.deposits.list_all_deposits(status=status)


@router.post("/deposits/{deposit_id}/decision", response_model=DepositOut)
async def decide_deposit(
    deposit_id: str,
    body: DecisionBody,
    admin_id: str = Depends(require_admin),
    services: Services = Depends(get_services),
):
    return await services.deposits.decide_deposit(deposit_id, body.decision, admin_id=admin_id)


@router.get("/withdrawals", response_model=List[WithdrawalOut])
async def list_withdrawals(
    status: Optional[str] = Query(None),
    admin_id: str = Depends(require_admin),
    services: Services = Depends(get_services),
):
    return await services.withdrawals.list_all_withdrawals(status=status)


@router.post("/withdrawals/{withdrawal_id}/decision", response_model=WithdrawalOut)
async def decide_withdrawal(
    withdrawal_id: str,
    body: DecisionBody,
    admin_id: str = Depends(require_admin),
    services: Services = Depends(get_services),
):
    return await services.withdrawals.decide_withdrawal(withdrawal_id, body.decision, admin_id=admin_id)


# ------------------------------------------------------------
# Package catalogue
# ------------------------------------------------------------
@router.get("/packages", response_model=List[PackageOut])
async def list_packages(
    active_only: bool = False,
    admin_id: str = Depends(require_admin),
    services: Services = Depends(get_services),
):
    return await services.packages.list_packages(active_only=active_only)


@router.post("/packages", response_model=PackageOut, status_code=201)
async def create_package(
    body: PackageBody,
    admin_id: str = Depends(require_admin),
    services: Services = Depends(get_services),
):
    return await services.packages.create_package(**body.model_dump())


@router.patch("/packages/{package_id}", response_model=PackageOut)
async def update_package(
    package_id: str,
    body: PackagePatchBody,
    admin_id: str = Depends(require_admin),
    services: Services = Depends(get_services),
):
    return await services.packages.update_package(package_id, **body.model_dump(exclude_unset=True))


@router.post("/packages/{package_id}/retire", response_model=PackageOut)
async def retire_package(
    package_id: str,
    admin_id: str = Depends(require_admin),
    services: Services = Depends(get_services),
):
    return await services.packages.retire_package(package_id)


@router.delete("/packages/{package_id}", status_code=204)
async def delete_package(
    package_id: str,
    admin_id: str = Depends(require_admin),
    services: Services = Depends(get_services),
):
    await services.packages.delete_package(package_id)


# ------------------------------------------------------------
# Accrual
# ------------------------------------------------------------
@router.post("/accrual/run", response_model=AccrualReport)
async def run_accrual(request: Request, admin_id: str = Depends(require_admin)):
    return await request.app.state.scheduler.tick()


@router.get("/accrual/audit", response_model=List[AccrualMismatch])
async def accrual_audit(admin_id: str = Depends(require_admin), services: Services = Depends(get_services)):
    return await find_accrual_mismatches(services.database, services.settings)
