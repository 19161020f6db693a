# 📂 backend/cuca/user_routes.py — user endpoints
# -----------------------------------------------------------------------------
# What it covers:
#   • POST   /api/user/register            — open an account (optional referrer)
#   • GET    /api/user/dashboard           — balances + payout account
#   • GET    /api/user/ledger              — balance journal
#   • GET    /api/user/linked-account      — payout destination
#   • POST   /api/user/linked-account      — link / replace it (transaction password)
#   • POST   /api/user/deposits            — submit a deposit (receipt reference)
#   • GET    /api/user/deposits            — own deposits
#   • GET    /api/user/withdrawals/quote   — fee / net preview
#   • POST   /api/user/withdrawals         — request a withdrawal
#   • GET    /api/user/withdrawals         — own withdrawals
#   • GET    /api/packages                 — active catalogue
#   • POST   /api/user/investments         — open a position
#   • GET    /api/user/investments         — positions (active_only)
#   • GET    /api/user/investments/history — purchases + credited days
#   • GET    /api/config                   — public settings
#
# Notes:
#   • The user is identified by the "X-User-Id" header, set by the upstream
#     authentication layer.
#   • Routes only translate; every rule lives in cuca.services.
# -----------------------------------------------------------------------------

from __future__ import annotations

from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, Query, Request
from pydantic import BaseModel

from .errors import Unauthorized
from .schemas import (
    DashboardOut,
    DepositOut,
    InvestmentHistoryItem,
    InvestmentOut,
    LedgerEntryOut,
    LinkedAccountOut,
    PackageOut,
    WithdrawalOut,
)
from .services import Services

router = APIRouter()


# ------------------------------------------------------------
# Dependencies
# ------------------------------------------------------------
def get_services(request: Request) -> Services:
    return request.app.state.services


def current_user_id(x_user_id: Optional[str] = Header(None, alias="X-User-Id")) -> str:
    if not x_user_id or not x_user_id.strip():
        raise Unauthorized("X-User-Id header required")
    return x_user_id.strip()


# ------------------------------------------------------------
# Request bodies
# ------------------------------------------------------------
class RegisterBody(BaseModel):
    username: str
    transaction_password: str
    referrer_id: Optional[str] = None


class LinkAccountBody(BaseModel):
    bank_name: str
    account_number: str
    account_holder: str
    transaction_password: str


class DepositBody(BaseModel):
    amount: Decimal
    receipt_ref: str


class WithdrawalBody(BaseModel):
    amount: Decimal
    transaction_password: str


class InvestmentBody(BaseModel):
    package_id: str
    amount: Decimal


# ------------------------------------------------------------
# Account
# ------------------------------------------------------------
@router.post("/user/register", response_model=DashboardOut)
async def register(body: RegisterBody, services: Services = Depends(get_services)):
    return await services.accounts.open_account(
        username=body.username,
        transaction_password=body.transaction_password,
        referrer_id=body.referrer_id,
    )


@router.get("/user/dashboard", response_model=DashboardOut)
async def dashboard(user_id: str = Depends(current_user_id), services: Services = Depends(get_services)):
    return await services.accounts.get_dashboard(user_id)


@router.get("/user/ledger", response_model=List[LedgerEntryOut])
async def ledger_entries(
    limit: int = Query(50, ge=1, le=500),
    user_id: str = Depends(current_user_id),
    services: Services = Depends(get_services),
):
    return await services.accounts.list_ledger_entries(user_id, limit=limit)


@router.get("/user/linked-account", response_model=LinkedAccountOut)
async def get_linked_account(user_id: str = Depends(current_user_id), services: Services = Depends(get_services)):
    return await services.accounts.get_linked_account(user_id)


@router.post("/user/linked-account", response_model=LinkedAccountOut)
async def link_account(
    body: LinkAccountBody,
    user_id: str = Depends(current_user_id),
    services: Services = Depends(get_services),
):
    return await services.accounts.link_payout_account(
        user_id,
        bank_name=body.bank_name,
        account_number=body.account_number,
        account_holder=body.account_holder,
        transaction_password=body.transaction_password,
    )


# ------------------------------------------------------------
# Deposits
# ------------------------------------------------------------
@router.post("/user/deposits", response_model=DepositOut, status_code=201)
async def submit_deposit(
    body: DepositBody,
    user_id: str = Depends(current_user_id),
    services: Services = Depends(get_services),
):
    return await services.deposits.submit_deposit(user_id, body.amount, body.receipt_ref)


@router.get("/user/deposits", response_model=List[DepositOut])
async def my_deposits(user_id: str = Depends(current_user_id), services: Services = Depends(get_services)):
    return await services.deposits.list_deposits(user_id)


# ------------------------------------------------------------
# Withdrawals
# ------------------------------------------------------------
@router.get("/user/withdrawals/quote")
async def withdrawal_quote(amount: Decimal = Query(..., gt=0), services: Services = Depends(get_services)):
    quote = services.withdrawals.quote(amount)
    return {k: f"{v:.2f}" for k, v in quote.items()}


@router.post("/user/withdrawals", response_model=WithdrawalOut, status_code=201)
async def request_withdrawal(
    body: WithdrawalBody,
    user_id: str = Depends(current_user_id),
    services: Services = Depends(get_services),
):
    return await services.withdrawals.request_withdrawal(user_id, body.amount, body.transaction_password)


@router.get("/user/withdrawals", response_model=List[WithdrawalOut])
async def my_withdrawals(user_id: str = Depends(current_user_id), services: Services = Depends(get_services)):
    return await services.withdrawals.list_withdrawals(user_id)


# ------------------------------------------------------------
# Investments
# ------------------------------------------------------------
@router.get("/packages", response_model=List[PackageOut])
async def packages(category: Optional[str] = None, services: Services = Depends(get_services)):
    return await services.packages.list_packages(active_only=True, category=category)


@router.post("/user/investments", response_model=InvestmentOut, status_code=201)
async def open_investment(
    body: InvestmentBody,
    user_id: str = Depends(current_user_id),
    services: Services = Depends(get_services),
):
    return await services.investments.open_investment(user_id, body.package_id, body.amount)


@router.get("/user/investments", response_model=List[InvestmentOut])
async def my_investments(
    active_only: bool = True,
    user_id: str = Depends(current_user_id),
    services: Services = Depends(get_services),
):
    if active_only:
        return await services.investments.list_active_investments(user_id)
    return await services.investments.list_investments(user_id)


@router.get("/user/investments/history", response_model=List[InvestmentHistoryItem])
async def investment_history(user_id: str = Depends(current_user_id), services: Services = Depends(get_services)):
    return await services.investments.investment_history(user_id)


@router.get("/config")
async def public_config(services: Services = Depends(get_services)):
    return services.settings.export_public_config()
