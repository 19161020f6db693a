# 📂 backend/cuca/services/__init__.py — workflow services
# -----------------------------------------------------------------------------
# build_services(database, settings) wires every service around one shared
# Ledger. The HTTP adapter keeps the bundle on app.state; tests build their own.
# -----------------------------------------------------------------------------

from __future__ import annotations

from dataclasses import dataclass

from ..config import Settings
from ..database import Database
from ..ledger import Ledger
from .accounts import AccountService
from .deposits import DepositService
from .investments import InvestmentService
from .packages import PackageService
from .withdrawals import WithdrawalService


@dataclass
class Services:
    database: Database
    settings: Settings
    ledger: Ledger
    accounts: AccountService
    deposits: DepositService
    withdrawals: WithdrawalService
    packages: PackageService
    investments: InvestmentService


def build_services(database: Database, settings: Settings) -> Services:
    ledger = Ledger()
    return Services(
        database=database,
        settings=settings,
        ledger=ledger,
        accounts=AccountService(database, settings, ledger),
        deposits=DepositService(database, settings, ledger),
        withdrawals=WithdrawalService(database, settings, ledger),
        packages=PackageService(database, settings),
        investments=InvestmentService(database, settings, ledger),
    )


__all__ = [
    "AccountService",
    "DepositService",
    "InvestmentService",
    "PackageService",
    "Services",
    "WithdrawalService",
    "build_services",
]
