"""Cuca ledger backend: deposits, withdrawals, investments and daily accrual."""

__version__ = "1.0.0"
