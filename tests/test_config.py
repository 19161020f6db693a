from decimal import Decimal

import pytest
from pydantic import ValidationError

from cuca.config import Settings, normalize_database_url


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("postgres://u:p@h/db", "postgresql+asyncpg://u:p@h/db"),
        ("postgresql://u:p@h/db", "postgresql+asyncpg://u:p@h/db"),
        ("postgresql+asyncpg://u:p@h/db", "postgresql+asyncpg://u:p@h/db"),
        ("sqlite:///./cuca.db", "sqlite+aiosqlite:///./cuca.db"),
    ],
)
def test_normalize_database_url(raw, expected):
    assert normalize_database_url(raw) == expected


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("SHORT_TERM_NAME_SUFFIXES", "VIP, Plus")
    monkeypatch.setenv("WITHDRAW_FEE_RATE", "0.07")
    monkeypatch.setenv("DATABASE_URL", "postgres://u:p@h/db")
    s = Settings(_env_file=None)

    assert s.SHORT_TERM_NAME_SUFFIXES == ["VIP", "Plus"]
    assert s.WITHDRAW_FEE_RATE == Decimal("0.07")
    assert s.effective_database_url() == "postgresql+asyncpg://u:p@h/db"
    assert s.export_public_config()["withdrawFeeRate"] == "0.07"


def test_rates_must_be_fractions():
    with pytest.raises(ValidationError):
        Settings(_env_file=None, REFERRAL_COMMISSION_RATE=Decimal("10"))
