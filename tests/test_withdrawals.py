import asyncio
from decimal import Decimal

import pytest

from cuca.errors import AlreadyProcessed, BadCredentials, InsufficientFunds, NoLinkedAccount, NotFound, ValidationError
from cuca.models import Decision

from conftest import PASSWORD, balances, fund_withdrawable, open_user


async def test_request_reserves_and_fixes_fee(services):
    user = await open_user(services, "alice")
    await fund_withdrawable(services, user.id, "100")

    w = await services.withdrawals.request_withdrawal(user.id, Decimal("80"), PASSWORD)

    assert w.status == "Pending"
    assert (w.requested_amount, w.fee, w.net_amount) == (Decimal("80.00"), Decimal("4.00"), Decimal("76.00"))
    assert w.destination_account_number == "AO06-alice"
    assert await balances(services, user.id) == (Decimal("20.00"), Decimal("0"), Decimal("20.00"))


async def test_destination_is_a_snapshot(services):
    user = await open_user(services, "bob")
    await fund_withdrawable(services, user.id, "50")
    w = await services.withdrawals.request_withdrawal(user.id, Decimal("10"), PASSWORD)

    await services.accounts.link_payout_account(user.id, "BFA", "NEW-123", "Bob B", PASSWORD)

    [stored] = await services.withdrawals.list_withdrawals(user.id)
    assert stored.id == w.id
    assert stored.destination_account_number == "AO06-bob"


async def test_reject_restores_exact_amount(services):
    user = await open_user(services, "carol")
    await fund_withdrawable(services, user.id, "33.33")
    before = await balances(services, user.id)

    w = await services.withdrawals.request_withdrawal(user.id, Decimal("33.33"), PASSWORD)
    await services.withdrawals.decide_withdrawal(w.id, Decision.REJECTED)
    assert await balances(services, user.id) == before

    with pytest.raises(AlreadyProcessed):
        await services.withdrawals.decide_withdrawal(w.id, Decision.REJECTED)
    assert await balances(services, user.id) == before


async def test_approve_moves_nothing_and_runs_hooks(services):
    user = await open_user(services, "dave")
    await fund_withdrawable(services, user.id, "40")
    seen = []

    @services.withdrawals.on_withdrawal_approved
    async def grant(withdrawal):
        seen.append(withdrawal.id)

    @services.withdrawals.on_withdrawal_approved
    async def broken(withdrawal):
        raise RuntimeError("downstream down")

    w = await services.withdrawals.request_withdrawal(user.id, Decimal("40"), PASSWORD)
    approved = await services.withdrawals.decide_withdrawal(w.id, Decision.APPROVED)

    assert approved.status == "Approved"
    assert seen == [w.id]
    assert await balances(services, user.id) == (Decimal("0"), Decimal("0"), Decimal("0"))

    with pytest.raises(AlreadyProcessed):
        await services.withdrawals.decide_withdrawal(w.id, Decision.REJECTED)
    assert await balances(services, user.id) == (Decimal("0"), Decimal("0"), Decimal("0"))
    assert seen == [w.id]


async def test_wrong_password(services):
    user = await open_user(services, "erin")
    await fund_withdrawable(services, user.id, "40")
    with pytest.raises(BadCredentials):
        await services.withdrawals.request_withdrawal(user.id, Decimal("10"), "nope")
    assert await balances(services, user.id) == (Decimal("40.00"), Decimal("0"), Decimal("40.00"))


async def test_requires_linked_account(services):
    user = await open_user(services, "frank", linked=False)
    await fund_withdrawable(services, user.id, "40")
    with pytest.raises(NoLinkedAccount):
        await services.withdrawals.request_withdrawal(user.id, Decimal("10"), PASSWORD)


async def test_insufficient_withdrawable(services):
    user = await open_user(services, "gina")
    async with services.database.transaction() as db:
        # recharge funds are not withdrawable
        await services.ledger.credit_recharge(db, user.id, Decimal("500"))
    with pytest.raises(InsufficientFunds):
        await services.withdrawals.request_withdrawal(user.id, Decimal("1"), PASSWORD)
    assert await services.withdrawals.list_withdrawals(user.id) == []


async def test_amount_validation_and_minimum(services, settings):
    user = await open_user(services, "hank")
    await fund_withdrawable(services, user.id, "100")
    with pytest.raises(ValidationError):
        await services.withdrawals.request_withdrawal(user.id, Decimal("0"), PASSWORD)

    services.withdrawals.settings = settings.model_copy(update={"WITHDRAW_MIN_AMOUNT": Decimal("50")})
    with pytest.raises(ValidationError):
        await services.withdrawals.request_withdrawal(user.id, Decimal("49.99"), PASSWORD)
    w = await services.withdrawals.request_withdrawal(user.id, Decimal("50"), PASSWORD)
    assert w.requested_amount == Decimal("50.00")


async def test_unknown_user_and_withdrawal(services):
    with pytest.raises(NotFound):
        await services.withdrawals.request_withdrawal("ghost", Decimal("1"), PASSWORD)
    with pytest.raises(NotFound):
        await services.withdrawals.decide_withdrawal("ghost", Decision.APPROVED)


async def test_concurrent_requests_never_overdraw(services):
    user = await open_user(services, "ivan")
    await fund_withdrawable(services, user.id, "100")

    results = await asyncio.gather(
        *(services.withdrawals.request_withdrawal(user.id, Decimal("30"), PASSWORD) for _ in range(5)),
        return_exceptions=True,
    )

    ok = [r for r in results if not isinstance(r, Exception)]
    failed = [r for r in results if isinstance(r, Exception)]
    assert len(ok) == 3
    assert all(isinstance(r, InsufficientFunds) for r in failed)
    assert sum(w.requested_amount for w in ok) <= Decimal("100")
    assert await balances(services, user.id) == (Decimal("10.00"), Decimal("0"), Decimal("10.00"))


async def test_quote(services):
    assert services.withdrawals.quote(Decimal("99.99")) == {
        "amount": Decimal("99.99"),
        "fee": Decimal("5.00"),
        "net_amount": Decimal("94.99"),
    }
