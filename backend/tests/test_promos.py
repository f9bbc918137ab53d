"""
Tests for PromoEvaluator and SqlPromoStore.

Tests cover:
- evaluate(): check order, discount computation and clamping, idempotence
- redeem(): exact increments, per-user caps, conflict re-evaluation
- Concurrent redemptions of a single-use code
- Admin CRUD with frozen fields and status labels
"""
import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import select, func, update
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.exceptions import ImmutableFieldError
from backend.app.models.promo import PromoCode, PromoRedemption
from backend.app.services.promos import (
    PromoEvaluator,
    SqlPromoStore,
    IncrementResult,
    PromoNotFound,
    PromoInactive,
    PromoNotStarted,
    PromoExpired,
    MinOrderNotMet,
    PromoExhausted,
    PerUserLimitReached,
    InvalidPromoParameters,
    DuplicatePromoCode,
    PromoInUse,
    compute_discount,
    promo_status,
)
from backend.tests.conftest import make_promo

NOW = datetime.now(timezone.utc).replace(microsecond=0)


async def add_promo(session: AsyncSession, **overrides) -> PromoCode:
    promo = make_promo(**overrides)
    session.add(promo)
    await session.commit()
    await session.refresh(promo)
    return promo


async def redemption_count(session: AsyncSession, promo_id: int) -> int:
    return await session.scalar(
        select(func.count(PromoRedemption.id)).where(PromoRedemption.promo_id == promo_id)
    )


# ============================================
# DISCOUNT COMPUTATION
# ============================================

def test_percentage_discount_clamped_to_max_discount():
    """20% of 500 is 100, capped at 50."""
    assert compute_discount("PERCENTAGE", Decimal("20"), Decimal("500.00"), Decimal("50")) == Decimal("50.00")


def test_fixed_discount_never_exceeds_subtotal():
    assert compute_discount("FIXED", Decimal("150"), Decimal("100.00")) == Decimal("100.00")


def test_percentage_discount_rounds_to_cents():
    assert compute_discount("PERCENTAGE", Decimal("15"), Decimal("33.33")) == Decimal("5.00")


@pytest.mark.parametrize("discount_type,values", [
    ("PERCENTAGE", ["0.01", "1", "20", "50", "99.99", "100"]),
    ("FIXED", ["0.01", "10", "100", "1000"]),
])
def test_discount_bounded_by_subtotal_and_cap(discount_type, values):
    subtotals = ["0", "0.01", "10", "99.99", "500", "10000"]
    caps = [None, "0.01", "50", "100000"]
    for value in values:
        for subtotal in subtotals:
            for cap in caps:
                subtotal_d = Decimal(subtotal).quantize(Decimal("0.01"))
                cap_d = Decimal(cap) if cap is not None else None
                discount = compute_discount(discount_type, Decimal(value), subtotal_d, cap_d)
                assert Decimal("0") <= discount <= subtotal_d
                if cap_d is not None:
                    assert discount <= cap_d


# ============================================
# EVALUATE
# ============================================

@pytest.mark.asyncio
async def test_evaluate_welcome20(test_session: AsyncSession, welcome_promo: PromoCode):
    """PERCENTAGE 20% with max discount 50 on a 500 subtotal gives 50 off."""
    evaluator = PromoEvaluator(test_session)
    application = await evaluator.evaluate("WELCOME20", Decimal("500"), user_id=1)

    assert application.promo_id == welcome_promo.id
    assert application.code == "WELCOME20"
    assert application.discount_amount == Decimal("50.00")
    assert application.final_total == Decimal("450.00")


@pytest.mark.asyncio
async def test_evaluate_is_case_insensitive(test_session: AsyncSession, welcome_promo: PromoCode):
    application = await PromoEvaluator(test_session).evaluate("  welcome20 ", 100, user_id=1)
    assert application.discount_amount == Decimal("20.00")


@pytest.mark.asyncio
async def test_evaluate_is_idempotent(test_session: AsyncSession, welcome_promo: PromoCode):
    evaluator = PromoEvaluator(test_session)
    first = await evaluator.evaluate("WELCOME20", Decimal("300"), user_id=1, now=NOW)
    second = await evaluator.evaluate("WELCOME20", Decimal("300"), user_id=1, now=NOW)

    assert first == second
    await test_session.refresh(welcome_promo)
    assert welcome_promo.used_count == 0
    assert await redemption_count(test_session, welcome_promo.id) == 0


@pytest.mark.asyncio
async def test_evaluate_unknown_code(test_session: AsyncSession):
    with pytest.raises(PromoNotFound) as exc:
        await PromoEvaluator(test_session).evaluate("NOPE", 100, user_id=1)
    assert exc.value.status_code == 404


@pytest.mark.asyncio
async def test_evaluate_inactive_code(test_session: AsyncSession):
    await add_promo(test_session, is_active=False)
    with pytest.raises(PromoInactive):
        await PromoEvaluator(test_session).evaluate("WELCOME20", 100, user_id=1)


@pytest.mark.asyncio
async def test_evaluate_date_window(test_session: AsyncSession):
    await add_promo(test_session, start_date=NOW, end_date=NOW + timedelta(days=7))
    evaluator = PromoEvaluator(test_session)

    with pytest.raises(PromoNotStarted):
        await evaluator.evaluate("WELCOME20", 100, user_id=1, now=NOW - timedelta(seconds=1))
    # Both ends of the window are inclusive
    await evaluator.evaluate("WELCOME20", 100, user_id=1, now=NOW)
    await evaluator.evaluate("WELCOME20", 100, user_id=1, now=NOW + timedelta(days=7))
    with pytest.raises(PromoExpired):
        await evaluator.evaluate("WELCOME20", 100, user_id=1, now=NOW + timedelta(days=7, seconds=1))


@pytest.mark.asyncio
async def test_evaluate_min_order(test_session: AsyncSession):
    await add_promo(test_session, min_order_amount=Decimal("200"))
    evaluator = PromoEvaluator(test_session)

    with pytest.raises(MinOrderNotMet) as exc:
        await evaluator.evaluate("WELCOME20", Decimal("199.99"), user_id=1)
    assert exc.value.min_order_amount == Decimal("200.00")
    await evaluator.evaluate("WELCOME20", Decimal("200"), user_id=1)


@pytest.mark.asyncio
async def test_evaluate_exhausted_before_any_redeem(test_session: AsyncSession):
    await add_promo(test_session, max_uses=1, used_count=1)
    with pytest.raises(PromoExhausted) as exc:
        await PromoEvaluator(test_session).evaluate("WELCOME20", 100, user_id=1)
    assert exc.value.code == "promo_exhausted"


@pytest.mark.asyncio
async def test_evaluate_checks_inactive_before_dates(test_session: AsyncSession):
    await add_promo(test_session, is_active=False, end_date=NOW - timedelta(days=1))
    with pytest.raises(PromoInactive):
        await PromoEvaluator(test_session).evaluate("WELCOME20", 100, user_id=1, now=NOW)


# ============================================
# REDEEM
# ============================================

@pytest.mark.asyncio
async def test_redeem_increments_exactly_once(test_session: AsyncSession, welcome_promo: PromoCode):
    evaluator = PromoEvaluator(test_session)
    await evaluator.redeem("WELCOME20", user_id=1, order_id=10)

    await test_session.refresh(welcome_promo)
    assert welcome_promo.used_count == 1
    assert await redemption_count(test_session, welcome_promo.id) == 1
    assert await SqlPromoStore(test_session).count_user_redemptions(welcome_promo.id, 1) == 1


@pytest.mark.asyncio
async def test_redeem_respects_per_user_limit(test_session: AsyncSession, welcome_promo: PromoCode):
    evaluator = PromoEvaluator(test_session)
    await evaluator.redeem("WELCOME20", user_id=1)

    with pytest.raises(PerUserLimitReached):
        await evaluator.evaluate("WELCOME20", 100, user_id=1)
    with pytest.raises(PerUserLimitReached):
        await evaluator.redeem("WELCOME20", user_id=1)

    # Other users are unaffected
    await evaluator.redeem("WELCOME20", user_id=2)
    await test_session.refresh(welcome_promo)
    assert welcome_promo.used_count == 2


@pytest.mark.asyncio
async def test_redeem_multiple_uses_per_user(test_session: AsyncSession):
    promo = await add_promo(test_session, code="TWICE", max_uses_per_user=2)
    evaluator = PromoEvaluator(test_session)

    await evaluator.redeem("TWICE", user_id=5)
    await evaluator.redeem("TWICE", user_id=5)
    with pytest.raises(PerUserLimitReached):
        await evaluator.redeem("TWICE", user_id=5)

    await test_session.refresh(promo)
    assert promo.used_count == 2


@pytest.mark.asyncio
async def test_redeem_rechecks_min_order_when_subtotal_given(test_session: AsyncSession):
    promo = await add_promo(test_session, min_order_amount=Decimal("300"))
    with pytest.raises(MinOrderNotMet):
        await PromoEvaluator(test_session).redeem("WELCOME20", user_id=1, subtotal=Decimal("250"))

    await test_session.refresh(promo)
    assert promo.used_count == 0


@pytest.mark.asyncio
async def test_evaluations_race_only_first_redeem_wins(test_session: AsyncSession):
    """Both users pass the dry run; once the first redeems, the second is rejected."""
    promo = await add_promo(test_session, code="LIMITED", max_uses=1)
    evaluator = PromoEvaluator(test_session)

    await evaluator.evaluate("LIMITED", 100, user_id=1)
    await evaluator.evaluate("LIMITED", 100, user_id=2)
    await evaluator.redeem("LIMITED", user_id=1)

    with pytest.raises(PromoExhausted):
        await evaluator.redeem("LIMITED", user_id=2)
    await test_session.refresh(promo)
    assert promo.used_count == 1


@pytest.mark.asyncio
async def test_concurrent_redeem_single_use_code(file_sessionmaker):
    """Two concurrent redemptions of a max_uses=1 code: exactly one succeeds."""
    async with file_sessionmaker() as session:
        promo = await add_promo(session, code="ONCE", max_uses=1)

    async def attempt(user_id: int) -> str:
        async with file_sessionmaker() as session:
            try:
                await PromoEvaluator(session).redeem("ONCE", user_id=user_id)
            except PromoExhausted:
                return "exhausted"
            return "redeemed"

    results = await asyncio.gather(attempt(1), attempt(2))
    assert sorted(results) == ["exhausted", "redeemed"]

    async with file_sessionmaker() as session:
        stored = await session.get(PromoCode, promo.id)
        assert stored.used_count == 1
        assert await redemption_count(session, promo.id) == 1


# ============================================
# STORE COUNTERS
# ============================================

@pytest.mark.asyncio
async def test_increment_usage_global_guard(test_session: AsyncSession):
    promo = await add_promo(test_session, max_uses=1)
    store = SqlPromoStore(test_session)

    assert await store.increment_usage(promo.id, 1, 1) is IncrementResult.OK
    assert await store.increment_usage(promo.id, 2, 1) is IncrementResult.EXHAUSTED
    await test_session.commit()

    await test_session.refresh(promo)
    assert promo.used_count == 1


@pytest.mark.asyncio
async def test_increment_usage_user_guard_reverts_global_count(test_session: AsyncSession):
    promo = await add_promo(test_session)
    store = SqlPromoStore(test_session)

    assert await store.increment_usage(promo.id, 1, 1) is IncrementResult.OK
    assert await store.increment_usage(promo.id, 1, 1) is IncrementResult.USER_LIMIT
    await test_session.commit()

    await test_session.refresh(promo)
    assert promo.used_count == 1
    assert await store.count_user_redemptions(promo.id, 1) == 1


@pytest.mark.asyncio
async def test_increment_usage_rejects_deactivated_promo(test_session: AsyncSession):
    promo = await add_promo(test_session)
    await test_session.execute(update(PromoCode).where(PromoCode.id == promo.id).values(is_active=False))

    store = SqlPromoStore(test_session)
    assert await store.increment_usage(promo.id, 1, 1) is IncrementResult.EXHAUSTED


class ConflictingPromoStore:
    """Store whose compare-and-swap always loses, although reads look eligible."""

    def __init__(self, promo: PromoCode, result: IncrementResult):
        self.promo = promo
        self.result = result
        self.increments = 0
        self.rolled_back = False

    async def find_by_code(self, code):
        return self.promo

    async def count_user_redemptions(self, promo_id, user_id):
        return 0

    async def increment_usage(self, promo_id, user_id, max_uses_per_user):
        self.increments += 1
        return self.result

    async def rollback(self):
        self.rolled_back = True


@pytest.mark.asyncio
@pytest.mark.parametrize("result,error", [
    (IncrementResult.EXHAUSTED, PromoExhausted),
    (IncrementResult.USER_LIMIT, PerUserLimitReached),
])
async def test_redeem_retries_conflict_once(result, error):
    store = ConflictingPromoStore(make_promo(id=1), result)
    with pytest.raises(error):
        await PromoEvaluator(store=store).redeem("WELCOME20", user_id=1)
    assert store.increments == 2
    assert store.rolled_back is True


# ============================================
# ADMIN OPERATIONS
# ============================================

def promo_data(**overrides) -> dict:
    data = {
        "code": "summer10",
        "title": "Summer",
        "discount_type": "percentage",
        "discount_value": Decimal("10"),
        "start_date": NOW,
    }
    data.update(overrides)
    return data


@pytest.mark.asyncio
async def test_create_promo_normalizes_code(test_session: AsyncSession):
    evaluator = PromoEvaluator(test_session)
    promo = await evaluator.create_promo(promo_data())
    await test_session.commit()

    assert promo.code == "SUMMER10"
    assert promo.discount_type == "PERCENTAGE"
    assert promo.used_count == 0
    assert promo.max_uses_per_user == 1


@pytest.mark.asyncio
async def test_create_promo_duplicate_code(test_session: AsyncSession):
    evaluator = PromoEvaluator(test_session)
    await evaluator.create_promo(promo_data())
    await test_session.commit()

    with pytest.raises(DuplicatePromoCode) as exc:
        await evaluator.create_promo(promo_data(code="Summer10"))
    assert exc.value.status_code == 409


@pytest.mark.asyncio
@pytest.mark.parametrize("overrides,problem", [
    ({"discount_value": Decimal("150")}, "<= 100"),
    ({"discount_value": Decimal("0")}, "discount_value"),
    ({"discount_type": "BOGO"}, "discount_type"),
    ({"max_uses": 0}, "max_uses"),
    ({"max_uses_per_user": 0}, "max_uses_per_user"),
    ({"max_discount": Decimal("-5")}, "max_discount"),
    ({"end_date": NOW - timedelta(days=1)}, "end_date"),
    ({"title": "  "}, "title"),
])
async def test_create_promo_validation(test_session: AsyncSession, overrides, problem):
    with pytest.raises(InvalidPromoParameters) as exc:
        await PromoEvaluator(test_session).create_promo(promo_data(**overrides))
    assert problem in exc.value.message


@pytest.mark.asyncio
async def test_update_promo_frozen_fields(test_session: AsyncSession, welcome_promo: PromoCode):
    evaluator = PromoEvaluator(test_session)

    with pytest.raises(ImmutableFieldError):
        await evaluator.update_promo(welcome_promo.id, {"code": "OTHER"})
    with pytest.raises(ImmutableFieldError):
        await evaluator.update_promo(welcome_promo.id, {"discount_type": "FIXED"})
    with pytest.raises(ImmutableFieldError):
        await evaluator.update_promo(welcome_promo.id, {"used_count": 0})


@pytest.mark.asyncio
async def test_update_promo_mutable_fields(test_session: AsyncSession, welcome_promo: PromoCode):
    evaluator = PromoEvaluator(test_session)
    promo = await evaluator.update_promo(
        welcome_promo.id,
        {"code": "welcome20", "title": "Welcome back", "max_uses": 100, "discount_value": Decimal("25")},
    )
    await test_session.commit()

    assert promo.code == "WELCOME20"
    assert promo.title == "Welcome back"
    assert promo.max_uses == 100
    assert promo.discount_value == Decimal("25.00")


@pytest.mark.asyncio
async def test_update_promo_max_uses_not_below_used_count(test_session: AsyncSession):
    promo = await add_promo(test_session, code="FIVE", max_uses=5, used_count=3)
    promo_id = promo.id
    evaluator = PromoEvaluator(test_session)

    with pytest.raises(InvalidPromoParameters) as exc:
        await evaluator.update_promo(promo_id, {"max_uses": 1})
    assert "max_uses must be >= used_count (3)" in exc.value.message
    await test_session.rollback()

    updated = await evaluator.update_promo(promo_id, {"max_uses": 3})
    await test_session.commit()
    assert updated.max_uses == 3
    assert updated.used_count <= updated.max_uses


@pytest.mark.asyncio
async def test_toggle_promo(test_session: AsyncSession, welcome_promo: PromoCode):
    evaluator = PromoEvaluator(test_session)
    promo = await evaluator.toggle_active(welcome_promo.id)
    await test_session.commit()
    assert promo.is_active is False

    with pytest.raises(PromoInactive):
        await evaluator.evaluate("WELCOME20", 100, user_id=1)


@pytest.mark.asyncio
async def test_delete_promo(test_session: AsyncSession, welcome_promo: PromoCode):
    evaluator = PromoEvaluator(test_session)
    await evaluator.delete_promo(welcome_promo.id)
    await test_session.commit()

    with pytest.raises(PromoNotFound):
        await evaluator.get_promo(welcome_promo.id)


@pytest.mark.asyncio
async def test_delete_redeemed_promo_rejected(test_session: AsyncSession, welcome_promo: PromoCode):
    evaluator = PromoEvaluator(test_session)
    await evaluator.redeem("WELCOME20", user_id=1)

    with pytest.raises(PromoInUse) as exc:
        await evaluator.delete_promo(welcome_promo.id)
    assert exc.value.status_code == 409


@pytest.mark.asyncio
async def test_list_promos_status_labels(test_session: AsyncSession):
    await add_promo(test_session, code="LIVE")
    await add_promo(test_session, code="OFF", is_active=False)
    await add_promo(test_session, code="OLD", end_date=NOW - timedelta(days=1), start_date=NOW - timedelta(days=9))
    await add_promo(test_session, code="SOON", start_date=NOW + timedelta(days=1))
    await add_promo(test_session, code="GONE", max_uses=3, used_count=3)

    listed = await PromoEvaluator(test_session).list_promos(now=NOW)
    statuses = {p["code"]: p["status"] for p in listed}
    assert statuses == {
        "LIVE": "active",
        "OFF": "inactive",
        "OLD": "expired",
        "SOON": "scheduled",
        "GONE": "exhausted",
    }


def test_promo_status_with_naive_dates():
    promo = make_promo(start_date=datetime(2026, 1, 1), end_date=datetime(2026, 2, 1))
    assert promo_status(promo, NOW) == "expired"
