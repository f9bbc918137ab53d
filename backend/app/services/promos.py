# backend/app/services/promos.py
"""
Promo codes: admin management, dry-run evaluation and redemption.

evaluate() never writes. redeem() re-checks the code against fresh state and
claims usage with conditional UPDATEs (used_count < max_uses, uses <
max_uses_per_user), so two concurrent redemptions cannot both pass the
exhaustion check. There is no global lock.
"""
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional, List, Dict, Any

from sqlalchemy import select, update, func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.base import as_utc, utcnow
from backend.app.core.constants import (
    DISCOUNT_PERCENTAGE,
    DISCOUNT_TYPES,
    MAX_PROMO_CODE_LENGTH,
    PERCENT_BASE,
    ZERO,
)
from backend.app.core.exceptions import ImmutableFieldError, ServiceError
from backend.app.core.logging import get_logger
from backend.app.core.metrics import promo_evaluations_total, promo_redemptions_total
from backend.app.core.money import money_to_float, optional_money, to_money
from backend.app.core.upstream import call_upstream
from backend.app.models.promo import PromoCode, PromoRedemption, PromoUserUsage, normalize_code

logger = get_logger(__name__)


class PromoServiceError(ServiceError):
    """Base exception for promo code errors."""
    code = "promo_error"


class PromoNotFound(PromoServiceError):
    code = "promo_not_found"

    def __init__(self, identifier: Any):
        super().__init__(f"Promo code {identifier} not found", 404)


class PromoInactive(PromoServiceError):
    code = "promo_inactive"

    def __init__(self, promo_code: str):
        super().__init__(f"Promo code {promo_code} is not active", 422)


class PromoNotStarted(PromoServiceError):
    code = "promo_not_started"

    def __init__(self, promo_code: str, start_date: datetime):
        super().__init__(f"Promo code {promo_code} is valid from {start_date.isoformat()}", 422)


class PromoExpired(PromoServiceError):
    code = "promo_expired"

    def __init__(self, promo_code: str):
        super().__init__(f"Promo code {promo_code} has expired", 422)


class MinOrderNotMet(PromoServiceError):
    code = "min_order_not_met"

    def __init__(self, promo_code: str, min_order_amount: Decimal):
        self.min_order_amount = min_order_amount
        super().__init__(f"Promo code {promo_code} requires an order of at least {min_order_amount}", 422)


class PromoExhausted(PromoServiceError):
    code = "promo_exhausted"

    def __init__(self, promo_code: str):
        super().__init__(f"Promo code {promo_code} has reached its usage limit", 422)


class PerUserLimitReached(PromoServiceError):
    code = "per_user_limit_reached"

    def __init__(self, promo_code: str):
        super().__init__(f"You have already used promo code {promo_code} the maximum number of times", 422)


class InvalidPromoParameters(PromoServiceError):
    code = "invalid_promo_parameters"

    def __init__(self, problems: List[str]):
        self.problems = problems
        super().__init__("; ".join(problems), 400)


class DuplicatePromoCode(PromoServiceError):
    code = "duplicate_promo_code"

    def __init__(self, promo_code: str):
        super().__init__(f"Promo code {promo_code} already exists", 409)


class PromoInUse(PromoServiceError):
    code = "promo_in_use"

    def __init__(self, promo_id: int):
        super().__init__(f"Promo {promo_id} has redemptions, deactivate it instead", 409)


class IncrementResult(str, Enum):
    OK = "ok"
    EXHAUSTED = "exhausted"
    USER_LIMIT = "user_limit"


@dataclass(frozen=True)
class PromoApplication:
    promo_id: int
    code: str
    discount_type: str
    subtotal: Decimal
    discount_amount: Decimal
    final_total: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {
            "promo_id": self.promo_id,
            "code": self.code,
            "discount_type": self.discount_type,
            "subtotal": money_to_float(self.subtotal),
            "discount_amount": money_to_float(self.discount_amount),
            "final_total": money_to_float(self.final_total),
        }


def compute_discount(
    discount_type: str,
    discount_value: Any,
    subtotal: Decimal,
    max_discount: Optional[Any] = None,
) -> Decimal:
    """Raw percentage/fixed discount, rounded to cents, clamped to [0, min(subtotal, max_discount)]."""
    value = to_money(discount_value)
    if discount_type == DISCOUNT_PERCENTAGE:
        raw = to_money(subtotal * value / PERCENT_BASE)
    else:
        raw = value

    discount = min(raw, subtotal)
    if max_discount is not None:
        discount = min(discount, to_money(max_discount))
    return max(discount, ZERO)


def promo_status(promo: PromoCode, now: Optional[datetime] = None) -> str:
    """Label shown in the admin list: inactive / expired / scheduled / exhausted / active."""
    now = as_utc(now or utcnow())
    if not promo.is_active:
        return "inactive"
    if promo.end_date is not None and now > as_utc(promo.end_date):
        return "expired"
    if now < as_utc(promo.start_date):
        return "scheduled"
    if promo.max_uses is not None and promo.used_count >= promo.max_uses:
        return "exhausted"
    return "active"


class SqlPromoStore:
    """Promo persistence over an AsyncSession. Reads always refresh the identity map."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def find_by_code(self, code: str) -> Optional[PromoCode]:
        result = await self.session.execute(
            select(PromoCode)
            .where(PromoCode.code == normalize_code(code))
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get(self, promo_id: int) -> Optional[PromoCode]:
        return await self.session.get(PromoCode, promo_id, populate_existing=True)

    async def list_promos(self) -> List[PromoCode]:
        result = await self.session.execute(
            select(PromoCode).order_by(PromoCode.created_at.desc(), PromoCode.id.desc())
        )
        return list(result.scalars().all())

    async def count_user_redemptions(self, promo_id: int, user_id: int) -> int:
        uses = await self.session.scalar(
            select(PromoUserUsage.uses).where(
                PromoUserUsage.promo_id == promo_id,
                PromoUserUsage.user_id == user_id,
            )
        )
        return uses or 0

    async def count_redemptions(self, promo_id: int) -> int:
        count = await self.session.scalar(
            select(func.count(PromoRedemption.id)).where(PromoRedemption.promo_id == promo_id)
        )
        return count or 0

    async def increment_usage(self, promo_id: int, user_id: int, max_uses_per_user: int) -> IncrementResult:
        """
        Claim one global and one per-user use with conditional writes.

        Returns EXHAUSTED when the global guard fails (also when the promo was
        deactivated meanwhile) and USER_LIMIT when the per-user guard fails; in
        that case the global increment is reverted in the same transaction.
        """
        claimed = await self.session.execute(
            update(PromoCode)
            .where(
                PromoCode.id == promo_id,
                PromoCode.is_active == True,  # noqa: E712
                or_(PromoCode.max_uses.is_(None), PromoCode.used_count < PromoCode.max_uses),
            )
            .values(used_count=PromoCode.used_count + 1)
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount != 1:
            return IncrementResult.EXHAUSTED

        if not await self._claim_user_slot(promo_id, user_id, max_uses_per_user):
            await self.session.execute(
                update(PromoCode)
                .where(PromoCode.id == promo_id)
                .values(used_count=PromoCode.used_count - 1)
                .execution_options(synchronize_session=False)
            )
            return IncrementResult.USER_LIMIT
        return IncrementResult.OK

    async def _claim_user_slot(self, promo_id: int, user_id: int, max_uses_per_user: int) -> bool:
        dialect = self.session.get_bind().dialect.name
        if dialect == "postgresql":
            from sqlalchemy.dialects.postgresql import insert
        elif dialect == "sqlite":
            from sqlalchemy.dialects.sqlite import insert
        else:
            raise NotImplementedError(f"Unsupported database dialect: {dialect}")

        # First use creates the counter row; max_uses_per_user >= 1 always allows it
        inserted = await self.session.execute(
            insert(PromoUserUsage.__table__)
            .values(promo_id=promo_id, user_id=user_id, uses=1)
            .on_conflict_do_nothing(index_elements=["promo_id", "user_id"])
        )
        if inserted.rowcount == 1:
            return True

        bumped = await self.session.execute(
            update(PromoUserUsage)
            .where(
                PromoUserUsage.promo_id == promo_id,
                PromoUserUsage.user_id == user_id,
                PromoUserUsage.uses < max_uses_per_user,
            )
            .values(uses=PromoUserUsage.uses + 1)
            .execution_options(synchronize_session=False)
        )
        return bumped.rowcount == 1

    async def record_redemption(self, promo_id: int, user_id: int, order_id: Optional[int]) -> None:
        self.session.add(PromoRedemption(promo_id=promo_id, user_id=user_id, order_id=order_id))
        await self.session.flush()

    async def add(self, promo: PromoCode) -> PromoCode:
        self.session.add(promo)
        await self.session.flush()
        return promo

    async def flush(self) -> None:
        await self.session.flush()

    async def delete(self, promo: PromoCode) -> None:
        await self.session.delete(promo)
        await self.session.flush()

    async def commit(self) -> None:
        await self.session.commit()

    async def rollback(self) -> None:
        await self.session.rollback()


PROMO_FIELDS = (
    "title",
    "title_am",
    "description",
    "description_am",
    "discount_value",
    "min_order_amount",
    "max_discount",
    "max_uses",
    "max_uses_per_user",
    "start_date",
    "end_date",
    "is_active",
)


class PromoEvaluator:
    """Validates promo codes against an order context and owns usage counters."""

    def __init__(self, session: Optional[AsyncSession] = None, *, store: Optional[SqlPromoStore] = None):
        if store is None:
            if session is None:
                raise ValueError("PromoEvaluator needs a session or an explicit store")
            store = SqlPromoStore(session)
        self.store = store

    # ------------------------------------------------------------------
    # Evaluation and redemption
    # ------------------------------------------------------------------

    async def evaluate(
        self,
        code: str,
        subtotal: Any,
        user_id: int,
        now: Optional[datetime] = None,
    ) -> PromoApplication:
        """
        Dry run: check the code for this order and compute the discount. Never writes.

        Raises (in check order):
            PromoNotFound, PromoInactive, PromoNotStarted, PromoExpired,
            MinOrderNotMet, PromoExhausted, PerUserLimitReached
        """
        now = as_utc(now or utcnow())
        subtotal = to_money(subtotal)
        try:
            promo = await self._load(code)
            await self._check(promo, user_id, now, subtotal)
        except PromoServiceError as e:
            promo_evaluations_total.labels(outcome=e.code).inc()
            logger.info("Promo rejected", code=normalize_code(code), user_id=user_id, reason=e.code)
            raise

        discount = compute_discount(promo.discount_type, promo.discount_value, subtotal, promo.max_discount)
        promo_evaluations_total.labels(outcome="applied").inc()
        return PromoApplication(
            promo_id=promo.id,
            code=promo.code,
            discount_type=promo.discount_type,
            subtotal=subtotal,
            discount_amount=discount,
            final_total=subtotal - discount,
        )

    async def redeem(
        self,
        code: str,
        user_id: int,
        order_id: Optional[int] = None,
        subtotal: Optional[Any] = None,
        now: Optional[datetime] = None,
    ) -> None:
        """
        Count one use of ``code`` for ``user_id`` and commit.

        Conditions are re-checked against current state first (the minimum
        order only when ``subtotal`` is given). A lost compare-and-swap is
        re-evaluated once, then reported as PromoExhausted / PerUserLimitReached.
        On any failure the transaction is rolled back.
        """
        now = as_utc(now or utcnow())
        checked_subtotal = to_money(subtotal) if subtotal is not None else None
        conflict: Optional[IncrementResult] = None
        try:
            for attempt in (1, 2):
                promo = await self._load(code)
                await self._check(promo, user_id, now, checked_subtotal)

                promo_id, per_user = promo.id, promo.max_uses_per_user
                result = await call_upstream(
                    "promos.increment_usage",
                    lambda: self.store.increment_usage(promo_id, user_id, per_user),
                )
                if result is IncrementResult.OK:
                    await call_upstream(
                        "promos.record_redemption",
                        lambda: self.store.record_redemption(promo_id, user_id, order_id),
                    )
                    await call_upstream("promos.commit", self.store.commit)
                    promo_redemptions_total.labels(outcome="redeemed").inc()
                    logger.info("Promo redeemed", code=promo.code, user_id=user_id, order_id=order_id)
                    return
                conflict = result
                logger.info("Promo redemption conflict", code=promo.code, user_id=user_id, attempt=attempt, result=result.value)

            if conflict is IncrementResult.USER_LIMIT:
                raise PerUserLimitReached(normalize_code(code))
            raise PromoExhausted(normalize_code(code))
        except PromoServiceError as e:
            await self.store.rollback()
            promo_redemptions_total.labels(outcome=e.code).inc()
            raise
        except Exception:
            await self.store.rollback()
            raise

    async def _load(self, code: str) -> PromoCode:
        normalized = normalize_code(code)
        if not normalized:
            raise PromoNotFound(repr(code))
        promo = await call_upstream(
            "promos.find_by_code", lambda: self.store.find_by_code(normalized), idempotent=True
        )
        if promo is None:
            raise PromoNotFound(normalized)
        return promo

    async def _check(
        self,
        promo: PromoCode,
        user_id: int,
        now: datetime,
        subtotal: Optional[Decimal],
    ) -> None:
        if not promo.is_active:
            raise PromoInactive(promo.code)
        start_date = as_utc(promo.start_date)
        if now < start_date:
            raise PromoNotStarted(promo.code, start_date)
        if promo.end_date is not None and now > as_utc(promo.end_date):
            raise PromoExpired(promo.code)
        min_order = to_money(promo.min_order_amount or 0)
        if subtotal is not None and subtotal < min_order:
            raise MinOrderNotMet(promo.code, min_order)
        if promo.max_uses is not None and promo.used_count >= promo.max_uses:
            raise PromoExhausted(promo.code)
        promo_id = promo.id
        used_by_user = await call_upstream(
            "promos.count_user_redemptions",
            lambda: self.store.count_user_redemptions(promo_id, user_id),
            idempotent=True,
        )
        if used_by_user >= promo.max_uses_per_user:
            raise PerUserLimitReached(promo.code)

    # ------------------------------------------------------------------
    # Admin operations
    # ------------------------------------------------------------------

    async def list_promos(self, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        promos = await call_upstream("promos.list_promos", self.store.list_promos, idempotent=True)
        return [self.promo_to_dict(p, now) for p in promos]

    async def get_promo(self, promo_id: int) -> PromoCode:
        promo = await call_upstream("promos.get", lambda: self.store.get(promo_id), idempotent=True)
        if promo is None:
            raise PromoNotFound(promo_id)
        return promo

    async def create_promo(self, data: Dict[str, Any]) -> PromoCode:
        code = normalize_code(data.get("code") or "")
        discount_type = (data.get("discount_type") or "").upper()
        values = {
            "title_am": None,
            "description": None,
            "description_am": None,
            "min_order_amount": ZERO,
            "max_discount": None,
            "max_uses": None,
            "max_uses_per_user": 1,
            "start_date": utcnow(),
            "end_date": None,
            "is_active": True,
        }
        values.update({k: data[k] for k in PROMO_FIELDS if k in data})
        values = self._validate(code, discount_type, values)

        existing = await call_upstream("promos.find_by_code", lambda: self.store.find_by_code(code), idempotent=True)
        if existing is not None:
            raise DuplicatePromoCode(code)

        promo = PromoCode(code=code, discount_type=discount_type, used_count=0, **values)
        try:
            await call_upstream("promos.add", lambda: self.store.add(promo))
        except IntegrityError as e:
            raise DuplicatePromoCode(code) from e
        logger.info("Promo created", promo_id=promo.id, code=code, discount_type=discount_type)
        return promo

    async def update_promo(self, promo_id: int, data: Dict[str, Any]) -> PromoCode:
        """Edit a promo. ``code`` and ``discount_type`` are frozen, ``used_count`` is never editable."""
        if "used_count" in data:
            raise ImmutableFieldError("PromoCode", "used_count")
        promo = await self.get_promo(promo_id)
        # The model validators raise ImmutableFieldError on a different value
        if data.get("code") is not None:
            promo.code = data["code"]
        if data.get("discount_type") is not None:
            promo.discount_type = data["discount_type"].upper()

        values = {field: getattr(promo, field) for field in PROMO_FIELDS}
        values.update({k: data[k] for k in PROMO_FIELDS if k in data})
        values = self._validate(promo.code, promo.discount_type, values, used_count=promo.used_count)
        for field, value in values.items():
            setattr(promo, field, value)
        await call_upstream("promos.flush", self.store.flush)
        logger.info("Promo updated", promo_id=promo.id, fields=sorted(k for k in data if k in PROMO_FIELDS))
        return promo

    async def toggle_active(self, promo_id: int) -> PromoCode:
        promo = await self.get_promo(promo_id)
        promo.is_active = not promo.is_active
        await call_upstream("promos.flush", self.store.flush)
        logger.info("Promo toggled", promo_id=promo.id, is_active=promo.is_active)
        return promo

    async def delete_promo(self, promo_id: int) -> None:
        """Delete a promo that was never redeemed; redeemed promos keep their audit trail."""
        promo = await self.get_promo(promo_id)
        redemptions = await call_upstream(
            "promos.count_redemptions", lambda: self.store.count_redemptions(promo_id), idempotent=True
        )
        if redemptions or promo.used_count:
            raise PromoInUse(promo_id)
        await call_upstream("promos.delete", lambda: self.store.delete(promo))
        logger.info("Promo deleted", promo_id=promo_id)

    @staticmethod
    def _validate(code: str, discount_type: str, values: Dict[str, Any], used_count: int = 0) -> Dict[str, Any]:
        problems = []
        values = dict(values)

        if not code:
            problems.append("code is required")
        elif len(code) > MAX_PROMO_CODE_LENGTH:
            problems.append(f"code must be at most {MAX_PROMO_CODE_LENGTH} characters")
        if discount_type not in DISCOUNT_TYPES:
            problems.append(f"discount_type must be one of {', '.join(DISCOUNT_TYPES)}")

        values["title"] = (values.get("title") or "").strip()
        if not values["title"]:
            problems.append("title is required")

        try:
            value = to_money(values.get("discount_value"))
        except ValueError:
            value = None
        if value is None or value <= ZERO:
            problems.append("discount_value must be > 0")
        elif discount_type == DISCOUNT_PERCENTAGE and value > PERCENT_BASE:
            problems.append("percentage discount_value must be <= 100")
        values["discount_value"] = value

        min_order = to_money(values.get("min_order_amount") or 0)
        if min_order < ZERO:
            problems.append("min_order_amount must be >= 0")
        values["min_order_amount"] = min_order

        max_discount = optional_money(values.get("max_discount"))
        if max_discount is not None and max_discount <= ZERO:
            problems.append("max_discount must be > 0")
        values["max_discount"] = max_discount

        max_uses = values.get("max_uses")
        if max_uses is not None and max_uses < 1:
            problems.append("max_uses must be >= 1")
        elif max_uses is not None and max_uses < used_count:
            # usage already counted cannot be taken back
            problems.append(f"max_uses must be >= used_count ({used_count})")
        per_user = values.get("max_uses_per_user")
        if per_user is None or per_user < 1:
            problems.append("max_uses_per_user must be >= 1")

        start_date, end_date = values.get("start_date"), values.get("end_date")
        if start_date is None:
            problems.append("start_date is required")
        else:
            values["start_date"] = as_utc(start_date)
        if end_date is not None:
            values["end_date"] = as_utc(end_date)
            if start_date is not None and values["end_date"] < values["start_date"]:
                problems.append("end_date must not be before start_date")

        values["is_active"] = bool(values.get("is_active", True))

        if problems:
            raise InvalidPromoParameters(problems)
        return values

    @staticmethod
    def promo_to_dict(promo: PromoCode, now: Optional[datetime] = None) -> Dict[str, Any]:
        return {
            "id": promo.id,
            "code": promo.code,
            "title": promo.title,
            "title_am": promo.title_am,
            "description": promo.description,
            "description_am": promo.description_am,
            "discount_type": promo.discount_type,
            "discount_value": money_to_float(to_money(promo.discount_value)),
            "min_order_amount": money_to_float(to_money(promo.min_order_amount or 0)),
            "max_discount": money_to_float(optional_money(promo.max_discount)),
            "max_uses": promo.max_uses,
            "max_uses_per_user": promo.max_uses_per_user,
            "used_count": promo.used_count,
            "start_date": as_utc(promo.start_date).isoformat() if promo.start_date else None,
            "end_date": as_utc(promo.end_date).isoformat() if promo.end_date else None,
            "is_active": promo.is_active,
            "status": promo_status(promo, now),
        }
