from sqlalchemy import BigInteger, String, ForeignKey, Integer, DECIMAL, Boolean, DateTime, Text, Index, UniqueConstraint, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column, validates
from datetime import datetime
from typing import Optional
from backend.app.core.base import Base, utcnow
from backend.app.core.exceptions import ImmutableFieldError


def normalize_code(code: str) -> str:
    """Promo codes are case-insensitive and stored uppercase."""
    return (code or "").strip().upper()


class PromoCode(Base):
    __tablename__ = 'promo_codes'

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    code: Mapped[str] = mapped_column(String(50), unique=True)
    title: Mapped[str] = mapped_column(String(255))
    title_am: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    description_am: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    # PERCENTAGE | FIXED, frozen after creation
    discount_type: Mapped[str] = mapped_column(String(20))
    discount_value: Mapped[float] = mapped_column(DECIMAL(10, 2))
    min_order_amount: Mapped[float] = mapped_column(DECIMAL(10, 2), default=0)
    max_discount: Mapped[Optional[float]] = mapped_column(DECIMAL(10, 2), nullable=True)
    max_uses: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    max_uses_per_user: Mapped[int] = mapped_column(Integer, default=1)
    # Mutated only by conditional UPDATE on redemption
    used_count: Mapped[int] = mapped_column(Integer, default=0)
    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    end_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        Index('ix_promo_codes_active', 'is_active'),
        CheckConstraint('used_count >= 0', name='ck_promo_codes_used_count_non_negative'),
    )

    @validates('code')
    def _normalize_and_freeze_code(self, key, value):
        value = normalize_code(value)
        if self.code is not None and value != self.code:
            raise ImmutableFieldError("PromoCode", key)
        return value

    @validates('discount_type')
    def _freeze_discount_type(self, key, value):
        if self.discount_type is not None and value != self.discount_type:
            raise ImmutableFieldError("PromoCode", key)
        return value


class PromoUserUsage(Base):
    """Per-user redemption counter, guarded by conditional writes."""
    __tablename__ = 'promo_user_usages'

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    promo_id: Mapped[int] = mapped_column(ForeignKey('promo_codes.id', ondelete='CASCADE'))
    user_id: Mapped[int] = mapped_column(BigInteger)
    uses: Mapped[int] = mapped_column(Integer, default=0)

    __table_args__ = (
        UniqueConstraint('promo_id', 'user_id', name='uq_promo_user_usages_promo_user'),
    )


class PromoRedemption(Base):
    """Audit trail: one row per confirmed redemption."""
    __tablename__ = 'promo_redemptions'

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    promo_id: Mapped[int] = mapped_column(ForeignKey('promo_codes.id', ondelete='CASCADE'))
    user_id: Mapped[int] = mapped_column(BigInteger)
    order_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    redeemed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        Index('ix_promo_redemptions_promo_id', 'promo_id'),
        Index('ix_promo_redemptions_user', 'promo_id', 'user_id'),
    )
