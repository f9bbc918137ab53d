from sqlalchemy import BigInteger, String, ForeignKey, DateTime, DECIMAL, Float, Index
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime
from typing import Optional
from backend.app.core.base import Base, utcnow


class Order(Base):
    __tablename__ = 'orders'
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger)
    # Zones referenced by orders are deactivated, never deleted
    zone_id: Mapped[int] = mapped_column(ForeignKey('delivery_zones.id'))
    promo_id: Mapped[Optional[int]] = mapped_column(ForeignKey('promo_codes.id', ondelete='SET NULL'), nullable=True)
    promo_code: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    dropoff_lat: Mapped[float] = mapped_column(Float)
    dropoff_lng: Mapped[float] = mapped_column(Float)
    subtotal: Mapped[float] = mapped_column(DECIMAL(10, 2))
    delivery_fee: Mapped[float] = mapped_column(DECIMAL(10, 2))
    discount_amount: Mapped[float] = mapped_column(DECIMAL(10, 2), default=0)
    total: Mapped[float] = mapped_column(DECIMAL(10, 2))
    status: Mapped[str] = mapped_column(String(50), default='pending')
    cancel_reason: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        Index('ix_orders_user_id', 'user_id'),
        Index('ix_orders_zone_id', 'zone_id'),
        Index('ix_orders_status', 'status'),
        Index('ix_orders_created_at', 'created_at'),
    )
