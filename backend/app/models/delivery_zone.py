from sqlalchemy import String, Integer, DECIMAL, Boolean, Float, DateTime, Index
from sqlalchemy.orm import Mapped, mapped_column, validates
from datetime import datetime
from typing import Optional
from backend.app.core.base import Base, utcnow
from backend.app.core.exceptions import ImmutableFieldError


class DeliveryZone(Base):
    __tablename__ = 'delivery_zones'

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255))
    name_am: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    # One zone per sub-city; frozen after creation
    sub_city: Mapped[str] = mapped_column(String(64), unique=True)
    # Circular geofence. Both center components set => zone is geofenced
    center_lat: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    center_lng: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    radius_km: Mapped[float] = mapped_column(Float, default=3.0)
    delivery_fee: Mapped[float] = mapped_column(DECIMAL(10, 2), default=0)
    min_order_amount: Mapped[float] = mapped_column(DECIMAL(10, 2), default=0)
    estimated_min_minutes: Mapped[int] = mapped_column(Integer, default=15)
    estimated_max_minutes: Mapped[int] = mapped_column(Integer, default=30)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index('ix_delivery_zones_active', 'is_active'),
    )

    @validates('sub_city')
    def _freeze_sub_city(self, key, value):
        if self.sub_city is not None and value != self.sub_city:
            raise ImmutableFieldError("DeliveryZone", key)
        return value

    @property
    def is_geofenced(self) -> bool:
        return self.center_lat is not None and self.center_lng is not None
