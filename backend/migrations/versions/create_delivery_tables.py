"""create_delivery_tables: delivery_zones, promo_codes, promo usage, orders

Revision ID: create_delivery_tables
Revises:
Create Date: 2026-10-19
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = 'create_delivery_tables'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'delivery_zones',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('name_am', sa.String(255), nullable=True),
        sa.Column('sub_city', sa.String(64), nullable=False),
        sa.Column('center_lat', sa.Float(), nullable=True),
        sa.Column('center_lng', sa.Float(), nullable=True),
        sa.Column('radius_km', sa.Float(), server_default='3.0', nullable=False),
        sa.Column('delivery_fee', sa.DECIMAL(10, 2), server_default='0', nullable=False),
        sa.Column('min_order_amount', sa.DECIMAL(10, 2), server_default='0', nullable=False),
        sa.Column('estimated_min_minutes', sa.Integer(), server_default='15', nullable=False),
        sa.Column('estimated_max_minutes', sa.Integer(), server_default='30', nullable=False),
        sa.Column('is_active', sa.Boolean(), server_default='true', nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('sub_city', name='uq_delivery_zones_sub_city'),
    )
    op.create_index('ix_delivery_zones_active', 'delivery_zones', ['is_active'])

    op.create_table(
        'promo_codes',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('code', sa.String(50), nullable=False),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('title_am', sa.String(255), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('description_am', sa.Text(), nullable=True),
        sa.Column('discount_type', sa.String(20), nullable=False),
        sa.Column('discount_value', sa.DECIMAL(10, 2), nullable=False),
        sa.Column('min_order_amount', sa.DECIMAL(10, 2), server_default='0', nullable=False),
        sa.Column('max_discount', sa.DECIMAL(10, 2), nullable=True),
        sa.Column('max_uses', sa.Integer(), nullable=True),
        sa.Column('max_uses_per_user', sa.Integer(), server_default='1', nullable=False),
        sa.Column('used_count', sa.Integer(), server_default='0', nullable=False),
        sa.Column('start_date', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('end_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('is_active', sa.Boolean(), server_default='true', nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('code', name='uq_promo_codes_code'),
        sa.CheckConstraint('used_count >= 0', name='ck_promo_codes_used_count_non_negative'),
    )
    op.create_index('ix_promo_codes_active', 'promo_codes', ['is_active'])

    op.create_table(
        'promo_user_usages',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('promo_id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.BigInteger(), nullable=False),
        sa.Column('uses', sa.Integer(), server_default='0', nullable=False),
        sa.ForeignKeyConstraint(['promo_id'], ['promo_codes.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('promo_id', 'user_id', name='uq_promo_user_usages_promo_user'),
    )

    op.create_table(
        'promo_redemptions',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('promo_id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.BigInteger(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=True),
        sa.Column('redeemed_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(['promo_id'], ['promo_codes.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_promo_redemptions_promo_id', 'promo_redemptions', ['promo_id'])
    op.create_index('ix_promo_redemptions_user', 'promo_redemptions', ['promo_id', 'user_id'])

    op.create_table(
        'orders',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.BigInteger(), nullable=False),
        sa.Column('zone_id', sa.Integer(), nullable=False),
        sa.Column('promo_id', sa.Integer(), nullable=True),
        sa.Column('promo_code', sa.String(50), nullable=True),
        sa.Column('dropoff_lat', sa.Float(), nullable=False),
        sa.Column('dropoff_lng', sa.Float(), nullable=False),
        sa.Column('subtotal', sa.DECIMAL(10, 2), nullable=False),
        sa.Column('delivery_fee', sa.DECIMAL(10, 2), nullable=False),
        sa.Column('discount_amount', sa.DECIMAL(10, 2), server_default='0', nullable=False),
        sa.Column('total', sa.DECIMAL(10, 2), nullable=False),
        sa.Column('status', sa.String(50), server_default='pending', nullable=False),
        sa.Column('cancel_reason', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(['zone_id'], ['delivery_zones.id']),
        sa.ForeignKeyConstraint(['promo_id'], ['promo_codes.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_orders_user_id', 'orders', ['user_id'])
    op.create_index('ix_orders_zone_id', 'orders', ['zone_id'])
    op.create_index('ix_orders_status', 'orders', ['status'])
    op.create_index('ix_orders_created_at', 'orders', ['created_at'])


def downgrade() -> None:
    op.drop_index('ix_orders_created_at', 'orders')
    op.drop_index('ix_orders_status', 'orders')
    op.drop_index('ix_orders_zone_id', 'orders')
    op.drop_index('ix_orders_user_id', 'orders')
    op.drop_table('orders')
    op.drop_index('ix_promo_redemptions_user', 'promo_redemptions')
    op.drop_index('ix_promo_redemptions_promo_id', 'promo_redemptions')
    op.drop_table('promo_redemptions')
    op.drop_table('promo_user_usages')
    op.drop_index('ix_promo_codes_active', 'promo_codes')
    op.drop_table('promo_codes')
    op.drop_index('ix_delivery_zones_active', 'delivery_zones')
    op.drop_table('delivery_zones')
