"""Initial migration

Revision ID: 001
Revises:
Create Date: 2025-05-01 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Create restaurants table
    op.create_table(
        'restaurants',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('timezone', sa.String(50), nullable=False, server_default='America/New_York'),
        sa.Column('is_active', sa.Boolean(), default=True),
        sa.Column('created_at', sa.DateTime(), default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), default=sa.func.now(), onupdate=sa.func.now()),
    )

    # Create restaurant_settings table (NULL policy columns use the global defaults)
    op.create_table(
        'restaurant_settings',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('restaurant_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('restaurants.id'), unique=True, nullable=False),
        sa.Column('address', sa.Text()),
        sa.Column('policies_json', postgresql.JSON(), default={}),
        sa.Column('hold_ttl_minutes', sa.Integer()),
        sa.Column('reservation_duration_minutes', sa.Integer()),
        sa.Column('cancellation_window_hours', sa.Integer()),
        sa.Column('allow_overlapping_holds', sa.Boolean()),
        sa.Column('created_at', sa.DateTime(), default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), default=sa.func.now(), onupdate=sa.func.now()),
    )

    # Create tables table
    op.create_table(
        'tables',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('restaurant_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('restaurants.id'), nullable=False),
        sa.Column('table_number', sa.String(20), nullable=False),
        sa.Column('capacity', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='available'),
        sa.Column('version', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(), default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), default=sa.func.now(), onupdate=sa.func.now()),
        sa.UniqueConstraint('restaurant_id', 'table_number', name='uq_tables_restaurant_number'),
    )

    # Create menu_items table
    op.create_table(
        'menu_items',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('restaurant_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('restaurants.id'), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text()),
        sa.Column('price_cents', sa.Integer(), nullable=False),
        sa.Column('category', sa.String(100)),
        sa.Column('is_available', sa.Boolean(), default=True),
        sa.Column('created_at', sa.DateTime(), default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), default=sa.func.now(), onupdate=sa.func.now()),
    )

    # Create reservations table
    op.create_table(
        'reservations',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('restaurant_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('restaurants.id'), nullable=False),
        sa.Column('table_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('tables.id')),
        sa.Column('customer_name', sa.String(255), nullable=False),
        sa.Column('customer_phone', sa.String(20)),
        sa.Column('customer_email', sa.String(255)),
        sa.Column('party_size', sa.Integer(), nullable=False),
        sa.Column('reservation_date', sa.Date(), nullable=False),
        sa.Column('reservation_time', sa.Time(), nullable=False),
        sa.Column('special_requests', sa.Text()),
        sa.Column('status', sa.String(20), nullable=False, server_default='tentative'),
        sa.Column('expires_at', sa.DateTime()),
        sa.Column('payment_reference', sa.String(255)),
        sa.Column('confirmed_at', sa.DateTime()),
        sa.Column('cancelled_at', sa.DateTime()),
        sa.Column('customer_arrived', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('arrival_time', sa.DateTime()),
        sa.Column('has_pre_order', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('kitchen_notified', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(), default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), default=sa.func.now(), onupdate=sa.func.now()),
    )

    # Create orders table
    op.create_table(
        'orders',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('restaurant_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('restaurants.id'), nullable=False),
        sa.Column('reservation_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('reservations.id')),
        sa.Column('table_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('tables.id')),
        sa.Column('order_type', sa.String(20), nullable=False, server_default='dine_in'),
        sa.Column('customer_name', sa.String(255)),
        sa.Column('customer_phone', sa.String(20)),
        sa.Column('customer_email', sa.String(255)),
        sa.Column('items_json', postgresql.JSON(), nullable=False),
        sa.Column('subtotal_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('tip_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('payment_reference', sa.String(255), unique=True),
        sa.Column('payment_status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('payment_amount_cents', sa.Integer()),
        sa.Column('notes', sa.Text()),
        sa.Column('created_at', sa.DateTime(), default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), default=sa.func.now(), onupdate=sa.func.now()),
    )

    # Create indexes
    op.create_index('ix_tables_restaurant_id', 'tables', ['restaurant_id'])
    op.create_index('ix_menu_items_restaurant_id', 'menu_items', ['restaurant_id'])
    op.create_index('ix_reservations_slot', 'reservations', ['restaurant_id', 'table_id', 'reservation_date'])
    op.create_index('ix_reservations_status_expires', 'reservations', ['status', 'expires_at'])
    op.create_index('ix_orders_restaurant_id', 'orders', ['restaurant_id'])


def downgrade() -> None:
    op.drop_table('orders')
    op.drop_table('reservations')
    op.drop_table('menu_items')
    op.drop_table('tables')
    op.drop_table('restaurant_settings')
    op.drop_table('restaurants')
