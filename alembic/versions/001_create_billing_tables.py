"""create billing tables

Revision ID: 001
Revises:
Create Date: 2026-10-19 09:00:00.000000
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

user_role_enum = postgresql.ENUM('platform_admin', 'restaurant_owner', name='user_role_enum', create_type=False)
billing_cycle_enum = postgresql.ENUM('monthly', 'annual', name='billing_cycle_enum', create_type=False)
change_type_enum = postgresql.ENUM(
    'tier_change', 'feature_added', 'feature_removed', 'renewal', 'cancellation',
    name='subscription_change_type_enum', create_type=False,
)
invoice_status_enum = postgresql.ENUM(
    'pending', 'paid', 'overdue', 'cancelled', 'refunded', name='invoice_status_enum', create_type=False,
)
line_item_type_enum = postgresql.ENUM(
    'tier_base', 'feature', 'additional_menu', 'adjustment', 'tax', 'discount',
    name='invoice_line_item_type_enum', create_type=False,
)

ENUMS = (user_role_enum, billing_cycle_enum, change_type_enum, invoice_status_enum, line_item_type_enum)


def upgrade() -> None:
    bind = op.get_bind()
    for enum in ENUMS:
        enum.create(bind, checkfirst=True)

    op.create_table(
        'user_profiles',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('email', sa.String(), nullable=True),
        sa.Column('role', user_role_enum, nullable=False, server_default='restaurant_owner'),
        sa.Column('created_at', sa.DateTime(), nullable=True, server_default=sa.text('now()')),
        sa.Column('updated_at', sa.DateTime(), nullable=True, server_default=sa.text('now()')),
    )
    op.create_index(op.f('ix_user_profiles_email'), 'user_profiles', ['email'], unique=True)

    op.create_table(
        'restaurants',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('owner_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('user_profiles.id'), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('slug', sa.String(), nullable=False),
        sa.Column('active', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('created_at', sa.DateTime(), nullable=True, server_default=sa.text('now()')),
        sa.Column('updated_at', sa.DateTime(), nullable=True, server_default=sa.text('now()')),
    )
    op.create_index(op.f('ix_restaurants_owner_id'), 'restaurants', ['owner_id'], unique=False)
    op.create_index(op.f('ix_restaurants_slug'), 'restaurants', ['slug'], unique=True)

    op.create_table(
        'menus',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('restaurant_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('restaurants.id', ondelete='CASCADE'), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('slug', sa.String(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('is_published', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('created_at', sa.DateTime(), nullable=True, server_default=sa.text('now()')),
        sa.Column('updated_at', sa.DateTime(), nullable=True, server_default=sa.text('now()')),
    )
    op.create_index(op.f('ix_menus_restaurant_id'), 'menus', ['restaurant_id'], unique=False)

    op.create_table(
        'tiers',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('name', sa.String(), nullable=False, unique=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('base_price_monthly', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('max_menus', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('price_per_additional_menu', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('customization_level', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('allows_pdf', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('allows_custom_fonts', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('allows_images', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('allows_multiple_locations', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('active', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('sort_order', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('now()')),
    )

    op.create_table(
        'features',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('key', sa.String(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('category', sa.String(), nullable=False),
        sa.Column('base_price', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('active', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('now()')),
        sa.Column('updated_at', sa.DateTime(), nullable=True, server_default=sa.text('now()')),
    )
    op.create_index(op.f('ix_features_key'), 'features', ['key'], unique=True)

    op.create_table(
        'tier_features',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('tier_id', sa.Integer(), sa.ForeignKey('tiers.id', ondelete='CASCADE'), nullable=False),
        sa.Column('feature_id', sa.Integer(), sa.ForeignKey('features.id', ondelete='CASCADE'), nullable=False),
        sa.Column('included_by_default', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('discount_percentage', sa.Numeric(5, 2), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('now()')),
        sa.UniqueConstraint('tier_id', 'feature_id', name='uq_tier_features_tier_feature'),
        sa.CheckConstraint(
            'discount_percentage >= 0 AND discount_percentage <= 100',
            name='ck_tier_features_discount_range',
        ),
    )
    op.create_index(op.f('ix_tier_features_tier_id'), 'tier_features', ['tier_id'], unique=False)
    op.create_index(op.f('ix_tier_features_feature_id'), 'tier_features', ['feature_id'], unique=False)

    op.create_table(
        'restaurant_subscriptions',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('restaurant_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('restaurants.id'), nullable=False),
        sa.Column('tier_id', sa.Integer(), sa.ForeignKey('tiers.id'), nullable=False),
        sa.Column('billing_cycle', billing_cycle_enum, nullable=False, server_default='monthly'),
        sa.Column('active', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('started_at', sa.DateTime(), nullable=False, server_default=sa.text('now()')),
        sa.Column('expires_at', sa.DateTime(), nullable=True),
        sa.Column('next_billing_date', sa.DateTime(), nullable=True),
        sa.Column('current_period_start', sa.DateTime(), nullable=True),
        sa.Column('renewal_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('auto_renew', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('cancelled_at', sa.DateTime(), nullable=True),
        sa.Column('cancellation_reason', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True, server_default=sa.text('now()')),
        sa.Column('updated_at', sa.DateTime(), nullable=True, server_default=sa.text('now()')),
    )
    op.create_index(
        op.f('ix_restaurant_subscriptions_restaurant_id'), 'restaurant_subscriptions', ['restaurant_id'], unique=False
    )
    # At most one active subscription per restaurant
    op.create_index(
        'uq_restaurant_subscriptions_one_active', 'restaurant_subscriptions', ['restaurant_id'],
        unique=True, postgresql_where=sa.text('active'),
    )

    op.create_table(
        'subscription_features',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('subscription_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('restaurant_subscriptions.id', ondelete='CASCADE'), nullable=False),
        sa.Column('feature_id', sa.Integer(), sa.ForeignKey('features.id'), nullable=False),
        sa.Column('added_at', sa.DateTime(), nullable=False, server_default=sa.text('now()')),
        sa.Column('removed_at', sa.DateTime(), nullable=True),
        sa.Column('price_at_purchase', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('now()')),
    )
    op.create_index(
        op.f('ix_subscription_features_subscription_id'), 'subscription_features', ['subscription_id'], unique=False
    )
    op.create_index(op.f('ix_subscription_features_feature_id'), 'subscription_features', ['feature_id'], unique=False)
    # A feature can be active at most once per subscription
    op.create_index(
        'uq_subscription_features_one_active', 'subscription_features', ['subscription_id', 'feature_id'],
        unique=True, postgresql_where=sa.text('is_active'),
    )

    op.create_table(
        'subscription_changes',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('subscription_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('restaurant_subscriptions.id', ondelete='CASCADE'), nullable=False),
        sa.Column('change_type', change_type_enum, nullable=False),
        sa.Column('previous_value', postgresql.JSONB(), nullable=True),
        sa.Column('new_value', postgresql.JSONB(), nullable=True),
        sa.Column('amount_adjustment', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('prorated_amount', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('now()')),
    )
    op.create_index(
        op.f('ix_subscription_changes_subscription_id'), 'subscription_changes', ['subscription_id'], unique=False
    )
    op.create_index(op.f('ix_subscription_changes_created_at'), 'subscription_changes', ['created_at'], unique=False)

    op.create_table(
        'invoices',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('subscription_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('restaurant_subscriptions.id'), nullable=False),
        sa.Column('invoice_number', sa.String(), nullable=False),
        sa.Column('period_start', sa.DateTime(), nullable=False),
        sa.Column('period_end', sa.DateTime(), nullable=False),
        sa.Column('subtotal', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('tax', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('total', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('status', invoice_status_enum, nullable=False, server_default='pending'),
        sa.Column('paid_at', sa.DateTime(), nullable=True),
        sa.Column('due_date', sa.DateTime(), nullable=False),
        sa.Column('payment_method', sa.String(), nullable=True),
        sa.Column('payment_metadata', postgresql.JSONB(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('now()')),
        sa.UniqueConstraint('subscription_id', 'period_start', 'period_end', name='uq_invoices_subscription_period'),
        sa.CheckConstraint('period_end > period_start', name='ck_invoices_period_order'),
    )
    op.create_index(op.f('ix_invoices_subscription_id'), 'invoices', ['subscription_id'], unique=False)
    op.create_index(op.f('ix_invoices_invoice_number'), 'invoices', ['invoice_number'], unique=True)

    op.create_table(
        'invoice_line_items',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('invoice_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('invoices.id', ondelete='CASCADE'), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('item_type', line_item_type_enum, nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('unit_price', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('total', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('metadata', postgresql.JSONB(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('now()')),
    )
    op.create_index(op.f('ix_invoice_line_items_invoice_id'), 'invoice_line_items', ['invoice_id'], unique=False)

    op.create_table(
        'invoice_number_sequences',
        sa.Column('year', sa.Integer(), primary_key=True, autoincrement=False),
        sa.Column('last_value', sa.Integer(), nullable=False, server_default='0'),
    )


def downgrade() -> None:
    op.drop_table('invoice_number_sequences')
    op.drop_index(op.f('ix_invoice_line_items_invoice_id'), table_name='invoice_line_items')
    op.drop_table('invoice_line_items')
    op.drop_index(op.f('ix_invoices_invoice_number'), table_name='invoices')
    op.drop_index(op.f('ix_invoices_subscription_id'), table_name='invoices')
    op.drop_table('invoices')
    op.drop_index(op.f('ix_subscription_changes_created_at'), table_name='subscription_changes')
    op.drop_index(op.f('ix_subscription_changes_subscription_id'), table_name='subscription_changes')
    op.drop_table('subscription_changes')
    op.drop_index('uq_subscription_features_one_active', table_name='subscription_features')
    op.drop_index(op.f('ix_subscription_features_feature_id'), table_name='subscription_features')
    op.drop_index(op.f('ix_subscription_features_subscription_id'), table_name='subscription_features')
    op.drop_table('subscription_features')
    op.drop_index('uq_restaurant_subscriptions_one_active', table_name='restaurant_subscriptions')
    op.drop_index(op.f('ix_restaurant_subscriptions_restaurant_id'), table_name='restaurant_subscriptions')
    op.drop_table('restaurant_subscriptions')
    op.drop_index(op.f('ix_tier_features_feature_id'), table_name='tier_features')
    op.drop_index(op.f('ix_tier_features_tier_id'), table_name='tier_features')
    op.drop_table('tier_features')
    op.drop_index(op.f('ix_features_key'), table_name='features')
    op.drop_table('features')
    op.drop_table('tiers')
    op.drop_index(op.f('ix_menus_restaurant_id'), table_name='menus')
    op.drop_table('menus')
    op.drop_index(op.f('ix_restaurants_slug'), table_name='restaurants')
    op.drop_index(op.f('ix_restaurants_owner_id'), table_name='restaurants')
    op.drop_table('restaurants')
    op.drop_index(op.f('ix_user_profiles_email'), table_name='user_profiles')
    op.drop_table('user_profiles')

    bind = op.get_bind()
    for enum in reversed(ENUMS):
        enum.drop(bind, checkfirst=True)
