"""initial_schema

Revision ID: 3f1c2a9d7e40
Revises:
Create Date: 2026-09-01 10:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '3f1c2a9d7e40'
down_revision = None
branch_labels = None
depends_on = None


def _ts(name: str, nullable: bool = True) -> sa.Column:
    return sa.Column(name, sa.TIMESTAMP(timezone=True), nullable=nullable)


def upgrade() -> None:
    op.create_table(
        'tenants',
        sa.Column('id', sa.TEXT(), primary_key=True),
        sa.Column('slug', sa.TEXT(), nullable=False),
        sa.Column('display_name', sa.TEXT(), nullable=False),
        sa.Column('is_active', sa.BOOLEAN(), nullable=False, server_default=sa.true()),
        _ts('created_at', nullable=False),
        sa.UniqueConstraint('slug', name='uq_tenants_slug'),
    )

    op.create_table(
        'businesses',
        sa.Column('id', sa.TEXT(), primary_key=True),
        sa.Column('tenant_id', sa.TEXT(), sa.ForeignKey('tenants.id'), nullable=False),
        sa.Column('owner_user_id', sa.TEXT(), nullable=False),
        sa.Column('name', sa.TEXT(), nullable=False),
        sa.Column('status', sa.TEXT(), nullable=False, server_default='pending'),
        sa.Column('monthly_voucher_allowance', sa.BIGINT(), nullable=True),
        _ts('created_at', nullable=False),
    )
    op.create_index('idx_businesses_tenant', 'businesses', ['tenant_id'])
    op.create_index('idx_businesses_owner', 'businesses', ['owner_user_id'])

    op.create_table(
        'deals',
        sa.Column('id', sa.TEXT(), primary_key=True),
        sa.Column('tenant_id', sa.TEXT(), sa.ForeignKey('tenants.id'), nullable=False),
        sa.Column('business_id', sa.TEXT(), sa.ForeignKey('businesses.id'), nullable=False),
        sa.Column('created_by_user_id', sa.TEXT(), nullable=False),
        sa.Column('title', sa.TEXT(), nullable=True),
        sa.Column('description', sa.TEXT(), nullable=True),
        sa.Column('category', sa.TEXT(), nullable=True),
        sa.Column('original_value_cents', sa.BIGINT(), nullable=True),
        sa.Column('deal_price_cents', sa.BIGINT(), nullable=True),
        _ts('redemption_window_start'),
        _ts('redemption_window_end'),
        sa.Column('voucher_quantity_limit', sa.BIGINT(), nullable=True),
        sa.Column('status', sa.TEXT(), nullable=False, server_default='inactive'),
        sa.Column('guard_status', sa.TEXT(), nullable=False, server_default='pending'),
        _ts('last_active_at'),
        _ts('activated_at'),
        _ts('expired_at'),
        _ts('created_at', nullable=False),
        _ts('updated_at', nullable=False),
        sa.CheckConstraint(
            'deal_price_cents IS NULL OR original_value_cents IS NULL OR deal_price_cents < original_value_cents',
            name='ck_deals_price_below_value',
        ),
        sa.CheckConstraint("status IN ('inactive', 'active', 'expired')", name='ck_deals_status'),
    )
    op.create_index('idx_deals_tenant_status', 'deals', ['tenant_id', 'status'])
    op.create_index('idx_deals_business', 'deals', ['business_id'])

    op.create_table(
        'vouchers',
        sa.Column('id', sa.TEXT(), primary_key=True),
        sa.Column('tenant_id', sa.TEXT(), sa.ForeignKey('tenants.id'), nullable=False),
        sa.Column('deal_id', sa.TEXT(), sa.ForeignKey('deals.id'), nullable=False),
        sa.Column('business_id', sa.TEXT(), sa.ForeignKey('businesses.id'), nullable=False),
        sa.Column('redemption_token', sa.TEXT(), nullable=False),
        sa.Column('status', sa.TEXT(), nullable=False, server_default='available'),
        _ts('issued_at', nullable=False),
        _ts('assigned_at'),
        _ts('expires_at'),
        _ts('redeemed_at'),
        sa.Column('redeemed_by_business_id', sa.TEXT(), nullable=True),
        sa.UniqueConstraint('redemption_token', name='uq_vouchers_redemption_token'),
        sa.CheckConstraint("status IN ('available', 'assigned', 'redeemed')", name='ck_vouchers_status'),
    )
    op.create_index('idx_vouchers_deal_status', 'vouchers', ['deal_id', 'status'])
    op.create_index('idx_vouchers_business_issued', 'vouchers', ['business_id', 'issued_at'])
    op.create_index('idx_vouchers_tenant', 'vouchers', ['tenant_id'])

    op.create_table(
        'purchases',
        sa.Column('id', sa.TEXT(), primary_key=True),
        sa.Column('tenant_id', sa.TEXT(), sa.ForeignKey('tenants.id'), nullable=False),
        sa.Column('user_id', sa.TEXT(), nullable=False),
        sa.Column('deal_id', sa.TEXT(), sa.ForeignKey('deals.id'), nullable=False),
        sa.Column('voucher_id', sa.TEXT(), sa.ForeignKey('vouchers.id'), nullable=False),
        sa.Column('payment_intent_id', sa.TEXT(), nullable=False),
        sa.Column('payment_provider', sa.TEXT(), nullable=False),
        sa.Column('amount_paid_cents', sa.BIGINT(), nullable=False),
        sa.Column('status', sa.TEXT(), nullable=False, server_default='completed'),
        _ts('created_at', nullable=False),
        sa.UniqueConstraint('payment_intent_id', name='uq_purchases_payment_intent_id'),
        sa.UniqueConstraint('voucher_id', name='uq_purchases_voucher_id'),
    )
    op.create_index('idx_purchases_user_created', 'purchases', ['tenant_id', 'user_id', 'created_at'])
    op.create_index('idx_purchases_deal_created', 'purchases', ['tenant_id', 'deal_id', 'created_at'])

    op.create_table(
        'payment_failures',
        sa.Column('id', sa.TEXT(), primary_key=True),
        sa.Column('tenant_id', sa.TEXT(), sa.ForeignKey('tenants.id'), nullable=False),
        sa.Column('user_id', sa.TEXT(), nullable=False),
        sa.Column('deal_id', sa.TEXT(), nullable=True),
        sa.Column('payment_intent_id', sa.TEXT(), nullable=True),
        sa.Column('payment_provider', sa.TEXT(), nullable=False),
        sa.Column('reason', sa.TEXT(), nullable=True),
        _ts('created_at', nullable=False),
    )
    op.create_index('idx_payment_failures_user_created', 'payment_failures', ['tenant_id', 'user_id', 'created_at'])

    op.create_table(
        'review_tasks',
        sa.Column('id', sa.TEXT(), primary_key=True),
        sa.Column('tenant_id', sa.TEXT(), sa.ForeignKey('tenants.id'), nullable=False),
        sa.Column('task_type', sa.TEXT(), nullable=False),
        sa.Column('subject_type', sa.TEXT(), nullable=False),
        sa.Column('subject_id', sa.TEXT(), nullable=False),
        sa.Column('threshold', sa.BIGINT(), nullable=False),
        sa.Column('observed', sa.BIGINT(), nullable=False),
        sa.Column('window_seconds', sa.BIGINT(), nullable=False),
        sa.Column('resolved', sa.BOOLEAN(), nullable=False, server_default=sa.false()),
        _ts('resolved_at'),
        sa.Column('resolved_by', sa.TEXT(), nullable=True),
        sa.Column('notes', sa.TEXT(), nullable=True),
        _ts('created_at', nullable=False),
    )
    op.create_index('idx_review_tasks_subject', 'review_tasks', ['tenant_id', 'task_type', 'subject_id', 'resolved'])

    op.create_table(
        'purchase_reconciliations',
        sa.Column('id', sa.TEXT(), primary_key=True),
        sa.Column('tenant_id', sa.TEXT(), sa.ForeignKey('tenants.id'), nullable=False),
        sa.Column('user_id', sa.TEXT(), nullable=False),
        sa.Column('deal_id', sa.TEXT(), nullable=False),
        sa.Column('payment_intent_id', sa.TEXT(), nullable=False),
        sa.Column('payment_provider', sa.TEXT(), nullable=False),
        sa.Column('amount_paid_cents', sa.BIGINT(), nullable=False),
        sa.Column('failure_code', sa.TEXT(), nullable=False),
        sa.Column('state', sa.TEXT(), nullable=False, server_default='pending_retry'),
        sa.Column('attempts', sa.BIGINT(), nullable=False, server_default='0'),
        sa.Column('last_error', sa.TEXT(), nullable=True),
        sa.Column('purchase_id', sa.TEXT(), nullable=True),
        _ts('created_at', nullable=False),
        _ts('updated_at', nullable=False),
        _ts('resolved_at'),
        sa.UniqueConstraint('payment_intent_id', name='uq_reconciliations_payment_intent_id'),
    )
    op.create_index('idx_reconciliations_tenant_state', 'purchase_reconciliations', ['tenant_id', 'state'])

    op.create_table(
        'voucher_audit_logs',
        sa.Column('id', sa.TEXT(), primary_key=True),
        sa.Column('tenant_id', sa.TEXT(), sa.ForeignKey('tenants.id'), nullable=False),
        sa.Column('voucher_id', sa.TEXT(), sa.ForeignKey('vouchers.id'), nullable=False),
        sa.Column('deal_id', sa.TEXT(), nullable=False),
        sa.Column('actor_type', sa.TEXT(), nullable=False),
        sa.Column('actor_id', sa.TEXT(), nullable=True),
        sa.Column('action', sa.TEXT(), nullable=False),
        sa.Column('details_json', sa.JSON(), nullable=True),
        _ts('created_at', nullable=False),
    )
    op.create_index('idx_voucher_audit_voucher', 'voucher_audit_logs', ['tenant_id', 'voucher_id'])


def downgrade() -> None:
    op.drop_index('idx_voucher_audit_voucher', table_name='voucher_audit_logs')
    op.drop_table('voucher_audit_logs')
    op.drop_index('idx_reconciliations_tenant_state', table_name='purchase_reconciliations')
    op.drop_table('purchase_reconciliations')
    op.drop_index('idx_review_tasks_subject', table_name='review_tasks')
    op.drop_table('review_tasks')
    op.drop_index('idx_payment_failures_user_created', table_name='payment_failures')
    op.drop_table('payment_failures')
    op.drop_index('idx_purchases_deal_created', table_name='purchases')
    op.drop_index('idx_purchases_user_created', table_name='purchases')
    op.drop_table('purchases')
    op.drop_index('idx_vouchers_tenant', table_name='vouchers')
    op.drop_index('idx_vouchers_business_issued', table_name='vouchers')
    op.drop_index('idx_vouchers_deal_status', table_name='vouchers')
    op.drop_table('vouchers')
    op.drop_index('idx_deals_business', table_name='deals')
    op.drop_index('idx_deals_tenant_status', table_name='deals')
    op.drop_table('deals')
    op.drop_index('idx_businesses_owner', table_name='businesses')
    op.drop_index('idx_businesses_tenant', table_name='businesses')
    op.drop_table('businesses')
    op.drop_table('tenants')
