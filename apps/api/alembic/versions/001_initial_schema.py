"""Initial schema: tenants, campaigns, customers, bonus ledger, audit trail.

Revision ID: 001
Revises: 
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None

bonus_source = sa.Enum('REFERRAL', 'TASK_VERIFICATION', 'DIRECT_GRANT', 'OVERRIDE', name='bonus_source')
completion_status = sa.Enum('PENDING', 'APPROVED', 'REJECTED', name='completion_status')


def upgrade() -> None:
    op.create_table(
        'tenants',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('slug', sa.String(length=100), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('is_locked', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('locked_reason', sa.Text(), nullable=True),
        sa.Column('spins_per_month', sa.Integer(), nullable=True),
        sa.Column('campaigns_per_month', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_tenants_slug', 'tenants', ['slug'], unique=True)

    op.create_table(
        'tenant_usage',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('tenant_id', sa.Integer(), sa.ForeignKey('tenants.id'), nullable=False),
        sa.Column('month', sa.String(length=7), nullable=False),
        sa.Column('campaigns_created', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('spins_used', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('tenant_id', 'month', name='uq_tenant_usage_month'),
    )
    op.create_index('ix_tenant_usage_tenant_id', 'tenant_usage', ['tenant_id'])

    op.create_table(
        'tenant_limit_overrides',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('tenant_id', sa.Integer(), sa.ForeignKey('tenants.id'), nullable=False),
        sa.Column('bonus_spins', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('bonus_vouchers', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('reason', sa.Text(), nullable=False),
        sa.Column('granted_by', sa.String(length=255), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_tenant_limit_overrides_tenant_id', 'tenant_limit_overrides', ['tenant_id'])

    op.create_table(
        'campaigns',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('tenant_id', sa.Integer(), sa.ForeignKey('tenants.id'), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('spin_limit', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('spin_cooldown_hours', sa.Integer(), nullable=False, server_default='24'),
        sa.Column('referrals_required_for_spin', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('is_archived', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('archived_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_campaigns_tenant_id', 'campaigns', ['tenant_id'])

    op.create_table(
        'prizes',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('campaign_id', sa.Integer(), sa.ForeignKey('campaigns.id'), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('probability', sa.Float(), nullable=False, server_default='0'),
        sa.Column('position', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('is_no_prize', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('current_stock', sa.Integer(), nullable=True),
        sa.Column('daily_limit', sa.Integer(), nullable=True),
        sa.Column('voucher_validity_days', sa.Integer(), nullable=True),
        sa.Column('voucher_redemption_limit', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('coupon_code', sa.String(length=100), nullable=True),
        sa.CheckConstraint('current_stock IS NULL OR current_stock >= 0', name='ck_prizes_stock_non_negative'),
    )
    op.create_index('ix_prizes_campaign_id', 'prizes', ['campaign_id'])

    op.create_table(
        'social_tasks',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('campaign_id', sa.Integer(), sa.ForeignKey('campaigns.id'), nullable=False),
        sa.Column('platform', sa.String(length=50), nullable=False),
        sa.Column('action_type', sa.String(length=50), nullable=False),
        sa.Column('target_url', sa.Text(), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('spins_reward', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_social_tasks_campaign_id', 'social_tasks', ['campaign_id'])

    op.create_table(
        'end_users',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('tenant_id', sa.Integer(), sa.ForeignKey('tenants.id'), nullable=False),
        sa.Column('phone', sa.String(length=32), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=True),
        sa.Column('referral_code', sa.String(length=32), nullable=False),
        sa.Column('referred_by_id', sa.Integer(), sa.ForeignKey('end_users.id'), nullable=True),
        sa.Column('successful_referrals', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('bonus_spins_earned', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('tenant_id', 'phone', name='uq_end_users_tenant_phone'),
        sa.UniqueConstraint('tenant_id', 'referral_code', name='uq_end_users_tenant_referral_code'),
    )
    op.create_index('ix_end_users_tenant_id', 'end_users', ['tenant_id'])
    op.create_index('ix_end_users_referred_by_id', 'end_users', ['referred_by_id'])

    op.create_table(
        'spins',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('end_users.id'), nullable=False),
        sa.Column('campaign_id', sa.Integer(), sa.ForeignKey('campaigns.id'), nullable=False),
        sa.Column('prize_id', sa.Integer(), sa.ForeignKey('prizes.id'), nullable=True),
        sa.Column('spin_date', sa.DateTime(), nullable=False),
        sa.Column('is_referral_bonus', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('won_prize', sa.Boolean(), nullable=False, server_default=sa.false()),
    )
    op.create_index('ix_spins_user_id', 'spins', ['user_id'])
    op.create_index('ix_spins_campaign_id', 'spins', ['campaign_id'])
    op.create_index('ix_spins_prize_id', 'spins', ['prize_id'])
    op.create_index('ix_spins_spin_date', 'spins', ['spin_date'])
    op.create_index('ix_spins_user_campaign_date', 'spins', ['user_id', 'campaign_id', 'spin_date'])

    op.create_table(
        'managers',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('tenant_id', sa.Integer(), sa.ForeignKey('tenants.id'), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('username', sa.String(length=100), nullable=False),
        sa.Column('pin_hash', sa.String(length=255), nullable=False),
        sa.Column('max_bonus_spins_per_approval', sa.Integer(), nullable=False, server_default='10'),
        sa.Column('max_spins_per_user', sa.Integer(), nullable=False, server_default='5'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_managers_tenant_id', 'managers', ['tenant_id'])
    op.create_index('ix_managers_username', 'managers', ['username'], unique=True)

    op.create_table(
        'bonus_ledger_entries',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('tenant_id', sa.Integer(), sa.ForeignKey('tenants.id'), nullable=False),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('end_users.id'), nullable=False),
        sa.Column('source', bonus_source, nullable=False),
        sa.Column('amount', sa.Integer(), nullable=False),
        sa.Column('idempotency_key', sa.String(length=255), nullable=False),
        sa.Column('manager_id', sa.Integer(), sa.ForeignKey('managers.id'), nullable=True),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('issued_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_bonus_ledger_entries_tenant_id', 'bonus_ledger_entries', ['tenant_id'])
    op.create_index('ix_bonus_ledger_entries_user_id', 'bonus_ledger_entries', ['user_id'])
    op.create_index('ix_bonus_ledger_entries_source', 'bonus_ledger_entries', ['source'])
    op.create_index('ix_bonus_ledger_entries_manager_id', 'bonus_ledger_entries', ['manager_id'])
    op.create_index('ix_bonus_ledger_entries_issued_at', 'bonus_ledger_entries', ['issued_at'])
    op.create_index(
        'ix_bonus_ledger_entries_idempotency_key', 'bonus_ledger_entries', ['idempotency_key'], unique=True
    )

    op.create_table(
        'task_completions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('tenant_id', sa.Integer(), sa.ForeignKey('tenants.id'), nullable=False),
        sa.Column('task_id', sa.Integer(), sa.ForeignKey('social_tasks.id'), nullable=False),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('end_users.id'), nullable=False),
        sa.Column('status', completion_status, nullable=False),
        sa.Column('claimed_at', sa.DateTime(), nullable=False),
        sa.Column('verified_by', sa.Integer(), sa.ForeignKey('managers.id'), nullable=True),
        sa.Column('verified_at', sa.DateTime(), nullable=True),
        sa.Column('verification_comment', sa.Text(), nullable=True),
        sa.UniqueConstraint('task_id', 'user_id', name='uq_task_completion_user'),
    )
    op.create_index('ix_task_completions_tenant_id', 'task_completions', ['tenant_id'])
    op.create_index('ix_task_completions_task_id', 'task_completions', ['task_id'])
    op.create_index('ix_task_completions_user_id', 'task_completions', ['user_id'])
    op.create_index('ix_task_completions_status', 'task_completions', ['status'])

    op.create_table(
        'vouchers',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('tenant_id', sa.Integer(), sa.ForeignKey('tenants.id'), nullable=False),
        sa.Column('code', sa.String(length=64), nullable=False),
        sa.Column('spin_id', sa.Integer(), sa.ForeignKey('spins.id'), nullable=False, unique=True),
        sa.Column('prize_id', sa.Integer(), sa.ForeignKey('prizes.id'), nullable=False),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('end_users.id'), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('redemption_limit', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('redemption_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_redeemed', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('redeemed_at', sa.DateTime(), nullable=True),
        sa.Column('redeemed_by', sa.String(length=255), nullable=True),
        sa.Column('voided_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_vouchers_tenant_id', 'vouchers', ['tenant_id'])
    op.create_index('ix_vouchers_code', 'vouchers', ['code'], unique=True)
    op.create_index('ix_vouchers_user_id', 'vouchers', ['user_id'])
    op.create_index('ix_vouchers_expires_at', 'vouchers', ['expires_at'])

    op.create_table(
        'manager_audit_logs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('manager_id', sa.Integer(), sa.ForeignKey('managers.id'), nullable=False),
        sa.Column('tenant_id', sa.Integer(), sa.ForeignKey('tenants.id'), nullable=False),
        sa.Column('action', sa.String(length=50), nullable=False),
        sa.Column('task_completion_id', sa.Integer(), sa.ForeignKey('task_completions.id'), nullable=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('end_users.id'), nullable=True),
        sa.Column('bonus_spins_granted', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('comment', sa.Text(), nullable=True),
        sa.Column('tenant_sequence', sa.BigInteger(), nullable=False),
        sa.Column('event_hash', sa.String(length=64), nullable=False),
        sa.Column('previous_event_hash', sa.String(length=64), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('tenant_id', 'tenant_sequence', name='uq_manager_audit_tenant_sequence'),
    )
    op.create_index('ix_manager_audit_logs_manager_id', 'manager_audit_logs', ['manager_id'])
    op.create_index('ix_manager_audit_logs_tenant_id', 'manager_audit_logs', ['tenant_id'])
    op.create_index('ix_manager_audit_logs_action', 'manager_audit_logs', ['action'])
    op.create_index('ix_manager_audit_logs_created_at', 'manager_audit_logs', ['created_at'])
    op.create_index('ix_manager_audit_logs_event_hash', 'manager_audit_logs', ['event_hash'], unique=True)

    op.create_table(
        'admin_audit_logs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('admin_id', sa.String(length=255), nullable=False),
        sa.Column('tenant_id', sa.Integer(), sa.ForeignKey('tenants.id'), nullable=True),
        sa.Column('action', sa.String(length=50), nullable=False),
        sa.Column('target_type', sa.String(length=50), nullable=False),
        sa.Column('target_id', sa.String(length=255), nullable=False),
        sa.Column('changes', sa.JSON(), nullable=True),
        sa.Column('ip_address', sa.String(length=64), nullable=True),
        sa.Column('user_agent', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_admin_audit_logs_admin_id', 'admin_audit_logs', ['admin_id'])
    op.create_index('ix_admin_audit_logs_tenant_id', 'admin_audit_logs', ['tenant_id'])
    op.create_index('ix_admin_audit_logs_action', 'admin_audit_logs', ['action'])
    op.create_index('ix_admin_audit_logs_created_at', 'admin_audit_logs', ['created_at'])

    op.create_table(
        'audit_sequences',
        sa.Column('tenant_id', sa.Integer(), sa.ForeignKey('tenants.id'), primary_key=True),
        sa.Column('last_sequence', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('last_event_hash', sa.String(length=64), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )

    # Audit rows are append-only at the database level too (PostgreSQL)
    if op.get_bind().dialect.name == 'postgresql':
        op.execute("""
            CREATE OR REPLACE FUNCTION refuse_audit_mutation() RETURNS trigger AS $$
            BEGIN
                RAISE EXCEPTION 'audit rows are append-only';
            END;
            $$ LANGUAGE plpgsql;
        """)
        for table in ('manager_audit_logs', 'admin_audit_logs'):
            op.execute(f"""
                CREATE TRIGGER {table}_append_only
                BEFORE UPDATE OR DELETE ON {table}
                FOR EACH ROW EXECUTE FUNCTION refuse_audit_mutation();
            """)


def downgrade() -> None:
    if op.get_bind().dialect.name == 'postgresql':
        for table in ('manager_audit_logs', 'admin_audit_logs'):
            op.execute(f"DROP TRIGGER IF EXISTS {table}_append_only ON {table}")
        op.execute("DROP FUNCTION IF EXISTS refuse_audit_mutation()")

    op.drop_table('audit_sequences')
    op.drop_table('admin_audit_logs')
    op.drop_table('manager_audit_logs')
    op.drop_table('vouchers')
    op.drop_table('task_completions')
    op.drop_table('bonus_ledger_entries')
    op.drop_table('managers')
    op.drop_table('spins')
    op.drop_table('end_users')
    op.drop_table('social_tasks')
    op.drop_table('prizes')
    op.drop_table('campaigns')
    op.drop_table('tenant_limit_overrides')
    op.drop_table('tenant_usage')
    op.drop_table('tenants')
    bonus_source.drop(op.get_bind(), checkfirst=True)
    completion_status.drop(op.get_bind(), checkfirst=True)
