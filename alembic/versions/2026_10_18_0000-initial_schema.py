"""initial schema

Revision ID: 2026_10_18_0000
Revises:
Create Date: 2026-10-18 08:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB


# revision identifiers, used by Alembic.
revision: str = '2026_10_18_0000'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create initial database schema."""

    # Needed for the integer equality operator inside the cycle exclusion constraint
    op.execute('CREATE EXTENSION IF NOT EXISTS btree_gist')

    # ========================================================================
    # Users and sessions (identity collaborator)
    # ========================================================================
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), sa.Identity(always=True), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('pricing_plan', sa.String(255), nullable=False, server_default='free'),
        sa.Column('email_verified', sa.Boolean(), nullable=False, server_default=sa.false()),

        sa.UniqueConstraint('email', name='uq_users_email'),
    )

    op.create_table(
        'sessions',
        sa.Column('id', sa.String(255), primary_key=True),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),

        sa.ForeignKeyConstraint(['user_id'], ['users.id'], name='fk_sessions_user', ondelete='CASCADE'),
    )
    op.create_index('ix_sessions_user_id', 'sessions', ['user_id'])

    # ========================================================================
    # Apps and secret keys
    # ========================================================================
    op.create_table(
        'apps',
        sa.Column('id', sa.Integer(), sa.Identity(always=True), primary_key=True),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('url', sa.String(255), nullable=False),

        sa.ForeignKeyConstraint(['user_id'], ['users.id'], name='fk_apps_user', ondelete='CASCADE'),
    )
    op.create_index('ix_apps_user_id', 'apps', ['user_id'])

    op.create_table(
        'secret_keys',
        sa.Column('id', sa.Integer(), sa.Identity(always=True), primary_key=True),
        sa.Column('app_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('hash', sa.String(255), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        sa.ForeignKeyConstraint(['app_id'], ['apps.id'], name='fk_secret_keys_app', ondelete='CASCADE'),
    )
    op.create_index('ix_secret_keys_app_id', 'secret_keys', ['app_id'])
    op.create_index('idx_secret_keys_hash', 'secret_keys', ['hash'])

    # ========================================================================
    # Forms, schema versions and responses
    # ========================================================================
    op.create_table(
        'forms',
        sa.Column('id', sa.Integer(), sa.Identity(always=True), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('app_id', sa.Integer(), nullable=False),
        sa.Column('public', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('response_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('redirect_on_submit', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('success_url', sa.String(255), nullable=False, server_default=''),
        sa.Column('failure_url', sa.String(255), nullable=False, server_default=''),

        sa.CheckConstraint('response_count >= 0', name='ck_forms_response_count_non_negative'),
        sa.ForeignKeyConstraint(['app_id'], ['apps.id'], name='fk_forms_app', ondelete='CASCADE'),
    )
    op.create_index('ix_forms_app_id', 'forms', ['app_id'])

    op.create_table(
        'form_versions',
        sa.Column('id', sa.Integer(), sa.Identity(always=True), primary_key=True),
        sa.Column('version_number', sa.Integer(), nullable=False),
        sa.Column('form_id', sa.Integer(), nullable=False),
        sa.Column('fields', JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        sa.UniqueConstraint('form_id', 'version_number', name='uq_form_versions_number'),
        sa.CheckConstraint('version_number >= 1', name='ck_form_versions_number_positive'),
        sa.ForeignKeyConstraint(['form_id'], ['forms.id'], name='fk_form_versions_form', ondelete='CASCADE'),
    )

    op.create_table(
        'form_responses',
        sa.Column('id', sa.BigInteger(), sa.Identity(always=True), primary_key=True),
        sa.Column('form_version_id', sa.Integer(), nullable=False),
        sa.Column('respondent_id', sa.String(255), nullable=True),
        sa.Column('archived', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('response', JSONB(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        sa.ForeignKeyConstraint(
            ['form_version_id'], ['form_versions.id'], name='fk_form_responses_version', ondelete='CASCADE'
        ),
    )
    op.create_index('idx_form_responses_version_created', 'form_responses', ['form_version_id', 'created_at'])

    # ========================================================================
    # Usage ledger: subscription cycles, billing periods, usage counters
    # ========================================================================
    op.create_table(
        'subscription_cycles',
        sa.Column('id', sa.Integer(), sa.Identity(always=True), primary_key=True),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('start_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('end_date', sa.DateTime(timezone=True), nullable=False),

        sa.CheckConstraint('end_date > start_date', name='ck_subscription_cycles_interval'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], name='fk_subscription_cycles_user', ondelete='CASCADE'),
    )
    op.create_index('idx_subscription_cycles_user_end', 'subscription_cycles', ['user_id', 'end_date'])

    # At most one cycle per user covers any instant
    op.execute(
        """
        ALTER TABLE subscription_cycles
        ADD CONSTRAINT ex_subscription_cycles_no_overlap
        EXCLUDE USING gist (
            user_id WITH =,
            tstzrange(start_date, end_date, '[)') WITH &&
        )
        """
    )

    op.create_table(
        'billing_periods',
        sa.Column('id', sa.Integer(), sa.Identity(always=True), primary_key=True),
        sa.Column('subscription_cycle_id', sa.Integer(), nullable=False),
        sa.Column('start_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('end_date', sa.DateTime(timezone=True), nullable=False),

        sa.CheckConstraint('end_date > start_date', name='ck_billing_periods_interval'),
        sa.UniqueConstraint('subscription_cycle_id', 'start_date', name='uq_billing_periods_cycle_start'),
        sa.ForeignKeyConstraint(
            ['subscription_cycle_id'], ['subscription_cycles.id'],
            name='fk_billing_periods_cycle', ondelete='CASCADE',
        ),
    )

    op.create_table(
        'usage_counters',
        sa.Column('id', sa.Integer(), sa.Identity(always=True), primary_key=True),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('billing_period_id', sa.Integer(), nullable=False),
        sa.Column('usage_count', sa.Integer(), nullable=False, server_default='0'),

        sa.UniqueConstraint('user_id', 'billing_period_id', name='uq_usage_counters_user_period'),
        sa.CheckConstraint('usage_count >= 0', name='ck_usage_counters_non_negative'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], name='fk_usage_counters_user', ondelete='CASCADE'),
        sa.ForeignKeyConstraint(
            ['billing_period_id'], ['billing_periods.id'],
            name='fk_usage_counters_period', ondelete='CASCADE',
        ),
    )

    # ========================================================================
    # Devices (push notification targets)
    # ========================================================================
    op.create_table(
        'devices',
        sa.Column('id', sa.String(255), primary_key=True),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('fcm_token', sa.String(255), nullable=False),
        sa.Column('platform', sa.String(255), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        sa.ForeignKeyConstraint(['user_id'], ['users.id'], name='fk_devices_user', ondelete='CASCADE'),
    )
    op.create_index('ix_devices_user_id', 'devices', ['user_id'])


def downgrade() -> None:
    """Drop all tables."""
    op.drop_table('devices')
    op.drop_table('usage_counters')
    op.drop_table('billing_periods')
    op.drop_table('subscription_cycles')
    op.drop_table('form_responses')
    op.drop_table('form_versions')
    op.drop_table('forms')
    op.drop_table('secret_keys')
    op.drop_table('apps')
    op.drop_table('sessions')
    op.drop_table('users')
