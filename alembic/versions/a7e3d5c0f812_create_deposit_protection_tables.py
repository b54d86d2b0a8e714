"""create deposit protection tables

Revision ID: a7e3d5c0f812
Revises: 4f2c8a1d9b37
Create Date: 2026-10-18 09:20:07.118934

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

from deposit_protection_core.db.db_base import JSON, EncryptedBinary

# revision identifiers, used by Alembic.
revision: str = 'a7e3d5c0f812'
down_revision: Union[str, None] = '4f2c8a1d9b37'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

IN_FLIGHT = sa.text("status IN ('pending', 'in_progress')")


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        'scheme_credentials',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('owner_user_id', sa.String(length=100), nullable=False),
        sa.Column('scheme_name', sa.String(length=20), nullable=False),
        sa.Column('protection_type', sa.String(length=20), nullable=False),
        sa.Column('username', sa.String(length=255), nullable=False),
        sa.Column('account_number', sa.String(length=100), nullable=True),
        sa.Column('secret_data', EncryptedBinary(), nullable=False),
        sa.Column('has_password', sa.Boolean(), nullable=False),
        sa.Column('has_api_key', sa.Boolean(), nullable=False),
        sa.Column('has_api_secret', sa.Boolean(), nullable=False),
        sa.Column('is_default', sa.Boolean(), nullable=False),
        sa.Column('is_verified', sa.Boolean(), nullable=False),
        sa.Column('last_verified_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_used_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_scheme_credentials_owner_user_id', 'scheme_credentials', ['owner_user_id'])
    op.create_index(
        'ix_scheme_credentials_owner_scheme', 'scheme_credentials', ['owner_user_id', 'scheme_name']
    )

    op.create_table(
        'deposit_registrations',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('tenancy_id', sa.String(length=100), nullable=False),
        sa.Column('property_id', sa.String(length=100), nullable=True),
        sa.Column('owner_user_id', sa.String(length=100), nullable=False),
        sa.Column('scheme_name', sa.String(length=20), nullable=False),
        sa.Column('protection_type', sa.String(length=20), nullable=False),
        sa.Column('scheme_credential_id', sa.String(length=36), nullable=True),
        sa.Column('mode', sa.String(length=20), nullable=False),
        sa.Column('crm_system', sa.String(length=20), nullable=True),
        sa.Column('deposit_amount', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('tenant_names', JSON(), nullable=True),
        sa.Column('tenant_emails', JSON(), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('deposit_reference_id', sa.String(length=100), nullable=True),
        sa.Column('certificate_url', sa.Text(), nullable=True),
        sa.Column('prescribed_info_url', sa.Text(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('registered_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('expiry_date', sa.Date(), nullable=True),
        sa.Column('attempt_count', sa.Integer(), nullable=False),
        sa.Column('last_attempt_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('api_response', JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_deposit_registrations_tenancy_id', 'deposit_registrations', ['tenancy_id'])
    op.create_index(
        'ix_deposit_registrations_owner_user_id', 'deposit_registrations', ['owner_user_id']
    )
    op.create_index('ix_deposit_registrations_status', 'deposit_registrations', ['status'])
    op.create_index(
        'ix_deposit_registrations_tenancy_created',
        'deposit_registrations',
        ['tenancy_id', 'created_at'],
    )
    # At most one pending or in-progress attempt per tenancy
    op.create_index(
        'uq_deposit_registrations_in_flight_tenancy',
        'deposit_registrations',
        ['tenancy_id'],
        unique=True,
        postgresql_where=IN_FLIGHT,
        sqlite_where=IN_FLIGHT,
    )

    op.create_table(
        'deposit_registration_transitions',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('registration_id', sa.String(length=36), nullable=False),
        sa.Column('tenancy_id', sa.String(length=100), nullable=False),
        sa.Column('sequence', sa.Integer(), nullable=False),
        sa.Column('from_status', sa.String(length=20), nullable=True),
        sa.Column('to_status', sa.String(length=20), nullable=False),
        sa.Column('trigger', sa.String(length=30), nullable=False),
        sa.Column('transition_type', sa.String(length=20), nullable=False),
        sa.Column('actor', sa.String(length=100), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('context', JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['registration_id'], ['deposit_registrations.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(
        'ix_deposit_registration_transitions_registration_id',
        'deposit_registration_transitions',
        ['registration_id'],
    )
    op.create_index(
        'ix_deposit_registration_transitions_tenancy_id',
        'deposit_registration_transitions',
        ['tenancy_id'],
    )
    op.create_index(
        'uq_registration_transition_sequence',
        'deposit_registration_transitions',
        ['registration_id', 'sequence'],
        unique=True,
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table('deposit_registration_transitions')
    op.drop_index('uq_deposit_registrations_in_flight_tenancy', table_name='deposit_registrations')
    op.drop_table('deposit_registrations')
    op.drop_table('scheme_credentials')
