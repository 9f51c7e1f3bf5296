"""create_access_and_verification_tables

Revision ID: 3c1f7a2b9d40
Revises:
Create Date: 2026-03-02 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision: str = '3c1f7a2b9d40'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    roles = op.create_table(
        'roles',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('name', sa.String(length=50), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name'),
    )
    op.bulk_insert(roles, [{'name': 'Admin'}, {'name': 'Manager'}, {'name': 'Member'}])

    op.create_table(
        'teams',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('first_name', sa.String(length=100), nullable=True),
        sa.Column('last_name', sa.String(length=100), nullable=True),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('role_id', sa.Integer(), nullable=True),
        sa.Column('has_access', sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=True),
        sa.Column('is_active', sa.Boolean(), server_default=sa.true(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['role_id'], ['roles.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_teams_email', 'teams', ['email'])
    op.create_index('ix_teams_user_id', 'teams', ['user_id'])

    op.create_table(
        'access_invites',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('team_member_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('role_id', sa.Integer(), nullable=True),
        sa.Column('token', sa.String(length=64), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('claimed_at', sa.DateTime(), nullable=True),
        sa.Column('claimed_by_user_id', sa.String(length=64), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['team_member_id'], ['teams.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['role_id'], ['roles.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_access_invites_team_member_id', 'access_invites', ['team_member_id'])
    op.create_index('ix_access_invites_token', 'access_invites', ['token'], unique=True)

    op.create_table(
        'email_address',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('status', sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('email'),
    )

    op.create_table(
        'alumni',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('first_name', sa.String(length=100), nullable=True),
        sa.Column('last_name', sa.String(length=100), nullable=True),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_alumni_email', 'alumni', ['email'])

    op.create_table(
        'email_verification_tokens',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('token_hash', sa.String(length=64), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('used_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_email_verification_tokens_email', 'email_verification_tokens', ['email'])
    op.create_index(
        'ix_email_verification_tokens_token_hash',
        'email_verification_tokens',
        ['token_hash'],
        unique=True,
    )

    op.create_table(
        'verification_email_anchors',
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('first_sent_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('email'),
    )

    op.create_table(
        'reverification_campaign_log',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('interval_months', sa.Integer(), nullable=False),
        sa.Column('campaign_type', sa.String(length=20), nullable=False),
        sa.Column('sent_at', sa.DateTime(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('error', sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint(
            'email', 'interval_months', 'campaign_type',
            name='uq_campaign_log_email_interval_type',
        ),
        sa.CheckConstraint('interval_months IN (1, 3, 6, 12)', name='ck_campaign_log_interval'),
    )
    op.create_index('ix_reverification_campaign_log_email', 'reverification_campaign_log', ['email'])

    op.create_table(
        'events',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('starts_at', sa.DateTime(), nullable=True),
        sa.Column('location', sa.String(length=255), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )

    op.create_table(
        'event_participants',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('event_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('alumni_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('rsvp_status', sa.String(length=20), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['event_id'], ['events.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['alumni_id'], ['alumni.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('event_id', 'alumni_id', name='uq_event_participants_event_alumni'),
    )

    op.create_table(
        'event_invite_tokens',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('event_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('alumni_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('token_hash', sa.String(length=64), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('responded_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['event_id'], ['events.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['alumni_id'], ['alumni.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('event_id', 'email', name='uq_event_invite_tokens_event_email'),
    )
    op.create_index(
        'ix_event_invite_tokens_token_hash', 'event_invite_tokens', ['token_hash'], unique=True
    )


def downgrade() -> None:
    op.drop_index('ix_event_invite_tokens_token_hash', table_name='event_invite_tokens')
    op.drop_table('event_invite_tokens')
    op.drop_table('event_participants')
    op.drop_table('events')
    op.drop_index('ix_reverification_campaign_log_email', table_name='reverification_campaign_log')
    op.drop_table('reverification_campaign_log')
    op.drop_table('verification_email_anchors')
    op.drop_index('ix_email_verification_tokens_token_hash', table_name='email_verification_tokens')
    op.drop_index('ix_email_verification_tokens_email', table_name='email_verification_tokens')
    op.drop_table('email_verification_tokens')
    op.drop_index('ix_alumni_email', table_name='alumni')
    op.drop_table('alumni')
    op.drop_table('email_address')
    op.drop_index('ix_access_invites_token', table_name='access_invites')
    op.drop_index('ix_access_invites_team_member_id', table_name='access_invites')
    op.drop_table('access_invites')
    op.drop_index('ix_teams_user_id', table_name='teams')
    op.drop_index('ix_teams_email', table_name='teams')
    op.drop_table('teams')
    op.drop_table('roles')
