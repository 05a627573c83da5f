"""membership schema: profile, credential, profile_audit_event

Revision ID: 001
Revises:
Create Date: 2026-10-01 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'profile',
        sa.Column('pk', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('identity_id', sa.String(64), nullable=True),
        sa.Column('email', sa.Text(), nullable=False),
        sa.Column('name', sa.Text(), nullable=False, server_default=''),
        sa.Column('role', sa.String(16), nullable=False, server_default='COACH'),
        sa.Column('status', sa.String(16), nullable=False, server_default='PENDING'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint("role IN ('ADMIN', 'COACH')", name='ck_profile_role'),
        sa.CheckConstraint("status IN ('PENDING', 'APPROVED', 'ACTIVE', 'INACTIVE')", name='ck_profile_status'),
        sa.UniqueConstraint('identity_id'),
        sa.UniqueConstraint('email'),
    )
    op.create_index('ix_profile_role_status', 'profile', ['role', 'status'])

    op.create_table(
        'credential',
        sa.Column('id', sa.String(64), primary_key=True),
        sa.Column('email', sa.Text(), nullable=False),
        sa.Column('password_hash', sa.Text(), nullable=False),
        sa.Column('display_name', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('password_changed_at', sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint('email'),
    )

    op.create_table(
        'profile_audit_event',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('actor_email', sa.Text(), nullable=False),
        sa.Column('action', sa.Text(), nullable=False),
        sa.Column('target_email', sa.Text(), nullable=False),
        sa.Column('ip_address', sa.Text(), nullable=True),
        sa.Column('user_agent', sa.Text(), nullable=True),
        sa.Column('payload', sa.JSON(), nullable=False),
    )
    op.create_index('ix_profile_audit_event_target_email', 'profile_audit_event', ['target_email'])


def downgrade() -> None:
    op.drop_index('ix_profile_audit_event_target_email', table_name='profile_audit_event')
    op.drop_table('profile_audit_event')
    op.drop_table('credential')
    op.drop_index('ix_profile_role_status', table_name='profile')
    op.drop_table('profile')
