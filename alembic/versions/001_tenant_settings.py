"""Organization and workspace settings

Revision ID: 001_tenant_settings
Revises: 000_initial_schema
Create Date: 2026-10-18 12:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '001_tenant_settings'
down_revision: Union[str, None] = '000_initial_schema'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
    ]


def upgrade() -> None:
    op.create_table('organization_settings',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('organization_id', sa.String(length=36), nullable=False),
        sa.Column('theme', sa.String(length=20), nullable=False),
        sa.Column('default_role', sa.String(length=20), nullable=False),
        sa.Column('allow_public_workspaces', sa.Boolean(), nullable=False),
        sa.Column('allow_member_invites', sa.Boolean(), nullable=False),
        sa.Column('max_workspaces', sa.Integer(), nullable=False),
        sa.Column('max_members_per_workspace', sa.Integer(), nullable=False),
        sa.Column('settings', sa.JSON(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['organization_id'], ['organizations.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('organization_id'),
    )

    op.create_table('workspace_settings',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('workspace_id', sa.String(length=36), nullable=False),
        sa.Column('theme', sa.String(length=20), nullable=False),
        sa.Column('default_role', sa.String(length=20), nullable=False),
        sa.Column('is_public', sa.Boolean(), nullable=False),
        sa.Column('allow_member_invites', sa.Boolean(), nullable=False),
        sa.Column('max_members', sa.Integer(), nullable=False),
        sa.Column('settings', sa.JSON(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['workspace_id'], ['workspaces.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('workspace_id'),
    )


def downgrade() -> None:
    op.drop_table('workspace_settings')
    op.drop_table('organization_settings')
