"""initial_panel_schema

Revision ID: 1b7f3c2a9d10
Revises:
Create Date: 2026-10-19 09:12:44.518203

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '1b7f3c2a9d10'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        'users',
        sa.Column('id', sa.String(length=50), primary_key=True),
        sa.Column('username', sa.String(length=100), nullable=False, unique=True),
        sa.Column('role', sa.String(length=20), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
    )

    op.create_table(
        'containers',
        sa.Column('id', sa.String(length=50), primary_key=True),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('image', sa.String(length=500), nullable=False),
        sa.Column('owner_id', sa.String(length=50), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('docker_id', sa.String(length=100), nullable=True, unique=True),
        sa.Column('resources', sa.JSON(), nullable=False),
        sa.Column('ports', sa.JSON(), nullable=False),
        sa.Column('environment', sa.JSON(), nullable=False),
        sa.Column('config', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('owner_id', 'name', name='uq_containers_owner_name'),
    )

    op.create_table(
        'container_logs',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            'container_id',
            sa.String(length=50),
            sa.ForeignKey('containers.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('command', sa.String(length=1000), nullable=False),
        sa.Column('output', sa.Text(), nullable=True),
        sa.Column('exit_code', sa.Integer(), nullable=True),
        sa.Column('timestamp', sa.DateTime(), nullable=False),
    )
    # Log lookups are always per container, newest first
    op.create_index(
        'ix_container_logs_container_id',
        'container_logs',
        ['container_id'],
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index('ix_container_logs_container_id', table_name='container_logs')
    op.drop_table('container_logs')
    op.drop_table('containers')
    op.drop_table('users')
