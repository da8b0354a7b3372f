"""Add refresh core tables

Revision ID: a41c7e2d9f10
Revises:
Create Date: 2026-10-19 09:00:00.000000

Creates the durable state for dashboard refreshes:
- provider_connections: credential and believed validity per client/provider
- throttle_windows: last admitted refresh per client/data kind
- metric_snapshots: cached provider payloads
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'a41c7e2d9f10'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Create provider_connections table
    op.create_table(
        'provider_connections',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('client_id', sa.String(), nullable=False),
        sa.Column('provider_kind', sa.String(), nullable=False),
        sa.Column('token', sa.Text(), nullable=True),
        sa.Column('resource', sa.String(), nullable=True),
        sa.Column('has_credential', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('believed_valid', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('last_validated_at', sa.DateTime(), nullable=True),
        sa.Column('account_label', sa.String(), nullable=True),
        sa.Column('connected_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('client_id', 'provider_kind', name='uq_provider_connections_client_provider')
    )
    op.create_index('ix_provider_connections_id', 'provider_connections', ['id'])
    op.create_index('ix_provider_connections_client_id', 'provider_connections', ['client_id'])

    # Create throttle_windows table
    op.create_table(
        'throttle_windows',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('client_id', sa.String(), nullable=False),
        sa.Column('data_kind', sa.String(), nullable=False),
        sa.Column('last_refresh_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('client_id', 'data_kind', name='uq_throttle_windows_client_kind')
    )
    op.create_index('ix_throttle_windows_id', 'throttle_windows', ['id'])
    op.create_index('ix_throttle_windows_client_id', 'throttle_windows', ['client_id'])

    # Create metric_snapshots table
    op.create_table(
        'metric_snapshots',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('client_id', sa.String(), nullable=False),
        sa.Column('data_kind', sa.String(), nullable=False),
        sa.Column('date_range_key', sa.String(), nullable=False),
        sa.Column('range_start', sa.String(), nullable=True),
        sa.Column('range_end', sa.String(), nullable=True),
        sa.Column('payload', sa.JSON(), nullable=False),
        sa.Column('fetched_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_metric_snapshots_id', 'metric_snapshots', ['id'])
    op.create_index(
        'ix_metric_snapshots_lookup',
        'metric_snapshots',
        ['client_id', 'data_kind', 'date_range_key', 'fetched_at']
    )


def downgrade() -> None:
    op.drop_index('ix_metric_snapshots_lookup', table_name='metric_snapshots')
    op.drop_index('ix_metric_snapshots_id', table_name='metric_snapshots')
    op.drop_table('metric_snapshots')

    op.drop_index('ix_throttle_windows_client_id', table_name='throttle_windows')
    op.drop_index('ix_throttle_windows_id', table_name='throttle_windows')
    op.drop_table('throttle_windows')

    op.drop_index('ix_provider_connections_client_id', table_name='provider_connections')
    op.drop_index('ix_provider_connections_id', table_name='provider_connections')
    op.drop_table('provider_connections')
