"""create click_sessions, direct_engagements and processed_events

Revision ID: c7d1e2f3a4b5
Revises:
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa

revision = 'c7d1e2f3a4b5'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'click_sessions',
        sa.Column('session_id', sa.String(128), primary_key=True),
        sa.Column('source', sa.String(255), nullable=False, server_default='direct'),
        sa.Column('medium', sa.String(255), nullable=False, server_default='organic'),
        sa.Column('campaign', sa.String(255), nullable=False, server_default='none'),
        sa.Column('content', sa.String(255), nullable=False, server_default='none'),
        sa.Column('placement', sa.String(255), nullable=False, server_default='N/A'),
        sa.Column('extra_attributes', sa.JSON(), nullable=True),
        sa.Column('phone_number', sa.String(32), nullable=True),
        sa.Column('has_engaged', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('synced_to_export', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('engaged_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('exported_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_message_text', sa.Text(), nullable=True),
        sa.Column('contact_id', sa.String(128), nullable=True),
        sa.Column('conversation_id', sa.String(128), nullable=True),
        sa.Column('contact_name', sa.String(255), nullable=True),
        sa.Column('attribution_method', sa.String(32), nullable=True),
    )
    op.create_index('ix_click_sessions_engaged_created', 'click_sessions', ['has_engaged', 'created_at'])
    op.create_index('ix_click_sessions_phone_engaged', 'click_sessions', ['phone_number', 'has_engaged'])
    op.create_index('ix_click_sessions_export_pending', 'click_sessions', ['has_engaged', 'synced_to_export'])

    op.create_table(
        'direct_engagements',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('phone_number', sa.String(32), nullable=False),
        sa.Column('message_text', sa.Text(), nullable=True),
        sa.Column('contact_id', sa.String(128), nullable=True),
        sa.Column('conversation_id', sa.String(128), nullable=True),
        sa.Column('contact_name', sa.String(255), nullable=True),
        sa.Column('received_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_direct_engagements_phone_number', 'direct_engagements', ['phone_number'])

    op.create_table(
        'processed_events',
        sa.Column('fingerprint', sa.String(128), primary_key=True),
        sa.Column('session_id', sa.String(128), nullable=True),
        sa.Column('attribution_method', sa.String(32), nullable=False),
        sa.Column('received_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_processed_events_received_at', 'processed_events', ['received_at'])


def downgrade() -> None:
    op.drop_index('ix_processed_events_received_at', 'processed_events')
    op.drop_table('processed_events')
    op.drop_index('ix_direct_engagements_phone_number', 'direct_engagements')
    op.drop_table('direct_engagements')
    op.drop_index('ix_click_sessions_export_pending', 'click_sessions')
    op.drop_index('ix_click_sessions_phone_engaged', 'click_sessions')
    op.drop_index('ix_click_sessions_engaged_created', 'click_sessions')
    op.drop_table('click_sessions')
