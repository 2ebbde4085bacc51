"""Initial mediagen schema.

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-19

Creates users, sessions, generations and api_logs, including the partial
indexes used by the concurrent limit, sync-status and the stale reaper.
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic
revision = '001_initial_schema'
down_revision = None
branch_labels = None
depends_on = None

ACTIVE = "status IN ('pending', 'processing')"


def upgrade() -> None:
    op.create_table(
        'users',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('username', sa.String(), nullable=False),
        sa.Column('password_hash', sa.String(), nullable=False),
        sa.Column('role', sa.String(), nullable=False, server_default='user'),
        sa.Column('credits', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('failed_login_attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('locked_until', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_failed_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('ix_users_username', 'users', ['username'], unique=True)

    op.create_table(
        'sessions',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('user_id', sa.String(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('revoked_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('ix_sessions_user_id', 'sessions', ['user_id'])

    op.create_table(
        'generations',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('user_id', sa.String(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('workspace_id', sa.String(), nullable=True),
        sa.Column('action', sa.String(), nullable=False),
        sa.Column('model_id', sa.String(), nullable=False),
        sa.Column('model_name', sa.String(), nullable=True),
        sa.Column('provider', sa.String(), nullable=True),
        sa.Column('provider_model', sa.String(), nullable=True),
        sa.Column('prediction_id', sa.String(), nullable=True),
        sa.Column('provider_token_index', sa.Integer(), nullable=True),
        sa.Column('chain_position', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('status', sa.String(), nullable=False, server_default='pending'),
        sa.Column('prompt', sa.Text(), nullable=True),
        sa.Column('settings', postgresql.JSONB(), nullable=False, server_default='{}'),
        sa.Column('input_data', postgresql.JSONB(), nullable=False, server_default='{}'),
        sa.Column('output_urls', postgresql.JSONB(), nullable=True),
        sa.Column('output_text', sa.Text(), nullable=True),
        sa.Column('provider_output', postgresql.JSONB(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('cost_credits', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('ix_generations_user_id', 'generations', ['user_id'])
    op.create_index('ix_generations_workspace_id', 'generations', ['workspace_id'])
    op.create_index('ix_generations_prediction_id', 'generations', ['prediction_id'])
    op.create_index(
        'idx_generations_user_active',
        'generations',
        ['user_id', 'created_at'],
        postgresql_where=sa.text(ACTIVE),
    )
    op.create_index(
        'idx_generations_active_created',
        'generations',
        ['created_at'],
        postgresql_where=sa.text(ACTIVE),
    )
    op.create_index('idx_generations_user_created', 'generations', ['user_id', 'created_at'])

    op.create_table(
        'api_logs',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('method', sa.String(), nullable=False),
        sa.Column('path', sa.String(), nullable=False),
        sa.Column('status_code', sa.Integer(), nullable=False),
        sa.Column('duration_ms', sa.Integer(), nullable=True),
        sa.Column('user_id', sa.String(), nullable=True),
        sa.Column('provider', sa.String(), nullable=True),
        sa.Column('external_status', sa.String(), nullable=True),
        sa.Column('model_name', sa.String(), nullable=True),
        sa.Column('generation_id', sa.String(), nullable=True),
        sa.Column('request_body', postgresql.JSONB(), nullable=True),
        sa.Column('response_summary', postgresql.JSONB(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('error_stack', sa.Text(), nullable=True),
        sa.Column('error_category', sa.String(), nullable=True),
        sa.Column('is_fallback', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('retry_count', sa.Integer(), nullable=False, server_default='0'),
    )
    op.create_index('ix_api_logs_created_at', 'api_logs', ['created_at'])
    op.create_index('ix_api_logs_user_id', 'api_logs', ['user_id'])
    op.create_index('ix_api_logs_generation_id', 'api_logs', ['generation_id'])
    op.create_index('ix_api_logs_error_category', 'api_logs', ['error_category'])


def downgrade() -> None:
    op.drop_table('api_logs')
    op.drop_table('generations')
    op.drop_table('sessions')
    op.drop_table('users')
