"""initial_pipeline_schema

Revision ID: 3b7d2a91c4e0
Revises:
Create Date: 2026-10-19 09:12:44.518203

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3b7d2a91c4e0'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

job_status = sa.Enum('PENDING', 'PROCESSING', 'COMPLETED', 'FAILED', name='jobstatus')
batch_status = sa.Enum(
    'PENDING', 'PROCESSING', 'COMPLETED', 'FAILED', 'CANCELLED', name='batchjobstatus'
)
review_status = sa.Enum('PENDING', 'APPROVED', 'REJECTED', 'EDITED', name='reviewstatus')
change_type = sa.Enum('APPROVE', 'REJECT', 'EDIT', name='changetype')


def upgrade() -> None:
    """Create cache, job, batch, review and metrics tables."""
    op.create_table(
        'generation_cache',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('key', sa.String(length=64), nullable=False),
        sa.Column('provider', sa.String(length=100), nullable=False),
        sa.Column('content_kind', sa.String(length=50), nullable=False),
        sa.Column('payload', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('last_accessed_at', sa.DateTime(), nullable=False),
        sa.Column('access_count', sa.Integer(), nullable=False),
        sa.Column('generation_cost', sa.Float(), nullable=False),
        sa.Column('generation_time_ms', sa.Integer(), nullable=True),
        sa.CheckConstraint('expires_at > created_at', name='ck_generation_cache_expiry'),
    )
    op.create_index('ix_generation_cache_key', 'generation_cache', ['key'], unique=True)
    op.create_index('ix_generation_cache_provider', 'generation_cache', ['provider'])
    op.create_index('ix_generation_cache_expires_at', 'generation_cache', ['expires_at'])
    # Eviction order
    op.create_index(
        'ix_generation_cache_last_accessed_at', 'generation_cache', ['last_accessed_at']
    )

    op.create_table(
        'generation_jobs',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('target_id', sa.String(length=255), nullable=False),
        sa.Column('provider', sa.String(length=100), nullable=False),
        sa.Column('content_kind', sa.String(length=50), nullable=False),
        sa.Column('cache_key', sa.String(length=64), nullable=False),
        sa.Column('batch_id', sa.Uuid(), nullable=True),
        sa.Column('status', job_status, nullable=False),
        sa.Column('attempts', sa.Integer(), nullable=False),
        sa.Column('request', sa.JSON(), nullable=True),
        sa.Column('response', sa.JSON(), nullable=True),
        sa.Column('error_message', sa.String(), nullable=True),
        sa.Column('cost_usd', sa.Float(), nullable=True),
        sa.Column('duration_ms', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('started_at', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_generation_jobs_target_id', 'generation_jobs', ['target_id'])
    op.create_index('ix_generation_jobs_provider', 'generation_jobs', ['provider'])
    op.create_index('ix_generation_jobs_cache_key', 'generation_jobs', ['cache_key'])
    op.create_index('ix_generation_jobs_batch_id', 'generation_jobs', ['batch_id'])
    op.create_index('ix_generation_jobs_status', 'generation_jobs', ['status'])

    op.create_table(
        'batch_jobs',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('status', batch_status, nullable=False),
        sa.Column('items', sa.JSON(), nullable=True),
        sa.Column('concurrency', sa.Integer(), nullable=False),
        sa.Column('total_items', sa.Integer(), nullable=False),
        sa.Column('processed_items', sa.Integer(), nullable=False),
        sa.Column('successful_items', sa.Integer(), nullable=False),
        sa.Column('failed_items', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('started_at', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint('processed_items <= total_items', name='ck_batch_jobs_progress'),
    )
    op.create_index('ix_batch_jobs_status', 'batch_jobs', ['status'])

    op.create_table(
        'batch_item_errors',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('batch_id', sa.Uuid(), nullable=False),
        sa.Column('item_id', sa.String(length=64), nullable=False),
        sa.Column('message', sa.String(), nullable=False),
        sa.Column('error_kind', sa.String(length=30), nullable=False),
        sa.Column('attempt_number', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_batch_item_errors_batch_id', 'batch_item_errors', ['batch_id'])
    op.create_index('ix_batch_item_errors_item_id', 'batch_item_errors', ['item_id'])

    op.create_table(
        'content_items',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('source_job_id', sa.Uuid(), nullable=False),
        sa.Column('target_id', sa.String(length=255), nullable=False),
        sa.Column('content_kind', sa.String(length=50), nullable=False),
        sa.Column('payload', sa.JSON(), nullable=False),
        sa.Column('confidence', sa.Float(), nullable=True),
        sa.Column('status', review_status, nullable=False),
        sa.Column('reviewed_by', sa.String(), nullable=True),
        sa.Column('reviewed_at', sa.DateTime(), nullable=True),
        sa.Column('review_notes', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_content_items_source_job_id', 'content_items', ['source_job_id'])
    op.create_index('ix_content_items_target_id', 'content_items', ['target_id'])
    op.create_index('ix_content_items_content_kind', 'content_items', ['content_kind'])
    op.create_index('ix_content_items_status', 'content_items', ['status'])
    op.create_index('ix_content_items_reviewed_by', 'content_items', ['reviewed_by'])

    op.create_table(
        'review_history',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('item_id', sa.Uuid(), nullable=False),
        sa.Column('previous_snapshot', sa.JSON(), nullable=False),
        sa.Column('new_snapshot', sa.JSON(), nullable=False),
        sa.Column('actor', sa.String(length=255), nullable=False),
        sa.Column('change_type', change_type, nullable=False),
        sa.Column('notes', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_review_history_item_id', 'review_history', ['item_id'])
    op.create_index('ix_review_history_actor', 'review_history', ['actor'])
    op.create_index('ix_review_history_created_at', 'review_history', ['created_at'])

    op.create_table(
        'metrics_snapshots',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('scope', sa.String(length=50), nullable=False),
        sa.Column('captured_at', sa.DateTime(), nullable=False),
        sa.Column('data', sa.JSON(), nullable=True),
    )
    op.create_index('ix_metrics_snapshots_scope', 'metrics_snapshots', ['scope'])
    op.create_index('ix_metrics_snapshots_captured_at', 'metrics_snapshots', ['captured_at'])


def downgrade() -> None:
    """Drop all pipeline tables."""
    op.drop_table('metrics_snapshots')
    op.drop_table('review_history')
    op.drop_table('content_items')
    op.drop_table('batch_item_errors')
    op.drop_table('batch_jobs')
    op.drop_table('generation_jobs')
    op.drop_table('generation_cache')

    bind = op.get_bind()
    for enum in (change_type, review_status, batch_status, job_status):
        enum.drop(bind, checkfirst=True)
