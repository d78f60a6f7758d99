"""create signal pipeline tables

Revision ID: 5e1a9c3b7d20
Revises:
Create Date: 2026-09-28

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '5e1a9c3b7d20'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'projects',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('signal_instructions', sa.Text(), nullable=True),
        sa.Column('risk_criteria', sa.Text(), nullable=True),
        sa.Column('settings', sa.JSON(), nullable=True),
        sa.Column('refresh_interval_hours', sa.Integer(), nullable=False),
        sa.Column('last_refresh_at', sa.DateTime(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )

    op.create_table(
        'sources',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('project_id', sa.Uuid(), nullable=False),
        sa.Column('url', sa.String(length=2048), nullable=False),
        sa.Column('display_name', sa.String(length=255), nullable=True),
        sa.Column('platform', sa.String(length=32), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('last_fetch_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['project_id'], ['projects.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_sources_project_id'), 'sources', ['project_id'], unique=False)

    op.create_table(
        'ingestions',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('source_id', sa.Uuid(), nullable=False),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('content_hash', sa.String(length=64), nullable=False),
        sa.Column('word_count', sa.Integer(), nullable=False),
        sa.Column('url', sa.String(length=2048), nullable=True),
        sa.Column('title', sa.String(length=512), nullable=True),
        sa.Column('extraction_method', sa.String(length=32), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('scraped_at', sa.DateTime(), nullable=False),
        sa.Column('ingested_at', sa.DateTime(), nullable=False),
        sa.Column('status', sa.String(length=32), nullable=False),
        sa.Column('processed', sa.Boolean(), nullable=False),
        sa.Column('processed_at', sa.DateTime(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(['source_id'], ['sources.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('source_id', 'content_hash', name='uq_ingestion_source_content')
    )
    op.create_index(op.f('ix_ingestions_source_id'), 'ingestions', ['source_id'], unique=False)
    op.create_index('ix_ingestions_processed_ingested_at', 'ingestions', ['processed', 'ingested_at'], unique=False)

    op.create_table(
        'scrape_logs',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('source_id', sa.Uuid(), nullable=False),
        sa.Column('status', sa.String(length=32), nullable=False),
        sa.Column('started_at', sa.DateTime(), nullable=False),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('items_found', sa.Integer(), nullable=False),
        sa.Column('items_processed', sa.Integer(), nullable=False),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('execution_time_ms', sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(['source_id'], ['sources.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_scrape_logs_source_id'), 'scrape_logs', ['source_id'], unique=False)

    op.create_table(
        'scrape_locks',
        sa.Column('project_id', sa.Uuid(), nullable=False),
        sa.Column('locked_by', sa.String(length=64), nullable=False),
        sa.Column('locked_at', sa.DateTime(), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['project_id'], ['projects.id'], ),
        sa.PrimaryKeyConstraint('project_id')
    )
    op.create_index(op.f('ix_scrape_locks_expires_at'), 'scrape_locks', ['expires_at'], unique=False)

    op.create_table(
        'signals',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('project_id', sa.Uuid(), nullable=False),
        sa.Column('headline', sa.String(length=255), nullable=False),
        sa.Column('summary', sa.Text(), nullable=True),
        sa.Column('key_points', sa.JSON(), nullable=True),
        sa.Column('tags', sa.JSON(), nullable=True),
        sa.Column('status', sa.String(length=32), nullable=False),
        sa.Column('momentum', sa.String(length=16), nullable=False),
        sa.Column('risk_level', sa.String(length=32), nullable=False),
        sa.Column('detected_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.Column('archived_at', sa.DateTime(), nullable=True),
        sa.Column('last_momentum_check', sa.DateTime(), nullable=True),
        sa.Column('total_momentum_checks', sa.Integer(), nullable=False),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.ForeignKeyConstraint(['project_id'], ['projects.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_signals_project_id'), 'signals', ['project_id'], unique=False)

    op.create_table(
        'momentum_history',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('signal_id', sa.Uuid(), nullable=False),
        sa.Column('checked_at', sa.DateTime(), nullable=False),
        sa.Column('previous_status', sa.String(length=32), nullable=False),
        sa.Column('new_status', sa.String(length=32), nullable=False),
        sa.Column('previous_momentum', sa.String(length=16), nullable=False),
        sa.Column('new_momentum', sa.String(length=16), nullable=False),
        sa.Column('previous_risk_level', sa.String(length=32), nullable=False),
        sa.Column('new_risk_level', sa.String(length=32), nullable=False),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('supporting_ingestion_ids', sa.JSON(), nullable=True),
        sa.Column('evidence_count', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['signal_id'], ['signals.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_momentum_history_signal_id'), 'momentum_history', ['signal_id'], unique=False)

    op.create_table(
        'signal_evidence',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('signal_id', sa.Uuid(), nullable=False),
        sa.Column('ingestion_id', sa.Uuid(), nullable=False),
        sa.Column('reference_type', sa.String(length=16), nullable=False),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['ingestion_id'], ['ingestions.id'], ),
        sa.ForeignKeyConstraint(['signal_id'], ['signals.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('signal_id', 'ingestion_id', name='uq_signal_evidence_pair')
    )
    op.create_index(op.f('ix_signal_evidence_signal_id'), 'signal_evidence', ['signal_id'], unique=False)
    op.create_index(op.f('ix_signal_evidence_ingestion_id'), 'signal_evidence', ['ingestion_id'], unique=False)

    op.create_table(
        'usage_logs',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('project_id', sa.Uuid(), nullable=False),
        sa.Column('action_type', sa.String(length=64), nullable=False),
        sa.Column('model', sa.String(length=128), nullable=False),
        sa.Column('prompt_tokens', sa.Integer(), nullable=False),
        sa.Column('completion_tokens', sa.Integer(), nullable=False),
        sa.Column('total_tokens', sa.Integer(), nullable=False),
        sa.Column('estimated_cost', sa.Numeric(precision=14, scale=6), nullable=False),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['project_id'], ['projects.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_usage_logs_project_id'), 'usage_logs', ['project_id'], unique=False)
    op.create_index(op.f('ix_usage_logs_created_at'), 'usage_logs', ['created_at'], unique=False)


def downgrade() -> None:
    op.drop_index(op.f('ix_usage_logs_created_at'), table_name='usage_logs')
    op.drop_index(op.f('ix_usage_logs_project_id'), table_name='usage_logs')
    op.drop_table('usage_logs')
    op.drop_index(op.f('ix_signal_evidence_ingestion_id'), table_name='signal_evidence')
    op.drop_index(op.f('ix_signal_evidence_signal_id'), table_name='signal_evidence')
    op.drop_table('signal_evidence')
    op.drop_index(op.f('ix_momentum_history_signal_id'), table_name='momentum_history')
    op.drop_table('momentum_history')
    op.drop_index(op.f('ix_signals_project_id'), table_name='signals')
    op.drop_table('signals')
    op.drop_index(op.f('ix_scrape_locks_expires_at'), table_name='scrape_locks')
    op.drop_table('scrape_locks')
    op.drop_index(op.f('ix_scrape_logs_source_id'), table_name='scrape_logs')
    op.drop_table('scrape_logs')
    op.drop_index('ix_ingestions_processed_ingested_at', table_name='ingestions')
    op.drop_index(op.f('ix_ingestions_source_id'), table_name='ingestions')
    op.drop_table('ingestions')
    op.drop_index(op.f('ix_sources_project_id'), table_name='sources')
    op.drop_table('sources')
    op.drop_table('projects')
