"""Initial HRMS DevOps and hand-off tables

Revision ID: 001_initial_hrms
Revises:
Create Date: 2026-10-19

Creates all tables for:
- DevOps dashboard (pipelines, pipeline_jobs, merge_requests, merge_approvals,
  deployments, feature_flags, automation_notifications)
- Integrations (integrations, integration_settings, integration_approvals,
  integration_notifications)
- Cross-app session hand-off (handoff_codes)

Enum-valued columns are stored as short strings.
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '001_initial_hrms'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    ]


def upgrade() -> None:
    # ==========================================================================
    # Pipelines
    # ==========================================================================

    op.create_table(
        'pipelines',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('branch', sa.String(length=255), nullable=False),
        sa.Column('commit_sha', sa.String(length=64), nullable=False),
        sa.Column('author', sa.String(length=255), nullable=False),
        sa.Column('message', sa.Text(), nullable=True),
        sa.Column('status', sa.String(length=32), nullable=False, server_default='pending'),
        sa.Column('environment', sa.String(length=32), nullable=False, server_default='development'),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('finished_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_pipelines_branch', 'pipelines', ['branch'])
    op.create_index('ix_pipelines_commit_sha', 'pipelines', ['commit_sha'])
    op.create_index('ix_pipelines_status', 'pipelines', ['status'])
    op.create_index('ix_pipelines_environment', 'pipelines', ['environment'])

    op.create_table(
        'pipeline_jobs',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('pipeline_id', sa.UUID(), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('status', sa.String(length=32), nullable=False, server_default='pending'),
        sa.Column('duration', sa.Integer(), nullable=True),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('finished_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['pipeline_id'], ['pipelines.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_pipeline_jobs_pipeline_id', 'pipeline_jobs', ['pipeline_id'])

    # ==========================================================================
    # Merge requests
    # ==========================================================================

    op.create_table(
        'merge_requests',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('external_id', sa.String(length=50), nullable=True),
        sa.Column('title', sa.String(length=500), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('author', sa.String(length=255), nullable=False),
        sa.Column('source_branch', sa.String(length=255), nullable=False),
        sa.Column('target_branch', sa.String(length=255), nullable=False),
        sa.Column('status', sa.String(length=32), nullable=False, server_default='open'),
        sa.Column('approvals', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('required_approvals', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('approved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('pipeline_status', sa.String(length=32), nullable=True, server_default='pending'),
        sa.Column('additions', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('deletions', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('files_changed', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('conflicts', sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_merge_requests_external_id', 'merge_requests', ['external_id'], unique=True)
    op.create_index('ix_merge_requests_status', 'merge_requests', ['status'])

    op.create_table(
        'merge_approvals',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('merge_request_id', sa.UUID(), nullable=False),
        sa.Column('approver', sa.String(length=255), nullable=False),
        sa.Column('action', sa.String(length=32), nullable=False),
        sa.Column('comment', sa.Text(), nullable=True),
        sa.Column('review_id', sa.BigInteger(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['merge_request_id'], ['merge_requests.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('review_id'),
    )
    op.create_index('ix_merge_approvals_merge_request_id', 'merge_approvals', ['merge_request_id'])

    # ==========================================================================
    # Deployments & feature flags
    # ==========================================================================

    op.create_table(
        'deployments',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('environment', sa.String(length=32), nullable=False),
        sa.Column('version', sa.String(length=100), nullable=False),
        sa.Column('status', sa.String(length=32), nullable=False, server_default='pending'),
        sa.Column('health', sa.String(length=32), nullable=False, server_default='unknown'),
        sa.Column('pipeline_id', sa.UUID(), nullable=True),
        sa.Column('deployed_by', sa.String(length=255), nullable=False, server_default='system'),
        sa.Column('deployed_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['pipeline_id'], ['pipelines.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_deployments_environment', 'deployments', ['environment'])
    op.create_index('ix_deployments_status', 'deployments', ['status'])

    op.create_table(
        'feature_flags',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('enabled', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('environment', sa.String(length=32), nullable=False, server_default='development'),
        sa.Column('rollout_percentage', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('conditions', sa.JSON(), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('created_by', sa.String(length=255), nullable=False, server_default='system'),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_feature_flags_name', 'feature_flags', ['name'], unique=True)

    op.create_table(
        'automation_notifications',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('type', sa.String(length=32), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('recipient', sa.String(length=255), nullable=False, server_default='team'),
        sa.Column('status', sa.String(length=32), nullable=False, server_default='sent'),
        sa.Column('metadata', sa.JSON(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )

    # ==========================================================================
    # Integrations
    # ==========================================================================

    op.create_table(
        'integrations',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('type', sa.String(length=32), nullable=False),
        sa.Column('webhook_url', sa.String(length=2000), nullable=True),
        sa.Column('status', sa.String(length=32), nullable=False, server_default='pending'),
        sa.Column('approved_by', sa.String(length=255), nullable=True),
        sa.Column('approved_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )

    op.create_table(
        'integration_settings',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('integration', sa.String(length=50), nullable=False),
        sa.Column('enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('updated_by', sa.String(length=255), nullable=False, server_default='system'),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('integration'),
    )

    op.create_table(
        'integration_approvals',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('integration_id', sa.UUID(), nullable=True),
        sa.Column('request_type', sa.String(length=50), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('requested_by', sa.String(length=255), nullable=False),
        sa.Column('approved_by', sa.String(length=255), nullable=True),
        sa.Column('status', sa.String(length=32), nullable=False, server_default='pending'),
        sa.Column('reviewed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['integration_id'], ['integrations.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_integration_approvals_integration_id', 'integration_approvals', ['integration_id'])
    op.create_index('ix_integration_approvals_status', 'integration_approvals', ['status'])

    op.create_table(
        'integration_notifications',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('integration_id', sa.UUID(), nullable=True),
        sa.Column('type', sa.String(length=50), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('priority', sa.String(length=32), nullable=False, server_default='medium'),
        sa.Column('status', sa.String(length=32), nullable=False, server_default='pending'),
        sa.Column('sent_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['integration_id'], ['integrations.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_integration_notifications_integration_id', 'integration_notifications', ['integration_id'])

    # ==========================================================================
    # Hand-off codes
    # ==========================================================================

    op.create_table(
        'handoff_codes',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('code_hash', sa.String(length=64), nullable=False),
        sa.Column('target_app', sa.String(length=20), nullable=False),
        sa.Column('payload', sa.JSON(), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('consumed_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('code_hash'),
    )


def downgrade() -> None:
    # Drop tables in reverse order
    op.drop_table('handoff_codes')
    op.drop_table('integration_notifications')
    op.drop_table('integration_approvals')
    op.drop_table('integration_settings')
    op.drop_table('integrations')
    op.drop_table('automation_notifications')
    op.drop_table('feature_flags')
    op.drop_table('deployments')
    op.drop_table('merge_approvals')
    op.drop_table('merge_requests')
    op.drop_table('pipeline_jobs')
    op.drop_table('pipelines')
