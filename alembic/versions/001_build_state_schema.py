"""Build-state schema - project registry and build state ledger

Revision ID: 001
Revises:
Create Date: 2026-10-19

Creates:
- project_registry: Project coordinates (repos, deploy service, database, board)
- build_states: Build-state ledger keyed by (project, source, webhook, branch)
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Table: project_registry
    op.create_table(
        'project_registry',
        sa.Column('project_id', sa.String(64), primary_key=True),
        sa.Column('name', sa.String(128), nullable=False),
        sa.Column('backend_repo_url', sa.String(512), nullable=True),
        sa.Column('frontend_repo_url', sa.String(512), nullable=True),
        sa.Column('default_branch', sa.String(64), nullable=False, server_default='main'),
        sa.Column('deploy_service_id', sa.String(128), nullable=True),
        sa.Column('deploy_service_name', sa.String(255), nullable=True),
        sa.Column('webapi_url', sa.String(512), nullable=True),
        sa.Column('db_connection_string', sa.String(1024), nullable=True),
        sa.Column('board_id', sa.String(128), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), onupdate=sa.func.now(), nullable=False),
    )

    op.create_index('ix_project_registry_deploy_service_id', 'project_registry', ['deploy_service_id'])

    # Table: build_states
    op.create_table(
        'build_states',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('project_id', sa.String(64), nullable=False, index=True),
        sa.Column('source', sa.String(64), nullable=False),
        sa.Column('webhook', sa.Boolean, nullable=False, server_default='false'),
        sa.Column('branch', sa.String(255), nullable=False, server_default=''),
        sa.Column('last_status', sa.String(32), nullable=False, server_default='UNKNOWN'),
        sa.Column('last_output', sa.Text, nullable=True),
        sa.Column('latest_event', sa.String(100), nullable=True),
        sa.Column('error_message', sa.Text, nullable=True),
        sa.Column('error_file', sa.String(500), nullable=True),
        sa.Column('error_line', sa.Integer, nullable=True),
        sa.Column('stack_trace', sa.Text, nullable=True),
        sa.Column('error_summary', sa.Text, nullable=True),
        sa.Column('request_url', sa.String(500), nullable=True),
        sa.Column('request_method', sa.String(10), nullable=True),
        sa.Column('pr_status', sa.String(50), nullable=True),
        sa.Column('branch_status', sa.String(50), nullable=True),
        sa.Column('review_feedback', sa.Text, nullable=True),
        sa.Column('last_commit_id', sa.String(100), nullable=True),
        sa.Column('last_commit_message', sa.Text, nullable=True),
        sa.Column('last_merge_timestamp', sa.DateTime(timezone=True), nullable=True),
        sa.Column('sprint_number', sa.Integer, nullable=True),
        sa.Column('dev_role', sa.String(32), nullable=True),
        sa.Column('service_name', sa.String(255), nullable=True),
        sa.Column('timestamp', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), onupdate=sa.func.now(), nullable=False),
    )

    # Conflict key for ON CONFLICT upserts; branch is '' (never NULL) when absent
    op.create_unique_constraint(
        'uq_build_states_key',
        'build_states',
        ['project_id', 'source', 'webhook', 'branch']
    )

    # Index for dedup-window lookups
    op.create_index(
        'ix_build_states_project_branch_created',
        'build_states',
        ['project_id', 'branch', 'created_at']
    )

    # Index for the stale IN_PROGRESS sweep
    op.create_index(
        'ix_build_states_status_updated',
        'build_states',
        ['last_status', 'updated_at']
    )


def downgrade() -> None:
    op.drop_table('build_states')
    op.drop_table('project_registry')
