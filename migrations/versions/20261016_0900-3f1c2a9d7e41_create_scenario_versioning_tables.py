"""create_scenario_versioning_tables

Revision ID: 3f1c2a9d7e41
Revises:
Create Date: 2026-10-16 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '3f1c2a9d7e41'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSON_TYPE = sa.JSON().with_variant(postgresql.JSONB(), 'postgresql')


def upgrade() -> None:
    # Create people table
    op.create_table(
        'people',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('primary_role_id', sa.String(), nullable=True),
        sa.Column('worker_type', sa.String(), nullable=True),
        sa.Column('supervisor_id', sa.String(), nullable=True),
        sa.Column('default_availability_percentage', sa.Float(), nullable=True),
        sa.Column('default_hours_per_day', sa.Float(), nullable=True),
        sa.Column('location_id', sa.String(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['supervisor_id'], ['people.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('email')
    )

    # Create projects table
    op.create_table(
        'projects',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('project_type_id', sa.String(), nullable=True),
        sa.Column('location_id', sa.String(), nullable=True),
        sa.Column('priority', sa.Integer(), nullable=False, server_default='5'),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('include_in_demand', sa.Boolean(), nullable=True),
        sa.Column('aspiration_start', sa.Date(), nullable=True),
        sa.Column('aspiration_finish', sa.Date(), nullable=True),
        sa.Column('owner_id', sa.String(), nullable=True),
        sa.Column('current_phase_id', sa.String(), nullable=True),
        sa.Column('role_demands', JSON_TYPE, nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['owner_id'], ['people.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id')
    )

    # Create project_assignments table
    op.create_table(
        'project_assignments',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('project_id', sa.String(), nullable=False),
        sa.Column('person_id', sa.String(), nullable=False),
        sa.Column('role_id', sa.String(), nullable=False),
        sa.Column('phase_id', sa.String(), nullable=True),
        sa.Column('start_date', sa.Date(), nullable=True),
        sa.Column('end_date', sa.Date(), nullable=True),
        sa.Column('allocation', sa.Float(), nullable=False),
        sa.Column('assignment_date_mode', sa.String(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['project_id'], ['projects.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['person_id'], ['people.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_project_assignments_project_id', 'project_assignments', ['project_id'])
    op.create_index('ix_project_assignments_person_id', 'project_assignments', ['person_id'])
    op.create_index('ix_project_assignments_role_id', 'project_assignments', ['role_id'])

    # Create project_phases_timeline table
    op.create_table(
        'project_phases_timeline',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('project_id', sa.String(), nullable=False),
        sa.Column('phase_id', sa.String(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=True),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('end_date', sa.Date(), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['project_id'], ['projects.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('project_id', 'phase_id', name='uq_project_phase_timeline')
    )

    # Create scenarios table
    op.create_table(
        'scenarios',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.String(), nullable=True),
        sa.Column('kind', sa.String(), nullable=False),
        sa.Column('status', sa.String(), nullable=False, server_default='active'),
        sa.Column('parent_id', sa.String(), nullable=True),
        sa.Column('branch_point', sa.DateTime(timezone=True), nullable=True),
        sa.Column('merged_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_by', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['parent_id'], ['scenarios.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_scenarios_kind', 'scenarios', ['kind'])
    op.create_index('ix_scenarios_status', 'scenarios', ['status'])
    op.create_index('ix_scenarios_parent_id', 'scenarios', ['parent_id'])
    op.create_index(
        'uq_single_baseline', 'scenarios', ['kind'], unique=True,
        postgresql_where=sa.text("kind = 'baseline'"),
        sqlite_where=sa.text("kind = 'baseline'"),
    )

    # Create scenario_overlay_entries table
    op.create_table(
        'scenario_overlay_entries',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('scenario_id', sa.String(), nullable=False),
        sa.Column('entity_type', sa.String(), nullable=False),
        sa.Column('entity_id', sa.String(), nullable=False),
        sa.Column('state', sa.String(), nullable=False),
        sa.Column('payload', JSON_TYPE, nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(['scenario_id'], ['scenarios.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('scenario_id', 'entity_type', 'entity_id', name='uq_overlay_entry_key')
    )
    op.create_index('ix_overlay_entry_scenario_type', 'scenario_overlay_entries', ['scenario_id', 'entity_type'])

    # Create commit_logs table
    op.create_table(
        'commit_logs',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('scenario_id', sa.String(), nullable=False),
        sa.Column('entity_type', sa.String(), nullable=True),
        sa.Column('entity_id', sa.String(), nullable=True),
        sa.Column('action', sa.String(), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('author', sa.String(), nullable=True),
        sa.Column('extra_data', JSON_TYPE, nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_commit_logs_scenario_id', 'commit_logs', ['scenario_id'])
    op.create_index('ix_commit_logs_entity_type', 'commit_logs', ['entity_type'])
    op.create_index('ix_commit_logs_entity_id', 'commit_logs', ['entity_id'])
    op.create_index('ix_commit_logs_action', 'commit_logs', ['action'])
    op.create_index('ix_commit_logs_created_at', 'commit_logs', ['created_at'])
    op.create_index('ix_commit_log_entity', 'commit_logs', ['entity_type', 'entity_id'])
    op.create_index('ix_commit_log_scenario_time', 'commit_logs', ['scenario_id', 'created_at'])


def downgrade() -> None:
    op.drop_table('commit_logs')
    op.drop_table('scenario_overlay_entries')
    op.drop_table('scenarios')
    op.drop_table('project_phases_timeline')
    op.drop_table('project_assignments')
    op.drop_table('projects')
    op.drop_table('people')
