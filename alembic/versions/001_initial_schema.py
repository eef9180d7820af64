"""Initial schema

Revision ID: 001
Revises: 
Create Date: 2026-10-17 10:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import mysql

# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None

CASE_TYPES = ('API', 'LOAD', 'UI', 'E2E')


def upgrade() -> None:
    # Create test_files table (catalog, populated by discovery)
    op.create_table(
        'test_files',
        sa.Column('id', mysql.CHAR(36), nullable=False),
        sa.Column('created_at', sa.TIMESTAMP(), nullable=False),
        sa.Column('updated_at', sa.TIMESTAMP(), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('path', sa.String(1024), nullable=False),
        sa.Column('type', sa.Enum(*CASE_TYPES, name='case_type'), nullable=False),
        sa.Column('suite', sa.String(255), nullable=True),
        sa.Column('status', sa.String(50), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )

    # Create test_cases table
    op.create_table(
        'test_cases',
        sa.Column('id', mysql.CHAR(36), nullable=False),
        sa.Column('created_at', sa.TIMESTAMP(), nullable=False),
        sa.Column('updated_at', sa.TIMESTAMP(), nullable=False),
        sa.Column('test_file_id', mysql.CHAR(36), nullable=False),
        sa.Column('name', sa.String(500), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('type', sa.Enum(*CASE_TYPES, name='case_type'), nullable=False),
        sa.Column('file_path', sa.String(1024), nullable=True),
        sa.Column('suite', sa.String(255), nullable=True),
        sa.Column('status', sa.String(50), nullable=True),
        sa.Column('active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['test_file_id'], ['test_files.id'], ondelete='CASCADE')
    )
    op.create_index('idx_test_cases_file_active', 'test_cases', ['test_file_id', 'active'])

    # Create scheduled_tests table
    op.create_table(
        'scheduled_tests',
        sa.Column('id', mysql.CHAR(36), nullable=False),
        sa.Column('created_at', sa.TIMESTAMP(), nullable=False),
        sa.Column('updated_at', sa.TIMESTAMP(), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('test_case_id', mysql.CHAR(36), nullable=True),
        sa.Column('test_file_id', mysql.CHAR(36), nullable=True),
        sa.Column('user_id', mysql.CHAR(36), nullable=True),
        sa.Column(
            'schedule_type',
            sa.Enum('one-time', 'daily', 'weekly', 'monthly', name='schedule_type'),
            nullable=False
        ),
        sa.Column('scheduled_date', sa.Date(), nullable=True),
        sa.Column('scheduled_time', sa.Time(), nullable=False),
        sa.Column('timezone', sa.String(64), nullable=False, server_default='UTC'),
        sa.Column('recurrence_pattern', sa.JSON(), nullable=True),
        sa.Column('enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('next_run_at', sa.TIMESTAMP(), nullable=True),
        sa.Column('last_run_at', sa.TIMESTAMP(), nullable=True),
        sa.Column(
            'last_run_status',
            sa.Enum('passed', 'failed', 'skipped', name='last_run_status'),
            nullable=True
        ),
        sa.Column('run_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('description', sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['test_case_id'], ['test_cases.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['test_file_id'], ['test_files.id'], ondelete='CASCADE'),
        sa.CheckConstraint(
            '(test_case_id IS NULL) <> (test_file_id IS NULL)',
            name='ck_scheduled_tests_single_target'
        )
    )
    op.create_index('idx_scheduled_tests_due', 'scheduled_tests', ['enabled', 'next_run_at'])
    op.create_index('idx_scheduled_tests_user', 'scheduled_tests', ['user_id'])

    # Create test_runs table
    op.create_table(
        'test_runs',
        sa.Column('id', mysql.CHAR(36), nullable=False),
        sa.Column('created_at', sa.TIMESTAMP(), nullable=False),
        sa.Column('updated_at', sa.TIMESTAMP(), nullable=False),
        sa.Column('run_id', sa.String(100), nullable=False),
        sa.Column('name', sa.String(500), nullable=False),
        sa.Column(
            'status',
            sa.Enum('pending', 'running', 'passed', 'failed', name='run_status'),
            nullable=False
        ),
        sa.Column('user_id', mysql.CHAR(36), nullable=True),
        sa.Column('total_tests', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('tests_passed', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('tests_failed', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('tests_pending', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('started_at', sa.TIMESTAMP(), nullable=True),
        sa.Column('completed_at', sa.TIMESTAMP(), nullable=True),
        sa.Column('duration', sa.Integer(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('run_id')
    )
    op.create_index('idx_test_runs_status', 'test_runs', ['status'])

    # Create test_results table
    op.create_table(
        'test_results',
        sa.Column('id', mysql.CHAR(36), nullable=False),
        sa.Column('created_at', sa.TIMESTAMP(), nullable=False),
        sa.Column('updated_at', sa.TIMESTAMP(), nullable=False),
        sa.Column('test_run_id', mysql.CHAR(36), nullable=False),
        sa.Column('test_case_id', mysql.CHAR(36), nullable=False),
        sa.Column(
            'status',
            sa.Enum('pending', 'running', 'passed', 'failed', 'skipped', name='result_status'),
            nullable=False
        ),
        sa.Column('duration', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('stack_trace', sa.Text(), nullable=True),
        sa.Column('logs', sa.Text().with_variant(mysql.LONGTEXT(), 'mysql'), nullable=True),
        sa.Column('started_at', sa.TIMESTAMP(), nullable=True),
        sa.Column('completed_at', sa.TIMESTAMP(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['test_run_id'], ['test_runs.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['test_case_id'], ['test_cases.id'], ondelete='CASCADE'),
        sa.UniqueConstraint('test_run_id', 'test_case_id', name='uq_test_results_run_case')
    )


def downgrade() -> None:
    op.drop_table('test_results')
    op.drop_index('idx_test_runs_status', table_name='test_runs')
    op.drop_table('test_runs')
    op.drop_index('idx_scheduled_tests_user', table_name='scheduled_tests')
    op.drop_index('idx_scheduled_tests_due', table_name='scheduled_tests')
    op.drop_table('scheduled_tests')
    op.drop_index('idx_test_cases_file_active', table_name='test_cases')
    op.drop_table('test_cases')
    op.drop_table('test_files')
