"""add_session_debriefs_table

Revision ID: add_session_debriefs_table
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = 'add_session_debriefs_table'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


JSON_TYPE = sa.JSON().with_variant(postgresql.JSONB(), 'postgresql')


def upgrade() -> None:
    """Create workout session and session debrief tables."""
    op.create_table(
        'workout_sessions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.String(length=255), nullable=False),
        sa.Column('template_name', sa.String(length=255), nullable=True),
        sa.Column('workout_date', sa.DateTime(), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.PrimaryKeyConstraint('id', name='pk_workout_sessions'),
    )
    op.create_index('ix_workout_sessions_user_id', 'workout_sessions', ['user_id'])
    op.create_index('ix_workout_sessions_user_date', 'workout_sessions', ['user_id', 'workout_date'])

    op.create_table(
        'session_exercises',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('session_id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.String(length=255), nullable=False),
        sa.Column('exercise_name', sa.String(length=255), nullable=False),
        sa.Column('set_order', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('weight', sa.Float(), nullable=True),
        sa.Column('reps', sa.Integer(), nullable=True),
        sa.Column('sets', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('unit', sa.String(length=8), nullable=False, server_default='kg'),
        sa.ForeignKeyConstraint(['session_id'], ['workout_sessions.id'], ondelete='CASCADE', name='fk_session_exercises_session_id'),
        sa.PrimaryKeyConstraint('id', name='pk_session_exercises'),
    )
    op.create_index('ix_session_exercises_session_id', 'session_exercises', ['session_id'])
    op.create_index('ix_session_exercises_user_id', 'session_exercises', ['user_id'])
    op.create_index('ix_session_exercises_user_name', 'session_exercises', ['user_id', 'exercise_name'])

    op.create_table(
        'session_debriefs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.String(length=255), nullable=False),
        sa.Column('session_id', sa.Integer(), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('parent_debrief_id', sa.Integer(), nullable=True),
        sa.Column('summary', sa.Text(), nullable=False),
        sa.Column('pr_highlights', JSON_TYPE, nullable=True),
        sa.Column('adherence_score', sa.Float(), nullable=True),
        sa.Column('focus_areas', JSON_TYPE, nullable=True),
        sa.Column('streak_context', JSON_TYPE, nullable=True),
        sa.Column('overload_digest', JSON_TYPE, nullable=True),
        sa.Column('metadata', JSON_TYPE, nullable=False, server_default=sa.text("'{}'")),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('regeneration_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('viewed_at', sa.DateTime(), nullable=True),
        sa.Column('dismissed_at', sa.DateTime(), nullable=True),
        sa.Column('pinned_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['session_id'], ['workout_sessions.id'], ondelete='CASCADE', name='fk_session_debriefs_session_id'),
        sa.PrimaryKeyConstraint('id', name='pk_session_debriefs'),
        sa.UniqueConstraint('user_id', 'session_id', 'version', name='uq_session_debrief_version'),
        sa.CheckConstraint('version > 0', name='check_session_debrief_version_positive'),
    )
    op.create_index('ix_session_debriefs_user_id', 'session_debriefs', ['user_id'])
    op.create_index('ix_session_debriefs_session_id', 'session_debriefs', ['session_id'])
    op.create_index('ix_session_debriefs_created_at', 'session_debriefs', ['created_at'])
    op.create_index('ix_session_debriefs_user_created', 'session_debriefs', ['user_id', 'created_at'])


def downgrade() -> None:
    """Drop session debrief and workout session tables."""
    op.drop_index('ix_session_debriefs_user_created', table_name='session_debriefs')
    op.drop_index('ix_session_debriefs_created_at', table_name='session_debriefs')
    op.drop_index('ix_session_debriefs_session_id', table_name='session_debriefs')
    op.drop_index('ix_session_debriefs_user_id', table_name='session_debriefs')
    op.drop_table('session_debriefs')

    op.drop_index('ix_session_exercises_user_name', table_name='session_exercises')
    op.drop_index('ix_session_exercises_user_id', table_name='session_exercises')
    op.drop_index('ix_session_exercises_session_id', table_name='session_exercises')
    op.drop_table('session_exercises')

    op.drop_index('ix_workout_sessions_user_date', table_name='workout_sessions')
    op.drop_index('ix_workout_sessions_user_id', table_name='workout_sessions')
    op.drop_table('workout_sessions')
