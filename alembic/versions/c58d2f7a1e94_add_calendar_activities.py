"""add calendar activities and instructivo content

Revision ID: c58d2f7a1e94
Revises: a3c91e5d7b20
Create Date: 2025-12-02 10:30:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = 'c58d2f7a1e94'
down_revision: Union[str, None] = 'a3c91e5d7b20'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Instructivo body and authorship
    op.add_column('student_instructivos', sa.Column('content', sa.Text(), nullable=True))
    op.add_column('student_instructivos', sa.Column('note', sa.Text(), nullable=True))
    op.add_column('student_instructivos', sa.Column('created_by', sa.String(length=120), nullable=True))
    op.add_column(
        'student_instructivos',
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    )

    op.create_table('activities',
    sa.Column('id', sa.BigInteger(), autoincrement=True, nullable=False),
    sa.Column('title', sa.String(length=200), nullable=False),
    sa.Column('description', sa.Text(), nullable=True),
    sa.Column('start_time', sa.DateTime(timezone=True), nullable=False),
    sa.Column('end_time', sa.DateTime(timezone=True), nullable=True),
    sa.Column('kind', sa.String(length=50), nullable=False, server_default='activity'),
    sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_activities_start_time', 'activities', ['start_time'], unique=False)

    # Exams last one hour on the calendar; activities without an end do too
    op.execute("""
        CREATE OR REPLACE VIEW public.calendar_events_v AS
        SELECT 'exam'::text AS kind,
               e.id,
               CONCAT_WS(' · ', 'Examen', e.exam_type, s.full_name) AS title,
               e.time_scheduled AS start_time,
               e.time_scheduled + INTERVAL '1 hour' AS end_time,
               e.status,
               e.notes,
               e.student_id,
               e.score,
               e.passed
        FROM public.exam_appointments e
        LEFT JOIN public.students s ON s.id = e.student_id
        UNION ALL
        SELECT 'activity'::text AS kind,
               a.id,
               a.title,
               a.start_time,
               COALESCE(a.end_time, a.start_time + INTERVAL '1 hour') AS end_time,
               NULL::text AS status,
               a.description AS notes,
               NULL::bigint AS student_id,
               NULL::numeric AS score,
               NULL::boolean AS passed
        FROM public.activities a
    """)


def downgrade() -> None:
    op.execute("DROP VIEW IF EXISTS public.calendar_events_v")
    op.drop_index('idx_activities_start_time', table_name='activities')
    op.drop_table('activities')
    op.drop_column('student_instructivos', 'updated_at')
    op.drop_column('student_instructivos', 'created_by')
    op.drop_column('student_instructivos', 'note')
    op.drop_column('student_instructivos', 'content')
