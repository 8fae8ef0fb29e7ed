"""create admin tables

Revision ID: a3c91e5d7b20
Revises:
Create Date: 2025-11-20 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = 'a3c91e5d7b20'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Staff and attendance
    op.create_table('staff_members',
    sa.Column('id', sa.BigInteger(), autoincrement=True, nullable=False),
    sa.Column('full_name', sa.String(length=200), nullable=False),
    sa.Column('role', sa.String(length=100), nullable=True),
    sa.Column('hourly_wage', sa.Numeric(10, 2), nullable=True),
    sa.Column('active', sa.Boolean(), nullable=False, server_default='true'),
    sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    sa.PrimaryKeyConstraint('id')
    )

    op.create_table('staff_attendance',
    sa.Column('id', sa.BigInteger(), autoincrement=True, nullable=False),
    sa.Column('staff_id', sa.BigInteger(), nullable=False),
    sa.Column('checkin_time', sa.DateTime(timezone=True), nullable=False),
    sa.Column('checkout_time', sa.DateTime(timezone=True), nullable=True),
    sa.Column('original_session_id', sa.BigInteger(), nullable=True),
    sa.Column('replaced_by_session_id', sa.BigInteger(), nullable=True),
    sa.Column('edited_by_staff_id', sa.BigInteger(), nullable=True),
    sa.Column('edit_note', sa.Text(), nullable=True),
    sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    sa.ForeignKeyConstraint(['staff_id'], ['staff_members.id']),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_staff_attendance_staff_checkin', 'staff_attendance', ['staff_id', 'checkin_time'], unique=False)
    op.create_index('idx_staff_attendance_open', 'staff_attendance', ['checkout_time'], unique=False,
                    postgresql_where=sa.text('checkout_time IS NULL'))

    # Payroll
    op.create_table('payroll_day_approvals',
    sa.Column('id', sa.BigInteger(), autoincrement=True, nullable=False),
    sa.Column('staff_id', sa.BigInteger(), nullable=False),
    sa.Column('work_date', sa.Date(), nullable=False),
    sa.Column('approved', sa.Boolean(), nullable=False, server_default='false'),
    sa.Column('approved_minutes', sa.Integer(), nullable=True),
    sa.Column('approved_by', sa.String(length=200), nullable=True),
    sa.Column('approved_at', sa.DateTime(timezone=True), nullable=True),
    sa.ForeignKeyConstraint(['staff_id'], ['staff_members.id']),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('staff_id', 'work_date', name='uq_payroll_day_approvals_staff_day')
    )

    op.create_table('payroll_month_payments',
    sa.Column('id', sa.BigInteger(), autoincrement=True, nullable=False),
    sa.Column('staff_id', sa.BigInteger(), nullable=False),
    sa.Column('month', sa.Date(), nullable=False),
    sa.Column('paid', sa.Boolean(), nullable=False, server_default='false'),
    sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
    sa.Column('amount_paid', sa.Numeric(12, 2), nullable=True),
    sa.Column('reference', sa.String(length=200), nullable=True),
    sa.Column('paid_by', sa.String(length=200), nullable=True),
    sa.ForeignKeyConstraint(['staff_id'], ['staff_members.id']),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('staff_id', 'month', name='uq_payroll_month_payments_staff_month')
    )

    op.create_table('payroll_audit_events',
    sa.Column('id', sa.BigInteger(), autoincrement=True, nullable=False),
    sa.Column('action', sa.String(length=50), nullable=False),
    sa.Column('staff_id', sa.BigInteger(), nullable=True),
    sa.Column('work_date', sa.Date(), nullable=True),
    sa.Column('session_id', sa.BigInteger(), nullable=True),
    sa.Column('details', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
    sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_payroll_audit_staff_day', 'payroll_audit_events', ['staff_id', 'work_date'], unique=False)

    # Students
    op.create_table('students',
    sa.Column('id', sa.BigInteger(), autoincrement=True, nullable=False),
    sa.Column('full_name', sa.String(length=200), nullable=False),
    sa.Column('preferred_name', sa.String(length=200), nullable=True),
    sa.Column('email', sa.String(length=200), nullable=True),
    sa.Column('phone', sa.String(length=50), nullable=True),
    sa.Column('whatsapp', sa.String(length=50), nullable=True),
    sa.Column('birthdate', sa.Date(), nullable=True),
    sa.Column('start_date', sa.Date(), nullable=True),
    sa.Column('current_level', sa.String(length=10), nullable=True),
    sa.Column('current_lesson', sa.String(length=100), nullable=True),
    sa.Column('planned_level_min', sa.String(length=10), nullable=True),
    sa.Column('planned_level_max', sa.String(length=10), nullable=True),
    sa.Column('status', sa.String(length=50), nullable=True),
    sa.Column('notes', sa.Text(), nullable=True),
    sa.Column('archived', sa.Boolean(), nullable=False, server_default='false'),
    sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_students_full_name', 'students', ['full_name'], unique=False)

    op.create_table('student_flags',
    sa.Column('student_id', sa.BigInteger(), nullable=False),
    sa.Column('has_special_needs', sa.Boolean(), nullable=False, server_default='false'),
    sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    sa.ForeignKeyConstraint(['student_id'], ['students.id'], ondelete='CASCADE'),
    sa.PrimaryKeyConstraint('student_id')
    )

    op.create_table('student_attendance',
    sa.Column('id', sa.BigInteger(), autoincrement=True, nullable=False),
    sa.Column('student_id', sa.BigInteger(), nullable=True),
    sa.Column('full_name', sa.String(length=200), nullable=True),
    sa.Column('lesson_id', sa.BigInteger(), nullable=True),
    sa.Column('checkin_time', sa.DateTime(timezone=True), nullable=False),
    sa.Column('checkout_time', sa.DateTime(timezone=True), nullable=True),
    sa.ForeignKeyConstraint(['student_id'], ['students.id']),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_student_attendance_student_checkin', 'student_attendance', ['student_id', 'checkin_time'], unique=False)

    op.create_table('student_notes',
    sa.Column('id', sa.BigInteger(), autoincrement=True, nullable=False),
    sa.Column('student_id', sa.BigInteger(), nullable=False),
    sa.Column('note', sa.Text(), nullable=False),
    sa.Column('category', sa.String(length=100), nullable=True),
    sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    sa.ForeignKeyConstraint(['student_id'], ['students.id']),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_student_notes_student', 'student_notes', ['student_id', 'created_at'], unique=False)

    op.create_table('exam_appointments',
    sa.Column('id', sa.BigInteger(), autoincrement=True, nullable=False),
    sa.Column('student_id', sa.BigInteger(), nullable=False),
    sa.Column('time_scheduled', sa.DateTime(timezone=True), nullable=False),
    sa.Column('exam_type', sa.String(length=20), nullable=True),
    sa.Column('status', sa.String(length=20), nullable=False, server_default='scheduled'),
    sa.Column('level', sa.String(length=10), nullable=True),
    sa.Column('score', sa.Numeric(5, 2), nullable=True),
    sa.Column('passed', sa.Boolean(), nullable=True),
    sa.Column('location', sa.String(length=200), nullable=True),
    sa.Column('notes', sa.Text(), nullable=True),
    sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    sa.ForeignKeyConstraint(['student_id'], ['students.id']),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_exam_appointments_student', 'exam_appointments', ['student_id', 'time_scheduled'], unique=False)
    op.create_index('idx_exam_appointments_time', 'exam_appointments', ['time_scheduled'], unique=False)

    op.create_table('student_instructivos',
    sa.Column('id', sa.BigInteger(), autoincrement=True, nullable=False),
    sa.Column('student_id', sa.BigInteger(), nullable=False),
    sa.Column('exam_id', sa.BigInteger(), nullable=True),
    sa.Column('title', sa.String(length=200), nullable=True),
    sa.Column('assigned_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    sa.Column('due_date', sa.Date(), nullable=True),
    sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
    sa.ForeignKeyConstraint(['student_id'], ['students.id']),
    sa.ForeignKeyConstraint(['exam_id'], ['exam_appointments.id']),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_student_instructivos_student', 'student_instructivos', ['student_id'], unique=False)

    op.create_table('student_payment_schedule',
    sa.Column('id', sa.BigInteger(), autoincrement=True, nullable=False),
    sa.Column('student_id', sa.BigInteger(), nullable=False),
    sa.Column('due_date', sa.Date(), nullable=True),
    sa.Column('amount', sa.Numeric(12, 2), nullable=True),
    sa.Column('status', sa.String(length=50), nullable=True),
    sa.Column('notes', sa.Text(), nullable=True),
    sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    sa.ForeignKeyConstraint(['student_id'], ['students.id']),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_student_payment_schedule_student_due', 'student_payment_schedule', ['student_id', 'due_date'], unique=False)

    # Maintenance run log
    op.create_table('auto_checkout_runs',
    sa.Column('run_date', sa.Date(), nullable=False),
    sa.Column('executed_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    sa.Column('students_closed', sa.Integer(), nullable=False, server_default='0'),
    sa.Column('staff_closed', sa.Integer(), nullable=False, server_default='0'),
    sa.Column('status', sa.String(length=20), nullable=False, server_default='pending'),
    sa.Column('message', sa.Text(), nullable=True),
    sa.Column('run_attempts', sa.Integer(), nullable=False, server_default='0'),
    sa.PrimaryKeyConstraint('run_date')
    )


def downgrade() -> None:
    op.drop_table('auto_checkout_runs')
    op.drop_index('idx_student_payment_schedule_student_due', table_name='student_payment_schedule')
    op.drop_table('student_payment_schedule')
    op.drop_index('idx_student_instructivos_student', table_name='student_instructivos')
    op.drop_table('student_instructivos')
    op.drop_index('idx_exam_appointments_time', table_name='exam_appointments')
    op.drop_index('idx_exam_appointments_student', table_name='exam_appointments')
    op.drop_table('exam_appointments')
    op.drop_index('idx_student_notes_student', table_name='student_notes')
    op.drop_table('student_notes')
    op.drop_index('idx_student_attendance_student_checkin', table_name='student_attendance')
    op.drop_table('student_attendance')
    op.drop_table('student_flags')
    op.drop_index('idx_students_full_name', table_name='students')
    op.drop_table('students')
    op.drop_index('idx_payroll_audit_staff_day', table_name='payroll_audit_events')
    op.drop_table('payroll_audit_events')
    op.drop_table('payroll_month_payments')
    op.drop_table('payroll_day_approvals')
    op.drop_index('idx_staff_attendance_open', table_name='staff_attendance')
    op.drop_index('idx_staff_attendance_staff_checkin', table_name='staff_attendance')
    op.drop_table('staff_attendance')
    op.drop_table('staff_members')
