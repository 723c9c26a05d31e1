"""create schedules, appointments and wallet ledger tables

Revision ID: a1c3e5f7b9d2
Revises:
Create Date: 2026-03-01 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'a1c3e5f7b9d2'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'schedules',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('doctor_id', sa.Integer(), nullable=False),
        sa.Column('clinic_id', sa.Integer(), nullable=False),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('start_time', sa.Time(), nullable=False),
        sa.Column('end_time', sa.Time(), nullable=False),
        sa.Column('max_tokens', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='active'),
        sa.Column('cancel_reason', sa.String(length=500), nullable=True),
        sa.Column('last_token_number', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.CheckConstraint('max_tokens >= 0', name='ck_schedules_max_tokens_non_negative'),
        sa.CheckConstraint(
            "cancel_reason IS NULL OR status = 'cancelled'",
            name='ck_schedules_cancel_reason_terminal',
        ),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_schedules_id', 'schedules', ['id'])
    op.create_index('idx_schedules_doctor_clinic_date', 'schedules', ['doctor_id', 'clinic_id', 'date'])
    op.create_index('idx_schedules_date', 'schedules', ['date'])

    op.create_table(
        'appointments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('schedule_id', sa.Integer(), nullable=False),
        sa.Column('doctor_id', sa.Integer(), nullable=False),
        sa.Column('clinic_id', sa.Integer(), nullable=False),
        sa.Column('patient_id', sa.Integer(), nullable=True),
        sa.Column('guest_name', sa.String(length=255), nullable=True),
        sa.Column('guest_phone', sa.String(length=50), nullable=True),
        sa.Column('token_number', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='scheduled'),
        sa.Column('status_notes', sa.String(length=500), nullable=True),
        sa.Column('consultation_fee', sa.Numeric(10, 2), nullable=False),
        sa.Column('is_paid', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('is_walk_in', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('has_been_refunded', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('refund_amount', sa.Numeric(10, 2), nullable=True),
        sa.Column('refunded_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('is_eligible_for_refund', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('actual_start_time', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('actual_end_time', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['schedule_id'], ['schedules.id'], ondelete='RESTRICT'),
        sa.UniqueConstraint('schedule_id', 'token_number', name='uq_appointments_schedule_token'),
        sa.CheckConstraint(
            '(patient_id IS NULL AND is_walk_in) OR (patient_id IS NOT NULL AND NOT is_walk_in)',
            name='ck_appointments_walk_in_has_no_patient',
        ),
        sa.CheckConstraint(
            'NOT has_been_refunded OR (refund_amount IS NOT NULL AND NOT is_eligible_for_refund)',
            name='ck_appointments_refund_guard',
        ),
        sa.CheckConstraint('token_number > 0', name='ck_appointments_token_positive'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_appointments_id', 'appointments', ['id'])
    op.create_index('idx_appointments_schedule_status', 'appointments', ['schedule_id', 'status'])
    op.create_index('idx_appointments_doctor_clinic', 'appointments', ['doctor_id', 'clinic_id'])
    op.create_index('idx_appointments_patient', 'appointments', ['patient_id'])
    op.create_index(
        'idx_appointments_refund_pending', 'appointments', ['is_eligible_for_refund', 'has_been_refunded']
    )

    op.create_table(
        'wallets',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('patient_id', sa.Integer(), nullable=False),
        sa.Column('balance', sa.Numeric(10, 2), nullable=False, server_default='0.00'),
        sa.Column('total_earned', sa.Numeric(10, 2), nullable=False, server_default='0.00'),
        sa.Column('total_spent', sa.Numeric(10, 2), nullable=False, server_default='0.00'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.CheckConstraint('balance >= 0', name='ck_wallets_balance_non_negative'),
        sa.CheckConstraint(
            'ABS(balance - (total_earned - total_spent)) < 0.005',
            name='ck_wallets_balance_matches_totals',
        ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('patient_id'),
    )
    op.create_index('ix_wallets_id', 'wallets', ['id'])

    op.create_table(
        'wallet_transactions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('wallet_id', sa.Integer(), nullable=False),
        sa.Column('transaction_type', sa.String(length=40), nullable=False),
        sa.Column('amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('is_credit', sa.Boolean(), nullable=False),
        sa.Column('previous_balance', sa.Numeric(10, 2), nullable=False),
        sa.Column('new_balance', sa.Numeric(10, 2), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='completed'),
        sa.Column('description', sa.String(length=500), nullable=False),
        sa.Column('related_appointment_id', sa.Integer(), nullable=True),
        sa.Column('related_schedule_id', sa.Integer(), nullable=True),
        sa.Column('processed_by', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['wallet_id'], ['wallets.id'], ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['related_appointment_id'], ['appointments.id'], ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['related_schedule_id'], ['schedules.id'], ondelete='RESTRICT'),
        # At most one credit (refund) per appointment; NULL appointment ids never collide
        sa.UniqueConstraint(
            'related_appointment_id', 'is_credit', name='uq_wallet_transactions_appointment_direction'
        ),
        sa.CheckConstraint('amount > 0', name='ck_wallet_transactions_amount_positive'),
        sa.CheckConstraint('new_balance >= 0', name='ck_wallet_transactions_new_balance_non_negative'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_wallet_transactions_id', 'wallet_transactions', ['id'])
    op.create_index(
        'idx_wallet_transactions_wallet_created', 'wallet_transactions', ['wallet_id', 'created_at', 'id']
    )
    op.create_index('idx_wallet_transactions_appointment', 'wallet_transactions', ['related_appointment_id'])


def downgrade() -> None:
    op.drop_index('idx_wallet_transactions_appointment', table_name='wallet_transactions')
    op.drop_index('idx_wallet_transactions_wallet_created', table_name='wallet_transactions')
    op.drop_index('ix_wallet_transactions_id', table_name='wallet_transactions')
    op.drop_table('wallet_transactions')

    op.drop_index('ix_wallets_id', table_name='wallets')
    op.drop_table('wallets')

    op.drop_index('idx_appointments_refund_pending', table_name='appointments')
    op.drop_index('idx_appointments_patient', table_name='appointments')
    op.drop_index('idx_appointments_doctor_clinic', table_name='appointments')
    op.drop_index('idx_appointments_schedule_status', table_name='appointments')
    op.drop_index('ix_appointments_id', table_name='appointments')
    op.drop_table('appointments')

    op.drop_index('idx_schedules_date', table_name='schedules')
    op.drop_index('idx_schedules_doctor_clinic_date', table_name='schedules')
    op.drop_index('ix_schedules_id', table_name='schedules')
    op.drop_table('schedules')
