"""Initial migration - create accounting_periods, incomes and outcomes tables

Revision ID: 001_initial
Revises: 
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _closing_columns():
    return [
        sa.Column('accounting_period_id', sa.String(36), nullable=True),
        sa.Column('is_closed', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('closed_at', sa.DateTime(), nullable=True),
    ]


def upgrade() -> None:
    op.create_table(
        'accounting_periods',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('commerce_id', sa.String(255), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('start_date', sa.DateTime(), nullable=False),
        sa.Column('end_date', sa.DateTime(), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='OPEN'),
        sa.Column('totals_json', sa.Text(), nullable=True),
        sa.Column('reconciliation_data_json', sa.Text(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_by', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('closed_by', sa.String(255), nullable=True),
        sa.Column('closed_at', sa.DateTime(), nullable=True),
        sa.Column('reopened_by', sa.String(255), nullable=True),
        sa.Column('reopened_at', sa.DateTime(), nullable=True),
        sa.Column('locked_by', sa.String(255), nullable=True),
        sa.Column('locked_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_accounting_periods_commerce_id', 'accounting_periods', ['commerce_id'])
    op.create_index('ix_accounting_periods_status', 'accounting_periods', ['status'])

    op.create_table(
        'incomes',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('commerce_id', sa.String(255), nullable=False),
        sa.Column('client_id', sa.String(255), nullable=True),
        sa.Column('amount', sa.Numeric(14, 2), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='PENDING'),
        sa.Column('professional_id', sa.String(255), nullable=True),
        sa.Column('professional_commission', sa.Numeric(14, 2), nullable=False, server_default='0'),
        sa.Column('commission_paid', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('commission_payment_id', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('paid_at', sa.DateTime(), nullable=True),
        *_closing_columns(),
        sa.Column('refund_metadata_json', sa.Text(), nullable=True),
    )
    op.create_index('ix_incomes_commerce_id', 'incomes', ['commerce_id'])
    op.create_index('ix_incomes_paid_at', 'incomes', ['paid_at'])
    op.create_index('ix_incomes_accounting_period_id', 'incomes', ['accounting_period_id'])

    op.create_table(
        'outcomes',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('commerce_id', sa.String(255), nullable=False),
        sa.Column('amount', sa.Numeric(14, 2), nullable=False),
        sa.Column('concept_type', sa.String(100), nullable=True),
        sa.Column('type', sa.String(100), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('beneficiary', sa.String(255), nullable=True),
        sa.Column('client_id', sa.String(255), nullable=True),
        sa.Column('auxiliary_id', sa.String(36), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='PENDING'),
        sa.Column('paid_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        *_closing_columns(),
    )
    op.create_index('ix_outcomes_commerce_id', 'outcomes', ['commerce_id'])
    op.create_index('ix_outcomes_auxiliary_id', 'outcomes', ['auxiliary_id'])
    op.create_index('ix_outcomes_accounting_period_id', 'outcomes', ['accounting_period_id'])


def downgrade() -> None:
    op.drop_index('ix_outcomes_accounting_period_id', table_name='outcomes')
    op.drop_index('ix_outcomes_auxiliary_id', table_name='outcomes')
    op.drop_index('ix_outcomes_commerce_id', table_name='outcomes')

    op.drop_index('ix_incomes_accounting_period_id', table_name='incomes')
    op.drop_index('ix_incomes_paid_at', table_name='incomes')
    op.drop_index('ix_incomes_commerce_id', table_name='incomes')

    op.drop_index('ix_accounting_periods_status', table_name='accounting_periods')
    op.drop_index('ix_accounting_periods_commerce_id', table_name='accounting_periods')

    op.drop_table('outcomes')
    op.drop_table('incomes')
    op.drop_table('accounting_periods')
