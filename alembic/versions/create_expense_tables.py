"""create expenses, expense_instances and payment_transactions

Revision ID: create_expense_tables
Revises:
Create Date: 2026-10-17

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = 'create_expense_tables'
down_revision = None
branch_labels = None
depends_on = None

instance_type = sa.Enum('normal', 'recurring', 'financing', name='instancetype')
payment_type = sa.Enum('early_payment', 'partial_payment', name='paymenttype')

def upgrade():
    op.create_table(
        'expenses',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), nullable=False, index=True),
        sa.Column('title', sa.String(length=150), nullable=False),
        sa.Column('description', sa.String(length=500), nullable=True),
        sa.Column('notes', sa.String(length=1000), nullable=True),
        sa.Column('amount', sa.Float(), nullable=False),
        sa.Column('due_date', sa.Date(), nullable=False),
        sa.Column('is_paid', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('is_recurring', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('recurring_start_date', sa.Date(), nullable=True),
        sa.Column('recurring_end_date', sa.Date(), nullable=True),
        sa.Column('installments', sa.Integer(), nullable=True),
        sa.Column('current_installment', sa.Integer(), nullable=True),
        sa.Column('is_financing', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('financing_total_amount', sa.Float(), nullable=True),
        sa.Column('financing_months_total', sa.Integer(), nullable=True),
        sa.Column('financing_paid_amount', sa.Float(), nullable=False, server_default='0'),
        sa.Column('financing_discount_amount', sa.Float(), nullable=False, server_default='0'),
        sa.Column('financing_months_paid', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('early_payment_discount_rate', sa.Float(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        'expense_instances',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('expense_id', sa.Uuid(), sa.ForeignKey('expenses.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('user_id', sa.Uuid(), nullable=False, index=True),
        sa.Column('instance_type', instance_type, nullable=False),
        sa.Column('installment_number', sa.Integer(), nullable=True),
        sa.Column('amount', sa.Float(), nullable=False),
        sa.Column('instance_date', sa.Date(), nullable=False, index=True),
        sa.Column('is_paid', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index(
        'uq_expense_instances_natural_key',
        'expense_instances',
        ['expense_id', 'instance_date', 'instance_type', sa.text('coalesce(installment_number, 0)')],
        unique=True,
    )

    op.create_table(
        'payment_transactions',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('expense_id', sa.Uuid(), sa.ForeignKey('expenses.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('user_id', sa.Uuid(), nullable=False, index=True),
        sa.Column('payment_amount', sa.Float(), nullable=False),
        sa.Column('discount_amount', sa.Float(), nullable=False, server_default='0'),
        sa.Column('payment_type', payment_type, nullable=False),
        sa.Column('payment_date', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('notes', sa.String(length=255), nullable=True),
        sa.Column('idempotency_key', sa.String(length=64), nullable=True),
        sa.UniqueConstraint('expense_id', 'idempotency_key', name='uq_payment_transactions_idempotency'),
    )

def downgrade():
    op.drop_table('payment_transactions')
    op.drop_index('uq_expense_instances_natural_key', table_name='expense_instances')
    op.drop_table('expense_instances')
    op.drop_table('expenses')
    instance_type.drop(op.get_bind(), checkfirst=True)
    payment_type.drop(op.get_bind(), checkfirst=True)
