"""add payment engine tables

Revision ID: 3a1f7c9e2b40
Revises:
Create Date: 2025-10-12 09:30:11.204518

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '3a1f7c9e2b40'
down_revision = None
branch_labels = None
depends_on = None

AMOUNT = sa.Numeric(36, 18)

payment_status = sa.Enum('unpaid', 'processing', 'paid', 'failed', name='paymentstatusenum')
transaction_type = sa.Enum('task_payment', 'salary_payment', name='transactiontypeenum')
transaction_status = sa.Enum('pending', 'confirmed', 'failed', name='transactionstatusenum')
frequency = sa.Enum('weekly', 'biweekly', 'monthly', name='frequencyenum')
recurring_status = sa.Enum('active', 'paused', name='recurringstatusenum')


def upgrade():
    op.create_table(
        'users',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('email', sa.String(128), nullable=True, unique=True),
        sa.Column('wallet_address', sa.String(66), nullable=True, unique=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
    )

    op.create_table(
        'projects',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('released_funds', AMOUNT, nullable=False, server_default='0'),
        sa.Column('minimum_balance', AMOUNT, nullable=True),
        sa.Column('escrow_funded', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    )

    op.create_table(
        'user_roles',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('user_id', sa.String(36), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('project_id', sa.String(36), sa.ForeignKey('projects.id'), nullable=False),
        sa.Column('role', sa.String(32), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.UniqueConstraint('user_id', 'project_id', name='uix_user_project'),
    )

    op.create_table(
        'project_escrows',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('project_id', sa.String(36), sa.ForeignKey('projects.id'), nullable=False, unique=True),
        sa.Column('escrow_address', sa.String(66), nullable=False, unique=True),
        sa.Column('encrypted_private_key', sa.Text(), nullable=False),
        sa.Column('initial_deposit', AMOUNT, nullable=False, server_default='0'),
        sa.Column('current_balance', AMOUNT, nullable=False, server_default='0'),
        sa.Column('status', sa.String(20), nullable=False, server_default='ACTIVE'),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    )

    op.create_table(
        'tasks',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('project_id', sa.String(36), sa.ForeignKey('projects.id'), nullable=False),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('payment_amount', AMOUNT, nullable=True),
        sa.Column('payment_status', payment_status, nullable=False, server_default='unpaid'),
        sa.Column('payment_tx_hash', sa.String(100), nullable=True),
        sa.Column('payment_job_id', sa.String(64), nullable=True),
        sa.Column('paid_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_tasks_project_id', 'tasks', ['project_id'])
    op.create_index('ix_tasks_payment_status', 'tasks', ['payment_status'])

    op.create_table(
        'recurring_payments',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('user_role_id', sa.String(36), sa.ForeignKey('user_roles.id'), nullable=False),
        sa.Column('project_id', sa.String(36), sa.ForeignKey('projects.id'), nullable=False),
        sa.Column('amount', AMOUNT, nullable=False),
        sa.Column('frequency', frequency, nullable=False),
        sa.Column('start_date', sa.DateTime(), nullable=False),
        sa.Column('end_date', sa.DateTime(), nullable=True),
        sa.Column('next_payment_date', sa.DateTime(), nullable=False),
        sa.Column('last_paid_date', sa.DateTime(), nullable=True),
        sa.Column('total_paid', AMOUNT, nullable=False, server_default='0'),
        sa.Column('payment_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('status', recurring_status, nullable=False, server_default='active'),
        sa.Column('pause_reason', sa.String(255), nullable=True),
        sa.Column('paused_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    )
    for column in ('user_role_id', 'project_id', 'next_payment_date', 'status'):
        op.create_index(f'ix_recurring_payments_{column}', 'recurring_payments', [column])

    op.create_table(
        'blockchain_transactions',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('tx_hash', sa.String(100), nullable=False, unique=True),
        sa.Column('type', transaction_type, nullable=False),
        sa.Column('amount', AMOUNT, nullable=False),
        sa.Column('fee', AMOUNT, nullable=True),
        sa.Column('from_address', sa.String(66), nullable=False),
        sa.Column('to_address', sa.String(66), nullable=False),
        sa.Column('project_id', sa.String(36), sa.ForeignKey('projects.id'), nullable=False),
        sa.Column('task_id', sa.String(36), sa.ForeignKey('tasks.id'), nullable=True),
        sa.Column('recurring_payment_id', sa.String(36), sa.ForeignKey('recurring_payments.id'), nullable=True),
        sa.Column('status', transaction_status, nullable=False, server_default='pending'),
        sa.Column('block_number', sa.BigInteger(), nullable=True),
        sa.Column('confirmations', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('note', sa.Text(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('submitted_at', sa.DateTime(), nullable=False),
        sa.Column('confirmed_at', sa.DateTime(), nullable=True),
        sa.Column('review_flagged_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    )
    for column in ('type', 'from_address', 'to_address', 'project_id', 'task_id', 'recurring_payment_id',
                   'status', 'submitted_at'):
        op.create_index(f'ix_blockchain_transactions_{column}', 'blockchain_transactions', [column])


def downgrade():
    op.drop_table('blockchain_transactions')
    op.drop_table('recurring_payments')
    op.drop_table('tasks')
    op.drop_table('project_escrows')
    op.drop_table('user_roles')
    op.drop_table('projects')
    op.drop_table('users')

    bind = op.get_bind()
    for enum_type in (recurring_status, frequency, transaction_status, transaction_type, payment_status):
        enum_type.drop(bind, checkfirst=True)
