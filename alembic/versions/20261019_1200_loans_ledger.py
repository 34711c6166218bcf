"""add cooperative membership, loan and ledger tables

Revision ID: 20261019_1200_loans_ledger
Revises:
Create Date: 2026-10-19 12:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261019_1200_loans_ledger'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Create cooperatives table
    op.create_table(
        'cooperatives',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='NGN'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_cooperatives_id'), 'cooperatives', ['id'], unique=False)

    # Create members table
    op.create_table(
        'members',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('cooperative_id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('first_name', sa.String(length=100), nullable=False),
        sa.Column('last_name', sa.String(length=100), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('role', sa.Enum('OWNER', 'ADMIN', 'MODERATOR', 'MEMBER', name='memberrole'), nullable=False),
        sa.Column('permissions', sa.Text(), nullable=True),
        sa.Column('status', sa.Enum('PENDING', 'ACTIVE', 'SUSPENDED', 'REMOVED', name='memberstatus'), nullable=False),
        sa.Column('joined_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['cooperative_id'], ['cooperatives.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('cooperative_id', 'user_id', name='uq_member_cooperative_user')
    )
    op.create_index(op.f('ix_members_id'), 'members', ['id'], unique=False)
    op.create_index(op.f('ix_members_cooperative_id'), 'members', ['cooperative_id'], unique=False)
    op.create_index(op.f('ix_members_user_id'), 'members', ['user_id'], unique=False)
    op.create_index(op.f('ix_members_status'), 'members', ['status'], unique=False)

    # Create loan_types table
    op.create_table(
        'loan_types',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('cooperative_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('min_amount', sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column('max_amount', sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column('min_duration', sa.Integer(), nullable=False),
        sa.Column('max_duration', sa.Integer(), nullable=False),
        sa.Column('interest_rate', sa.Numeric(precision=5, scale=2), nullable=False, server_default='0'),
        sa.Column('interest_mode', sa.Enum('FLAT', 'REDUCING_BALANCE', name='interestmode'), nullable=False),
        sa.Column('application_fee', sa.Numeric(precision=15, scale=2), nullable=False, server_default='0'),
        sa.Column('deduct_interest_upfront', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('max_active_loans', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('requires_guarantor', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('min_guarantors', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('requires_multiple_approvals', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('min_approvers', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('created_by', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['cooperative_id'], ['cooperatives.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('cooperative_id', 'name', name='uq_loan_type_cooperative_name')
    )
    op.create_index(op.f('ix_loan_types_id'), 'loan_types', ['id'], unique=False)
    op.create_index(op.f('ix_loan_types_cooperative_id'), 'loan_types', ['cooperative_id'], unique=False)

    # Create loans table
    op.create_table(
        'loans',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('cooperative_id', sa.Integer(), nullable=False),
        sa.Column('member_id', sa.Integer(), nullable=False),
        sa.Column('loan_type_id', sa.Integer(), nullable=True),
        sa.Column('amount', sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column('purpose', sa.String(length=500), nullable=False),
        sa.Column('duration', sa.Integer(), nullable=False),
        sa.Column('interest_rate', sa.Numeric(precision=5, scale=2), nullable=False, server_default='0'),
        sa.Column('interest_amount', sa.Numeric(precision=15, scale=2), nullable=False, server_default='0'),
        sa.Column('monthly_repayment', sa.Numeric(precision=15, scale=2), nullable=False, server_default='0'),
        sa.Column('total_repayment', sa.Numeric(precision=15, scale=2), nullable=False, server_default='0'),
        sa.Column('amount_repaid', sa.Numeric(precision=15, scale=2), nullable=False, server_default='0'),
        sa.Column('outstanding_balance', sa.Numeric(precision=15, scale=2), nullable=False, server_default='0'),
        sa.Column('status', sa.Enum('PENDING', 'APPROVED', 'REJECTED', 'DISBURSED', 'REPAYING',
                                    'COMPLETED', 'DEFAULTED', name='loanstatus'), nullable=False),
        sa.Column('initiated_by', sa.Enum('MEMBER', 'ADMIN', name='initiatorkind'), nullable=False),
        sa.Column('initiated_by_user_id', sa.Integer(), nullable=True),
        sa.Column('reviewed_by', sa.Integer(), nullable=True),
        sa.Column('reviewed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('rejection_reason', sa.Text(), nullable=True),
        sa.Column('application_fee', sa.Numeric(precision=15, scale=2), nullable=False, server_default='0'),
        sa.Column('interest_deducted_upfront', sa.Numeric(precision=15, scale=2), nullable=False, server_default='0'),
        sa.Column('net_disbursement_amount', sa.Numeric(precision=15, scale=2), nullable=True),
        sa.Column('amount_disbursed', sa.Numeric(precision=15, scale=2), nullable=True),
        sa.Column('deduction_start_date', sa.Date(), nullable=True),
        sa.Column('requested_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('disbursed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('defaulted_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['cooperative_id'], ['cooperatives.id'], ),
        sa.ForeignKeyConstraint(['member_id'], ['members.id'], ),
        sa.ForeignKeyConstraint(['loan_type_id'], ['loan_types.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_loans_id'), 'loans', ['id'], unique=False)
    op.create_index(op.f('ix_loans_cooperative_id'), 'loans', ['cooperative_id'], unique=False)
    op.create_index(op.f('ix_loans_member_id'), 'loans', ['member_id'], unique=False)
    op.create_index(op.f('ix_loans_loan_type_id'), 'loans', ['loan_type_id'], unique=False)
    op.create_index(op.f('ix_loans_status'), 'loans', ['status'], unique=False)

    # Create loan_guarantors table
    op.create_table(
        'loan_guarantors',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('loan_id', sa.Integer(), nullable=False),
        sa.Column('guarantor_member_id', sa.Integer(), nullable=False),
        sa.Column('status', sa.Enum('PENDING', 'APPROVED', 'REJECTED', name='guarantorstatus'), nullable=False),
        sa.Column('responded_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('rejection_reason', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['loan_id'], ['loans.id'], ),
        sa.ForeignKeyConstraint(['guarantor_member_id'], ['members.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('loan_id', 'guarantor_member_id', name='uq_loan_guarantor')
    )
    op.create_index(op.f('ix_loan_guarantors_id'), 'loan_guarantors', ['id'], unique=False)
    op.create_index(op.f('ix_loan_guarantors_loan_id'), 'loan_guarantors', ['loan_id'], unique=False)
    op.create_index(
        op.f('ix_loan_guarantors_guarantor_member_id'), 'loan_guarantors', ['guarantor_member_id'], unique=False
    )

    # Create loan_approvals table
    op.create_table(
        'loan_approvals',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('loan_id', sa.Integer(), nullable=False),
        sa.Column('approver_id', sa.Integer(), nullable=False),
        sa.Column('decision', sa.Enum('APPROVED', 'REJECTED', name='approvaldecision'), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['loan_id'], ['loans.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('loan_id', 'approver_id', name='uq_loan_approver')
    )
    op.create_index(op.f('ix_loan_approvals_id'), 'loan_approvals', ['id'], unique=False)
    op.create_index(op.f('ix_loan_approvals_loan_id'), 'loan_approvals', ['loan_id'], unique=False)

    # Create loan_repayment_schedules table
    op.create_table(
        'loan_repayment_schedules',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('loan_id', sa.Integer(), nullable=False),
        sa.Column('installment_number', sa.Integer(), nullable=False),
        sa.Column('due_date', sa.Date(), nullable=False),
        sa.Column('principal_amount', sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column('interest_amount', sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column('total_amount', sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column('paid_amount', sa.Numeric(precision=15, scale=2), nullable=False, server_default='0'),
        sa.Column('status', sa.Enum('PENDING', 'PARTIAL', 'PAID', name='schedulestatus'), nullable=False),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['loan_id'], ['loans.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('loan_id', 'installment_number', name='uq_loan_installment')
    )
    op.create_index(op.f('ix_loan_repayment_schedules_id'), 'loan_repayment_schedules', ['id'], unique=False)
    op.create_index(
        op.f('ix_loan_repayment_schedules_loan_id'), 'loan_repayment_schedules', ['loan_id'], unique=False
    )

    # Create loan_repayments table
    op.create_table(
        'loan_repayments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('loan_id', sa.Integer(), nullable=False),
        sa.Column('amount', sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column('payment_method', sa.String(length=50), nullable=True),
        sa.Column('payment_date', sa.Date(), nullable=True),
        sa.Column('receipt_number', sa.String(length=100), nullable=True),
        sa.Column('payment_reference', sa.String(length=100), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('status', sa.Enum('PENDING', 'CONFIRMED', 'REJECTED', name='repaymentstatus'), nullable=False),
        sa.Column('submitted_by', sa.Integer(), nullable=False),
        sa.Column('reviewed_by', sa.Integer(), nullable=True),
        sa.Column('reviewed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('rejection_reason', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['loan_id'], ['loans.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_loan_repayments_id'), 'loan_repayments', ['id'], unique=False)
    op.create_index(op.f('ix_loan_repayments_loan_id'), 'loan_repayments', ['loan_id'], unique=False)
    op.create_index(op.f('ix_loan_repayments_status'), 'loan_repayments', ['status'], unique=False)
    op.create_index(op.f('ix_loan_repayments_created_at'), 'loan_repayments', ['created_at'], unique=False)

    # Create ledger_entries table
    op.create_table(
        'ledger_entries',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('cooperative_id', sa.Integer(), nullable=False),
        sa.Column('member_id', sa.Integer(), nullable=True),
        sa.Column('type', sa.Enum('LOAN_DISBURSEMENT', 'LOAN_REPAYMENT', 'MANUAL_CREDIT', 'MANUAL_DEBIT',
                                  'CONTRIBUTION', name='ledgerentrytype'), nullable=False),
        sa.Column('amount', sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column('balance_after', sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column('reference_type', sa.String(length=50), nullable=True),
        sa.Column('reference_id', sa.Integer(), nullable=True),
        sa.Column('description', sa.String(length=500), nullable=True),
        sa.Column('created_by', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['cooperative_id'], ['cooperatives.id'], ),
        sa.ForeignKeyConstraint(['member_id'], ['members.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_ledger_entries_id'), 'ledger_entries', ['id'], unique=False)
    op.create_index(op.f('ix_ledger_entries_cooperative_id'), 'ledger_entries', ['cooperative_id'], unique=False)
    op.create_index(op.f('ix_ledger_entries_member_id'), 'ledger_entries', ['member_id'], unique=False)
    op.create_index(op.f('ix_ledger_entries_type'), 'ledger_entries', ['type'], unique=False)
    op.create_index(op.f('ix_ledger_entries_created_at'), 'ledger_entries', ['created_at'], unique=False)
    op.create_index('ix_ledger_reference', 'ledger_entries', ['reference_type', 'reference_id'], unique=False)

    # Create notifications table
    op.create_table(
        'notifications',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('cooperative_id', sa.Integer(), nullable=True),
        sa.Column('type', sa.Enum('LOAN_REQUESTED', 'GUARANTOR_REQUESTED', 'GUARANTOR_RESPONDED',
                                  'LOAN_READY_FOR_REVIEW', 'APPROVAL_PROGRESS', 'LOAN_APPROVED',
                                  'LOAN_REJECTED', 'LOAN_DISBURSED', 'LOAN_DEFAULTED',
                                  'REPAYMENT_SUBMITTED', 'REPAYMENT_RECORDED', 'REPAYMENT_REJECTED',
                                  'LOAN_COMPLETED', name='notificationtype'), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('body', sa.Text(), nullable=False),
        sa.Column('data', sa.JSON(), nullable=True),
        sa.Column('status', sa.Enum('PENDING', 'DELIVERED', 'FAILED', 'READ', name='notificationstatus'),
                  nullable=False),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('delivered_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('read_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['cooperative_id'], ['cooperatives.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_notifications_id'), 'notifications', ['id'], unique=False)
    op.create_index(op.f('ix_notifications_user_id'), 'notifications', ['user_id'], unique=False)
    op.create_index(op.f('ix_notifications_cooperative_id'), 'notifications', ['cooperative_id'], unique=False)
    op.create_index(op.f('ix_notifications_type'), 'notifications', ['type'], unique=False)


def downgrade() -> None:
    op.drop_table('notifications')
    op.drop_table('ledger_entries')
    op.drop_table('loan_repayments')
    op.drop_table('loan_repayment_schedules')
    op.drop_table('loan_approvals')
    op.drop_table('loan_guarantors')
    op.drop_table('loans')
    op.drop_table('loan_types')
    op.drop_table('members')
    op.drop_table('cooperatives')

    for enum_name in (
        'notificationstatus', 'notificationtype', 'ledgerentrytype', 'repaymentstatus', 'schedulestatus',
        'approvaldecision', 'guarantorstatus', 'initiatorkind', 'loanstatus', 'interestmode',
        'memberstatus', 'memberrole'
    ):
        op.execute(f'DROP TYPE IF EXISTS {enum_name}')
