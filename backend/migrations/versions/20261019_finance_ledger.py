"""Finance ledger: accounts, budgets, transactions, banking, petty cash

Revision ID: 20261019_finance
Revises:
Create Date: 2026-10-19

This migration adds:
1. Chart of accounts and financial years (with the single-row current-year pointer)
2. Vendors
3. Bank accounts and immutable bank transactions
4. Budgets, budget items and period allocations
5. Income and expense records
6. Petty-cash custodians and journal entries
7. Finance settings, document sequences and the finance event log
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261019_finance'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
    ]


def upgrade():
    # ==========================================================================
    # 1. ACCOUNT REGISTRY
    # ==========================================================================
    op.create_table('accounts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('code', sa.String(length=32), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('account_type', sa.String(length=16), nullable=False),
        sa.Column('parent_id', sa.Integer(), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        *_timestamps(),
        sa.ForeignKeyConstraint(['parent_id'], ['accounts.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('accounts', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_accounts_code'), ['code'], unique=True)
        batch_op.create_index(batch_op.f('ix_accounts_account_type'), ['account_type'], unique=False)
        batch_op.create_index(batch_op.f('ix_accounts_parent_id'), ['parent_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_accounts_is_active'), ['is_active'], unique=False)

    op.create_table('financial_years',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=64), nullable=False),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('end_date', sa.Date(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='draft'),
        sa.Column('closed_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint('start_date <= end_date', name='ck_financial_years_range'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('financial_years', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_financial_years_start_date'), ['start_date'], unique=False)
        batch_op.create_index(batch_op.f('ix_financial_years_end_date'), ['end_date'], unique=False)
        batch_op.create_index(batch_op.f('ix_financial_years_status'), ['status'], unique=False)

    op.create_table('financial_year_pointer',
        sa.Column('id', sa.Integer(), autoincrement=False, nullable=False),
        sa.Column('financial_year_id', sa.Integer(), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.CheckConstraint('id = 1', name='ck_financial_year_pointer_singleton'),
        sa.ForeignKeyConstraint(['financial_year_id'], ['financial_years.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('financial_year_id')
    )

    # ==========================================================================
    # 2. VENDORS
    # ==========================================================================
    op.create_table('vendors',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('vendor_code', sa.String(length=32), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('contact_person', sa.String(length=128), nullable=True),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('phone', sa.String(length=32), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('vendors', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_vendors_vendor_code'), ['vendor_code'], unique=True)
        batch_op.create_index(batch_op.f('ix_vendors_is_active'), ['is_active'], unique=False)

    # ==========================================================================
    # 3. BANKING
    # ==========================================================================
    op.create_table('bank_accounts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('account_number', sa.String(length=64), nullable=False),
        sa.Column('bank_name', sa.String(length=128), nullable=False),
        sa.Column('branch', sa.String(length=128), nullable=True),
        sa.Column('account_type', sa.String(length=16), nullable=False, server_default='current'),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='KES'),
        sa.Column('opening_balance_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('current_balance_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('account_number'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('bank_accounts', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_bank_accounts_is_active'), ['is_active'], unique=False)

    op.create_table('bank_transactions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('transaction_number', sa.String(length=32), nullable=False),
        sa.Column('transaction_type', sa.String(length=16), nullable=False),
        sa.Column('account_id', sa.Integer(), nullable=False),
        sa.Column('to_account_id', sa.Integer(), nullable=True),
        sa.Column('amount_cents', sa.BigInteger(), nullable=False),
        sa.Column('transaction_date', sa.Date(), nullable=False),
        sa.Column('reference_number', sa.String(length=64), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('idempotency_key', sa.String(length=128), nullable=True),
        sa.Column('created_by_user_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.CheckConstraint('amount_cents > 0', name='ck_bank_transactions_amount_positive'),
        sa.CheckConstraint(
            "(transaction_type = 'transfer' AND to_account_id IS NOT NULL AND to_account_id <> account_id)"
            " OR (transaction_type <> 'transfer' AND to_account_id IS NULL)",
            name='ck_bank_transactions_destination',
        ),
        sa.ForeignKeyConstraint(['account_id'], ['bank_accounts.id'], ),
        sa.ForeignKeyConstraint(['to_account_id'], ['bank_accounts.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('idempotency_key'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('bank_transactions', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_bank_transactions_transaction_number'), ['transaction_number'], unique=True)
        batch_op.create_index(batch_op.f('ix_bank_transactions_transaction_type'), ['transaction_type'], unique=False)
        batch_op.create_index(batch_op.f('ix_bank_transactions_to_account_id'), ['to_account_id'], unique=False)
        batch_op.create_index('ix_bank_transactions_account_date', ['account_id', 'transaction_date'], unique=False)

    # ==========================================================================
    # 4. BUDGETS
    # ==========================================================================
    op.create_table('budgets',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('budget_number', sa.String(length=32), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('financial_year_id', sa.Integer(), nullable=False),
        sa.Column('total_amount_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('spent_amount_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='draft'),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('created_by_user_id', sa.Integer(), nullable=True),
        sa.Column('approved_by_user_id', sa.Integer(), nullable=True),
        sa.Column('approved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('closed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        *_timestamps(),
        sa.CheckConstraint('total_amount_cents >= 0', name='ck_budgets_total_non_negative'),
        sa.ForeignKeyConstraint(['financial_year_id'], ['financial_years.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('budgets', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_budgets_budget_number'), ['budget_number'], unique=True)
        batch_op.create_index(batch_op.f('ix_budgets_financial_year_id'), ['financial_year_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_budgets_status'), ['status'], unique=False)

    op.create_table('budget_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('budget_id', sa.Integer(), nullable=False),
        sa.Column('account_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('allocated_amount_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('spent_amount_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('description', sa.Text(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint('allocated_amount_cents >= 0', name='ck_budget_items_allocated_non_negative'),
        sa.CheckConstraint('spent_amount_cents >= 0', name='ck_budget_items_spent_non_negative'),
        sa.ForeignKeyConstraint(['budget_id'], ['budgets.id'], ),
        sa.ForeignKeyConstraint(['account_id'], ['accounts.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('budget_items', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_budget_items_budget_id'), ['budget_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_budget_items_account_id'), ['account_id'], unique=False)

    op.create_table('budget_allocations',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('budget_id', sa.Integer(), nullable=False),
        sa.Column('period_start', sa.Date(), nullable=False),
        sa.Column('period_end', sa.Date(), nullable=False),
        sa.Column('allocated_amount_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('spent_amount_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('variance_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('notes', sa.Text(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint('period_start <= period_end', name='ck_budget_allocations_period'),
        sa.ForeignKeyConstraint(['budget_id'], ['budgets.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('budget_allocations', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_budget_allocations_budget_id'), ['budget_id'], unique=False)
        batch_op.create_index('ix_budget_allocations_period', ['period_start', 'period_end'], unique=False)

    # ==========================================================================
    # 5. INCOME AND EXPENSES
    # ==========================================================================
    op.create_table('income_records',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('income_number', sa.String(length=32), nullable=False),
        sa.Column('transaction_date', sa.Date(), nullable=False),
        sa.Column('account_id', sa.Integer(), nullable=False),
        sa.Column('financial_year_id', sa.Integer(), nullable=True),
        sa.Column('amount_cents', sa.BigInteger(), nullable=False),
        sa.Column('vat_amount_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('reference_number', sa.String(length=64), nullable=True),
        sa.Column('payment_method', sa.String(length=32), nullable=True),
        sa.Column('student_id', sa.String(length=64), nullable=True),
        sa.Column('bank_account_id', sa.Integer(), nullable=True),
        sa.Column('bank_transaction_id', sa.Integer(), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='completed'),
        sa.Column('created_by_user_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.CheckConstraint('amount_cents > 0', name='ck_income_records_amount_positive'),
        sa.CheckConstraint('vat_amount_cents >= 0', name='ck_income_records_vat_non_negative'),
        sa.ForeignKeyConstraint(['account_id'], ['accounts.id'], ),
        sa.ForeignKeyConstraint(['financial_year_id'], ['financial_years.id'], ),
        sa.ForeignKeyConstraint(['bank_account_id'], ['bank_accounts.id'], ),
        sa.ForeignKeyConstraint(['bank_transaction_id'], ['bank_transactions.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('reference_number'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('income_records', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_income_records_income_number'), ['income_number'], unique=True)
        batch_op.create_index(batch_op.f('ix_income_records_transaction_date'), ['transaction_date'], unique=False)
        batch_op.create_index(batch_op.f('ix_income_records_financial_year_id'), ['financial_year_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_income_records_student_id'), ['student_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_income_records_status'), ['status'], unique=False)
        batch_op.create_index('ix_income_records_account_date', ['account_id', 'transaction_date'], unique=False)

    op.create_table('expense_records',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('expense_number', sa.String(length=32), nullable=False),
        sa.Column('transaction_date', sa.Date(), nullable=False),
        sa.Column('account_id', sa.Integer(), nullable=False),
        sa.Column('financial_year_id', sa.Integer(), nullable=True),
        sa.Column('vendor_id', sa.Integer(), nullable=True),
        sa.Column('amount_cents', sa.BigInteger(), nullable=False),
        sa.Column('vat_amount_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('reference_number', sa.String(length=64), nullable=True),
        sa.Column('payment_method', sa.String(length=32), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='pending'),
        sa.Column('auto_approved', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('approved_by_user_id', sa.Integer(), nullable=True),
        sa.Column('approved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('rejected_by_user_id', sa.Integer(), nullable=True),
        sa.Column('rejected_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('rejection_reason', sa.Text(), nullable=True),
        sa.Column('paid_by_user_id', sa.Integer(), nullable=True),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('bank_account_id', sa.Integer(), nullable=True),
        sa.Column('bank_transaction_id', sa.Integer(), nullable=True),
        sa.Column('created_by_user_id', sa.Integer(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint('amount_cents > 0', name='ck_expense_records_amount_positive'),
        sa.CheckConstraint('vat_amount_cents >= 0', name='ck_expense_records_vat_non_negative'),
        sa.ForeignKeyConstraint(['account_id'], ['accounts.id'], ),
        sa.ForeignKeyConstraint(['financial_year_id'], ['financial_years.id'], ),
        sa.ForeignKeyConstraint(['vendor_id'], ['vendors.id'], ),
        sa.ForeignKeyConstraint(['bank_account_id'], ['bank_accounts.id'], ),
        sa.ForeignKeyConstraint(['bank_transaction_id'], ['bank_transactions.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('expense_records', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_expense_records_expense_number'), ['expense_number'], unique=True)
        batch_op.create_index(batch_op.f('ix_expense_records_transaction_date'), ['transaction_date'], unique=False)
        batch_op.create_index(batch_op.f('ix_expense_records_financial_year_id'), ['financial_year_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_expense_records_vendor_id'), ['vendor_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_expense_records_reference_number'), ['reference_number'], unique=False)
        batch_op.create_index(batch_op.f('ix_expense_records_status'), ['status'], unique=False)
        batch_op.create_index('ix_expense_records_account_date', ['account_id', 'transaction_date'], unique=False)

    # ==========================================================================
    # 6. PETTY CASH
    # ==========================================================================
    op.create_table('petty_cash_custodians',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('custodian', sa.String(length=128), nullable=False),
        sa.Column('current_balance_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('custodian'),
        sqlite_autoincrement=True
    )

    op.create_table('petty_cash_entries',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('transaction_number', sa.String(length=32), nullable=False),
        sa.Column('custodian_id', sa.Integer(), nullable=False),
        sa.Column('transaction_date', sa.Date(), nullable=False),
        sa.Column('entry_type', sa.String(length=16), nullable=False),
        sa.Column('amount_cents', sa.BigInteger(), nullable=False),
        sa.Column('category', sa.String(length=64), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('receipt_number', sa.String(length=64), nullable=True),
        sa.Column('balance_before_cents', sa.BigInteger(), nullable=False),
        sa.Column('balance_after_cents', sa.BigInteger(), nullable=False),
        sa.Column('created_by_user_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.CheckConstraint('amount_cents > 0', name='ck_petty_cash_entries_amount_positive'),
        sa.ForeignKeyConstraint(['custodian_id'], ['petty_cash_custodians.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('petty_cash_entries', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_petty_cash_entries_transaction_number'), ['transaction_number'], unique=True)
        batch_op.create_index(batch_op.f('ix_petty_cash_entries_transaction_date'), ['transaction_date'], unique=False)
        batch_op.create_index(batch_op.f('ix_petty_cash_entries_entry_type'), ['entry_type'], unique=False)
        batch_op.create_index('ix_petty_cash_entries_custodian_id', ['custodian_id', 'id'], unique=False)

    # ==========================================================================
    # 7. SETTINGS, SEQUENCES, EVENTS
    # ==========================================================================
    op.create_table('finance_settings',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('key', sa.String(length=128), nullable=False),
        sa.Column('value_json', sa.JSON(), nullable=True),
        sa.Column('value_type', sa.String(length=16), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('updated_by_user_id', sa.Integer(), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('finance_settings', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_finance_settings_key'), ['key'], unique=True)

    op.create_table('document_sequences',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('document_type', sa.String(length=32), nullable=False),
        sa.Column('next_number', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('document_sequences', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_document_sequences_document_type'), ['document_type'], unique=True)

    op.create_table('finance_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('event_type', sa.String(length=64), nullable=False),
        sa.Column('event_category', sa.String(length=32), nullable=False),
        sa.Column('entity_type', sa.String(length=32), nullable=False),
        sa.Column('entity_id', sa.Integer(), nullable=False),
        sa.Column('actor_user_id', sa.Integer(), nullable=True),
        sa.Column('amount_cents', sa.BigInteger(), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('note', sa.Text(), nullable=True),
        sa.Column('payload', sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('finance_events', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_finance_events_event_type'), ['event_type'], unique=False)
        batch_op.create_index(batch_op.f('ix_finance_events_event_category'), ['event_category'], unique=False)
        batch_op.create_index(batch_op.f('ix_finance_events_occurred_at'), ['occurred_at'], unique=False)
        batch_op.create_index('ix_finance_events_entity', ['entity_type', 'entity_id'], unique=False)


def downgrade():
    for table in (
        'finance_events',
        'document_sequences',
        'finance_settings',
        'petty_cash_entries',
        'petty_cash_custodians',
        'expense_records',
        'income_records',
        'budget_allocations',
        'budget_items',
        'budgets',
        'bank_transactions',
        'bank_accounts',
        'vendors',
        'financial_year_pointer',
        'financial_years',
        'accounts',
    ):
        op.drop_table(table)
