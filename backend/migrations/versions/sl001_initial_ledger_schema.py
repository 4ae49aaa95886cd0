"""Initial schema: organizations, ledger, wallets, gift cards, promotions, drawers, reconciliation

1. Creates 'organizations' as the tenant root
2. Creates the append-only 'ledger_entries' table
3. Creates the balance-bearing accounts (wallets, gift cards, drawer sessions),
   each with a version_id column for optimistic locking
4. Creates promotions, cash drawer and reconciliation tables
5. Adds the partial unique index that allows one live session per drawer

Revision ID: sl001_initial
Revises:
Create Date: 2026-10-18
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'sl001_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # ==========================================================================
    # TENANCY
    # ==========================================================================
    op.create_table('organizations',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('code', sa.String(length=32), nullable=True),
        sa.Column('default_currency', sa.String(length=3), nullable=False, server_default='CHF'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_organizations_code', 'organizations', ['code'], unique=True)
    op.create_index('ix_organizations_is_active', 'organizations', ['is_active'])

    # ==========================================================================
    # LEDGER (append-only)
    # ==========================================================================
    op.create_table('ledger_entries',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('org_id', sa.Integer(), nullable=False),
        sa.Column('account_type', sa.String(length=32), nullable=False),
        sa.Column('account_id', sa.Integer(), nullable=False),
        sa.Column('kind', sa.String(length=32), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=True),
        sa.Column('amount_delta_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('balance_before_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('balance_after_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('credit_type', sa.String(length=32), nullable=True),
        sa.Column('credit_delta', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('credits_before', sa.Integer(), nullable=True),
        sa.Column('credits_after', sa.Integer(), nullable=True),
        sa.Column('reference_type', sa.String(length=32), nullable=True),
        sa.Column('reference_id', sa.String(length=64), nullable=True),
        sa.Column('actor', sa.String(length=128), nullable=True),
        sa.Column('note', sa.String(length=255), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(['org_id'], ['organizations.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_ledger_entries_org_id', 'ledger_entries', ['org_id'])
    op.create_index('ix_ledger_entries_kind', 'ledger_entries', ['kind'])
    op.create_index('ix_ledger_entries_occurred_at', 'ledger_entries', ['occurred_at'])
    op.create_index('ix_ledger_entries_account', 'ledger_entries', ['account_type', 'account_id', 'occurred_at'])
    op.create_index('ix_ledger_entries_reference', 'ledger_entries', ['reference_type', 'reference_id'])
    op.create_index('ix_ledger_entries_wallet_credit', 'ledger_entries', ['account_id', 'credit_type'])

    # ==========================================================================
    # WALLETS
    # ==========================================================================
    op.create_table('wallets',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('org_id', sa.Integer(), nullable=False),
        sa.Column('customer_id', sa.Integer(), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False),
        sa.Column('balance_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='active'),
        sa.Column('last_entry_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['org_id'], ['organizations.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('org_id', 'customer_id', 'currency', name='uq_wallets_org_customer_currency'),
        sa.CheckConstraint('balance_cents >= 0', name='ck_wallets_balance_nonneg'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_wallets_org_id', 'wallets', ['org_id'])
    op.create_index('ix_wallets_customer_id', 'wallets', ['customer_id'])

    op.create_table('credit_lots',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('org_id', sa.Integer(), nullable=False),
        sa.Column('wallet_id', sa.Integer(), nullable=False),
        sa.Column('credit_type', sa.String(length=32), nullable=False),
        sa.Column('original_quantity', sa.Integer(), nullable=False),
        sa.Column('remaining_quantity', sa.Integer(), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('deactivated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('source_reference_type', sa.String(length=32), nullable=True),
        sa.Column('source_reference_id', sa.String(length=64), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['org_id'], ['organizations.id']),
        sa.ForeignKeyConstraint(['wallet_id'], ['wallets.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('remaining_quantity >= 0', name='ck_credit_lots_remaining_nonneg'),
        sa.CheckConstraint('remaining_quantity <= original_quantity', name='ck_credit_lots_remaining_le_original'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_credit_lots_org_id', 'credit_lots', ['org_id'])
    op.create_index('ix_credit_lots_wallet_id', 'credit_lots', ['wallet_id'])
    op.create_index('ix_credit_lots_expires_at', 'credit_lots', ['expires_at'])
    op.create_index('ix_credit_lots_wallet_type_active', 'credit_lots', ['wallet_id', 'credit_type', 'is_active'])

    # ==========================================================================
    # GIFT CARDS
    # ==========================================================================
    op.create_table('gift_cards',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('org_id', sa.Integer(), nullable=False),
        sa.Column('code', sa.String(length=32), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False),
        sa.Column('initial_amount_cents', sa.Integer(), nullable=False),
        sa.Column('balance_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='active'),
        sa.Column('purchaser_email', sa.String(length=255), nullable=True),
        sa.Column('recipient_email', sa.String(length=255), nullable=True),
        sa.Column('message', sa.Text(), nullable=True),
        sa.Column('breakage_recognized_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('breakage_recognized_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_entry_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['org_id'], ['organizations.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('code', name='uq_gift_cards_code'),
        sa.CheckConstraint('balance_cents >= 0', name='ck_gift_cards_balance_nonneg'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_gift_cards_org_id', 'gift_cards', ['org_id'])
    op.create_index('ix_gift_cards_expires_at', 'gift_cards', ['expires_at'])
    op.create_index('ix_gift_cards_is_active', 'gift_cards', ['is_active'])
    op.create_index('ix_gift_cards_org_status', 'gift_cards', ['org_id', 'status'])

    # ==========================================================================
    # PROMOTIONS
    # ==========================================================================
    op.create_table('price_rules',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('org_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('kind', sa.String(length=32), nullable=False),
        sa.Column('payload', sa.JSON(), nullable=False),
        sa.Column('coupon_code', sa.String(length=64), nullable=True),
        sa.Column('starts_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('ends_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('usage_limit', sa.Integer(), nullable=True),
        sa.Column('usage_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('created_by', sa.String(length=128), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['org_id'], ['organizations.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_price_rules_org_id', 'price_rules', ['org_id'])
    op.create_index('ix_price_rules_org_active', 'price_rules', ['org_id', 'is_active'])
    op.create_index('ix_price_rules_org_code', 'price_rules', ['org_id', 'coupon_code'])

    op.create_table('price_rule_redemptions',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('org_id', sa.Integer(), nullable=False),
        sa.Column('rule_id', sa.Integer(), nullable=False),
        sa.Column('order_ref', sa.String(length=64), nullable=False),
        sa.Column('discount_cents', sa.Integer(), nullable=True),
        sa.Column('committed_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['org_id'], ['organizations.id']),
        sa.ForeignKeyConstraint(['rule_id'], ['price_rules.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('rule_id', 'order_ref', name='uq_price_rule_redemptions_rule_order'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_price_rule_redemptions_org_id', 'price_rule_redemptions', ['org_id'])
    op.create_index('ix_price_rule_redemptions_rule_id', 'price_rule_redemptions', ['rule_id'])
    op.create_index('ix_price_rule_redemptions_order_ref', 'price_rule_redemptions', ['order_ref'])

    # ==========================================================================
    # CASH DRAWERS
    # ==========================================================================
    op.create_table('cash_drawers',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('org_id', sa.Integer(), nullable=False),
        sa.Column('location', sa.String(length=128), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(['org_id'], ['organizations.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('org_id', 'location', 'name', name='uq_cash_drawers_org_location_name'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_cash_drawers_org_id', 'cash_drawers', ['org_id'])
    op.create_index('ix_cash_drawers_location', 'cash_drawers', ['location'])

    op.create_table('cash_drawer_sessions',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('org_id', sa.Integer(), nullable=False),
        sa.Column('drawer_id', sa.Integer(), nullable=False),
        sa.Column('location', sa.String(length=128), nullable=False),
        sa.Column('operator', sa.String(length=128), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='open'),
        sa.Column('opening_float_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('balance_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('expected_cash_cents', sa.Integer(), nullable=True),
        sa.Column('counted_cash_cents', sa.Integer(), nullable=True),
        sa.Column('variance_cents', sa.Integer(), nullable=True),
        sa.Column('opened_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('close_requested_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('closed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_entry_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['org_id'], ['organizations.id']),
        sa.ForeignKeyConstraint(['drawer_id'], ['cash_drawers.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_cash_drawer_sessions_org_id', 'cash_drawer_sessions', ['org_id'])
    op.create_index('ix_cash_drawer_sessions_drawer_id', 'cash_drawer_sessions', ['drawer_id'])
    op.create_index('ix_cash_drawer_sessions_location', 'cash_drawer_sessions', ['location'])
    op.create_index('ix_cash_drawer_sessions_status', 'cash_drawer_sessions', ['status'])
    # At most one non-closed session per drawer
    op.create_index(
        'uq_cash_drawer_sessions_drawer_live',
        'cash_drawer_sessions',
        ['drawer_id'],
        unique=True,
        sqlite_where=sa.text("status != 'closed'"),
        postgresql_where=sa.text("status != 'closed'"),
    )

    op.create_table('cash_drawer_transactions',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('org_id', sa.Integer(), nullable=False),
        sa.Column('session_id', sa.Integer(), nullable=False),
        sa.Column('ledger_entry_id', sa.Integer(), nullable=True),
        sa.Column('kind', sa.String(length=16), nullable=False),
        sa.Column('requested_amount_cents', sa.Integer(), nullable=False),
        sa.Column('amount_cents', sa.Integer(), nullable=False),
        sa.Column('rounding_adjustment_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('reference', sa.String(length=64), nullable=True),
        sa.Column('operator', sa.String(length=128), nullable=False),
        sa.Column('note', sa.String(length=255), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['org_id'], ['organizations.id']),
        sa.ForeignKeyConstraint(['session_id'], ['cash_drawer_sessions.id']),
        sa.ForeignKeyConstraint(['ledger_entry_id'], ['ledger_entries.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_cash_drawer_transactions_org_id', 'cash_drawer_transactions', ['org_id'])
    op.create_index('ix_cash_drawer_transactions_session_id', 'cash_drawer_transactions', ['session_id'])
    op.create_index('ix_cash_drawer_transactions_kind', 'cash_drawer_transactions', ['kind'])
    op.create_index('ix_cash_drawer_txns_session_occurred', 'cash_drawer_transactions', ['session_id', 'occurred_at'])

    op.create_table('cash_counts',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('org_id', sa.Integer(), nullable=False),
        sa.Column('session_id', sa.Integer(), nullable=False),
        sa.Column('denominations', sa.JSON(), nullable=False),
        sa.Column('counted_total_cents', sa.Integer(), nullable=False),
        sa.Column('expected_cents', sa.Integer(), nullable=False),
        sa.Column('variance_cents', sa.Integer(), nullable=False),
        sa.Column('variance_status', sa.String(length=16), nullable=False, server_default='none'),
        sa.Column('resolved_by', sa.String(length=128), nullable=True),
        sa.Column('resolved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('resolution_note', sa.String(length=255), nullable=True),
        sa.Column('counted_by', sa.String(length=128), nullable=False),
        sa.Column('counted_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['org_id'], ['organizations.id']),
        sa.ForeignKeyConstraint(['session_id'], ['cash_drawer_sessions.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('session_id', name='uq_cash_counts_session'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_cash_counts_org_id', 'cash_counts', ['org_id'])

    # ==========================================================================
    # RECONCILIATION
    # ==========================================================================
    op.create_table('payouts',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('org_id', sa.Integer(), nullable=False),
        sa.Column('provider', sa.String(length=32), nullable=False),
        sa.Column('provider_payout_id', sa.String(length=64), nullable=False),
        sa.Column('reference', sa.String(length=64), nullable=True),
        sa.Column('statement_descriptor', sa.String(length=128), nullable=True),
        sa.Column('currency', sa.String(length=3), nullable=False),
        sa.Column('gross_amount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('fee_amount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('net_amount_cents', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='expected'),
        sa.Column('expected_arrival', sa.Date(), nullable=True),
        sa.Column('arrived_at', sa.Date(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['org_id'], ['organizations.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('org_id', 'provider', 'provider_payout_id', name='uq_payouts_org_provider_id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_payouts_org_id', 'payouts', ['org_id'])
    op.create_index('ix_payouts_org_status', 'payouts', ['org_id', 'status'])

    op.create_table('payout_items',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('payout_id', sa.Integer(), nullable=False),
        sa.Column('item_type', sa.String(length=16), nullable=False),
        sa.Column('amount_cents', sa.Integer(), nullable=False),
        sa.Column('item_count', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('description', sa.String(length=255), nullable=True),
        sa.ForeignKeyConstraint(['payout_id'], ['payouts.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_payout_items_payout_id', 'payout_items', ['payout_id'])

    op.create_table('invoices',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('org_id', sa.Integer(), nullable=False),
        sa.Column('invoice_number', sa.String(length=64), nullable=False),
        sa.Column('customer_ref', sa.String(length=128), nullable=True),
        sa.Column('currency', sa.String(length=3), nullable=False),
        sa.Column('amount_cents', sa.Integer(), nullable=False),
        sa.Column('issued_on', sa.Date(), nullable=True),
        sa.Column('due_on', sa.Date(), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='open'),
        sa.Column('paid_at', sa.Date(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['org_id'], ['organizations.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('org_id', 'invoice_number', name='uq_invoices_org_number'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_invoices_org_id', 'invoices', ['org_id'])
    op.create_index('ix_invoices_status', 'invoices', ['status'])

    op.create_table('bank_statements',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('org_id', sa.Integer(), nullable=False),
        sa.Column('source', sa.String(length=16), nullable=False),
        sa.Column('account_iban', sa.String(length=64), nullable=True),
        sa.Column('statement_date', sa.Date(), nullable=True),
        sa.Column('file_name', sa.String(length=255), nullable=True),
        sa.Column('line_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('imported_by', sa.String(length=128), nullable=True),
        sa.Column('imported_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['org_id'], ['organizations.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_bank_statements_org_id', 'bank_statements', ['org_id'])

    op.create_table('bank_statement_lines',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('org_id', sa.Integer(), nullable=False),
        sa.Column('statement_id', sa.Integer(), nullable=False),
        sa.Column('posted_at', sa.Date(), nullable=False),
        sa.Column('value_date', sa.Date(), nullable=True),
        sa.Column('amount_cents', sa.Integer(), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False),
        sa.Column('description', sa.String(length=255), nullable=True),
        sa.Column('counterparty', sa.String(length=255), nullable=True),
        sa.Column('end_to_end_id', sa.String(length=64), nullable=True),
        sa.Column('remittance_reference', sa.String(length=140), nullable=True),
        sa.Column('bank_reference', sa.String(length=64), nullable=True),
        sa.Column('dedupe_key', sa.String(length=64), nullable=False),
        sa.ForeignKeyConstraint(['org_id'], ['organizations.id']),
        sa.ForeignKeyConstraint(['statement_id'], ['bank_statements.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('org_id', 'dedupe_key', name='uq_bank_statement_lines_org_dedupe'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_bank_statement_lines_org_id', 'bank_statement_lines', ['org_id'])
    op.create_index('ix_bank_statement_lines_statement_id', 'bank_statement_lines', ['statement_id'])
    op.create_index('ix_bank_statement_lines_org_posted', 'bank_statement_lines', ['org_id', 'posted_at'])

    op.create_table('match_results',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('org_id', sa.Integer(), nullable=False),
        sa.Column('statement_line_id', sa.Integer(), nullable=False),
        sa.Column('matched_entity', sa.String(length=16), nullable=True),
        sa.Column('matched_id', sa.Integer(), nullable=True),
        sa.Column('confidence', sa.Float(), nullable=False, server_default='0'),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('reason', sa.String(length=255), nullable=True),
        sa.Column('is_manual_override', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('resolved_by', sa.String(length=128), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['org_id'], ['organizations.id']),
        sa.ForeignKeyConstraint(['statement_line_id'], ['bank_statement_lines.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('statement_line_id', name='uq_match_results_line'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_match_results_org_id', 'match_results', ['org_id'])
    op.create_index('ix_match_results_org_status', 'match_results', ['org_id', 'status'])
    op.create_index('ix_match_results_entity', 'match_results', ['matched_entity', 'matched_id'])


def downgrade():
    for name in (
        'match_results',
        'bank_statement_lines',
        'bank_statements',
        'invoices',
        'payout_items',
        'payouts',
        'cash_counts',
        'cash_drawer_transactions',
        'cash_drawer_sessions',
        'cash_drawers',
        'price_rule_redemptions',
        'price_rules',
        'gift_cards',
        'credit_lots',
        'wallets',
        'ledger_entries',
        'organizations',
    ):
        op.drop_table(name)
