"""create_novapay_tables

Revision ID: 3b1f6c2a9d4e
Revises:
Create Date: 2026-10-02 09:30:12.418204

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '3b1f6c2a9d4e'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Card, merchant and API key directories (maintained by upstream systems)
    op.create_table(
        'cards',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('card_number', sa.String(length=19), nullable=False, comment='卡号（无空格）'),
        sa.Column('owner_id', sa.String(length=64), nullable=False, comment='持卡人账户ID'),
        sa.Column('expiry_date', sa.String(length=5), nullable=False, comment='MM/YY'),
        sa.Column('cvv', sa.String(length=4), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='active', comment='active/frozen/blocked'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_cards_card_number', 'cards', ['card_number'], unique=True)
    op.create_index('ix_cards_owner_id', 'cards', ['owner_id'], unique=False)

    op.create_table(
        'merchants',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='active', comment='active/suspended/closed'),
        sa.PrimaryKeyConstraint('id'),
    )

    op.create_table(
        'api_keys',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('key', sa.String(length=128), nullable=False),
        sa.Column('merchant_id', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('last_used_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_api_keys_key', 'api_keys', ['key'], unique=True)
    op.create_index('ix_api_keys_merchant_id', 'api_keys', ['merchant_id'], unique=False)

    # Ledger
    op.create_table(
        'account_balances',
        sa.Column('account_id', sa.String(length=64), nullable=False, comment='账户ID'),
        sa.Column('currency', sa.String(length=3), nullable=False, comment='货币代码'),
        sa.Column('amount_minor', sa.BigInteger(), nullable=False, server_default='0', comment='可用余额（最小货币单位）'),
        sa.Column('version', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.CheckConstraint('amount_minor >= 0', name='ck_account_balances_non_negative'),
        sa.PrimaryKeyConstraint('account_id', 'currency'),
    )

    op.create_table(
        'ledger_transactions',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('account_id', sa.String(length=64), nullable=False),
        sa.Column('amount_minor', sa.BigInteger(), nullable=False, comment='带符号金额：借记为负'),
        sa.Column('fee_minor', sa.BigInteger(), nullable=True, comment='平台手续费'),
        sa.Column('currency', sa.String(length=3), nullable=False),
        sa.Column('type', sa.String(length=32), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='completed'),
        sa.Column('flow_id', sa.String(length=40), nullable=False),
        sa.Column('hold_id', sa.String(length=64), nullable=True),
        sa.Column('counterparty_id', sa.String(length=64), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_ledger_transactions_account_id', 'ledger_transactions', ['account_id'], unique=False)
    op.create_index('ix_ledger_transactions_flow_id', 'ledger_transactions', ['flow_id'], unique=False)
    op.create_index('ix_ledger_transactions_created_at', 'ledger_transactions', ['created_at'], unique=False)
    op.create_index('ix_ledger_transactions_account_currency', 'ledger_transactions', ['account_id', 'currency'], unique=False)

    # Payment flows
    op.create_table(
        'novapay_flows',
        sa.Column('flow_id', sa.String(length=40), nullable=False, comment='支付流ID npf_...'),
        sa.Column('merchant_id', sa.String(length=64), nullable=False, comment='商户ID'),
        sa.Column('api_key_id', sa.String(length=64), nullable=False),
        sa.Column('amount_minor', sa.BigInteger(), nullable=False, comment='金额（最小货币单位）'),
        sa.Column('currency', sa.String(length=3), nullable=False, comment='货币代码 ISO-4217'),
        sa.Column('memo', sa.String(length=500), nullable=False),
        sa.Column('merchant_ref', sa.String(length=200), nullable=True),
        sa.Column('merchant_data', sa.JSON(), nullable=True),
        sa.Column('customer_email', sa.String(length=200), nullable=True),
        sa.Column('customer_name', sa.String(length=200), nullable=True),
        sa.Column('state', sa.String(length=16), nullable=False, server_default='CREATED'),
        sa.Column('result_code', sa.Integer(), nullable=False),
        sa.Column('decline_reason', sa.Text(), nullable=True),
        sa.Column('held_minor', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('settled_minor', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('returned_minor', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('card_id', sa.String(length=64), nullable=True),
        sa.Column('payer_id', sa.String(length=64), nullable=True),
        sa.Column('hold_id', sa.String(length=64), nullable=True),
        sa.Column('on_complete', sa.String(length=500), nullable=True),
        sa.Column('on_cancel', sa.String(length=500), nullable=True),
        sa.Column('notify_url', sa.String(length=500), nullable=True),
        sa.Column('charge_transaction_id', sa.String(length=64), nullable=True),
        sa.Column('refund_transaction_ids', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False, comment='冻结过期时间'),
        sa.Column('held_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('settled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('voided_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('returned_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('expired_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False, server_default='0'),
        sa.PrimaryKeyConstraint('flow_id'),
    )
    op.create_index('ix_novapay_flows_merchant_id', 'novapay_flows', ['merchant_id'], unique=False)
    op.create_index('ix_novapay_flows_merchant_ref', 'novapay_flows', ['merchant_ref'], unique=False)
    op.create_index('ix_novapay_flows_state', 'novapay_flows', ['state'], unique=False)
    op.create_index('ix_novapay_flows_payer_id', 'novapay_flows', ['payer_id'], unique=False)
    op.create_index('ix_novapay_flows_state_expires', 'novapay_flows', ['state', 'expires_at'], unique=False)
    op.create_index('ix_novapay_flows_merchant_created', 'novapay_flows', ['merchant_id', 'created_at'], unique=False)

    # Idempotency records and webhook outbox
    op.create_table(
        'idempotency_records',
        sa.Column('key', sa.String(length=255), nullable=False, comment='<api_key_id>:<token>'),
        sa.Column('fingerprint', sa.String(length=64), nullable=False),
        sa.Column('state', sa.String(length=16), nullable=False, server_default='pending'),
        sa.Column('flow_id', sa.String(length=40), nullable=True),
        sa.Column('status_code', sa.Integer(), nullable=True),
        sa.Column('response_body', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('key'),
    )
    op.create_index('ix_idempotency_records_expires_at', 'idempotency_records', ['expires_at'], unique=False)

    op.create_table(
        'webhook_outbox',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('event_id', sa.String(length=64), nullable=False),
        sa.Column('flow_id', sa.String(length=40), nullable=False),
        sa.Column('event_type', sa.String(length=32), nullable=False),
        sa.Column('url', sa.String(length=500), nullable=False),
        sa.Column('payload', sa.JSON(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='pending'),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('next_attempt_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('delivered_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('event_id'),
    )
    op.create_index('ix_webhook_outbox_flow_id', 'webhook_outbox', ['flow_id'], unique=False)
    op.create_index('ix_webhook_outbox_status_next', 'webhook_outbox', ['status', 'next_attempt_at'], unique=False)


def downgrade() -> None:
    op.drop_index('ix_webhook_outbox_status_next', table_name='webhook_outbox')
    op.drop_index('ix_webhook_outbox_flow_id', table_name='webhook_outbox')
    op.drop_table('webhook_outbox')

    op.drop_index('ix_idempotency_records_expires_at', table_name='idempotency_records')
    op.drop_table('idempotency_records')

    op.drop_table('novapay_flows')
    op.drop_table('ledger_transactions')
    op.drop_table('account_balances')
    op.drop_table('api_keys')
    op.drop_table('merchants')
    op.drop_table('cards')
