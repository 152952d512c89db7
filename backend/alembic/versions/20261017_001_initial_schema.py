"""Initial schema - cTrader sync tables

Revision ID: 20261017_001
Revises:
Create Date: 2026-10-17

- trading_accounts (sync-owned balance columns)
- ctrader_connections (OAuth tokens per broker account)
- ctrader_auth_states (pending OAuth states)
- trades (journal ledger, one open row per broker position)
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '20261017_001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # ========================================================================
    # 1. TRADING ACCOUNTS
    # ========================================================================
    op.create_table(
        'trading_accounts',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('user_id', sa.String(36), nullable=False),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('broker', sa.String(50)),
        sa.Column('account_type', sa.String(30)),  # live, demo, prop_firm
        sa.Column('currency', sa.String(10)),
        sa.Column('initial_balance', sa.Float),
        sa.Column('current_balance', sa.Float),
        sa.Column('current_equity', sa.Float),
        sa.Column('is_active', sa.Boolean),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True)),
    )
    op.create_index('idx_trading_account_user', 'trading_accounts', ['user_id'])

    # ========================================================================
    # 2. CTRADER CONNECTIONS
    # ========================================================================
    op.create_table(
        'ctrader_connections',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('user_id', sa.String(36), nullable=False),
        sa.Column('trading_account_id', sa.String(36),
                  sa.ForeignKey('trading_accounts.id', ondelete='CASCADE'), nullable=False),
        sa.Column('account_number', sa.String(50), nullable=False),
        sa.Column('access_token', sa.String(512), nullable=False),
        sa.Column('refresh_token', sa.String(512), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('last_sync', sa.DateTime(timezone=True)),
        sa.Column('connected_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True)),

        sa.UniqueConstraint('trading_account_id', 'account_number', name='uq_ctrader_connection_account'),
    )
    op.create_index('idx_ctrader_connection_user', 'ctrader_connections', ['user_id'])

    # ========================================================================
    # 3. OAUTH STATES
    # ========================================================================
    op.create_table(
        'ctrader_auth_states',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('state', sa.String(128), nullable=False, unique=True),
        sa.Column('user_id', sa.String(36), nullable=False),
        sa.Column('trading_account_id', sa.String(36), nullable=False),
        sa.Column('account_number', sa.String(50)),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('idx_ctrader_auth_state_expiry', 'ctrader_auth_states', ['expires_at'])

    # ========================================================================
    # 4. TRADES
    # ========================================================================
    op.create_table(
        'trades',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('user_id', sa.String(36), nullable=False),
        sa.Column('trading_account_id', sa.String(36),
                  sa.ForeignKey('trading_accounts.id', ondelete='CASCADE'), nullable=False),
        sa.Column('external_id', sa.String(64)),
        sa.Column('symbol', sa.String(50), nullable=False),
        sa.Column('trade_type', sa.String(10), nullable=False),  # buy, sell
        sa.Column('quantity', sa.Float, nullable=False),
        sa.Column('entry_price', sa.Float, nullable=False),
        sa.Column('entry_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('exit_price', sa.Float),
        sa.Column('exit_date', sa.DateTime(timezone=True)),
        sa.Column('pnl', sa.Float),
        sa.Column('commission', sa.Float),
        sa.Column('swap', sa.Float),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('source', sa.String(30)),
        sa.Column('notes', sa.Text),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True)),
    )
    op.create_index('idx_trades_account_external', 'trades', ['trading_account_id', 'external_id'])
    op.create_index(
        'uq_trades_open_external_id',
        'trades',
        ['trading_account_id', 'external_id'],
        unique=True,
        postgresql_where=sa.text("status = 'open'"),
        sqlite_where=sa.text("status = 'open'"),
    )


def downgrade() -> None:
    op.drop_index('uq_trades_open_external_id', table_name='trades')
    op.drop_index('idx_trades_account_external', table_name='trades')
    op.drop_table('trades')

    op.drop_index('idx_ctrader_auth_state_expiry', table_name='ctrader_auth_states')
    op.drop_table('ctrader_auth_states')

    op.drop_index('idx_ctrader_connection_user', table_name='ctrader_connections')
    op.drop_table('ctrader_connections')

    op.drop_index('idx_trading_account_user', table_name='trading_accounts')
    op.drop_table('trading_accounts')
