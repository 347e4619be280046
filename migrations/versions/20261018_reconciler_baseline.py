"""reconciler baseline: executions, trades, tick_details, synchronizations

Revision ID: 20261018_reconciler_baseline
Revises:
Create Date: 2026-10-18 00:00:00.000000
"""

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision = "20261018_reconciler_baseline"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "executions",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("source_system", sa.String(16), nullable=False),
        sa.Column("account_number", sa.Text, nullable=False),
        sa.Column("account_fingerprint", sa.String(64), nullable=False),
        sa.Column("instrument_raw_symbol", sa.String(64), nullable=False),
        sa.Column("contract_symbol", sa.String(64), nullable=False),
        sa.Column("instrument", sa.String(32), nullable=False),
        sa.Column("side", sa.String(4), nullable=False),
        sa.Column("signed_quantity", sa.Numeric(18, 8), nullable=False),
        sa.Column("price", sa.Numeric(30, 12), nullable=False),
        sa.Column("commission", sa.Numeric(18, 8), nullable=False, server_default=sa.text("0")),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("source_order_id", sa.String(128), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint(
            "user_id",
            "source_system",
            "account_fingerprint",
            "source_order_id",
            name="uq_execution_source_fill",
        ),
    )
    op.create_index("ix_executions_user_id", "executions", ["user_id"])
    op.create_index("ix_executions_account_fingerprint", "executions", ["account_fingerprint"])
    op.create_index("ix_executions_instrument", "executions", ["instrument"])

    op.create_table(
        "trades",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("account_number", sa.Text, nullable=False),
        sa.Column("account_fingerprint", sa.String(64), nullable=False),
        sa.Column("instrument", sa.String(32), nullable=False),
        sa.Column("side", sa.String(8), nullable=False),
        sa.Column("quantity", sa.Numeric(18, 8), nullable=False),
        sa.Column("entry_price", sa.Text, nullable=False),
        sa.Column("close_price", sa.Text, nullable=False),
        sa.Column("entry_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("close_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("time_in_position", sa.Integer, nullable=False, server_default=sa.text("0")),
        sa.Column("pnl", sa.Numeric(18, 8), nullable=False, server_default=sa.text("0")),
        sa.Column("commission", sa.Numeric(18, 8), nullable=False, server_default=sa.text("0")),
        sa.Column("entry_id", sa.Text, nullable=False),
        sa.Column("close_id", sa.String(128), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_trades_user_id", "trades", ["user_id"])
    op.create_index("ix_trades_account_fingerprint", "trades", ["account_fingerprint"])
    op.create_index("ix_trades_instrument", "trades", ["instrument"])

    op.create_table(
        "tick_details",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("ticker", sa.String(32), nullable=False, unique=True),
        sa.Column("tick_value", sa.Float, nullable=False),
        sa.Column("tick_size", sa.Float, nullable=False),
    )

    op.create_table(
        "synchronizations",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("service", sa.String(32), nullable=False),
        sa.Column("account_id", sa.String(64), nullable=False),
        sa.Column("environment", sa.String(8), nullable=False, server_default="live"),
        sa.Column("token", sa.Text, nullable=True),
        sa.Column("token_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("daily_sync_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_synced_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_synchronizations_user_id", "synchronizations", ["user_id"])


def downgrade():
    op.drop_index("ix_synchronizations_user_id", table_name="synchronizations")
    op.drop_table("synchronizations")
    op.drop_table("tick_details")
    op.drop_index("ix_trades_instrument", table_name="trades")
    op.drop_index("ix_trades_account_fingerprint", table_name="trades")
    op.drop_index("ix_trades_user_id", table_name="trades")
    op.drop_table("trades")
    op.drop_index("ix_executions_instrument", table_name="executions")
    op.drop_index("ix_executions_account_fingerprint", table_name="executions")
    op.drop_index("ix_executions_user_id", table_name="executions")
    op.drop_table("executions")
