# Stored normalized fills. Matching is re-run over this history on every import.
from sqlalchemy import Column, DateTime, Integer, Numeric, String, Text, UniqueConstraint, func

from trade_reconciler.db.database import Base


class Execution(Base):
    __tablename__ = "executions"
    __table_args__ = (
        UniqueConstraint(
            "user_id",
            "source_system",
            "account_fingerprint",
            "source_order_id",
            name="uq_execution_source_fill",
        ),
    )

    id = Column(Integer, primary_key=True)
    user_id = Column(String(64), nullable=False, index=True)
    source_system = Column(String(16), nullable=False)

    # account number is encrypted; the HMAC fingerprint is what we group on
    account_number = Column(Text, nullable=False)
    account_fingerprint = Column(String(64), nullable=False, index=True)

    instrument_raw_symbol = Column(String(64), nullable=False)
    contract_symbol = Column(String(64), nullable=False)
    # base symbol; fills are matched per (account, instrument)
    instrument = Column(String(32), nullable=False, index=True)

    side = Column(String(4), nullable=False)  # BUY / SELL
    signed_quantity = Column(Numeric(18, 8), nullable=False)
    price = Column(Numeric(30, 12), nullable=False)
    commission = Column(Numeric(18, 8), nullable=False, default=0)
    timestamp = Column(DateTime(timezone=True), nullable=False)
    source_order_id = Column(String(128), nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
