from sqlalchemy import Column, DateTime, Integer, Numeric, String, Text, func

from trade_reconciler.db.database import Base


class Trade(Base):
    __tablename__ = "trades"

    # deterministic content hash, see services/trade_identity.py
    id = Column(String(36), primary_key=True)
    user_id = Column(String(64), nullable=False, index=True)

    # encrypted at rest (iv:ciphertext hex)
    account_number = Column(Text, nullable=False)
    account_fingerprint = Column(String(64), nullable=False, index=True)

    instrument = Column(String(32), nullable=False, index=True)
    side = Column(String(8), nullable=False)  # long / short
    quantity = Column(Numeric(18, 8), nullable=False)

    entry_price = Column(Text, nullable=False)  # encrypted
    close_price = Column(Text, nullable=False)  # encrypted

    entry_date = Column(DateTime(timezone=True), nullable=False)
    close_date = Column(DateTime(timezone=True), nullable=False)
    time_in_position = Column(Integer, nullable=False, default=0)

    pnl = Column(Numeric(18, 8), nullable=False, default=0)
    commission = Column(Numeric(18, 8), nullable=False, default=0)

    # "-".join of every consumed lot ref, unbounded
    entry_id = Column(Text, nullable=False)
    close_id = Column(String(128), nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
