from sqlalchemy import Column, DateTime, Integer, String, Text, func

from trade_reconciler.db.database import Base


class Synchronization(Base):
    """A connected broker account and its OAuth token."""

    __tablename__ = "synchronizations"

    id = Column(Integer, primary_key=True)
    user_id = Column(String(64), nullable=False, index=True)
    service = Column(String(32), nullable=False)  # tradovate / rithmic / ...
    account_id = Column(String(64), nullable=False)
    environment = Column(String(8), nullable=False, default="live")  # demo / live

    token = Column(Text, nullable=True)
    token_expires_at = Column(DateTime(timezone=True), nullable=True)

    daily_sync_time = Column(DateTime(timezone=True), nullable=True)
    last_synced_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
