from sqlalchemy import Column, Float, Integer, String

from trade_reconciler.db.database import Base


class TickDetails(Base):
    """Administrator-curated contract table: instrument prefix -> tick size/value."""

    __tablename__ = "tick_details"

    id = Column(Integer, primary_key=True)
    ticker = Column(String(32), nullable=False, unique=True)
    tick_value = Column(Float, nullable=False)
    tick_size = Column(Float, nullable=False)
