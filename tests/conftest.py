import itertools
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy.orm import sessionmaker

from trade_reconciler import models  # noqa: F401
from trade_reconciler.db.database import Base, make_engine
from trade_reconciler.services.encryption import FieldCipher
from trade_reconciler.services.tick_reference import TickReference
from trade_reconciler.services.types import FillSide, NormalizedFill, SourceSystem

# 64 hex chars -> 32 byte key
TEST_KEY = "00112233445566778899aabbccddeeff" * 2

T0 = datetime(2024, 12, 2, 14, 30, tzinfo=timezone.utc)

engine = make_engine("sqlite:///:memory:")
SessionLocal = sessionmaker(bind=engine, expire_on_commit=False, future=True)


@pytest.fixture(scope="session")
def db_engine():
    # Create schema for tests
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def session_factory(db_engine):
    yield SessionLocal
    # the pipeline commits, so clean up table by table
    with SessionLocal() as s:
        for table in reversed(Base.metadata.sorted_tables):
            s.execute(table.delete())
        s.commit()


@pytest.fixture()
def db_session(session_factory):
    session = session_factory()
    try:
        yield session
        session.rollback()
    finally:
        session.close()


@pytest.fixture()
def cipher():
    return FieldCipher(TEST_KEY)


@pytest.fixture()
def tick_reference():
    return TickReference.from_rows(
        [
            ("MES", "1.25", "0.25"),
            ("ES", "12.50", "0.25"),
            ("MNQ", "0.50", "0.25"),
            ("NQ", "5.00", "0.25"),
        ]
    )


@pytest.fixture()
def make_fill():
    counter = itertools.count(1)

    def _make(
        side,
        qty,
        price,
        minute=0,
        account="ACC-1",
        symbol="XYZ",
        fill_id=None,
        commission="0",
        source=SourceSystem.CSV,
    ):
        side = FillSide(side)
        qty = Decimal(str(qty))
        return NormalizedFill(
            account_number=account,
            instrument_raw_symbol=symbol,
            side=side,
            signed_quantity=side.sign * qty,
            price=Decimal(str(price)),
            timestamp=T0 + timedelta(minutes=minute),
            source_order_id=fill_id or f"f{next(counter)}",
            source_system=source,
            commission=Decimal(str(commission)),
        )

    return _make
