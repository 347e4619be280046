"""
Re-match every stored fill of a user and rewrite the trades table.

  python scripts/rebuild_trades.py --user-id u1
"""
import argparse
import logging

from trade_reconciler import models  # noqa: F401
from trade_reconciler.config import load_settings
from trade_reconciler.db.database import SessionLocal
from trade_reconciler.services.encryption import FieldCipher
from trade_reconciler.services.import_pipeline import ImportPipeline

logger = logging.getLogger(__name__)
logging.basicConfig(level=logging.INFO)


def main():
    p = argparse.ArgumentParser()
    p.add_argument("--user-id", "-u", required=True)
    args = p.parse_args()

    cipher = FieldCipher(load_settings().key_bytes)

    with SessionLocal() as session:
        report = ImportPipeline(session, cipher).rebuild(args.user_id)

    print(
        f"✅ trades rebuilt for {args.user_id}: {report.trades_created} created, "
        f"{report.trades_updated} updated, {report.trades_removed} removed, "
        f"{report.open_positions} open positions"
    )
    for err in report.errors:
        print(f"❌ {err.record}: {err.reason}")


if __name__ == "__main__":
    main()
