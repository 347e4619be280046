#!/usr/bin/env python3
"""
Import broker CSV exports through the reconciliation pipeline.

Usage examples:
  # Rithmic order history export
  python scripts/import_csv.py --input "/path/to/OrderHistory_*.csv" --source rithmic --user-id u1

  # any other CSV, with a column mapping (canonical field -> CSV header)
  python scripts/import_csv.py --input /path/to/csv_dir --source csv --mapping mapping.json --user-id u1

  # check a file without writing anything
  python scripts/import_csv.py --input fills.csv --source csv --mapping mapping.json --user-id u1 --dry-run

Requires ENCRYPTION_KEY; DATABASE_URL selects the database.
"""
import argparse
import glob
import json
import logging
import os

import pandas as pd
from sqlalchemy.orm import sessionmaker

from trade_reconciler import models  # noqa: F401
from trade_reconciler.config import load_settings
from trade_reconciler.db.database import Base, make_engine
from trade_reconciler.services.encryption import FieldCipher
from trade_reconciler.services.import_pipeline import ImportPipeline
from trade_reconciler.services.normalizer import normalize_batch
from trade_reconciler.services.types import SourceSystem

logger = logging.getLogger(__name__)
logging.basicConfig(level=logging.INFO)


def gather_input_paths(input_arg):
    # If input is a directory, find *.csv inside
    if os.path.isdir(input_arg):
        pattern = os.path.join(input_arg, "*.csv")
        return sorted(glob.glob(pattern))
    # If glob pattern or single file
    paths = sorted(glob.glob(input_arg))
    return [p for p in paths if os.path.isfile(p)]


def read_records(path):
    """CSV rows as plain dicts; everything stays a string, blanks stay blank."""
    df = pd.read_csv(path, dtype=str, keep_default_na=False)
    df.columns = [c.strip() for c in df.columns]
    return df.to_dict(orient="records")


def load_mapping(path):
    if not path:
        return None
    with open(path) as fh:
        mapping = json.load(fh)
    if not isinstance(mapping, dict):
        raise SystemExit(f"column mapping in {path} must be a JSON object")
    return mapping


def process_file(pipeline, path, source, user_id, mapping=None, account=None, dry_run=False):
    records = read_records(path)
    logger.info("processing %s (%d rows)", path, len(records))

    if dry_run:
        result = normalize_batch(records, source, column_mapping=mapping, default_account=account)
        for err in result.errors:
            logger.warning("  row %s: %s", err.raw_record_ref, err.reason)
        logger.info(
            "  -> dry-run: %d fills, %d dropped, %d failed (nothing written)",
            len(result.fills),
            len(result.dropped),
            len(result.errors),
        )
        return

    report = pipeline.run(records, source, user_id, column_mapping=mapping, default_account=account)
    for err in report.errors:
        logger.warning("  row %s: %s", err.record, err.reason)
    logger.info(
        "  -> %d fills stored (%d already known), %d trades created, %d updated, %d collisions, %d accounts failed",
        report.executions_inserted,
        report.executions_existing,
        report.trades_created,
        report.trades_updated,
        report.collisions,
        report.failed_accounts,
    )


def main():
    p = argparse.ArgumentParser()
    p.add_argument("--input", "-i", required=True, help="File path, glob, or directory containing CSV(s)")
    p.add_argument("--source", "-s", required=True, choices=[s.value for s in SourceSystem], help="Broker format of the file(s)")
    p.add_argument("--user-id", "-u", required=True, help="Owner of the imported trades")
    p.add_argument("--mapping", "-m", default=None, help="JSON column mapping (required for --source csv)")
    p.add_argument("--account", "-a", default=None, help="Account number for rows that carry none")
    p.add_argument("--db", "-d", default=None, help="SQLAlchemy URL (overrides DATABASE_URL env var)")
    p.add_argument("--dry-run", action="store_true", help="Normalize and report without touching the database")
    args = p.parse_args()

    mapping = load_mapping(args.mapping)
    if args.source == SourceSystem.CSV.value and not mapping:
        raise SystemExit("--mapping is required for csv imports")

    paths = gather_input_paths(args.input)
    if not paths:
        logger.warning("No CSV files found for input: %s", args.input)
        return

    settings = load_settings()
    engine = make_engine(args.db or settings.database_url)
    Base.metadata.create_all(bind=engine)
    Session = sessionmaker(bind=engine, expire_on_commit=False, future=True)
    cipher = FieldCipher(settings.key_bytes)

    with Session() as session:
        pipeline = ImportPipeline(session, cipher)
        for path in paths:
            process_file(
                pipeline,
                path,
                args.source,
                args.user_id,
                mapping=mapping,
                account=args.account,
                dry_run=args.dry_run,
            )


if __name__ == "__main__":
    main()
