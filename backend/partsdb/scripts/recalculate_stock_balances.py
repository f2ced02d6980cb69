#!/usr/bin/env python3
"""
recalculate_stock_balances.py

Rebuild the stock_balances cache from the inventory movement ledger.

Usage (from backend/):
  python -m partsdb.scripts.recalculate_stock_balances
  python -m partsdb.scripts.recalculate_stock_balances --dry-run
"""

from __future__ import annotations

import argparse
import logging
import sys

from partsdb.database import SessionLocal
from partsdb.errors import ProcurementError
from partsdb.apps.inventory import services as inventory_services

logger = logging.getLogger("partsdb.scripts.recalculate_stock_balances")


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Rebuild stock balances from the movement ledger.")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Report how many balance rows are out of step without saving the correction.",
    )
    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    db = SessionLocal()
    try:
        corrected = inventory_services.recalculate_balances(db)
        if args.dry_run:
            db.rollback()
            logger.info("%s balance rows differ from the ledger (dry run, nothing saved)", corrected)
        else:
            db.commit()
            logger.info("Corrected %s balance rows", corrected)
    except ProcurementError as exc:
        db.rollback()
        logger.error("Recalculation refused: %s", exc.message)
        return 1
    finally:
        db.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
