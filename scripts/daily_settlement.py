#!/usr/bin/env python3
"""Compute the daily settlement (xisaab xir) for one day.

Prints the settlement and optionally exports it to ``<output-dir>/settlement_<date>.json``.
"""

import argparse
import json
import logging
import sys
from datetime import date
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from tax_settlement.config import TaxSettlementConfig
from tax_settlement.logging import setup_logging
from tax_settlement.services import ReportingService
from tax_settlement.sinks import JsonFileSink, to_dict
from tax_settlement.store import PostgresTaxStore

logger = logging.getLogger(__name__)


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Compute the daily revenue settlement")
    parser.add_argument(
        "--date",
        type=date.fromisoformat,
        default=None,
        help="Day to settle, YYYY-MM-DD (default: yesterday UTC)",
    )
    parser.add_argument(
        "--postgres-url",
        type=str,
        default=None,
        help="PostgreSQL connection string (default: from POSTGRES_* env)",
    )
    parser.add_argument(
        "--output-dir",
        type=Path,
        default=None,
        help="Also write the settlement as JSON into this directory",
    )
    args = parser.parse_args()

    config = TaxSettlementConfig.from_env()
    setup_logging(config.log_level, config.log_format)

    store = PostgresTaxStore(args.postgres_url or config.postgres)
    try:
        settlement = ReportingService(store, config.settlement).daily_settlement(args.date)
    finally:
        store.close()

    print(json.dumps(to_dict(settlement), indent=2))

    if args.output_dir:
        sink = JsonFileSink(args.output_dir, pretty=True)
        path = sink.write_batch(f"settlement_{settlement.settlement_date.isoformat()}", [settlement])
        sink.close()
        logger.info("Settlement written to %s", path)


if __name__ == "__main__":
    main()
