#!/usr/bin/env python3
"""Serve the settlement HTTP API.

Configuration comes from the environment (see ``TaxSettlementConfig.from_env``);
command-line flags override host, port and store backend.
"""

import argparse
import logging
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from tax_settlement.api import create_app
from tax_settlement.config import TaxSettlementConfig
from tax_settlement.logging import setup_logging
from tax_settlement.sinks import create_publisher
from tax_settlement.store import PostgresTaxStore, create_store

logger = logging.getLogger(__name__)


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Serve the property tax settlement API")
    parser.add_argument("--host", type=str, default=None, help="Bind address (default: API_HOST)")
    parser.add_argument("--port", type=int, default=None, help="Port (default: API_PORT)")
    parser.add_argument(
        "--store",
        type=str,
        choices=["memory", "postgres"],
        default=None,
        help="Store backend (default: STORE_BACKEND)",
    )
    parser.add_argument(
        "--create-schema",
        action="store_true",
        help="Create PostgreSQL tables before serving",
    )
    args = parser.parse_args()

    config = TaxSettlementConfig.from_env()
    if args.host:
        config.api.host = args.host
    if args.port:
        config.api.port = args.port
    if args.store:
        config.settlement.store_backend = args.store

    setup_logging(config.log_level, config.log_format)

    store = create_store(config)
    if args.create_schema and isinstance(store, PostgresTaxStore):
        store.create_schema()

    publisher = create_publisher(config)
    app = create_app(store, config, publisher)

    logger.info(
        "Serving on %s:%d (store=%s, events=%s)",
        config.api.host,
        config.api.port,
        config.settlement.store_backend,
        config.publish_events,
    )
    try:
        app.run(host=config.api.host, port=config.api.port, debug=config.api.debug)
    finally:
        publisher.close()


if __name__ == "__main__":
    main()
