#!/usr/bin/env python3
"""Seed sample properties, payments and installments.

Runs the real services against the selected store, so the generated data
obeys the same balance rules as production traffic. With the in-memory
store the result is exported as JSON files for inspection.
"""

import argparse
import logging
import random
import sys
from datetime import timedelta
from decimal import Decimal
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from tax_settlement.config import TaxSettlementConfig
from tax_settlement.generators import PropertyGenerator, PropertyTypeGenerator
from tax_settlement.logging import setup_logging
from tax_settlement.models import utc_now
from tax_settlement.services import CollectionService, PolicyService, ReportingService
from tax_settlement.sinks import JsonFileSink
from tax_settlement.store import InMemoryTaxStore, PostgresTaxStore, TaxStore

logger = logging.getLogger(__name__)

PAYMENT_METHODS = ["cash", "evc-plus", "bank-transfer"]
COLLECTORS = ["collector-1", "collector-2", "collector-3"]


def seed(store: TaxStore, config: TaxSettlementConfig, num_properties: int, seed_value: int) -> list[str]:
    """Create properties with yearly payments and a mix of installments."""
    rng = random.Random(seed_value)
    collection = CollectionService(store, config.settlement)

    PolicyService(store).update_commission_policy(Decimal("2"), "Default collector commission")
    PolicyService(store).update_revenue_split_policy(Decimal("40"), Decimal("60"), "Default split")

    property_types = PropertyTypeGenerator(seed=seed_value).generate_batch()
    for property_type in property_types:
        store.add_property_type(property_type)

    property_ids = []
    generator = PropertyGenerator(property_types, seed=seed_value, currency=config.settlement.default_currency)
    for prop in generator.generate_batch(num_properties):
        store.add_property(prop)
        property_ids.append(prop.property_id)
        payment = collection.open_payment(prop.property_id, created_by=rng.choice(COLLECTORS))

        # ~10% exempt, ~20% discounted, the rest pay in 0-4 installments
        roll = rng.random()
        if roll < 0.10:
            collection.apply_exemption(payment.payment_id, "Public building")
            continue
        if roll < 0.30:
            discount = (prop.expected_amount * Decimal(rng.randint(5, 25)) / 100).quantize(Decimal("0.01"))
            collection.apply_discount(payment.payment_id, discount, "Hardship discount")

        for _ in range(rng.randint(0, 4)):
            share = Decimal(rng.randint(20, 60)) / 100
            amount = (prop.expected_amount * share).quantize(Decimal("0.01"))
            if amount <= 0:
                break
            receipt = collection.record_installment(
                prop.property_id,
                amount,
                rng.choice(PAYMENT_METHODS),
                rng.choice(COLLECTORS),
                payment_id=payment.payment_id,
                payment_date=utc_now() - timedelta(days=rng.randint(0, 6)),
            )
            if receipt.payment_completed:
                break

    logger.info("Seeded %d properties", len(property_ids))
    return property_ids


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Seed sample property tax data")
    parser.add_argument(
        "--properties",
        type=int,
        default=50,
        help="Number of properties to generate (default: 50)",
    )
    parser.add_argument(
        "--seed",
        type=int,
        default=42,
        help="Random seed for reproducibility (default: 42)",
    )
    parser.add_argument(
        "--store",
        type=str,
        choices=["memory", "postgres"],
        default="memory",
        help="Where to write the data (default: memory, exported as JSON)",
    )
    parser.add_argument(
        "--output-dir",
        type=Path,
        default=None,
        help="JSON output directory for the memory store (default: OUTPUT_DIR)",
    )
    args = parser.parse_args()

    config = TaxSettlementConfig.from_env()
    setup_logging(config.log_level, config.log_format)

    if args.store == "postgres":
        store = PostgresTaxStore(config.postgres)
        store.create_schema()
        seed(store, config, args.properties, args.seed)
        store.close()
        return

    store = InMemoryTaxStore()
    property_ids = seed(store, config, args.properties, args.seed)

    reporting = ReportingService(store, config.settlement)
    sink = JsonFileSink(args.output_dir or config.output.json_output_dir, pretty=True)
    sink.write_batch("property_types", list(store.property_types.values()))
    sink.write_batch("properties", list(store.properties.values()))
    sink.write_batch("payments", list(store.payments.values()))
    sink.write_batch("payment_details", store.payment_details)
    sink.write_batch("balances", [reporting.balance(pid) for pid in property_ids])
    sink.write_batch("report_split", [reporting.report_split(store.list_payments())])
    sink.close()

    for name, count in store.summary().items():
        logger.info("  %s: %d", name, count)


if __name__ == "__main__":
    main()
