"""Event publishers and report sinks."""

from tax_settlement.config import TaxSettlementConfig
from tax_settlement.models import Event
from tax_settlement.sinks.json_file import JsonFileSink
from tax_settlement.sinks.kafka import KafkaEventPublisher
from tax_settlement.sinks.serialization import serialize_value, to_dict


class NullPublisher:
    """Publisher that drops every event."""

    def publish(self, event: Event) -> None:
        pass

    def flush(self, timeout: float = 30.0) -> None:
        pass

    def close(self) -> None:
        pass


def create_publisher(config: TaxSettlementConfig) -> KafkaEventPublisher | NullPublisher:
    """Kafka publisher when ``publish_events`` is on, otherwise a no-op."""
    if config.publish_events:
        return KafkaEventPublisher(config.kafka)
    return NullPublisher()


__all__ = [
    "JsonFileSink",
    "KafkaEventPublisher",
    "NullPublisher",
    "create_publisher",
    "serialize_value",
    "to_dict",
]
