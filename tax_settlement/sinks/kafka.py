"""Kafka publisher for settlement domain events."""

import json
import logging
from dataclasses import dataclass

from confluent_kafka import Producer

from tax_settlement.config import KafkaConfig
from tax_settlement.models import Event
from tax_settlement.sinks.serialization import to_dict

logger = logging.getLogger(__name__)


@dataclass
class ProducerStats:
    """Track producer delivery statistics."""

    sent: int = 0
    delivered: int = 0
    failed: int = 0

    @property
    def success_rate(self) -> float:
        """Calculate success rate."""
        total = self.delivered + self.failed
        return self.delivered / total if total > 0 else 0.0


class KafkaEventPublisher:
    """Publish domain events to ``<topic_prefix>.<entity>`` topics."""

    # Event entity to topic suffix
    TOPICS = {
        "installment": "payment-details",
        "payment": "payments",
        "discount": "payments",
        "exemption": "payments",
        "commission_policy": "commission-policies",
        "revenue_split_policy": "revenue-split-policies",
    }

    def __init__(self, config: KafkaConfig | str) -> None:
        """Initialize the publisher.

        Parameters
        ----------
        config : KafkaConfig | str
            Producer configuration or bootstrap servers string.
        """
        if isinstance(config, str):
            config = KafkaConfig(bootstrap_servers=config)

        self.config = config
        self.producer = Producer(config.to_dict())
        self.stats = ProducerStats()

    def topic_for(self, event: Event) -> str:
        """Topic name for an event, e.g. ``tax.payment-details``."""
        entity = event.event_type.split(".")[0]
        suffix = self.TOPICS.get(entity, entity.replace("_", "-"))
        return f"{self.config.topic_prefix}.{suffix}"

    def _delivery_callback(self, err, msg) -> None:
        """Handle delivery reports."""
        if err:
            self.stats.failed += 1
            logger.error("Delivery failed: %s", err)
        else:
            self.stats.delivered += 1
            logger.debug("Delivered to %s[%d]@%d", msg.topic(), msg.partition(), msg.offset())

    def publish(self, event: Event) -> None:
        """Send one event, keyed by its subject."""
        topic = self.topic_for(event)
        value = json.dumps(to_dict(event), ensure_ascii=False).encode("utf-8")

        self.producer.produce(
            topic=topic,
            key=event.subject.encode("utf-8") if event.subject else None,
            value=value,
            callback=self._delivery_callback,
        )
        self.stats.sent += 1
        self.producer.poll(0)

    def flush(self, timeout: float = 30.0) -> None:
        """Flush pending messages."""
        self.producer.flush(timeout)

    def close(self) -> None:
        """Flush and close the producer."""
        self.flush()
        logger.info(
            "Kafka publisher closed: sent=%d, delivered=%d, failed=%d",
            self.stats.sent,
            self.stats.delivered,
            self.stats.failed,
        )
