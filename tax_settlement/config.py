"""Configuration management for tax-settlement."""

from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import Any

from tax_settlement.exceptions import ConfigurationError


@dataclass
class KafkaConfig:
    """Kafka producer configuration for domain events."""

    bootstrap_servers: str = "localhost:9092"
    acks: str = "all"
    linger_ms: int = 5
    compression: str = "snappy"
    retries: int = 3
    topic_prefix: str = "tax"

    def to_dict(self) -> dict[str, Any]:
        """Convert to confluent-kafka config dict."""
        return {
            "bootstrap.servers": self.bootstrap_servers,
            "acks": self.acks,
            "linger.ms": self.linger_ms,
            "compression.type": self.compression,
            "retries": self.retries,
        }


@dataclass
class PostgresConfig:
    """PostgreSQL connection configuration."""

    host: str = "localhost"
    port: int = 5432
    database: str = "property_registration"
    user: str = "postgres"
    password: str = "postgres"

    @property
    def connection_string(self) -> str:
        """Get connection string."""
        return f"postgresql://{self.user}:{self.password}@{self.host}:{self.port}/{self.database}"


@dataclass
class SettlementConfig:
    """Business settings for balance and settlement computation."""

    tolerance: Decimal = Decimal("0.01")
    default_currency: str = "USD"
    max_conflict_retries: int = 3
    store_backend: str = "memory"  # memory | postgres


@dataclass
class ApiConfig:
    """HTTP surface configuration."""

    host: str = "127.0.0.1"
    port: int = 5000
    debug: bool = False


@dataclass
class OutputConfig:
    """Report export configuration."""

    json_output_dir: Path = field(default_factory=lambda: Path("output"))
    pretty_json: bool = False


@dataclass
class TaxSettlementConfig:
    """Main configuration for tax-settlement."""

    kafka: KafkaConfig = field(default_factory=KafkaConfig)
    postgres: PostgresConfig = field(default_factory=PostgresConfig)
    settlement: SettlementConfig = field(default_factory=SettlementConfig)
    api: ApiConfig = field(default_factory=ApiConfig)
    output: OutputConfig = field(default_factory=OutputConfig)
    publish_events: bool = False
    log_level: str = "INFO"
    log_format: str = "standard"

    @classmethod
    def from_env(cls) -> "TaxSettlementConfig":
        """Create config from environment variables."""
        import os

        kafka = KafkaConfig(
            bootstrap_servers=os.getenv("KAFKA_BOOTSTRAP_SERVERS", "localhost:9092"),
            acks=os.getenv("KAFKA_ACKS", "all"),
            topic_prefix=os.getenv("TOPIC_PREFIX", "tax"),
        )

        postgres = PostgresConfig(
            host=os.getenv("POSTGRES_HOST", "localhost"),
            port=int(os.getenv("POSTGRES_PORT", "5432")),
            database=os.getenv("POSTGRES_DB", "property_registration"),
            user=os.getenv("POSTGRES_USER", "postgres"),
            password=os.getenv("POSTGRES_PASSWORD", "postgres"),
        )

        store_backend = os.getenv("STORE_BACKEND", "memory").lower()
        if store_backend not in ("memory", "postgres"):
            raise ConfigurationError(f"Unknown STORE_BACKEND: {store_backend}")

        settlement = SettlementConfig(
            default_currency=os.getenv("DEFAULT_CURRENCY", "USD"),
            max_conflict_retries=int(os.getenv("MAX_CONFLICT_RETRIES", "3")),
            store_backend=store_backend,
        )

        api = ApiConfig(
            host=os.getenv("API_HOST", "127.0.0.1"),
            port=int(os.getenv("API_PORT", "5000")),
            debug=os.getenv("API_DEBUG", "false").lower() == "true",
        )

        output = OutputConfig(
            json_output_dir=Path(os.getenv("OUTPUT_DIR", "output")),
            pretty_json=os.getenv("PRETTY_JSON", "false").lower() == "true",
        )

        return cls(
            kafka=kafka,
            postgres=postgres,
            settlement=settlement,
            api=api,
            output=output,
            publish_events=os.getenv("PUBLISH_EVENTS", "false").lower() == "true",
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "standard"),
        )
