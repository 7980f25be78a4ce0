"""JSON file sink for exporting settlement reports."""

import json
import logging
from pathlib import Path
from typing import Any

from tax_settlement.sinks.serialization import to_dict

logger = logging.getLogger(__name__)


class JsonFileSink:
    """Write report batches (settlements, ledgers) to JSON files."""

    def __init__(self, output_dir: str | Path, pretty: bool = False) -> None:
        """Initialize JSON file sink.

        Parameters
        ----------
        output_dir : str | Path
            Directory to write JSON files.
        pretty : bool
            Pretty-print JSON output.
        """
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.pretty = pretty
        self._counts: dict[str, int] = {}

    def write_batch(self, name: str, records: list[Any]) -> Path:
        """Write records to ``<output_dir>/<name>.json`` and return the path."""
        file_path = self.output_dir / f"{name}.json"
        data = [to_dict(record) for record in records]

        with open(file_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2 if self.pretty else None, ensure_ascii=False)

        self._counts[name] = len(records)
        return file_path

    def close(self) -> None:
        """Log a summary of written files."""
        logger.info("JSON files written to: %s", self.output_dir)
        for name, count in self._counts.items():
            logger.info("  %s: %d records", name, count)
