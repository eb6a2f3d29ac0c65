"""JSON snapshot storage for per-model metrics.

The snapshot is a single JSON document mapping model id to its metric list.
It is always rewritten wholesale and read wholesale:

    {
      "schema_version": "1.0.0",
      "saved_at": "2025-12-24T00:00:00+00:00",
      "models": {"openai/gpt-4o": [{"latency_ms": 812.0, "success": true, ...}]}
    }
"""

import json
import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List

from .types import ModelMetric

logger = logging.getLogger(__name__)

# Schema version for forward compatibility
SCHEMA_VERSION = "1.0.0"


def write_snapshot(
    snapshot: Dict[str, List[ModelMetric]],
    path: Path,
) -> int:
    """Write the full metric snapshot to disk atomically.

    Creates parent directories if needed. The document is written to a
    temporary file in the same directory and moved into place, so readers
    never observe a partially written snapshot.

    Args:
        snapshot: Mapping of model id to its metrics (oldest first)
        path: Destination file

    Returns:
        Number of metric records written

    Raises:
        OSError: If the file cannot be written
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    document = {
        "schema_version": SCHEMA_VERSION,
        "saved_at": datetime.now(timezone.utc).isoformat(),
        "models": {
            model_id: [metric.to_dict() for metric in metrics]
            for model_id, metrics in snapshot.items()
        },
    }

    fd, tmp_name = tempfile.mkstemp(
        prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent)
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(document, f)
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise

    count = sum(len(metrics) for metrics in snapshot.values())
    logger.debug(f"Wrote health snapshot with {count} metrics to {path}")
    return count


def read_snapshot(path: Path) -> Dict[str, List[ModelMetric]]:
    """Read the metric snapshot from disk.

    A missing or unreadable snapshot yields empty state; malformed
    individual records are skipped. Neither case is fatal.

    Args:
        path: Snapshot file

    Returns:
        Mapping of model id to metrics, sorted by timestamp (oldest first)
    """
    if not path.exists():
        logger.info(f"No health snapshot at {path}, starting empty")
        return {}

    try:
        with open(path, "r", encoding="utf-8") as f:
            document = json.load(f)
    except (OSError, json.JSONDecodeError, UnicodeDecodeError) as e:
        logger.warning(f"Ignoring unreadable health snapshot {path}: {e}")
        return {}

    models = document.get("models") if isinstance(document, dict) else None
    if not isinstance(models, dict):
        logger.warning(f"Ignoring health snapshot {path}: missing 'models' mapping")
        return {}

    result: Dict[str, List[ModelMetric]] = {}
    for model_id, records in models.items():
        if not isinstance(records, list):
            logger.warning(f"Skipping metrics for {model_id} in {path}: not a list")
            continue

        metrics: List[ModelMetric] = []
        for index, record in enumerate(records):
            try:
                metrics.append(ModelMetric.from_dict(record))
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                logger.warning(
                    f"Skipping malformed metric {index} for {model_id} in {path}: {e}"
                )

        metrics.sort(
            key=lambda m: m.timestamp or datetime.min.replace(tzinfo=timezone.utc)
        )
        if metrics:
            result[model_id] = metrics

    return result
