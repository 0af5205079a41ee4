# ace_playbook/core/metrics.py
"""Parse metrics for Reflector and Curator model output."""
import json
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Literal, Optional

logger = logging.getLogger(__name__)

SchemaType = Literal["reflection", "curation"]


@dataclass
class ParseAttempt:
    """Single parse attempt record."""
    timestamp: datetime
    success: bool
    error_type: str | None = None
    error_message: str | None = None
    schema_type: SchemaType = "reflection"
    dropped_items: int = 0


@dataclass
class ParseMetrics:
    """Aggregated parse metrics."""
    total_attempts: int = 0
    successful_parses: int = 0
    failed_parses: int = 0
    json_decode_errors: int = 0
    schema_validation_errors: int = 0
    dropped_items: int = 0
    error_breakdown: dict[str, int] = field(default_factory=dict)

    @property
    def success_rate(self) -> float:
        if self.total_attempts == 0:
            return 0.0
        return self.successful_parses / self.total_attempts

    def to_dict(self) -> dict:
        return {
            "total_attempts": self.total_attempts,
            "successful_parses": self.successful_parses,
            "failed_parses": self.failed_parses,
            "success_rate": round(self.success_rate, 3),
            "json_decode_errors": self.json_decode_errors,
            "schema_validation_errors": self.schema_validation_errors,
            "dropped_items": self.dropped_items,
            "error_breakdown": self.error_breakdown,
        }


class MetricsTracker:
    """Process-wide tracker for model-output parse attempts.

    Attempts are kept in memory; set ``metrics_file`` to also append them to a JSONL file.
    """

    _instance: Optional["MetricsTracker"] = None
    _initialized: bool

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        if self._initialized:
            return
        self._initialized = True
        self.attempts: list[ParseAttempt] = []
        self.metrics_file: Path | None = None

    def record_attempt(
        self,
        success: bool,
        error_type: str | None = None,
        error_message: str | None = None,
        schema_type: SchemaType = "reflection",
        dropped_items: int = 0,
    ):
        """Record a parse attempt."""
        attempt = ParseAttempt(
            timestamp=datetime.now(UTC),
            success=success,
            error_type=error_type,
            error_message=error_message,
            schema_type=schema_type,
            dropped_items=dropped_items,
        )
        self.attempts.append(attempt)
        if self.metrics_file is not None:
            self._persist_attempt(attempt)

    def _persist_attempt(self, attempt: ParseAttempt):
        """Append attempt to JSONL file."""
        assert self.metrics_file is not None
        data = {
            "timestamp": attempt.timestamp.isoformat(),
            "success": attempt.success,
            "error_type": attempt.error_type,
            "error_message": attempt.error_message,
            "schema_type": attempt.schema_type,
            "dropped_items": attempt.dropped_items,
        }
        try:
            with open(self.metrics_file, "a") as f:
                f.write(json.dumps(data) + "\n")
        except OSError as e:
            logger.warning(f"Could not persist parse metrics to {self.metrics_file}: {e}")

    def get_metrics(self, schema_type: SchemaType | None = None) -> ParseMetrics:
        """Compute aggregated metrics."""
        attempts = self.attempts
        if schema_type:
            attempts = [a for a in attempts if a.schema_type == schema_type]

        metrics = ParseMetrics()
        metrics.total_attempts = len(attempts)

        for attempt in attempts:
            metrics.dropped_items += attempt.dropped_items
            if attempt.success:
                metrics.successful_parses += 1
                continue

            metrics.failed_parses += 1
            error_key = attempt.error_type or "unknown"
            if error_key == "JSONDecodeError":
                metrics.json_decode_errors += 1
            else:
                metrics.schema_validation_errors += 1
            metrics.error_breakdown[error_key] = metrics.error_breakdown.get(error_key, 0) + 1

        return metrics

    def reset(self):
        """Clear all metrics (for testing)."""
        self.attempts.clear()


def get_tracker() -> MetricsTracker:
    """Get the global metrics tracker instance."""
    return MetricsTracker()
