import json
import logging
import re
import secrets
from datetime import UTC, datetime
from typing import Any

_WORD_RE = re.compile(r"[a-z0-9]+")


def strip_code_fences(text: str) -> str:
    """Remove a surrounding markdown code fence (``` or ```json) if present."""
    cleaned = text.strip()
    if cleaned.startswith("```"):
        lines = cleaned.split("\n")
        end_idx = len(lines)
        for i in range(len(lines) - 1, 0, -1):
            if lines[i].strip().startswith("```"):
                end_idx = i
                break
        if len(lines) == 1:
            # Single-line fence: ```{...}```
            cleaned = cleaned.strip("`")
            if cleaned.lower().startswith("json"):
                cleaned = cleaned[4:]
            return cleaned.strip()
        cleaned = "\n".join(lines[1:end_idx]).rstrip()
        if cleaned.endswith("```"):
            cleaned = cleaned[:-3]
    return cleaned.strip()


def normalize_words(text: str) -> list[str]:
    """Lowercase alphanumeric word tokens."""
    return _WORD_RE.findall(text.lower())


def generate_reflection_id() -> str:
    """Generate unique reflection ID using timestamp + random suffix"""
    ts = datetime.now(UTC).strftime("%Y%m%d-%H%M%S")
    rand = secrets.token_hex(4)
    return f"ref-{ts}-{rand}"


def setup_logging(level: str = "INFO", json_format: bool = True) -> None:
    """Configure structured JSON logging"""
    log_level = getattr(logging, level.upper(), logging.INFO)

    if json_format:
        class JSONFormatter(logging.Formatter):
            def format(self, record: logging.LogRecord) -> str:
                log_obj = {
                    "timestamp": datetime.now(UTC).isoformat(),
                    "level": record.levelname,
                    "logger": record.name,
                    "message": record.getMessage(),
                }
                if record.exc_info:
                    log_obj["exception"] = self.formatException(record.exc_info)
                event = getattr(record, "event", None)
                if isinstance(event, dict):
                    log_obj.update(event)
                return json.dumps(log_obj, default=str)

        handler = logging.StreamHandler()
        handler.setFormatter(JSONFormatter())
    else:
        handler = logging.StreamHandler()
        handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )

    logging.root.handlers = []
    logging.root.addHandler(handler)
    logging.root.setLevel(log_level)


def log_event(event_type: str, data: dict[str, Any]) -> None:
    """Log structured event with metadata"""
    logger = logging.getLogger("ace_playbook.events")
    logger.info(event_type, extra={"event": {"event_type": event_type, **data}})
