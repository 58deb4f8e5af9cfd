"""
Validation gate for raw polls.

A poll that fails any rule is excluded from aggregation entirely; nothing is
coerced or defaulted. Structural checks (required fields, JSON types) use the
JSON Schema in config/schemas/raw_poll.schema.json, numeric and date rules are
checked here.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

import jsonschema

from respect_monitor.config.loader import find_config_path

logger = logging.getLogger(__name__)

SCHEMA_FILE = "schemas/raw_poll.schema.json"
RESULTS_SUM_TOLERANCE = 0.02
MIN_OPTIONS = 2

_RANGE_SPLIT = re.compile(r"\s+to\s+|\s*[–—]\s*|\s+-\s+")
_DATE_FORMATS = ("%Y-%m-%d", "%Y-%m", "%Y", "%d %b %Y", "%d %B %Y", "%b %Y", "%B %Y", "%d/%m/%Y")

_schema: Optional[Dict[str, Any]] = None


@dataclass
class PollValidationResult:
    valid: bool
    errors: List[str] = field(default_factory=list)


def load_poll_schema() -> Optional[Dict[str, Any]]:
    global _schema
    if _schema is None:
        path = find_config_path(SCHEMA_FILE)
        if path is None:
            logger.warning(f"config/{SCHEMA_FILE} not found, skipping structural checks")
            return None
        with open(path) as f:
            _schema = json.load(f)
    return _schema


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def parse_loose_date(text: str) -> Optional[datetime]:
    """Parse an ISO timestamp or one of a few human date formats."""
    text = text.strip()
    if not text:
        return None
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        pass
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    return None


def fieldwork_start_parses(fieldwork_dates: str) -> bool:
    """True if the first date of a fieldwork range parses ("2025-01-03 to 2025-01-05")."""
    first = _RANGE_SPLIT.split(fieldwork_dates.strip())[0]
    if parse_loose_date(first):
        return True
    # "2025-01-03-2025-01-05": take the leading ISO date
    match = re.match(r"\d{4}-\d{2}-\d{2}", first)
    return bool(match and parse_loose_date(match.group(0)))


def _schema_errors(payload: Dict[str, Any]) -> List[str]:
    schema = load_poll_schema()
    if schema is None:
        return []
    validator = jsonschema.Draft7Validator(schema)
    errors = []
    for e in sorted(validator.iter_errors(payload), key=lambda err: list(err.absolute_path)):
        where = ".".join(str(p) for p in e.absolute_path)
        errors.append(f"{where}: {e.message}" if where else e.message)
    return errors


def validate_raw_poll(payload: Dict[str, Any]) -> PollValidationResult:
    """
    Validate a raw poll payload.

    Args:
        payload: Poll as stored (dict)

    Returns:
        PollValidationResult with every rule violation listed
    """
    if not isinstance(payload, dict):
        return PollValidationResult(False, ["poll must be an object"])

    errors = _schema_errors(payload)

    if not str(payload.get("id") or "").strip():
        errors.append("id is required")
    if not str(payload.get("pollster") or "").strip():
        errors.append("pollster is required")
    if not str(payload.get("question") or "").strip():
        errors.append("question is required")

    options = payload.get("options")
    results = payload.get("results")
    options_ok = isinstance(options, list)
    results_ok = isinstance(results, list)

    if not options_ok or len(options) < MIN_OPTIONS:
        errors.append("options must be an array with at least 2 items")
    if not results_ok or len(results) < MIN_OPTIONS:
        errors.append("results must be an array with at least 2 items")

    n_options = len(options) if options_ok else 0
    n_results = len(results) if results_ok else 0
    if n_options != n_results:
        errors.append(f"options.length ({n_options}) must equal results.length ({n_results})")

    if results_ok and results:
        if not all(_is_number(r) for r in results):
            errors.append("each result must be a number between 0 and 1")
        else:
            total = sum(results)
            if total < 1 - RESULTS_SUM_TOLERANCE or total > 1 + RESULTS_SUM_TOLERANCE:
                errors.append(f"results must sum to ~1 (got {total:.3f})")
            if any(r < 0 or r > 1 for r in results):
                errors.append("each result must be a number between 0 and 1")

    fieldwork = payload.get("fieldwork_dates")
    if not isinstance(fieldwork, str) or not fieldwork_start_parses(fieldwork):
        errors.append("fieldwork_dates must be parseable (e.g. YYYY-MM-DD or range)")

    published_at = payload.get("published_at")
    if not isinstance(published_at, str) or parse_loose_date(published_at) is None:
        errors.append("published_at must be a valid ISO date")

    sample_size = payload.get("sample_size")
    if sample_size is not None:
        if (not _is_number(sample_size) or sample_size < 1
                or (isinstance(sample_size, float) and not sample_size.is_integer())):
            errors.append("sample_size must be a positive integer when provided")

    return PollValidationResult(valid=not errors, errors=errors)
