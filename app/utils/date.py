"""
Date parsing utilities for spreadsheet values.

Spreadsheet exports carry dates in whatever format the source system used;
everything the ingestion core persists is standardized to ``YYYY-MM-DD``.
"""

import logging
import re
from datetime import date, datetime
from typing import Any, Optional

import pandas as pd

from app.core.config import settings

logger = logging.getLogger(__name__)

FAILED_SAMPLE_LIMIT = 5
SUPPRESSION_NOTICE_EVERY = 100

_failure_stats: dict = {}


def _record_parse_failure(value: Any, context: Optional[str], error: Exception) -> None:
    """
    Collect failure stats and emit limited logs (sampled warnings + periodic summaries).
    """
    key = context or "default"
    stats = _failure_stats.setdefault(key, {"count": 0, "samples": []})
    stats["count"] += 1
    count = stats["count"]

    if len(stats["samples"]) < FAILED_SAMPLE_LIMIT:
        stats["samples"].append(value)
        logger.warning("Failed to parse date%s value '%s': %s", f" ({key})" if context else "", value, error)
        return

    if count == FAILED_SAMPLE_LIMIT + 1 or count % SUPPRESSION_NOTICE_EVERY == 0:
        logger.info(
            "Suppressed additional date parse warnings after %d failures%s; sample values=%s",
            count,
            f" ({key})" if context else "",
            stats["samples"],
        )


def _prefers_dayfirst(value: str) -> Optional[bool]:
    """Decide day/month order for ``NN/NN/YYYY`` style values; None when not numeric."""
    numeric_match = re.match(r'^(\d{1,2})[/.-](\d{1,2})[/.-]\d{2,4}', value)
    if not numeric_match:
        return None

    first = int(numeric_match.group(1))
    second = int(numeric_match.group(2))
    if first > 12 and second <= 31:
        return True
    if second > 12 and first <= 12:
        return False
    return settings.date_default_dayfirst


def parse_flexible_date(value: Any, *, log_context: Optional[str] = None, log_failures: bool = True) -> Optional[str]:
    """
    Parse a date value from various formats and return it as ``YYYY-MM-DD``.

    Supports ISO 8601 timestamps, ``YYYY-MM-DD``, ``DD/MM/YYYY`` and
    ``MM/DD/YYYY`` (order decided per value, ambiguous values follow
    ``settings.date_default_dayfirst``), ``date``/``datetime`` objects and
    anything else pandas can infer.

    Returns:
        ISO date string or None when the value is empty or unparseable.
    """
    if value is None or (isinstance(value, float) and pd.isna(value)):
        return None

    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()

    value = str(value).strip()
    if value == "":
        return None

    parse_attempts = []
    dayfirst = _prefers_dayfirst(value)
    if dayfirst is not None:
        parse_attempts.append(lambda v, df=dayfirst: pd.to_datetime(v, dayfirst=df, errors='raise'))
        # The alternate interpretation rescues values like 02/30 vs 30/02
        parse_attempts.append(lambda v, df=not dayfirst: pd.to_datetime(v, dayfirst=df, errors='raise'))
    parse_attempts.append(lambda v: pd.to_datetime(v, errors='raise'))

    last_error = None
    for attempt in parse_attempts:
        try:
            parsed = attempt(value)
        except Exception as exc:
            last_error = exc
            continue
        if pd.isna(parsed):
            continue
        return parsed.date().isoformat()

    if log_failures:
        _record_parse_failure(value, log_context, last_error or ValueError("Unable to determine format"))
    return None
