from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from pathlib import Path

logger = logging.getLogger(__name__)


def parse_credit_lines(lines: Iterable[str]) -> dict[str, float]:
    """Read ``code,credit`` pairs; blank and malformed lines are skipped."""
    credits: dict[str, float] = {}
    for lineno, raw in enumerate(lines, start=1):
        line = raw.strip()
        if not line:
            continue
        parts = line.split(",")
        code = parts[0].strip()
        value = parts[1].strip() if len(parts) > 1 else ""
        if not code or not value:
            logger.warning(f"Skipping credit line {lineno}: {line!r}")
            continue
        try:
            credits[code] = float(value)
        except ValueError:
            logger.warning(f"Skipping credit line {lineno}: bad credit value {value!r}")
    return credits


def load_credit_map(path: str | Path) -> dict[str, float]:
    text = Path(path).read_text(encoding="utf-8")
    credits = parse_credit_lines(text.splitlines())
    logger.info(f"Loaded {len(credits)} credit(s) from {path}")
    return credits


def missing_credits(subject_map: Mapping[str, str], credit_map: Mapping[str, float]) -> list[str]:
    """Subject codes found in a result document that have no credit value."""
    return [code for code in subject_map if code not in credit_map]
