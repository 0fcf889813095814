"""Local typed-answer checks."""
from __future__ import annotations

import re

from .backend.models import INT64_MAX, INT64_MIN
from .errors import ValidationInputError

ANSWER_HINT = "Enter a single integer answer (e.g. 42 or -17)."

_INTEGER = re.compile(r"^[+-]?\d+$", re.ASCII)
_GROUPED = re.compile(r"^[+-]?\d{1,3}(,\d{3})+$", re.ASCII)
_MAX_LENGTH = 64


def parse_answer_text(raw: str) -> int:
    """Strict integer parse of a typed answer.

    Surrounding whitespace is trimmed and well-formed thousands separators are
    dropped (``"1,234"``); any other comma (``"4,2"``) is rejected.
    """
    cleaned = (raw or "").strip()
    if "," in cleaned:
        if not _GROUPED.match(cleaned):
            raise ValidationInputError(ANSWER_HINT)
        cleaned = cleaned.replace(",", "")
    if not cleaned or len(cleaned) > _MAX_LENGTH or not _INTEGER.match(cleaned):
        raise ValidationInputError(ANSWER_HINT)

    value = int(cleaned)
    if not INT64_MIN <= value <= INT64_MAX:
        raise ValidationInputError(ANSWER_HINT)
    return value
