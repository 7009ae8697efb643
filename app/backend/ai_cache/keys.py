"""
Deterministic cache keys for AI requests.

A key combines the request type, the normalized query and the handful of
context fields that actually change the right answer (season, region,
crop). Everything else in the context, such as user ids or names, is
left out so that farmers with the same question share one entry.
"""
import json
from collections.abc import Mapping
from typing import Any, Optional

from ai_cache.normalizer import normalize_query

# Context fields that materially change the answer, in serialization order
RELEVANT_CONTEXT_FIELDS = ("season", "state", "crop")

_BASE36_DIGITS = "0123456789abcdefghijklmnopqrstuvwxyz"


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36_DIGITS[rem])
    return "".join(reversed(digits))


def simple_hash(text: str) -> str:
    """32-bit rolling hash (h * 31 + c) over UTF-16 code units, absolute value, base 36."""
    data = text.encode("utf-16-le", "surrogatepass")
    h = 0
    for i in range(0, len(data), 2):
        unit = data[i] | (data[i + 1] << 8)
        h = ((h << 5) - h + unit) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return _to_base36(abs(h))


def project_context(context: Optional[Mapping]) -> str:
    """
    Serialize only the answer-relevant slice of context, or "" when absent.
    Missing or None fields are left out entirely.
    """
    if not isinstance(context, Mapping):
        return ""
    relevant = {
        field: context[field]
        for field in RELEVANT_CONTEXT_FIELDS
        if context.get(field) is not None
    }
    return json.dumps(relevant, separators=(",", ":"), ensure_ascii=False, default=str)


def generate_cache_key(cache_type: Any, query: Any, context: Optional[Mapping] = None) -> str:
    type_name = getattr(cache_type, "value", cache_type)
    full_key = f"{type_name}:{normalize_query(query)}:{project_context(context)}"
    return simple_hash(full_key)
