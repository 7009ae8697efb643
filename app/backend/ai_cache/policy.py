"""
Cacheability policy for AI requests.

Some questions are too short to mean anything on their own, some are too
long to ever repeat, and some only make sense for the farmer who asked
them ("what should I spray on my field today"). Those are answered fresh
every time instead of being shared across requesters.
"""
import re
from collections.abc import Mapping
from typing import Any, Optional

from ai_cache.store import CacheType

MIN_QUERY_LENGTH = 10
MAX_QUERY_LENGTH = 500

# Personal or time-relative references, English and Hindi
PERSONAL_PATTERNS = [
    re.compile(p, re.IGNORECASE) for p in (
        r"my field",
        r"my farm",
        r"my crop",
        r"yesterday",
        r"today",
        r"tomorrow",
        r"last week",
        r"this week",
        r"मेरा खेत",
        r"मेरी फसल",
    )
]


def _coerce_type(cache_type: Any) -> Optional[CacheType]:
    try:
        return CacheType(cache_type)
    except ValueError:
        return None


def is_cacheable(cache_type: Any, query: Any, context: Optional[Mapping] = None) -> bool:
    """
    Decide whether a (type, query, context) request may be served from cache.

    Pure and total: malformed input degrades to False instead of raising.
    """
    if not isinstance(query, str):
        return False
    if context is not None and not isinstance(context, Mapping):
        return False

    resolved = _coerce_type(cache_type)
    if resolved is None:
        return False

    if len(query) < MIN_QUERY_LENGTH or len(query) > MAX_QUERY_LENGTH:
        return False

    if any(pattern.search(query) for pattern in PERSONAL_PATTERNS):
        return False

    # diagnosis input is an image; no two requests are the same work
    if resolved is CacheType.DIAGNOSIS:
        return False

    return True
