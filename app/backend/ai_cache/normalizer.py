"""
Query normalization for cache key generation.

Free-text questions about the same agronomic problem rarely arrive in the
same shape. Lowercasing, stripping punctuation, dropping filler words and
sorting what is left lets "How do I treat wheat rust?" and "wheat rust
treat" land on the same token string.
"""
import re
from typing import Any

# English and Hindi filler words that carry no agronomic meaning
STOP_WORDS = frozenset([
    'a', 'an', 'the', 'is', 'are', 'was', 'were', 'be', 'been', 'being',
    'have', 'has', 'had', 'do', 'does', 'did', 'will', 'would', 'could', 'should',
    'may', 'might', 'must', 'shall', 'can', 'need', 'dare', 'ought', 'used',
    'to', 'of', 'in', 'for', 'on', 'with', 'at', 'by', 'from', 'up', 'about',
    'into', 'over', 'after', 'beneath', 'under', 'above',
    'what', 'which', 'who', 'whom', 'this', 'that', 'these', 'those',
    'am', 'i', 'my', 'me', 'we', 'our', 'you', 'your', 'he', 'she', 'it',
    'they', 'them', 'their', 'its', 'his', 'her',
    'and', 'but', 'or', 'not', 'no', 'yes', 'so', 'if', 'then', 'than',
    'please', 'help', 'tell', 'explain', 'how', 'why', 'when', 'where',
    'मुझे', 'बताओ', 'क्या', 'है', 'कैसे', 'करें', 'और', 'या', 'में', 'के', 'की', 'का',
])

# Devanagari vowel signs are combining marks, not \w; keep them so Hindi
# words survive intact. The danda (U+0964/U+0965) is punctuation.
_NON_WORD = re.compile(r'[^\w\s\u0900-\u0963\u0966-\u097F]')


def normalize_query(query: Any) -> str:
    """
    Canonicalize a query into sorted, space-joined meaningful tokens.

    Never raises: None, non-string and empty input all normalize to "".
    """
    if not isinstance(query, str) or not query:
        return ""

    tokens = _NON_WORD.sub(' ', query.lower()).split()
    kept = [t for t in tokens if len(t) > 2 and t not in STOP_WORDS]
    return ' '.join(sorted(kept))
