"""Text helpers shared by the normalizer, the search engine and tests.

Consolidates:
  - whitespace / digit cleanup used by criteria normalization
  - trigram similarity with the same semantics as PostgreSQL ``pg_trgm``
    (registered as the ``similarity()`` SQL function on SQLite so the search
    engine issues one query shape on both backends)
"""

import re
from functools import lru_cache

_WHITESPACE_RE = re.compile(r"\s+")
_NON_DIGIT_RE = re.compile(r"\D")
# pg_trgm treats every non-alphanumeric character as a word separator
_WORD_RE = re.compile(r"[^\W_]+", re.UNICODE)


def collapse_whitespace(s: str) -> str:
    """Trim and collapse internal runs of whitespace to a single space."""
    return _WHITESPACE_RE.sub(" ", s).strip()


def digits_only(s: str) -> str:
    """Strip every non-digit character: "+91 98765-43210" → "919876543210"."""
    return _NON_DIGIT_RE.sub("", s)


@lru_cache(maxsize=4096)
def trigrams(text: str) -> frozenset[str]:
    """Set of trigrams for ``text`` following pg_trgm's word padding.

    Each word is lower-cased and padded with two spaces in front and one
    behind, so "Ram" yields {"  r", " ra", "ram", "am "}.
    """
    grams: set[str] = set()
    for word in _WORD_RE.findall(text.lower()):
        padded = f"  {word} "
        for i in range(len(padded) - 2):
            grams.add(padded[i:i + 3])
    return frozenset(grams)


def trigram_similarity(a: str | None, b: str | None) -> float:
    """Shared-trigram ratio in [0, 1]: |A ∩ B| / |A ∪ B|.

    Returns 0.0 when either side is empty or NULL, matching pg_trgm.
    """
    if not a or not b:
        return 0.0
    ta = trigrams(a)
    tb = trigrams(b)
    if not ta or not tb:
        return 0.0
    return len(ta & tb) / len(ta | tb)
