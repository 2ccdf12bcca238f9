"""Text normalization helpers for Turkish queries and restaurant names."""

import re
import unicodedata

_WHITESPACE_RE = re.compile(r"\s+")
_NON_WORD_RE = re.compile(r"[^\w\s]", re.UNICODE)


def turkish_lower(value: str) -> str:
    """Lowercase with Turkish dotted/dotless I rules."""
    return value.replace("İ", "i").replace("I", "ı").lower()


def normalize_query(value: str) -> str:
    """Canonical form of a free-text food query (used in cache keys)."""
    return _WHITESPACE_RE.sub(" ", turkish_lower(value.strip()))


def normalize_name(value: str) -> str:
    """Accent-insensitive form of a restaurant name used for dedup.

    "ÇİYA SOFRASI" and "Çiya Sofrası" both become "ciya sofrasi".
    """
    lowered = turkish_lower(value or "")
    decomposed = unicodedata.normalize("NFKD", lowered)
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    stripped = stripped.replace("ı", "i")
    stripped = _NON_WORD_RE.sub(" ", stripped)
    return _WHITESPACE_RE.sub(" ", stripped).strip()
