"""Keyword extraction — Thai/English tokenizer with stopword filtering."""

from __future__ import annotations

import re

from faq_cache._constants import MIN_TOKEN_LENGTH, THAI_TONE_MARKS, _STOPWORDS_EN, _STOPWORDS_TH

__all__ = ["normalize", "tokenize", "extract_keywords", "STOPWORDS"]

# Latin letters, digits, the Thai block and whitespace survive normalization.
_DISALLOWED_RE = re.compile(r"[^a-z0-9\u0e00-\u0e7f\s]+")
_TONE_TABLE = str.maketrans("", "", THAI_TONE_MARKS)


def _strip_tones(text: str) -> str:
    return text.translate(_TONE_TABLE)


STOPWORDS = frozenset(_STOPWORDS_EN | {_strip_tones(w) for w in _STOPWORDS_TH})


def normalize(text: str) -> str:
    """Lowercase, drop characters outside the script allow-list, strip tone marks."""
    if not text:
        return ""
    text = _DISALLOWED_RE.sub(" ", text.lower())
    return _strip_tones(text)


def tokenize(text: str) -> list[str]:
    """Split text into normalized tokens, keeping order and duplicates.

    Tokens shorter than ``MIN_TOKEN_LENGTH`` and stopwords are dropped.
    """
    return [t for t in normalize(text).split()
            if len(t) >= MIN_TOKEN_LENGTH and t not in STOPWORDS]


def extract_keywords(text: str) -> set[str]:
    """Return the keyword set of ``text``.

    Idempotent on its own output: ``extract_keywords(" ".join(kw)) == kw``.
    """
    return set(tokenize(text))
