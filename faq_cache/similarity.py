"""Lexical similarity — blended Jaccard / term-frequency cosine. No external deps.

score = 0.7 * jaccard(token sets) + 0.3 * cosine(raw term counts)

Term frequencies are raw per-token counts; there is no IDF weighting.
"""

from __future__ import annotations

import math
from collections import Counter

from faq_cache._constants import COSINE_WEIGHT, JACCARD_WEIGHT
from faq_cache.keywords import normalize, tokenize
from faq_cache.observability import get_logger

__all__ = ["jaccard", "tf_cosine", "score", "LexicalSimilarityScorer"]

_log = get_logger("similarity")


def jaccard(a: set[str], b: set[str]) -> float:
    """Intersection over union of two token sets. 0.0 when both are empty."""
    union = a | b
    if not union:
        return 0.0
    return len(a & b) / len(union)


def tf_cosine(a: list[str], b: list[str]) -> float:
    """Cosine similarity of raw term-count vectors.

    Raises ZeroDivisionError when either side has no tokens.
    """
    fa, fb = Counter(a), Counter(b)
    dot = sum(count * fb[tok] for tok, count in fa.items())
    norm_a = math.sqrt(sum(c * c for c in fa.values()))
    norm_b = math.sqrt(sum(c * c for c in fb.values()))
    return dot / (norm_a * norm_b)


def _tokens(text: str) -> list[str]:
    toks = tokenize(text)
    if toks:
        return toks
    # All tokens were stopwords or too short: compare what is left.
    return normalize(text).split()


def score(a: str, b: str) -> float:
    """Blended lexical similarity of two texts, in [0, 1]. Never raises."""
    ta, tb = _tokens(a or ""), _tokens(b or "")
    if not ta and not tb:
        same = bool((a or "").strip()) and (a or "").strip().lower() == (b or "").strip().lower()
        return 1.0 if same else 0.0

    j = jaccard(set(ta), set(tb))
    try:
        blended = JACCARD_WEIGHT * j + COSINE_WEIGHT * tf_cosine(ta, tb)
    except (ZeroDivisionError, ValueError, OverflowError) as exc:
        _log.debug("tf_cosine_fallback", error=type(exc).__name__)
        blended = j
    return round(min(1.0, max(0.0, blended)), 6)


class LexicalSimilarityScorer:
    """Callable wrapper so the orchestrator can take any scorer."""

    def __call__(self, a: str, b: str) -> float:
        return score(a, b)

    def score(self, a: str, b: str) -> float:
        return score(a, b)
