"""Embedding providers and the guarded embedding gateway.

Providers:
- "local": sentence-transformers model, loaded lazily on first use
- "http":  OpenAI-compatible ``/embeddings`` endpoint
- "none":  embeddings disabled (keyword/lexical-only mode)

All calls from the cache go through ``EmbeddingGateway``, which applies the
per-call timeout and circuit breaker from ``resilience`` and turns every
failure into ``None``.
"""

from __future__ import annotations

import hashlib
import json
import time
import urllib.request
from typing import Any

from faq_cache.config import Settings
from faq_cache.observability import get_logger, metrics, timed
from faq_cache.resilience import CircuitBreaker, ExternalCallGuard

_log = get_logger("embeddings")


class EmbeddingProvider:
    """text -> fixed-dimension float vector."""

    name = "base"

    def embed(self, texts: list[str]) -> list[list[float]]:
        raise NotImplementedError


class SentenceTransformerProvider(EmbeddingProvider):
    """Local sentence-transformers model."""

    name = "local"

    def __init__(self, model_name: str = "all-MiniLM-L6-v2", cache_dir: str | None = None):
        self.model_name = model_name
        self.cache_dir = cache_dir
        self._model = None

    @property
    def model(self):
        """Lazy-load embedding model on first access."""
        if self._model is None:
            try:
                from sentence_transformers import SentenceTransformer
            except ImportError as e:
                _log.error("sentence_transformers_not_installed", error=str(e))
                raise ImportError(
                    "sentence-transformers not installed. "
                    "Install with: pip install 'faq-cache[embeddings]'"
                ) from e
            self._model = SentenceTransformer(self.model_name, cache_folder=self.cache_dir)
            _log.info("embedding_model_loaded", model=self.model_name)
        return self._model

    def embed(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        embeddings = self.model.encode(texts, show_progress_bar=False, convert_to_numpy=True)
        return [emb.tolist() for emb in embeddings]


class HttpEmbeddingProvider(EmbeddingProvider):
    """OpenAI-compatible ``POST {url}`` with ``{"model", "input"}``."""

    name = "http"

    def __init__(self, url: str, model: str, token: str = "", timeout: float = 10.0):
        self.url = url
        self.model = model
        self.token = token
        self.timeout = timeout

    def embed(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        payload = json.dumps({"model": self.model, "input": texts}).encode("utf-8")
        req = urllib.request.Request(self.url, data=payload, headers=headers, method="POST")
        with urllib.request.urlopen(req, timeout=self.timeout) as resp:
            body = json.loads(resp.read().decode("utf-8"))
        return _parse_embedding_response(body, expected=len(texts))


def _parse_embedding_response(body: Any, expected: int) -> list[list[float]]:
    """Accept ``{"data": [{"embedding", "index"}]}`` or a bare list of vectors."""
    if isinstance(body, dict) and isinstance(body.get("data"), list):
        items = sorted(body["data"], key=lambda item: item.get("index", 0) if isinstance(item, dict) else 0)
        vectors = [item.get("embedding") for item in items if isinstance(item, dict)]
    elif isinstance(body, list):
        vectors = body
    else:
        raise ValueError("unrecognised embedding response")
    if len(vectors) != expected or not all(isinstance(v, list) and v for v in vectors):
        raise ValueError(f"expected {expected} embeddings, got {len(vectors)}")
    return [[float(x) for x in v] for v in vectors]


def build_provider(settings: Settings) -> EmbeddingProvider | None:
    """Create the configured provider, or None when embeddings are disabled."""
    provider = settings.embedding_provider.lower()
    if provider == "local":
        return SentenceTransformerProvider(settings.embedding_model)
    if provider == "http":
        if not settings.embedding_url:
            _log.warning("embedding_url_missing", provider=provider)
            return None
        return HttpEmbeddingProvider(
            settings.embedding_url, settings.embedding_model,
            token=settings.embedding_token, timeout=settings.embedding_timeout,
        )
    if provider not in ("", "none"):
        _log.warning("embedding_provider_unknown", provider=provider)
    return None


class EmbeddingGateway:
    """Guarded access to an EmbeddingProvider.

    ``embed_one`` serves single texts (query and saved question).
    ``embed_many`` serves bulk work: texts are split into batches of
    ``batch_size``; requests inside a batch run concurrently, batches run one
    after another so at most ``batch_size`` calls are in flight.
    """

    def __init__(self, provider: EmbeddingProvider, settings: Settings | None = None,
                 guard: ExternalCallGuard | None = None, cache=None):
        settings = settings or Settings()
        self.provider = provider
        self.batch_size = max(1, settings.embedding_batch_size)
        self.model_name = settings.embedding_model
        self.guard = guard or ExternalCallGuard(
            "embeddings",
            timeout=settings.embedding_timeout,
            breaker=CircuitBreaker(
                "embeddings",
                failure_threshold=settings.breaker_failure_threshold,
                reset_seconds=settings.breaker_reset_seconds,
            ),
        )
        self.cache = cache

    def _single(self, text: str) -> list[float]:
        vectors = self.provider.embed([text])
        if not vectors or not vectors[0]:
            raise ValueError("empty embedding")
        return vectors[0]

    def embed_one(self, text: str) -> list[float] | None:
        if not text or not text.strip():
            return None
        with timed("embed_one"):
            vector = self.guard.call(self._single, text)
        if vector is None:
            metrics.inc("embedding_failures")
        else:
            metrics.inc("embeddings_generated")
        return vector

    def embed_query(self, text: str) -> list[float] | None:
        """Like embed_one, but reuses a cached vector for repeated query text."""
        if self.cache is None:
            return self.embed_one(text)
        digest = hashlib.sha1(f"{self.model_name}\n{text.strip()}".encode("utf-8")).hexdigest()
        key = f"embedding:{digest}"
        cached = self.cache.get_cached(key)
        if isinstance(cached, list) and cached:
            metrics.inc("embedding_cache_hits")
            return cached
        vector = self.embed_one(text)
        if vector is not None:
            self.cache.set_cached(key, vector)
        return vector

    def embed_many(self, texts: list[str]) -> list[list[float] | None]:
        """Embed many texts in sequential batches of concurrent calls."""
        results: list[list[float] | None] = []
        with timed("embed_many"):
            for start in range(0, len(texts), self.batch_size):
                batch = texts[start:start + self.batch_size]
                futures = [self.guard.submit(self._single, t) if t and t.strip() else None
                           for t in batch]
                deadline = time.monotonic() + self.guard.timeout
                results.extend(self.guard.resolve(f, deadline=deadline) for f in futures)
                _log.debug("embedding_batch_done", batch=start // self.batch_size + 1, size=len(batch))
        ok = sum(1 for r in results if r is not None)
        metrics.inc("embeddings_generated", ok)
        if ok < len(results):
            metrics.inc("embedding_failures", len(results) - ok)
        return results
