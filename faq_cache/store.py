"""Chat record store on Redis.

Key layout (prefix defaults to ``faq``):

    {prefix}:chat:{id}        hash     ChatRecord fields (+ ``embedding`` bytes)
    {prefix}:cat:{category}   zset     record ids scored by created_at (ms)
    {prefix}:kw:{keyword}     set      record ids whose question has the keyword
    {prefix}:cache:{key}      string   JSON value with expiry

Every Redis error is caught and logged; reads then return an empty result and
``save`` returns None. Callers see a cache miss, never an exception.

Record ids start with the zero-padded ``created_at`` and a per-process
sequence, so ids sort in save order. Redis orders equal zset scores by member,
which keeps eviction oldest-first for saves within one millisecond.

The record hash, its keyword memberships and its bucket entry are written in
one MULTI/EXEC, so a failed save leaves nothing behind.

Two behaviours are intentional:

- Bucket insert and trim are separate commands. Concurrent saves into one
  category may briefly exceed the cap, and a record may be evicted right
  after it was inserted.
- Evicting a record leaves its ids in the keyword sets. Readers skip ids
  whose hash is gone; ``compaction.compact_keyword_index`` cleans them up.
"""

from __future__ import annotations

import itertools
import json
import threading
import time
import uuid
from collections.abc import Callable, Iterable
from dataclasses import asdict, dataclass
from typing import Any

from redis.exceptions import RedisError

from faq_cache.classifier import CategoryClassifier
from faq_cache.config import Settings
from faq_cache.keywords import extract_keywords
from faq_cache.observability import get_logger, metrics, timed

_log = get_logger("store")

RECORD_FIELDS = ("id", "user_id", "question", "answer", "raw_message", "category", "created_at")


class InvalidChatMessage(ValueError):
    """Raised when a raw chat message does not carry a question and an answer."""


@dataclass
class ChatRecord:
    id: str
    user_id: str
    question: str
    answer: str
    raw_message: str
    category: str
    created_at: int
    embedding: list[float] | None = None

    def to_dict(self, with_embedding: bool = False) -> dict[str, Any]:
        data = asdict(self)
        if not with_embedding:
            data.pop("embedding")
        return data

    @classmethod
    def from_values(cls, values: list[str | None]) -> ChatRecord | None:
        """Build a record from an HMGET reply in RECORD_FIELDS order."""
        data = dict(zip(RECORD_FIELDS, values))
        if not data.get("id") or data.get("question") is None:
            return None
        try:
            created_at = int(data.get("created_at") or 0)
        except ValueError:
            created_at = 0
        return cls(
            id=data["id"],
            user_id=data.get("user_id") or "",
            question=data["question"],
            answer=data.get("answer") or "",
            raw_message=data.get("raw_message") or "",
            category=data.get("category") or "general",
            created_at=created_at,
        )


def parse_chat_message(raw_message: str | dict) -> tuple[str, str]:
    """Split a raw chat message into ``(question, answer)``.

    The message must be a JSON object (or an already decoded dict) with
    non-empty string fields ``question`` and ``answer``.
    """
    data = raw_message
    if isinstance(raw_message, str):
        try:
            data = json.loads(raw_message)
        except json.JSONDecodeError as exc:
            raise InvalidChatMessage(f"raw_message is not JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise InvalidChatMessage("raw_message must be a JSON object")

    question, answer = data.get("question"), data.get("answer")
    if not isinstance(question, str) or not question.strip():
        raise InvalidChatMessage("raw_message.question must be a non-empty string")
    if not isinstance(answer, str) or not answer.strip():
        raise InvalidChatMessage("raw_message.answer must be a non-empty string")
    return question.strip(), answer.strip()


def _now_ms() -> int:
    return int(time.time() * 1000)


_id_sequence = itertools.count()
_id_lock = threading.Lock()


def new_record_id(created_at: int) -> str:
    """Time-ordered record id: ``{created_at:013d}-{seq:06d}-{random}``."""
    with _id_lock:
        seq = next(_id_sequence) % 1_000_000
    return f"{created_at:013d}-{seq:06d}-{uuid.uuid4().hex[:8]}"


class ChatRecordStore:
    """Owns chat records, category buckets and the keyword index."""

    def __init__(
        self,
        client,
        settings: Settings | None = None,
        classifier: CategoryClassifier | None = None,
        vector_index=None,
        embeddings=None,
        clock: Callable[[], int] = _now_ms,
    ):
        self.client = client
        self.settings = settings or Settings()
        self.classifier = classifier or CategoryClassifier()
        self.vector_index = vector_index
        self.embeddings = embeddings
        self.max_per_category = self.settings.max_chat_per_category
        self._prefix = self.settings.key_prefix
        self._clock = clock

    # -- keys ---------------------------------------------------------------

    def record_key(self, record_id: str) -> str:
        return f"{self._prefix}:chat:{record_id}"

    def bucket_key(self, category: str) -> str:
        return f"{self._prefix}:cat:{category}"

    def keyword_key(self, keyword: str) -> str:
        return f"{self._prefix}:kw:{keyword}"

    def cache_key(self, key: str) -> str:
        return f"{self._prefix}:cache:{key}"

    @property
    def keyword_pattern(self) -> str:
        return f"{self._prefix}:kw:*"

    def _store_error(self, op: str, exc: Exception, **context: Any) -> None:
        metrics.inc("store_errors")
        _log.error("store_error", op=op, error=str(exc), **context)

    # -- writes -------------------------------------------------------------

    def save(self, user_id: str, raw_message: str | dict) -> str | None:
        """Store a question/answer pair. Returns the record id, or None if Redis failed.

        Raises InvalidChatMessage when ``raw_message`` does not follow the
        question/answer contract.
        """
        question, answer = parse_chat_message(raw_message)
        category = self.classifier.classify(question)
        created_at = self._clock()
        record_id = new_record_id(created_at)
        raw_text = raw_message if isinstance(raw_message, str) else json.dumps(raw_message, ensure_ascii=False)

        with timed("chat_save", _log):
            try:
                pipe = self.client.pipeline(transaction=True)
                pipe.hset(self.record_key(record_id), mapping={
                    "id": record_id,
                    "user_id": str(user_id),
                    "question": question,
                    "answer": answer,
                    "raw_message": raw_text,
                    "category": category,
                    "created_at": created_at,
                })
                for keyword in extract_keywords(question):
                    pipe.sadd(self.keyword_key(keyword), record_id)
                pipe.zadd(self.bucket_key(category), {record_id: created_at})
                pipe.execute()
                self._trim_bucket(category)
            except RedisError as exc:
                self._store_error("save", exc, record_id=record_id)
                return None

            metrics.inc("chats_saved")
            _log.info("chat_saved", record_id=record_id, category=category, user_id=str(user_id))
            self._index_vector(record_id, question)
        return record_id

    def _trim_bucket(self, category: str) -> list[str]:
        """Drop the oldest ids beyond the cap and delete their records."""
        bucket = self.bucket_key(category)
        size = self.client.zcard(bucket)
        excess = size - self.max_per_category
        if excess <= 0:
            return []
        evicted = self.client.zrange(bucket, 0, excess - 1)
        self.client.zremrangebyrank(bucket, 0, excess - 1)
        if evicted:
            self.client.delete(*[self.record_key(rid) for rid in evicted])
            metrics.inc("records_evicted", len(evicted))
            _log.info("bucket_trimmed", category=category, evicted=len(evicted))
        return list(evicted)

    def _index_vector(self, record_id: str, question: str) -> None:
        """Best-effort embedding of a saved question. Never fails the save.

        Without a search extension the vector could never be queried, so no
        embedding is computed; ``backfill_vectors`` covers a later upgrade.
        """
        if self.embeddings is None or self.vector_index is None or not self.vector_index.available:
            return
        vector = self.embeddings.embed_one(question)
        if vector is None:
            metrics.inc("vector_index_skipped")
            _log.warning("vector_index_skipped", record_id=record_id)
            return
        self.vector_index.add(record_id, vector)

    # -- reads --------------------------------------------------------------

    def get(self, record_id: str) -> ChatRecord | None:
        try:
            values = self.client.hmget(self.record_key(record_id), RECORD_FIELDS)
        except RedisError as exc:
            self._store_error("get", exc, record_id=record_id)
            return None
        return ChatRecord.from_values(values)

    def get_many(self, record_ids: Iterable[str]) -> list[ChatRecord]:
        """Load records in the given order, skipping ids whose hash is gone."""
        ids = list(record_ids)
        if not ids:
            return []
        try:
            pipe = self.client.pipeline(transaction=False)
            for rid in ids:
                pipe.hmget(self.record_key(rid), RECORD_FIELDS)
            replies = pipe.execute()
        except RedisError as exc:
            self._store_error("get_many", exc, count=len(ids))
            return []
        records = []
        for values in replies:
            record = ChatRecord.from_values(values) if values else None
            if record is not None:
                records.append(record)
        return records

    def search_by_category(self, category: str, limit: int) -> list[ChatRecord]:
        """Most recent records of a category, newest first."""
        if limit <= 0:
            return []
        try:
            ids = self.client.zrevrange(self.bucket_key(category), 0, limit - 1)
        except RedisError as exc:
            self._store_error("search_by_category", exc, category=category)
            return []
        return self.get_many(ids)

    def find_by_keywords(self, keywords: Iterable[str]) -> set[str]:
        """Ids present in the keyword set of every keyword. May include stale ids."""
        keys = [self.keyword_key(kw) for kw in sorted(set(keywords))]
        if not keys:
            return set()
        try:
            return set(self.client.sinter(keys))
        except RedisError as exc:
            self._store_error("find_by_keywords", exc, keywords=len(keys))
            return set()

    def bucket_size(self, category: str) -> int:
        try:
            return int(self.client.zcard(self.bucket_key(category)))
        except RedisError as exc:
            self._store_error("bucket_size", exc, category=category)
            return 0

    def total_records(self) -> int:
        """Sum of all bucket sizes, in one round trip."""
        try:
            pipe = self.client.pipeline(transaction=False)
            for category in self.classifier.categories:
                pipe.zcard(self.bucket_key(category))
            return sum(int(n or 0) for n in pipe.execute())
        except RedisError as exc:
            self._store_error("total_records", exc)
            return 0

    def bucket_ids(self, category: str) -> list[str]:
        """All ids of a bucket, oldest first."""
        try:
            return list(self.client.zrange(self.bucket_key(category), 0, -1))
        except RedisError as exc:
            self._store_error("bucket_ids", exc, category=category)
            return []

    def has_vector(self, record_id: str) -> bool:
        try:
            return bool(self.client.hexists(self.record_key(record_id), "embedding"))
        except RedisError as exc:
            self._store_error("has_vector", exc, record_id=record_id)
            return False

    # -- JSON cache ---------------------------------------------------------

    def get_cached(self, key: str) -> Any:
        """Return the cached JSON value for ``key``, or None on miss or error."""
        try:
            raw = self.client.get(self.cache_key(key))
        except RedisError as exc:
            self._store_error("get_cached", exc, key=key)
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (json.JSONDecodeError, TypeError):
            _log.warning("cache_value_corrupt", key=key)
            return None

    def set_cached(self, key: str, value: Any, ttl: int | None = None) -> None:
        ttl = self.settings.cache_ttl_seconds if ttl is None else ttl
        try:
            self.client.setex(self.cache_key(key), ttl, json.dumps(value, ensure_ascii=False))
        except (RedisError, TypeError, ValueError) as exc:
            self._store_error("set_cached", exc, key=key)
