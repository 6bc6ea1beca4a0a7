"""faq-cache maintenance jobs: keyword-index compaction and vector backfill.

Record eviction deliberately leaves ids behind in the keyword sets; lookups
skip them. This module is the explicit, periodic cleanup for that stale
index. It is never run inline with a save.

Jobs:
  compact   — drop keyword-set members whose record hash is gone
  backfill  — embed recent records that have no vector yet (batches of 20)
  all       — both, in that order

Usage:
    faq-cache-maint --job compact --dry-run
    faq-cache-maint --job all
    faq-cache-maint --job backfill --per-category 200
"""

from __future__ import annotations

import argparse
import json
import sys

from redis.exceptions import RedisError

from faq_cache._constants import CATEGORIES
from faq_cache.config import load_config
from faq_cache.observability import get_logger, metrics, timed

_log = get_logger("compaction")

JOBS = ("compact", "backfill")


def compact_keyword_index(store, dry_run: bool = False, scan_count: int = 500) -> dict:
    """Remove stale ids from every keyword set. Empty sets are deleted.

    Returns counts: keywords scanned, stale ids (removed or, on dry run,
    that would be removed), and keyword sets deleted.
    """
    client = store.client
    scanned = stale_total = deleted = 0
    with timed("compact_keyword_index", _log):
        try:
            for key in client.scan_iter(match=store.keyword_pattern, count=scan_count):
                scanned += 1
                members = sorted(client.smembers(key))
                if not members:
                    continue
                pipe = client.pipeline(transaction=False)
                for rid in members:
                    pipe.exists(store.record_key(rid))
                alive = pipe.execute()
                stale = [rid for rid, ok in zip(members, alive) if not ok]
                if not stale:
                    continue
                stale_total += len(stale)
                if dry_run:
                    continue
                client.srem(key, *stale)
                if len(stale) == len(members):
                    client.delete(key)
                    deleted += 1
        except RedisError as exc:
            metrics.inc("store_errors")
            _log.error("compaction_failed", error=str(exc), scanned=scanned)

    metrics.inc("keyword_ids_compacted", 0 if dry_run else stale_total)
    summary = {"keywords_scanned": scanned, "stale_ids": stale_total,
               "keywords_deleted": deleted, "dry_run": dry_run}
    _log.info("keyword_index_compacted", **summary)
    return summary


def backfill_vectors(store, embeddings, vector_index, per_category: int = 1000,
                     dry_run: bool = False) -> dict:
    """Embed stored questions that have no vector, newest first per category."""
    pending = []
    for category in CATEGORIES:
        for record in store.search_by_category(category, per_category):
            if not store.has_vector(record.id):
                pending.append(record)

    if dry_run or not pending:
        summary = {"pending": len(pending), "indexed": 0, "failed": 0, "dry_run": dry_run}
        _log.info("vector_backfill", **summary)
        return summary

    vectors = embeddings.embed_many([r.question for r in pending])
    indexed = failed = 0
    for record, vector in zip(pending, vectors):
        if vector is not None and vector_index.add(record.id, vector):
            indexed += 1
        else:
            failed += 1
    summary = {"pending": len(pending), "indexed": indexed, "failed": failed, "dry_run": dry_run}
    _log.info("vector_backfill", **summary)
    return summary


def run_job(job: str, cache, dry_run: bool = False, per_category: int = 1000) -> dict:
    """Run one named job against a FaqCache."""
    if job == "compact":
        return compact_keyword_index(cache.store, dry_run=dry_run)
    if job == "backfill":
        if cache.embeddings is None:
            _log.warning("backfill_skipped", reason="embeddings disabled")
            return {"skipped": "embeddings disabled"}
        return backfill_vectors(cache.store, cache.embeddings, cache.vector_index,
                                per_category=per_category, dry_run=dry_run)
    raise ValueError(f"unknown job: {job}")


def main(argv: list[str] | None = None) -> int:
    from faq_cache.service import FaqCache

    parser = argparse.ArgumentParser(description="faq-cache maintenance jobs")
    parser.add_argument("--job", choices=JOBS + ("all",), default="compact")
    parser.add_argument("--config", default=None, help="Path to faq-cache.json")
    parser.add_argument("--dry-run", action="store_true")
    parser.add_argument("--per-category", type=int, default=1000,
                        help="Records per category considered by backfill")
    args = parser.parse_args(argv)

    cache = FaqCache.from_settings(load_config(args.config))
    jobs = JOBS if args.job == "all" else (args.job,)
    results = {job: run_job(job, cache, dry_run=args.dry_run, per_category=args.per_category)
               for job in jobs}
    json.dump(results, sys.stdout, indent=2, ensure_ascii=False)
    sys.stdout.write("\n")
    return 0


if __name__ == "__main__":
    sys.exit(main())
