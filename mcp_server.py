#!/usr/bin/env python3
"""faq-cache MCP Server — semantic FAQ cache for support chat agents.

Exposes the FAQ cache as a Model Context Protocol server so the support chat
front end (or any MCP client) can store answered questions and look up a
cached answer before paying for a new AI completion.

Tools (5):
    save_chat            — Store a {"question", "answer"} message
    search_similar_chat  — Best cached answer for a question ({} on miss)
    search_chat          — Candidate records for a question (category + full-text)
    cache_stats          — Bucket sizes, backend capabilities, metrics
    compact_index        — Remove stale keyword-index ids (dry-run by default)

Transport:
    stdio (default)
    http  (for remote / multi-client)

Usage:
    # stdio
    python3 mcp_server.py

    # http with token auth
    FAQ_CACHE_TOKEN=secret python3 mcp_server.py --transport http --port 8765

    # with a config file
    FAQ_CACHE_CONFIG=/etc/faq-cache.json python3 mcp_server.py
"""

from __future__ import annotations

import json
import os
import threading

from fastmcp import FastMCP

from faq_cache.compaction import compact_keyword_index
from faq_cache.config import load_config
from faq_cache.observability import get_logger, metrics
from faq_cache.service import FaqCache
from faq_cache.store import InvalidChatMessage

_log = get_logger("mcp_server")

TOKEN_ENV = "FAQ_CACHE_TOKEN"

# ---------------------------------------------------------------------------
# Server setup
# ---------------------------------------------------------------------------

mcp = FastMCP(
    name="faq-cache",
    instructions=(
        "FAQ cache: call search_similar_chat before asking the AI service. "
        "If it returns an answer, use it. After the AI answers a new question, "
        "store the pair with save_chat."
    ),
)

_CACHE: FaqCache | None = None
_CACHE_LOCK = threading.Lock()


def _cache() -> FaqCache:
    """Build the FaqCache once per process (capabilities are probed here)."""
    global _CACHE
    with _CACHE_LOCK:
        if _CACHE is None:
            _CACHE = FaqCache.from_settings(load_config())
        return _CACHE


def _dumps(data) -> str:
    return json.dumps(data, indent=2, ensure_ascii=False, default=str)


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------

@mcp.tool
def save_chat(user_id: str, raw_message: str) -> str:
    """Store an answered support question.

    Args:
        user_id: Id of the user who asked.
        raw_message: JSON object with non-empty "question" and "answer" strings.

    Returns:
        JSON with the new record id, or an error.
    """
    try:
        record_id = _cache().save_chat(user_id, raw_message)
    except InvalidChatMessage as exc:
        return _dumps({"error": str(exc)})
    metrics.inc("mcp_save_chat")
    if record_id is None:
        return _dumps({"status": "not_stored", "reason": "store unavailable"})
    return _dumps({"status": "stored", "record_id": record_id})


@mcp.tool
def search_similar_chat(query: str) -> str:
    """Look up a cached answer for a support question.

    Args:
        query: The user's question.

    Returns:
        JSON object {score, matched_question, message: {score, message}, source,
        record_id}, or {} when no cached answer qualifies.
    """
    result = _cache().search_similar_chat(query)
    metrics.inc("mcp_search_similar_chat")
    _log.info("mcp_search_similar_chat", hit=bool(result), source=result.get("source"))
    return _dumps(result)


@mcp.tool
def search_chat(query: str, limit: int = 30) -> str:
    """List candidate records for a question.

    Args:
        query: The user's question.
        limit: Maximum records from each source (default: 30).

    Returns:
        JSON array of records, category-recent first, de-duplicated by id.
    """
    limit = max(1, min(limit, 100))
    results = _cache().search_chat(query, limit=limit)
    metrics.inc("mcp_search_chat")
    return _dumps(results)


@mcp.tool
def cache_stats() -> str:
    """Bucket sizes per category, backend capabilities and in-process metrics."""
    return _dumps(_cache().stats())


@mcp.tool
def compact_index(dry_run: bool = True) -> str:
    """Remove keyword-index ids whose records were evicted.

    Args:
        dry_run: Only count stale ids (default: True).
    """
    return _dumps(compact_keyword_index(_cache().store, dry_run=dry_run))


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def _check_token() -> str | None:
    """Get token from environment. Returns None if no auth configured."""
    return os.environ.get(TOKEN_ENV)


def main():
    """Entry point for the MCP server (console_scripts and __main__)."""
    import argparse

    parser = argparse.ArgumentParser(description="faq-cache MCP Server")
    parser.add_argument("--transport", choices=["stdio", "http"], default="stdio",
                        help="Transport protocol (default: stdio)")
    parser.add_argument("--port", type=int, default=8765,
                        help="HTTP port (only used with --transport http)")
    parser.add_argument("--token", default=None,
                        help=f"Bearer token for HTTP auth (or set {TOKEN_ENV})")
    args = parser.parse_args()

    if args.token and not os.environ.get(TOKEN_ENV):
        os.environ[TOKEN_ENV] = args.token

    token = _check_token()
    _cache()
    _log.info("mcp_server_start", transport=args.transport, auth="token" if token else "none")

    if args.transport == "http":
        if token:
            from fastmcp.server.auth import StaticTokenVerifier
            mcp.auth = StaticTokenVerifier(
                tokens={token: {"client_id": "faq-cache-client", "scopes": ["full"]}},
            )
            _log.info("mcp_auth_enforced", mode="static_token")
        mcp.run(transport="sse", port=args.port)
    else:
        mcp.run()


if __name__ == "__main__":
    main()
