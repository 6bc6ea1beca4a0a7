"""Semantic judge — AI-graded similarity and AI-authored answers.

The judge talks to a chat-completion endpoint over HTTP. Two reply shapes are
understood:

    OpenAI-compatible:  {"choices": [{"message": {"content": "..."}}]}
    Workers-AI style:   {"result": {"response": "..."}}

Every call goes through an ``ExternalCallGuard``; timeouts, HTTP errors,
empty replies and unparsable scores all come back as ``None`` so the
pipeline can fall through to its next stage.

Usage:
    judge = SemanticJudge(HttpChatBackend(url, model, token))
    judge.score("ลืมรหัสผ่าน", "login ไม่ได้")        # -> 0.82 or None
    judge.synthesize("ชำระเงินแล้วแต่เข้าเรียนไม่ได้", candidates)
"""

from __future__ import annotations

import json
import re
import urllib.request
from collections.abc import Callable
from typing import Any

from faq_cache.config import DEFAULT_SYSTEM_PROMPT, Settings
from faq_cache.observability import get_logger, metrics, timed
from faq_cache.resilience import CircuitBreaker, ExternalCallGuard

_log = get_logger("judge")

NO_ANSWER = "NO_ANSWER"

# Canned apologies some backends return instead of an error status.
_FALLBACK_REPLIES = (
    "ขออภัย ไม่สามารถสร้างข้อความตอบกลับได้ในขณะนี้",
    "an error occurred while generating a response",
    "no response from assistant",
)

# ---------------------------------------------------------------------------
# Backend
# ---------------------------------------------------------------------------


class HttpChatBackend:
    """POST a single-turn chat to ``url`` and return the reply text."""

    def __init__(self, url: str, model: str, token: str = "", timeout: float = 20.0,
                 system_prompt: str = DEFAULT_SYSTEM_PROMPT):
        self.url = url
        self.model = model
        self.token = token
        self.timeout = timeout
        self.system_prompt = system_prompt

    def __call__(self, prompt: str) -> str:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        payload = json.dumps({
            "model": self.model,
            "messages": [
                {"role": "system", "content": self.system_prompt},
                {"role": "user", "content": prompt},
            ],
            "temperature": 0.1,
        }).encode("utf-8")
        req = urllib.request.Request(self.url, data=payload, headers=headers, method="POST")
        with urllib.request.urlopen(req, timeout=self.timeout) as resp:
            body = json.loads(resp.read().decode("utf-8"))
        return extract_reply(body)


def extract_reply(body: Any) -> str:
    """Pull the reply text out of a chat-completion response body."""
    if not isinstance(body, dict):
        return ""
    choices = body.get("choices")
    if isinstance(choices, list) and choices and isinstance(choices[0], dict):
        message = choices[0].get("message") or {}
        content = message.get("content") if isinstance(message, dict) else None
        if isinstance(content, str):
            return content
    result = body.get("result")
    if isinstance(result, dict) and isinstance(result.get("response"), str):
        return result["response"]
    return ""


# ---------------------------------------------------------------------------
# Prompts and parsing
# ---------------------------------------------------------------------------

_SCORE_PROMPT = """\
Rate how similar in meaning these two customer-support questions are.
Reply with a single number between 0 and 1 and nothing else.

Question A: {a}
Question B: {b}
"""

_SYNTHESIS_PROMPT = """\
A user asked: {query}

Previously answered questions from the same help desk:
{context}

Using only the information above, write a short, polite answer to the user.
If the information above does not answer the question, reply with exactly {no_answer}.
"""

_NUMBER_RE = re.compile(r"-?\d+(?:\.\d+)?")


def parse_score(text: str) -> float | None:
    """Parse the first number in ``text`` as a score in [0, 1].

    Numbers in (1, 100] are read as percentages. Anything else is rejected.
    """
    if not text:
        return None
    match = _NUMBER_RE.search(text)
    if not match:
        return None
    value = float(match.group(0))
    if 1.0 < value <= 100.0:
        value /= 100.0
    if value < 0.0 or value > 1.0:
        return None
    return value


def _is_fallback(text: str) -> bool:
    lowered = text.strip().lower().rstrip(".")
    return any(lowered.startswith(reply) for reply in _FALLBACK_REPLIES)


# ---------------------------------------------------------------------------
# Judge
# ---------------------------------------------------------------------------


class SemanticJudge:
    """AI-graded similarity and answer synthesis behind a timeout and breaker."""

    def __init__(self, backend: Callable[[str], str] | None, guard: ExternalCallGuard | None = None,
                 settings: Settings | None = None):
        settings = settings or Settings()
        self.backend = backend
        self.guard = guard or ExternalCallGuard(
            "judge",
            timeout=settings.judge_timeout,
            breaker=CircuitBreaker(
                "judge",
                failure_threshold=settings.breaker_failure_threshold,
                reset_seconds=settings.breaker_reset_seconds,
            ),
        )

    @property
    def available(self) -> bool:
        return self.backend is not None

    def _complete(self, prompt: str) -> str | None:
        if self.backend is None:
            return None
        reply = self.guard.call(self.backend, prompt)
        if not isinstance(reply, str) or not reply.strip() or _is_fallback(reply):
            metrics.inc("judge_empty_replies")
            return None
        return reply.strip()

    def score(self, a: str, b: str) -> float | None:
        """AI similarity of two questions in [0, 1], or None on failure."""
        with timed("judge_score"):
            reply = self._complete(_SCORE_PROMPT.format(a=a, b=b))
        if reply is None:
            return None
        value = parse_score(reply)
        if value is None:
            metrics.inc("judge_unparsable_scores")
            _log.warning("judge_score_unparsable", reply=reply[:80])
        return value

    def synthesize(self, query: str, candidates: list[tuple[str, str]]) -> str | None:
        """Write an answer to ``query`` from ``(question, answer)`` pairs, or None."""
        if not candidates:
            return None
        context = "\n".join(
            f"{i}. Q: {q}\n   A: {a}" for i, (q, a) in enumerate(candidates, start=1)
        )
        with timed("judge_synthesize"):
            reply = self._complete(_SYNTHESIS_PROMPT.format(
                query=query, context=context, no_answer=NO_ANSWER,
            ))
        if reply is None or NO_ANSWER in reply:
            return None
        return reply


def build_judge(settings: Settings) -> SemanticJudge:
    """Judge for the configured endpoint; a judge without backend when unset."""
    if not settings.judge_url:
        _log.info("judge_disabled", reason="judge_url not set")
        return SemanticJudge(None, settings=settings)
    backend = HttpChatBackend(
        settings.judge_url, settings.judge_model, token=settings.judge_token,
        timeout=settings.judge_timeout, system_prompt=settings.judge_system_prompt,
    )
    return SemanticJudge(backend, settings=settings)
