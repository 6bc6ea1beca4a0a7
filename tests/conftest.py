"""Shared pytest fixtures."""

import pytest

from faq_cache.observability import metrics
from fakes import FakeRedis, make_clock, make_settings


@pytest.fixture(autouse=True)
def _reset_metrics():
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def clock():
    return make_clock()


@pytest.fixture
def settings():
    return make_settings()
