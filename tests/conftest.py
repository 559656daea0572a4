"""Pytest configuration and fixtures for medlink tests."""

from __future__ import annotations

import time

import pytest

from medlink.config import ResilienceConfig, reset_config
from medlink.reliability.context import reset_resilience_context
from tests.helpers import FakeConnectionFactory, FakeScheduler


@pytest.fixture(autouse=True)
def reset_singletons():
    """Reset shared config/context singletons around each test."""
    reset_config()
    reset_resilience_context()
    yield
    reset_config()
    reset_resilience_context()


@pytest.fixture
def scheduler() -> FakeScheduler:
    return FakeScheduler()


@pytest.fixture
def connection_factory() -> FakeConnectionFactory:
    return FakeConnectionFactory()


@pytest.fixture
def fast_config() -> ResilienceConfig:
    """Config with zero backoff so retry paths run instantly."""
    return ResilienceConfig(
        base_url="http://backend.test/api",
        retry_base_delay=0.0,
        retry_jitter=0.0,
    )


@pytest.fixture
def now() -> float:
    return time.time()
