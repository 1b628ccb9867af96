"""Pytest configuration and shared fixtures."""

import random

import pytest

from tests.fixtures.fakes import BASE_URL, TEST_API_KEY, FakeClock, FakeSleeper


@pytest.fixture(scope="session")
def deterministic_seed():
    """Set a fixed random seed for deterministic test results."""
    random.seed(42)
    return 42


@pytest.fixture
def fake_clock():
    return FakeClock(initial_time=1_750_000_000.0)


@pytest.fixture
def sleeper():
    return FakeSleeper()


@pytest.fixture
def sync_config(tmp_path):
    """Configuration pointing all durable state at a temporary directory."""
    from hevy_sync.models.config import SyncConfig

    return SyncConfig(
        base_url=BASE_URL,
        api_key=TEST_API_KEY,
        max_retries=2,
        retry_base_delay=0.01,
        retry_max_delay=0.05,
        api_delay=0.0,
        throttle_delay=0.0,
        rate_limit_pause=0.0,
        state_path=str(tmp_path / "state" / "hevy_sync.json"),
        output_directory=str(tmp_path / "out"),
        lock_timeout=0.5,
        execution_budget=None,
    )
