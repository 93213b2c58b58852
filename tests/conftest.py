"""Pytest configuration and fixtures."""

import pytest

from govdata.ingestion.manager import DataSourceManager

from .support import FakeClock, StubSource


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def manager(clock: FakeClock) -> DataSourceManager:
    """Manager on a fake wall clock with a short tick interval."""
    return DataSourceManager(clock=clock, tick_interval=0.01, error_backoff=0.01)


@pytest.fixture
def stub() -> StubSource:
    return StubSource()
