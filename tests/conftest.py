from __future__ import annotations

import pytest
from fakes import FakeSubstrate

from subspace.client import RequestResponseClient
from subspace.config import ClientConfig, Settings
from subspace.retry import RetryPolicy


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None, owner="", read_identity="anon-reader", default_retries=3)


@pytest.fixture
def fast_retry() -> RetryPolicy:
    return RetryPolicy(base_delay=0.001)


@pytest.fixture
def substrate() -> FakeSubstrate:
    return FakeSubstrate()


@pytest.fixture
def client(substrate: FakeSubstrate, settings: Settings, fast_retry: RetryPolicy) -> RequestResponseClient:
    return RequestResponseClient(substrate, ClientConfig(settings=settings), retry=fast_retry)
