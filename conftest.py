"""
Shared pytest fixtures for the proxy test suites.
"""

import pytest
from fastapi.testclient import TestClient

from shared.test_helpers import FakeClock, FakeRedis, StubUpstream, make_config
from service_proxy.app.main import ProxyService


@pytest.fixture
def clock():
    """Manually advanced clock."""
    return FakeClock()


@pytest.fixture
def fake_redis(clock):
    """In-memory Redis sharing the test clock."""
    return FakeRedis(clock)


@pytest.fixture
def upstream():
    """Stub provider with a call counter."""
    return StubUpstream()


@pytest.fixture
def build_service(clock, upstream):
    """Factory for a ProxyService wired to the stub upstream and fake clock."""

    def _build(**config_overrides):
        redis_client = config_overrides.pop("redis_client", None)
        config = make_config(**config_overrides)
        return ProxyService(
            config,
            upstream_transport=upstream.transport(),
            redis_client=redis_client,
            clock=clock,
        )

    return _build


@pytest.fixture
def client(build_service):
    """Test client over a default, local-backend proxy."""
    service = build_service()
    return TestClient(service.app)
