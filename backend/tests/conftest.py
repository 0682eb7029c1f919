"""Pytest configuration and shared fixtures."""

import asyncio

import pytest

from quote_gateway.config import GatewaySettings


@pytest.fixture
def event_loop_policy():
    """Use the default event loop policy for all async tests."""
    return asyncio.DefaultEventLoopPolicy()


@pytest.fixture
def gateway_settings() -> GatewaySettings:
    """Settings with auto-refresh enabled and no environment lookups."""
    return GatewaySettings(
        broker_host="broker.test",
        broker_port=8443,
        dnse_username="alice",
        dnse_password="secret",
        target_user_id="owner-1",
    )
