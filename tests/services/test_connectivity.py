"""Tests for the connectivity probe."""
import asyncio
import pytest
from unittest.mock import Mock, AsyncMock

from cartsync.gateway.errors import ConnectivityError
from cartsync.services.connectivity import ConnectivityProbe


@pytest.mark.asyncio
async def test_reachable(memory_gateway):
    """Test that a live backend is reachable."""
    probe = ConnectivityProbe(memory_gateway)
    assert await probe.is_reachable() is True


@pytest.mark.asyncio
async def test_ping_error_is_unreachable():
    """Test that a failing ping counts as unreachable instead of raising."""
    gateway = Mock()
    gateway.ping = AsyncMock(side_effect=ConnectivityError("Connection refused"))

    assert await ConnectivityProbe(gateway).is_reachable() is False


@pytest.mark.asyncio
async def test_unexpected_error_is_unreachable():
    """Test that any exception from the ping is absorbed."""
    gateway = Mock()
    gateway.ping = AsyncMock(side_effect=RuntimeError("boom"))

    assert await ConnectivityProbe(gateway).is_reachable() is False


@pytest.mark.asyncio
async def test_timeout_is_unreachable():
    """Test that a hanging ping resolves to unreachable after the timeout."""
    async def hang():
        await asyncio.sleep(10)
        return True

    gateway = Mock()
    gateway.ping = hang

    assert await ConnectivityProbe(gateway, timeout=0.05).is_reachable() is False


@pytest.mark.asyncio
async def test_unhealthy_answer():
    """Test that a ping returning False is unreachable."""
    gateway = Mock()
    gateway.ping = AsyncMock(return_value=False)

    assert await ConnectivityProbe(gateway).is_reachable() is False
