"""Tests for the shared provider connection."""

import asyncio
import threading
import time

import pytest

from cloudcost.providers.base import ProviderConnection, average, pick


class TestProviderConnection:
    """Test blocking calls on the connection's thread pool."""

    @pytest.mark.asyncio
    async def test_run_blocking_off_loop(self):
        """Test that blocking calls run on a worker thread and return their value."""
        connection = ProviderConnection("us-east-1")

        thread_name = await connection.run_blocking(lambda: threading.current_thread().name)

        assert thread_name.startswith("ProviderConnection-sdk")
        assert not connection.busy
        await connection.close()

    @pytest.mark.asyncio
    async def test_run_blocking_propagates_errors(self):
        """Test that an SDK error reaches the awaiting check."""
        connection = ProviderConnection(None)

        def boom():
            raise KeyError("Reservations")

        with pytest.raises(KeyError):
            await connection.run_blocking(boom)
        assert not connection.busy
        await connection.close()

    @pytest.mark.asyncio
    async def test_wait_idle_outlives_timeout(self):
        """Test that wait_idle covers calls whose caller already gave up."""
        connection = ProviderConnection(None)
        finished = threading.Event()

        def slow():
            time.sleep(0.2)
            finished.set()

        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(connection.run_blocking(slow), timeout=0.02)
        assert connection.busy

        await connection.wait_idle()

        assert finished.is_set()
        assert not connection.busy
        await connection.close()


class TestHelpers:
    """Test small helpers shared by check units."""

    def test_average(self):
        assert average([]) == 0.0
        assert average([2.0, 4.0]) == 3.0

    def test_pick_first_present(self):
        """Test that empty values fall through to the next spelling."""
        credentials = {"subscriptionId": "", "subscription_id": "sub-1"}

        assert pick(credentials, "subscriptionId", "subscription_id") == "sub-1"
        assert pick({}, "project_id") is None
