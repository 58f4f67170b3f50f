"""Tests for GCP check units against stubbed clients."""

import threading
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from cloudcost.core.config import settings
from cloudcost.models.opportunity import OpportunityCategory
from cloudcost.providers import gcp
from cloudcost.providers.base import CredentialFieldError, ProviderConnection, ScanOptions


def bare_connection(region: str = "us-central1") -> gcp.GCPConnection:
    """GCPConnection with stub clients instead of real Google clients."""
    connection = gcp.GCPConnection.__new__(gcp.GCPConnection)
    ProviderConnection.__init__(connection, region)
    connection.project_id = "demo-project"
    connection.instances = MagicMock()
    connection.disks = MagicMock()
    connection.monitoring = MagicMock()
    connection.storage = MagicMock()
    return connection


def pd(name: str, size_gb: int, disk_type: str, users: list[str] | None = None):
    return SimpleNamespace(
        id=hash(name) & 0xFFFF,
        name=name,
        size_gb=size_gb,
        type_=f"projects/demo-project/zones/us-central1-a/diskTypes/{disk_type}",
        users=users or [],
    )


class TestGCPConnection:
    """Test zone scoping and connection lifecycle."""

    @pytest.mark.parametrize(
        ("zone", "expected"),
        [
            ("zones/us-central1-a", True),
            ("us-central1-f", True),
            ("regions/us-central1", True),
            ("zones/europe-west1-b", False),
            ("zones/us-central11-a", False),
        ],
    )
    def test_in_scope(self, zone: str, expected: bool):
        """Test that zones are matched to their region."""
        assert bare_connection().in_scope(zone) is expected

    @pytest.mark.asyncio
    async def test_close_releases_every_client(self):
        """Test that closing shuts down compute, monitoring and storage transports."""
        connection = bare_connection()

        await connection.close()

        connection.instances.transport.close.assert_called_once()
        connection.disks.transport.close.assert_called_once()
        connection.monitoring.transport.close.assert_called_once()
        connection.storage.close.assert_called_once()

    @pytest.mark.asyncio
    async def test_connect_runs_off_event_loop(self, monkeypatch):
        """Test that credential discovery runs in an executor thread."""
        threads: list[threading.Thread] = []

        def default(scopes):
            threads.append(threading.current_thread())
            return MagicMock(), None

        monkeypatch.setattr(gcp.google.auth, "default", default)
        monkeypatch.delenv("GCP_PROJECT_ID", raising=False)
        monkeypatch.delenv("GOOGLE_CLOUD_PROJECT", raising=False)

        with pytest.raises(CredentialFieldError, match="project_id"):
            await gcp.connect_gcp(None, None)

        assert len(threads) == 1
        assert threads[0] is not threading.main_thread()


class TestDisksCheck:
    """Test unattached persistent disk detection."""

    @pytest.mark.asyncio
    async def test_unattached_disk(self):
        """Test that disks without users in the region are reported."""
        connection = bare_connection()
        connection.disks.aggregated_list.return_value = [
            (
                "zones/us-central1-a",
                SimpleNamespace(
                    disks=[
                        pd("orphan", 200, "pd-ssd"),
                        pd("boot", 20, "pd-balanced", users=["instances/web-1"]),
                    ]
                ),
            ),
            ("zones/europe-west1-b", SimpleNamespace(disks=[pd("far", 100, "pd-standard")])),
            ("zones/us-central1-b", SimpleNamespace(disks=[])),
        ]

        result = await gcp.check_disks(connection, ScanOptions())

        assert [o.id for o in result] == ["gcp-disk-unattached-orphan"]
        assert result[0].category == OpportunityCategory.UNUSED
        assert result[0].estimated_savings == pytest.approx(200 * 0.17)
        assert result[0].metadata["zone"] == "us-central1-a"
        request = connection.disks.aggregated_list.call_args.kwargs["request"]
        assert request.project == "demo-project"
        kwargs = connection.disks.aggregated_list.call_args.kwargs
        assert kwargs["timeout"] == settings.GCP_CALL_TIMEOUT


class TestStorageCheck:
    """Test bucket lifecycle detection."""

    @pytest.mark.asyncio
    async def test_bucket_without_lifecycle(self):
        """Test that a large bucket without lifecycle rules is reported."""
        connection = bare_connection()
        connection.storage.list_buckets.return_value = [
            SimpleNamespace(name="raw-logs", lifecycle_rules=[], location="US", storage_class="STANDARD"),
            SimpleNamespace(name="tidy", lifecycle_rules=[{"action": {"type": "Delete"}}]),
        ]
        point = SimpleNamespace(value=SimpleNamespace(double_value=4000 * 1024**3, int64_value=0))
        connection.monitoring.list_time_series.return_value = [SimpleNamespace(points=[point])]

        result = await gcp.check_storage(connection, ScanOptions())

        assert [o.resource_id for o in result] == ["raw-logs"]
        assert result[0].estimated_savings == pytest.approx(4000 * 0.5 * (0.020 - 0.004))
        connection.monitoring.list_time_series.assert_called_once()
