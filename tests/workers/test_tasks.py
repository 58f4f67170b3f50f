"""Tests for Celery scan tasks."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from cloudcost.schemas.scan import CheckFailureKind, CheckFailureRecord, ScanResult
from cloudcost.workers.celery_app import celery_app
from cloudcost.workers.tasks import _run_scan_async, run_scan_task


class TestRunScanTask:
    """Test the worker entry point."""

    def test_task_registered(self):
        """Test that the task is registered under its public name."""
        assert run_scan_task.name == "cloudcost.workers.tasks.run_scan"
        assert "cloudcost.workers.tasks.run_scan" in celery_app.tasks

    @pytest.mark.asyncio
    async def test_completed_scan_summary(self):
        """Test the summary returned for a completed scan."""
        manager = MagicMock()
        manager.execute_scan = AsyncMock(
            return_value=ScanResult(
                scan_id=3,
                provider="aws",
                region="us-east-1",
                total_savings=120.0,
                opportunities=[],
                check_failures=[
                    CheckFailureRecord(
                        check="s3", kind=CheckFailureKind.PERMISSION_DENIED, message="denied"
                    )
                ],
            )
        )

        summary = await _run_scan_async(3, "aws", "us-east-1", None, False, manager=manager)

        manager.execute_scan.assert_awaited_once_with(3, "aws", "us-east-1", None, False)
        assert summary == {
            "scan_id": 3,
            "status": "completed",
            "total_savings": 120.0,
            "opportunity_count": 0,
            "failed_checks": ["s3"],
        }

    @pytest.mark.asyncio
    async def test_failed_scan_summary(self):
        """Test the summary returned for a failed scan."""
        manager = MagicMock()
        manager.execute_scan = AsyncMock(return_value=None)

        summary = await _run_scan_async(4, "gcp", None, 2, True, manager=manager)

        assert summary == {"scan_id": 4, "status": "failed"}
