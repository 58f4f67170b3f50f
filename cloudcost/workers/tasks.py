"""Celery background tasks for scan execution."""

import asyncio
from typing import Any

import structlog

from cloudcost.core.database import init_db
from cloudcost.services.events import RedisEventPublisher
from cloudcost.services.scan_service import ScanManager
from cloudcost.workers.celery_app import celery_app

logger = structlog.get_logger()


def _get_event_loop() -> asyncio.AbstractEventLoop:
    """Get or create an event loop for the Celery solo/prefork pool."""
    try:
        loop = asyncio.get_event_loop()
        if loop.is_closed():
            loop = asyncio.new_event_loop()
            asyncio.set_event_loop(loop)
    except RuntimeError:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
    return loop


@celery_app.task(name="cloudcost.workers.tasks.run_scan", bind=True)
def run_scan_task(
    self: Any,
    scan_id: int,
    provider: str,
    region: str | None = None,
    credential_id: int | None = None,
    detailed_metrics: bool = False,
) -> dict[str, Any]:
    """
    Execute a scan created by ScanManager.dispatch_scan.

    Args:
        scan_id: ID of the running scan
        provider: Provider tag
        region: Region or location
        credential_id: Vault bundle to use, None for the provider's newest
        detailed_metrics: Passed through to check units

    Returns:
        Dict with the scan outcome
    """
    loop = _get_event_loop()
    return loop.run_until_complete(
        _run_scan_async(scan_id, provider, region, credential_id, detailed_metrics)
    )


async def _run_scan_async(
    scan_id: int,
    provider: str,
    region: str | None,
    credential_id: int | None,
    detailed_metrics: bool,
    manager: ScanManager | None = None,
) -> dict[str, Any]:
    publisher = None
    if manager is None:
        await init_db()
        publisher = RedisEventPublisher()
        manager = ScanManager(publisher=publisher)

    try:
        result = await manager.execute_scan(
            scan_id, provider, region, credential_id, detailed_metrics
        )
    finally:
        if publisher is not None:
            await publisher.close()

    if result is None:
        logger.info("worker.scan_failed", scan_id=scan_id)
        return {"scan_id": scan_id, "status": "failed"}

    return {
        "scan_id": scan_id,
        "status": "completed",
        "total_savings": result.total_savings,
        "opportunity_count": result.opportunity_count,
        "failed_checks": [f.check for f in result.check_failures],
    }
