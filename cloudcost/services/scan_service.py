"""Scan lifecycle: create, execute, persist, cache and announce scans."""

import asyncio
from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cloudcost.core.database import AsyncSessionLocal
from cloudcost.core.exceptions import CloudCostError, NotFoundError, ScanStateError
from cloudcost.core.security import CredentialEncryption, credential_encryption
from cloudcost.crud import credential as credential_crud
from cloudcost.crud import scan as scan_crud
from cloudcost.models.scan import ScanStatus
from cloudcost.providers.registry import build_default_registry
from cloudcost.schemas.event import ScanEvent
from cloudcost.schemas.report import ScanReport
from cloudcost.schemas.scan import Scan as ScanSchema
from cloudcost.schemas.scan import ScanResult
from cloudcost.services.events import EventBroadcaster, LifecyclePublisher
from cloudcost.services.report_cache import ReportCache
from cloudcost.services.scanner import ScanOrchestrator

logger = structlog.get_logger()

CANCELLED_MESSAGE = "Scan cancelled"


class ScanManager:
    """
    Drives scans through running -> completed | failed.

    Each in-process scan runs as an asyncio task kept by scan id so it can
    be awaited or cancelled. Scans can also be handed to a Celery worker.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        orchestrator: ScanOrchestrator | None = None,
        publisher: LifecyclePublisher | None = None,
        report_cache: ReportCache | None = None,
        encryption: CredentialEncryption | None = None,
    ) -> None:
        self.session_factory = session_factory or AsyncSessionLocal
        self.orchestrator = orchestrator or ScanOrchestrator(build_default_registry())
        self.publisher = publisher or EventBroadcaster()
        self.report_cache = report_cache or ReportCache()
        self.encryption = encryption or credential_encryption
        self._tasks: dict[int, asyncio.Task[ScanResult | None]] = {}

    async def _create_scan(self, provider: str, region: str | None) -> ScanSchema:
        self.orchestrator.registry.require(provider)
        async with self.session_factory() as db:
            scan = await scan_crud.save_scan(db, provider, region)
            return ScanSchema.model_validate(scan)

    async def start_scan(
        self,
        provider: str,
        region: str | None = None,
        credential_id: int | None = None,
        detailed_metrics: bool = False,
    ) -> ScanSchema:
        """
        Create a running scan and execute it in the background.

        Args:
            provider: Provider tag
            region: Region or location
            credential_id: Vault bundle to use, None for the newest bundle of the provider
            detailed_metrics: Passed through to check units

        Returns:
            The created scan

        Raises:
            ProviderError: If the provider is unsupported; no scan is created
        """
        scan = await self._create_scan(provider, region)
        task = asyncio.create_task(
            self.execute_scan(scan.id, provider, region, credential_id, detailed_metrics),
            name=f"scan-{scan.id}",
        )
        self._tasks[scan.id] = task
        task.add_done_callback(lambda _t, scan_id=scan.id: self._tasks.pop(scan_id, None))
        logger.info("scan.started", scan_id=scan.id, provider=provider, region=region)
        return scan

    async def dispatch_scan(
        self,
        provider: str,
        region: str | None = None,
        credential_id: int | None = None,
        detailed_metrics: bool = False,
    ) -> ScanSchema:
        """Create a running scan and hand its execution to a Celery worker."""
        from cloudcost.workers.tasks import run_scan_task

        scan = await self._create_scan(provider, region)
        async_result = run_scan_task.delay(
            scan.id, provider, region, credential_id, detailed_metrics
        )
        async with self.session_factory() as db:
            row = await scan_crud.set_celery_task_id(db, scan.id, async_result.id)
            scan = ScanSchema.model_validate(row)
        logger.info("scan.dispatched", scan_id=scan.id, celery_task_id=async_result.id)
        return scan

    def get_task(self, scan_id: int) -> asyncio.Task[ScanResult | None] | None:
        return self._tasks.get(scan_id)

    async def wait_for(self, scan_id: int) -> ScanResult | None:
        """Wait for an in-process scan to settle. Returns None for unknown scans."""
        task = self._tasks.get(scan_id)
        if task is None:
            return None
        return await task

    async def cancel_scan(self, scan_id: int) -> bool:
        """
        Cancel a running scan.

        Returns:
            True if a running scan was found and cancelled
        """
        async with self.session_factory() as db:
            scan = await scan_crud.get_scan(db, scan_id)
            if not scan or scan.status != ScanStatus.RUNNING.value:
                return False
            provider = scan.provider
            celery_task_id = scan.celery_task_id

        task = self._tasks.get(scan_id)
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        elif celery_task_id:
            from cloudcost.workers.celery_app import celery_app

            celery_app.control.revoke(celery_task_id, terminate=True)
        else:
            return False

        # No-op when the task already recorded its own cancellation
        await self._mark_failed(scan_id, provider, CANCELLED_MESSAGE)
        return True

    async def _resolve_credentials(
        self, provider: str, credential_id: int | None
    ) -> dict[str, Any] | None:
        async with self.session_factory() as db:
            if credential_id is not None:
                bundle = await credential_crud.get_credentials(db, credential_id, self.encryption)
                if bundle is None:
                    raise NotFoundError("Credential", credential_id)
            else:
                bundle = await credential_crud.get_latest_for_provider(
                    db, provider, self.encryption
                )
        return bundle.credentials if bundle else None

    async def _mark_failed(self, scan_id: int, provider: str | None, message: str) -> None:
        async with self.session_factory() as db:
            try:
                await scan_crud.update_scan_status(
                    db, scan_id, ScanStatus.FAILED, error_message=message
                )
            except (NotFoundError, ScanStateError) as e:
                logger.warning("scan.mark_failed_skipped", scan_id=scan_id, reason=str(e))
                return
        self.publisher.publish(ScanEvent.failed(scan_id, provider, message))

    async def _complete(self, scan_id: int, result: ScanResult) -> ScanSchema:
        async with self.session_factory() as db:
            await scan_crud.save_opportunities(db, scan_id, result.opportunities, commit=False)
            scan = await scan_crud.update_scan_status(
                db,
                scan_id,
                ScanStatus.COMPLETED,
                total_savings=result.total_savings,
                opportunity_count=result.opportunity_count,
                commit=False,
            )
            await db.commit()
            await db.refresh(scan)
            return ScanSchema.model_validate(scan)

    def _cache_report(self, scan: ScanSchema, result: ScanResult) -> None:
        report = ScanReport(
            scan=scan,
            total_savings=result.total_savings,
            opportunities=result.opportunities,
            check_failures=result.check_failures,
        )
        try:
            self.report_cache.save(scan.provider, scan.region, report)
        except OSError as e:
            logger.warning("report_cache.save_failed", scan_id=scan.id, error=str(e))

    async def execute_scan(
        self,
        scan_id: int,
        provider: str,
        region: str | None = None,
        credential_id: int | None = None,
        detailed_metrics: bool = False,
    ) -> ScanResult | None:
        """
        Execute an already created scan to a terminal state.

        Failures are recorded on the scan and announced, not raised.
        Cancellation marks the scan failed and propagates.

        Returns:
            The scan result, or None if the scan failed
        """
        log = logger.bind(scan_id=scan_id, provider=provider, region=region)
        self.publisher.publish(ScanEvent.started(scan_id, provider, region))

        try:
            credentials = await self._resolve_credentials(provider, credential_id)
            result = await self.orchestrator.run_scan(
                scan_id, provider, credentials, region, detailed_metrics
            )
            scan = await self._complete(scan_id, result)
        except asyncio.CancelledError:
            log.warning("scan.cancelled")
            await self._mark_failed(scan_id, provider, CANCELLED_MESSAGE)
            raise
        except CloudCostError as e:
            log.error("scan.failed", error=str(e), error_type=type(e).__name__)
            await self._mark_failed(scan_id, provider, str(e))
            return None
        except Exception as e:
            log.exception("scan.unexpected_error", error=str(e))
            await self._mark_failed(scan_id, provider, str(e) or type(e).__name__)
            return None

        self._cache_report(scan, result)
        self.publisher.publish(
            ScanEvent.completed(scan_id, provider, result.total_savings, result.opportunity_count)
        )
        log.info(
            "scan.completed",
            total_savings=round(result.total_savings, 2),
            opportunity_count=result.opportunity_count,
            failed_checks=len(result.check_failures),
        )
        return result
