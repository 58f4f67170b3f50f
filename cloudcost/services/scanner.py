"""Scan orchestrator: fan out a provider's check units and aggregate the results."""

import asyncio
from typing import Any

import structlog

from cloudcost.core.config import settings
from cloudcost.core.exceptions import ProviderError
from cloudcost.providers.base import ProviderConnection, ScanOptions
from cloudcost.providers.registry import CheckRegistry
from cloudcost.schemas.scan import ScanResult
from cloudcost.services.demo import demo_opportunities
from cloudcost.services.safe_run import CheckOutcome, run_check

logger = structlog.get_logger()


class ScanOrchestrator:
    """
    Runs every check unit registered for a provider against one shared connection.

    Checks run concurrently and the orchestrator waits for all of them to
    settle; a failing check never aborts the others. Results are merged in
    registration order. The orchestrator does not persist anything.
    """

    def __init__(
        self,
        registry: CheckRegistry,
        check_timeout: float | None = None,
        demo_mode: bool | None = None,
    ) -> None:
        """
        Initialize the orchestrator.

        Args:
            registry: Provider to check units and connection factories
            check_timeout: Per-check bound in seconds, defaults to settings
            demo_mode: Return canned results, defaults to settings.DEMO_MODE
        """
        self.registry = registry
        self.check_timeout = settings.check_timeout if check_timeout is None else check_timeout
        self.demo_mode = settings.DEMO_MODE if demo_mode is None else demo_mode

    async def connect(
        self, provider: str, credentials: dict[str, Any] | None, region: str | None
    ) -> ProviderConnection:
        """
        Establish the shared provider connection.

        Raises:
            ProviderError: If the provider is unsupported or the connection cannot be set up
        """
        factory = self.registry.connector_for(provider)
        try:
            return await factory(credentials, region)
        except ProviderError:
            raise
        except Exception as e:
            raise ProviderError(
                f"Failed to connect to {provider}: {e}",
                provider=provider,
                details={"region": region, "error_type": type(e).__name__},
            ) from e

    async def run_scan(
        self,
        scan_id: int,
        provider: str,
        credentials: dict[str, Any] | None = None,
        region: str | None = None,
        detailed_metrics: bool = False,
    ) -> ScanResult:
        """
        Run all checks for a provider and aggregate their opportunities.

        Args:
            scan_id: Scan the results belong to, used for log context
            provider: Provider tag
            credentials: Decrypted credential map, None for the provider's default chain
            region: Region or location
            detailed_metrics: Passed through to check units

        Returns:
            Merged opportunities, their total savings and any check failures

        Raises:
            ProviderError: If the provider is unsupported or connecting fails
        """
        log = logger.bind(scan_id=scan_id, provider=provider, region=region)
        registrations = self.registry.checks_for(provider)

        if self.demo_mode:
            log.info("scan.demo_mode")
            opportunities = demo_opportunities(provider)
            return ScanResult(
                scan_id=scan_id,
                provider=provider,
                region=region,
                total_savings=sum(o.estimated_savings for o in opportunities),
                opportunities=opportunities,
            )

        connection = await self.connect(provider, credentials, region)
        options = ScanOptions(region=connection.region, detailed_metrics=detailed_metrics)
        log.info("scan.checks_started", checks=[r.name for r in registrations])

        try:
            outcomes: list[CheckOutcome] = await asyncio.gather(
                *(
                    run_check(
                        reg.name,
                        lambda fn=reg.fn: fn(connection, options),
                        provider=provider,
                        timeout=self.check_timeout,
                    )
                    for reg in registrations
                )
            )
        finally:
            if connection.busy:
                log.warning("scan.waiting_for_abandoned_checks")
            await connection.wait_idle()
            try:
                await connection.close()
            except Exception as e:
                log.warning("scan.connection_close_failed", error=str(e))

        opportunities = [opp for outcome in outcomes for opp in outcome.opportunities]
        failures = [r for r in (o.failure_record() for o in outcomes) if r is not None]
        total_savings = sum(opp.estimated_savings for opp in opportunities)

        log.info(
            "scan.checks_settled",
            opportunity_count=len(opportunities),
            total_savings=round(total_savings, 2),
            failed_checks=[f.check for f in failures],
        )
        return ScanResult(
            scan_id=scan_id,
            provider=provider,
            region=connection.region,
            total_savings=total_savings,
            opportunities=opportunities,
            check_failures=failures,
        )
