"""Resilience wrapper around a single check unit."""

import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable

import structlog

from cloudcost.schemas.opportunity import SavingsOpportunity
from cloudcost.schemas.scan import CheckFailureKind, CheckFailureRecord
from cloudcost.services.error_classifier import (
    CheckFailure,
    PermissionDenied,
    TransientFailure,
    classify,
)

logger = structlog.get_logger()

CheckCall = Callable[[], Awaitable[list[SavingsOpportunity]]]


@dataclass
class CheckOutcome:
    """What one wrapped check produced."""

    name: str
    opportunities: list[SavingsOpportunity] = field(default_factory=list)
    failure: CheckFailure | None = None

    def failure_record(self) -> CheckFailureRecord | None:
        """Serializable description of the failure, if any."""
        if self.failure is None:
            return None
        if isinstance(self.failure, PermissionDenied):
            kind = CheckFailureKind.PERMISSION_DENIED
            missing = self.failure.missing_capability
        elif isinstance(self.failure, TransientFailure):
            kind = CheckFailureKind.TRANSIENT
            missing = None
        else:
            kind = CheckFailureKind.FATAL
            missing = None
        return CheckFailureRecord(
            check=self.name,
            kind=kind,
            message=str(self.failure.cause) or type(self.failure.cause).__name__,
            missing_capability=missing,
        )


async def run_check(
    name: str,
    check_fn: CheckCall,
    provider: str | None = None,
    timeout: float | None = None,
) -> CheckOutcome:
    """
    Run one check unit, absorbing every failure.

    Permission denials are soft failures and are logged as warnings. Any
    other error is a hard failure, logged as an error. Either way the check
    contributes no opportunities. Cancellation is not absorbed.

    Args:
        name: Check name used in logs
        check_fn: Zero-argument coroutine factory running the check
        provider: Provider tag for log context
        timeout: Seconds before the check is abandoned, None for no bound

    Returns:
        The check's opportunities, or its classified failure
    """
    try:
        if timeout:
            opportunities = await asyncio.wait_for(check_fn(), timeout=timeout)
        else:
            opportunities = await check_fn()
    except asyncio.CancelledError:
        raise
    except Exception as e:
        failure = classify(e)
        if isinstance(failure, PermissionDenied):
            logger.warning(
                "check.permission_denied",
                check=name,
                provider=provider,
                missing_capability=failure.missing_capability or "insufficient permissions",
            )
        else:
            logger.error(
                "check.failed",
                check=name,
                provider=provider,
                transient=isinstance(failure, TransientFailure),
                error=str(e) or type(e).__name__,
                error_type=type(e).__name__,
            )
        return CheckOutcome(name=name, failure=failure)

    return CheckOutcome(name=name, opportunities=list(opportunities or []))


async def safe_run(
    name: str,
    check_fn: CheckCall,
    provider: str | None = None,
    timeout: float | None = None,
) -> list[SavingsOpportunity]:
    """Run one check unit and return its opportunities. Never raises."""
    outcome = await run_check(name, check_fn, provider=provider, timeout=timeout)
    return outcome.opportunities
