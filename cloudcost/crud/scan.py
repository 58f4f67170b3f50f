"""CRUD operations for scans and their opportunities."""

from collections import defaultdict
from datetime import date, datetime, timedelta
from typing import Any, Sequence

from sqlalchemy import desc, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from cloudcost.core.exceptions import NotFoundError, ProviderError, ScanStateError
from cloudcost.models.opportunity import Opportunity
from cloudcost.models.scan import CloudProvider, Scan, ScanStatus, utcnow
from cloudcost.schemas.opportunity import SavingsOpportunity
from cloudcost.schemas.scan import Scan as ScanSchema
from cloudcost.schemas.scan import ScanStats, TrendPoint

TERMINAL_STATUSES = {ScanStatus.COMPLETED.value, ScanStatus.FAILED.value}


async def save_scan(db: AsyncSession, provider: str, region: str | None = None) -> Scan:
    """
    Create a new scan in the running state.

    Args:
        db: Database session
        provider: Provider tag (aws, azure, gcp)
        region: Optional region or location

    Returns:
        Created scan object

    Raises:
        ProviderError: If the provider is not supported
    """
    if provider not in {p.value for p in CloudProvider}:
        raise ProviderError(f"Unsupported provider: {provider}", provider=provider)

    scan = Scan(
        provider=provider,
        region=region,
        status=ScanStatus.RUNNING.value,
        started_at=utcnow(),
    )
    db.add(scan)
    await db.commit()
    await db.refresh(scan)
    return scan


async def get_scan(
    db: AsyncSession, scan_id: int, load_opportunities: bool = False
) -> Scan | None:
    """
    Get scan by ID.

    Args:
        db: Database session
        scan_id: Scan ID
        load_opportunities: Whether to eagerly load opportunities

    Returns:
        Scan object or None if not found
    """
    query = select(Scan).where(Scan.id == scan_id)

    if load_opportunities:
        query = query.options(selectinload(Scan.opportunities))

    result = await db.execute(query)
    return result.scalar_one_or_none()


async def get_scans(db: AsyncSession, limit: int = 30) -> list[Scan]:
    """
    Get the most recent scans, newest first.

    Args:
        db: Database session
        limit: Maximum number of records to return

    Returns:
        List of scan objects
    """
    result = await db.execute(
        select(Scan).order_by(desc(Scan.started_at), desc(Scan.id)).limit(limit)
    )
    return list(result.scalars().all())


async def update_scan_status(
    db: AsyncSession,
    scan_id: int,
    status: ScanStatus | str,
    *,
    total_savings: float | None = None,
    opportunity_count: int | None = None,
    error_message: str | None = None,
    commit: bool = True,
) -> Scan:
    """
    Move a running scan to a terminal state.

    Totals are written together with the transition to completed, and the
    error message together with the transition to failed. Nothing is written
    for any other transition.

    Args:
        db: Database session
        scan_id: Scan ID
        status: Target status (completed or failed)
        total_savings: Aggregate savings, required for completed
        opportunity_count: Number of opportunities, required for completed
        error_message: Failure description, used for failed
        commit: Commit immediately; pass False to join a larger transaction

    Returns:
        Updated scan object

    Raises:
        NotFoundError: If the scan does not exist
        ScanStateError: If the scan is not running or the target is not terminal
    """
    target = ScanStatus(status).value
    if target not in TERMINAL_STATUSES:
        raise ScanStateError(
            f"Cannot move scan {scan_id} to {target}",
            {"scan_id": scan_id, "target": target},
        )

    values: dict[str, Any] = {"status": target, "completed_at": utcnow()}
    if target == ScanStatus.COMPLETED.value:
        if total_savings is None or opportunity_count is None:
            raise ScanStateError(
                "Completing a scan requires total_savings and opportunity_count",
                {"scan_id": scan_id},
            )
        values["total_savings"] = total_savings
        values["opportunity_count"] = opportunity_count
    else:
        values["error_message"] = (error_message or "Scan failed")[:500]

    # Guard and write in one statement so concurrent writers cannot both win
    result = await db.execute(
        update(Scan)
        .where(Scan.id == scan_id, Scan.status == ScanStatus.RUNNING.value)
        .values(**values)
        .execution_options(synchronize_session=False)
    )

    if result.rowcount == 0:
        if commit:
            await db.rollback()
        scan = await get_scan(db, scan_id)
        if not scan:
            raise NotFoundError("Scan", scan_id)
        await db.refresh(scan)
        raise ScanStateError(
            f"Scan {scan_id} is already {scan.status}",
            {"scan_id": scan_id, "current": scan.status, "target": target},
        )

    if commit:
        await db.commit()

    scan = await get_scan(db, scan_id)
    await db.refresh(scan)
    return scan


async def set_celery_task_id(db: AsyncSession, scan_id: int, task_id: str) -> Scan:
    """Record the background task executing a scan."""
    scan = await get_scan(db, scan_id)
    if not scan:
        raise NotFoundError("Scan", scan_id)
    scan.celery_task_id = task_id
    await db.commit()
    await db.refresh(scan)
    return scan


async def save_opportunities(
    db: AsyncSession,
    scan_id: int,
    opportunities: Sequence[SavingsOpportunity],
    commit: bool = True,
) -> list[Opportunity]:
    """
    Append opportunities to a scan.

    Args:
        db: Database session
        scan_id: Owning scan ID
        opportunities: Opportunities emitted by check units
        commit: Commit immediately; pass False to join a larger transaction

    Returns:
        Created opportunity objects

    Raises:
        NotFoundError: If the scan does not exist
    """
    if not await get_scan(db, scan_id):
        raise NotFoundError("Scan", scan_id)

    rows = [
        Opportunity(
            scan_id=scan_id,
            opportunity_id=opp.id,
            provider=opp.provider.value,
            resource_type=opp.resource_type,
            resource_id=opp.resource_id,
            resource_name=opp.resource_name,
            category=opp.category.value,
            current_cost=opp.current_cost,
            estimated_savings=opp.estimated_savings,
            confidence=opp.confidence.value,
            recommendation=opp.recommendation,
            resource_metadata=dict(opp.metadata),
            detected_at=opp.detected_at,
        )
        for opp in opportunities
    ]
    db.add_all(rows)

    if commit:
        await db.commit()
    else:
        await db.flush()
    return rows


async def get_opportunities(db: AsyncSession, scan_id: int) -> list[Opportunity]:
    """
    Get a scan's opportunities, largest savings first.

    Raises:
        NotFoundError: If the scan does not exist
    """
    if not await get_scan(db, scan_id):
        raise NotFoundError("Scan", scan_id)

    result = await db.execute(
        select(Opportunity)
        .where(Opportunity.scan_id == scan_id)
        .order_by(desc(Opportunity.estimated_savings), Opportunity.id)
    )
    return list(result.scalars().all())


async def _completed_scans_since(db: AsyncSession, since: datetime | None = None) -> list[Scan]:
    query = select(Scan).where(Scan.status == ScanStatus.COMPLETED.value)
    if since is not None:
        query = query.where(Scan.started_at >= since)
    result = await db.execute(query.order_by(Scan.started_at, Scan.id))
    return list(result.scalars().all())


async def get_stats(db: AsyncSession) -> ScanStats:
    """
    Get dashboard statistics.

    Total savings is the sum over the latest completed scan of each provider,
    so repeated scans of the same account are not double counted.

    Args:
        db: Database session

    Returns:
        Scan count, current total savings and the 10 most recent scans
    """
    total_scans = await db.scalar(select(func.count()).select_from(Scan)) or 0

    latest_by_provider: dict[str, Scan] = {}
    for scan in await _completed_scans_since(db):
        latest_by_provider[scan.provider] = scan

    recent = await get_scans(db, limit=10)

    return ScanStats(
        total_scans=total_scans,
        total_savings=sum(s.total_savings for s in latest_by_provider.values()),
        recent_scans=[ScanSchema.model_validate(s) for s in recent],
    )


async def get_trend_data(
    db: AsyncSession, days: int = 30, now: datetime | None = None
) -> list[TrendPoint]:
    """
    Get the per-day savings trend over the trailing window.

    Only completed scans count. For each provider only the last scan of a
    day is kept; each point sums those scans' savings.

    Args:
        db: Database session
        days: Window length in days
        now: Reference time, defaults to the current UTC time

    Returns:
        Trend points in ascending date order
    """
    since = (now or utcnow()) - timedelta(days=days)

    latest_per_provider_day: dict[tuple[str, date], Scan] = {}
    for scan in await _completed_scans_since(db, since):
        latest_per_provider_day[(scan.provider, scan.started_at.date())] = scan

    savings: dict[date, float] = defaultdict(float)
    counts: dict[date, int] = defaultdict(int)
    for (_, day), scan in latest_per_provider_day.items():
        savings[day] += scan.total_savings
        counts[day] += 1

    return [
        TrendPoint(day=day, total_savings=savings[day], scan_count=counts[day])
        for day in sorted(savings)
    ]
