"""GCP connection and check units."""

import asyncio
import json
import os
import time
from functools import partial
from typing import Any

import google.auth
import structlog
from google.cloud import compute_v1, monitoring_v3, storage
from google.oauth2 import service_account
from google.protobuf.timestamp_pb2 import Timestamp

from cloudcost.core.config import settings
from cloudcost.models.opportunity import Confidence, OpportunityCategory
from cloudcost.models.scan import CloudProvider
from cloudcost.providers.base import (
    HOURS_PER_MONTH,
    CredentialFieldError,
    ProviderConnection,
    ScanOptions,
    average,
    pick,
)
from cloudcost.schemas.opportunity import SavingsOpportunity

logger = structlog.get_logger()

SCOPES = ["https://www.googleapis.com/auth/cloud-platform"]

# USD per month, us-central1 on-demand
MACHINE_PRICING = {
    "e2-micro": 6.11,
    "e2-small": 12.23,
    "e2-medium": 24.46,
    "e2-standard-2": 48.92,
    "e2-standard-4": 97.83,
    "n1-standard-1": 24.27,
    "n1-standard-2": 48.55,
    "n1-standard-4": 97.09,
    "n2-standard-2": 70.81,
    "n2-standard-4": 141.62,
}
MACHINE_DEFAULT_HOURLY = 0.07

# USD per GB-month
DISK_PRICING = {
    "pd-standard": 0.04,
    "pd-balanced": 0.10,
    "pd-ssd": 0.17,
    "pd-extreme": 0.125,
}

GCS_STANDARD_PER_GB = 0.020
GCS_COLDLINE_PER_GB = 0.004


class GCPConnection(ProviderConnection):
    """Compute, monitoring and storage clients for one project."""

    provider = CloudProvider.GCP.value

    def __init__(self, credentials: Any, project_id: str, region: str) -> None:
        super().__init__(region)
        self.credentials = credentials
        self.project_id = project_id
        self.instances = compute_v1.InstancesClient(credentials=credentials)
        self.disks = compute_v1.DisksClient(credentials=credentials)
        self.monitoring = monitoring_v3.MetricServiceClient(credentials=credentials)
        self.storage = storage.Client(project=project_id, credentials=credentials)

    def in_scope(self, zone: str) -> bool:
        """Whether a zone (or zones/<zone> key) belongs to the connection's region."""
        location = zone.split("/")[-1]
        return location == self.region or location.startswith(f"{self.region}-")

    async def close(self) -> None:
        for client in (self.instances, self.disks, self.monitoring):
            client.transport.close()
        self.storage.close()
        await super().close()


def _load_credentials(credentials: dict[str, Any]) -> tuple[Any, str | None]:
    raw = pick(credentials, "service_account_json", "keyFile", "key_file")
    if raw:
        info = json.loads(raw) if isinstance(raw, str) else raw
    elif credentials.get("private_key") and credentials.get("client_email"):
        info = credentials
    else:
        creds, project = google.auth.default(scopes=SCOPES)
        return creds, project

    creds = service_account.Credentials.from_service_account_info(info, scopes=SCOPES)
    return creds, info.get("project_id")


def _build_connection(credentials: dict[str, Any], region: str | None) -> GCPConnection:
    creds, detected_project = _load_credentials(credentials)
    project_id = (
        pick(credentials, "project_id", "projectId")
        or os.getenv("GCP_PROJECT_ID")
        or os.getenv("GOOGLE_CLOUD_PROJECT")
        or detected_project
    )
    if not project_id:
        raise CredentialFieldError("gcp", "project_id")

    region = region or settings.GCP_DEFAULT_REGION
    logger.debug("gcp.connection.created", project_id=project_id, region=region)
    return GCPConnection(creds, project_id, region)


async def connect_gcp(
    credentials: dict[str, Any] | None, region: str | None
) -> GCPConnection:
    """
    Build a GCP connection.

    Service account info from the bundle is used when present, otherwise
    application default credentials. Credential discovery may query the
    metadata server and client construction opens channels, so both run
    in the default executor.

    Raises:
        CredentialFieldError: If no project id is available
        google.auth.exceptions.DefaultCredentialsError: If no credentials can be found
    """
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, partial(_build_connection, credentials or {}, region))


def _metric_points(
    connection: GCPConnection, metric_type: str, resource_filter: str, days: int
) -> list[float]:
    """Raw double values of a Cloud Monitoring metric over the lookback window."""
    now = time.time()
    interval = monitoring_v3.TimeInterval(
        {
            "end_time": Timestamp(seconds=int(now)),
            "start_time": Timestamp(seconds=int(now - days * 24 * 3600)),
        }
    )
    results = connection.monitoring.list_time_series(
        request={
            "name": f"projects/{connection.project_id}",
            "filter": f'metric.type="{metric_type}" AND {resource_filter}',
            "interval": interval,
            "view": monitoring_v3.ListTimeSeriesRequest.TimeSeriesView.FULL,
        },
        timeout=settings.GCP_CALL_TIMEOUT,
    )
    values: list[float] = []
    for series in results:
        for point in series.points:
            values.append(point.value.double_value or float(point.value.int64_value))
    return values


def _machine_monthly_cost(machine_type: str) -> float:
    return MACHINE_PRICING.get(machine_type, MACHINE_DEFAULT_HOURLY * HOURS_PER_MONTH)


def _collect_compute(
    connection: GCPConnection, options: ScanOptions
) -> list[SavingsOpportunity]:
    opportunities = []
    request = compute_v1.AggregatedListInstancesRequest(
        project=connection.project_id, filter='status="RUNNING"'
    )
    for zone_key, scoped in connection.instances.aggregated_list(
        request=request, timeout=settings.GCP_CALL_TIMEOUT
    ):
        if not scoped.instances or not connection.in_scope(zone_key):
            continue
        zone = zone_key.split("/")[-1]
        for instance in scoped.instances:
            cpu = _metric_points(
                connection,
                "compute.googleapis.com/instance/cpu/utilization",
                f'resource.labels.instance_id="{instance.id}" AND resource.labels.zone="{zone}"',
                options.lookback_days,
            )
            # Utilization is reported as a fraction
            avg_cpu = average(cpu) * 100
            if avg_cpu >= options.idle_cpu_percent:
                continue

            machine_type = instance.machine_type.split("/")[-1]
            monthly_cost = _machine_monthly_cost(machine_type)
            opportunities.append(
                SavingsOpportunity(
                    id=f"gcp-compute-idle-{instance.name}",
                    provider=CloudProvider.GCP,
                    resource_type="compute_instance",
                    resource_id=str(instance.id),
                    resource_name=instance.name,
                    category=OpportunityCategory.IDLE,
                    current_cost=monthly_cost,
                    estimated_savings=monthly_cost,
                    confidence=Confidence.HIGH,
                    recommendation=(
                        f"Stop instance or downsize to e2-micro (avg CPU: {avg_cpu:.1f}%)"
                    ),
                    metadata={
                        "machine_type": machine_type,
                        "zone": zone,
                        "avg_cpu": round(avg_cpu, 2),
                    },
                )
            )
    return opportunities


async def check_compute(
    connection: GCPConnection, options: ScanOptions
) -> list[SavingsOpportunity]:
    """Running instances whose average CPU is below the idle threshold."""
    return await connection.run_blocking(_collect_compute, connection, options)


def _collect_storage(
    connection: GCPConnection, options: ScanOptions
) -> list[SavingsOpportunity]:
    opportunities = []
    for bucket in connection.storage.list_buckets(timeout=settings.GCP_CALL_TIMEOUT):
        if list(bucket.lifecycle_rules):
            continue

        sizes = _metric_points(
            connection,
            "storage.googleapis.com/storage/total_bytes",
            f'resource.labels.bucket_name="{bucket.name}"',
            days=2,
        )
        size_gb = (max(sizes) if sizes else 0.0) / 1024**3
        current = size_gb * GCS_STANDARD_PER_GB
        savings = size_gb * 0.5 * (GCS_STANDARD_PER_GB - GCS_COLDLINE_PER_GB)
        if savings <= 5:
            continue

        opportunities.append(
            SavingsOpportunity(
                id=f"gcp-storage-no-lifecycle-{bucket.name}",
                provider=CloudProvider.GCP,
                resource_type="gcs_bucket",
                resource_id=bucket.name,
                resource_name=bucket.name,
                category=OpportunityCategory.MISCONFIGURED,
                current_cost=current,
                estimated_savings=savings,
                confidence=Confidence.LOW,
                recommendation="Add lifecycle rules to move cold objects to Nearline or Coldline",
                metadata={
                    "size_gb": round(size_gb, 2),
                    "location": bucket.location,
                    "storage_class": bucket.storage_class,
                },
            )
        )
    return opportunities


async def check_storage(
    connection: GCPConnection, options: ScanOptions
) -> list[SavingsOpportunity]:
    """Buckets without lifecycle rules."""
    return await connection.run_blocking(_collect_storage, connection, options)


def _collect_disks(connection: GCPConnection, options: ScanOptions) -> list[SavingsOpportunity]:
    opportunities = []
    request = compute_v1.AggregatedListDisksRequest(project=connection.project_id)
    for zone_key, scoped in connection.disks.aggregated_list(
        request=request, timeout=settings.GCP_CALL_TIMEOUT
    ):
        if not scoped.disks or not connection.in_scope(zone_key):
            continue
        zone = zone_key.split("/")[-1]
        for disk in scoped.disks:
            if list(disk.users):
                continue
            disk_type = disk.type_.split("/")[-1]
            size_gb = disk.size_gb or 0
            monthly_cost = size_gb * DISK_PRICING.get(disk_type, DISK_PRICING["pd-standard"])
            opportunities.append(
                SavingsOpportunity(
                    id=f"gcp-disk-unattached-{disk.name}",
                    provider=CloudProvider.GCP,
                    resource_type="persistent_disk",
                    resource_id=str(disk.id),
                    resource_name=disk.name,
                    category=OpportunityCategory.UNUSED,
                    current_cost=monthly_cost,
                    estimated_savings=monthly_cost,
                    confidence=Confidence.HIGH,
                    recommendation=f"Unattached disk ({size_gb} GB). Snapshot and delete it.",
                    metadata={"size_gb": size_gb, "disk_type": disk_type, "zone": zone},
                )
            )
    return opportunities


async def check_disks(connection: GCPConnection, options: ScanOptions) -> list[SavingsOpportunity]:
    """Persistent disks attached to no instance."""
    return await connection.run_blocking(_collect_disks, connection, options)
