"""Azure connection and check units.

The Azure management SDKs are synchronous, so each check collects its
findings in a plain function executed in the default thread pool.
"""

import os
from datetime import datetime, timedelta, timezone
from typing import Any

import structlog
from azure.core.credentials import TokenCredential
from azure.core.exceptions import ResourceNotFoundError
from azure.identity import ClientSecretCredential, DefaultAzureCredential
from azure.mgmt.compute import ComputeManagementClient
from azure.mgmt.cosmosdb import CosmosDBManagementClient
from azure.mgmt.sql import SqlManagementClient
from azure.mgmt.storage import StorageManagementClient
from azure.mgmt.web import WebSiteManagementClient
from azure.monitor.query import MetricAggregationType, MetricsQueryClient

from cloudcost.core.config import settings
from cloudcost.models.opportunity import Confidence, OpportunityCategory
from cloudcost.models.scan import CloudProvider
from cloudcost.providers.base import (
    CredentialFieldError,
    ProviderConnection,
    ScanOptions,
    average,
    pick,
)
from cloudcost.schemas.opportunity import SavingsOpportunity

logger = structlog.get_logger()

# USD per month, East US pay-as-you-go
VM_PRICING = {
    "Standard_B1s": 7.59,
    "Standard_B2s": 30.37,
    "Standard_D2s_v3": 70.08,
    "Standard_D4s_v3": 140.16,
    "Standard_D8s_v3": 280.32,
    "Standard_E2s_v3": 91.98,
    "Standard_E4s_v3": 183.96,
}
VM_DEFAULT_MONTHLY = 70.0

# USD per GB-month
DISK_PRICING = {
    "Premium_LRS": 0.135,
    "StandardSSD_LRS": 0.075,
    "Standard_LRS": 0.045,
}
PREMIUM_DOWNGRADE_MAX_GB = 256

BLOB_HOT_PER_GB = 0.0184
BLOB_COOL_PER_GB = 0.01

SQL_PRICING = {
    "GP_Gen5_2": 438.29,
    "GP_Gen5_4": 876.58,
    "GP_Gen5_8": 1753.16,
    "BC_Gen5_2": 876.58,
    "BC_Gen5_4": 1753.16,
}
SQL_DEFAULT_MONTHLY = 500.0
DTU_TIERS = {"Basic", "Standard", "Premium"}

FUNCTIONS_PREMIUM_PRICING = {"EP1": 175.20, "EP2": 350.40, "EP3": 700.80}
FUNCTIONS_CONSUMPTION_ESTIMATE = 20.0

COSMOS_COST_PER_100_RU = 5.84
COSMOS_MIN_RU = 400
COSMOS_HIGH_RU = 10_000


class AzureConnection(ProviderConnection):
    """Management clients for one subscription, optionally filtered to a location."""

    provider = CloudProvider.AZURE.value

    def __init__(
        self, credential: TokenCredential, subscription_id: str, location: str | None
    ) -> None:
        super().__init__(location)
        self.credential = credential
        self.subscription_id = subscription_id
        # Socket timeouts bound every SDK call so abandoned worker threads finish
        transport = {
            "connection_timeout": settings.AZURE_CONNECTION_TIMEOUT,
            "read_timeout": settings.AZURE_READ_TIMEOUT,
        }
        self.compute = ComputeManagementClient(credential, subscription_id, **transport)
        self.storage = StorageManagementClient(credential, subscription_id, **transport)
        self.sql = SqlManagementClient(credential, subscription_id, **transport)
        self.web = WebSiteManagementClient(credential, subscription_id, **transport)
        self.cosmosdb = CosmosDBManagementClient(credential, subscription_id, **transport)
        self.metrics = MetricsQueryClient(credential, **transport)

    def in_scope(self, location: str | None) -> bool:
        """Whether a resource's location matches the connection's location filter."""
        if not self.region:
            return True
        return (location or "").replace(" ", "").lower() == self.region.replace(" ", "").lower()

    async def close(self) -> None:
        for client in (
            self.compute,
            self.storage,
            self.sql,
            self.web,
            self.cosmosdb,
            self.metrics,
        ):
            client.close()
        close = getattr(self.credential, "close", None)
        if close:
            close()
        await super().close()


async def connect_azure(
    credentials: dict[str, Any] | None, region: str | None
) -> AzureConnection:
    """
    Build an Azure connection.

    A service principal is used when tenant, client id and secret are all
    present, otherwise DefaultAzureCredential.

    Raises:
        CredentialFieldError: If no subscription id is available
    """
    credentials = credentials or {}
    subscription_id = pick(credentials, "subscription_id", "subscriptionId") or os.getenv(
        "AZURE_SUBSCRIPTION_ID"
    )
    if not subscription_id:
        raise CredentialFieldError("azure", "subscription_id")

    tenant_id = pick(credentials, "tenant_id", "tenantId")
    client_id = pick(credentials, "client_id", "clientId")
    client_secret = pick(credentials, "client_secret", "clientSecret")

    credential: TokenCredential
    if tenant_id and client_id and client_secret:
        credential = ClientSecretCredential(
            tenant_id=tenant_id,
            client_id=client_id,
            client_secret=client_secret,
        )
    else:
        credential = DefaultAzureCredential()

    logger.debug("azure.connection.created", subscription_id=subscription_id, location=region)
    return AzureConnection(credential, subscription_id, region)


def _resource_group(resource_id: str) -> str:
    """Resource group name from /subscriptions/{sub}/resourceGroups/{rg}/..."""
    parts = resource_id.split("/")
    lowered = [p.lower() for p in parts]
    try:
        return parts[lowered.index("resourcegroups") + 1]
    except (ValueError, IndexError):
        raise ValueError(f"No resource group in resource id: {resource_id}") from None


def _metric_values(
    connection: AzureConnection,
    resource_id: str,
    metric_name: str,
    days: int,
    aggregation: str = MetricAggregationType.AVERAGE,
) -> list[float]:
    """Hourly metric values over the lookback window."""
    end = datetime.now(timezone.utc)
    response = connection.metrics.query_resource(
        resource_id,
        metric_names=[metric_name],
        timespan=(end - timedelta(days=days), end),
        granularity=timedelta(hours=1),
        aggregations=[aggregation],
    )
    attr = "average" if aggregation == MetricAggregationType.AVERAGE else "maximum"
    values: list[float] = []
    for metric in response.metrics:
        for series in metric.timeseries:
            values.extend(
                getattr(point, attr) for point in series.data if getattr(point, attr) is not None
            )
    return values


def _collect_vms(connection: AzureConnection, options: ScanOptions) -> list[SavingsOpportunity]:
    opportunities = []
    for vm in connection.compute.virtual_machines.list_all():
        if not connection.in_scope(vm.location):
            continue
        resource_group = _resource_group(vm.id)
        view = connection.compute.virtual_machines.instance_view(resource_group, vm.name)
        power = next(
            (s.code for s in view.statuses or [] if s.code and s.code.startswith("PowerState/")),
            None,
        )
        if power != "PowerState/running":
            continue

        avg_cpu = average(
            _metric_values(connection, vm.id, "Percentage CPU", options.lookback_days)
        )
        if avg_cpu >= options.idle_cpu_percent:
            continue

        size = vm.hardware_profile.vm_size if vm.hardware_profile else "unknown"
        monthly_cost = VM_PRICING.get(size, VM_DEFAULT_MONTHLY)
        opportunities.append(
            SavingsOpportunity(
                id=f"azure-vm-idle-{vm.name}",
                provider=CloudProvider.AZURE,
                resource_type="vm",
                resource_id=vm.id,
                resource_name=vm.name,
                category=OpportunityCategory.IDLE,
                current_cost=monthly_cost,
                estimated_savings=monthly_cost * 0.9,
                confidence=Confidence.HIGH,
                recommendation=f"VM is idle (avg CPU: {avg_cpu:.1f}%). Deallocate or delete it.",
                metadata={
                    "vm_size": size,
                    "location": vm.location,
                    "avg_cpu": round(avg_cpu, 2),
                },
            )
        )
    return opportunities


async def check_vms(connection: AzureConnection, options: ScanOptions) -> list[SavingsOpportunity]:
    """Running VMs whose average CPU is below the idle threshold."""
    return await connection.run_blocking(_collect_vms, connection, options)


def _collect_disks(connection: AzureConnection, options: ScanOptions) -> list[SavingsOpportunity]:
    opportunities = []
    for disk in connection.compute.disks.list():
        if not connection.in_scope(disk.location):
            continue
        size_gb = disk.disk_size_gb or 0
        disk_type = disk.sku.name if disk.sku else "Standard_LRS"
        current = size_gb * DISK_PRICING.get(disk_type, DISK_PRICING["StandardSSD_LRS"])
        metadata = {"size_gb": size_gb, "disk_type": disk_type, "location": disk.location}

        if disk.disk_state == "Unattached":
            opportunities.append(
                SavingsOpportunity(
                    id=f"azure-disk-unattached-{disk.name}",
                    provider=CloudProvider.AZURE,
                    resource_type="disk",
                    resource_id=disk.id,
                    resource_name=disk.name,
                    category=OpportunityCategory.UNUSED,
                    current_cost=current,
                    estimated_savings=current,
                    confidence=Confidence.HIGH,
                    recommendation=f"Unattached disk ({size_gb} GB). Delete if no longer needed.",
                    metadata=metadata,
                )
            )
        elif disk_type == "Premium_LRS" and size_gb < PREMIUM_DOWNGRADE_MAX_GB:
            savings = current - size_gb * DISK_PRICING["StandardSSD_LRS"]
            opportunities.append(
                SavingsOpportunity(
                    id=f"azure-disk-premium-{disk.name}",
                    provider=CloudProvider.AZURE,
                    resource_type="disk",
                    resource_id=disk.id,
                    resource_name=disk.name,
                    category=OpportunityCategory.OVERSIZED,
                    current_cost=current,
                    estimated_savings=savings,
                    confidence=Confidence.LOW,
                    recommendation=(
                        "Consider switching from Premium SSD to Standard SSD "
                        "for non-performance-critical workloads."
                    ),
                    metadata={**metadata, "recommended_type": "StandardSSD_LRS"},
                )
            )
    return opportunities


async def check_disks(connection: AzureConnection, options: ScanOptions) -> list[SavingsOpportunity]:
    """Unattached managed disks and small Premium disks."""
    return await connection.run_blocking(_collect_disks, connection, options)


def _has_lifecycle_policy(connection: AzureConnection, resource_group: str, account: str) -> bool:
    try:
        policy = connection.storage.management_policies.get(resource_group, account, "default")
    except ResourceNotFoundError:
        return False
    rules = policy.policy.rules if policy.policy else None
    return bool(rules)


def _collect_storage(
    connection: AzureConnection, options: ScanOptions
) -> list[SavingsOpportunity]:
    opportunities = []
    for account in connection.storage.storage_accounts.list():
        if not connection.in_scope(account.location):
            continue
        if _has_lifecycle_policy(connection, _resource_group(account.id), account.name):
            continue

        used = _metric_values(connection, account.id, "UsedCapacity", days=2)
        size_gb = (max(used) if used else 0.0) / 1024**3
        current = size_gb * BLOB_HOT_PER_GB
        savings = size_gb * 0.5 * (BLOB_HOT_PER_GB - BLOB_COOL_PER_GB)
        if savings <= 5:
            continue

        opportunities.append(
            SavingsOpportunity(
                id=f"azure-storage-no-lifecycle-{account.name}",
                provider=CloudProvider.AZURE,
                resource_type="storage_account",
                resource_id=account.id,
                resource_name=account.name,
                category=OpportunityCategory.MISCONFIGURED,
                current_cost=current,
                estimated_savings=savings,
                confidence=Confidence.LOW,
                recommendation="Add a lifecycle management policy to move cold blobs to Cool or Archive tier",
                metadata={"size_gb": round(size_gb, 2), "location": account.location},
            )
        )
    return opportunities


async def check_storage(
    connection: AzureConnection, options: ScanOptions
) -> list[SavingsOpportunity]:
    """Storage accounts without a lifecycle management policy."""
    return await connection.run_blocking(_collect_storage, connection, options)


def _collect_sql(connection: AzureConnection, options: ScanOptions) -> list[SavingsOpportunity]:
    opportunities = []
    for server in connection.sql.servers.list():
        if not connection.in_scope(server.location):
            continue
        resource_group = _resource_group(server.id)
        for db in connection.sql.databases.list_by_server(resource_group, server.name):
            if db.name == "master":
                continue
            sku = db.sku.name if db.sku else "unknown"
            tier = db.sku.tier if db.sku else None
            metric = "dtu_consumption_percent" if tier in DTU_TIERS else "cpu_percent"
            values = _metric_values(connection, db.id, metric, options.lookback_days)
            if not values:
                continue
            avg_usage = average(values)
            if avg_usage >= 10:
                continue

            current = SQL_PRICING.get(sku, SQL_DEFAULT_MONTHLY)
            opportunities.append(
                SavingsOpportunity(
                    id=f"azure-sql-oversized-{server.name}-{db.name}",
                    provider=CloudProvider.AZURE,
                    resource_type="sql_database",
                    resource_id=db.id,
                    resource_name=f"{server.name}/{db.name}",
                    category=OpportunityCategory.OVERSIZED,
                    current_cost=current,
                    estimated_savings=current * 0.5,
                    confidence=Confidence.MEDIUM,
                    recommendation=(
                        f"Low utilization ({avg_usage:.1f}% {metric}). Move to a smaller tier."
                    ),
                    metadata={"sku": sku, "metric": metric, "avg_usage": round(avg_usage, 2)},
                )
            )
    return opportunities


async def check_sql(connection: AzureConnection, options: ScanOptions) -> list[SavingsOpportunity]:
    """SQL databases with average DTU or CPU below 10%."""
    return await connection.run_blocking(_collect_sql, connection, options)


def _collect_functions(
    connection: AzureConnection, options: ScanOptions
) -> list[SavingsOpportunity]:
    opportunities = []
    for app in connection.web.web_apps.list():
        if "functionapp" not in (app.kind or "") or not connection.in_scope(app.location):
            continue
        if not app.server_farm_id:
            continue

        plan_id = app.server_farm_id
        plan = connection.web.app_service_plans.get(
            _resource_group(plan_id), plan_id.split("/")[-1]
        )
        tier = (plan.sku.tier if plan and plan.sku else "") or ""
        sku = (plan.sku.name if plan and plan.sku else "") or ""
        if not tier.startswith("Elastic"):
            continue

        monthly_cost = FUNCTIONS_PREMIUM_PRICING.get(sku, 0.0)
        if monthly_cost <= 0:
            continue

        metadata = {"sku": sku, "tier": tier, "state": app.state, "location": app.location}
        if app.state != "Running":
            opportunities.append(
                SavingsOpportunity(
                    id=f"azure-function-stopped-{app.name}",
                    provider=CloudProvider.AZURE,
                    resource_type="function_app",
                    resource_id=app.id,
                    resource_name=app.name,
                    category=OpportunityCategory.UNUSED,
                    current_cost=monthly_cost,
                    estimated_savings=monthly_cost,
                    confidence=Confidence.HIGH,
                    recommendation="Function app is stopped but its Premium plan is still billed. Delete the plan.",
                    metadata=metadata,
                )
            )
            continue

        savings = monthly_cost - FUNCTIONS_CONSUMPTION_ESTIMATE
        if savings <= 50:
            continue
        opportunities.append(
            SavingsOpportunity(
                id=f"azure-function-premium-{app.name}",
                provider=CloudProvider.AZURE,
                resource_type="function_app",
                resource_id=app.id,
                resource_name=app.name,
                category=OpportunityCategory.OVERSIZED,
                current_cost=monthly_cost,
                estimated_savings=savings,
                confidence=Confidence.LOW,
                recommendation=(
                    f"Review Premium plan usage. Consider Consumption plan if traffic is "
                    f"low or sporadic. Premium: ${monthly_cost:.2f}/mo vs Consumption: pay-per-use."
                ),
                metadata=metadata,
            )
        )
    return opportunities


async def check_functions(
    connection: AzureConnection, options: ScanOptions
) -> list[SavingsOpportunity]:
    """Function apps on Elastic Premium plans."""
    return await connection.run_blocking(_collect_functions, connection, options)


def _cosmos_monthly_cost(ru_per_second: float) -> float:
    return ru_per_second / 100 * COSMOS_COST_PER_100_RU


def _collect_cosmosdb(
    connection: AzureConnection, options: ScanOptions
) -> list[SavingsOpportunity]:
    opportunities = []
    sql_resources = connection.cosmosdb.sql_resources
    for account in connection.cosmosdb.database_accounts.list():
        if not connection.in_scope(account.location):
            continue
        if any(cap.name == "EnableServerless" for cap in account.capabilities or []):
            continue

        resource_group = _resource_group(account.id)
        for db in sql_resources.list_sql_databases(resource_group, account.name):
            for container in sql_resources.list_sql_containers(
                resource_group, account.name, db.name
            ):
                try:
                    throughput = sql_resources.get_sql_container_throughput(
                        resource_group, account.name, db.name, container.name
                    )
                except ResourceNotFoundError:
                    # Container shares database-level throughput
                    continue

                offer = throughput.resource
                if not offer or offer.autoscale_settings:
                    continue
                provisioned = offer.throughput or 0
                if provisioned < COSMOS_HIGH_RU:
                    continue

                recommended = max(COSMOS_MIN_RU, provisioned // 2)
                current = _cosmos_monthly_cost(provisioned)
                savings = current - _cosmos_monthly_cost(recommended)
                if savings <= 50:
                    continue

                name = f"{account.name}/{db.name}/{container.name}"
                opportunities.append(
                    SavingsOpportunity(
                        id=f"azure-cosmosdb-overprovisioned-{account.name}-{db.name}-{container.name}",
                        provider=CloudProvider.AZURE,
                        resource_type="cosmosdb",
                        resource_id=container.id or name,
                        resource_name=name,
                        category=OpportunityCategory.OVERSIZED,
                        current_cost=current,
                        estimated_savings=savings,
                        confidence=Confidence.MEDIUM,
                        recommendation=(
                            f"High provisioned throughput ({provisioned} RU/s). "
                            f"Reduce to {recommended} RU/s or enable autoscale."
                        ),
                        metadata={
                            "provisioned_ru": provisioned,
                            "recommended_ru": recommended,
                            "location": account.location,
                        },
                    )
                )
    return opportunities


async def check_cosmosdb(
    connection: AzureConnection, options: ScanOptions
) -> list[SavingsOpportunity]:
    """Cosmos DB containers with high fixed provisioned throughput."""
    return await connection.run_blocking(_collect_cosmosdb, connection, options)
