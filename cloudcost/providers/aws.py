"""AWS connection and check units."""

import re
from datetime import datetime, timedelta, timezone
from typing import Any

import aioboto3
import structlog
from botocore.config import Config
from botocore.exceptions import ClientError

from cloudcost.core.config import settings
from cloudcost.models.opportunity import Confidence, OpportunityCategory
from cloudcost.models.scan import CloudProvider
from cloudcost.providers.base import (
    HOURS_PER_MONTH,
    ProviderConnection,
    ScanOptions,
    average,
    pick,
)
from cloudcost.schemas.opportunity import SavingsOpportunity

logger = structlog.get_logger()

AWS_REGION_PATTERN = re.compile(r"^[a-z]{2}(-gov|-iso[a-z]?)?-[a-z]+-\d{1,2}$")

# Fallback on-demand pricing, us-east-1 (USD per month)
EC2_PRICING = {
    "t2.micro": 8.47,
    "t2.small": 16.79,
    "t2.medium": 33.87,
    "t3.micro": 7.59,
    "t3.small": 15.18,
    "t3.medium": 30.37,
    "t3.large": 60.74,
    "t3.xlarge": 121.47,
    "m5.large": 70.08,
    "m5.xlarge": 140.16,
    "m5.2xlarge": 280.32,
    "m6i.large": 69.35,
    "m6i.xlarge": 138.70,
    "c5.large": 62.05,
    "c5.xlarge": 124.10,
    "r5.large": 91.25,
    "r5.xlarge": 182.50,
}
EC2_DEFAULT_MONTHLY = 50.0

# USD per GB-month
EBS_PRICING = {
    "gp3": 0.08,
    "gp2": 0.10,
    "io1": 0.125,
    "io2": 0.125,
    "st1": 0.045,
    "sc1": 0.015,
}

RDS_PRICING = {
    "db.t3.micro": 11.01,
    "db.t3.small": 22.63,
    "db.t3.medium": 45.26,
    "db.t3.large": 90.51,
    "db.m5.large": 127.75,
    "db.m5.xlarge": 255.50,
    "db.r5.large": 175.20,
    "db.r5.xlarge": 350.40,
    "db.r5.2xlarge": 700.80,
}
RDS_DEFAULT_MONTHLY = 100.0
RDS_DOWNSIZE = {
    "db.t3.large": "db.t3.medium",
    "db.t3.xlarge": "db.t3.large",
    "db.m5.large": "db.t3.large",
    "db.m5.xlarge": "db.m5.large",
    "db.m5.2xlarge": "db.m5.xlarge",
    "db.r5.large": "db.t3.large",
    "db.r5.xlarge": "db.r5.large",
    "db.r5.2xlarge": "db.r5.xlarge",
}

# USD per node-hour
ELASTICACHE_HOURLY = {
    "cache.t3.micro": 0.017,
    "cache.t3.small": 0.034,
    "cache.t3.medium": 0.068,
    "cache.t4g.micro": 0.016,
    "cache.t4g.small": 0.032,
    "cache.t4g.medium": 0.064,
    "cache.m5.large": 0.136,
    "cache.m5.xlarge": 0.272,
    "cache.m5.2xlarge": 0.544,
    "cache.r5.large": 0.188,
    "cache.r5.xlarge": 0.376,
    "cache.r5.2xlarge": 0.752,
}
ELASTICACHE_DEFAULT_HOURLY = 0.136
ELASTICACHE_DOWNSIZE = {
    "cache.m5.2xlarge": "cache.m5.xlarge",
    "cache.m5.xlarge": "cache.m5.large",
    "cache.m5.large": "cache.t3.medium",
    "cache.t3.medium": "cache.t3.small",
    "cache.t3.small": "cache.t3.micro",
    "cache.r5.2xlarge": "cache.r5.xlarge",
    "cache.r5.xlarge": "cache.r5.large",
    "cache.r5.large": "cache.m5.large",
}

S3_STANDARD_PER_GB = 0.023
S3_GLACIER_PER_GB = 0.004

LAMBDA_REQUEST_PER_MILLION = 0.20
LAMBDA_GB_SECOND = 0.0000166667

UNATTACHED_VOLUME_MIN_AGE_DAYS = 7


class AWSConnection(ProviderConnection):
    """aioboto3 session bound to one region."""

    provider = CloudProvider.AWS.value

    def __init__(self, session: aioboto3.Session, region: str, config: Config) -> None:
        super().__init__(region)
        self.session = session
        self.config = config

    def client(self, service: str) -> Any:
        """Async client context manager for a service in the connection's region."""
        return self.session.client(service, region_name=self.region, config=self.config)


async def connect_aws(
    credentials: dict[str, Any] | None, region: str | None
) -> AWSConnection:
    """
    Build an AWS connection.

    Explicit access keys are used when present, otherwise the default
    credential chain (environment, shared config, instance profile).

    Raises:
        ValueError: If the region is malformed
    """
    region = region or settings.AWS_DEFAULT_REGION
    if not AWS_REGION_PATTERN.match(region):
        raise ValueError(f"Invalid AWS region: {region}")

    credentials = credentials or {}
    session_kwargs: dict[str, Any] = {"region_name": region}
    access_key = pick(credentials, "access_key_id", "accessKeyId")
    secret_key = pick(credentials, "secret_access_key", "secretAccessKey")
    if access_key and secret_key:
        session_kwargs["aws_access_key_id"] = access_key
        session_kwargs["aws_secret_access_key"] = secret_key
        session_token = pick(credentials, "session_token", "sessionToken")
        if session_token:
            session_kwargs["aws_session_token"] = session_token
    else:
        profile = pick(credentials, "profile")
        if profile:
            session_kwargs["profile_name"] = profile

    config = Config(
        connect_timeout=settings.AWS_CONNECT_TIMEOUT,
        read_timeout=settings.AWS_READ_TIMEOUT,
        retries={"max_attempts": settings.AWS_MAX_ATTEMPTS, "mode": "standard"},
    )
    logger.debug(
        "aws.connection.created",
        region=region,
        explicit_keys="aws_access_key_id" in session_kwargs,
    )
    return AWSConnection(aioboto3.Session(**session_kwargs), region, config)


def _tag(tags: list[dict[str, str]] | None, key: str) -> str | None:
    for tag in tags or []:
        if tag.get("Key") == key:
            return tag.get("Value")
    return None


def _window(days: int) -> tuple[datetime, datetime]:
    end = datetime.now(timezone.utc)
    return end - timedelta(days=days), end


async def _metric_datapoints(
    cloudwatch: Any,
    namespace: str,
    metric: str,
    dimensions: dict[str, str],
    days: int,
    statistic: str = "Average",
) -> list[float]:
    """Daily datapoints of a CloudWatch metric over the lookback window."""
    start, end = _window(days)
    response = await cloudwatch.get_metric_statistics(
        Namespace=namespace,
        MetricName=metric,
        Dimensions=[{"Name": k, "Value": v} for k, v in dimensions.items()],
        StartTime=start,
        EndTime=end,
        Period=86400,
        Statistics=[statistic],
    )
    return [float(dp.get(statistic, 0.0)) for dp in response.get("Datapoints", [])]


async def check_ec2(connection: AWSConnection, options: ScanOptions) -> list[SavingsOpportunity]:
    """Running instances whose average CPU is below the idle threshold."""
    opportunities: list[SavingsOpportunity] = []
    async with connection.client("ec2") as ec2, connection.client("cloudwatch") as cw:
        paginator = ec2.get_paginator("describe_instances")
        async for page in paginator.paginate(
            Filters=[{"Name": "instance-state-name", "Values": ["running"]}]
        ):
            for reservation in page.get("Reservations", []):
                for instance in reservation.get("Instances", []):
                    instance_id = instance.get("InstanceId")
                    instance_type = instance.get("InstanceType")
                    if not instance_id or not instance_type:
                        continue

                    avg_cpu = average(
                        await _metric_datapoints(
                            cw,
                            "AWS/EC2",
                            "CPUUtilization",
                            {"InstanceId": instance_id},
                            options.lookback_days,
                        )
                    )
                    if avg_cpu >= options.idle_cpu_percent:
                        continue

                    monthly_cost = EC2_PRICING.get(instance_type, EC2_DEFAULT_MONTHLY)
                    opportunities.append(
                        SavingsOpportunity(
                            id=f"ec2-idle-{instance_id}",
                            provider=CloudProvider.AWS,
                            resource_type="ec2",
                            resource_id=instance_id,
                            resource_name=_tag(instance.get("Tags"), "Name"),
                            category=OpportunityCategory.IDLE,
                            current_cost=monthly_cost,
                            estimated_savings=monthly_cost,
                            confidence=Confidence.HIGH,
                            recommendation=(
                                f"Stop instance or downsize to t3.small (avg CPU: {avg_cpu:.1f}%)"
                            ),
                            metadata={
                                "instance_type": instance_type,
                                "avg_cpu": round(avg_cpu, 2),
                                "state": instance.get("State", {}).get("Name"),
                            },
                        )
                    )
    return opportunities


async def check_ebs(connection: AWSConnection, options: ScanOptions) -> list[SavingsOpportunity]:
    """Unattached volumes older than a week."""
    opportunities: list[SavingsOpportunity] = []
    now = datetime.now(timezone.utc)
    async with connection.client("ec2") as ec2:
        paginator = ec2.get_paginator("describe_volumes")
        async for page in paginator.paginate(
            Filters=[{"Name": "status", "Values": ["available"]}]
        ):
            for volume in page.get("Volumes", []):
                volume_id = volume.get("VolumeId")
                size = volume.get("Size")
                created = volume.get("CreateTime")
                if not volume_id or not size or not created:
                    continue

                age_days = (now - created).days
                if age_days <= UNATTACHED_VOLUME_MIN_AGE_DAYS:
                    continue

                volume_type = volume.get("VolumeType") or "gp3"
                monthly_cost = size * EBS_PRICING.get(volume_type, EBS_PRICING["gp3"])
                opportunities.append(
                    SavingsOpportunity(
                        id=f"ebs-unattached-{volume_id}",
                        provider=CloudProvider.AWS,
                        resource_type="ebs",
                        resource_id=volume_id,
                        resource_name=_tag(volume.get("Tags"), "Name"),
                        category=OpportunityCategory.UNUSED,
                        current_cost=monthly_cost,
                        estimated_savings=monthly_cost,
                        confidence=Confidence.HIGH,
                        recommendation=(
                            f"Snapshot and delete, or delete if redundant (age: {age_days} days)"
                        ),
                        metadata={"size_gb": size, "volume_type": volume_type, "age_days": age_days},
                    )
                )
    return opportunities


async def check_rds(connection: AWSConnection, options: ScanOptions) -> list[SavingsOpportunity]:
    """Instances with low but non-zero CPU and a known smaller class."""
    opportunities: list[SavingsOpportunity] = []
    async with connection.client("rds") as rds, connection.client("cloudwatch") as cw:
        paginator = rds.get_paginator("describe_db_instances")
        async for page in paginator.paginate():
            for db in page.get("DBInstances", []):
                identifier = db.get("DBInstanceIdentifier")
                instance_class = db.get("DBInstanceClass")
                if not identifier or not instance_class:
                    continue

                avg_cpu = average(
                    await _metric_datapoints(
                        cw,
                        "AWS/RDS",
                        "CPUUtilization",
                        {"DBInstanceIdentifier": identifier},
                        options.lookback_days,
                    )
                )
                if not 0 < avg_cpu < 20:
                    continue

                smaller = RDS_DOWNSIZE.get(instance_class)
                if not smaller:
                    continue

                current = RDS_PRICING.get(instance_class, RDS_DEFAULT_MONTHLY)
                savings = current - RDS_PRICING.get(smaller, RDS_DEFAULT_MONTHLY)
                if savings <= 0:
                    continue

                opportunities.append(
                    SavingsOpportunity(
                        id=f"rds-oversized-{identifier}",
                        provider=CloudProvider.AWS,
                        resource_type="rds",
                        resource_id=db.get("DBInstanceArn") or identifier,
                        resource_name=identifier,
                        category=OpportunityCategory.OVERSIZED,
                        current_cost=current,
                        estimated_savings=savings,
                        confidence=Confidence.MEDIUM,
                        recommendation=(
                            f"Downsize from {instance_class} to {smaller} (avg CPU: {avg_cpu:.1f}%)"
                        ),
                        metadata={
                            "instance_class": instance_class,
                            "recommended_class": smaller,
                            "engine": db.get("Engine"),
                            "avg_cpu": round(avg_cpu, 2),
                        },
                    )
                )
    return opportunities


async def check_s3(connection: AWSConnection, options: ScanOptions) -> list[SavingsOpportunity]:
    """Buckets without a lifecycle configuration, sized from CloudWatch storage metrics."""
    opportunities: list[SavingsOpportunity] = []
    async with connection.client("s3") as s3, connection.client("cloudwatch") as cw:
        response = await s3.list_buckets()
        for bucket in response.get("Buckets", []):
            name = bucket.get("Name")
            if not name:
                continue

            try:
                await s3.get_bucket_lifecycle_configuration(Bucket=name)
                continue
            except ClientError as e:
                if e.response.get("Error", {}).get("Code") != "NoSuchLifecycleConfiguration":
                    raise

            sizes = await _metric_datapoints(
                cw,
                "AWS/S3",
                "BucketSizeBytes",
                {"BucketName": name, "StorageType": "StandardStorage"},
                days=2,
            )
            size_gb = (max(sizes) if sizes else 0.0) / 1024**3
            current = size_gb * S3_STANDARD_PER_GB
            # Half of the data assumed cold enough for Glacier
            savings = size_gb * 0.5 * (S3_STANDARD_PER_GB - S3_GLACIER_PER_GB)
            if savings <= 5:
                continue

            opportunities.append(
                SavingsOpportunity(
                    id=f"s3-no-lifecycle-{name}",
                    provider=CloudProvider.AWS,
                    resource_type="s3",
                    resource_id=name,
                    resource_name=name,
                    category=OpportunityCategory.MISCONFIGURED,
                    current_cost=current,
                    estimated_savings=savings,
                    confidence=Confidence.LOW,
                    recommendation="Enable lifecycle policy (Intelligent-Tiering or Glacier transition)",
                    metadata={"size_gb": round(size_gb, 2)},
                )
            )
    return opportunities


def _lambda_monthly_cost(memory_mb: int, invocations: float, avg_duration_ms: float) -> float:
    request_cost = invocations / 1_000_000 * LAMBDA_REQUEST_PER_MILLION
    gb_seconds = (memory_mb / 1024) * (avg_duration_ms / 1000) * invocations
    return request_cost + gb_seconds * LAMBDA_GB_SECOND


async def check_lambda(connection: AWSConnection, options: ScanOptions) -> list[SavingsOpportunity]:
    """Functions never invoked, or with far more memory than their runtime needs."""
    opportunities: list[SavingsOpportunity] = []
    async with connection.client("lambda") as lam, connection.client("cloudwatch") as cw:
        paginator = lam.get_paginator("list_functions")
        async for page in paginator.paginate():
            for fn in page.get("Functions", []):
                name = fn.get("FunctionName")
                arn = fn.get("FunctionArn")
                if not name or not arn:
                    continue
                memory = fn.get("MemorySize") or 128
                dims = {"FunctionName": name}

                invocations = sum(
                    await _metric_datapoints(
                        cw, "AWS/Lambda", "Invocations", dims, options.lookback_days, "Sum"
                    )
                )
                if invocations == 0:
                    opportunities.append(
                        SavingsOpportunity(
                            id=f"aws-lambda-unused-{name}",
                            provider=CloudProvider.AWS,
                            resource_type="lambda",
                            resource_id=arn,
                            resource_name=name,
                            category=OpportunityCategory.UNUSED,
                            current_cost=0.0,
                            estimated_savings=0.0,
                            confidence=Confidence.HIGH,
                            recommendation=(
                                f"Delete unused Lambda function "
                                f"(0 invocations in {options.lookback_days} days)"
                            ),
                            metadata={
                                "memory_mb": memory,
                                "runtime": fn.get("Runtime"),
                                "last_modified": fn.get("LastModified"),
                            },
                        )
                    )
                    continue

                duration = average(
                    await _metric_datapoints(
                        cw, "AWS/Lambda", "Duration", dims, options.lookback_days
                    )
                )
                if memory < 1024 or duration >= 1000:
                    continue

                current = _lambda_monthly_cost(memory, invocations, duration)
                savings = current - _lambda_monthly_cost(512, invocations, duration)
                if savings <= 5:
                    continue

                opportunities.append(
                    SavingsOpportunity(
                        id=f"aws-lambda-overprovisioned-{name}",
                        provider=CloudProvider.AWS,
                        resource_type="lambda",
                        resource_id=arn,
                        resource_name=name,
                        category=OpportunityCategory.OVERSIZED,
                        current_cost=current,
                        estimated_savings=savings,
                        confidence=Confidence.MEDIUM,
                        recommendation=(
                            f"Reduce memory from {memory} MB to 512 MB "
                            f"(avg duration: {duration:.0f} ms)"
                        ),
                        metadata={
                            "memory_mb": memory,
                            "recommended_memory_mb": 512,
                            "invocations": invocations,
                            "avg_duration_ms": round(duration, 1),
                        },
                    )
                )
    return opportunities


def _elasticache_monthly_cost(node_type: str, nodes: int) -> float:
    return ELASTICACHE_HOURLY.get(node_type, ELASTICACHE_DEFAULT_HOURLY) * HOURS_PER_MONTH * nodes


async def check_elasticache(
    connection: AWSConnection, options: ScanOptions
) -> list[SavingsOpportunity]:
    """Available clusters with low but non-zero CPU."""
    opportunities: list[SavingsOpportunity] = []
    async with connection.client("elasticache") as ec, connection.client("cloudwatch") as cw:
        paginator = ec.get_paginator("describe_cache_clusters")
        async for page in paginator.paginate(ShowCacheNodeInfo=True):
            for cluster in page.get("CacheClusters", []):
                cluster_id = cluster.get("CacheClusterId")
                if not cluster_id or cluster.get("CacheClusterStatus") != "available":
                    continue

                node_type = cluster.get("CacheNodeType") or "unknown"
                nodes = cluster.get("NumCacheNodes") or 1
                avg_cpu = average(
                    await _metric_datapoints(
                        cw,
                        "AWS/ElastiCache",
                        "CPUUtilization",
                        {"CacheClusterId": cluster_id},
                        options.lookback_days,
                    )
                )
                if not 0 < avg_cpu < 10:
                    continue

                smaller = ELASTICACHE_DOWNSIZE.get(node_type, "cache.t3.small")
                current = _elasticache_monthly_cost(node_type, nodes)
                savings = current - _elasticache_monthly_cost(smaller, nodes)
                if savings <= 20:
                    continue

                opportunities.append(
                    SavingsOpportunity(
                        id=f"aws-elasticache-underutilized-{cluster_id}",
                        provider=CloudProvider.AWS,
                        resource_type="elasticache",
                        resource_id=cluster.get("ARN") or cluster_id,
                        resource_name=cluster_id,
                        category=OpportunityCategory.UNDERUTILIZED,
                        current_cost=current,
                        estimated_savings=savings,
                        confidence=Confidence.HIGH,
                        recommendation=(
                            f"Low CPU usage ({avg_cpu:.1f}%). "
                            f"Consider downsizing from {node_type} to {smaller}."
                        ),
                        metadata={
                            "engine": cluster.get("Engine"),
                            "node_type": node_type,
                            "recommended_node_type": smaller,
                            "num_nodes": nodes,
                            "avg_cpu": round(avg_cpu, 2),
                        },
                    )
                )
    return opportunities
