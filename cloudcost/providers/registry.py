"""Explicit mapping from provider to its ordered check units and connection factory."""

from typing import Iterable, Mapping, Sequence

from cloudcost.core.exceptions import ProviderError
from cloudcost.providers import aws, azure, gcp
from cloudcost.providers.base import CheckRegistration, CheckUnit, ConnectionFactory


class CheckRegistry:
    """
    Ordered check units and connection factories per provider.

    Built once at process start and passed to the orchestrator. Registration
    order is the order in which results are merged.
    """

    def __init__(
        self,
        checks: Mapping[str, Sequence[CheckRegistration]],
        connectors: Mapping[str, ConnectionFactory],
    ) -> None:
        missing = set(checks) - set(connectors)
        if missing:
            raise ValueError(f"No connection factory for: {', '.join(sorted(missing))}")
        self._checks = {provider: tuple(regs) for provider, regs in checks.items()}
        self._connectors = dict(connectors)

    @property
    def providers(self) -> tuple[str, ...]:
        return tuple(self._checks)

    def supports(self, provider: str) -> bool:
        return provider in self._checks

    def require(self, provider: str) -> None:
        """
        Raises:
            ProviderError: If the provider has no registered checks
        """
        if not self.supports(provider):
            raise ProviderError(f"Unsupported provider: {provider}", provider=provider)

    def checks_for(self, provider: str) -> tuple[CheckRegistration, ...]:
        self.require(provider)
        return self._checks[provider]

    def connector_for(self, provider: str) -> ConnectionFactory:
        self.require(provider)
        return self._connectors[provider]


def _checks(*pairs: tuple[str, CheckUnit]) -> list[CheckRegistration]:
    return [CheckRegistration(name=name, fn=fn) for name, fn in pairs]


def build_default_registry(
    extra: Mapping[str, Iterable[CheckRegistration]] | None = None,
) -> CheckRegistry:
    """
    Build the registry of shipped check units.

    Args:
        extra: Additional registrations appended after the defaults, per provider

    Returns:
        Registry for aws, azure and gcp
    """
    checks: dict[str, list[CheckRegistration]] = {
        "aws": _checks(
            ("ec2", aws.check_ec2),
            ("ebs", aws.check_ebs),
            ("rds", aws.check_rds),
            ("s3", aws.check_s3),
            ("lambda", aws.check_lambda),
            ("elasticache", aws.check_elasticache),
        ),
        "azure": _checks(
            ("vms", azure.check_vms),
            ("disks", azure.check_disks),
            ("storage", azure.check_storage),
            ("sql", azure.check_sql),
            ("functions", azure.check_functions),
            ("cosmosdb", azure.check_cosmosdb),
        ),
        "gcp": _checks(
            ("compute", gcp.check_compute),
            ("storage", gcp.check_storage),
            ("disks", gcp.check_disks),
        ),
    }
    for provider, registrations in (extra or {}).items():
        checks.setdefault(provider, []).extend(registrations)

    connectors: dict[str, ConnectionFactory] = {
        "aws": aws.connect_aws,
        "azure": azure.connect_azure,
        "gcp": gcp.connect_gcp,
    }
    return CheckRegistry(checks, connectors)
