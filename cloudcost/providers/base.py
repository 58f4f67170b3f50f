"""Base types shared by all provider connections and check units."""

import asyncio
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, TypeVar

from pydantic import BaseModel, ConfigDict

from cloudcost.schemas.opportunity import SavingsOpportunity

T = TypeVar("T")

HOURS_PER_MONTH = 730


class ScanOptions(BaseModel):
    """Options passed to every check unit of a scan."""

    model_config = ConfigDict(frozen=True)

    region: str | None = None
    detailed_metrics: bool = False
    lookback_days: int = 30
    idle_cpu_percent: float = 5.0


class ProviderConnection:
    """
    Handle to one cloud account, shared read-only by all checks of a scan.

    Check units must not mutate connection state. Blocking SDK calls run on
    the connection's own thread pool through run_blocking. A worker thread
    keeps running after its awaiting check times out, so callers must
    wait_idle before closing the connection.
    """

    provider: str

    def __init__(self, region: str | None) -> None:
        self.region = region
        self._executor = ThreadPoolExecutor(thread_name_prefix=f"{type(self).__name__}-sdk")
        self._in_flight: set[Future[Any]] = set()

    async def close(self) -> None:
        """Release network resources and the thread pool."""
        self._executor.shutdown(wait=False)

    async def run_blocking(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Run a blocking SDK call on the connection's thread pool."""
        future = self._executor.submit(fn, *args, **kwargs)
        self._in_flight.add(future)
        future.add_done_callback(self._in_flight.discard)
        return await asyncio.wrap_future(future)

    @property
    def busy(self) -> bool:
        """Whether a worker thread is still inside a blocking SDK call."""
        return bool(self._in_flight)

    async def wait_idle(self) -> None:
        """Wait until no worker thread is using the connection's clients."""
        while self._in_flight:
            await asyncio.wait([asyncio.wrap_future(f) for f in list(self._in_flight)])

    def __repr__(self) -> str:
        return f"<{type(self).__name__} region={self.region}>"


CheckUnit = Callable[[Any, ScanOptions], Awaitable[list[SavingsOpportunity]]]
ConnectionFactory = Callable[[dict[str, Any] | None, str | None], Awaitable[ProviderConnection]]


@dataclass(frozen=True)
class CheckRegistration:
    """A named check unit in a provider's ordered check list."""

    name: str
    fn: CheckUnit


def average(values: list[float]) -> float:
    """Arithmetic mean, 0.0 for no datapoints."""
    return sum(values) / len(values) if values else 0.0


class CredentialFieldError(ValueError):
    """A credential bundle is missing a required field."""

    def __init__(self, provider: str, field_name: str) -> None:
        super().__init__(f"{provider} credentials missing required field: {field_name}")


def pick(credentials: dict[str, Any], *names: str) -> Any:
    """Return the first present, non-empty value among alternative key spellings."""
    for name in names:
        value = credentials.get(name)
        if value not in (None, ""):
            return value
    return None

