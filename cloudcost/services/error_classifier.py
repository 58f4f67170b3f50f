"""Classification of check-unit failures.

Each provider SDK reports errors in its own shape. An adapter per SDK pulls
out a uniform ErrorSignature, then a single rule decides whether the error is
a permission denial. Errors are classified once, at the check boundary, into
PermissionDenied, TransientFailure or FatalFailure.
"""

import asyncio
import re
from dataclasses import dataclass
from typing import Callable

from azure.core.exceptions import (
    HttpResponseError,
    ServiceRequestError,
    ServiceResponseError,
)
from botocore.exceptions import (
    ClientError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)
from google.api_core import exceptions as google_exceptions

PERMISSION_ERROR_CODES = frozenset(
    {
        "AccessDeniedException",
        "UnauthorizedOperation",
        "AccessDenied",
        "UnauthorizedAccess",
        "Forbidden",
    }
)

# Case-sensitive, checked in order
PERMISSION_MESSAGE_PHRASES = (
    "Permission denied",
    "API not enabled",
    "permission",
    "PERMISSION_DENIED",
)

MISSING_CAPABILITY_PATTERN = re.compile(r"perform: ([a-zA-Z0-9:]+)")

TRANSIENT_ERRORS: tuple[type[BaseException], ...] = (
    TimeoutError,
    asyncio.TimeoutError,
    ConnectionError,
    EndpointConnectionError,
    ConnectTimeoutError,
    ReadTimeoutError,
    ServiceRequestError,
    ServiceResponseError,
    google_exceptions.ServiceUnavailable,
    google_exceptions.DeadlineExceeded,
)


@dataclass(frozen=True)
class ErrorSignature:
    """Provider-independent view of an error."""

    code: str | None
    status_code: int | None
    message: str


@dataclass(frozen=True)
class PermissionDenied:
    """The credential lacks access to what the check needs."""

    cause: BaseException
    missing_capability: str | None = None


@dataclass(frozen=True)
class TransientFailure:
    """Timeouts and connection-level errors."""

    cause: BaseException


@dataclass(frozen=True)
class FatalFailure:
    """Any other error, likely a defect or an unexpected API response."""

    cause: BaseException


CheckFailure = PermissionDenied | TransientFailure | FatalFailure


def _as_int(value: object) -> int | None:
    try:
        return int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return None


def aws_signature(error: ClientError) -> ErrorSignature:
    """Signature of a botocore ClientError."""
    response = error.response or {}
    return ErrorSignature(
        code=response.get("Error", {}).get("Code") or type(error).__name__,
        status_code=_as_int(response.get("ResponseMetadata", {}).get("HTTPStatusCode")),
        message=str(error),
    )


def azure_signature(error: HttpResponseError) -> ErrorSignature:
    """Signature of an azure-core HttpResponseError."""
    code = getattr(getattr(error, "error", None), "code", None)
    return ErrorSignature(
        code=code or type(error).__name__,
        status_code=_as_int(error.status_code),
        message=str(error),
    )


def google_signature(error: google_exceptions.GoogleAPICallError) -> ErrorSignature:
    """Signature of a google-api-core GoogleAPICallError."""
    return ErrorSignature(
        code=getattr(error, "reason", None) or type(error).__name__,
        status_code=_as_int(error.code),
        message=str(error),
    )


def generic_signature(error: BaseException) -> ErrorSignature:
    """Signature of any other exception: its code attribute, else its class name."""
    code = getattr(error, "code", None)
    status = getattr(error, "status_code", None)
    if status is None:
        status = getattr(error, "status", None)
    return ErrorSignature(
        code=code if isinstance(code, str) and code else type(error).__name__,
        status_code=_as_int(status),
        message=str(error),
    )


ADAPTERS: tuple[tuple[type[BaseException], Callable[..., ErrorSignature]], ...] = (
    (ClientError, aws_signature),
    (HttpResponseError, azure_signature),
    (google_exceptions.GoogleAPICallError, google_signature),
)


def extract_signature(error: BaseException) -> ErrorSignature:
    """Pick the adapter matching the error's SDK."""
    for error_type, adapter in ADAPTERS:
        if isinstance(error, error_type):
            return adapter(error)
    return generic_signature(error)


def is_permission_error(signature: ErrorSignature) -> bool:
    """
    Decide whether an error is a permission or authorization denial.

    First match wins: a known denial code, then HTTP 403, then a
    case-sensitive denial phrase in the message.
    """
    if signature.code in PERMISSION_ERROR_CODES:
        return True
    if signature.status_code == 403:
        return True
    return any(phrase in signature.message for phrase in PERMISSION_MESSAGE_PHRASES)


def extract_missing_capability(message: str) -> str | None:
    """Pull the denied action (e.g. ec2:DescribeInstances) out of an error message."""
    match = MISSING_CAPABILITY_PATTERN.search(message)
    return match.group(1) if match else None


def classify(error: BaseException) -> CheckFailure:
    """Classify a check failure into its tagged variant."""
    signature = extract_signature(error)
    if is_permission_error(signature):
        return PermissionDenied(
            cause=error,
            missing_capability=extract_missing_capability(signature.message),
        )
    if isinstance(error, TRANSIENT_ERRORS):
        return TransientFailure(cause=error)
    return FatalFailure(cause=error)
