"""Tests for check failure classification."""

import asyncio
from types import SimpleNamespace

import pytest
from azure.core.exceptions import HttpResponseError, ServiceRequestError
from botocore.exceptions import ClientError, EndpointConnectionError
from google.api_core import exceptions as google_exceptions

from cloudcost.services.error_classifier import (
    ErrorSignature,
    FatalFailure,
    PermissionDenied,
    TransientFailure,
    classify,
    extract_missing_capability,
    extract_signature,
    is_permission_error,
)


def aws_error(code: str, message: str, status: int = 400) -> ClientError:
    return ClientError(
        {
            "Error": {"Code": code, "Message": message},
            "ResponseMetadata": {"HTTPStatusCode": status},
        },
        "DescribeInstances",
    )


class TestPermissionRule:
    """Test the single permission-denial rule."""

    @pytest.mark.parametrize(
        "code",
        [
            "AccessDeniedException",
            "UnauthorizedOperation",
            "AccessDenied",
            "UnauthorizedAccess",
            "Forbidden",
        ],
    )
    def test_known_codes(self, code: str):
        """Test that every known denial code matches regardless of status or message."""
        assert is_permission_error(ErrorSignature(code=code, status_code=500, message="x"))

    def test_status_403(self):
        """Test that HTTP 403 matches with an unknown code."""
        assert is_permission_error(
            ErrorSignature(code="AuthorizationFailed", status_code=403, message="nope")
        )

    @pytest.mark.parametrize(
        "message",
        [
            "Permission denied on resource project demo",
            "Compute Engine API not enabled for project",
            "caller does not have permission",
            "status: PERMISSION_DENIED",
        ],
    )
    def test_message_phrases(self, message: str):
        """Test that known denial phrases match."""
        assert is_permission_error(ErrorSignature(code="Other", status_code=None, message=message))

    def test_phrases_are_case_sensitive(self):
        """Test that phrase matching does not ignore case."""
        assert not is_permission_error(
            ErrorSignature(code="Other", status_code=400, message="Permission Denied")
        )

    def test_unrelated_error(self):
        """Test that an ordinary error is not a denial."""
        assert not is_permission_error(
            ErrorSignature(code="Throttling", status_code=400, message="Rate exceeded")
        )


class TestMissingCapability:
    """Test extraction of the denied action."""

    def test_extracts_action(self):
        """Test that the action following 'perform: ' is returned."""
        message = (
            "User: arn:aws:iam::123456789012:user/scanner is not authorized to "
            "perform: ec2:DescribeInstances because no identity-based policy allows it"
        )

        assert extract_missing_capability(message) == "ec2:DescribeInstances"

    def test_no_action(self):
        """Test that None is returned when no action is named."""
        assert extract_missing_capability("Access Denied") is None


class TestSignatureAdapters:
    """Test per-SDK signature extraction."""

    def test_aws_client_error(self):
        """Test code and status come from the botocore response."""
        signature = extract_signature(aws_error("UnauthorizedOperation", "denied", 403))

        assert signature.code == "UnauthorizedOperation"
        assert signature.status_code == 403
        assert "denied" in signature.message

    def test_azure_http_response_error(self):
        """Test code and status come from the azure-core error."""
        error = HttpResponseError(message="The client does not have authorization")
        error.status_code = 403
        error.error = SimpleNamespace(code="AuthorizationFailed")

        signature = extract_signature(error)

        assert signature.code == "AuthorizationFailed"
        assert signature.status_code == 403

    def test_google_api_error(self):
        """Test status comes from the google-api-core error code."""
        signature = extract_signature(google_exceptions.Forbidden("Required permission"))

        assert signature.status_code == 403

    def test_generic_error_uses_class_name(self):
        """Test that plain exceptions fall back to their class name."""
        signature = extract_signature(RuntimeError("boom"))

        assert signature.code == "RuntimeError"
        assert signature.status_code is None
        assert signature.message == "boom"

    def test_generic_error_code_attribute(self):
        """Test that a string code attribute is used when present."""
        error = RuntimeError("no")
        error.code = "AccessDenied"

        assert extract_signature(error).code == "AccessDenied"


class TestClassify:
    """Test classification into PermissionDenied, TransientFailure and FatalFailure."""

    def test_aws_permission_denied(self):
        """Test an AWS authorization failure with a named action."""
        error = aws_error(
            "UnauthorizedOperation",
            "You are not authorized to perform: ec2:DescribeInstances",
            403,
        )

        failure = classify(error)

        assert isinstance(failure, PermissionDenied)
        assert failure.missing_capability == "ec2:DescribeInstances"
        assert failure.cause is error

    def test_azure_forbidden(self):
        """Test that an Azure 403 is a permission denial without a named action."""
        error = HttpResponseError(message="does not have authorization to perform action")
        error.status_code = 403

        failure = classify(error)

        assert isinstance(failure, PermissionDenied)
        assert failure.missing_capability is None

    def test_google_api_not_enabled(self):
        """Test that a disabled GCP API is a permission denial."""
        error = google_exceptions.BadRequest("Cloud Monitoring API not enabled for project")

        assert isinstance(classify(error), PermissionDenied)

    @pytest.mark.parametrize(
        "error",
        [
            asyncio.TimeoutError(),
            ConnectionError("connection reset"),
            EndpointConnectionError(endpoint_url="https://ec2.us-east-1.amazonaws.com"),
            ServiceRequestError("connection aborted"),
            google_exceptions.ServiceUnavailable("backend unavailable"),
        ],
    )
    def test_transient(self, error: BaseException):
        """Test that timeouts and connection failures are transient."""
        assert isinstance(classify(error), TransientFailure)

    @pytest.mark.parametrize(
        "error",
        [
            KeyError("Reservations"),
            ValueError("bad datapoint"),
            aws_error("Throttling", "Rate exceeded"),
        ],
    )
    def test_fatal(self, error: BaseException):
        """Test that other errors are fatal."""
        assert isinstance(classify(error), FatalFailure)

    def test_permission_wins_over_transient(self):
        """Test that a connection error mentioning permission is a denial."""
        assert isinstance(classify(ConnectionError("Permission denied")), PermissionDenied)
