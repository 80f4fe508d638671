"""Remote backend API package."""

from expense_capture.services.api.client import SubmissionApiClient
from expense_capture.services.api.errors import (
    ApiConnectionError,
    ApiError,
    ApiTimeoutError,
    FailureClassification,
    FailureKind,
    classify_failure,
)

__all__ = [
    "ApiConnectionError",
    "ApiError",
    "ApiTimeoutError",
    "FailureClassification",
    "FailureKind",
    "SubmissionApiClient",
    "classify_failure",
]
