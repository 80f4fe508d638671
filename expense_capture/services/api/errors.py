"""
Remote API errors and failure classification.

Every failure of a remote call is mapped to a FailureKind and a message
the host app can show next to the affected expense.
"""

from enum import Enum
from typing import NamedTuple, Optional


class ApiError(Exception):
    """Base exception for remote API calls."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        payload: Optional[dict] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload or {}


class ApiTimeoutError(ApiError):
    """The backend did not answer within the configured timeout."""
    pass


class ApiConnectionError(ApiError):
    """The request never reached the backend (offline, DNS, refused)."""
    pass


class FailureKind(str, Enum):
    AUTH = "auth"
    VALIDATION = "validation"
    NETWORK = "network"
    SERVER = "server"
    UNKNOWN = "unknown"


class FailureClassification(NamedTuple):
    kind: FailureKind
    message: str


AUTH_EXPIRED_MESSAGE = "Erro de autenticação. Faça login novamente."
ACCESS_DENIED_MESSAGE = "Acesso negado. Verifique se você está associado a um grupo."
CONNECTION_MESSAGE = "Erro de conexão. Verifique sua internet."
SERVER_MESSAGE = "Erro no servidor. Tente novamente mais tarde."
DEFAULT_MESSAGE = "Erro ao enviar"


def classify_failure(exc: BaseException) -> FailureClassification:
    """
    Classify a submission failure.

    Auth failures are reported distinctly but are retried like any other
    failure by the queue.
    """
    if isinstance(exc, (ApiTimeoutError, ApiConnectionError)):
        return FailureClassification(FailureKind.NETWORK, CONNECTION_MESSAGE)

    if isinstance(exc, ApiError):
        status = exc.status_code
        detail = exc.message or DEFAULT_MESSAGE
        if status == 401:
            return FailureClassification(FailureKind.AUTH, AUTH_EXPIRED_MESSAGE)
        if status == 403:
            return FailureClassification(FailureKind.AUTH, ACCESS_DENIED_MESSAGE)
        if status in (400, 422):
            return FailureClassification(FailureKind.VALIDATION, f"Dados inválidos: {detail}")
        if status is not None and status >= 500:
            return FailureClassification(FailureKind.SERVER, SERVER_MESSAGE)
        return FailureClassification(FailureKind.UNKNOWN, detail)

    return FailureClassification(FailureKind.UNKNOWN, str(exc) or DEFAULT_MESSAGE)
