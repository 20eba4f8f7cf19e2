"""
Outcome Types

Tagged result values shared by every component:
- ErrorKind: failure taxonomy
- StepOutcome: result of a chain operation or workflow step
- Envelope: normalized HTTP response from the web client
- ConfigFailure: the only exception raised by the engine
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(str, Enum):
    """Failure taxonomy"""
    CONNECT_FAILURE = "CONNECT_FAILURE"
    AUTH_FAILURE = "AUTH_FAILURE"
    CHAIN_FAILURE = "CHAIN_FAILURE"
    RECORD_FAILURE = "RECORD_FAILURE"
    UPDATE_FAILURE = "UPDATE_FAILURE"
    CONFIG_FAILURE = "CONFIG_FAILURE"

    # Network client failures
    NO_RESPONSE = "NO_RESPONSE"
    REQUEST_SETUP_ERROR = "REQUEST_SETUP_ERROR"
    HTTP_ERROR = "HTTP_ERROR"

    UNEXPECTED = "UNEXPECTED"


class ConfigFailure(Exception):
    """Missing or invalid configuration (credential file, proxy string, YAML)"""


@dataclass(frozen=True)
class StepOutcome:
    """
    Result of one operation: either ok(data) or fail(kind, message)

    Never raised; callers branch on `success`.
    """
    success: bool
    data: Any = None
    error_kind: Optional[ErrorKind] = None
    message: Optional[str] = None
    status: Optional[int] = None

    @classmethod
    def ok(cls, data: Any = None) -> 'StepOutcome':
        return cls(success=True, data=data)

    @classmethod
    def fail(
        cls,
        kind: ErrorKind,
        message: str,
        status: Optional[int] = None,
        data: Any = None
    ) -> 'StepOutcome':
        return cls(success=False, data=data, error_kind=kind, message=message, status=status)

    def __repr__(self):
        if self.success:
            return f"StepOutcome(ok: {self.data!r})"
        return f"StepOutcome(fail {self.error_kind.value}: {self.message})"


@dataclass
class Envelope:
    """Normalized HTTP response"""
    success: bool
    data: Any = None
    status: Optional[int] = None
    headers: Dict[str, str] = field(default_factory=dict)
    message: Optional[str] = None
    error_kind: Optional[ErrorKind] = None

    def describe_error(self) -> str:
        """Human readable failure, e.g. '[status: 500] Internal Server Error'"""
        if self.success:
            return ""
        status = self.status if self.status is not None else "N/A"
        text = self.message or "unknown error"
        if self.error_kind is ErrorKind.HTTP_ERROR and self.data:
            return f"[status: {status}] {text}: {self.data}"
        return f"[status: {status}] {text}"

    def to_outcome(self, kind: ErrorKind, context: str) -> StepOutcome:
        """
        Convert to a StepOutcome, tagging failures with a workflow error kind

        Args:
            kind: Error kind to use when the request failed
            context: Prefix for the failure message (e.g. 'nonce retrieval failed')

        Returns:
            StepOutcome carrying the response data or the failure
        """
        if self.success:
            return StepOutcome.ok(self.data)
        return StepOutcome.fail(
            kind,
            f"{context}: {self.describe_error()}",
            status=self.status,
            data=self.data
        )
