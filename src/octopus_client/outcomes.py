"""
Operation outcome types and library exceptions shared by every client component
"""

from enum import Enum
from typing import Dict, Any, Optional, List
from dataclasses import dataclass, field


class OctopusClientError(Exception):
    """Base class for all errors raised by the client library"""
    pass


class LinkResolutionError(OctopusClientError):
    """Raised for unknown relations, malformed templates or missing required parameters"""
    pass


class TransportError(OctopusClientError):
    """Raised by a transport when the request never produced an HTTP response"""
    pass


class PaginationError(OctopusClientError):
    """Raised when a page fetch fails part way through a listing"""

    def __init__(self, outcome: 'Outcome'):
        self.outcome = outcome
        super().__init__(f"Page fetch failed with {outcome.kind.value}: {outcome.message}")


class OutcomeError(OctopusClientError):
    """Raised by Outcome.unwrap() when the outcome is not a success"""

    def __init__(self, outcome: 'Outcome'):
        self.outcome = outcome
        super().__init__(f"{outcome.kind.value}: {outcome.message}")


class OutcomeKind(Enum):
    """Discriminator for the result of a client call"""
    SUCCESS = "success"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    VALIDATION_FAILURE = "validation_failure"
    TRANSIENT_FAILURE = "transient_failure"
    CANCELLED = "cancelled"
    FATAL = "fatal"


class CallState(Enum):
    """Lifecycle of a single repository call"""
    PENDING = "pending"
    RESOLVING_LINK = "resolving_link"
    EXECUTING = "executing"
    RETRYING = "retrying"
    SUCCEEDED = "succeeded"
    FAILED_TERMINAL = "failed_terminal"


@dataclass
class Outcome:
    """Typed result of any client operation"""
    kind: OutcomeKind
    value: Any = None
    status_code: Optional[int] = None
    message: str = ""
    errors: Dict[str, List[str]] = field(default_factory=dict)
    uri: Optional[str] = None
    attempts: int = 1
    retry_after: Optional[float] = None

    @classmethod
    def success(cls, value: Any = None, **kwargs) -> 'Outcome':
        return cls(OutcomeKind.SUCCESS, value=value, **kwargs)

    @classmethod
    def not_found(cls, message: str = "Resource not found", **kwargs) -> 'Outcome':
        return cls(OutcomeKind.NOT_FOUND, message=message, **kwargs)

    @classmethod
    def conflict(cls, message: str = "", **kwargs) -> 'Outcome':
        return cls(OutcomeKind.CONFLICT, message=message, **kwargs)

    @classmethod
    def validation_failure(cls, message: str = "", **kwargs) -> 'Outcome':
        return cls(OutcomeKind.VALIDATION_FAILURE, message=message, **kwargs)

    @classmethod
    def transient_failure(cls, message: str = "", **kwargs) -> 'Outcome':
        return cls(OutcomeKind.TRANSIENT_FAILURE, message=message, **kwargs)

    @classmethod
    def cancelled(cls, message: str = "Operation cancelled", **kwargs) -> 'Outcome':
        return cls(OutcomeKind.CANCELLED, message=message, **kwargs)

    @classmethod
    def fatal(cls, message: str, **kwargs) -> 'Outcome':
        return cls(OutcomeKind.FATAL, message=message, **kwargs)

    @property
    def succeeded(self) -> bool:
        return self.kind is OutcomeKind.SUCCESS

    @property
    def is_transient(self) -> bool:
        return self.kind is OutcomeKind.TRANSIENT_FAILURE

    @property
    def terminal_state(self) -> CallState:
        """Terminal call state this outcome corresponds to"""
        return CallState.SUCCEEDED if self.succeeded else CallState.FAILED_TERMINAL

    def unwrap(self) -> Any:
        """
        Return the success value or raise for any failure kind

        Returns:
            The value carried by a successful outcome

        Raises:
            OutcomeError: If the outcome is not a success
        """
        if not self.succeeded:
            raise OutcomeError(self)
        return self.value
