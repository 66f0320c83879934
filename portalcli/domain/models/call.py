"""Domain models describing one logical API call and its result.

CallOutcome (Success | Failure) is the only thing that crosses the client's
public boundary; AttemptContext and RetryDecision are internal to the
request pipeline and the backoff controller.
"""

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Generic, List, Optional, TypeVar, Union

from portalcli.domain import exceptions
from .common import RequestId

T = TypeVar("T")


class ErrorKind(str, Enum):
    """Classification of a failed logical call."""
    AUTHENTICATION_REQUIRED = "authentication_required"
    AUTHENTICATION_EXPIRED = "authentication_expired"
    NETWORK_ERROR = "network_error"
    SERVER_ERROR = "server_error"
    CLIENT_ERROR = "client_error"
    RETRY_EXHAUSTED = "retry_exhausted"


_KIND_TO_EXCEPTION = {
    ErrorKind.AUTHENTICATION_REQUIRED: exceptions.AuthenticationRequiredError,
    ErrorKind.AUTHENTICATION_EXPIRED: exceptions.AuthenticationExpiredError,
    ErrorKind.NETWORK_ERROR: exceptions.NetworkError,
    ErrorKind.SERVER_ERROR: exceptions.ServerError,
    ErrorKind.CLIENT_ERROR: exceptions.ClientError,
}


@dataclass
class Success(Generic[T]):
    """A successful call. degraded=True marks a locally substituted payload."""
    payload: T
    status: Optional[int] = None
    degraded: bool = False

    @property
    def ok(self) -> bool:
        return True

    def unwrap(self) -> T:
        return self.payload


@dataclass
class Failure:
    """A failed call, classified by ErrorKind."""
    kind: ErrorKind
    detail: str
    status: Optional[int] = None
    attempts: int = 1

    @property
    def ok(self) -> bool:
        return False

    def to_exception(self) -> exceptions.PortalClientError:
        if self.kind is ErrorKind.RETRY_EXHAUSTED:
            return exceptions.MaxRetryError(self.detail, attempts=self.attempts, status=self.status)
        return _KIND_TO_EXCEPTION[self.kind](self.detail, status=self.status)

    def raise_for_error(self) -> None:
        raise self.to_exception()

    def unwrap(self) -> Any:
        self.raise_for_error()


CallOutcome = Union[Success, Failure]


class _NoMock:
    """Sentinel: no substitute value supplied (None is a legal mock payload)."""

    def __repr__(self) -> str:
        return "NO_MOCK"


NO_MOCK: Any = _NoMock()


@dataclass
class AttemptContext:
    """Per-call state threaded through every retry and refresh attempt.

    Created fresh by the pipeline for each logical call and never shared.
    """
    start_time: float = field(default_factory=time.perf_counter)
    retry_count: int = 0
    request_id: RequestId = field(default_factory=lambda: RequestId(uuid.uuid4().hex[:12]))
    refreshed: bool = False

    def next_retry(self) -> None:
        self.retry_count += 1

    def elapsed_ms(self) -> float:
        return (time.perf_counter() - self.start_time) * 1000


@dataclass(frozen=True)
class RetryDecision:
    """Pure output of the backoff controller."""
    should_retry: bool
    delay_ms: float = 0.0


@dataclass(frozen=True)
class RetryPolicy:
    """Retry budget and base backoff delay."""
    max_retries: int = 3
    base_delay_ms: float = 1000.0

    def __post_init__(self):
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.base_delay_ms < 0:
            raise ValueError("base_delay_ms must be >= 0")


@dataclass(frozen=True)
class AttemptResult:
    """What a single dispatch produced, as seen by the backoff controller.

    Exactly one of status or transport_error is set.
    """
    status: Optional[int] = None
    transport_error: Optional[str] = None

    @property
    def is_transport_error(self) -> bool:
        return self.transport_error is not None

    @property
    def is_unauthorized(self) -> bool:
        return self.status == 401

    @property
    def is_server_error(self) -> bool:
        return self.status is not None and self.status >= 500


@dataclass
class Page(Generic[T]):
    """One page of a paginated listing."""
    items: List[T]
    total_items: int
    total_pages: int
    page: int
    page_size: int

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "Page":
        """Maps either the Spring page shape or the simple data/total shape."""
        if "content" in payload:
            items = list(payload.get("content") or [])
            return cls(
                items=items,
                total_items=_count(payload.get("totalElements"), len(items)),
                total_pages=_count(payload.get("totalPages"), 1),
                page=_count(payload.get("number"), 0),
                page_size=_count(payload.get("size"), len(items)),
            )
        items = list(payload.get("data") or [])
        total = payload.get("total")
        if total is None:
            total = payload.get("totalItems")
        page = payload.get("page")
        if page is None:
            page = payload.get("currentPage")
        return cls(
            items=items,
            total_items=_count(total, len(items)),
            total_pages=_count(payload.get("totalPages"), 1),
            page=_count(page, 0),
            page_size=_count(payload.get("pageSize"), len(items)),
        )


def _count(value: Any, default: int) -> int:
    """Reads a page counter; null or non-numeric values fall back to default."""
    if value is None or isinstance(value, bool):
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default
