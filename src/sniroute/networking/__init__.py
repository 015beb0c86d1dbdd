"""Networking layer: request execution and response streaming."""

from .client import RequestContext, perform_request
from .config import DEFAULT_TIMEOUT_SECONDS, RequestSpec
from .deadline import Deadline
from .dialer import (
    ConnectionFactory,
    DialOverrideAdapter,
    RedirectingConnectionFactory,
)
from .errors import (
    ConnectionFailedError,
    HttpsSniError,
    RequestConstructionError,
    RequestTimeoutError,
    TlsError,
)
from .response import END_OF_STREAM, ReadResult, ResponseHandle
from .types import Err, Ok, Result

__all__ = [
    "DEFAULT_TIMEOUT_SECONDS",
    "END_OF_STREAM",
    "ConnectionFactory",
    "ConnectionFailedError",
    "Deadline",
    "DialOverrideAdapter",
    "Err",
    "HttpsSniError",
    "Ok",
    "ReadResult",
    "RedirectingConnectionFactory",
    "RequestConstructionError",
    "RequestContext",
    "RequestSpec",
    "RequestTimeoutError",
    "ResponseHandle",
    "Result",
    "TlsError",
    "perform_request",
]
