"""Route HTTPS requests to an explicit address while keeping SNI and Host."""

import logging

from .networking import (
    ReadResult,
    RequestContext,
    RequestSpec,
    ResponseHandle,
    perform_request,
)

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "ReadResult",
    "RequestContext",
    "RequestSpec",
    "ResponseHandle",
    "perform_request",
]
