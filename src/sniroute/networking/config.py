"""Immutable request description consumed by :func:`perform_request`."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping

DEFAULT_TIMEOUT_SECONDS = 30

# RFC 9110 token characters.
_TOKEN_RE = re.compile(r"^[!#$%&'*+\-.^_`|~0-9A-Za-z]+$")


def _default_headers() -> Mapping[str, str]:
    """Return immutable empty default headers mapping."""

    return MappingProxyType({})


@dataclass(frozen=True)
class RequestSpec:
    """A fully specified HTTPS request.

    ``host_path`` is ``host[:port]/path?query`` and identifies the server
    for TLS and the ``Host`` header. ``connect_address`` is the host or IP
    literal the socket is actually opened to; its port is always taken
    from ``host_path`` (443 when omitted). ``ca_bundle`` replaces the
    default trust store when verification is on.
    """

    method: str
    host_path: str
    connect_address: str
    headers: Mapping[str, str] = field(default_factory=_default_headers)
    body: bytes | None = None
    skip_verify: bool = False
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    ca_bundle: str | None = None

    def __post_init__(self) -> None:
        if not self.method or not _TOKEN_RE.match(self.method):
            raise ValueError(f"invalid method {self.method!r}")
        if not self.host_path:
            raise ValueError("host_path must not be empty")
        if not self.connect_address:
            raise ValueError("connect_address must not be empty")
        if self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")

        # Freeze copied headers to avoid post-init mutation side effects.
        object.__setattr__(
            self,
            "headers",
            MappingProxyType(dict(self.headers)),
        )

    @property
    def url(self) -> str:
        return f"https://{self.host_path}"

    @property
    def verify(self) -> bool | str:
        """The ``verify`` argument handed to requests."""
        if self.skip_verify:
            return False
        return self.ca_bundle or True
