"""HTTPS requests with a connect address decoupled from the logical host.

:class:`RequestContext` collects request parameters and runs them through
:func:`perform_request`, which opens the socket to ``connect_address``
while TLS and the ``Host`` header keep using the host from ``host_path``.
"""

from __future__ import annotations

import logging
from time import monotonic
from typing import Any

import requests

from .config import DEFAULT_TIMEOUT_SECONDS, RequestSpec
from .deadline import Deadline
from .dialer import DialOverrideAdapter, RedirectingConnectionFactory
from .errors import (
    ConnectionFailedError,
    HttpsSniError,
    RequestConstructionError,
    RequestTimeoutError,
    TlsError,
)
from .response import ResponseHandle
from .types import Err, Ok, Result

logger = logging.getLogger(__name__)

_CONSTRUCTION_ERRORS = (
    requests.exceptions.InvalidURL,
    requests.exceptions.MissingSchema,
    requests.exceptions.InvalidSchema,
    requests.exceptions.InvalidHeader,
    requests.exceptions.URLRequired,
)


def _build_meta(
    spec: RequestSpec,
    response: requests.Response | None,
    elapsed: float | None = None,
    final_error: str | None = None,
) -> dict[str, Any]:
    """Construct metadata dictionary from the request and its outcome."""
    meta: dict[str, Any] = {}
    meta["method"] = spec.method
    meta["url"] = spec.url
    meta["connect_address"] = spec.connect_address
    meta["timeout_s"] = spec.timeout_seconds

    if response is not None:
        meta["status_code"] = response.status_code
        meta["reason"] = response.reason
    if elapsed is not None:
        meta["elapsed_s"] = elapsed
    if final_error is not None:
        meta["final_error"] = final_error

    return meta


def _map_request_exception(
    e: requests.exceptions.RequestException,
) -> HttpsSniError:
    """Map requests exceptions to sniroute errors."""
    if isinstance(e, requests.exceptions.Timeout):
        return RequestTimeoutError(str(e))
    if isinstance(e, requests.exceptions.SSLError):
        return TlsError(str(e))
    if isinstance(e, requests.exceptions.ConnectionError):
        return ConnectionFailedError(str(e))
    if isinstance(e, _CONSTRUCTION_ERRORS):
        return RequestConstructionError(str(e))
    return ConnectionFailedError(str(e))


def _new_session(spec: RequestSpec, deadline: Deadline) -> requests.Session:
    session = requests.Session()
    # Proxies from the environment would bypass the dial override. This
    # also drops REQUESTS_CA_BUNDLE and CURL_CA_BUNDLE; callers wanting a
    # custom trust store pass ca_bundle instead.
    session.trust_env = False
    session.mount(
        "https://",
        DialOverrideAdapter(
            RedirectingConnectionFactory(
                spec.connect_address, on_connect=deadline.track
            )
        ),
    )
    return session


def perform_request(
    spec: RequestSpec,
) -> Result[ResponseHandle, HttpsSniError]:
    """Execute ``spec`` once and return a streaming response handle.

    ``spec.timeout_seconds`` bounds the whole exchange, including body
    reads made through the returned handle. Every failure comes back as
    :class:`~sniroute.networking.types.Err`; nothing is retried and
    redirects are not followed. On success the caller owns the returned
    handle and must close it.
    """
    deadline = Deadline(spec.timeout_seconds)
    session = _new_session(spec, deadline)
    try:
        prepared = session.prepare_request(
            requests.Request(
                method=spec.method,
                url=spec.url,
                headers=dict(spec.headers),
                data=spec.body,
            )
        )
    except ValueError as exc:
        session.close()
        return Err(
            RequestConstructionError(str(exc)),
            meta=_build_meta(spec, None, final_error=type(exc).__name__),
        )

    if spec.skip_verify:
        logger.warning(
            "TLS verification disabled for %s via %s",
            spec.url,
            spec.connect_address,
        )

    started = monotonic()
    deadline.start()
    handed_off = False
    try:
        try:
            response = session.send(
                prepared,
                stream=True,
                timeout=spec.timeout_seconds,
                verify=spec.verify,
                allow_redirects=False,
            )
        except requests.exceptions.RequestException as exc:
            elapsed = monotonic() - started
            logger.debug(
                "%s %s via %s failed after %.3fs: %s",
                spec.method,
                spec.url,
                spec.connect_address,
                elapsed,
                exc,
            )
            if deadline.expired:
                return Err(
                    RequestTimeoutError(f"{deadline.message}: {exc}"),
                    meta=_build_meta(
                        spec,
                        None,
                        elapsed=elapsed,
                        final_error="DeadlineExceeded",
                    ),
                )
            return Err(
                _map_request_exception(exc),
                meta=_build_meta(
                    spec,
                    None,
                    elapsed=elapsed,
                    final_error=type(exc).__name__,
                ),
            )
        except ValueError as exc:
            # http.client rejects malformed request lines and header values.
            return Err(
                RequestConstructionError(str(exc)),
                meta=_build_meta(spec, None, final_error=type(exc).__name__),
            )

        elapsed = monotonic() - started
        if deadline.expired:
            response.close()
            return Err(
                RequestTimeoutError(
                    f"request to {spec.url} via {spec.connect_address} "
                    f"exceeded timeout of {spec.timeout_seconds}s "
                    f"({elapsed:.3f}s)"
                ),
                meta=_build_meta(
                    spec,
                    response,
                    elapsed=elapsed,
                    final_error="DeadlineExceeded",
                ),
            )

        logger.debug(
            "%s %s via %s -> %s in %.3fs",
            spec.method,
            spec.url,
            spec.connect_address,
            response.status_code,
            elapsed,
        )
        handle = ResponseHandle(response, session=session, deadline=deadline)
        handed_off = True
        return Ok(handle, meta=_build_meta(spec, response, elapsed=elapsed))
    finally:
        if not handed_off:
            deadline.cancel()
            session.close()


class RequestContext:
    """Mutable builder for a single HTTPS request.

    Args:
        method: HTTP method. requests upper-cases it, so ``"get"`` is
            sent as ``GET``.
        host_path: ``host[:port]/path?query``; the host is used for SNI,
            certificate checks and the ``Host`` header.
        connect_address: Host or IP literal the socket is opened to. The
            port comes from ``host_path`` (443 by default).

    Do not mutate a context while :meth:`execute` is running. Execution
    never changes the context, so it may be executed repeatedly.
    """

    def __init__(
        self, method: str, host_path: str, connect_address: str
    ) -> None:
        self.method = method
        self.host_path = host_path
        self.connect_address = connect_address
        self.headers: dict[str, str] = {}
        self.body: bytes | None = None
        self.skip_verify = False
        self.timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
        self.ca_bundle: str | None = None

    def set_skip_verify(self, skip: bool) -> None:
        self.skip_verify = skip

    def set_header(self, name: str, value: str) -> None:
        self.headers[name] = value

    def set_body(self, body: bytes | None) -> None:
        self.body = body

    def set_timeout(self, seconds: float) -> None:
        self.timeout_seconds = seconds

    def set_ca_bundle(self, path: str | None) -> None:
        """Verify against the CA certificates in ``path`` instead of certifi."""
        self.ca_bundle = path

    def spec(self) -> RequestSpec:
        """Snapshot the current parameters as an immutable :class:`RequestSpec`.

        Raises:
            ValueError: if the parameters cannot describe a request.
        """
        return RequestSpec(
            method=self.method,
            host_path=self.host_path,
            connect_address=self.connect_address,
            headers=self.headers,
            body=self.body,
            skip_verify=self.skip_verify,
            timeout_seconds=self.timeout_seconds,
            ca_bundle=self.ca_bundle,
        )

    def execute(self) -> Result[ResponseHandle, HttpsSniError]:
        """Perform the request.

        Returns:
            Result containing a :class:`ResponseHandle` on success, or an
            error describing why no response was obtained.
        """
        try:
            spec = self.spec()
        except ValueError as exc:
            return Err(
                RequestConstructionError(str(exc)),
                meta={
                    "method": self.method,
                    "url": f"https://{self.host_path}",
                    "connect_address": self.connect_address,
                    "timeout_s": self.timeout_seconds,
                    "final_error": type(exc).__name__,
                },
            )
        return perform_request(spec)
