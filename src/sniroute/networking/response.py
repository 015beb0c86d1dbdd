"""Streaming view over a completed HTTPS response."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from types import MappingProxyType, TracebackType
from typing import Callable, Mapping

import requests
from requests.structures import CaseInsensitiveDict
from urllib3.exceptions import HTTPError as Urllib3HTTPError
from urllib3.response import HTTPResponse

from .deadline import Deadline

logger = logging.getLogger(__name__)

END_OF_STREAM = "EOF"
READ_AFTER_CLOSE = "read on closed response body"

UNKNOWN_LENGTH = -1

_PROTOCOLS = {
    9: "HTTP/0.9",
    10: "HTTP/1.0",
    11: "HTTP/1.1",
    20: "HTTP/2.0",
}

HeaderVisitor = Callable[[str, str], bool]


@dataclass(frozen=True)
class ReadResult:
    """Outcome of a single :meth:`ResponseHandle.read` call.

    ``data`` and ``error`` may both be set: the last chunk of a body is
    returned together with :data:`END_OF_STREAM`.
    """

    data: bytes
    size: int
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def eof(self) -> bool:
        return self.error == END_OF_STREAM


def _first_values(response: requests.Response) -> CaseInsensitiveDict[str]:
    """Collapse the response headers to one value per name.

    When a name repeats, the first value received wins.
    """
    headers: CaseInsensitiveDict[str] = CaseInsensitiveDict()
    raw_headers = getattr(response.raw, "headers", None)
    if raw_headers is not None and hasattr(raw_headers, "getlist"):
        for name in raw_headers:
            values = raw_headers.getlist(name)
            if values:
                headers[name] = values[0]
        return headers
    for name, value in response.headers.items():
        headers[name] = value
    return headers


def _protocol(response: requests.Response) -> str:
    version = getattr(response.raw, "version", None)
    return _PROTOCOLS.get(version, "HTTP/1.1")


def _is_decoded(content_encoding: str) -> bool:
    """True when urllib3 will decode a body sent with this encoding.

    The decoder list depends on which optional codecs are installed.
    """
    decoders = HTTPResponse.CONTENT_DECODERS
    encodings = [e.strip() for e in content_encoding.lower().split(",")]
    return any(e in decoders for e in encodings)


def _content_length(headers: Mapping[str, str]) -> int:
    # A decoded body no longer matches the wire length.
    if _is_decoded(headers.get("Content-Encoding", "")):
        return UNKNOWN_LENGTH
    try:
        length = int(headers.get("Content-Length", ""))
    except ValueError:
        return UNKNOWN_LENGTH
    return length if length >= 0 else UNKNOWN_LENGTH


class ResponseHandle:
    """A live response whose body is read on demand.

    The handle owns the underlying connection until :meth:`close` is
    called. Nothing closes it implicitly; use it as a context manager or
    call :meth:`close` yourself. Reads are not synchronized.

    When a ``deadline`` is given, reads fail once it has passed and
    :meth:`close` stops it.
    """

    def __init__(
        self,
        response: requests.Response,
        session: requests.Session | None = None,
        deadline: Deadline | None = None,
    ) -> None:
        self._response = response
        self._session = session
        self._deadline = deadline
        self._exhausted = False
        self._closed = False

        self.status_code: int = response.status_code
        self.reason: str = response.reason or ""
        self.protocol: str = _protocol(response)
        self._headers = _first_values(response)
        self.content_length: int = _content_length(self._headers)

    def __repr__(self) -> str:
        return f"<ResponseHandle [{self.status_code}]>"

    def __enter__(self) -> ResponseHandle:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    @property
    def headers(self) -> Mapping[str, str]:
        return MappingProxyType(dict(self._headers.items()))

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def exhausted(self) -> bool:
        return self._exhausted

    def _deadline_error(self) -> str | None:
        if self._deadline is not None and self._deadline.expired:
            return self._deadline.message
        return None

    def get_header(self, name: str) -> str:
        """Return the header value, or ``""`` when the header is absent."""
        return self._headers.get(name, "")

    def for_each_header(self, visitor: HeaderVisitor) -> None:
        """Call ``visitor(name, value)`` per header until it returns falsy.

        Order is unspecified.
        """
        for name, value in list(self._headers.items()):
            if not visitor(name, value):
                break

    def read(self, max_size: int) -> ReadResult:
        """Read up to ``max_size`` bytes of the body.

        A short read means the body ended, so it is returned with
        :data:`END_OF_STREAM`. Errors are reported in the result, never
        raised.
        """
        if self._closed:
            return ReadResult(b"", 0, READ_AFTER_CLOSE)
        if max_size < 0:
            return ReadResult(b"", 0, f"invalid read size {max_size}")
        if self._exhausted:
            return ReadResult(b"", 0, END_OF_STREAM)
        expired = self._deadline_error()
        if expired:
            return ReadResult(b"", 0, expired)
        if max_size == 0:
            return ReadResult(b"", 0)

        try:
            data = self._response.raw.read(max_size, decode_content=True)
        except (Urllib3HTTPError, OSError, ValueError) as exc:
            logger.debug("Body read failed: %s", exc)
            message = self._deadline_error() or str(exc) or type(exc).__name__
            return ReadResult(b"", 0, message)

        data = data or b""
        if len(data) < max_size:
            # A connection cut by the deadline looks like a short body.
            expired = self._deadline_error()
            if expired:
                return ReadResult(data, len(data), expired)
            self._exhausted = True
            return ReadResult(data, len(data), END_OF_STREAM)
        return ReadResult(data, len(data))

    def close(self) -> bool:
        """Release the connection. Returns False if closing failed."""
        if self._closed:
            return True
        self._closed = True
        if self._deadline is not None:
            self._deadline.cancel()
        ok = True
        try:
            self._response.close()
        except (Urllib3HTTPError, OSError) as exc:
            logger.warning("Failed to close response body: %s", exc)
            ok = False
        if self._session is not None:
            try:
                self._session.close()
            except (Urllib3HTTPError, OSError) as exc:
                logger.warning("Failed to close session: %s", exc)
                ok = False
        return ok
