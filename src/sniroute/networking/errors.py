"""Error taxonomy for request execution."""


class HttpsSniError(Exception):
    """Base class for failures surfaced by ``execute()``."""


class RequestConstructionError(HttpsSniError):
    """The request could not be built; nothing was sent."""


class ConnectionFailedError(HttpsSniError):
    """DNS, connect or protocol failure talking to the connect address."""


class TlsError(ConnectionFailedError):
    """TLS handshake or certificate verification failed."""


class RequestTimeoutError(HttpsSniError):
    """The request did not complete within its timeout."""
