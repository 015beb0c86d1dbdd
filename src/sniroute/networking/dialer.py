"""Connection-step override for the requests/urllib3 transport.

urllib3 opens a socket to the host and port found in the request URL and
then runs the TLS handshake against that same host. The classes here keep
the handshake and the ``Host`` header tied to the URL while handing the
socket creation to a :class:`ConnectionFactory`, which is free to dial
somewhere else.
"""

from __future__ import annotations

import logging
import socket
from functools import partial
from socket import timeout as SocketTimeout
from typing import Any, Callable, Protocol, Sequence, Tuple

from requests.adapters import HTTPAdapter
from urllib3.connection import HTTPSConnection
from urllib3.connectionpool import HTTPConnectionPool, HTTPSConnectionPool
from urllib3.exceptions import (
    ConnectTimeoutError,
    NameResolutionError,
    NewConnectionError,
)
from urllib3.util.connection import create_connection

logger = logging.getLogger(__name__)

Address = Tuple[str, int]
SocketOptions = Sequence[Tuple[int, int, Any]]


class ConnectionFactory(Protocol):
    """Opens the transport socket for a connection the stack wants to make."""

    def dial(
        self,
        address: Address,
        timeout: float | None,
        source_address: Address | None = None,
        socket_options: SocketOptions | None = None,
    ) -> socket.socket: ...


class RedirectingConnectionFactory:
    """Dial ``connect_address`` on whatever port the stack asked for.

    The host half of the requested address is ignored. ``on_connect`` is
    called with every socket the factory opens.
    """

    def __init__(
        self,
        connect_address: str,
        on_connect: Callable[[socket.socket], None] | None = None,
    ) -> None:
        # Accept bracketed IPv6 literals as well as bare ones.
        self.connect_address = connect_address.strip("[]")
        self.on_connect = on_connect

    def target(self, address: Address) -> Address:
        _, port = address
        return (self.connect_address, port)

    def dial(
        self,
        address: Address,
        timeout: float | None,
        source_address: Address | None = None,
        socket_options: SocketOptions | None = None,
    ) -> socket.socket:
        target = self.target(address)
        logger.debug(
            "Dialing %s:%s in place of %s:%s",
            target[0],
            target[1],
            address[0],
            address[1],
        )
        sock = create_connection(
            target,
            timeout,
            source_address=source_address,
            socket_options=socket_options,
        )
        if self.on_connect is not None:
            self.on_connect(sock)
        return sock


class RedirectedHTTPSConnection(HTTPSConnection):
    """HTTPS connection whose socket comes from a connection factory.

    ``self.host`` is untouched so SNI, certificate hostname checks and the
    ``Host`` header still use the logical host.
    """

    def __init__(
        self,
        *args: Any,
        connection_factory: ConnectionFactory,
        **kwargs: Any,
    ) -> None:
        self.connection_factory = connection_factory
        super().__init__(*args, **kwargs)

    def _new_conn(self) -> socket.socket:
        try:
            return self.connection_factory.dial(
                (self.host, self.port),
                self.timeout,
                source_address=self.source_address,
                socket_options=self.socket_options,
            )
        except socket.gaierror as e:
            raise NameResolutionError(self.host, self, e) from e
        except SocketTimeout as e:
            raise ConnectTimeoutError(
                self,
                f"Connection to {self.host} timed out. "
                f"(connect timeout={self.timeout})",
            ) from e
        except OSError as e:
            raise NewConnectionError(
                self, f"Failed to establish a new connection: {e}"
            ) from e


class RedirectedHTTPSConnectionPool(HTTPSConnectionPool):
    """Pool that builds :class:`RedirectedHTTPSConnection` instances."""

    ConnectionCls = RedirectedHTTPSConnection

    def __init__(
        self,
        host: str,
        port: int | None = None,
        *args: Any,
        connection_factory: ConnectionFactory,
        **kwargs: Any,
    ) -> None:
        super().__init__(host, port, *args, **kwargs)
        self.conn_kw["connection_factory"] = connection_factory


class DialOverrideAdapter(HTTPAdapter):
    """requests adapter routing every HTTPS socket through a factory.

    Mount it on ``https://`` of a session. Plain HTTP pools are left as
    urllib3 builds them.
    """

    def __init__(
        self, connection_factory: ConnectionFactory, **kwargs: Any
    ) -> None:
        # Must exist before HTTPAdapter.__init__ calls init_poolmanager.
        self.connection_factory = connection_factory
        super().__init__(**kwargs)

    def init_poolmanager(
        self,
        connections: int,
        maxsize: int,
        block: bool = False,
        **pool_kwargs: Any,
    ) -> None:
        super().init_poolmanager(
            connections, maxsize, block=block, **pool_kwargs
        )
        # PoolManager shares its default mapping module-wide; replace it.
        self.poolmanager.pool_classes_by_scheme = {
            "http": HTTPConnectionPool,
            "https": partial(
                RedirectedHTTPSConnectionPool,
                connection_factory=self.connection_factory,
            ),
        }
