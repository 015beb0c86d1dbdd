# pyright: reportUnknownParameterType=false, reportUnknownMemberType=false
import datetime
import io
import socket
import ssl
import threading
import time
from typing import NamedTuple

import pytest
import requests
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID
from requests.structures import CaseInsensitiveDict
from urllib3 import HTTPHeaderDict, HTTPResponse


def make_response(
    *,
    body: bytes = b"",
    status: int = 200,
    reason: str = "OK",
    headers=(),
    version: int = 11,
    url: str = "https://example.com/",
) -> requests.Response:
    """Build a requests.Response backed by a real, unread urllib3 body."""
    header_dict = HTTPHeaderDict()
    for name, value in headers:
        header_dict.add(name, value)
    raw = HTTPResponse(
        body=io.BytesIO(body),
        headers=header_dict,
        status=status,
        reason=reason,
        version=version,
        preload_content=False,
    )
    response = requests.Response()
    response.status_code = status
    response.reason = reason
    response.raw = raw
    response.headers = CaseInsensitiveDict(raw.headers)
    response.url = url
    return response


@pytest.fixture
def response_factory():
    return make_response


def _issue_certificates(directory, hostname):
    """Write a throwaway CA and a server certificate for ``hostname``."""
    now = datetime.datetime.now(datetime.timezone.utc)
    validity = datetime.timedelta(days=1)

    ca_key = ec.generate_private_key(ec.SECP256R1())
    ca_name = x509.Name(
        [x509.NameAttribute(NameOID.COMMON_NAME, "sniroute test CA")]
    )
    ca_cert = (
        x509.CertificateBuilder()
        .subject_name(ca_name)
        .issuer_name(ca_name)
        .public_key(ca_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - validity)
        .not_valid_after(now + validity)
        .add_extension(
            x509.BasicConstraints(ca=True, path_length=None), critical=True
        )
        .add_extension(
            x509.KeyUsage(
                digital_signature=True,
                content_commitment=False,
                key_encipherment=False,
                data_encipherment=False,
                key_agreement=False,
                key_cert_sign=True,
                crl_sign=True,
                encipher_only=False,
                decipher_only=False,
            ),
            critical=True,
        )
        .add_extension(
            x509.SubjectKeyIdentifier.from_public_key(ca_key.public_key()),
            critical=False,
        )
        .sign(ca_key, hashes.SHA256())
    )

    server_key = ec.generate_private_key(ec.SECP256R1())
    server_cert = (
        x509.CertificateBuilder()
        .subject_name(
            x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, hostname)])
        )
        .issuer_name(ca_name)
        .public_key(server_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - validity)
        .not_valid_after(now + validity)
        .add_extension(
            x509.SubjectAlternativeName([x509.DNSName(hostname)]),
            critical=False,
        )
        .add_extension(
            x509.BasicConstraints(ca=False, path_length=None), critical=True
        )
        .add_extension(
            x509.KeyUsage(
                digital_signature=True,
                content_commitment=False,
                key_encipherment=False,
                data_encipherment=False,
                key_agreement=False,
                key_cert_sign=False,
                crl_sign=False,
                encipher_only=False,
                decipher_only=False,
            ),
            critical=True,
        )
        .add_extension(
            x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH]),
            critical=False,
        )
        .add_extension(
            x509.SubjectKeyIdentifier.from_public_key(server_key.public_key()),
            critical=False,
        )
        .add_extension(
            x509.AuthorityKeyIdentifier.from_issuer_public_key(
                ca_key.public_key()
            ),
            critical=False,
        )
        .sign(ca_key, hashes.SHA256())
    )

    ca_path = directory / "ca.pem"
    cert_path = directory / "server.pem"
    key_path = directory / "server.key"
    ca_path.write_bytes(ca_cert.public_bytes(serialization.Encoding.PEM))
    cert_path.write_bytes(server_cert.public_bytes(serialization.Encoding.PEM))
    key_path.write_bytes(
        server_key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption(),
        )
    )
    return TLSFiles(ca=str(ca_path), cert=str(cert_path), key=str(key_path))


class TLSFiles(NamedTuple):
    ca: str
    cert: str
    key: str


def respond_ok(body=b"hello", content_type=b"text/plain"):
    """Responder sending a complete response in one write."""

    def responder(tls):
        tls.sendall(
            b"HTTP/1.1 200 OK\r\n"
            b"Content-Type: " + content_type + b"\r\n"
            b"Content-Length: " + str(len(body)).encode() + b"\r\n"
            b"Connection: close\r\n\r\n" + body
        )

    return responder


def respond_trickling_headers(interval, lines):
    """Responder sending one header line every ``interval`` seconds."""

    def responder(tls):
        tls.sendall(b"HTTP/1.1 200 OK\r\n")
        for i in range(lines):
            time.sleep(interval)
            tls.sendall(b"X-Slow-%d: 1\r\n" % i)
        tls.sendall(b"Content-Length: 0\r\nConnection: close\r\n\r\n")

    return responder


def respond_trickling_body(interval, size):
    """Responder sending headers at once, then one body byte per interval."""

    def responder(tls):
        tls.sendall(
            b"HTTP/1.1 200 OK\r\n"
            b"Content-Length: " + str(size).encode() + b"\r\n"
            b"Connection: close\r\n\r\n"
        )
        for _ in range(size):
            time.sleep(interval)
            tls.sendall(b"x")

    return responder


class RecordingTLSServer:
    """TLS server on 127.0.0.1 that records SNI names and request heads."""

    def __init__(self, files, responder):
        self.context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
        self.context.load_cert_chain(files.cert, files.key)
        self.context.sni_callback = self._record_sni
        self.responder = responder
        self.server_names = []
        self.requests = []
        self._listener = socket.create_server(("127.0.0.1", 0))
        self._listener.settimeout(0.1)
        self.port = self._listener.getsockname()[1]
        self._stopping = threading.Event()
        self._thread = threading.Thread(target=self._serve, daemon=True)
        self._thread.start()

    def _record_sni(self, ssl_socket, server_name, context):
        self.server_names.append(server_name)

    def _serve(self):
        while not self._stopping.is_set():
            try:
                conn, _ = self._listener.accept()
            except socket.timeout:
                continue
            except OSError:
                return
            threading.Thread(
                target=self._handle, args=(conn,), daemon=True
            ).start()

    def _handle(self, conn):
        try:
            with self.context.wrap_socket(conn, server_side=True) as tls:
                head = b""
                while b"\r\n\r\n" not in head:
                    chunk = tls.recv(4096)
                    if not chunk:
                        return
                    head += chunk
                self.requests.append(head)
                self.responder(tls)
        except OSError:
            # Client rejected the certificate or hung up mid-response.
            return
        finally:
            conn.close()

    def close(self):
        self._stopping.set()
        self._thread.join(timeout=2)
        self._listener.close()


@pytest.fixture(scope="session")
def tls_files(tmp_path_factory):
    return _issue_certificates(tmp_path_factory.mktemp("tls"), "logical.test")


@pytest.fixture
def tls_server(tls_files):
    servers = []

    def start(responder=None):
        server = RecordingTLSServer(tls_files, responder or respond_ok())
        servers.append(server)
        return server

    yield start
    for server in servers:
        server.close()
