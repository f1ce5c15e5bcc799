"""Shared fixtures: throwaway TLS material and local oracle servers."""

import asyncio
import contextlib
import datetime
import ipaddress
import ssl
import struct

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from reflectip.stun import STUN_ATTR_MAPPED_ADDRESS, STUN_BINDING_RESPONSE, STUN_MAGIC_COOKIE


def _write_pem(path, data):
    path.write_bytes(data)
    return str(path)


@pytest.fixture(scope="session")
def tls_material(tmp_path_factory):
    """A private CA and a server certificate valid for 127.0.0.1 and localhost."""
    directory = tmp_path_factory.mktemp("tls")
    now = datetime.datetime.now(datetime.timezone.utc)

    ca_key = ec.generate_private_key(ec.SECP256R1())
    ca_name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "reflectip test CA")])
    ca_cert = (
        x509.CertificateBuilder()
        .subject_name(ca_name)
        .issuer_name(ca_name)
        .public_key(ca_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(days=1))
        .not_valid_after(now + datetime.timedelta(days=1))
        .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
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
        .add_extension(x509.SubjectKeyIdentifier.from_public_key(ca_key.public_key()), critical=False)
        .sign(ca_key, hashes.SHA256())
    )

    server_key = ec.generate_private_key(ec.SECP256R1())
    server_cert = (
        x509.CertificateBuilder()
        .subject_name(x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "localhost")]))
        .issuer_name(ca_name)
        .public_key(server_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(days=1))
        .not_valid_after(now + datetime.timedelta(days=1))
        .add_extension(
            x509.SubjectAlternativeName(
                [x509.DNSName("localhost"), x509.IPAddress(ipaddress.ip_address("127.0.0.1"))]
            ),
            critical=False,
        )
        .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
        .add_extension(x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH]), critical=False)
        .add_extension(x509.AuthorityKeyIdentifier.from_issuer_public_key(ca_key.public_key()), critical=False)
        .sign(ca_key, hashes.SHA256())
    )

    ca_file = _write_pem(directory / "ca.pem", ca_cert.public_bytes(serialization.Encoding.PEM))
    cert_file = _write_pem(directory / "server.pem", server_cert.public_bytes(serialization.Encoding.PEM))
    key_file = _write_pem(
        directory / "server.key",
        server_key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption(),
        ),
    )
    return {"ca": ca_file, "cert": cert_file, "key": key_file}


@pytest.fixture
def server_ssl_context(tls_material):
    ctx = ssl.create_default_context(ssl.Purpose.CLIENT_AUTH)
    ctx.load_cert_chain(tls_material["cert"], tls_material["key"])
    return ctx


@pytest.fixture
def client_ssl_context(tls_material):
    return ssl.create_default_context(cafile=tls_material["ca"])


@pytest.fixture
def http_server():
    """Factory for a local HTTP(S) server driven by ``reply(reader, writer)``.

    Yields the listening port; every received request is appended to
    ``requests``.
    """

    @contextlib.asynccontextmanager
    async def start(reply, ssl_context=None, requests=None):
        async def handle(reader, writer):
            try:
                request = await reader.readuntil(b"\r\n\r\n")
                if requests is not None:
                    requests.append(request)
                await reply(reader, writer)
            except (asyncio.IncompleteReadError, ConnectionError, ssl.SSLError):
                pass
            finally:
                writer.close()

        server = await asyncio.start_server(handle, "127.0.0.1", 0, ssl=ssl_context)
        try:
            yield server.sockets[0].getsockname()[1]
        finally:
            server.close()
            await server.wait_closed()

    return start


def body_reply(body: bytes, headers: bytes = b"Content-Type: text/plain\r\n"):
    async def reply(reader, writer):
        writer.write(b"HTTP/1.1 200 OK\r\n" + headers + b"Content-Length: %d\r\n\r\n" % len(body) + body)
        await writer.drain()

    return reply


@pytest.fixture
def make_body_reply():
    return body_reply


def stun_response(transaction_id: bytes, attributes: list[tuple[int, bytes]], cookie: int = STUN_MAGIC_COOKIE,
                  msg_type: int = STUN_BINDING_RESPONSE) -> bytes:
    body = b""
    for attr_type, value in attributes:
        body += struct.pack("!HH", attr_type, len(value)) + value + b"\x00" * (-len(value) % 4)
    return struct.pack("!HHI12s", msg_type, len(body), cookie, transaction_id) + body


def mapped_address_value(address: str, port: int = 0) -> bytes:
    ip = ipaddress.ip_address(address)
    family = 0x01 if ip.version == 4 else 0x02
    return struct.pack("!BBH", 0, family, port) + ip.packed


@pytest.fixture
def make_stun_response():
    return stun_response


@pytest.fixture
def make_mapped_address():
    return mapped_address_value


class _StunResponder(asyncio.DatagramProtocol):
    """Answers binding requests with the sender's own address."""

    def __init__(self, reply_address=None):
        self.reply_address = reply_address
        self.transport = None
        self.requests = []

    def connection_made(self, transport):
        self.transport = transport

    def datagram_received(self, data, addr):
        self.requests.append(data)
        transaction_id = data[8:20]
        mapped = mapped_address_value(self.reply_address or addr[0], addr[1])
        self.transport.sendto(stun_response(transaction_id, [(STUN_ATTR_MAPPED_ADDRESS, mapped)]), addr)


@pytest.fixture
def stun_server():
    @contextlib.asynccontextmanager
    async def start(reply_address=None):
        loop = asyncio.get_running_loop()
        transport, protocol = await loop.create_datagram_endpoint(
            lambda: _StunResponder(reply_address), local_addr=("127.0.0.1", 0)
        )
        try:
            yield transport.get_extra_info("sockname")[1], protocol
        finally:
            transport.close()

    return start
