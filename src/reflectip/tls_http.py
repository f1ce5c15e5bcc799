# src/reflectip/tls_http.py
"""
TLS-HTTP communicator for reflectip.

Issues a single ``GET`` over a raw asyncio connection (TLS for ``https``
endpoints) and hands back the response stream positioned right after the
header block.
"""

import asyncio
import logging
import socket
import ssl
from typing import Optional

from .network import family_name, resolve_address
from .robustness import MalformedResponseError, UnsupportedSchemeError

logger = logging.getLogger(__name__)

USER_AGENT = "IPReflection/1.0"
DEFAULT_BUFFER_SIZE = 1024
MAX_HEADER_BYTES = 64 * 1024
HEADER_TERMINATOR = b"\r\n\r\n"


class HeaderTerminatorScanner:
    """Detects ``CR LF CR LF`` one byte at a time.

    Keeps the last four bytes in a fixed ring, so the terminator may be split
    across any number of reads.
    """

    SIZE = len(HEADER_TERMINATOR)

    def __init__(self):
        self._ring = bytearray(self.SIZE)
        self._index = 0
        self._found = False

    @property
    def found(self) -> bool:
        return self._found

    def feed(self, byte: int) -> bool:
        if self._found:
            return True
        self._ring[self._index] = byte
        self._index = (self._index + 1) % self.SIZE
        # oldest byte sits at the write index
        self._found = self._ring[self._index:] + self._ring[: self._index] == HEADER_TERMINATOR
        return self._found


def build_request(host: str, path_and_query: str, user_agent: str = USER_AGENT) -> bytes:
    request = (
        f"GET {path_and_query} HTTP/1.1\r\n"
        f"Host: {host}\r\n"
        f"User-Agent: {user_agent}\r\n"
        f"Accept: application/json\r\n"
        f"Connection: close\r\n"
        f"\r\n"
    )
    return request.encode("ascii")


def parse_header_block(block: bytes) -> tuple[Optional[int], dict[str, str]]:
    """Split a raw header block into the status code and lower-cased headers."""
    lines = block.decode("latin-1").split("\r\n")
    status = None
    parts = lines[0].split(" ", 2)
    if len(parts) >= 2 and parts[0].startswith("HTTP/") and parts[1].isdigit():
        status = int(parts[1])
    headers = {}
    for line in lines[1:]:
        if ":" not in line:
            continue
        name, value = line.split(":", 1)
        headers[name.strip().lower()] = value.strip()
    return status, headers


class ResponseStream:
    """Response body stream; owns the connection until closed."""

    def __init__(
        self,
        reader: Optional[asyncio.StreamReader] = None,
        writer: Optional[asyncio.StreamWriter] = None,
        status: Optional[int] = None,
        headers: Optional[dict[str, str]] = None,
    ):
        self._reader = reader
        self._writer = writer
        self.status = status
        self.headers = headers or {}

    @property
    def is_empty(self) -> bool:
        return self._reader is None

    @property
    def chunked(self) -> bool:
        return "chunked" in self.headers.get("transfer-encoding", "").lower()

    async def read(self) -> bytes:
        """Read the remaining body until the server closes the connection."""
        if self.is_empty:
            return b""
        if self.chunked:
            return await self._read_chunked()
        return await self._reader.read()

    async def read_text(self, encoding: str = "utf-8") -> str:
        return (await self.read()).decode(encoding, errors="replace")

    async def _read_chunked(self) -> bytes:
        body = bytearray()
        while True:
            line = await self._reader.readline()
            if not line:
                break
            size_field = line.split(b";", 1)[0].strip()
            try:
                size = int(size_field, 16)
            except ValueError:
                raise MalformedResponseError(f"Invalid chunk size: {size_field!r}") from None
            if size == 0:
                break
            body += await self._reader.readexactly(size)
            await self._reader.readline()
        return bytes(body)

    def close(self) -> None:
        if self._writer is not None:
            self._writer.close()
            self._writer = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.close()


EMPTY_RESPONSE = ResponseStream()


async def communicate(
    oracle,
    family: int = socket.AF_INET,
    buffer_size: int = DEFAULT_BUFFER_SIZE,
    *,
    ssl_context: Optional[ssl.SSLContext] = None,
    user_agent: str = USER_AGENT,
) -> ResponseStream:
    """Send the oracle request and return the body stream.

    Returns ``EMPTY_RESPONSE`` when the server closes the connection before a
    complete header block arrives. Every resource is released on failure; on
    success the returned stream belongs to the caller.
    """
    scheme = oracle.scheme
    if scheme not in ("http", "https"):
        raise UnsupportedSchemeError(f"Selected URI has incompatible scheme - {scheme}", {"endpoint": oracle.endpoint})

    buffer_size = max(buffer_size, DEFAULT_BUFFER_SIZE)
    host, port = oracle.host, oracle.port
    sockaddr = await resolve_address(host, port, family, socket.SOCK_STREAM)

    tls = None
    if scheme == "https":
        tls = ssl_context or ssl.create_default_context()

    logger.debug(f"Connecting to {host} ({sockaddr[0]}, {family_name(family)}) port {port}")
    reader, writer = await asyncio.open_connection(
        sockaddr[0],
        port,
        ssl=tls,
        server_hostname=host if tls else None,
        family=family,
        limit=buffer_size,
    )

    handed_off = False
    try:
        writer.write(build_request(host, oracle.path_and_query, user_agent))
        await writer.drain()

        scanner = HeaderTerminatorScanner()
        header = bytearray()
        while True:
            byte = await reader.read(1)
            if not byte:
                break
            header += byte
            if scanner.feed(byte[0]):
                status, headers = parse_header_block(bytes(header[: -len(HEADER_TERMINATOR)]))
                if status is not None and not 200 <= status < 300:
                    logger.debug(f"{oracle.endpoint} answered with status {status}")
                handed_off = True
                return ResponseStream(reader, writer, status, headers)
            if len(header) > MAX_HEADER_BYTES:
                logger.debug(f"{oracle.endpoint} sent more than {MAX_HEADER_BYTES} header bytes")
                return EMPTY_RESPONSE

        logger.debug(f"{oracle.endpoint} closed the connection before the end of headers")
        return EMPTY_RESPONSE
    finally:
        if not handed_off:
            writer.close()
