"""Binary session header codec and UDP datagram framing."""

from __future__ import annotations

import ipaddress
import struct
from collections.abc import Iterator
from dataclasses import dataclass
from enum import IntEnum

from passage.core.exceptions import ProtocolError, ProtocolErrorKind
from passage.core.identity import TOKEN_SIZE, tokens_match

DNS_PORT = 53
RESPONSE_STATUS_OK = 0
MAX_DATAGRAM_SIZE = 0xFFFF

_PORT = struct.Struct(">H")


class Command(IntEnum):
    """Outbound command requested by the client."""

    TCP = 1
    UDP = 2


class AddressType(IntEnum):
    """Encoding of the destination address."""

    IPV4 = 1
    DOMAIN = 2
    IPV6 = 3


@dataclass(frozen=True)
class SessionHeader:
    """Parsed session header.

    ``payload_offset`` is the index in the decoded buffer where relay payload
    begins; everything before it is header.
    """

    version: int
    token: bytes
    command: Command
    address_type: AddressType
    address: str
    port: int
    payload_offset: int

    @property
    def destination(self) -> tuple[str, int]:
        return self.address, self.port


def _require(buffer: bytes, end: int) -> None:
    if len(buffer) < end:
        raise ProtocolError(
            ProtocolErrorKind.TRUNCATED,
            f"Header truncated: need {end} bytes, got {len(buffer)}",
        )


def decode_header(buffer: bytes, identity: bytes) -> SessionHeader:
    """Decode a session header from the start of ``buffer``.

    Args:
        buffer: First bytes of the relayed stream
        identity: The configured 16-byte identity

    Returns:
        The parsed header

    Raises:
        ProtocolError: If the header is truncated, unauthorized or invalid
    """
    buffer = bytes(buffer)

    _require(buffer, 1 + TOKEN_SIZE + 1)
    version = buffer[0]
    token = buffer[1 : 1 + TOKEN_SIZE]
    if not tokens_match(token, identity):
        raise ProtocolError(ProtocolErrorKind.UNAUTHORIZED, "Invalid session token")

    addon_length = buffer[1 + TOKEN_SIZE]
    offset = 1 + TOKEN_SIZE + 1 + addon_length

    # command(1) + port(2) + address type(1)
    _require(buffer, offset + 4)
    command_byte = buffer[offset]
    try:
        command = Command(command_byte)
    except ValueError:
        raise ProtocolError(
            ProtocolErrorKind.UNKNOWN_COMMAND, f"Unknown command {command_byte}"
        ) from None
    (port,) = _PORT.unpack_from(buffer, offset + 1)
    address_type_byte = buffer[offset + 3]
    offset += 4

    try:
        address_type = AddressType(address_type_byte)
    except ValueError:
        raise ProtocolError(
            ProtocolErrorKind.UNKNOWN_ADDRESS_TYPE,
            f"Unknown address type {address_type_byte}",
        ) from None

    if address_type == AddressType.IPV4:
        _require(buffer, offset + 4)
        address = str(ipaddress.IPv4Address(buffer[offset : offset + 4]))
        offset += 4
    elif address_type == AddressType.IPV6:
        _require(buffer, offset + 16)
        address = str(ipaddress.IPv6Address(buffer[offset : offset + 16]))
        offset += 16
    else:
        _require(buffer, offset + 1)
        length = buffer[offset]
        offset += 1
        _require(buffer, offset + length)
        if length == 0:
            raise ProtocolError(ProtocolErrorKind.MALFORMED_ADDRESS, "Empty domain")
        try:
            address = buffer[offset : offset + length].decode("ascii")
        except UnicodeDecodeError:
            raise ProtocolError(
                ProtocolErrorKind.MALFORMED_ADDRESS, "Domain is not ASCII"
            ) from None
        offset += length

    if command == Command.UDP and port != DNS_PORT:
        raise ProtocolError(
            ProtocolErrorKind.UNSUPPORTED_UDP_PORT,
            f"UDP is only relayed to port {DNS_PORT}, not {port}",
        )

    return SessionHeader(
        version=version,
        token=token,
        command=command,
        address_type=address_type,
        address=address,
        port=port,
        payload_offset=offset,
    )


def encode_address(address: str) -> tuple[AddressType, bytes]:
    """Pick the address type for ``address`` and return its wire form."""
    try:
        ip = ipaddress.ip_address(address)
    except ValueError:
        raw = address.encode("ascii")
        if not 0 < len(raw) <= 0xFF:
            raise ValueError(f"Domain length must be 1-255 bytes: {address!r}") from None
        return AddressType.DOMAIN, bytes([len(raw)]) + raw
    if ip.version == 4:
        return AddressType.IPV4, ip.packed
    return AddressType.IPV6, ip.packed


def encode_header(
    token: bytes,
    address: str,
    port: int,
    command: Command = Command.TCP,
    version: int = 0,
    addon: bytes = b"",
) -> bytes:
    """Build a session header, the client-side inverse of decode_header."""
    if len(token) != TOKEN_SIZE:
        raise ValueError(f"Token must be {TOKEN_SIZE} bytes")
    if len(addon) > 0xFF:
        raise ValueError("Addon must be at most 255 bytes")
    address_type, address_bytes = encode_address(address)
    return b"".join(
        (
            bytes([version]),
            token,
            bytes([len(addon)]),
            addon,
            bytes([int(command)]),
            _PORT.pack(port),
            bytes([int(address_type)]),
            address_bytes,
        )
    )


def encode_response_header(version: int) -> bytes:
    """Response header sent back once per session: ``[version, 0x00]``."""
    return bytes([version, RESPONSE_STATUS_OK])


def frame_datagram(datagram: bytes) -> bytes:
    """Prefix a datagram with its 2-byte big-endian length."""
    if len(datagram) > MAX_DATAGRAM_SIZE:
        raise ValueError(f"Datagram too large: {len(datagram)} bytes")
    return _PORT.pack(len(datagram)) + datagram


def iter_datagrams(data: bytes) -> Iterator[bytes]:
    """Split a stream of length-prefixed datagrams.

    Raises:
        ValueError: If the data ends in the middle of a datagram
    """
    offset = 0
    while offset < len(data):
        if offset + 2 > len(data):
            raise ValueError("Incomplete datagram length prefix")
        (length,) = _PORT.unpack_from(data, offset)
        offset += 2
        if offset + length > len(data):
            raise ValueError("Incomplete datagram")
        yield data[offset : offset + length]
        offset += length
