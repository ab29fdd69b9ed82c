from .header import (
    AddressType,
    Command,
    SessionHeader,
    decode_header,
    encode_header,
    encode_response_header,
    frame_datagram,
    iter_datagrams,
)

__all__ = [
    "AddressType",
    "Command",
    "SessionHeader",
    "decode_header",
    "encode_header",
    "encode_response_header",
    "frame_datagram",
    "iter_datagrams",
]
