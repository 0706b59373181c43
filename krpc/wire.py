"""Wire format of RPC requests: a varint header length, the header, then the arguments."""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Tuple

_MAX_VARINT_BYTES = 10
_UINT32_MAX = 0xFFFFFFFF

_WIRE_VARINT = 0
_WIRE_I64 = 1
_WIRE_LEN = 2
_WIRE_I32 = 5

_FIELD_SERVICE_NAME = 1
_FIELD_METHOD_NAME = 2
_FIELD_ARGS_SIZE = 3


class FrameError(ValueError):
    """Bytes on the wire do not form a valid request."""


def encode_varint(value: int) -> bytes:
    """Encode a non-negative integer as a base-128 varint."""
    if value < 0:
        raise ValueError("varint must not be negative")
    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def decode_varint(data: bytes, pos: int = 0) -> Tuple[int, int]:
    """Decode a varint at ``pos``; return the value and the position after it."""
    result = 0
    for index, byte in enumerate(data[pos:pos + _MAX_VARINT_BYTES]):
        result |= (byte & 0x7F) << (7 * index)
        if not byte & 0x80:
            return result, pos + index + 1
    raise FrameError("truncated or overlong varint")


def _tag(number: int, wire_type: int) -> bytes:
    return encode_varint((number << 3) | wire_type)


def _read_bytes(data: bytes, pos: int, size: int) -> Tuple[bytes, int]:
    end = pos + size
    if end > len(data):
        raise FrameError("truncated field")
    return data[pos:end], end


@dataclass(frozen=True)
class RpcHeader:
    """Names the service and method being called and the size of the arguments."""

    service_name: str = ""
    method_name: str = ""
    args_size: int = 0

    def encode(self) -> bytes:
        """Serialise the header; fields holding defaults are omitted."""
        if not 0 <= self.args_size <= _UINT32_MAX:
            raise ValueError("args_size must fit in 32 unsigned bits")
        parts = []
        for number, text in (
            (_FIELD_SERVICE_NAME, self.service_name),
            (_FIELD_METHOD_NAME, self.method_name),
        ):
            if text:
                raw = text.encode("utf-8")
                parts += [_tag(number, _WIRE_LEN), encode_varint(len(raw)), raw]
        if self.args_size:
            parts += [_tag(_FIELD_ARGS_SIZE, _WIRE_VARINT), encode_varint(self.args_size)]
        return b"".join(parts)

    @classmethod
    def decode(cls, data: bytes) -> "RpcHeader":
        """Parse a serialised header, skipping unknown fields."""
        data = bytes(data)
        fields = {}
        pos = 0
        while pos < len(data):
            key, pos = decode_varint(data, pos)
            number, wire_type = key >> 3, key & 0x7
            if number == 0:
                raise FrameError("invalid field number 0")
            if wire_type == _WIRE_VARINT:
                value, pos = decode_varint(data, pos)
            elif wire_type == _WIRE_LEN:
                length, pos = decode_varint(data, pos)
                value, pos = _read_bytes(data, pos, length)
            elif wire_type == _WIRE_I64:
                value, pos = _read_bytes(data, pos, 8)
            elif wire_type == _WIRE_I32:
                value, pos = _read_bytes(data, pos, 4)
            else:
                raise FrameError(f"unsupported wire type {wire_type}")

            if number in (_FIELD_SERVICE_NAME, _FIELD_METHOD_NAME) and wire_type == _WIRE_LEN:
                try:
                    fields[number] = value.decode("utf-8")
                except UnicodeDecodeError as exc:
                    raise FrameError("header string is not valid UTF-8") from exc
            elif number == _FIELD_ARGS_SIZE and wire_type == _WIRE_VARINT:
                fields[number] = value & _UINT32_MAX
        return cls(
            service_name=fields.get(_FIELD_SERVICE_NAME, ""),
            method_name=fields.get(_FIELD_METHOD_NAME, ""),
            args_size=fields.get(_FIELD_ARGS_SIZE, 0),
        )


def encode_request(header: RpcHeader, args: bytes) -> bytes:
    """Build a request frame; the header's ``args_size`` is taken from ``args``."""
    args = bytes(args)
    raw_header = replace(header, args_size=len(args)).encode()
    return encode_varint(len(raw_header)) + raw_header + args


def decode_request(data: bytes) -> Tuple[RpcHeader, bytes]:
    """Split a request frame into its header and argument bytes."""
    data = bytes(data)
    header_size, pos = decode_varint(data, 0)
    header_size &= _UINT32_MAX
    end = pos + header_size
    if end > len(data):
        raise FrameError("rpc header truncated")
    try:
        header = RpcHeader.decode(data[pos:end])
    except FrameError as exc:
        raise FrameError("rpc header parse error") from exc
    args_end = end + header.args_size
    if args_end > len(data):
        raise FrameError("read args error")
    return header, data[end:args_end]