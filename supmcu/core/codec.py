"""Binary codec for SupMCU telemetry responses.

Response frame layout::

    +----------------+--------------------+-------------------+
    | Header         | Payload            | Footer            |
    | 5 bytes        | per Format/length  | 8 bytes           |
    +----------------+--------------------+-------------------+

- Header: byte 0 bit 0 is the ready flag, bytes 1..4 are a little-endian u32 timestamp
- Payload: values laid out back to back as described by a ``Format``; strings are
  NUL-terminated, every multi-byte number is little-endian
- Footer: zero padding, or in checksum mode a little-endian CRC-32/CKSUM of
  header + payload followed by 4 zero bytes
"""

from __future__ import annotations

import random
import struct
from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any, Union

from supmcu.core.errors import CodecError, InvalidBytesError, InvalidFormatCharacterError, ValidationError

HEADER_SIZE = 5
FOOTER_SIZE = 8
CHECKSUM_SIZE = 4
SAMPLE_STRING = "A random string"

_CRC32_CKSUM_POLY = 0x04C11DB7


class DataType(Enum):
    STR = "S"
    CHAR = "c"
    U8 = "u"
    I8 = "t"
    U16 = "s"
    I16 = "n"
    U32 = "i"
    I32 = "d"
    U64 = "l"
    I64 = "k"
    FLOAT = "f"
    DOUBLE = "F"
    HEX8 = "x"
    HEX16 = "z"

    @property
    def tag(self) -> str:
        return self.value

    @property
    def byte_length(self) -> int | None:
        """Wire width in bytes, or ``None`` for the variable-length string type."""
        code = _STRUCT_CODES[self]
        return struct.calcsize(code) if code else None

    @classmethod
    def from_tag(cls, char: str) -> DataType:
        try:
            return _TAGS[char]
        except KeyError:
            raise InvalidFormatCharacterError(char) from None


# The single width/layout table; every size computation goes through it.
_STRUCT_CODES: dict[DataType, str | None] = {
    DataType.STR: None,
    DataType.CHAR: "<B",
    DataType.U8: "<B",
    DataType.I8: "<b",
    DataType.U16: "<H",
    DataType.I16: "<h",
    DataType.U32: "<I",
    DataType.I32: "<i",
    DataType.U64: "<Q",
    DataType.I64: "<q",
    DataType.FLOAT: "<f",
    DataType.DOUBLE: "<d",
    DataType.HEX8: "<B",
    DataType.HEX16: "<H",
}

_TAGS: dict[str, DataType] = {dt.value: dt for dt in DataType}
_TAGS["X"] = DataType.HEX8
_TAGS["Z"] = DataType.HEX16

_INTEGER_TYPES = frozenset(
    {
        DataType.U8,
        DataType.I8,
        DataType.U16,
        DataType.I16,
        DataType.U32,
        DataType.I32,
        DataType.U64,
        DataType.I64,
        DataType.HEX8,
        DataType.HEX16,
    }
)

Scalar = Union[str, int, float]


@dataclass(frozen=True)
class TelemetryValue:
    """One decoded telemetry value tagged with its wire type."""

    type: DataType
    value: Scalar

    def __str__(self) -> str:
        if self.type in (DataType.HEX8, DataType.HEX16):
            return f"0x{self.value:x}"
        if self.type is DataType.FLOAT:
            return _format_single(float(self.value))
        return str(self.value)

    def to_bytes(self) -> bytes:
        if self.type is DataType.STR:
            text = str(self.value)
            if "\x00" in text:
                raise CodecError(f"String {text!r} contains a NUL byte")
            return text.encode("utf-8") + b"\x00"
        if self.type is DataType.CHAR:
            if len(str(self.value)) != 1:
                raise CodecError(f"Character value {self.value!r} must be exactly one character")
            try:
                return str(self.value).encode("latin-1")
            except UnicodeEncodeError as exc:
                raise CodecError(f"Character {self.value!r} does not fit in one byte") from exc
        code = _STRUCT_CODES[self.type]
        try:
            return struct.pack(code, self.value)
        except (struct.error, OverflowError) as exc:
            raise CodecError(f"Cannot encode {self.value!r} as {self.type.name}: {exc}") from exc

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type.name, "value": self.value}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TelemetryValue:
        dt = DataType[data["type"]]
        value = data["value"]
        if dt in _INTEGER_TYPES:
            value = int(value)
        elif dt in (DataType.FLOAT, DataType.DOUBLE):
            value = float(value)
        else:
            value = str(value)
        return cls(dt, value)

    @classmethod
    def string(cls, text: str) -> TelemetryValue:
        return cls(DataType.STR, text)


def _format_single(value: float) -> str:
    # Shortest decimal that survives a round trip through IEEE-754 single precision.
    for precision in range(1, 10):
        text = f"{value:.{precision}g}"
        if struct.unpack("<f", struct.pack("<f", float(text)))[0] == value:
            return text
    return repr(value)


class Format:
    """An ordered sequence of ``DataType`` parsed from a format string.

    Characters that are not format tags are dropped without error, so
    ``Format("f,u. o\\n")`` is the same format as ``Format("fun")``.
    """

    __slots__ = ("_types",)

    def __init__(self, fmt: str | Iterable[DataType] = "") -> None:
        if isinstance(fmt, str):
            types = []
            for char in fmt:
                try:
                    types.append(DataType.from_tag(char))
                except InvalidFormatCharacterError:
                    continue
            self._types: tuple[DataType, ...] = tuple(types)
        else:
            self._types = tuple(fmt)

    def __iter__(self) -> Iterator[DataType]:
        return iter(self._types)

    def __len__(self) -> int:
        return len(self._types)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Format):
            return NotImplemented
        return self._types == other._types

    def __hash__(self) -> int:
        return hash(self._types)

    def __str__(self) -> str:
        return "".join(dt.tag for dt in self._types)

    def __repr__(self) -> str:
        return f"Format({str(self)!r})"

    @property
    def types(self) -> tuple[DataType, ...]:
        return self._types

    def byte_length(self) -> int | None:
        total = 0
        for dt in self._types:
            width = dt.byte_length
            if width is None:
                return None
            total += width
        return total

    def decode(self, data: bytes) -> list[TelemetryValue]:
        """Decode ``data`` into one value per format element.

        Bytes left over after the last element are ignored.

        Raises:
            InvalidBytesError: If the data is truncated, a string has no NUL
                terminator, or string bytes are not valid UTF-8.
        """
        values: list[TelemetryValue] = []
        offset = 0
        for dt in self._types:
            if dt is DataType.STR:
                end = data.find(b"\x00", offset)
                if end < 0:
                    raise InvalidBytesError(
                        f"Missing string terminator after offset {offset} in {data!r}"
                    )
                try:
                    text = data[offset:end].decode("utf-8")
                except UnicodeDecodeError as exc:
                    raise InvalidBytesError(f"Failed to parse UTF-8 encoded string: {exc}") from exc
                values.append(TelemetryValue(dt, text))
                offset = end + 1
                continue

            code = _STRUCT_CODES[dt]
            width = struct.calcsize(code)
            if offset + width > len(data):
                raise InvalidBytesError(
                    f"Need {width} bytes for {dt.name} at offset {offset}, have {len(data) - offset}"
                )
            (raw,) = struct.unpack_from(code, data, offset)
            offset += width
            if dt is DataType.CHAR:
                values.append(TelemetryValue(dt, chr(raw)))
            else:
                values.append(TelemetryValue(dt, raw))
        return values

    def encode(self, values: Sequence[TelemetryValue]) -> bytes:
        if len(values) != len(self._types):
            raise CodecError(f"Format {self} expects {len(self._types)} values, got {len(values)}")
        out = bytearray()
        for dt, value in zip(self._types, values):
            if value.type is not dt:
                raise CodecError(f"Format {self} expects {dt.name}, got {value.type.name}")
            out += value.to_bytes()
        return bytes(out)

    def sample_values(self, rng: random.Random) -> list[TelemetryValue]:
        """Generate one arbitrary value per element, for simulation and tests."""
        values: list[TelemetryValue] = []
        for dt in self._types:
            if dt is DataType.STR:
                values.append(TelemetryValue(dt, SAMPLE_STRING))
            elif dt is DataType.CHAR:
                values.append(TelemetryValue(dt, chr(rng.randrange(32, 127))))
            elif dt is DataType.FLOAT:
                raw = rng.uniform(-1000.0, 1000.0)
                values.append(TelemetryValue(dt, struct.unpack("<f", struct.pack("<f", raw))[0]))
            elif dt is DataType.DOUBLE:
                values.append(TelemetryValue(dt, rng.uniform(-1000.0, 1000.0)))
            else:
                bits = 8 * struct.calcsize(_STRUCT_CODES[dt])
                if _STRUCT_CODES[dt].islower():
                    low, high = -(1 << (bits - 1)), (1 << (bits - 1)) - 1
                else:
                    low, high = 0, (1 << bits) - 1
                values.append(TelemetryValue(dt, rng.randint(low, high)))
        return values


@dataclass(frozen=True)
class Header:
    ready: bool
    timestamp: int

    @classmethod
    def parse(cls, data: bytes) -> Header:
        if len(data) < HEADER_SIZE:
            raise CodecError(f"Response header needs {HEADER_SIZE} bytes, got {len(data)}")
        (timestamp,) = struct.unpack_from("<I", data, 1)
        return cls(ready=bool(data[0] & 0x01), timestamp=timestamp)

    def to_bytes(self) -> bytes:
        return bytes([1 if self.ready else 0]) + struct.pack("<I", self.timestamp)


def crc32_cksum(data: bytes) -> int:
    """CRC-32/CKSUM: poly 0x04C11DB7, init 0, unreflected, final xor 0xFFFFFFFF."""
    crc = 0
    for byte in data:
        crc ^= byte << 24
        for _ in range(8):
            if crc & 0x80000000:
                crc = ((crc << 1) ^ _CRC32_CKSUM_POLY) & 0xFFFFFFFF
            else:
                crc = (crc << 1) & 0xFFFFFFFF
    return crc ^ 0xFFFFFFFF


def build_footer(body: bytes, *, checksum: bool = False) -> bytes:
    if not checksum:
        return bytes(FOOTER_SIZE)
    return struct.pack("<I", crc32_cksum(body)) + bytes(FOOTER_SIZE - CHECKSUM_SIZE)


def validate_footer(body: bytes, footer: bytes) -> None:
    if len(footer) < CHECKSUM_SIZE:
        raise CodecError(f"Checksum footer needs {CHECKSUM_SIZE} bytes, got {len(footer)}")
    (expected,) = struct.unpack_from("<I", footer)
    actual = crc32_cksum(body)
    if expected != actual:
        raise ValidationError(expected, actual)


def encode_frame(
    header: Header,
    payload: bytes,
    payload_size: int,
    *,
    checksum: bool = False,
) -> bytes:
    """Build a full response frame, padding or truncating ``payload`` to ``payload_size``."""
    body = header.to_bytes() + payload[:payload_size].ljust(payload_size, b"\x00")
    return body + build_footer(body, checksum=checksum)


def decode_frame(
    data: bytes,
    fmt: Format,
    *,
    checksum: bool = False,
) -> tuple[Header, list[TelemetryValue]]:
    """Split a response frame and decode its header and payload.

    In checksum mode the footer is validated before anything is decoded.
    """
    if len(data) < HEADER_SIZE + FOOTER_SIZE:
        raise CodecError(
            f"Response frame needs at least {HEADER_SIZE + FOOTER_SIZE} bytes, got {len(data)}"
        )
    body, footer = data[:-FOOTER_SIZE], data[-FOOTER_SIZE:]
    if checksum:
        validate_footer(body, footer)
    header = Header.parse(body)
    return header, fmt.decode(body[HEADER_SIZE:])
