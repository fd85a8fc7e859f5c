"""
Fixed binary layout used to persist a credential.

All integers are big-endian::

    |total_size:4|key_size:4|key|counter:8|digits:4|issuer_size:4|issuer|
    |account_size:4|account|step_size:4|client_offset:4|total_failures:4|
    |last_verification:8|hash_type:4|

``total_size`` counts the whole record, itself included.
"""

import struct
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Tuple

from twofactor.errors import DecodeError


LENGTH_FORMAT = ">i"
LENGTH_SIZE = struct.calcsize(LENGTH_FORMAT)


@dataclass(frozen=True)
class Field:
    """
    One entry of a record layout.

    ``fmt`` is a struct format for fixed-width scalars; a field without a
    format is a byte string prefixed by its 4-byte length.
    """

    name: str
    fmt: Optional[str] = None

    @property
    def is_variable(self) -> bool:
        return self.fmt is None

    def size(self, value: Any) -> int:
        if self.is_variable:
            return LENGTH_SIZE + len(value)
        return struct.calcsize(self.fmt)


CREDENTIAL_LAYOUT: Tuple[Field, ...] = (
    Field("key"),
    Field("counter", ">Q"),
    Field("digits", ">i"),
    Field("issuer"),
    Field("account"),
    Field("step_size", ">i"),
    Field("client_offset", ">i"),
    Field("total_failures", ">i"),
    Field("last_verification", ">q"),
    Field("hash_type", ">i"),
)


class Reader:
    """Cursor over a buffer that checks bounds before every read."""

    def __init__(self, data: bytes) -> None:
        self._data = memoryview(data)
        self._pos = 0

    @property
    def remaining(self) -> int:
        return len(self._data) - self._pos

    def take(self, size: int, what: str) -> bytes:
        if size < 0:
            raise DecodeError(f"Negative length {size} declared for {what}")
        if size > self.remaining:
            raise DecodeError(
                f"Truncated buffer reading {what}: need {size} bytes, "
                f"{self.remaining} left"
            )
        chunk = self._data[self._pos : self._pos + size].tobytes()
        self._pos += size
        return chunk

    def scalar(self, fmt: str, what: str) -> int:
        (value,) = struct.unpack(fmt, self.take(struct.calcsize(fmt), what))
        return value

    def read(self, field: Field) -> Any:
        if field.is_variable:
            size = self.scalar(LENGTH_FORMAT, f"{field.name} size")
            return self.take(size, field.name)
        return self.scalar(field.fmt, field.name)


class Writer:
    """Accumulates fields into a byte buffer."""

    def __init__(self) -> None:
        self._parts: list[bytes] = []

    def write(self, field: Field, value: Any) -> None:
        try:
            if field.is_variable:
                self._parts.append(struct.pack(LENGTH_FORMAT, len(value)))
                self._parts.append(bytes(value))
            else:
                self._parts.append(struct.pack(field.fmt, value))
        except struct.error as e:
            raise ValueError(f"Cannot encode field {field.name!r}: {e}") from e

    def getvalue(self) -> bytes:
        return b"".join(self._parts)


def encode(
    values: Mapping[str, Any], layout: Tuple[Field, ...] = CREDENTIAL_LAYOUT
) -> bytes:
    """
    Serialize ``values`` following ``layout``, prefixed by the total size.

    Variable-length values must already be bytes.

    Raises:
        ValueError: If a value does not fit its field.
    """
    total_size = LENGTH_SIZE + sum(f.size(values[f.name]) for f in layout)
    writer = Writer()
    writer.write(Field("total_size", LENGTH_FORMAT), total_size)
    for field in layout:
        writer.write(field, values[field.name])
    return writer.getvalue()


def decode(
    data: bytes, layout: Tuple[Field, ...] = CREDENTIAL_LAYOUT
) -> Dict[str, Any]:
    """
    Parse a record produced by :func:`encode`.

    Bytes following the declared record are ignored.

    Returns:
        Mapping of field name to decoded value (bytes for variable fields).

    Raises:
        DecodeError: On truncation, inconsistent lengths or leftover bytes.
    """
    total_size = Reader(data).scalar(LENGTH_FORMAT, "total size")
    if total_size < LENGTH_SIZE:
        raise DecodeError(f"Implausible total size {total_size}")

    body = Reader(data).take(total_size, "record")[LENGTH_SIZE:]
    reader = Reader(body)
    values = {field.name: reader.read(field) for field in layout}

    if reader.remaining:
        raise DecodeError(
            f"Declared total size leaves {reader.remaining} unread bytes"
        )
    return values
