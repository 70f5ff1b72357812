"""Packed binary codec for KV record values.

Every record type packs to a version byte followed by its fields in a fixed
order. Readers check the version first and reject versions they do not know.
Fields appended to a record later are read only while bytes remain, so older
values written without them still decode.

Field encodings:
- int:   signed 64-bit big-endian
- bool:  one byte (0 or 1)
- str:   u32 big-endian byte length + UTF-8 bytes
- bytes: u32 big-endian length + raw bytes
- time:  signed 64-bit big-endian microseconds since the Unix epoch (UTC)
"""

import struct
from datetime import UTC, datetime

_INT = struct.Struct(">q")
_LEN = struct.Struct(">I")
_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


class PackError(ValueError):
    """A packed value could not be decoded."""


class PackVersionError(PackError):
    """A packed value carries a version this reader does not understand."""

    def __init__(self, record: str, version: int):
        self.record = record
        self.version = version
        super().__init__(f"unsupported {record} version {version}")


def _to_micros(value: datetime) -> int:
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    delta = value - _EPOCH
    return (delta.days * 86_400 + delta.seconds) * 1_000_000 + delta.microseconds


def _from_micros(micros: int) -> datetime:
    seconds, rem = divmod(micros, 1_000_000)
    return datetime.fromtimestamp(seconds, tz=UTC).replace(microsecond=rem)


class Packer:
    """Append-only writer for one packed record."""

    def __init__(self, version: int):
        self._buf = bytearray([version])

    def int(self, value: int) -> "Packer":
        self._buf += _INT.pack(value)
        return self

    def bool(self, value: bool) -> "Packer":
        self._buf.append(1 if value else 0)
        return self

    def bytes(self, value: bytes) -> "Packer":
        self._buf += _LEN.pack(len(value))
        self._buf += value
        return self

    def str(self, value: str) -> "Packer":
        return self.bytes(value.encode("utf-8"))

    def time(self, value: datetime) -> "Packer":
        return self.int(_to_micros(value))

    def optional_time(self, value: datetime | None) -> "Packer":
        self.bool(value is not None)
        if value is not None:
            self.time(value)
        return self

    def getvalue(self) -> bytes:
        return bytes(self._buf)


class Unpacker:
    """Sequential reader for one packed record.

    Args:
        data: The packed bytes.
        record: Record name used in error messages.
        versions: Versions this reader accepts.

    Raises:
        PackError: If the buffer is empty.
        PackVersionError: If the version byte is not in ``versions``.
    """

    def __init__(self, data: bytes, record: str, versions: set[int] | frozenset[int]):
        if not data:
            raise PackError(f"empty {record} value")
        self.record = record
        self.version = data[0]
        if self.version not in versions:
            raise PackVersionError(record, self.version)
        self._data = memoryview(data)
        self._pos = 1

    @property
    def remaining(self) -> int:
        """Number of unread bytes."""
        return len(self._data) - self._pos

    def _take(self, n: int) -> memoryview:
        if self.remaining < n:
            raise PackError(f"truncated {self.record} value")
        chunk = self._data[self._pos : self._pos + n]
        self._pos += n
        return chunk

    def int(self) -> int:
        return _INT.unpack(self._take(_INT.size))[0]

    def bool(self) -> bool:
        return self._take(1)[0] != 0

    def bytes(self) -> bytes:
        (length,) = _LEN.unpack(self._take(_LEN.size))
        return bytes(self._take(length))

    def str(self) -> str:
        return self.bytes().decode("utf-8")

    def time(self) -> datetime:
        return _from_micros(self.int())

    def optional_time(self) -> datetime | None:
        if not self.bool():
            return None
        return self.time()
