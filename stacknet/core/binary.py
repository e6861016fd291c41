"""Little-endian primitives of the binary network format."""

from __future__ import annotations

import struct
from typing import BinaryIO, Optional

import numpy as np

from .types import DTYPE, Array

_INT = struct.Struct("<i")
_FLOAT_LE = np.dtype("<f4")


def write_int(stream: BinaryIO, value: int) -> None:
    stream.write(_INT.pack(int(value)))


def read_int(stream: BinaryIO) -> int:
    value = try_read_int(stream)
    if value is None:
        raise EOFError("Unexpected end of stream while reading an integer")
    return value


def try_read_int(stream: BinaryIO) -> Optional[int]:
    """Read an integer, or return ``None`` if the stream is exhausted."""

    raw = stream.read(_INT.size)
    if not raw:
        return None
    if len(raw) != _INT.size:
        raise EOFError("Truncated integer in stream")
    return _INT.unpack(raw)[0]


def write_floats(stream: BinaryIO, values: Array) -> None:
    stream.write(np.ascontiguousarray(values, dtype=_FLOAT_LE).tobytes())


def read_floats(stream: BinaryIO, count: int) -> Array:
    nbytes = count * _FLOAT_LE.itemsize
    raw = stream.read(nbytes)
    if len(raw) != nbytes:
        raise EOFError(f"Expected {count} floats but the stream ended early")
    return np.frombuffer(raw, dtype=_FLOAT_LE).astype(DTYPE)


__all__ = ["read_floats", "read_int", "try_read_int", "write_floats", "write_int"]
