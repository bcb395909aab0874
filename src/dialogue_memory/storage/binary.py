"""Little-endian binary framing shared by the vector blobs.

Layout primitives: ``int32`` counts and keys, and vectors stored as an
``int32`` length followed by that many ``float32`` values.
"""

from __future__ import annotations

import struct
from typing import BinaryIO

import numpy as np

_INT32 = struct.Struct("<i")


def write_int32(stream: BinaryIO, value: int) -> None:
    stream.write(_INT32.pack(value))


def read_int32(stream: BinaryIO) -> int:
    data = stream.read(_INT32.size)
    if len(data) != _INT32.size:
        raise EOFError("Unexpected end of file while reading int32")
    return _INT32.unpack(data)[0]


def read_exact(stream: BinaryIO, size: int) -> bytes:
    data = stream.read(size)
    if len(data) != size:
        raise EOFError(f"Unexpected end of file: wanted {size} bytes, got {len(data)}")
    return data


def write_vector(stream: BinaryIO, vector: np.ndarray) -> None:
    values = np.asarray(vector, dtype="<f4")
    write_int32(stream, int(values.shape[0]))
    stream.write(values.tobytes())


def read_vector(stream: BinaryIO) -> np.ndarray:
    length = read_int32(stream)
    if length < 0:
        raise ValueError(f"Negative vector length: {length}")
    raw = read_exact(stream, length * 4)
    return np.frombuffer(raw, dtype="<f4").astype(np.float32)
