""" Utility for streaming hash operations. """

import hashlib
import hmac
from typing import BinaryIO


CHUNK_SIZE = 2 * 1024 * 1024  # 2MB


def _consume(stream: BinaryIO, update, chunk_size: int) -> None:
    # Feed the stream from its current position to EOF, then rewind to where it started.
    start = stream.tell()
    try:
        while True:
            data = stream.read(chunk_size)
            if not data:
                break
            update(data)
    finally:
        stream.seek(start)


def sha256_stream(stream: BinaryIO, chunk_size: int = CHUNK_SIZE) -> bytes:
    """Return the raw SHA-256 digest of ``stream`` from its current position to EOF.

    The stream position is restored afterwards so the same handle can be read again.
    """
    sha256 = hashlib.sha256()
    _consume(stream, sha256.update, chunk_size)
    return sha256.digest()


def hmac_sha256_stream(stream: BinaryIO, key: bytes, chunk_size: int = CHUNK_SIZE) -> bytes:
    """Return the raw HMAC-SHA256 of ``stream`` from its current position to EOF."""
    mac = hmac.new(key, digestmod=hashlib.sha256)
    _consume(stream, mac.update, chunk_size)
    return mac.digest()
