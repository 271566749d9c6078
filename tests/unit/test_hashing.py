"""Unit tests for hashing functionality."""

import hashlib
import hmac
import io

import pytest

from intunewin.core import hashing


@pytest.mark.parametrize("chunk_size", [1, 7, 4096, hashing.CHUNK_SIZE])
def test_sha256_stream_independent_of_chunk_size(chunk_size: int) -> None:
    """The digest must not depend on how the stream is chunked."""
    data = b"itreallydoesntmatterwhatgoeshere123" * 1000
    stream = io.BytesIO(data)
    assert hashing.sha256_stream(stream, chunk_size) == hashlib.sha256(data).digest()


def test_sha256_stream_restores_position() -> None:
    """The stream is rewound to where hashing started."""
    stream = io.BytesIO(b"prefix-payload")
    stream.seek(7)

    digest = hashing.sha256_stream(stream)

    assert digest == hashlib.sha256(b"payload").digest()
    assert stream.tell() == 7


def test_sha256_stream_empty() -> None:
    assert hashing.sha256_stream(io.BytesIO()) == hashlib.sha256(b"").digest()


def test_hmac_sha256_stream_matches_hmac_module() -> None:
    key = b"k" * 32
    data = b"ciphertext-ish bytes" * 500
    stream = io.BytesIO(data)

    mac = hashing.hmac_sha256_stream(stream, key, chunk_size=64)

    assert mac == hmac.new(key, data, hashlib.sha256).digest()
    assert stream.tell() == 0


def test_hmac_sha256_stream_from_offset() -> None:
    """Only bytes from the current position to EOF are authenticated."""
    key = b"\x01" * 32
    stream = io.BytesIO(b"A" * 32 + b"B" * 100)
    stream.seek(32)

    mac = hashing.hmac_sha256_stream(stream, key)

    assert mac == hmac.new(key, b"B" * 100, hashlib.sha256).digest()
    assert stream.tell() == 32
