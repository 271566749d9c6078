"""Encrypted content codec for the IntuneWin content entry.

Content entry layout (offsets in bytes):
- 0..32:   HMAC-SHA256 over bytes [32, EOF) keyed with the MAC key
- 32..48:  AES initialization vector, stored in cleartext
- 48..EOF: AES-256-CBC ciphertext of the plaintext payload (PKCS7 padded)

Decoding uses the key and IV held by the caller (the metadata record); the
IV copy at offset 32 is not read back and the MAC is not checked unless the
caller asks for it through :func:`verify_mac`.
"""
from __future__ import annotations

import hashlib
import hmac
import logging
import shutil
import tempfile
from dataclasses import dataclass
from typing import BinaryIO, Optional

from intunewin.core.exceptions import CorruptCiphertextError
from intunewin.core.hashing import CHUNK_SIZE, hmac_sha256_stream, sha256_stream
from .crypto import CipherDirection, CipherStream, check_key_material, check_mac_key


MAC_SIZE = 32
IV_OFFSET = 32
HEADER_SIZE = 48

logger = logging.getLogger(__name__)


@dataclass
class EncodeResult:
    digest: bytes
    mac: bytes
    size: int


def encode(
    plain: BinaryIO,
    output: BinaryIO,
    encryption_key: bytes,
    iv: bytes,
    mac_key: bytes,
    chunk_size: int = CHUNK_SIZE,
) -> EncodeResult:
    """Encrypt ``plain`` into ``output`` using the content entry layout.

    ``output`` must be seekable, readable and writable; it is truncated and
    filled from offset 0. ``plain`` is read twice (digest, then encryption),
    so a non-seekable source is spooled to a temporary file first.

    Returns the SHA-256 digest of the plaintext, the header MAC and the
    number of plaintext bytes consumed.
    """
    check_key_material(encryption_key, iv, mac_key, require_mac_key=True)

    if not plain.seekable():
        with tempfile.TemporaryFile() as spool:
            shutil.copyfileobj(plain, spool, chunk_size)
            spool.seek(0)
            return encode(spool, output, encryption_key, iv, mac_key, chunk_size)

    digest = sha256_stream(plain, chunk_size)

    output.seek(0)
    output.truncate()
    output.write(b"\x00" * HEADER_SIZE)

    size = 0
    cipher = CipherStream(output, encryption_key, iv, CipherDirection.ENCRYPT, "w")
    while True:
        data = plain.read(chunk_size)
        if not data:
            break
        cipher.write(data)
        size += len(data)
    cipher.flush_final_block()

    output.seek(IV_OFFSET)
    output.write(iv)
    output.seek(IV_OFFSET)
    mac = hmac_sha256_stream(output, mac_key, chunk_size)

    output.seek(0)
    output.write(mac)
    output.flush()
    output.seek(0)

    logger.debug("Encoded %d plaintext bytes", size)
    return EncodeResult(digest=digest, mac=mac, size=size)


def _skip_header(content: BinaryIO) -> None:
    if content.seekable():
        content.seek(0)
    header = content.read(HEADER_SIZE)
    if len(header) != HEADER_SIZE:
        raise CorruptCiphertextError(
            f"Content entry is {len(header)} bytes, shorter than its {HEADER_SIZE}-byte header"
        )


def decode(
    content: BinaryIO,
    encryption_key: bytes,
    iv: bytes,
    chunk_size: int = CHUNK_SIZE,
) -> CipherStream:
    """Return a readable plaintext stream over an encoded content entry."""
    check_key_material(encryption_key, iv)
    _skip_header(content)
    return CipherStream(content, encryption_key, iv, CipherDirection.DECRYPT, "r", chunk_size)


def decode_to(
    content: BinaryIO,
    sink: BinaryIO,
    encryption_key: bytes,
    iv: bytes,
    chunk_size: int = CHUNK_SIZE,
) -> int:
    """Decrypt ``content`` into ``sink`` and return the number of plaintext bytes written."""
    written = 0
    with decode(content, encryption_key, iv, chunk_size) as plain:
        while True:
            data = plain.read(chunk_size)
            if not data:
                break
            sink.write(data)
            written += len(data)
    sink.flush()
    logger.debug("Decoded %d plaintext bytes", written)
    return written


def verify_mac(
    content: BinaryIO,
    mac_key: bytes,
    expected_mac: Optional[bytes] = None,
    chunk_size: int = CHUNK_SIZE,
) -> bool:
    """Recompute the MAC of an encoded content entry.

    True when the MAC stored at offset 0 matches bytes [32, EOF) and, if
    ``expected_mac`` is given, when that value matches as well.
    """
    check_mac_key(mac_key)
    if content.seekable():
        content.seek(0)
    stored = content.read(MAC_SIZE)
    if len(stored) != MAC_SIZE:
        return False

    mac = hmac.new(mac_key, digestmod=hashlib.sha256)
    while True:
        data = content.read(chunk_size)
        if not data:
            break
        mac.update(data)
    actual = mac.digest()

    if not hmac.compare_digest(stored, actual):
        return False
    if expected_mac is not None and not hmac.compare_digest(expected_mac, actual):
        return False
    return True
