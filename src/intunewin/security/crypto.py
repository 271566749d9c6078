"""Streaming AES-256-CBC primitives used by the content codec.

The cipher is exposed as a small transform object that either writes through
into a sink (``mode="w"``) or reads through from a source (``mode="r"``).
PKCS7 padding is added when an encrypting stream is finalized and stripped
when a decrypting stream reaches its final block.

Every call builds its own cipher context; nothing here is shared between
container handles.
"""
from __future__ import annotations

import os
from enum import Enum
from typing import BinaryIO, Optional

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from intunewin.core.exceptions import CorruptCiphertextError, InvalidKeyMaterialError
from intunewin.core.hashing import CHUNK_SIZE


KEY_SIZE = 32
MAC_KEY_SIZE = 32
IV_SIZE = 16
BLOCK_SIZE = 16


class CipherDirection(Enum):
    ENCRYPT = "encrypt"
    DECRYPT = "decrypt"


def generate_key() -> bytes:
    return os.urandom(KEY_SIZE)


def generate_iv() -> bytes:
    return os.urandom(IV_SIZE)


def check_key_material(
    encryption_key: Optional[bytes],
    iv: Optional[bytes],
    mac_key: Optional[bytes] = None,
    require_mac_key: bool = False,
) -> None:
    """Raise InvalidKeyMaterialError unless every required value has its fixed length."""
    if not encryption_key or len(encryption_key) != KEY_SIZE:
        raise InvalidKeyMaterialError(f"Encryption key must be {KEY_SIZE} bytes")
    if not iv or len(iv) != IV_SIZE:
        raise InvalidKeyMaterialError(f"Initialization vector must be {IV_SIZE} bytes")
    if require_mac_key or mac_key is not None:
        check_mac_key(mac_key)


def check_mac_key(mac_key: Optional[bytes]) -> None:
    if not mac_key or len(mac_key) != MAC_KEY_SIZE:
        raise InvalidKeyMaterialError(f"MAC key must be {MAC_KEY_SIZE} bytes")


class CipherStream:
    """AES-256-CBC transform over another binary stream.

    In write mode every ``write`` pushes transformed bytes into the wrapped
    sink and :meth:`flush_final_block` emits the last block. In read mode
    ``read`` pulls from the wrapped source and finalizes on EOF.

    Closing a CipherStream finalizes it but leaves the wrapped stream open.
    """

    def __init__(
        self,
        stream: BinaryIO,
        key: bytes,
        iv: bytes,
        direction: CipherDirection = CipherDirection.ENCRYPT,
        mode: str = "w",
        chunk_size: int = CHUNK_SIZE,
    ):
        if mode not in ("r", "w"):
            raise ValueError(f"Unsupported cipher stream mode: {mode!r}")
        check_key_material(key, iv)

        self._stream = stream
        self._direction = direction
        self._mode = mode
        self._chunk_size = chunk_size
        self._buffer = bytearray()
        self._finalized = False
        self.closed = False

        cipher = Cipher(algorithms.AES(key), modes.CBC(iv))
        if direction is CipherDirection.ENCRYPT:
            self._context = cipher.encryptor()
            self._padding = padding.PKCS7(BLOCK_SIZE * 8).padder()
        else:
            self._context = cipher.decryptor()
            self._padding = padding.PKCS7(BLOCK_SIZE * 8).unpadder()

    # ------------------------------------------------------------------
    # Transform helpers
    # ------------------------------------------------------------------

    def _update(self, data: bytes) -> bytes:
        if self._direction is CipherDirection.ENCRYPT:
            return self._context.update(self._padding.update(data))
        return self._padding.update(self._context.update(data))

    def _finalize(self) -> bytes:
        self._finalized = True
        try:
            if self._direction is CipherDirection.ENCRYPT:
                return self._context.update(self._padding.finalize()) + self._context.finalize()
            tail = self._padding.update(self._context.finalize())
            return tail + self._padding.finalize()
        except ValueError as exc:
            # cryptography reports a partial block or bad padding as ValueError
            raise CorruptCiphertextError("Cipher could not finalize the final block", exc) from exc

    # ------------------------------------------------------------------
    # Stream protocol
    # ------------------------------------------------------------------

    def readable(self) -> bool:
        return self._mode == "r"

    def writable(self) -> bool:
        return self._mode == "w"

    def seekable(self) -> bool:
        return False

    def write(self, data: bytes) -> int:
        if self._mode != "w":
            raise OSError("CipherStream not opened for writing")
        if self._finalized:
            raise ValueError("write to a finalized CipherStream")
        out = self._update(bytes(data))
        if out:
            self._stream.write(out)
        return len(data)

    def flush(self) -> None:
        if self._mode == "w":
            self._stream.flush()

    def flush_final_block(self) -> None:
        """Emit the padded final block into the sink (write mode only)."""
        if self._mode != "w" or self._finalized:
            return
        out = self._finalize()
        if out:
            self._stream.write(out)
        self._stream.flush()

    def read(self, size: int = -1) -> bytes:
        if self._mode != "r":
            raise OSError("CipherStream not opened for reading")
        while (size is None or size < 0 or len(self._buffer) < size) and not self._finalized:
            chunk = self._stream.read(self._chunk_size)
            if chunk:
                self._buffer += self._update(chunk)
            else:
                self._buffer += self._finalize()
        if size is None or size < 0:
            out = bytes(self._buffer)
            self._buffer.clear()
        else:
            out = bytes(self._buffer[:size])
            del self._buffer[:size]
        return out

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        if self._mode == "w":
            self.flush_final_block()

    def __enter__(self) -> "CipherStream":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is not None:
            # do not mask the original failure with a finalize error
            self.closed = True
            return
        self.close()
