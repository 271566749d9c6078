"""Security helpers: AES-256-CBC cipher streams and the content codec for IntuneWin.

This package provides:
- random key and IV generation
- a streaming AES-256-CBC transform with PKCS7 padding
- the encrypted content entry codec (MAC, IV, ciphertext)

Every call builds its own cipher and hash objects; nothing is shared between
container handles.
"""

from .crypto import (
    CipherDirection,
    CipherStream,
    check_key_material,
    generate_iv,
    generate_key,
)
from .codec import EncodeResult, decode, decode_to, encode, verify_mac

__all__ = [
    "CipherDirection",
    "CipherStream",
    "check_key_material",
    "generate_iv",
    "generate_key",
    "EncodeResult",
    "encode",
    "decode",
    "decode_to",
    "verify_mac",
]
