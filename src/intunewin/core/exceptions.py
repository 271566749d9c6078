"""
Exceptions for the IntuneWin container library
Every error carries an ErrorKind so callers can branch without string checks
"""

from enum import Enum
from typing import Optional


class ErrorKind(Enum):
    INVALID_CONTAINER = "invalid_container"
    INVALID_KEY_MATERIAL = "invalid_key_material"
    CORRUPT_CIPHERTEXT = "corrupt_ciphertext"
    ENTRY_NOT_FOUND = "entry_not_found"
    ARCHIVE_CORRUPT = "archive_corrupt"
    INTEGRITY_CHECK_FAILED = "integrity_check_failed"
    CONTAINER_CLOSED = "container_closed"


class IntuneWinError(Exception):
    # general container for errors
    kind: ErrorKind = ErrorKind.INVALID_CONTAINER
    default_message = "IntuneWin error"

    def __init__(self, message: str = "", cause: Optional[BaseException] = None):
        super().__init__(message or self.default_message)
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause


class InvalidContainerError(IntuneWinError):
    # raised when a file is not a usable container (wraps the structural cause)
    kind = ErrorKind.INVALID_CONTAINER
    default_message = "Malformed IntuneWin file"


class InvalidKeyMaterialError(IntuneWinError):
    # raised when a key, IV or MAC key is missing or has the wrong length
    kind = ErrorKind.INVALID_KEY_MATERIAL
    default_message = "Invalid key material"


class CorruptCiphertextError(IntuneWinError):
    # raised when the cipher cannot finalize (bad padding, truncated data)
    kind = ErrorKind.CORRUPT_CIPHERTEXT
    default_message = "Corrupt ciphertext"


class EntryNotFoundError(IntuneWinError):
    # raised when an archive path DNE
    kind = ErrorKind.ENTRY_NOT_FOUND
    default_message = "Archive entry not found"

    def __init__(self, entry_name: str, cause: Optional[BaseException] = None):
        super().__init__(f"Entry is not present in file: {entry_name}", cause)
        self.entry_name = entry_name


class ArchiveCorruptError(IntuneWinError):
    # raised when the backing ZIP structure is unreadable
    kind = ErrorKind.ARCHIVE_CORRUPT
    default_message = "Archive is not a valid ZIP file"


class IntegrityCheckFailedError(IntuneWinError):
    # raised on a MAC mismatch (only when verification is requested)
    kind = ErrorKind.INTEGRITY_CHECK_FAILED
    default_message = "Content MAC does not match"


class ContainerClosedError(IntuneWinError):
    # raised when a closed handle is used
    kind = ErrorKind.CONTAINER_CLOSED
    default_message = "Container file is closed"
