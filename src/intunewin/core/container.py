"""
ContainerFile: create, open, embed into and extract from IntuneWin files.

A container is a ZIP envelope with two managed entries:
  - IntuneWinPackage/Metadata/Detection.xml  (the ApplicationInfo record)
  - IntuneWinPackage/Contents/{FileName}     (the encrypted payload)

The handle owns its PackageMetadata. Every mutation goes through the
handle's methods and is followed by a metadata rewrite.

A handle is not safe for concurrent use; callers serialize embed/extract.
"""

from __future__ import annotations

import asyncio
import copy
import logging
import os
import tempfile
import zipfile
import zlib
from pathlib import Path
from typing import BinaryIO, Optional, Union

from intunewin.config import Settings, load_settings
from intunewin.security import codec
from intunewin.security.crypto import check_key_material, generate_iv, generate_key
from .envelope import EnvelopeManager
from .exceptions import (
    ContainerClosedError,
    EntryNotFoundError,
    IntegrityCheckFailedError,
    IntuneWinError,
    InvalidContainerError,
)
from .metadata import METADATA_ENTRY_PATH, content_entry_path, parse_metadata, serialize_metadata
from .models import EncryptionInfo, PackageMetadata


logger = logging.getLogger(__name__)

PathOrStream = Union[str, os.PathLike, BinaryIO]

# failures reading a foreign file that are reported as InvalidContainerError
_READ_FAILURES = (
    IntuneWinError,
    zipfile.BadZipFile,
    zlib.error,
    EOFError,
)


def _is_path(value) -> bool:
    return isinstance(value, (str, os.PathLike))


async def _run_to_completion(func, *args):
    loop = asyncio.get_running_loop()
    future = loop.run_in_executor(None, func, *args)
    try:
        return await asyncio.shield(future)
    except asyncio.CancelledError:
        # the thread keeps using the envelope; hold the caller until it is done
        while not future.done():
            try:
                await asyncio.wait({future})
            except asyncio.CancelledError:
                continue
        if not future.cancelled() and future.exception() is not None:
            logger.warning("Cancelled operation also failed: %s", future.exception())
        raise


class ContainerFile:
    """Handle over one IntuneWin container file."""

    def __init__(
        self,
        envelope: EnvelopeManager,
        metadata: PackageMetadata,
        settings: Optional[Settings] = None,
    ):
        self._envelope = envelope
        self._metadata = metadata
        self._settings = settings or load_settings()
        self.closed = False

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def create(
        cls,
        target: PathOrStream,
        name: str,
        description: str,
        file_name: str,
        setup_file: str,
        settings: Optional[Settings] = None,
    ) -> "ContainerFile":
        """Create a new container with fresh key material.

        An existing file at ``target`` is replaced. ``target`` may also be an
        open read/write binary handle, which is truncated first.
        """
        settings = settings or load_settings()
        if _is_path(target):
            path = Path(target)
            if path.exists():
                path.unlink()
        else:
            target.seek(0)
            target.truncate()

        metadata = PackageMetadata(
            name=name,
            description=description,
            file_name=file_name,
            setup_file=setup_file,
            tool_version=settings.tool_version,
            encryption_info=EncryptionInfo(
                encryption_key=generate_key(),
                mac_key=generate_key(),
                initialization_vector=generate_iv(),
            ),
        )

        envelope = EnvelopeManager.open_or_create(target)
        container = cls(envelope, metadata, settings)
        try:
            container._save_metadata()
        except BaseException:
            envelope.close()
            raise
        logger.info("Created container %r (content entry %s)", name, file_name)
        return container

    @classmethod
    def open(cls, target: PathOrStream, settings: Optional[Settings] = None) -> "ContainerFile":
        """Open an existing container from a path or a seekable read/write handle.

        Any failure (missing file, not a ZIP, no metadata entry, unparsable
        metadata) raises InvalidContainerError carrying the original cause.
        """
        envelope: Optional[EnvelopeManager] = None
        try:
            if _is_path(target):
                envelope = EnvelopeManager(open(target, "r+b"), owns_handle=True, create_if_empty=False)
            else:
                envelope = EnvelopeManager(target, create_if_empty=False)
            if not envelope.has_entry(METADATA_ENTRY_PATH):
                raise EntryNotFoundError(METADATA_ENTRY_PATH)
            metadata = parse_metadata(envelope.read_entry(METADATA_ENTRY_PATH))
        except InvalidContainerError:
            if envelope is not None:
                envelope.close()
            raise
        except (OSError, ValueError, *_READ_FAILURES) as exc:
            if envelope is not None:
                envelope.close()
            raise InvalidContainerError(cause=exc) from exc

        logger.info("Opened container %r (%d bytes of content)", metadata.name, metadata.unencrypted_content_size)
        return cls(envelope, metadata, settings)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def metadata(self) -> PackageMetadata:
        return self._metadata

    @property
    def content_entry_path(self) -> str:
        if not self._metadata.file_name:
            raise InvalidContainerError("Metadata does not name a content file")
        return content_entry_path(self._metadata.file_name)

    def _require_open(self) -> None:
        if self.closed:
            raise ContainerClosedError()

    def close(self) -> None:
        """Release the envelope and any handle it owns."""
        if self.closed:
            return
        self.closed = True
        self._envelope.close()

    def __enter__(self) -> "ContainerFile":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _save_metadata(self) -> None:
        self._envelope.write_entry(METADATA_ENTRY_PATH, serialize_metadata(self._metadata))

    # ------------------------------------------------------------------
    # Embed
    # ------------------------------------------------------------------

    def embed(self, source: PathOrStream) -> None:
        """Encrypt ``source`` (path or readable binary stream) into the content entry.

        The payload is encoded into a temporary file first and swapped into
        the archive, together with the updated metadata entry, in a single
        rebuild once the cipher pass is complete. The metadata entry is
        rewritten whether or not the embed succeeds.
        """
        self._require_open()
        if _is_path(source):
            with open(source, "rb") as f:
                self.embed(f)
            return

        info = self._metadata.encryption_info
        check_key_material(
            info.encryption_key, info.initialization_vector, info.mac_key, require_mac_key=True
        )
        entry = self.content_entry_path

        saved = False
        try:
            with tempfile.TemporaryFile() as scratch:
                result = codec.encode(
                    source,
                    scratch,
                    info.encryption_key,
                    info.initialization_vector,
                    info.mac_key,
                    self._settings.chunk_size,
                )

                staged = copy.deepcopy(self._metadata)
                staged.unencrypted_content_size = result.size
                staged.encryption_info.file_digest = result.digest
                staged.encryption_info.mac = result.mac
                self._envelope.write_entries(
                    {entry: scratch, METADATA_ENTRY_PATH: serialize_metadata(staged)}
                )
                saved = True

            self._metadata.unencrypted_content_size = result.size
            info.file_digest = result.digest
            info.mac = result.mac

            logger.info("Embedded %d bytes into %s", result.size, entry)
        finally:
            if not saved:
                self._save_metadata()

    async def embed_async(self, source: PathOrStream) -> None:
        """Run :meth:`embed` in the default executor.

        Cancelling the await does not interrupt the worker thread; the
        CancelledError is raised once the embed has run to completion, so a
        surrounding ``with`` block closes a consistent archive.
        """
        await _run_to_completion(self.embed, source)

    # ------------------------------------------------------------------
    # Extract
    # ------------------------------------------------------------------

    def extract(self, destination: PathOrStream, verify_mac: bool = False) -> int:
        """Decrypt the content entry into ``destination`` and return the bytes written.

        ``destination`` is a path (created or overwritten, removed again on
        failure) or a writable binary stream, which is left open.
        With ``verify_mac`` the stored MAC is checked before any plaintext
        is written.
        """
        self._require_open()
        if _is_path(destination):
            path = Path(destination)
            try:
                with open(path, "wb") as f:
                    return self.extract(f, verify_mac=verify_mac)
            except BaseException:
                path.unlink(missing_ok=True)
                raise

        info = self._metadata.encryption_info
        try:
            entry = self.content_entry_path
            check_key_material(info.encryption_key, info.initialization_vector)
            if verify_mac and not self._verify_content():
                raise IntegrityCheckFailedError()
            with self._envelope.open_entry(entry) as content:
                written = codec.decode_to(
                    content,
                    destination,
                    info.encryption_key,
                    info.initialization_vector,
                    self._settings.chunk_size,
                )
        except InvalidContainerError:
            raise
        except _READ_FAILURES as exc:
            raise InvalidContainerError(cause=exc) from exc

        if written != self._metadata.unencrypted_content_size:
            logger.warning(
                "Extracted %d bytes but metadata records %d",
                written,
                self._metadata.unencrypted_content_size,
            )
        logger.info("Extracted %d bytes from %s", written, entry)
        return written

    async def extract_async(self, destination: PathOrStream, verify_mac: bool = False) -> int:
        """Run :meth:`extract` in the default executor (see :meth:`embed_async` on cancellation)."""
        return await _run_to_completion(self.extract, destination, verify_mac)

    # ------------------------------------------------------------------
    # Opt-in integrity check
    # ------------------------------------------------------------------

    def _verify_content(self) -> bool:
        info = self._metadata.encryption_info
        with self._envelope.open_entry(self.content_entry_path) as content:
            return codec.verify_mac(content, info.mac_key, info.mac, self._settings.chunk_size)

    def verify(self) -> bool:
        """Check the content entry against its stored MAC and the metadata MAC."""
        self._require_open()
        try:
            return self._verify_content()
        except InvalidContainerError:
            raise
        except _READ_FAILURES as exc:
            raise InvalidContainerError(cause=exc) from exc
