"""
ZIP envelope handling for IntuneWin containers

The envelope owns one seekable read/write handle and a zipfile.ZipFile
opened on it in append mode, so existing entries can be read while new ones
are written. zipfile cannot delete members; removing an entry rebuilds the
archive without it through a scratch file and writes the result back into
the same handle. Several entries can be swapped in one such rebuild.

Mutations and close() share a lock, so closing from another thread waits
for a write in progress instead of abandoning the central directory.

Only two entries are ever managed here: the metadata entry and the content
entry. Other members of the archive are carried over untouched.
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
import threading
import time
import zipfile
from contextlib import contextmanager
from pathlib import Path
from typing import BinaryIO, Dict, Iterator, List, Optional, Union

from .exceptions import ArchiveCorruptError, ContainerClosedError, EntryNotFoundError
from .hashing import CHUNK_SIZE


logger = logging.getLogger(__name__)

PathOrHandle = Union[str, os.PathLike, BinaryIO]
Source = Union[bytes, BinaryIO]

# leave headroom for deflate expansion of incompressible ciphertext
_ZIP64_THRESHOLD = zipfile.ZIP64_LIMIT - zipfile.ZIP64_LIMIT // 64


def _needs_zip64(size_hint: Optional[int]) -> bool:
    return size_hint is None or size_hint >= _ZIP64_THRESHOLD


def _clone_info(info: zipfile.ZipInfo) -> zipfile.ZipInfo:
    clone = zipfile.ZipInfo(info.filename, date_time=info.date_time)
    clone.compress_type = info.compress_type
    clone.external_attr = info.external_attr
    clone.create_system = info.create_system
    clone.comment = info.comment
    return clone


def _source_size(source: Source) -> Optional[int]:
    if isinstance(source, (bytes, bytearray)):
        return len(source)
    if not source.seekable():
        return None
    start = source.tell()
    size = source.seek(0, os.SEEK_END) - start
    source.seek(start)
    return size


def _copy_source(source: Source, entry: BinaryIO) -> None:
    if isinstance(source, (bytes, bytearray)):
        entry.write(source)
    else:
        shutil.copyfileobj(source, entry, CHUNK_SIZE)


class EnvelopeManager:
    """Read/write access to the entries of a ZIP envelope."""

    def __init__(
        self,
        handle: BinaryIO,
        owns_handle: bool = False,
        compression: int = zipfile.ZIP_DEFLATED,
        create_if_empty: bool = True,
    ):
        for check in ("seekable", "readable", "writable"):
            if not getattr(handle, check)():
                raise ValueError(f"Envelope handle must be seekable, readable and writable ({check} failed)")

        self._handle = handle
        self._owns_handle = owns_handle
        self._compression = compression
        self._create_if_empty = create_if_empty
        self._archive: Optional[zipfile.ZipFile] = None
        self._lock = threading.RLock()
        self.closed = False

        try:
            self._archive = self._load_archive()
        except BaseException:
            if owns_handle:
                handle.close()
            raise

    @classmethod
    def open_or_create(cls, target: PathOrHandle, **kwargs) -> "EnvelopeManager":
        """Open the archive at ``target``, creating an empty one if it does not exist.

        ``target`` is a filesystem path or an already-open binary handle; a path
        is opened (and later closed) by the manager, a handle is left to the caller.
        """
        if isinstance(target, (str, os.PathLike)):
            path = Path(target)
            handle = open(path, "r+b") if path.exists() else open(path, "w+b")
            return cls(handle, owns_handle=True, **kwargs)
        return cls(target, **kwargs)

    # ------------------------------------------------------------------
    # Archive lifecycle
    # ------------------------------------------------------------------

    def _load_archive(self) -> zipfile.ZipFile:
        size = self._handle.seek(0, os.SEEK_END)
        self._handle.seek(0)
        if size == 0 and self._create_if_empty:
            logger.debug("Creating new envelope")
            return zipfile.ZipFile(self._handle, "w", compression=self._compression)

        # mode "a" silently appends to non-ZIP data, so validate in read mode first
        try:
            with zipfile.ZipFile(self._handle, "r"):
                pass
        except (zipfile.BadZipFile, EOFError, ValueError) as exc:
            raise ArchiveCorruptError("Backing file is not a valid ZIP archive", exc) from exc
        self._handle.seek(0)
        return zipfile.ZipFile(self._handle, "a", compression=self._compression)

    def _require_open(self) -> zipfile.ZipFile:
        if self.closed or self._archive is None:
            raise ContainerClosedError("Envelope is closed")
        return self._archive

    def close(self) -> None:
        """Write the central directory and release the backing handle.

        Blocks until a write running on another thread has finished.
        """
        with self._lock:
            if self.closed:
                return
            self.closed = True
            try:
                if self._archive is not None:
                    self._archive.close()
            finally:
                self._archive = None
                if self._owns_handle:
                    self._handle.close()
                else:
                    self._handle.flush()

    def __enter__(self) -> "EnvelopeManager":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Entries
    # ------------------------------------------------------------------

    def has_entry(self, name: str) -> bool:
        archive = self._require_open()
        try:
            archive.getinfo(name)
        except KeyError:
            return False
        return True

    def entry_size(self, name: str) -> int:
        """Uncompressed size of entry ``name``."""
        archive = self._require_open()
        try:
            return archive.getinfo(name).file_size
        except KeyError as exc:
            raise EntryNotFoundError(name, exc) from exc

    def open_entry(self, name: str) -> BinaryIO:
        """Return a readable stream over entry ``name``."""
        archive = self._require_open()
        try:
            return archive.open(name, "r")
        except KeyError as exc:
            raise EntryNotFoundError(name, exc) from exc

    def _new_info(self, name: str) -> zipfile.ZipInfo:
        info = zipfile.ZipInfo(name, date_time=time.localtime()[:6])
        info.compress_type = self._compression
        info.external_attr = 0o644 << 16
        return info

    @contextmanager
    def replace_entry(self, name: str, size_hint: Optional[int] = None) -> Iterator[BinaryIO]:
        """Yield a writable stream for a fresh entry ``name``.

        An existing entry of that name is removed first. If the body of the
        ``with`` block raises, the partially written entry is removed again.
        The envelope cannot be closed until the block has finished.
        """
        with self._lock:
            archive = self._require_open()
            if self.has_entry(name):
                self.delete_entry(name)
                archive = self._require_open()

            try:
                with archive.open(self._new_info(name), "w", force_zip64=_needs_zip64(size_hint)) as entry:
                    yield entry
            except BaseException:
                if not self.closed and self.has_entry(name):
                    logger.debug("Dropping partially written entry %s", name)
                    self.delete_entry(name)
                raise
            logger.debug("Wrote entry %s", name)

    def write_entry(self, name: str, source: Source) -> None:
        """Replace entry ``name`` with ``source`` (bytes or a readable stream)."""
        with self._lock:
            if self.has_entry(name):
                self.write_entries({name: source})
                return
            with self.replace_entry(name, size_hint=_source_size(source)) as entry:
                _copy_source(source, entry)

    def write_entries(self, entries: Dict[str, Source]) -> None:
        """Replace or add several entries with a single rebuild of the archive.

        The new archive is assembled in a scratch file; the backing handle is
        only rewritten once every entry has been copied, so a failing source
        leaves the envelope as it was.
        """
        with self._lock:
            archive = self._require_open()
            keep = [info for info in archive.infolist() if info.filename not in entries]
            self._rebuild(archive, keep, entries)
            logger.debug("Wrote entries %s", ", ".join(entries))

    def read_entry(self, name: str) -> bytes:
        with self.open_entry(name) as entry:
            return entry.read()

    def delete_entry(self, name: str) -> None:
        """Remove entry ``name`` by rebuilding the archive without it."""
        with self._lock:
            archive = self._require_open()
            if not self.has_entry(name):
                raise EntryNotFoundError(name)

            keep = [info for info in archive.infolist() if info.filename != name]
            self._rebuild(archive, keep, {})
            logger.debug("Deleted entry %s", name)

    def _rebuild(self, archive: zipfile.ZipFile, keep: List[zipfile.ZipInfo], additions: Dict[str, Source]) -> None:
        with tempfile.TemporaryFile() as scratch:
            with zipfile.ZipFile(scratch, "w", compression=self._compression) as rebuilt:
                for info in keep:
                    with archive.open(info, "r") as src, rebuilt.open(
                        _clone_info(info), "w", force_zip64=_needs_zip64(info.file_size)
                    ) as dst:
                        shutil.copyfileobj(src, dst, CHUNK_SIZE)
                for name, source in additions.items():
                    with rebuilt.open(
                        self._new_info(name), "w", force_zip64=_needs_zip64(_source_size(source))
                    ) as dst:
                        _copy_source(source, dst)

            archive.close()
            self._archive = None
            self._handle.seek(0)
            self._handle.truncate()
            scratch.seek(0)
            shutil.copyfileobj(scratch, self._handle, CHUNK_SIZE)
            self._handle.flush()

        self._handle.seek(0)
        self._archive = zipfile.ZipFile(self._handle, "a", compression=self._compression)
