"""Unit tests for the ZIP envelope manager."""

import io
import threading
import zipfile
from pathlib import Path

import pytest

from intunewin.core.envelope import EnvelopeManager
from intunewin.core.exceptions import (
    ArchiveCorruptError,
    ContainerClosedError,
    EntryNotFoundError,
)


@pytest.fixture
def envelope(tmp_path):
    """Return an EnvelopeManager over a new archive in tmp_path."""
    env = EnvelopeManager.open_or_create(tmp_path / "box.zip")
    yield env
    env.close()


def _names(path: Path):
    with zipfile.ZipFile(path) as zf:
        return zf.namelist()


def test_open_or_create_new_file(tmp_path):
    path = tmp_path / "new.zip"
    with EnvelopeManager.open_or_create(path) as env:
        assert not env.has_entry("anything")
    assert path.exists()
    assert zipfile.is_zipfile(path)


def test_open_or_create_rejects_non_zip(tmp_path):
    path = tmp_path / "garbage.zip"
    path.write_bytes(b"this is not a zip archive at all" * 10)
    with pytest.raises(ArchiveCorruptError) as excinfo:
        EnvelopeManager.open_or_create(path)
    assert isinstance(excinfo.value.cause, zipfile.BadZipFile)
    # the rejected file is left as it was
    assert path.read_bytes() == b"this is not a zip archive at all" * 10


def test_empty_handle_rejected_when_creation_disabled():
    with pytest.raises(ArchiveCorruptError):
        EnvelopeManager(io.BytesIO(), create_if_empty=False)


def test_handle_must_be_writable(tmp_path):
    path = tmp_path / "ro.zip"
    with zipfile.ZipFile(path, "w") as zf:
        zf.writestr("a", "b")
    with open(path, "rb") as fh:
        with pytest.raises(ValueError):
            EnvelopeManager(fh)


def test_write_and_read_entry(tmp_path, envelope):
    envelope.write_entry("dir/a.txt", b"hello")
    assert envelope.has_entry("dir/a.txt")
    assert envelope.read_entry("dir/a.txt") == b"hello"
    assert envelope.entry_size("dir/a.txt") == 5


def test_write_entry_from_stream(envelope):
    envelope.write_entry("blob.bin", io.BytesIO(b"\x00\x01" * 5000))
    with envelope.open_entry("blob.bin") as entry:
        assert entry.read() == b"\x00\x01" * 5000


def test_replace_entry_keeps_single_copy(tmp_path):
    path = tmp_path / "replace.zip"
    with EnvelopeManager.open_or_create(path) as env:
        env.write_entry("meta.xml", b"first")
        env.write_entry("other.bin", b"keep me")
        env.write_entry("meta.xml", b"second")
        assert env.read_entry("meta.xml") == b"second"
        assert env.read_entry("other.bin") == b"keep me"

    names = _names(path)
    assert names.count("meta.xml") == 1
    assert sorted(names) == ["meta.xml", "other.bin"]


def test_replace_entry_drops_partial_write_on_error(envelope):
    envelope.write_entry("payload", b"old")
    with pytest.raises(RuntimeError):
        with envelope.replace_entry("payload") as entry:
            entry.write(b"half")
            raise RuntimeError("cancelled")
    assert not envelope.has_entry("payload")


def test_delete_entry(envelope):
    envelope.write_entry("a", b"1")
    envelope.write_entry("b", b"2")
    envelope.delete_entry("a")
    assert not envelope.has_entry("a")
    assert envelope.read_entry("b") == b"2"


def test_delete_last_entry_leaves_valid_archive(tmp_path):
    path = tmp_path / "single.zip"
    with EnvelopeManager.open_or_create(path) as env:
        env.write_entry("only", b"x")
        env.delete_entry("only")
    assert zipfile.is_zipfile(path)
    assert _names(path) == []


def test_missing_entry_raises(envelope):
    with pytest.raises(EntryNotFoundError) as excinfo:
        envelope.open_entry("nope")
    assert excinfo.value.entry_name == "nope"
    with pytest.raises(EntryNotFoundError):
        envelope.delete_entry("nope")
    with pytest.raises(EntryNotFoundError):
        envelope.entry_size("nope")


def test_reopen_existing_archive(tmp_path):
    path = tmp_path / "persist.zip"
    with EnvelopeManager.open_or_create(path) as env:
        env.write_entry("kept", b"data")
    with EnvelopeManager.open_or_create(path) as env:
        assert env.read_entry("kept") == b"data"
        env.write_entry("added", b"more")
    assert sorted(_names(path)) == ["added", "kept"]


def test_caller_handle_stays_open():
    handle = io.BytesIO()
    env = EnvelopeManager(handle)
    env.write_entry("x", b"y")
    env.close()
    assert not handle.closed
    with zipfile.ZipFile(io.BytesIO(handle.getvalue())) as zf:
        assert zf.read("x") == b"y"


def test_owned_handle_closed(tmp_path):
    fh = open(tmp_path / "own.zip", "w+b")
    env = EnvelopeManager(fh, owns_handle=True)
    env.close()
    assert fh.closed


def test_operations_after_close_raise(envelope):
    envelope.close()
    envelope.close()
    with pytest.raises(ContainerClosedError):
        envelope.has_entry("x")
    with pytest.raises(ContainerClosedError):
        envelope.write_entry("x", b"y")


def test_write_entries_swaps_several_entries_in_one_pass(tmp_path):
    path = tmp_path / "batch.zip"
    with EnvelopeManager.open_or_create(path) as env:
        env.write_entry("meta.xml", b"<old/>")
        env.write_entry("payload", b"old payload")
        env.write_entry("other.bin", b"untouched")
        env.write_entries({"payload": io.BytesIO(b"new payload"), "meta.xml": b"<new/>"})
        assert env.read_entry("payload") == b"new payload"
        assert env.read_entry("meta.xml") == b"<new/>"
    assert sorted(_names(path)) == ["meta.xml", "other.bin", "payload"]


def test_write_entries_failure_leaves_archive_intact(envelope):
    envelope.write_entry("payload", b"old")

    class Broken(io.BytesIO):
        def read(self, size=-1):
            raise OSError("source went away")

    with pytest.raises(OSError):
        envelope.write_entries({"payload": Broken(b"x")})
    assert envelope.read_entry("payload") == b"old"


def test_close_waits_for_write_in_progress(tmp_path):
    path = tmp_path / "busy.zip"
    env = EnvelopeManager.open_or_create(path)
    writing = threading.Event()
    release = threading.Event()

    def writer():
        with env.replace_entry("slow.bin") as entry:
            entry.write(b"first half ")
            writing.set()
            release.wait(5)
            entry.write(b"second half")

    write_thread = threading.Thread(target=writer)
    write_thread.start()
    assert writing.wait(5)

    close_thread = threading.Thread(target=env.close)
    close_thread.start()
    close_thread.join(0.2)
    assert close_thread.is_alive()

    release.set()
    write_thread.join(5)
    close_thread.join(5)
    assert env.closed
    with zipfile.ZipFile(path) as zf:
        assert zf.read("slow.bin") == b"first half second half"
