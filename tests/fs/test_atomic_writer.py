"""Tests for single-file atomic writes and writer rollback."""

import os
from collections.abc import Callable
from pathlib import Path
from unittest.mock import patch

import pytest

from buildsafe.config import WriterConfig
from buildsafe.core.errors import (
    AtomicWriteError,
    RollbackError,
    TransactionStateError,
)
from buildsafe.fs import undo as undo_module
from buildsafe.fs.writer import AtomicFileWriter

Leftovers = Callable[[Path], list[str]]


@pytest.fixture
def writer() -> AtomicFileWriter:
    return AtomicFileWriter(WriterConfig())


class TestWriteFileAtomic:
    """Test the temp file + fsync + rename write path."""

    def test_write_then_overwrite_then_rollback(
        self, tmp_path: Path, writer: AtomicFileWriter, leftovers: Leftovers
    ) -> None:
        """Fresh write, overwrite, rollback back to the first content."""
        out = tmp_path / "x"
        out.mkdir()
        target = out / "a.txt"

        writer.write_file_atomic(target, "hello")

        assert target.read_text() == "hello"
        assert leftovers(out) == []
        summary = writer.get_operations_summary()
        assert summary.total == 1
        assert summary.completed == 1
        assert summary.types == {"write": 1}

        writer.finalize()

        second = AtomicFileWriter(WriterConfig())
        second.write_file_atomic(target, "world")
        assert target.read_text() == "world"
        assert len(leftovers(out)) == 1  # backup held until rollback/finalize

        second.rollback()

        assert target.read_text() == "hello"
        assert leftovers(out) == []

    def test_rollback_undoes_every_write_of_the_writer(
        self, tmp_path: Path, writer: AtomicFileWriter, leftovers: Leftovers
    ) -> None:
        """Both writes belong to one writer, so the file did not exist before."""
        target = tmp_path / "a.txt"

        writer.write_file_atomic(target, "hello")
        writer.write_file_atomic(target, "world")
        writer.rollback()

        assert not target.exists()
        assert leftovers(tmp_path) == []

    def test_rollback_restores_prior_bytes(
        self, tmp_path: Path, writer: AtomicFileWriter, leftovers: Leftovers
    ) -> None:
        """Rollback leaves the original bytes and no backup file behind."""
        target = tmp_path / "logo.bin"
        original = bytes(range(256))
        target.write_bytes(original)

        op = writer.write_file_atomic(target, b"\x00new")

        assert op.backup_path is not None
        assert op.backup_path.read_bytes() == original
        assert op.backup_path.name.startswith("logo.bin.backup-")

        writer.rollback()

        assert target.read_bytes() == original
        assert leftovers(tmp_path) == []

    def test_rollback_removes_new_file(
        self, tmp_path: Path, writer: AtomicFileWriter
    ) -> None:
        """A file that did not exist before is deleted by rollback."""
        target = tmp_path / "menu.json"

        op = writer.write_file_atomic(target, '{"items": []}')
        assert op.backup_path is None
        assert target.exists()

        writer.rollback()

        assert not target.exists()

    def test_str_content_uses_configured_encoding(self, tmp_path: Path) -> None:
        """Text content is encoded with the configured encoding."""
        writer = AtomicFileWriter(WriterConfig(encoding="latin-1"))
        target = tmp_path / "cafe.txt"

        writer.write_file_atomic(target, "Café")

        assert target.read_bytes() == "Café".encode("latin-1")

    def test_records_operation(self, tmp_path: Path, writer: AtomicFileWriter) -> None:
        """The returned operation is completed and drops the inline payload."""
        target = tmp_path / "page.html"

        op = writer.write_file_atomic(target, "<p>hi</p>")

        assert op.kind == "write"
        assert op.target == target
        assert op.completed is True
        assert op.content is None
        assert op.sequence == 1
        assert writer.operations == [op]

    @pytest.mark.skipif(os.name != "posix", reason="POSIX permission bits")
    def test_preserves_mode_of_replaced_file(
        self, tmp_path: Path, writer: AtomicFileWriter
    ) -> None:
        """Replacing a file keeps its permission bits."""
        target = tmp_path / "run.sh"
        target.write_text("echo old")
        os.chmod(target, 0o750)

        writer.write_file_atomic(target, "echo new")

        assert target.stat().st_mode & 0o777 == 0o750

    def test_accepts_bytes_like_content(
        self, tmp_path: Path, writer: AtomicFileWriter
    ) -> None:
        target = tmp_path / "logo.bin"

        writer.write_file_atomic(target, bytearray(b"\x89PNG"))
        writer.write_file_atomic(target, memoryview(b"GIF8"))

        assert target.read_bytes() == b"GIF8"

    @pytest.mark.parametrize("content", [3, None, ["<p>hi</p>"]])
    def test_rejects_non_text_content(
        self,
        tmp_path: Path,
        writer: AtomicFileWriter,
        leftovers: Leftovers,
        content: object,
    ) -> None:
        """Anything but str or bytes-like fails before the target is touched."""
        target = tmp_path / "index.html"
        target.write_text("old")

        with pytest.raises(TypeError, match="content must be str or bytes-like"):
            writer.write_file_atomic(target, content)  # type: ignore[arg-type]

        assert target.read_text() == "old"
        assert leftovers(tmp_path) == []
        assert writer.operations == []


@pytest.mark.skipif(os.name != "posix", reason="POSIX symlinks")
class TestSymlinkTargets:
    """Test that a symlink at the target is replaced and restored as a link."""

    def test_rollback_restores_the_link(
        self, tmp_path: Path, writer: AtomicFileWriter, leftovers: Leftovers
    ) -> None:
        real = tmp_path / "real.txt"
        real.write_text("C0")
        link = tmp_path / "link.txt"
        link.symlink_to(real)

        writer.write_file_atomic(link, "C1")

        assert not link.is_symlink()
        assert link.read_text() == "C1"
        assert real.read_text() == "C0"

        writer.rollback()

        assert link.is_symlink()
        assert os.readlink(link) == str(real)
        assert link.read_text() == "C0"
        assert leftovers(tmp_path) == []

    def test_dangling_link_can_be_replaced_and_restored(
        self, tmp_path: Path, writer: AtomicFileWriter, leftovers: Leftovers
    ) -> None:
        link = tmp_path / "latest.html"
        link.symlink_to(tmp_path / "missing.html")

        writer.write_file_atomic(link, "<h1>Now</h1>")

        assert link.read_text() == "<h1>Now</h1>"

        writer.rollback()

        assert link.is_symlink()
        assert os.readlink(link) == str(tmp_path / "missing.html")
        assert not link.exists()
        assert leftovers(tmp_path) == []

    def test_finalize_drops_link_backup(
        self, tmp_path: Path, writer: AtomicFileWriter, leftovers: Leftovers
    ) -> None:
        real = tmp_path / "real.txt"
        real.write_text("C0")
        link = tmp_path / "link.txt"
        link.symlink_to(real)

        writer.write_file_atomic(link, "C1")
        writer.finalize()

        assert leftovers(tmp_path) == []
        assert real.read_text() == "C0"
        assert link.read_text() == "C1"


class TestWriteFailures:
    """Test that failed writes leave no trace."""

    def test_rename_failure_keeps_old_content(
        self, tmp_path: Path, writer: AtomicFileWriter, leftovers: Leftovers
    ) -> None:
        """A crash before the rename leaves the original file untouched."""
        target = tmp_path / "index.html"
        target.write_text("old")

        with patch(
            "buildsafe.fs.writer.os.replace", side_effect=OSError("disk full")
        ):
            with pytest.raises(AtomicWriteError) as exc_info:
                writer.write_file_atomic(target, "new")

        assert target.read_text() == "old"
        assert leftovers(tmp_path) == []
        assert exc_info.value.path == target
        assert isinstance(exc_info.value.cause, OSError)
        assert "disk full" in str(exc_info.value)
        assert writer.operations == []

    def test_temp_write_failure_cleans_temp_file(
        self, tmp_path: Path, writer: AtomicFileWriter, leftovers: Leftovers
    ) -> None:
        """A failure while filling the temp file removes it and the backup."""
        target = tmp_path / "index.html"
        target.write_text("old")

        with patch.object(
            AtomicFileWriter, "_fill_temp", side_effect=OSError("No space left")
        ):
            with pytest.raises(AtomicWriteError):
                writer.write_file_atomic(target, "new")

        assert target.read_text() == "old"
        assert leftovers(tmp_path) == []

    def test_backup_failure_aborts_without_side_effects(
        self, tmp_path: Path, writer: AtomicFileWriter
    ) -> None:
        """If the backup copy fails, nothing is written."""
        target = tmp_path / "index.html"
        target.write_text("old")

        with patch(
            "buildsafe.fs.writer.shutil.copy2",
            side_effect=PermissionError("Permission denied"),
        ):
            with pytest.raises(AtomicWriteError, match="Failed to back up"):
                writer.write_file_atomic(target, "new")

        assert target.read_text() == "old"
        assert sorted(p.name for p in tmp_path.iterdir()) == ["index.html"]

    def test_existing_temp_name_is_not_overwritten(
        self, tmp_path: Path, writer: AtomicFileWriter
    ) -> None:
        """Exclusive creation refuses a temp name that is already taken."""
        target = tmp_path / "index.html"
        squatter = tmp_path / ".tmp-1-2-deadbeef"
        squatter.write_text("not ours")

        with patch("buildsafe.fs.writer.get_temp_path", return_value=squatter):
            with pytest.raises(AtomicWriteError) as exc_info:
                writer.write_file_atomic(target, "new")

        assert isinstance(exc_info.value.cause, FileExistsError)
        assert squatter.read_text() == "not ours"
        assert not target.exists()

    def test_strict_dir_sync_failure_reverts_write(
        self, tmp_path: Path, leftovers: Leftovers
    ) -> None:
        """With strict sync, a failed directory fsync undoes the rename."""
        writer = AtomicFileWriter(WriterConfig(strict_dir_sync=True))
        existing = tmp_path / "index.html"
        existing.write_text("old")
        fresh = tmp_path / "about.html"
        sync_error = AtomicWriteError(tmp_path, OSError("EIO"))

        with patch("buildsafe.fs.writer.sync_directory", side_effect=sync_error):
            with pytest.raises(AtomicWriteError):
                writer.write_file_atomic(existing, "new")
            with pytest.raises(AtomicWriteError):
                writer.write_file_atomic(fresh, "new")

        assert existing.read_text() == "old"
        assert not fresh.exists()
        assert leftovers(tmp_path) == []

    def test_missing_parent_directory(
        self, tmp_path: Path, writer: AtomicFileWriter
    ) -> None:
        """Writing into a directory that does not exist raises."""
        with pytest.raises(AtomicWriteError):
            writer.write_file_atomic(tmp_path / "missing" / "a.txt", "x")


class TestOtherOperations:
    """Test copy, mkdir and delete operations."""

    def test_copy_records_single_copy_operation(
        self, tmp_path: Path, writer: AtomicFileWriter
    ) -> None:
        source = tmp_path / "hero.jpg"
        source.write_bytes(b"\xff\xd8jpeg")
        target = tmp_path / "public" / "hero.jpg"
        target.parent.mkdir()

        op = writer.copy_file_atomic(source, target)

        assert target.read_bytes() == b"\xff\xd8jpeg"
        assert op.kind == "copy"
        assert op.source == source
        assert writer.get_operations_summary().types == {"copy": 1}

        writer.rollback()
        assert not target.exists()
        assert source.exists()

    def test_copy_missing_source(
        self, tmp_path: Path, writer: AtomicFileWriter
    ) -> None:
        with pytest.raises(AtomicWriteError, match="copy source"):
            writer.copy_file_atomic(tmp_path / "nope.jpg", tmp_path / "out.jpg")
        assert not (tmp_path / "out.jpg").exists()

    def test_mkdir_rollback_removes_created_ancestors(
        self, tmp_path: Path, writer: AtomicFileWriter
    ) -> None:
        target = tmp_path / "a" / "b" / "c"

        op = writer.mkdir_atomic(target)

        assert target.is_dir()
        assert op.created_root == tmp_path / "a"
        assert op.preexisting is False

        writer.rollback()
        assert not (tmp_path / "a").exists()

    def test_mkdir_existing_directory_is_left_alone(
        self, tmp_path: Path, writer: AtomicFileWriter
    ) -> None:
        target = tmp_path / "public"
        target.mkdir()
        (target / "keep.txt").write_text("keep")

        op = writer.mkdir_atomic(target)
        writer.rollback()

        assert op.preexisting is True
        assert (target / "keep.txt").read_text() == "keep"

    def test_delete_and_rollback(
        self, tmp_path: Path, writer: AtomicFileWriter, leftovers: Leftovers
    ) -> None:
        target = tmp_path / "stale.html"
        target.write_text("stale")

        op = writer.delete_file_atomic(target)

        assert not target.exists()
        assert op.backup_path is not None and op.backup_path.exists()

        writer.rollback()

        assert target.read_text() == "stale"
        assert leftovers(tmp_path) == []

    def test_delete_missing_file(
        self, tmp_path: Path, writer: AtomicFileWriter
    ) -> None:
        with pytest.raises(AtomicWriteError, match="Failed to delete"):
            writer.delete_file_atomic(tmp_path / "ghost.html")


class TestRollbackAndFinalize:
    """Test reverse-order undo and backup lifecycle."""

    def test_rollback_runs_in_reverse_order(
        self, tmp_path: Path, writer: AtomicFileWriter
    ) -> None:
        undone: list[str] = []

        def spy(op, **kwargs):  # type: ignore[no-untyped-def]
            undone.append(op.target.name)
            return undo_module.undo_operation(op, **kwargs)

        for name in ("a.txt", "b.txt", "c.txt"):
            writer.write_file_atomic(tmp_path / name, name)

        with patch("buildsafe.fs.writer.undo_operation", side_effect=spy):
            writer.rollback()

        assert undone == ["c.txt", "b.txt", "a.txt"]
        assert list(tmp_path.iterdir()) == []

    def test_repeated_writes_roll_back_to_original(
        self, tmp_path: Path, writer: AtomicFileWriter, leftovers: Leftovers
    ) -> None:
        target = tmp_path / "index.html"
        target.write_text("v0")

        for version in ("v1", "v2", "v3"):
            writer.write_file_atomic(target, version)

        writer.rollback()

        assert target.read_text() == "v0"
        assert leftovers(tmp_path) == []

    def test_rollback_collects_every_failure(
        self, tmp_path: Path, writer: AtomicFileWriter
    ) -> None:
        first = tmp_path / "a.txt"
        second = tmp_path / "b.txt"
        first.write_text("a0")
        second.write_text("b0")
        op_a = writer.write_file_atomic(first, "a1")
        op_b = writer.write_file_atomic(second, "b1")
        assert op_a.backup_path is not None and op_b.backup_path is not None
        op_a.backup_path.unlink()
        op_b.backup_path.unlink()

        with pytest.raises(RollbackError) as exc_info:
            writer.rollback()

        assert exc_info.value.paths == [second, first]
        assert len(exc_info.value.errors) == 2
        # targets whose backup vanished are not deleted
        assert first.read_text() == "a1"
        assert writer.operations == []

    def test_failed_restore_keeps_its_backup(
        self, tmp_path: Path, writer: AtomicFileWriter
    ) -> None:
        target = tmp_path / "index.html"
        target.write_text("old")
        op = writer.write_file_atomic(target, "new")
        assert op.backup_path is not None

        with patch("buildsafe.fs.undo.os.replace", side_effect=OSError("EBUSY")):
            with pytest.raises(RollbackError):
                writer.rollback()

        assert op.backup_path.read_text() == "old"
        assert target.read_text() == "new"

    def test_finalize_purges_backups(
        self, tmp_path: Path, writer: AtomicFileWriter, leftovers: Leftovers
    ) -> None:
        target = tmp_path / "index.html"
        target.write_text("old")
        writer.write_file_atomic(target, "new")
        writer.delete_file_atomic(target)

        writer.finalize()

        assert leftovers(tmp_path) == []
        assert not target.exists()
        summary = writer.get_operations_summary()
        assert summary.completed == summary.total == 2

        with pytest.raises(TransactionStateError):
            writer.rollback()
        with pytest.raises(TransactionStateError):
            writer.write_file_atomic(target, "again")
