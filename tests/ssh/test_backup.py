"""Tests for sshkeeper.ssh.backup module."""

import io
import os
import re
import stat
import tarfile
from datetime import datetime, timezone
from pathlib import Path

import pytest

from sshkeeper.core.errors import (
    BackupNotFoundError,
    InvalidBackupNameError,
    InvalidInputError,
    StorageError,
)
from sshkeeper.core.paths import SSHDir
from sshkeeper.ssh.backup import (
    BACKUP_SUFFIX,
    BackupManager,
    backup_filename,
    validate_backup_filename,
)

TRAVERSAL_NAME = "../../../etc/passwd"


def populate(ssh_dir: SSHDir) -> None:
    """Fill an SSH directory with a typical layout."""
    ssh_dir.ensure_dir()
    (ssh_dir.base / "config").write_text("Host a\n    User b\n", encoding="utf-8")
    (ssh_dir.base / "id_ed25519").write_text("PRIVATE", encoding="utf-8")
    os.chmod(ssh_dir.base / "id_ed25519", 0o600)
    (ssh_dir.base / "id_ed25519.pub").write_text("ssh-ed25519 AAAA me", encoding="utf-8")
    os.chmod(ssh_dir.base / "id_ed25519.pub", 0o644)
    (ssh_dir.base / "config.d").mkdir()
    (ssh_dir.base / "config.d" / "work").write_text("Host w\n", encoding="utf-8")
    (ssh_dir.base / "empty").mkdir()


def write_archive(path: Path, members: dict[str, bytes]) -> None:
    """Write a tar.gz with the given file members."""
    with tarfile.open(path, mode="w:gz") as tar:
        for name, data in members.items():
            info = tarfile.TarInfo(name)
            info.size = len(data)
            info.mode = 0o600
            tar.addfile(info, io.BytesIO(data))


class TestValidateBackupFilename:
    """Tests for validate_backup_filename function."""

    @pytest.mark.parametrize(
        "name",
        [TRAVERSAL_NAME, "..", "a/b.tar.gz", "a\\b.tar.gz", "x..tar.gz", "", "/etc/passwd"],
    )
    def test_rejected(self, name: str) -> None:
        """Test that unsafe names are rejected."""
        with pytest.raises(InvalidBackupNameError):
            validate_backup_filename(name)

    def test_accepted(self) -> None:
        """Test that generated names pass."""
        name = "ssh-backup-20240101-120000.tar.gz"
        assert validate_backup_filename(name) == name


class TestBackupFilename:
    """Tests for backup_filename function."""

    def test_pattern(self) -> None:
        """Test the timestamped pattern."""
        assert backup_filename(datetime(2024, 3, 9, 7, 5, 1)) == "ssh-backup-20240309-070501.tar.gz"

    def test_sequence(self) -> None:
        """Test the same-second disambiguation suffix."""
        assert backup_filename(datetime(2024, 3, 9, 7, 5, 1), 2) == "ssh-backup-20240309-070501-2.tar.gz"


class TestBackupManager:
    """Tests for BackupManager class."""

    def test_backup_dir_is_sibling(self, ssh_dir: SSHDir) -> None:
        """Test that backups live next to, not inside, the SSH root."""
        manager = BackupManager(ssh_dir)
        assert manager.backup_dir.parent == ssh_dir.base.parent
        assert ssh_dir.base not in manager.backup_dir.parents

    def test_list_missing_directory(self, ssh_dir: SSHDir) -> None:
        """Test listing without a backup directory."""
        assert BackupManager(ssh_dir).list_backups() == []

    def test_create_then_list(self, ssh_dir: SSHDir) -> None:
        """Test that create adds exactly one listed backup."""
        populate(ssh_dir)
        manager = BackupManager(ssh_dir)
        before = manager.list_backups()
        start = datetime.now(timezone.utc).replace(microsecond=0)

        backup = manager.create_backup()
        after = manager.list_backups()

        assert len(after) == len(before) + 1
        assert after[0] == backup
        assert backup.size > 0
        assert backup.created_at >= start
        assert re.match(r"^ssh-backup-\d{8}-\d{6}\.tar\.gz$", backup.filename)

    def test_backup_directory_permissions(self, ssh_dir: SSHDir) -> None:
        """Test that the backup directory is owner-only."""
        populate(ssh_dir)
        manager = BackupManager(ssh_dir)
        manager.create_backup()
        assert stat.S_IMODE(os.stat(manager.backup_dir).st_mode) == 0o700

    def test_archive_contents(self, ssh_dir: SSHDir) -> None:
        """Test that every file and directory is archived with relative paths."""
        populate(ssh_dir)
        manager = BackupManager(ssh_dir)
        backup = manager.create_backup()

        with tarfile.open(manager.backup_dir / backup.filename, mode="r:gz") as tar:
            members = {m.name: m for m in tar.getmembers()}

        assert set(members) == {
            ".",
            "config",
            "id_ed25519",
            "id_ed25519.pub",
            "config.d",
            "config.d/work",
            "empty",
        }
        assert members["empty"].isdir()
        assert stat.S_IMODE(members["id_ed25519"].mode) == 0o600

    def test_same_second_does_not_overwrite(self, ssh_dir: SSHDir) -> None:
        """Test that two backups in one second get distinct names."""
        populate(ssh_dir)
        manager = BackupManager(ssh_dir)
        moment = datetime(2024, 1, 2, 3, 4, 5)

        first = manager.create_backup(now=moment)
        second = manager.create_backup(now=moment)

        assert first.filename == "ssh-backup-20240102-030405.tar.gz"
        assert second.filename == "ssh-backup-20240102-030405-1.tar.gz"
        assert len(manager.list_backups()) == 2

    def test_create_missing_root(self, ssh_dir: SSHDir) -> None:
        """Test that a missing SSH root fails the backup."""
        with pytest.raises(StorageError):
            BackupManager(ssh_dir).create_backup()

    def test_list_ignores_other_files(self, ssh_dir: SSHDir) -> None:
        """Test that only archives are listed."""
        ssh_dir.ensure_backup_dir()
        (ssh_dir.backup_dir / "notes.txt").write_text("x", encoding="utf-8")
        (ssh_dir.backup_dir / f"dir{BACKUP_SUFFIX}").mkdir()
        assert BackupManager(ssh_dir).list_backups() == []

    def test_list_sorted_newest_first(self, ssh_dir: SSHDir) -> None:
        """Test ordering by modification time."""
        ssh_dir.ensure_backup_dir()
        for name, mtime in (("old.tar.gz", 1_000_000), ("new.tar.gz", 2_000_000)):
            path = ssh_dir.backup_dir / name
            path.write_bytes(b"data")
            os.utime(path, (mtime, mtime))

        names = [b.filename for b in BackupManager(ssh_dir).list_backups()]
        assert names == ["new.tar.gz", "old.tar.gz"]

    def test_restore_round_trip(self, ssh_dir: SSHDir) -> None:
        """Test that restore brings back the archived state exactly."""
        populate(ssh_dir)
        manager = BackupManager(ssh_dir)
        backup = manager.create_backup()

        (ssh_dir.base / "config").write_text("changed", encoding="utf-8")
        (ssh_dir.base / "id_ed25519").unlink()
        (ssh_dir.base / "extra").write_text("not in backup", encoding="utf-8")
        (ssh_dir.base / "newdir").mkdir()

        manager.restore_backup(backup.filename)

        base = ssh_dir.base
        assert (base / "config").read_text(encoding="utf-8") == "Host a\n    User b\n"
        assert (base / "id_ed25519").read_text(encoding="utf-8") == "PRIVATE"
        assert stat.S_IMODE(os.stat(base / "id_ed25519").st_mode) == 0o600
        assert stat.S_IMODE(os.stat(base / "id_ed25519.pub").st_mode) == 0o644
        assert (base / "config.d" / "work").read_text(encoding="utf-8") == "Host w\n"
        assert (base / "empty").is_dir()
        assert not (base / "extra").exists()
        assert not (base / "newdir").exists()

    def test_restore_into_missing_root(self, ssh_dir: SSHDir) -> None:
        """Test restoring after the SSH root was removed."""
        populate(ssh_dir)
        manager = BackupManager(ssh_dir)
        backup = manager.create_backup()

        import shutil

        shutil.rmtree(ssh_dir.base)
        manager.restore_backup(backup.filename)
        assert (ssh_dir.base / "config").exists()

    def test_restore_rejects_traversal_name(self, ssh_dir: SSHDir) -> None:
        """Test that a traversal filename changes nothing."""
        populate(ssh_dir)
        before = sorted(p.name for p in ssh_dir.base.iterdir())

        with pytest.raises(InvalidBackupNameError):
            BackupManager(ssh_dir).restore_backup(TRAVERSAL_NAME)

        assert sorted(p.name for p in ssh_dir.base.iterdir()) == before

    def test_restore_missing_backup(self, ssh_dir: SSHDir) -> None:
        """Test restoring a backup that does not exist."""
        populate(ssh_dir)
        with pytest.raises(BackupNotFoundError):
            BackupManager(ssh_dir).restore_backup("ssh-backup-19990101-000000.tar.gz")
        assert (ssh_dir.base / "config").exists()

    @pytest.mark.parametrize("member", ["../escape", "/tmp/absolute-escape", "a/../../escape"])
    def test_restore_rejects_escaping_members(self, ssh_dir: SSHDir, member: str) -> None:
        """Test that archive members outside the root fail the restore."""
        populate(ssh_dir)
        ssh_dir.ensure_backup_dir()
        name = "ssh-backup-20000101-000000.tar.gz"
        write_archive(ssh_dir.backup_dir / name, {"config": b"ok", member: b"evil"})

        with pytest.raises(InvalidInputError):
            BackupManager(ssh_dir).restore_backup(name)

        assert not (ssh_dir.base.parent / "escape").exists()
        assert (ssh_dir.base / "config").read_text(encoding="utf-8") == "Host a\n    User b\n"

    def test_restore_rejects_sibling_prefix(self, ssh_dir: SSHDir) -> None:
        """Test that a sibling sharing the root's name prefix is outside."""
        populate(ssh_dir)
        ssh_dir.ensure_backup_dir()
        name = "ssh-backup-20000101-000001.tar.gz"
        write_archive(ssh_dir.backup_dir / name, {f"../{ssh_dir.base.name}_evil/x": b"evil"})

        with pytest.raises(InvalidInputError):
            BackupManager(ssh_dir).restore_backup(name)

    def test_restore_corrupt_archive(self, ssh_dir: SSHDir) -> None:
        """Test that an unreadable archive is an I/O error and changes nothing."""
        populate(ssh_dir)
        ssh_dir.ensure_backup_dir()
        name = "ssh-backup-20000101-000002.tar.gz"
        (ssh_dir.backup_dir / name).write_bytes(b"this is not gzip")

        with pytest.raises(StorageError):
            BackupManager(ssh_dir).restore_backup(name)
        assert (ssh_dir.base / "config").exists()

    def test_delete(self, ssh_dir: SSHDir) -> None:
        """Test deleting a backup."""
        populate(ssh_dir)
        manager = BackupManager(ssh_dir)
        backup = manager.create_backup()

        manager.delete_backup(backup.filename)
        assert manager.list_backups() == []

    def test_delete_missing(self, ssh_dir: SSHDir) -> None:
        """Test deleting a backup that does not exist."""
        with pytest.raises(BackupNotFoundError):
            BackupManager(ssh_dir).delete_backup("ssh-backup-19990101-000000.tar.gz")

    def test_delete_rejects_traversal_name(self, ssh_dir: SSHDir, temp_dir: Path) -> None:
        """Test that a traversal filename deletes nothing."""
        victim = temp_dir / "victim.tar.gz"
        victim.write_bytes(b"keep me")
        ssh_dir.ensure_backup_dir()

        with pytest.raises(InvalidBackupNameError):
            BackupManager(ssh_dir).delete_backup(TRAVERSAL_NAME)
        with pytest.raises(InvalidBackupNameError):
            BackupManager(ssh_dir).delete_backup("../../victim.tar.gz")
        assert victim.exists()

    def test_resolve_path(self, ssh_dir: SSHDir) -> None:
        """Test resolving an existing backup."""
        populate(ssh_dir)
        manager = BackupManager(ssh_dir)
        backup = manager.create_backup()
        assert manager.resolve_path(backup.filename) == manager.backup_dir / backup.filename

    def test_resolve_path_errors(self, ssh_dir: SSHDir) -> None:
        """Test resolving invalid and missing backups."""
        manager = BackupManager(ssh_dir)
        with pytest.raises(InvalidBackupNameError):
            manager.resolve_path(TRAVERSAL_NAME)
        with pytest.raises(BackupNotFoundError):
            manager.resolve_path("missing.tar.gz")
