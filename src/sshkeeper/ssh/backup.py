"""Snapshots of the SSH directory as gzip-compressed tar archives."""

import logging
import os
import shutil
import stat
import tarfile
from datetime import datetime, timezone
from pathlib import Path

from sshkeeper.core.errors import (
    BackupNotFoundError,
    InvalidBackupNameError,
    InvalidInputError,
    StorageError,
)
from sshkeeper.core.paths import SSHDir, is_safe_filename
from sshkeeper.core.types import Backup

logger = logging.getLogger(__name__)

BACKUP_PREFIX = "ssh-backup-"
BACKUP_SUFFIX = ".tar.gz"
TIMESTAMP_FORMAT = "%Y%m%d-%H%M%S"


def validate_backup_filename(filename: str) -> str:
    """Reject names that could escape the backup directory.

    Args:
        filename: Untrusted backup filename.

    Returns:
        The filename unchanged.

    Raises:
        InvalidBackupNameError: If the name is empty or contains a path
            separator or a parent reference.
    """
    if not is_safe_filename(filename):
        raise InvalidBackupNameError(filename)
    return filename


def backup_filename(moment: datetime, sequence: int = 0) -> str:
    """Build the archive name for a timestamp.

    Args:
        moment: Creation time.
        sequence: Counter for archives created within the same second.

    Returns:
        ``ssh-backup-YYYYMMDD-HHMMSS.tar.gz`` (with ``-N`` before the suffix
        when ``sequence`` is non-zero).
    """
    stamp = moment.strftime(TIMESTAMP_FORMAT)
    if sequence:
        stamp = f"{stamp}-{sequence}"
    return f"{BACKUP_PREFIX}{stamp}{BACKUP_SUFFIX}"


def _raise_walk_error(error: OSError) -> None:
    raise error


def _is_within(root: str, target: str) -> bool:
    return target == root or target.startswith(root + os.sep)


class BackupManager:
    """Creates, lists, restores and deletes backups of an SSH directory."""

    def __init__(self, ssh_dir: SSHDir) -> None:
        """Initialize backup manager.

        Args:
            ssh_dir: Directory locator; backups go to its backup directory.
        """
        self._ssh_dir = ssh_dir

    @property
    def backup_dir(self) -> Path:
        """Get the backup directory."""
        return self._ssh_dir.backup_dir

    def _backup_info(self, path: Path) -> Backup:
        info = path.stat()
        return Backup(
            filename=path.name,
            size=info.st_size,
            created_at=datetime.fromtimestamp(info.st_mtime, tz=timezone.utc),
        )

    def list_backups(self) -> list[Backup]:
        """List backup archives, newest first.

        Returns:
            Backups found; empty if the backup directory does not exist.

        Raises:
            StorageError: If the directory cannot be read.
        """
        backups: list[Backup] = []
        try:
            with os.scandir(self.backup_dir) as it:
                for entry in it:
                    if not entry.name.endswith(BACKUP_SUFFIX):
                        continue
                    if not entry.is_file(follow_symlinks=False):
                        continue
                    try:
                        backups.append(self._backup_info(Path(entry.path)))
                    except FileNotFoundError:
                        # removed while listing
                        continue
        except FileNotFoundError:
            return []
        except OSError as e:
            raise StorageError(f"Could not read backup directory {self.backup_dir}: {e}") from e

        backups.sort(key=lambda b: (b.created_at, b.filename), reverse=True)
        return backups

    def _open_new_archive(self, moment: datetime) -> tuple[Path, int]:
        sequence = 0
        while True:
            path = self.backup_dir / backup_filename(moment, sequence)
            try:
                fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
            except FileExistsError:
                sequence += 1
                continue
            return path, fd

    def create_backup(self, now: datetime | None = None) -> Backup:
        """Archive the whole SSH directory.

        A failed backup may leave a partial archive behind.

        Args:
            now: Timestamp for the filename. Defaults to the current local time.

        Returns:
            Metadata of the new archive.

        Raises:
            StorageError: If the directory cannot be walked or the archive written.
        """
        self._ssh_dir.ensure_backup_dir()
        root = str(self._ssh_dir.base)
        try:
            path, fd = self._open_new_archive(now or datetime.now())
        except OSError as e:
            raise StorageError(f"Could not create backup file: {e}") from e

        count = 0
        try:
            with os.fdopen(fd, "wb") as f, tarfile.open(fileobj=f, mode="w:gz") as tar:
                for dirpath, dirnames, filenames in os.walk(root, onerror=_raise_walk_error):
                    dirnames.sort()
                    relative = os.path.relpath(dirpath, root)
                    tar.add(dirpath, arcname=relative, recursive=False)
                    for name in sorted(filenames):
                        tar.add(
                            os.path.join(dirpath, name),
                            arcname=os.path.normpath(os.path.join(relative, name)),
                            recursive=False,
                        )
                        count += 1
                    # symlinked directories are listed but not descended into
                    for name in dirnames:
                        full = os.path.join(dirpath, name)
                        if os.path.islink(full):
                            tar.add(
                                full,
                                arcname=os.path.normpath(os.path.join(relative, name)),
                                recursive=False,
                            )
        except (OSError, tarfile.TarError) as e:
            raise StorageError(f"Backup {path.name} failed: {e}") from e

        backup = self._backup_info(path)
        logger.info(f"Created backup {backup.filename} ({count} files, {backup.size} bytes)")
        return backup

    def resolve_path(self, filename: str) -> Path:
        """Get the path of an existing backup.

        Raises:
            InvalidBackupNameError: If the filename fails validation.
            BackupNotFoundError: If no such backup exists.
        """
        validate_backup_filename(filename)
        path = self.backup_dir / filename
        if not path.is_file():
            raise BackupNotFoundError(filename)
        return path

    def restore_backup(self, filename: str) -> None:
        """Replace the SSH directory contents with an archive's contents.

        Every existing entry of the SSH directory is removed first; restore
        is a full replace, not a merge, and is not transactional.

        Raises:
            InvalidBackupNameError: If the filename fails validation.
            BackupNotFoundError: If no such backup exists.
            InvalidInputError: If an archive member would land outside the
                SSH directory.
            StorageError: If the archive is unreadable or a write fails.
        """
        path = self.resolve_path(filename)
        root = os.path.abspath(self._ssh_dir.base)

        try:
            with tarfile.open(path, mode="r:gz") as tar:
                members = tar.getmembers()
                targets = [(member, self._destination(root, member)) for member in members]

                self._ssh_dir.ensure_dir()
                self._clear_directory(root)

                directories: list[tuple[str, int]] = []
                for member, target in targets:
                    if member.isdir():
                        os.makedirs(target, exist_ok=True)
                        directories.append((target, member.mode))
                    elif member.isfile():
                        self._extract_file(tar, member, target)
                    else:
                        logger.warning(f"Skipping unsupported archive member {member.name}")

                # directory modes last, so read-only directories can still be filled
                for target, mode in reversed(directories):
                    os.chmod(target, stat.S_IMODE(mode))
        except (OSError, tarfile.TarError, EOFError) as e:
            raise StorageError(f"Restore of {filename} failed: {e}") from e

        logger.info(f"Restored {len(members)} entries from {filename} into {root}")

    def delete_backup(self, filename: str) -> None:
        """Remove one backup archive.

        Raises:
            InvalidBackupNameError: If the filename fails validation.
            BackupNotFoundError: If no such backup exists.
            StorageError: If removal fails.
        """
        validate_backup_filename(filename)
        path = self.backup_dir / filename
        try:
            path.unlink()
        except FileNotFoundError as e:
            raise BackupNotFoundError(filename) from e
        except OSError as e:
            raise StorageError(f"Could not delete backup {filename}: {e}") from e
        logger.info(f"Deleted backup {filename}")

    @staticmethod
    def _destination(root: str, member: tarfile.TarInfo) -> str:
        target = os.path.normpath(os.path.join(root, member.name))
        if not _is_within(root, target):
            raise InvalidInputError(f"Invalid path in backup: {member.name}")
        return target

    @staticmethod
    def _clear_directory(root: str) -> None:
        with os.scandir(root) as it:
            for entry in it:
                if entry.is_dir(follow_symlinks=False):
                    shutil.rmtree(entry.path)
                else:
                    os.unlink(entry.path)

    @staticmethod
    def _extract_file(tar: tarfile.TarFile, member: tarfile.TarInfo, target: str) -> None:
        os.makedirs(os.path.dirname(target), mode=0o700, exist_ok=True)
        mode = stat.S_IMODE(member.mode)
        source = tar.extractfile(member)
        if source is None:
            return
        with source:
            fd = os.open(target, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, mode)
            with os.fdopen(fd, "wb") as out:
                shutil.copyfileobj(source, out)
        os.chmod(target, mode)
