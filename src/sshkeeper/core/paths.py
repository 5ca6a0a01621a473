"""SSH directory location and permission utilities."""

import logging
import os
import stat
from pathlib import Path

from sshkeeper.core.errors import PermissionDenied, StorageError

logger = logging.getLogger(__name__)

SSH_DIR_ENV = "SSHKEEPER_SSH_DIR"
CONFIG_FILENAME = "config"
KNOWN_HOSTS_FILENAME = "known_hosts"
BACKUP_DIRNAME = ".ssh_backups"

DIR_MODE = stat.S_IRWXU  # 0o700
PRIVATE_FILE_MODE = stat.S_IRUSR | stat.S_IWUSR  # 0o600
PUBLIC_FILE_MODE = PRIVATE_FILE_MODE | stat.S_IRGRP | stat.S_IROTH  # 0o644

# bytes that are not UTF-8 round-trip unchanged through str
TEXT_ENCODING = "utf-8"
TEXT_ERRORS = "surrogateescape"


def get_default_ssh_dir() -> Path:
    """Get the current user's SSH directory.

    Returns:
        Path to ``~/.ssh``.
    """
    return Path.home() / ".ssh"


def _ensure_private_dir(path: Path) -> None:
    if path.is_dir():
        return
    try:
        path.mkdir(mode=DIR_MODE, parents=True, exist_ok=True)
        # mkdir's mode is filtered through the umask
        os.chmod(path, DIR_MODE)
    except OSError as e:
        raise StorageError(f"Could not create directory {path}: {e}") from e
    logger.debug(f"Created directory {path}")


class SSHDir:
    """Resolves the SSH root and the artifacts derived from it."""

    def __init__(self, base: Path | str | None = None) -> None:
        """Initialize the locator.

        Args:
            base: SSH directory. Defaults to ``~/.ssh``.
        """
        if base is None:
            self._base = get_default_ssh_dir()
        else:
            self._base = Path(base).expanduser()

    @classmethod
    def resolve(cls, override: Path | str | None = None) -> "SSHDir":
        """Pick the SSH root from an explicit override, the environment or the default.

        Args:
            override: Explicit path, e.g. from a command-line flag.

        Returns:
            SSHDir instance.
        """
        if override:
            return cls(override)
        env_value = os.environ.get(SSH_DIR_ENV)
        if env_value:
            return cls(env_value)
        return cls()

    @property
    def base(self) -> Path:
        """Get the SSH root."""
        return self._base

    def path(self, name: str) -> Path:
        """Get the path of a file inside the SSH root."""
        return self._base / name

    @property
    def config_path(self) -> Path:
        """Get the path of the SSH config file."""
        return self.path(CONFIG_FILENAME)

    @property
    def known_hosts_path(self) -> Path:
        """Get the path of the known_hosts file."""
        return self.path(KNOWN_HOSTS_FILENAME)

    @property
    def backup_dir(self) -> Path:
        """Get the backup directory.

        It sits next to the SSH root, not inside it, so a backup never
        contains earlier backups.
        """
        return self._base.parent / BACKUP_DIRNAME

    def ensure_dir(self) -> None:
        """Create the SSH root with owner-only permissions if missing."""
        _ensure_private_dir(self._base)

    def ensure_backup_dir(self) -> None:
        """Create the backup directory with owner-only permissions if missing."""
        _ensure_private_dir(self.backup_dir)

    def __repr__(self) -> str:
        return f"SSHDir({str(self._base)!r})"


def set_key_permissions(base: Path, name: str) -> None:
    """Apply 0600 to a private key and 0644 to its public half.

    Args:
        base: SSH root.
        name: Private key filename.

    Raises:
        PermissionDenied: If the private key is missing or cannot be changed.
    """
    private_path = base / name
    public_path = base / f"{name}.pub"

    try:
        os.chmod(private_path, PRIVATE_FILE_MODE)
    except OSError as e:
        raise PermissionDenied(f"chmod private key {private_path}: {e}") from e

    if public_path.exists():
        try:
            os.chmod(public_path, PUBLIC_FILE_MODE)
        except OSError as e:
            raise PermissionDenied(f"chmod public key {public_path}: {e}") from e


def is_key_file(base: Path, identity_file: str) -> bool:
    """Check whether an IdentityFile value points at a file in the SSH root.

    Args:
        base: SSH root.
        identity_file: Value as written in the config, e.g. ``~/.ssh/id_rsa``.

    Returns:
        True if the file exists as given or by its basename inside the root.
    """
    if not identity_file:
        return False
    candidate = Path(identity_file).expanduser()
    if not candidate.is_absolute():
        candidate = base / candidate
    if candidate.exists():
        return True
    return (base / Path(identity_file).name).exists()


def read_text_file(path: Path) -> str | None:
    """Read a text file, treating absence as "no content".

    Args:
        path: File to read.

    Returns:
        File contents, or None if the file does not exist. Bytes that are
        not valid UTF-8 come back as surrogate escapes, which
        :func:`write_text_file` turns back into the same bytes.

    Raises:
        StorageError: If the file exists but cannot be read.
    """
    try:
        with open(path, encoding=TEXT_ENCODING, errors=TEXT_ERRORS, newline="") as f:
            return f.read()
    except FileNotFoundError:
        return None
    except OSError as e:
        raise StorageError(f"Could not read {path}: {e}") from e


def write_text_file(path: Path, content: str, mode: int, append: bool = False) -> None:
    """Write a text file and force its permission bits.

    Args:
        path: File to write.
        content: Text to write.
        mode: Permission bits, applied to new and existing files.
        append: Append instead of truncating.

    Raises:
        StorageError: If the file cannot be written.
    """
    flags = os.O_WRONLY | os.O_CREAT | (os.O_APPEND if append else os.O_TRUNC)
    try:
        fd = os.open(path, flags, mode)
        with os.fdopen(fd, "w", encoding=TEXT_ENCODING, errors=TEXT_ERRORS, newline="") as f:
            f.write(content)
        os.chmod(path, mode)
    except OSError as e:
        raise StorageError(f"Could not write {path}: {e}") from e


def is_safe_filename(name: str) -> bool:
    """Check that a name has no path separator or parent reference.

    Untrusted names must pass this before being joined onto a trusted directory.
    """
    if not name:
        return False
    return not any(part in name for part in ("/", "\\", "..", "\x00"))
