"""Exception hierarchy for sshkeeper."""


class SSHKeeperError(Exception):
    """Base class for all sshkeeper errors."""


class NotFoundError(SSHKeeperError, LookupError):
    """A host alias, key or backup does not exist."""


class HostNotFoundError(NotFoundError):
    """No config block has the requested alias."""

    def __init__(self, alias: str) -> None:
        super().__init__(f"Host not found: {alias}")
        self.alias = alias


class KeyNotFoundError(NotFoundError):
    """No key pair with the requested name exists."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Key not found: {name}")
        self.name = name


class BackupNotFoundError(NotFoundError):
    """No backup archive with the requested filename exists."""

    def __init__(self, filename: str) -> None:
        super().__init__(f"Backup not found: {filename}")
        self.filename = filename


class InvalidInputError(SSHKeeperError, ValueError):
    """Caller supplied a malformed name, number or path."""


class InvalidBackupNameError(InvalidInputError):
    """Backup filename failed the traversal guard."""

    def __init__(self, filename: str) -> None:
        super().__init__(f"Invalid backup filename: {filename!r}")
        self.filename = filename


class LineOutOfRangeError(InvalidInputError, IndexError):
    """A known_hosts line number is outside the file."""

    def __init__(self, line: int, total: int) -> None:
        super().__init__(f"Line {line} out of range (file has {total} lines)")
        self.line = line
        self.total = total


class StorageError(SSHKeeperError, OSError):
    """Filesystem read/write failure or unreadable archive."""


class PermissionDenied(StorageError):
    """File permissions could not be applied."""


class ExternalToolError(SSHKeeperError):
    """An external program (ssh-keygen, ssh-keyscan) failed."""

    def __init__(self, command: str, returncode: int | None, output: str = "") -> None:
        message = f"{command} failed"
        if returncode is not None:
            message += f" (exit code {returncode})"
        if output.strip():
            message += f": {output.strip()}"
        super().__init__(message)
        self.command = command
        self.returncode = returncode
        self.output = output
