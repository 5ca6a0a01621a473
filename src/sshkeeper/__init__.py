"""sshkeeper - Manage the contents of an SSH directory.

This package provides tools for editing the SSH config file without
disturbing unrelated content, inspecting known_hosts, managing key pairs
and taking point-in-time backups of the whole directory.
"""

from sshkeeper.core.config import Settings
from sshkeeper.core.errors import (
    ExternalToolError,
    InvalidInputError,
    NotFoundError,
    SSHKeeperError,
    StorageError,
)
from sshkeeper.core.paths import SSHDir, set_key_permissions
from sshkeeper.core.types import (
    Backup,
    HostEntry,
    KeyGenRequest,
    KeyType,
    KnownHostEntry,
    SSHKey,
)
from sshkeeper.ssh.backup import BackupManager
from sshkeeper.ssh.config import (
    HostConfigStore,
    format_block,
    lookup_by_alias,
    parse_entries,
    reference_count,
    splice_block,
)
from sshkeeper.ssh.keygen import SSHKeygen
from sshkeeper.ssh.keys import SSHKeyStore
from sshkeeper.ssh.known_hosts import KnownHostsStore, fingerprint_of

__version__ = "0.1.0"

__all__ = [
    # Core types
    "Backup",
    "HostEntry",
    "KeyGenRequest",
    "KeyType",
    "KnownHostEntry",
    "SSHDir",
    "SSHKey",
    "Settings",
    # Errors
    "ExternalToolError",
    "InvalidInputError",
    "NotFoundError",
    "SSHKeeperError",
    "StorageError",
    # Stores
    "BackupManager",
    "HostConfigStore",
    "KnownHostsStore",
    "SSHKeyStore",
    "SSHKeygen",
    # Text functions
    "fingerprint_of",
    "format_block",
    "lookup_by_alias",
    "parse_entries",
    "reference_count",
    "set_key_permissions",
    "splice_block",
]


def main() -> None:
    """CLI entry point."""
    import sys

    from sshkeeper.cli import main as cli_main

    sys.exit(cli_main())
