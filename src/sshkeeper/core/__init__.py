"""Core layer for sshkeeper."""

from sshkeeper.core.config import Settings
from sshkeeper.core.paths import SSHDir
from sshkeeper.core.types import (
    Backup,
    HostEntry,
    KeyGenRequest,
    KeyType,
    KnownHostEntry,
    SSHKey,
)

__all__ = [
    "Backup",
    "HostEntry",
    "KeyGenRequest",
    "KeyType",
    "KnownHostEntry",
    "SSHDir",
    "SSHKey",
    "Settings",
]
