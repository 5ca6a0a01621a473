"""SSH directory persistence layer for sshkeeper."""

from sshkeeper.ssh.backup import BackupManager
from sshkeeper.ssh.config import HostConfigStore
from sshkeeper.ssh.keygen import SSHKeygen
from sshkeeper.ssh.keys import SSHKeyStore
from sshkeeper.ssh.known_hosts import KnownHostsStore

__all__ = [
    "BackupManager",
    "HostConfigStore",
    "KnownHostsStore",
    "SSHKeyStore",
    "SSHKeygen",
]
