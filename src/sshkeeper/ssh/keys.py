"""Inventory of the key pairs stored in the SSH directory.

Key material itself is produced by ssh-keygen; this module only reads public
keys, deletes pairs and fixes permissions.
"""

import logging
import os
from datetime import datetime, timezone
from pathlib import Path

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization

from sshkeeper.core.errors import (
    InvalidInputError,
    KeyNotFoundError,
    StorageError,
)
from sshkeeper.core.paths import SSHDir, is_safe_filename, set_key_permissions
from sshkeeper.core.types import KeyGenRequest, SSHKey
from sshkeeper.ssh.known_hosts import fingerprint_of
from sshkeeper.ssh.keygen import SSHKeygen

logger = logging.getLogger(__name__)

PUBLIC_KEY_SUFFIX = ".pub"


def validate_key_name(name: str) -> str:
    """Apply the filename traversal guard to a key name."""
    if not is_safe_filename(name):
        raise InvalidInputError(f"Invalid key name: {name!r}")
    return name


def parse_public_key(text: str) -> tuple[str, str, str, int]:
    """Split an OpenSSH public key line.

    Args:
        text: Contents of a ``.pub`` file.

    Returns:
        Tuple of (key type, base64 key, comment, key size in bits).

    Raises:
        ValueError: If the line is not a public key cryptography can load.
    """
    parts = text.strip().split(None, 2)
    if len(parts) < 2:
        raise ValueError("not an OpenSSH public key")
    key_type, b64_key = parts[0], parts[1]
    comment = parts[2].strip() if len(parts) > 2 else ""

    try:
        public_key = serialization.load_ssh_public_key(f"{key_type} {b64_key}".encode("ascii"))
    except UnsupportedAlgorithm as e:
        raise ValueError(f"unsupported key type {key_type}") from e
    bits = getattr(public_key, "key_size", 0) or 0
    if key_type == "ssh-ed25519":
        bits = 256
    return key_type, b64_key, comment, bits


class SSHKeyStore:
    """Lists, generates and deletes key pairs in an SSH directory."""

    def __init__(self, ssh_dir: SSHDir, keygen: SSHKeygen | None = None) -> None:
        """Initialize the key store.

        Args:
            ssh_dir: Directory locator.
            keygen: ssh-keygen wrapper used for generation and comment changes.
        """
        self._ssh_dir = ssh_dir
        self._keygen = keygen or SSHKeygen()

    def _load(self, name: str) -> SSHKey:
        private_path = self._ssh_dir.path(name)
        public_path = self._ssh_dir.path(name + PUBLIC_KEY_SUFFIX)
        try:
            # comments may be in any encoding; the key fields are ASCII
            content = public_path.read_text(encoding="utf-8", errors="replace")
            public_info = public_path.stat()
        except FileNotFoundError as e:
            raise KeyNotFoundError(name) from e
        except OSError as e:
            raise StorageError(f"Could not read public key {public_path}: {e}") from e

        key_type, b64_key, comment, bits = parse_public_key(content)

        size = public_info.st_size
        has_private = private_path.is_file()
        if has_private:
            size += private_path.stat().st_size

        return SSHKey(
            name=name,
            key_type=key_type,
            bits=bits,
            fingerprint=fingerprint_of(b64_key),
            public_key=content.strip(),
            comment=comment,
            has_private=has_private,
            modified_at=datetime.fromtimestamp(public_info.st_mtime, tz=timezone.utc),
            size=size,
        )

    def list_keys(self) -> list[SSHKey]:
        """List key pairs by their ``.pub`` files, skipping unparseable ones.

        Returns:
            Keys sorted by name; empty if the SSH directory does not exist.
        """
        base = self._ssh_dir.base
        if not base.is_dir():
            return []

        keys: list[SSHKey] = []
        for public_path in sorted(base.glob(f"*{PUBLIC_KEY_SUFFIX}")):
            if not public_path.is_file():
                continue
            name = public_path.name[: -len(PUBLIC_KEY_SUFFIX)]
            try:
                keys.append(self._load(name))
            except ValueError as e:
                logger.warning(f"Skipping unparseable public key {public_path.name}: {e}")
        return keys

    def get_key(self, name: str) -> SSHKey:
        """Get one key pair by name.

        Raises:
            KeyNotFoundError: If the public key file does not exist.
        """
        validate_key_name(name)
        try:
            return self._load(name)
        except ValueError as e:
            raise InvalidInputError(f"Could not parse public key {name}: {e}") from e

    def generate_key(self, request: KeyGenRequest) -> SSHKey:
        """Generate a key pair with ssh-keygen and fix its permissions.

        Raises:
            InvalidInputError: If the name is invalid or the key already exists.
            ExternalToolError: If ssh-keygen fails.
        """
        validate_key_name(request.name)
        key_path = self._ssh_dir.path(request.name)
        if key_path.exists():
            raise InvalidInputError(f"Key already exists: {request.name}")

        self._ssh_dir.ensure_dir()
        self._keygen.generate(key_path, request)
        set_key_permissions(self._ssh_dir.base, request.name)
        logger.info(f"Generated {request.key_type.value} key {request.name}")
        return self.get_key(request.name)

    def delete_key(self, name: str) -> None:
        """Delete the private and public key files.

        Raises:
            KeyNotFoundError: If neither file exists.
        """
        validate_key_name(name)
        paths = [self._ssh_dir.path(name), self._ssh_dir.path(name + PUBLIC_KEY_SUFFIX)]
        existing = [path for path in paths if path.exists()]
        if not existing:
            raise KeyNotFoundError(name)

        for path in existing:
            try:
                os.remove(path)
            except OSError as e:
                raise StorageError(f"Could not remove {path}: {e}") from e
        logger.info(f"Deleted key {name}")

    def update_comment(self, name: str, comment: str) -> SSHKey:
        """Change the comment of a key pair with ssh-keygen.

        Raises:
            KeyNotFoundError: If the private key does not exist.
            ExternalToolError: If ssh-keygen fails.
        """
        validate_key_name(name)
        key_path: Path = self._ssh_dir.path(name)
        if not key_path.is_file():
            raise KeyNotFoundError(name)
        self._keygen.change_comment(key_path, comment)
        logger.info(f"Updated comment of key {name}")
        return self.get_key(name)
