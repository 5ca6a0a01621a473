"""Pytest fixtures and configuration."""

import base64
import shutil
import tempfile
from pathlib import Path
from typing import Generator
from unittest.mock import MagicMock, patch

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ed25519

from sshkeeper.core.paths import SSHDir

SAMPLE_CONFIG = """Host myserver
    HostName 192.168.1.100
    User admin
    Port 2222
    IdentityFile ~/.ssh/id_rsa

Host dev
    HostName dev.example.com
    User deploy
"""


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    tmpdir = tempfile.mkdtemp()
    try:
        yield Path(tmpdir)
    finally:
        shutil.rmtree(tmpdir, ignore_errors=True)


@pytest.fixture
def ssh_dir(temp_dir: Path) -> SSHDir:
    """SSH directory locator rooted in a temporary home (not created yet)."""
    return SSHDir(temp_dir / "home" / ".ssh")


@pytest.fixture
def sample_config() -> str:
    """Config text with two host blocks."""
    return SAMPLE_CONFIG


def make_public_key_line(comment: str = "test@example") -> str:
    """Create a fresh ed25519 public key in OpenSSH format."""
    private_key = ed25519.Ed25519PrivateKey.generate()
    public_bytes = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.OpenSSH,
        format=serialization.PublicFormat.OpenSSH,
    )
    line = public_bytes.decode("utf-8")
    return f"{line} {comment}" if comment else line


@pytest.fixture
def ed25519_key() -> str:
    """Base64 key material of a fresh ed25519 public key."""
    return make_public_key_line(comment="").split()[1]


@pytest.fixture
def ed25519_public_line() -> str:
    """A full ``ssh-ed25519 <base64> <comment>`` line."""
    return make_public_key_line()


def expected_fingerprint(b64_key: str) -> str:
    """Reference fingerprint computation for assertions."""
    import hashlib

    digest = hashlib.sha256(base64.b64decode(b64_key)).digest()
    return "SHA256:" + base64.b64encode(digest).decode("ascii").rstrip("=")


@pytest.fixture
def mock_subprocess() -> Generator[MagicMock, None, None]:
    """Mock subprocess.run for ssh-keygen / ssh-keyscan calls."""
    with patch("sshkeeper.ssh.keygen.subprocess.run") as mock:
        mock.return_value = MagicMock(returncode=0, stdout="", stderr="")
        yield mock


@pytest.fixture
def key_factory():
    """Factory for fresh ed25519 public key lines."""
    return make_public_key_line


@pytest.fixture
def fingerprint_reference():
    """Reference fingerprint function for assertions."""
    return expected_fingerprint
