"""Type definitions for sshkeeper."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field, field_validator

WILDCARD_ALIAS = "*"


class KeyType(Enum):
    """Key algorithms accepted by the key generator."""

    RSA = "rsa"
    ED25519 = "ed25519"
    ECDSA = "ecdsa"

    @property
    def supports_bits(self) -> bool:
        """Whether a key size can be chosen for this algorithm."""
        return self in (KeyType.RSA, KeyType.ECDSA)


class HostEntry(BaseModel):
    """One ``Host`` block of the SSH config file."""

    alias: str
    host_name: str = ""
    user: str = ""
    port: str = ""
    identity_file: str = ""
    options: dict[str, str] = Field(default_factory=dict)

    model_config = {"extra": "forbid"}

    @field_validator("alias")
    @classmethod
    def check_alias(cls, value: str) -> str:
        """Reject empty and wildcard-only aliases."""
        value = value.strip()
        if not value:
            raise ValueError("alias must not be empty")
        if value == WILDCARD_ALIAS:
            raise ValueError("the global '*' block cannot be used as a host entry")
        return value

    def get_option(self, key: str) -> str | None:
        """Look up an extra directive, ignoring case."""
        wanted = key.lower()
        for name, value in self.options.items():
            if name.lower() == wanted:
                return value
        return None


class KnownHostEntry(BaseModel):
    """One non-comment line of known_hosts."""

    line: int
    hosts: str
    key_type: str = ""
    key: str = ""
    fingerprint: str = ""
    is_hashed: bool = False

    model_config = {"extra": "forbid"}


class Backup(BaseModel):
    """Metadata for one backup archive."""

    filename: str
    size: int
    created_at: datetime

    model_config = {"extra": "forbid"}


class SSHKey(BaseModel):
    """A key pair found in the SSH directory."""

    name: str
    key_type: str
    bits: int = 0
    fingerprint: str
    public_key: str
    comment: str = ""
    has_private: bool = False
    modified_at: datetime
    size: int = 0

    model_config = {"extra": "forbid"}


class KeyGenRequest(BaseModel):
    """Parameters for generating a new key pair."""

    name: str
    key_type: KeyType = KeyType.ED25519
    bits: int = 0
    comment: str = ""
    passphrase: str = ""

    model_config = {"extra": "forbid"}
