"""known_hosts parsing, fingerprinting and line-based edits.

The file is handled as an array of lines. Hashed host names cannot be
matched without the salt, so exact host lookups go through ssh-keygen.
"""

import base64
import binascii
import hashlib
import logging
import re
import struct
from pathlib import Path

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization

from sshkeeper.core.errors import ExternalToolError, LineOutOfRangeError, StorageError
from sshkeeper.core.paths import (
    PRIVATE_FILE_MODE,
    SSHDir,
    read_text_file,
    write_text_file,
)
from sshkeeper.core.types import HostEntry, KnownHostEntry
from sshkeeper.ssh.keygen import SSHKeygen, host_target

logger = logging.getLogger(__name__)

HASHED_HOST_MARKER = "|1|"
FINGERPRINT_PREFIX = "SHA256:"
COMMON_HOSTS = ("github.com", "bitbucket.org", "gitlab.com")

_FOUND_LINE_RE = re.compile(r"^# Host .* found: line (\d+)")

# OpenSSH key types cryptography cannot load; their blobs are fingerprinted as-is
_CERT_KEY_SUFFIX = b"-cert-v01@openssh.com"
_SECURITY_KEY_PREFIX = b"sk-"
_KEY_TYPE_RE = re.compile(rb"[A-Za-z0-9][A-Za-z0-9@.-]*")


def _blob_key_type(blob: bytes) -> bytes | None:
    """Read the leading key-type string of an SSH wire-format key."""
    if len(blob) < 4:
        return None
    (length,) = struct.unpack(">I", blob[:4])
    if length == 0 or len(blob) < 4 + length:
        return None
    return blob[4 : 4 + length]


def _is_opaque_key_type(key_type: bytes) -> bool:
    return key_type.endswith(_CERT_KEY_SUFFIX) or key_type.startswith(_SECURITY_KEY_PREFIX)


def fingerprint_of(b64_key: str) -> str:
    """Compute the OpenSSH SHA256 fingerprint of base64 key material.

    Args:
        b64_key: Base64 key field of a known_hosts or .pub line.

    Returns:
        ``SHA256:<unpadded base64 digest>``, or an empty string when the
        material is not valid base64 or not a parseable public key.
        Certificates and security-key types are only checked for a
        well-formed type string, since cryptography cannot load them.
    """
    try:
        blob = base64.b64decode(b64_key, validate=True)
    except (binascii.Error, ValueError):
        return ""

    key_type = _blob_key_type(blob)
    if key_type is None or not _KEY_TYPE_RE.fullmatch(key_type):
        return ""

    if not _is_opaque_key_type(key_type):
        try:
            serialization.load_ssh_public_key(key_type + b" " + b64_key.encode("ascii"))
        except (ValueError, UnsupportedAlgorithm):
            return ""

    digest = hashlib.sha256(blob).digest()
    return FINGERPRINT_PREFIX + base64.b64encode(digest).decode("ascii").rstrip("=")


def parse_line(line_number: int, line: str) -> KnownHostEntry:
    """Parse one known_hosts line.

    Lines with fewer than three fields keep the raw text in ``hosts``.
    """
    line = line.strip()
    parts = line.split()
    if len(parts) < 3:
        return KnownHostEntry(line=line_number, hosts=line)

    hosts, key_type, key = parts[:3]
    return KnownHostEntry(
        line=line_number,
        hosts=hosts,
        key_type=key_type,
        key=key,
        fingerprint=fingerprint_of(key),
        is_hashed=hosts.startswith(HASHED_HOST_MARKER),
    )


def parse_entries(text: str) -> list[KnownHostEntry]:
    """Parse known_hosts text, skipping blank and comment lines.

    Line numbers are 1-based positions in ``text.split("\\n")``.
    """
    entries: list[KnownHostEntry] = []
    for index, line in enumerate(text.split("\n"), start=1):
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        entries.append(parse_line(index, stripped))
    return entries


def filter_entries(entries: list[KnownHostEntry], query: str) -> list[KnownHostEntry]:
    """Keep entries whose hosts, key type or fingerprint contain ``query``, ignoring case."""
    query = query.lower()
    return [
        entry
        for entry in entries
        if query in entry.hosts.lower()
        or query in entry.key_type.lower()
        or query in entry.fingerprint.lower()
    ]


def remove_at_line(text: str, line_number: int) -> str:
    """Drop one 1-based line from ``text``.

    Raises:
        LineOutOfRangeError: If the line does not exist.
    """
    lines = text.split("\n")
    if line_number < 1 or line_number > len(lines):
        raise LineOutOfRangeError(line_number, len(lines))
    del lines[line_number - 1]
    return "\n".join(lines)


def parse_lookup_output(output: str) -> list[KnownHostEntry]:
    """Parse ``ssh-keygen -F`` output into entries carrying their file line numbers."""
    entries: list[KnownHostEntry] = []
    line_number = 0
    for line in output.split("\n"):
        stripped = line.strip()
        if not stripped:
            continue
        match = _FOUND_LINE_RE.match(stripped)
        if match:
            line_number = int(match.group(1))
            continue
        if stripped.startswith("#"):
            continue
        entry = parse_line(line_number, stripped)
        if entry.hosts and entry.key_type:
            entries.append(entry)
    return entries


class KnownHostsStore:
    """Reads and edits the known_hosts file of an SSH directory."""

    def __init__(self, ssh_dir: SSHDir, keygen: SSHKeygen | None = None) -> None:
        """Initialize the store.

        Args:
            ssh_dir: Directory locator.
            keygen: ssh-keygen wrapper used for exact host lookups.
        """
        self._ssh_dir = ssh_dir
        self._keygen = keygen or SSHKeygen()

    @property
    def path(self) -> Path:
        """Get the known_hosts file path."""
        return self._ssh_dir.known_hosts_path

    def read_raw(self) -> str:
        """Get the file contents; empty if the file does not exist."""
        content = read_text_file(self.path)
        return content if content is not None else ""

    def list_entries(self, query: str | None = None) -> list[KnownHostEntry]:
        """Parse the file, optionally filtering by a search string."""
        entries = parse_entries(self.read_raw())
        if query:
            entries = filter_entries(entries, query)
        return entries

    def remove_line(self, line_number: int) -> None:
        """Remove the entry on a 1-based line.

        Line numbers come from the last listing; re-list afterwards.

        Raises:
            StorageError: If the file does not exist.
            LineOutOfRangeError: If the line does not exist. The file is unchanged.
        """
        content = read_text_file(self.path)
        if content is None:
            raise StorageError(f"known_hosts does not exist: {self.path}")
        updated = remove_at_line(content, line_number)
        write_text_file(self.path, updated, PRIVATE_FILE_MODE)
        logger.info(f"Removed line {line_number} from {self.path}")

    def write_raw(self, content: str) -> None:
        """Overwrite known_hosts verbatim."""
        self._ssh_dir.ensure_dir()
        write_text_file(self.path, content, PRIVATE_FILE_MODE)
        logger.info(f"Wrote {len(content)} characters to {self.path}")

    def lookup(self, hostname: str, port: str | None = None) -> list[KnownHostEntry]:
        """Find the entries for a host, hashed or not.

        Raises:
            ExternalToolError: If ssh-keygen fails.
        """
        if not self.path.exists():
            return []
        output = self._keygen.find_host(self.path, host_target(hostname, port))
        return parse_lookup_output(output)

    def add_host(self, hostname: str, port: str | None = None) -> list[KnownHostEntry]:
        """Scan a host and replace its known_hosts entries with the result.

        Returns:
            The entries that were added.

        Raises:
            ExternalToolError: If the scan or lookup fails.
        """
        scanned = self._keygen.scan_host(hostname, port)
        stale = {entry.line for entry in self.lookup(hostname, port)}

        lines = self.read_raw().split("\n")
        kept = [line for index, line in enumerate(lines, start=1) if index not in stale]
        content = "\n".join(kept)
        if content and not content.endswith("\n"):
            content += "\n"
        content += scanned if scanned.endswith("\n") else scanned + "\n"

        self.write_raw(content)
        logger.info(f"Added {host_target(hostname, port)} to {self.path}, replaced {len(stale)} entries")
        return parse_entries(scanned)

    def match_config_hosts(
        self,
        hosts: list[HostEntry],
        extra_hosts: tuple[str, ...] = COMMON_HOSTS,
    ) -> dict[int, list[str]]:
        """Map known_hosts line numbers to the config aliases that use them.

        Hosts that cannot be looked up are left out.

        Args:
            hosts: Parsed config entries.
            extra_hosts: Well-known host names to label as well.

        Returns:
            Line number to list of aliases or host names.
        """
        targets = [(host.alias, host.host_name or host.alias, host.port) for host in hosts]
        targets.extend((name, name, "") for name in extra_hosts)

        line_to_hosts: dict[int, list[str]] = {}
        for label, hostname, port in targets:
            try:
                matches = self.lookup(hostname, port)
            except ExternalToolError as e:
                logger.debug(f"Lookup of {hostname} failed: {e}")
                continue
            for entry in matches:
                labels = line_to_hosts.setdefault(entry.line, [])
                if label not in labels:
                    labels.append(label)
        return line_to_hosts
