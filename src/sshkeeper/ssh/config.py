"""SSH config file parsing and block-preserving edits.

The config file is the source of truth. Edits never re-render the whole
file: a block is located by scanning lines and only that block's lines are
replaced, so comments, ``Host *`` sections and formatting elsewhere survive
untouched.
"""

import logging
import re
from collections import Counter
from enum import Enum
from pathlib import Path

from sshkeeper.core.errors import HostNotFoundError, InvalidInputError, StorageError
from sshkeeper.core.paths import (
    PRIVATE_FILE_MODE,
    SSHDir,
    read_text_file,
    write_text_file,
)
from sshkeeper.core.types import WILDCARD_ALIAS, HostEntry

logger = logging.getLogger(__name__)

HOST_DIRECTIVE = "Host "
INDENT = "    "

_DIRECTIVE_RE = re.compile(r"^([A-Za-z][A-Za-z0-9]*)\s*[=\s]\s*(.*?)\s*$")

# lower-cased directive name -> HostEntry field
_KNOWN_DIRECTIVES = {
    "hostname": "host_name",
    "user": "user",
    "port": "port",
    "identityfile": "identity_file",
}

# rendering order for format_block
_FIELD_DIRECTIVES = (
    ("host_name", "HostName"),
    ("user", "User"),
    ("port", "Port"),
    ("identity_file", "IdentityFile"),
)


def host_patterns(line: str) -> list[str] | None:
    """Return the pattern list of a ``Host`` line, or None for any other line."""
    stripped = line.strip()
    if not stripped.startswith(HOST_DIRECTIVE):
        return None
    return stripped[len(HOST_DIRECTIVE) :].split()


def split_directive(line: str) -> tuple[str, str] | None:
    """Split ``Key Value`` or ``Key=Value`` into its parts.

    Returns None for blank lines, comments and lines without a recognizable key.
    """
    stripped = line.strip()
    if not stripped or stripped.startswith("#"):
        return None
    match = _DIRECTIVE_RE.match(stripped)
    if match is None:
        return None
    return match.group(1), match.group(2)


def parse_entries(text: str) -> list[HostEntry]:
    """Parse config text into host entries.

    ``Host *`` blocks and anything before the first ``Host`` line are not
    returned. Malformed directive lines are skipped.

    Args:
        text: Config file contents.

    Returns:
        Host entries in file order.
    """
    entries: list[HostEntry] = []
    current: dict | None = None

    def flush() -> None:
        if current is not None:
            entries.append(HostEntry(**current))

    for line in text.splitlines():
        patterns = host_patterns(line)
        if patterns is not None:
            flush()
            if not patterns or patterns[0] == WILDCARD_ALIAS:
                current = None
            else:
                current = {"alias": patterns[0], "options": {}}
            continue

        if current is None:
            continue

        directive = split_directive(line)
        if directive is None:
            continue
        key, value = directive
        field = _KNOWN_DIRECTIVES.get(key.lower())
        if field is not None:
            current[field] = value
        else:
            current["options"][key] = value

    flush()
    return entries


def lookup_by_alias(text: str, alias: str) -> HostEntry:
    """Find the entry whose primary alias equals ``alias``.

    Raises:
        HostNotFoundError: If no block has that alias.
    """
    for entry in parse_entries(text):
        if entry.alias == alias:
            return entry
    raise HostNotFoundError(alias)


def format_block(entry: HostEntry) -> str:
    """Render a host entry as a config block.

    The block starts with a blank line so it is separated from whatever
    precedes it when appended.
    """
    lines = ["", f"Host {entry.alias}"]
    for field, directive in _FIELD_DIRECTIVES:
        value = getattr(entry, field)
        if value:
            lines.append(f"{INDENT}{directive} {value}")
    for key, value in entry.options.items():
        lines.append(f"{INDENT}{key} {value}")
    return "\n".join(lines) + "\n"


class SpliceState(Enum):
    """Scanner state of BlockSplicer."""

    OUTSIDE = "outside"
    INSIDE_TARGET = "inside_target"


class BlockSplicer:
    """Line scanner that drops one alias's block and emits a replacement.

    Lines are fed one at a time. A ``Host`` line naming the alias switches to
    INSIDE_TARGET and every line is dropped until the next ``Host`` line or
    the end of input. When the state is left the pending replacement is
    emitted once and cleared.
    """

    def __init__(self, alias: str, replacement: str = "") -> None:
        self._alias = alias
        self._pending: str | None = replacement.strip() or None
        self._state = SpliceState.OUTSIDE
        self._output: list[str] = []

    @property
    def state(self) -> SpliceState:
        return self._state

    @property
    def pending(self) -> str | None:
        """Replacement text not yet emitted."""
        return self._pending

    def feed(self, line: str) -> None:
        patterns = host_patterns(line)
        if patterns is not None:
            if self._alias in patterns:
                self._state = SpliceState.INSIDE_TARGET
                return
            if self._state is SpliceState.INSIDE_TARGET:
                self._leave_block()

        if self._state is SpliceState.OUTSIDE:
            self._output.append(line)

    def finish(self) -> str:
        """Close the scan and return the spliced text."""
        if self._state is SpliceState.INSIDE_TARGET:
            self._leave_block()
        return "\n".join(self._output)

    def _leave_block(self) -> None:
        self._state = SpliceState.OUTSIDE
        if self._pending is not None:
            self._output.append(self._pending)
            self._output.append("")
            self._pending = None


def splice_block(text: str, alias: str, replacement: str = "") -> str:
    """Replace or remove the block whose ``Host`` line lists ``alias``.

    Args:
        text: Config file contents.
        alias: Pattern to look for on ``Host`` lines.
        replacement: New block text; empty removes the block.

    Returns:
        The edited text. Lines outside the block are copied unchanged.
    """
    splicer = BlockSplicer(alias, replacement)
    for line in text.split("\n"):
        splicer.feed(line)
    return splicer.finish()


def reference_count(entries: list[HostEntry]) -> dict[str, int]:
    """Count how many entries use each IdentityFile value."""
    counts = Counter(entry.identity_file for entry in entries if entry.identity_file)
    return dict(counts)


class HostConfigStore:
    """Reads and edits the config file of an SSH directory."""

    def __init__(self, ssh_dir: SSHDir) -> None:
        """Initialize the store.

        Args:
            ssh_dir: Directory locator.
        """
        self._ssh_dir = ssh_dir

    @property
    def path(self) -> Path:
        """Get the config file path."""
        return self._ssh_dir.config_path

    def read_raw(self) -> str:
        """Get the file contents; empty if the file does not exist."""
        content = read_text_file(self.path)
        return content if content is not None else ""

    def list_hosts(self) -> list[HostEntry]:
        """Parse the config file into host entries."""
        return parse_entries(self.read_raw())

    def get_host(self, alias: str) -> HostEntry:
        """Get one host entry by alias.

        Raises:
            HostNotFoundError: If the alias is not defined.
        """
        return lookup_by_alias(self.read_raw(), alias)

    def add_host(self, entry: HostEntry) -> None:
        """Append a new block, creating the directory and file if needed.

        Raises:
            InvalidInputError: If a block with the same alias already exists.
        """
        if any(existing.alias == entry.alias for existing in self.list_hosts()):
            raise InvalidInputError(f"Host already exists: {entry.alias}")

        self._ssh_dir.ensure_dir()
        write_text_file(self.path, format_block(entry), PRIVATE_FILE_MODE, append=True)
        logger.info(f"Added host {entry.alias} to {self.path}")

    def update_host(self, entry: HostEntry) -> None:
        """Replace the block of ``entry.alias`` with the entry's rendering.

        Raises:
            StorageError: If the config file does not exist.
            HostNotFoundError: If the alias is not defined.
        """
        text = self._read_existing()
        lookup_by_alias(text, entry.alias)
        write_text_file(
            self.path, splice_block(text, entry.alias, format_block(entry)), PRIVATE_FILE_MODE
        )
        logger.info(f"Updated host {entry.alias} in {self.path}")

    def delete_host(self, alias: str) -> None:
        """Remove the block of ``alias``.

        Raises:
            StorageError: If the config file does not exist.
            HostNotFoundError: If the alias is not defined.
        """
        text = self._read_existing()
        lookup_by_alias(text, alias)
        write_text_file(self.path, splice_block(text, alias, ""), PRIVATE_FILE_MODE)
        logger.info(f"Deleted host {alias} from {self.path}")

    def write_raw(self, content: str) -> None:
        """Overwrite the config file verbatim."""
        self._ssh_dir.ensure_dir()
        write_text_file(self.path, content, PRIVATE_FILE_MODE)
        logger.info(f"Wrote {len(content)} characters to {self.path}")

    def reference_count(self) -> dict[str, int]:
        """Count IdentityFile references across all hosts."""
        return reference_count(self.list_hosts())

    def _read_existing(self) -> str:
        content = read_text_file(self.path)
        if content is None:
            raise StorageError(f"Config file does not exist: {self.path}")
        return content
