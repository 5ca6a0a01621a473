"""Command-line interface for sshkeeper.

This module provides command-line access to:
- Host blocks in the SSH config file
- known_hosts entries
- Key pairs in the SSH directory
- Backups of the SSH directory
"""

import argparse
import logging
import os
import sys
from pathlib import Path

from pydantic import ValidationError

from sshkeeper.core.config import Settings, get_default_settings_path
from sshkeeper.core.errors import SSHKeeperError
from sshkeeper.core.logging_setup import resolve_level, setup_logging
from sshkeeper.core.paths import (
    SSH_DIR_ENV,
    TEXT_ENCODING,
    TEXT_ERRORS,
    SSHDir,
    is_key_file,
)
from sshkeeper.core.types import HostEntry, KeyGenRequest, KeyType
from sshkeeper.ssh.backup import BackupManager
from sshkeeper.ssh.config import HostConfigStore, format_block
from sshkeeper.ssh.keygen import SSHKeygen
from sshkeeper.ssh.keys import SSHKeyStore
from sshkeeper.ssh.known_hosts import KnownHostsStore

logger = logging.getLogger(__name__)


def load_settings(args: argparse.Namespace) -> Settings:
    """Load settings from ``--config`` or the default location.

    Args:
        args: Parsed arguments.

    Returns:
        Settings instance.
    """
    path = Path(args.config) if args.config else get_default_settings_path()
    return Settings.from_file(path)


def resolve_ssh_dir(args: argparse.Namespace, settings: Settings) -> SSHDir:
    """Pick the SSH root: flag, then environment, then settings, then default.

    Args:
        args: Parsed arguments.
        settings: Loaded settings.

    Returns:
        SSHDir instance.
    """
    if args.ssh_dir or os.environ.get(SSH_DIR_ENV):
        return SSHDir.resolve(args.ssh_dir)
    return SSHDir.resolve(settings.get("ssh_dir"))


def build_keygen(settings: Settings) -> SSHKeygen:
    """Create the ssh-keygen wrapper from settings."""
    return SSHKeygen(
        executable=settings.get("keygen.executable", "ssh-keygen"),
        keyscan_executable=settings.get("keygen.keyscan_executable", "ssh-keyscan"),
    )


def parse_options(pairs: list[str] | None) -> dict[str, str]:
    """Turn ``KEY=VALUE`` arguments into a dictionary.

    Raises:
        argparse.ArgumentTypeError: If an item has no ``=``.
    """
    options: dict[str, str] = {}
    for pair in pairs or []:
        key, sep, value = pair.partition("=")
        if not sep or not key.strip():
            raise argparse.ArgumentTypeError(f"Expected KEY=VALUE, got {pair!r}")
        options[key.strip()] = value.strip()
    return options


def _read_input(source: str) -> str:
    if source == "-":
        return sys.stdin.read()
    return Path(source).read_bytes().decode(TEXT_ENCODING, TEXT_ERRORS)


# --- hosts -----------------------------------------------------------------


def cmd_hosts_list(args: argparse.Namespace) -> int:
    """List host entries."""
    hosts = HostConfigStore(args.ssh).list_hosts()
    if not hosts:
        print("No hosts defined.")
        return 0

    for host in hosts:
        target = host.host_name or "-"
        if host.user:
            target = f"{host.user}@{target}"
        if host.port:
            target = f"{target}:{host.port}"
        identity = ""
        if host.identity_file:
            missing = "" if is_key_file(args.ssh.base, host.identity_file) else " (missing)"
            identity = f"  [{host.identity_file}{missing}]"
        print(f"  {host.alias:<24} {target}{identity}")
    return 0


def cmd_hosts_show(args: argparse.Namespace) -> int:
    """Show one host block."""
    host = HostConfigStore(args.ssh).get_host(args.alias)
    print(format_block(host).strip())
    return 0


def cmd_hosts_add(args: argparse.Namespace) -> int:
    """Append a new host block."""
    entry = HostEntry(
        alias=args.alias,
        host_name=args.hostname or "",
        user=args.user or "",
        port=args.port or "",
        identity_file=args.identity_file or "",
        options=parse_options(args.option),
    )
    HostConfigStore(args.ssh).add_host(entry)
    print(f"Added host {entry.alias}")
    return 0


def cmd_hosts_update(args: argparse.Namespace) -> int:
    """Change fields of an existing host block."""
    store = HostConfigStore(args.ssh)
    current = store.get_host(args.alias)

    changes: dict[str, object] = {}
    for field, value in (
        ("host_name", args.hostname),
        ("user", args.user),
        ("port", args.port),
        ("identity_file", args.identity_file),
    ):
        if value is not None:
            changes[field] = value
    options = dict(current.options)
    options.update(parse_options(args.option))
    for key in args.remove_option or []:
        options = {k: v for k, v in options.items() if k.lower() != key.lower()}
    changes["options"] = options

    store.update_host(current.model_copy(update=changes))
    print(f"Updated host {args.alias}")
    return 0


def cmd_hosts_delete(args: argparse.Namespace) -> int:
    """Remove a host block."""
    HostConfigStore(args.ssh).delete_host(args.alias)
    print(f"Deleted host {args.alias}")
    return 0


def cmd_hosts_refs(args: argparse.Namespace) -> int:
    """Show how many hosts use each identity file."""
    counts = HostConfigStore(args.ssh).reference_count()
    if not counts:
        print("No identity files referenced.")
        return 0
    for identity_file, count in sorted(counts.items()):
        print(f"  {count:>3}  {identity_file}")
    return 0


def cmd_hosts_raw(args: argparse.Namespace) -> int:
    """Print or replace the raw config file."""
    store = HostConfigStore(args.ssh)
    if args.write is None:
        raw = store.read_raw().encode(TEXT_ENCODING, TEXT_ERRORS)
        sys.stdout.write(raw.decode(TEXT_ENCODING, "replace"))
        return 0
    store.write_raw(_read_input(args.write))
    print(f"Wrote {store.path}")
    return 0


# --- known_hosts -------------------------------------------------------------


def cmd_known_hosts_list(args: argparse.Namespace) -> int:
    """List known_hosts entries."""
    store = KnownHostsStore(args.ssh, build_keygen(args.settings))
    entries = store.list_entries(args.query)
    if not entries:
        print("No known hosts found.")
        return 0

    labels: dict[int, list[str]] = {}
    if args.match:
        labels = store.match_config_hosts(HostConfigStore(args.ssh).list_hosts())

    for entry in entries:
        hosts = "(hashed)" if entry.is_hashed else entry.hosts
        fingerprint = entry.fingerprint or "-"
        print(f"  {entry.line:>4}  {hosts:<32} {entry.key_type:<20} {fingerprint}")
        if entry.line in labels:
            print(f"        used by: {', '.join(labels[entry.line])}")
    return 0


def cmd_known_hosts_remove(args: argparse.Namespace) -> int:
    """Remove a known_hosts line."""
    store = KnownHostsStore(args.ssh, build_keygen(args.settings))
    store.remove_line(args.line)
    print(f"Removed line {args.line}")
    return 0


def cmd_known_hosts_lookup(args: argparse.Namespace) -> int:
    """Find the entries for a host."""
    store = KnownHostsStore(args.ssh, build_keygen(args.settings))
    entries = store.lookup(args.hostname, args.port)
    if not entries:
        print(f"{args.hostname} not found in {store.path}")
        return 1
    for entry in entries:
        print(f"  {entry.line:>4}  {entry.key_type:<20} {entry.fingerprint or '-'}")
    return 0


def cmd_known_hosts_scan(args: argparse.Namespace) -> int:
    """Scan a host and record its keys."""
    store = KnownHostsStore(args.ssh, build_keygen(args.settings))
    added = store.add_host(args.hostname, args.port)
    print(f"Added {len(added)} key(s) for {args.hostname}")
    return 0


# --- keys ------------------------------------------------------------------


def cmd_keys_list(args: argparse.Namespace) -> int:
    """List key pairs."""
    keys = SSHKeyStore(args.ssh, build_keygen(args.settings)).list_keys()
    if not keys:
        print("No keys found.")
        return 0

    counts = HostConfigStore(args.ssh).reference_count()
    for key in keys:
        used = sum(count for path, count in counts.items() if Path(path).name == key.name)
        private = "" if key.has_private else "  (public only)"
        print(f"  {key.name:<24} {key.key_type:<20} {key.bits:>5}  {key.fingerprint}{private}")
        if used:
            print(f"        used by {used} host(s)")
    return 0


def cmd_keys_show(args: argparse.Namespace) -> int:
    """Show one key pair."""
    key = SSHKeyStore(args.ssh, build_keygen(args.settings)).get_key(args.name)
    print(f"Name:        {key.name}")
    print(f"Type:        {key.key_type} ({key.bits} bits)")
    print(f"Fingerprint: {key.fingerprint}")
    print(f"Comment:     {key.comment}")
    print(f"Private key: {'yes' if key.has_private else 'no'}")
    print(f"Modified:    {key.modified_at.isoformat()}")
    print()
    print(key.public_key)
    return 0


def cmd_keys_generate(args: argparse.Namespace) -> int:
    """Generate a key pair with ssh-keygen."""
    request = KeyGenRequest(
        name=args.name,
        key_type=KeyType(args.type),
        bits=args.bits,
        comment=args.comment or "",
        passphrase=args.passphrase or "",
    )
    key = SSHKeyStore(args.ssh, build_keygen(args.settings)).generate_key(request)
    print(f"Generated {key.name}: {key.fingerprint}")
    return 0


def cmd_keys_delete(args: argparse.Namespace) -> int:
    """Delete a key pair, refusing when hosts still use it unless forced."""
    counts = HostConfigStore(args.ssh).reference_count()
    used = sum(count for path, count in counts.items() if Path(path).name == args.name)
    if used and not args.force:
        print(
            f"Key {args.name} is used by {used} host(s); pass --force to delete anyway.",
            file=sys.stderr,
        )
        return 1

    SSHKeyStore(args.ssh, build_keygen(args.settings)).delete_key(args.name)
    print(f"Deleted key {args.name}")
    return 0


def cmd_keys_comment(args: argparse.Namespace) -> int:
    """Change a key's comment."""
    key = SSHKeyStore(args.ssh, build_keygen(args.settings)).update_comment(
        args.name, args.comment
    )
    print(f"Updated comment of {key.name}: {key.comment}")
    return 0


# --- backup ----------------------------------------------------------------


def cmd_backup_list(args: argparse.Namespace) -> int:
    """List backups."""
    backups = BackupManager(args.ssh).list_backups()
    if not backups:
        print("No backups found.")
        return 0
    for backup in backups:
        created = backup.created_at.astimezone().strftime("%Y-%m-%d %H:%M:%S")
        print(f"  {backup.filename:<40} {backup.size:>10}  {created}")
    return 0


def cmd_backup_create(args: argparse.Namespace) -> int:
    """Create a backup."""
    backup = BackupManager(args.ssh).create_backup()
    print(f"Created {backup.filename} ({backup.size} bytes)")
    return 0


def cmd_backup_restore(args: argparse.Namespace) -> int:
    """Restore a backup, taking a safety backup first."""
    manager = BackupManager(args.ssh)
    # validate before the safety backup so a bad name changes nothing
    manager.resolve_path(args.filename)

    safety = args.settings.get("backup.safety_backup", True) and not args.no_safety_backup
    if safety:
        backup = manager.create_backup()
        print(f"Safety backup: {backup.filename}")

    manager.restore_backup(args.filename)
    print(f"Restored {args.filename} into {args.ssh.base}")
    return 0


def cmd_backup_delete(args: argparse.Namespace) -> int:
    """Delete a backup."""
    BackupManager(args.ssh).delete_backup(args.filename)
    print(f"Deleted {args.filename}")
    return 0


def cmd_backup_path(args: argparse.Namespace) -> int:
    """Print a backup's full path."""
    print(BackupManager(args.ssh).resolve_path(args.filename))
    return 0


def _add_host_fields(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("alias", help="Host alias")
    parser.add_argument("--hostname", "-H", help="HostName value")
    parser.add_argument("--user", "-u", help="User value")
    parser.add_argument("--port", "-p", help="Port value")
    parser.add_argument("--identity-file", "-i", help="IdentityFile value")
    parser.add_argument(
        "--option",
        "-o",
        action="append",
        metavar="KEY=VALUE",
        help="Extra directive (repeatable)",
    )


def create_parser() -> argparse.ArgumentParser:
    """Create CLI argument parser.

    Returns:
        Configured ArgumentParser.
    """
    parser = argparse.ArgumentParser(
        prog="sshkeeper",
        description="Manage SSH config hosts, known_hosts, keys and backups",
    )
    parser.add_argument(
        "--version",
        action="version",
        version="%(prog)s 0.1.0",
    )
    parser.add_argument("--ssh-dir", help="SSH directory (default: ~/.ssh)")
    parser.add_argument("--config", help="Settings file")
    parser.add_argument(
        "--verbose",
        "-v",
        action="count",
        default=0,
        help="Increase log output (-v info, -vv debug)",
    )

    groups = parser.add_subparsers(dest="group", help="Available command groups")

    # hosts
    hosts = groups.add_parser("hosts", help="Host blocks in the config file")
    hosts_cmds = hosts.add_subparsers(dest="command")

    p = hosts_cmds.add_parser("list", aliases=["ls"], help="List hosts")
    p.set_defaults(func=cmd_hosts_list)

    p = hosts_cmds.add_parser("show", help="Show a host block")
    p.add_argument("alias", help="Host alias")
    p.set_defaults(func=cmd_hosts_show)

    p = hosts_cmds.add_parser("add", help="Append a host block")
    _add_host_fields(p)
    p.set_defaults(func=cmd_hosts_add)

    p = hosts_cmds.add_parser("update", help="Change a host block")
    _add_host_fields(p)
    p.add_argument(
        "--remove-option",
        action="append",
        metavar="KEY",
        help="Drop an extra directive (repeatable)",
    )
    p.set_defaults(func=cmd_hosts_update)

    p = hosts_cmds.add_parser("delete", aliases=["rm"], help="Remove a host block")
    p.add_argument("alias", help="Host alias")
    p.set_defaults(func=cmd_hosts_delete)

    p = hosts_cmds.add_parser("refs", help="Count identity file references")
    p.set_defaults(func=cmd_hosts_refs)

    p = hosts_cmds.add_parser("raw", help="Print the config file, or replace it")
    p.add_argument("--write", metavar="FILE", help="Replace contents from FILE ('-' for stdin)")
    p.set_defaults(func=cmd_hosts_raw)

    # known-hosts
    known = groups.add_parser("known-hosts", help="Entries in known_hosts")
    known_cmds = known.add_subparsers(dest="command")

    p = known_cmds.add_parser("list", aliases=["ls"], help="List entries")
    p.add_argument("--query", "-q", help="Filter by host, key type or fingerprint")
    p.add_argument("--match", "-m", action="store_true", help="Show which config hosts use each entry")
    p.set_defaults(func=cmd_known_hosts_list)

    p = known_cmds.add_parser("remove", aliases=["rm"], help="Remove an entry by line number")
    p.add_argument("line", type=int, help="1-based line number from 'list'")
    p.set_defaults(func=cmd_known_hosts_remove)

    p = known_cmds.add_parser("lookup", help="Find a host, including hashed entries")
    p.add_argument("hostname", help="Host name or IP")
    p.add_argument("--port", "-p", help="SSH port")
    p.set_defaults(func=cmd_known_hosts_lookup)

    p = known_cmds.add_parser("scan", help="Scan a host with ssh-keyscan and record its keys")
    p.add_argument("hostname", help="Host name or IP")
    p.add_argument("--port", "-p", help="SSH port")
    p.set_defaults(func=cmd_known_hosts_scan)

    # keys
    keys = groups.add_parser("keys", help="Key pairs in the SSH directory")
    keys_cmds = keys.add_subparsers(dest="command")

    p = keys_cmds.add_parser("list", aliases=["ls"], help="List key pairs")
    p.set_defaults(func=cmd_keys_list)

    p = keys_cmds.add_parser("show", help="Show a key pair")
    p.add_argument("name", help="Key name")
    p.set_defaults(func=cmd_keys_show)

    p = keys_cmds.add_parser("generate", aliases=["gen"], help="Generate a key pair")
    p.add_argument("name", help="Key file name")
    p.add_argument(
        "--type",
        "-t",
        choices=[t.value for t in KeyType],
        default=KeyType.ED25519.value,
        help="Key algorithm",
    )
    p.add_argument("--bits", "-b", type=int, default=0, help="Key size (rsa/ecdsa)")
    p.add_argument("--comment", "-C", help="Key comment")
    p.add_argument("--passphrase", "-N", help="Passphrase (empty for none)")
    p.set_defaults(func=cmd_keys_generate)

    p = keys_cmds.add_parser("delete", aliases=["rm"], help="Delete a key pair")
    p.add_argument("name", help="Key name")
    p.add_argument("--force", "-f", action="store_true", help="Delete even if hosts use it")
    p.set_defaults(func=cmd_keys_delete)

    p = keys_cmds.add_parser("comment", help="Change a key's comment")
    p.add_argument("name", help="Key name")
    p.add_argument("comment", help="New comment")
    p.set_defaults(func=cmd_keys_comment)

    # backup
    backup = groups.add_parser("backup", help="Backups of the SSH directory")
    backup_cmds = backup.add_subparsers(dest="command")

    p = backup_cmds.add_parser("list", aliases=["ls"], help="List backups")
    p.set_defaults(func=cmd_backup_list)

    p = backup_cmds.add_parser("create", help="Create a backup")
    p.set_defaults(func=cmd_backup_create)

    p = backup_cmds.add_parser("restore", help="Replace the SSH directory with a backup")
    p.add_argument("filename", help="Backup filename from 'list'")
    p.add_argument(
        "--no-safety-backup",
        action="store_true",
        help="Do not back up the current state first",
    )
    p.set_defaults(func=cmd_backup_restore)

    p = backup_cmds.add_parser("delete", aliases=["rm"], help="Delete a backup")
    p.add_argument("filename", help="Backup filename")
    p.set_defaults(func=cmd_backup_delete)

    p = backup_cmds.add_parser("path", help="Print a backup's full path")
    p.add_argument("filename", help="Backup filename")
    p.set_defaults(func=cmd_backup_path)

    return parser


def main(argv: list[str] | None = None) -> int:
    """CLI entry point.

    Args:
        argv: Arguments; defaults to ``sys.argv[1:]``.

    Returns:
        Exit code.
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    if getattr(args, "func", None) is None:
        parser.print_help()
        print()
        print("Quick start:")
        print("  sshkeeper hosts list                     # List config hosts")
        print("  sshkeeper hosts add web -H 10.0.0.5 -u deploy")
        print("  sshkeeper known-hosts list -q github     # Search known_hosts")
        print("  sshkeeper keys generate id_work -C me@work")
        print("  sshkeeper backup create                  # Snapshot ~/.ssh")
        return 0

    try:
        args.settings = load_settings(args)
        setup_logging(resolve_level(args.settings.get("log_level"), args.verbose))
        args.ssh = resolve_ssh_dir(args, args.settings)
        logger.debug(f"Using SSH directory {args.ssh.base}")
        return args.func(args)
    except SSHKeeperError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1
    except ValidationError as e:
        print(f"error: {e.errors()[0]['msg']}", file=sys.stderr)
        return 1
    except argparse.ArgumentTypeError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1
    except OSError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
