"""Wrapper around the OpenSSH key tools found on PATH."""

import logging
import subprocess
from pathlib import Path

from sshkeeper.core.errors import ExternalToolError
from sshkeeper.core.types import KeyGenRequest

logger = logging.getLogger(__name__)

DEFAULT_SSH_PORT = "22"


def host_target(hostname: str, port: str | int | None = None) -> str:
    """Format a host the way known_hosts records it.

    Args:
        hostname: Host name or IP address.
        port: SSH port; the default port is left out.

    Returns:
        ``hostname`` or ``[hostname]:port``.
    """
    port = str(port) if port else ""
    if port and port != DEFAULT_SSH_PORT:
        return f"[{hostname}]:{port}"
    return hostname


class SSHKeygen:
    """Runs ssh-keygen and ssh-keyscan as subprocesses."""

    def __init__(
        self,
        executable: str = "ssh-keygen",
        keyscan_executable: str = "ssh-keyscan",
        timeout: int = 60,
    ) -> None:
        """Initialize the wrapper.

        Args:
            executable: ssh-keygen program name or path.
            keyscan_executable: ssh-keyscan program name or path.
            timeout: Seconds to wait for each invocation.
        """
        self._executable = executable
        self._keyscan_executable = keyscan_executable
        self._timeout = timeout

    @property
    def executable(self) -> str:
        """Get the ssh-keygen program."""
        return self._executable

    @property
    def keyscan_executable(self) -> str:
        """Get the ssh-keyscan program."""
        return self._keyscan_executable

    def _run(self, cmd: list[str]) -> subprocess.CompletedProcess:
        logger.debug(f"Running: {' '.join(cmd[:2])} ...")
        try:
            return subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                stdin=subprocess.DEVNULL,
                timeout=self._timeout,
            )
        except FileNotFoundError as e:
            raise ExternalToolError(cmd[0], None, f"executable not found on PATH: {e}") from e
        except subprocess.TimeoutExpired as e:
            raise ExternalToolError(cmd[0], None, f"timed out after {self._timeout}s") from e

    def _check(self, cmd: list[str], result: subprocess.CompletedProcess) -> str:
        output = (result.stdout or "") + (result.stderr or "")
        if result.returncode != 0:
            raise ExternalToolError(cmd[0], result.returncode, output)
        return result.stdout or ""

    def build_generate_command(self, key_path: Path, request: KeyGenRequest) -> list[str]:
        """Build the ssh-keygen command line for a new key pair.

        Args:
            key_path: Private key path to create.
            request: Generation parameters.

        Returns:
            Command line as list.
        """
        cmd = [
            self._executable,
            "-q",
            "-t",
            request.key_type.value,
            "-f",
            str(key_path),
            "-N",
            request.passphrase,
        ]
        if request.comment:
            cmd.extend(["-C", request.comment])
        if request.bits > 0 and request.key_type.supports_bits:
            cmd.extend(["-b", str(request.bits)])
        return cmd

    def generate(self, key_path: Path, request: KeyGenRequest) -> None:
        """Generate a key pair at ``key_path``.

        Raises:
            ExternalToolError: If ssh-keygen fails.
        """
        cmd = self.build_generate_command(key_path, request)
        self._check(cmd, self._run(cmd))

    def change_comment(self, key_path: Path, comment: str) -> None:
        """Rewrite the comment of an existing key pair.

        Raises:
            ExternalToolError: If ssh-keygen fails, e.g. for a protected key.
        """
        cmd = [self._executable, "-c", "-f", str(key_path), "-C", comment]
        self._check(cmd, self._run(cmd))

    def find_host(self, known_hosts_path: Path, target: str) -> str:
        """Look up a host in known_hosts, including hashed entries.

        Args:
            known_hosts_path: known_hosts file to search.
            target: Host as produced by :func:`host_target`.

        Returns:
            ssh-keygen's output, or an empty string if the host is unknown.
        """
        cmd = [self._executable, "-F", target, "-f", str(known_hosts_path)]
        result = self._run(cmd)
        # exit status 1 with nothing printed means "not found"
        if result.returncode == 1 and "found:" not in (result.stdout or ""):
            return ""
        return self._check(cmd, result)

    def scan_host(self, hostname: str, port: str | int | None = None) -> str:
        """Fetch a host's public keys as hashed known_hosts lines.

        Raises:
            ExternalToolError: If ssh-keyscan fails or returns no keys.
        """
        cmd = [
            self._keyscan_executable,
            "-H",
            "-p",
            str(port) if port else DEFAULT_SSH_PORT,
            hostname,
        ]
        output = self._check(cmd, self._run(cmd))
        if not output.strip():
            raise ExternalToolError(cmd[0], 0, f"no host keys returned for {hostname}")
        return output
