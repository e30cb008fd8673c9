"""
Command execution on the workstation, the Proxmox host and the control VM.

Every setup step talks to its target through a ``Shell``:

- ``LocalShell`` runs commands with ``bash -c`` on this machine
- ``RemoteShell`` runs them on the Proxmox host over paramiko SSH
- ``GuestShell`` hops from another shell into the control VM with ``ssh``
"""

import logging
import shlex
import socket
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import paramiko

from proxmox_dr import constants

logger = logging.getLogger(__name__)

TIMEOUT_RETURNCODE = 124


@dataclass
class CommandResult:
    """Result of a single shell command."""

    command: str
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class CommandError(RuntimeError):
    """Raised when a checked command exits non-zero."""

    def __init__(self, result: CommandResult):
        detail = result.stderr.strip() or result.stdout.strip()
        super().__init__(f"Command failed ({result.returncode}): {result.command}" + (f"\n{detail}" if detail else ""))
        self.result = result


class Shell:
    """Base class: subclasses implement ``_execute``."""

    name = "shell"

    def _execute(self, command: str, timeout: Optional[int], stream: bool) -> CommandResult:
        raise NotImplementedError

    def run(self, command: str, check: bool = True, timeout: Optional[int] = None, stream: bool = False) -> CommandResult:
        """Run a command.

        Args:
            command: Shell command line
            check: Raise ``CommandError`` on a non-zero exit
            timeout: Seconds before the command is abandoned (exit code 124)
            stream: Log output lines as they arrive instead of only on failure

        Returns:
            CommandResult for the command
        """
        logger.debug(f"[{self.name}] $ {command}")
        result = self._execute(command, timeout, stream)
        if not result.ok:
            logger.debug(f"[{self.name}] exit {result.returncode}: {result.stderr.strip()}")
            if check:
                raise CommandError(result)
        return result

    def succeeds(self, command: str, timeout: Optional[int] = None) -> bool:
        return self.run(command, check=False, timeout=timeout).ok

    def command_exists(self, name: str) -> bool:
        return self.succeeds(f"command -v {shlex.quote(name)} >/dev/null 2>&1")

    def file_exists(self, path: str) -> bool:
        return self.succeeds(f"test -f {shlex.quote(str(path))}")

    def dir_exists(self, path: str) -> bool:
        return self.succeeds(f"test -d {shlex.quote(str(path))}")

    def read_file(self, path: str) -> Optional[str]:
        """Return file content, or None when it cannot be read."""
        result = self.run(f"cat {shlex.quote(str(path))}", check=False)
        return result.stdout if result.ok else None

    def write_file(self, path: str, content: str, mode: Optional[str] = None) -> None:
        """Replace ``path`` with ``content``, optionally setting its mode."""
        quoted = shlex.quote(str(path))
        self.run(f"printf '%s' {shlex.quote(content)} > {quoted}")
        if mode:
            self.run(f"chmod {mode} {quoted}")


class LocalShell(Shell):
    """Run commands on this machine."""

    name = "local"

    def _execute(self, command: str, timeout: Optional[int], stream: bool) -> CommandResult:
        if stream:
            return self._execute_streaming(command, timeout)
        try:
            proc = subprocess.run(["bash", "-c", command], capture_output=True, text=True, timeout=timeout)
        except subprocess.TimeoutExpired:
            logger.error(f"Timeout after {timeout}s: {command}")
            return CommandResult(command, TIMEOUT_RETURNCODE, "", f"timed out after {timeout}s")
        return CommandResult(command, proc.returncode, proc.stdout, proc.stderr)

    def _execute_streaming(self, command: str, timeout: Optional[int]) -> CommandResult:
        proc = subprocess.Popen(
            ["bash", "-c", command], stdout=subprocess.PIPE, stderr=subprocess.STDOUT, text=True
        )
        lines = []
        assert proc.stdout is not None
        for line in proc.stdout:
            lines.append(line)
            logger.info(line.rstrip())
        try:
            returncode = proc.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            proc.kill()
            return CommandResult(command, TIMEOUT_RETURNCODE, "".join(lines), f"timed out after {timeout}s")
        return CommandResult(command, returncode, "".join(lines), "")


class RemoteShell(Shell):
    """Run commands on the Proxmox host over SSH."""

    def __init__(self, host: str, user: str = "root", port: int = 22, key_filename: Optional[str] = None):
        self.host = host
        self.user = user
        self.port = port
        self.key_filename = key_filename
        self.name = f"{user}@{host}"
        self._client: Optional[paramiko.SSHClient] = None

    def connect(self) -> "RemoteShell":
        if self._client is None:
            client = paramiko.SSHClient()
            client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
            client.connect(
                hostname=self.host,
                port=self.port,
                username=self.user,
                key_filename=self.key_filename,
                timeout=constants.SSH_CONNECT_TIMEOUT,
            )
            self._client = client
        return self

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    def __enter__(self) -> "RemoteShell":
        return self.connect()

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _execute(self, command: str, timeout: Optional[int], stream: bool) -> CommandResult:
        self.connect()
        assert self._client is not None
        stdin, stdout, stderr = self._client.exec_command(command, timeout=timeout)
        try:
            if stream:
                lines = []
                for line in iter(stdout.readline, ""):
                    lines.append(line)
                    logger.info(line.rstrip())
                out = "".join(lines)
            else:
                out = stdout.read().decode()
            err = stderr.read().decode()
            returncode = stdout.channel.recv_exit_status()
        except socket.timeout:
            logger.error(f"Timeout after {timeout}s on {self.host}: {command}")
            return CommandResult(command, TIMEOUT_RETURNCODE, "", f"timed out after {timeout}s")
        return CommandResult(command, returncode, out, err)

    def put_file(self, local_path: Path, remote_path: str, mode: Optional[int] = None) -> None:
        """Upload a file over SFTP."""
        self.connect()
        assert self._client is not None
        sftp = self._client.open_sftp()
        try:
            sftp.put(str(local_path), remote_path)
            if mode is not None:
                sftp.chmod(remote_path, mode)
        finally:
            sftp.close()


class GuestShell(Shell):
    """Run commands on a VM by hopping through another shell with ``ssh``."""

    def __init__(self, via: Shell, target: str, identity_file: str = constants.PROXMOX_AUTOMATION_KEY):
        self.via = via
        self.target = target
        self.identity_file = identity_file
        self.name = target

    @property
    def ssh_options(self) -> str:
        return (
            f"-i {self.identity_file} -o StrictHostKeyChecking=no -o UserKnownHostsFile=/dev/null "
            f"-o BatchMode=yes -o ConnectTimeout={constants.SSH_CONNECT_TIMEOUT} -o LogLevel=ERROR"
        )

    def _execute(self, command: str, timeout: Optional[int], stream: bool) -> CommandResult:
        wrapped = f"ssh {self.ssh_options} {self.target} {shlex.quote(command)}"
        result = self.via.run(wrapped, check=False, timeout=timeout, stream=stream)
        return CommandResult(command, result.returncode, result.stdout, result.stderr)

    def copy_from_host(self, source: str, destination: str) -> None:
        """Copy a file from the hop host to the VM with ``scp``."""
        self.via.run(f"scp {self.ssh_options} {shlex.quote(source)} {self.target}:{shlex.quote(destination)}")

    def wait_until_reachable(
        self,
        attempts: int = constants.VM_READY_TIMEOUT,
        interval: int = constants.VM_READY_INTERVAL,
        initial_delay: int = constants.VM_READY_INITIAL_WAIT,
    ) -> bool:
        """Poll until an SSH command succeeds, at most ``attempts`` times."""
        if initial_delay:
            logger.info(f"⏳ Waiting {initial_delay}s for {self.target} to boot")
            time.sleep(initial_delay)
        for attempt in range(1, attempts + 1):
            if self.succeeds("true"):
                logger.info(f"✅ {self.target} is reachable")
                return True
            logger.info(f"⏳ Waiting for SSH on {self.target} ({attempt}/{attempts})")
            if attempt < attempts:
                time.sleep(interval)
        logger.error(f"❌ {self.target} not reachable after {attempts} attempts")
        return False
