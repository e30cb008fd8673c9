"""Shared test fixtures for proxmox-dr tests."""

import shlex
from pathlib import Path
from typing import Dict, List, Optional, Set, Tuple
from unittest import mock

import pytest

from proxmox_dr.config import ControlVMSettings, DRConfig
from proxmox_dr.service_catalog import ServiceCatalog
from proxmox_dr.shell import CommandResult, Shell

BASE_CONFIG = {
    "PROXMOX_HOST": "pve.example.lan",
    "SSH_USER": "root",
    "SSH_PORT": "22",
    "PROXMOX_HOST_IP": "192.168.1.10",
    "PROXMOX_HOSTNAME": "pve",
    "GATEWAY_IP": "192.168.1.1",
    "DNS_SERVERS": "1.1.1.1 8.8.8.8",
    "PRIVATE_NETWORK_CIDR": "192.168.1.0/24",
    "PUBLIC_NETWORK_CIDR": "192.168.2.0/24",
    "PUBLIC_VLAN_TAG": "10",
    "UNAS_PRIVATE_IP": "192.168.1.20",
    "UNAS_PUBLIC_IP": "192.168.2.20",
    "NFS_PUBLIC_MEDIA_MOUNT": "/mnt/media",
    "SMB_PRIVATE_MOUNT": "/mnt/private",
    "SMB_PUBLIC_MOUNT": "/mnt/public",
    "SMB_USERNAME": "proxmox.server",
    "SMB_PASSWORD": "s3cret",
    "CONTROL_VM_IP": "192.168.1.50",
}

class FakeShell(Shell):
    """
    Scripted shell double.

    Commands are recorded in ``commands``. A registered response applies to
    every command containing its pattern (latest registration wins). Without
    a match, ``cat``, ``printf ... >``, ``test -f`` and ``test -d`` act on the
    in-memory ``files``/``dirs``; anything else succeeds with no output.
    """

    name = "fake"

    def __init__(self, files: Optional[Dict[str, str]] = None, dirs: Optional[Set[str]] = None):
        self.commands: List[str] = []
        self.responses: List[Tuple[str, int, str, str]] = []
        self.files: Dict[str, str] = dict(files or {})
        self.dirs: Set[str] = set(dirs or ())

    def respond(self, pattern: str, returncode: int = 0, stdout: str = "", stderr: str = "") -> None:
        self.responses.append((pattern, returncode, stdout, stderr))

    def ran(self, fragment: str) -> bool:
        return any(fragment in command for command in self.commands)

    def _execute(self, command: str, timeout: Optional[int], stream: bool) -> CommandResult:
        self.commands.append(command)
        for pattern, returncode, stdout, stderr in reversed(self.responses):
            if pattern in command:
                return CommandResult(command, returncode, stdout, stderr)

        try:
            tokens = shlex.split(command)
        except ValueError:
            tokens = []
        if len(tokens) == 2 and tokens[0] == "cat":
            if tokens[1] in self.files:
                return CommandResult(command, 0, self.files[tokens[1]])
            return CommandResult(command, 1, "", "No such file or directory")
        if len(tokens) == 5 and tokens[0] == "printf" and tokens[3] == ">":
            self.files[tokens[4]] = tokens[2]
            return CommandResult(command, 0)
        if len(tokens) == 3 and tokens[0] == "test" and tokens[1] == "-f":
            return CommandResult(command, 0 if tokens[2] in self.files else 1)
        if len(tokens) == 3 and tokens[0] == "test" and tokens[1] == "-d":
            return CommandResult(command, 0 if tokens[2] in self.dirs else 1)
        return CommandResult(command, 0)


@pytest.fixture
def fake_shell():
    return FakeShell()


@pytest.fixture
def dr_config() -> DRConfig:
    """Complete deployment configuration."""
    return DRConfig(values=dict(BASE_CONFIG))


@pytest.fixture
def config_file(tmp_path) -> Path:
    path = tmp_path / "proxmox-config.env"
    path.write_text("\n".join(f'{key}="{value}"' for key, value in BASE_CONFIG.items()) + "\n")
    return path


@pytest.fixture
def mock_proxmox():
    """ProxmoxClient double."""
    proxmox = mock.MagicMock()
    proxmox.vm_status.return_value = None
    proxmox.vm_exists.return_value = False
    proxmox.missing_bridges.return_value = []
    return proxmox


@pytest.fixture
def settings(tmp_path) -> ControlVMSettings:
    """Control VM settings rooted in a temporary directory."""
    project_root = tmp_path / "homelab-iac"
    return ControlVMSettings(
        project_root=project_root,
        compose_dir=project_root / "control-vm" / "docker-compose",
        backup_mount=tmp_path / "backup",
        smb_password="s3cret",
        smb_credentials=tmp_path / "smb-credentials",
        control_vm_ip="192.168.1.50",
        auto_confirm=True,
    )


@pytest.fixture
def catalog() -> ServiceCatalog:
    return ServiceCatalog.load()


@pytest.fixture
def mock_docker_client():
    """Docker SDK client double."""
    client = mock.MagicMock()
    container = mock.MagicMock()
    container.status = "running"
    container.attrs = {"State": {"Health": {"Status": "healthy"}}}
    client.containers.get.return_value = container
    return client


@pytest.fixture
def no_sleep():
    with mock.patch("time.sleep") as sleep:
        yield sleep


@pytest.fixture
def shell_factory():
    """Build additional FakeShell instances."""
    return FakeShell


@pytest.fixture
def admin_key() -> str:
    return "ssh-ed25519 AAAAC3NzaC1lZDI1NTE5AAAAIAdmin homelab-admin@laptop"
