"""
Workstation SSH key setup.

Creates the admin and automation keys, writes ``~/.ssh/config`` host
aliases and makes sure the admin key is authorized on the Proxmox host.
"""

import logging
import os
import socket
import stat
import subprocess
from pathlib import Path
from typing import Callable, List, Optional

import typer

from proxmox_dr import constants
from proxmox_dr.config import DRConfig

logger = logging.getLogger(__name__)


class SSHKeyError(RuntimeError):
    """The admin key is missing and could not be created."""


class SSHKeyManager:
    """Manages the homelab SSH keys in ``~/.ssh`` on the workstation."""

    def __init__(
        self,
        config: DRConfig,
        ssh_dir: Optional[Path] = None,
        confirm: Callable[[str], bool] = lambda message: typer.confirm(message, default=True),
    ):
        self.config = config
        self.ssh_dir = ssh_dir or Path.home() / ".ssh"
        self.confirm = confirm

    @property
    def admin_key(self) -> Path:
        return self.ssh_dir / constants.LOCAL_ADMIN_KEY_NAME

    @property
    def admin_public_key(self) -> Path:
        return self.ssh_dir / f"{constants.LOCAL_ADMIN_KEY_NAME}.pub"

    @property
    def automation_key(self) -> Path:
        return self.ssh_dir / constants.LOCAL_AUTOMATION_KEY_NAME

    @property
    def ssh_config_file(self) -> Path:
        return self.ssh_dir / "config"

    def _run(self, args: List[str], interactive: bool = False) -> int:
        if interactive:
            return subprocess.run(args).returncode
        return subprocess.run(args, capture_output=True, text=True).returncode

    def generate_key(self, path: Path, comment: str, passphrase: bool) -> bool:
        """Run ssh-keygen; with ``passphrase`` the user is prompted for one."""
        logger.info(f"🔑 Generating SSH key: {path}")
        self.ssh_dir.mkdir(mode=0o700, parents=True, exist_ok=True)
        args = ["ssh-keygen", "-t", constants.SSH_KEY_TYPE, "-C", comment, "-f", str(path)]
        if not passphrase:
            args += ["-N", ""]
        if self._run(args, interactive=passphrase) != 0:
            logger.error(f"Failed to generate SSH key {path}")
            return False
        path.chmod(0o600)
        Path(f"{path}.pub").chmod(0o644)
        return True

    def fix_permissions(self, path: Path) -> bool:
        """Force mode 600 on a private key. Returns True if it changed."""
        if stat.S_IMODE(path.stat().st_mode) == 0o600:
            return False
        logger.warning(f"Fixing permissions on {path}")
        path.chmod(0o600)
        return True

    def ensure_admin_key(self) -> None:
        if self.admin_key.is_file() and self.admin_public_key.is_file():
            logger.info(f"Found existing SSH key: {self.admin_key}")
            self.fix_permissions(self.admin_key)
            return

        logger.warning(f"No SSH key found at: {self.admin_key}")
        if not self.confirm("Generate SSH key now?"):
            raise SSHKeyError(
                f"SSH key is required to continue. Generate one manually: "
                f"ssh-keygen -t {constants.SSH_KEY_TYPE} -f {self.admin_key}"
            )
        logger.info("You will be prompted for a passphrase (recommended)")
        if not self.generate_key(self.admin_key, f"homelab-admin@{socket.gethostname()}", passphrase=True):
            raise SSHKeyError(f"Failed to generate {self.admin_key}")

    def ensure_automation_key(self) -> bool:
        """Generate the passphrase-less automation key. Failure is not fatal."""
        if self.automation_key.is_file():
            logger.info(f"Automation key already exists: {self.automation_key}")
            return True
        if self.generate_key(self.automation_key, "homelab-control-vm", passphrase=False):
            return True
        logger.warning("Failed to generate automation key (optional, can be created later)")
        return False

    def ssh_config_block(self) -> str:
        cfg = self.config
        return (
            "\n# Proxmox Homelab Configuration (Auto-generated)\n"
            "Host proxmox pve\n"
            f"    HostName {cfg.proxmox_host}\n"
            f"    User {cfg.ssh_user}\n"
            f"    IdentityFile {self.admin_key}\n"
            "    ServerAliveInterval 60\n"
            "    ServerAliveCountMax 3\n"
            "\n# Control VM (available after deployment)\n"
            "Host control-vm control\n"
            f"    HostName {cfg.control_vm_ip or '<control-vm-ip>'}\n"
            f"    User {cfg.control_vm_user}\n"
            f"    IdentityFile {self.admin_key}\n"
            "    IdentitiesOnly yes\n"
            "    ServerAliveInterval 60\n"
            "    ServerAliveCountMax 3\n"
        )

    def update_ssh_config(self) -> bool:
        """Append the host aliases once. Returns True if the file changed."""
        path = self.ssh_config_file
        if path.is_file() and "Host proxmox" in path.read_text():
            logger.info("SSH config already contains Proxmox entry")
            return False
        self.ssh_dir.mkdir(mode=0o700, parents=True, exist_ok=True)
        with open(path, "a") as f:
            f.write(self.ssh_config_block())
        path.chmod(0o600)
        logger.info(f"📝 SSH config updated: {path} (ssh proxmox, ssh control-vm)")
        return True

    @property
    def target(self) -> str:
        return f"{self.config.ssh_user}@{self.config.proxmox_host}"

    def key_auth_works(self) -> bool:
        args = [
            "ssh", "-i", str(self.admin_key),
            "-o", "PasswordAuthentication=no", "-o", "BatchMode=yes",
            "-o", f"ConnectTimeout={constants.SSH_CONNECT_TIMEOUT}",
            "-p", str(self.config.ssh_port), self.target, "true",
        ]
        return self._run(args) == 0

    def deploy_key(self) -> bool:
        """Copy the admin public key to the host, prompting for the root password."""
        logger.info("📤 Copying SSH public key to Proxmox host (you will be prompted for the password)")
        port = str(self.config.ssh_port)
        if self._run(["ssh-copy-id", "-i", str(self.admin_public_key), "-p", port, self.target], interactive=True) == 0:
            return True

        logger.info("Using fallback method")
        remote = "mkdir -p ~/.ssh && cat >> ~/.ssh/authorized_keys && chmod 600 ~/.ssh/authorized_keys && chmod 700 ~/.ssh"
        with open(self.admin_public_key) as key:
            result = subprocess.run(["ssh", "-p", port, self.target, remote], stdin=key)
        if result.returncode != 0:
            logger.error(
                f"Failed to deploy SSH key. Copy it manually: "
                f"ssh-copy-id -i {self.admin_public_key} -p {port} {self.target}"
            )
            return False
        return True

    def setup(self) -> str:
        """
        Run the whole key setup.

        Returns:
            Admin public key content
        """
        self.ensure_admin_key()
        self.ensure_automation_key()
        self.update_ssh_config()

        if self.key_auth_works():
            logger.info("✅ SSH key already deployed to Proxmox")
        else:
            logger.warning("SSH key not yet deployed to Proxmox")
            if self.confirm("Deploy SSH key to Proxmox now?"):
                if self.deploy_key() and self.key_auth_works():
                    logger.info("✅ SSH key setup complete")
                else:
                    logger.error("SSH key deployed but authentication still failing")
            else:
                logger.warning("Skipping SSH key deployment; password authentication will be needed")

        return self.admin_public_key.read_text().strip()

    def public_key_from_config(self) -> Optional[str]:
        """Key content from SSH_PUBLIC_KEY_PATH, when configured and readable."""
        path = self.config.ssh_public_key_path
        if path and os.path.isfile(path):
            return Path(path).read_text().strip()
        return None
