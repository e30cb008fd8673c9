"""
Workstation deployment orchestrator.

Loads the configuration, prepares SSH keys, stages files on the Proxmox host
and drives the host setup over SSH.
"""

import logging
import time
from pathlib import Path
from typing import Optional

import paramiko

from proxmox_dr import constants
from proxmox_dr.config import DRConfig
from proxmox_dr.console import console, section
from proxmox_dr.host_setup import HostSetup
from proxmox_dr.proxmox_api import ProxmoxClient
from proxmox_dr.shell import RemoteShell
from proxmox_dr.ssh_key_manager import SSHKeyManager

logger = logging.getLogger(__name__)


class ConnectionFailed(RuntimeError):
    pass


class Deployment:
    """End-to-end deployment from the workstation."""

    def __init__(
        self,
        config: DRConfig,
        control_vm_env: Optional[Path] = None,
        key_manager: Optional[SSHKeyManager] = None,
    ):
        """
        Args:
            config: Loaded deployment configuration
            control_vm_env: Local .env for the control VM compose stack
            key_manager: SSH key manager (defaults to one for ``~/.ssh``)
        """
        self.config = config
        self.control_vm_env = control_vm_env
        self.key_manager = key_manager or SSHKeyManager(config)
        self.remote_dir: Optional[str] = None

    def open_shell(self) -> RemoteShell:
        key = self.key_manager.admin_key
        return RemoteShell(
            self.config.proxmox_host,
            user=self.config.ssh_user,
            port=self.config.ssh_port,
            key_filename=str(key) if key.is_file() else None,
        )

    def test_connection(self, shell: RemoteShell) -> None:
        section("Testing SSH Connection")
        target = f"{self.config.ssh_user}@{self.config.proxmox_host}:{self.config.ssh_port}"
        try:
            shell.connect()
            shell.run("true")
        except (paramiko.SSHException, OSError) as e:
            raise ConnectionFailed(
                f"Failed to connect to Proxmox host {target}: {e}\n"
                "Please check:\n"
                f"  1. Proxmox host is reachable: ping {self.config.proxmox_host}\n"
                "  2. SSH is enabled on Proxmox\n"
                "  3. SSH keys are configured (or password auth is enabled)\n"
                f"  4. Firewall allows SSH on port {self.config.ssh_port}"
            ) from e
        logger.info(f"✅ SSH connection to {target} successful")

    def stage_files(self, shell: RemoteShell) -> Optional[str]:
        """
        Copy the config and control VM .env into a fresh staging dir.

        Returns:
            Remote path of the staged .env, or None when there is none
        """
        section("Copying Files to Proxmox")
        self.remote_dir = f"{constants.REMOTE_DIR_PREFIX}-{int(time.time())}"
        logger.info(f"Creating remote directory: {self.remote_dir}")
        shell.run(f"mkdir -p {self.remote_dir}/control-vm-config && chmod 700 {self.remote_dir}")

        if self.config.path is not None:
            shell.put_file(self.config.path, f"{self.remote_dir}/proxmox-config.env", mode=0o600)

        if self.control_vm_env is not None and self.control_vm_env.is_file():
            staged = f"{self.remote_dir}/control-vm-config/.env"
            logger.info("Copying control VM .env file")
            shell.put_file(self.control_vm_env, staged, mode=0o600)
            return staged

        logger.warning(f"Control VM .env file not found at {self.control_vm_env}")
        return None

    def cleanup(self, shell: RemoteShell) -> None:
        if not self.remote_dir:
            return
        logger.info(f"🧹 Removing remote directory: {self.remote_dir}")
        try:
            shell.run(f"rm -rf {self.remote_dir}", check=False)
        except (paramiko.SSHException, OSError) as e:
            logger.warning(f"Could not remove {self.remote_dir}: {e}")

    def proxmox_client(self) -> ProxmoxClient:
        cfg = self.config
        node = cfg.proxmox_hostname or cfg.proxmox_host
        if cfg.proxmox_api_token:
            return ProxmoxClient.with_token(cfg.proxmox_host, node, cfg.proxmox_api_token)
        key = self.key_manager.admin_key
        return ProxmoxClient.over_ssh(
            cfg.proxmox_host, node, user=cfg.ssh_user, key_filename=str(key) if key.is_file() else None,
            port=cfg.ssh_port,
        )

    def run(self) -> None:
        section("Proxmox DR Deployment Orchestrator")
        self.config.require_deployment()
        logger.info(f"Proxmox Host: {self.config.proxmox_host} (user {self.config.ssh_user}, port {self.config.ssh_port})")

        section("SSH Key Setup")
        admin_public_key = self.key_manager.setup()

        shell = self.open_shell()
        try:
            self.test_connection(shell)
            staged_env = self.stage_files(shell)
            section("Executing Remote Setup")
            logger.info("This will take 15-30 minutes")
            HostSetup(shell, self.config, self.proxmox_client(), admin_public_key, staged_env).run()
        finally:
            self.cleanup(shell)
            shell.close()

        self.print_next_steps()

    def print_next_steps(self) -> None:
        cfg = self.config
        console.print()
        console.print(f"[bold green]✅ Deployment of {cfg.proxmox_host} complete[/bold green]")
        console.print("Next steps:")
        console.print(f"  1. SSH to Control VM: ssh {cfg.control_vm_user}@{cfg.control_vm_ip or '<ip>'}")
        console.print(f"  2. Navigate to IaC repo: cd {constants.PROJECT_ROOT}")
        console.print("  3. Start using Terraform/Ansible to deploy services")
