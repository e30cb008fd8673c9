"""
Proxmox host setup sequence.

Runs the numbered setup steps in order against a shell on the Proxmox host,
either over SSH from the workstation or locally on the host.
"""

import logging
from typing import Callable, List, Optional, Tuple

from proxmox_dr import constants
from proxmox_dr.backup_scheduler import BackupScheduler
from proxmox_dr.config import DRConfig
from proxmox_dr.console import console, section
from proxmox_dr.network_manager import NetworkManager
from proxmox_dr.proxmox_api import ProxmoxClient
from proxmox_dr.repository_manager import RepositoryManager
from proxmox_dr.service_deployer import ServiceDeployer
from proxmox_dr.shell import GuestShell, Shell
from proxmox_dr.ssh_access import SSHAccessManager
from proxmox_dr.storage_manager import StorageManager
from proxmox_dr.summary import print_summary
from proxmox_dr.template_manager import TemplateManager
from proxmox_dr.tool_installer import ToolInstaller
from proxmox_dr.vm_manager import VMManager

logger = logging.getLogger(__name__)

PROXMOX_COMMANDS = ["qm", "pvesh", "pvesm"]
REQUIRED_COMMANDS = ["wget", "ssh"]


class PreflightError(RuntimeError):
    """The target is not a Proxmox VE host we can configure."""


class HostSetup:
    """Orchestrates the full DR setup of the Proxmox host."""

    def __init__(
        self,
        shell: Shell,
        config: DRConfig,
        proxmox: ProxmoxClient,
        admin_public_key: str,
        staged_env: Optional[str] = None,
    ):
        """
        Args:
            shell: Shell on the Proxmox host
            config: Deployment configuration
            proxmox: Proxmox API client for the node
            admin_public_key: Workstation admin public key content
            staged_env: Path on the host of the control VM .env, if staged
        """
        self.shell = shell
        self.config = config
        self.proxmox = proxmox
        self.admin_public_key = admin_public_key
        self.staged_env = staged_env
        self.guest: Optional[GuestShell] = None

    def preflight(self) -> None:
        section("Pre-Flight Checks")
        uid = self.shell.run("id -u", check=False).stdout.strip()
        if uid != "0":
            raise PreflightError("Setup must run as root on the Proxmox host")
        if not self.shell.file_exists(constants.PROXMOX_VERSION_FILE):
            raise PreflightError("This doesn't appear to be a Proxmox VE system")
        for command in PROXMOX_COMMANDS + REQUIRED_COMMANDS:
            if not self.shell.command_exists(command):
                raise PreflightError(f"Required command '{command}' not found. Please install it first.")
        logger.info("✅ Pre-flight checks passed")

    def steps(self) -> List[Tuple[str, Callable[[], object]]]:
        """Setup steps, in execution order."""
        repositories = RepositoryManager(self.shell)
        return [
            ("Configuring Proxmox Repositories", repositories.configure),
            ("Upgrading Proxmox Packages", repositories.upgrade_packages),
            ("Setting Up SSH Key-Based Authentication", self._ssh_access),
            ("Checking Network Bridges", NetworkManager(self.proxmox, self.config).check_bridges),
            ("Setting Up Storage Mounts (NFS + SMB)", StorageManager(self.shell, self.config).setup),
            ("Creating Ubuntu Cloud-Init Template", self._template),
            ("Deploying Control VM", self._control_vm),
            ("Installing IaC Tools on Control VM", self._tools),
            ("Deploying Control VM Docker Compose Stack", self._services),
            ("Configuring Backups", self._backups),
        ]

    def _ssh_access(self) -> None:
        SSHAccessManager(self.shell).setup(self.admin_public_key)

    def _template(self) -> None:
        TemplateManager(self.shell, self.proxmox, self.config).create_template()

    def _control_vm(self) -> None:
        self.guest = VMManager(self.shell, self.proxmox, self.config, self.admin_public_key).deploy()

    def _require_guest(self) -> GuestShell:
        if self.guest is None:
            raise RuntimeError("Control VM has not been deployed")
        return self.guest

    def _tools(self) -> None:
        ToolInstaller(self._require_guest(), self.config).setup()

    def _services(self) -> None:
        ServiceDeployer(self._require_guest(), self.config).deploy(self.staged_env)

    def _backups(self) -> None:
        BackupScheduler(self._require_guest(), self.config).setup()

    def run(self) -> None:
        console.print()
        console.print("[bold cyan]Proxmox Disaster Recovery Setup[/bold cyan]")

        self.preflight()
        self.config.require_setup()

        logger.info(f"Proxmox Host: {self.config.proxmox_hostname} ({self.config.proxmox_host_ip})")
        logger.info(f"Control VM will be deployed at: {self.config.control_vm_ip}")

        steps = self.steps()
        for number, (title, step) in enumerate(steps, start=1):
            section(f"Step {number}/{len(steps)}: {title}")
            step()

        print_summary(self.config)
        logger.info("🎉 Proxmox DR setup completed successfully")
