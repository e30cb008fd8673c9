"""
Control VM setup, run as root on the control VM itself.

Steps:
- system update and base packages
- SMB backup mount
- Docker, Terraform, Ansible and Packer
- restore from the latest backup
- Docker Compose stack and Vault initialization
"""

import logging
import os
import sys
from typing import Callable, List, Optional

import typer

from proxmox_dr.compose_manager import ComposeManager, write_private_file
from proxmox_dr.config import ControlVMSettings
from proxmox_dr.console import console, section
from proxmox_dr.restore_manager import RestoreManager
from proxmox_dr.service_catalog import ServiceCatalog
from proxmox_dr.shell import LocalShell, Shell
from proxmox_dr.storage_manager import MountSpec, ensure_fstab_entry
from proxmox_dr.vault_manager import VaultManager

logger = logging.getLogger(__name__)

BASE_PACKAGES = [
    "apt-transport-https",
    "ca-certificates",
    "curl",
    "gnupg",
    "lsb-release",
    "software-properties-common",
    "wget",
    "git",
    "vim",
    "htop",
    "net-tools",
    "unzip",
    "jq",
    "python3-pip",
    "cifs-utils",
    "nfs-common",
    "apache2-utils",
]

DOCKER_INSTALL = [
    "install -m 0755 -d /etc/apt/keyrings",
    "curl -fsSL https://download.docker.com/linux/ubuntu/gpg | gpg --batch --yes --dearmor -o /etc/apt/keyrings/docker.gpg",
    "chmod a+r /etc/apt/keyrings/docker.gpg",
    'echo "deb [arch=$(dpkg --print-architecture) signed-by=/etc/apt/keyrings/docker.gpg] '
    'https://download.docker.com/linux/ubuntu $(lsb_release -cs) stable" > /etc/apt/sources.list.d/docker.list',
    "apt-get update -qq",
    "DEBIAN_FRONTEND=noninteractive apt-get install -y docker-ce docker-ce-cli containerd.io "
    "docker-buildx-plugin docker-compose-plugin",
    "systemctl enable docker",
    "systemctl start docker",
]

HASHICORP_REPO = [
    "wget -qO- https://apt.releases.hashicorp.com/gpg | gpg --batch --yes --dearmor "
    "-o /usr/share/keyrings/hashicorp-archive-keyring.gpg",
    'echo "deb [signed-by=/usr/share/keyrings/hashicorp-archive-keyring.gpg] '
    'https://apt.releases.hashicorp.com $(lsb_release -cs) main" > /etc/apt/sources.list.d/hashicorp.list',
    "apt-get update -qq",
]

BACKUP_MOUNT_OPTIONS = "credentials={credentials},uid=0,gid=0,file_mode=0640,dir_mode=0750,vers=3.0,nofail"


class SetupAborted(Exception):
    """The user declined to continue."""


class ControlVMSetup:
    def __init__(
        self,
        settings: ControlVMSettings,
        shell: Optional[Shell] = None,
        catalog: Optional[ServiceCatalog] = None,
        confirm: Callable[[str], bool] = lambda message: typer.confirm(message, default=False),
    ):
        self.settings = settings
        self.shell = shell or LocalShell()
        self.catalog = catalog or ServiceCatalog.load()
        self.confirm = confirm

    def check_root(self) -> None:
        if os.geteuid() != 0:
            raise PermissionError("Control VM setup must be run as root (use sudo)")

    def prompt_continue(self, message: str) -> None:
        if self.settings.auto_confirm or not sys.stdin.isatty():
            logger.info(f"{message} (auto-confirmed)")
            return
        if not self.confirm(message):
            raise SetupAborted("Aborted by user")

    def update_system(self) -> None:
        logger.info("📦 Updating system packages")
        self.shell.run("apt-get update -qq", timeout=900)
        self.shell.run("DEBIAN_FRONTEND=noninteractive apt-get upgrade -y", timeout=3600, stream=True)
        self.shell.run(
            f"DEBIAN_FRONTEND=noninteractive apt-get install -y {' '.join(BASE_PACKAGES)}", timeout=1800, stream=True
        )

    def write_smb_credentials(self) -> None:
        settings = self.settings
        path = settings.smb_credentials
        if settings.smb_password:
            write_private_file(path, f"username={settings.smb_username}\npassword={settings.smb_password}\n")
            logger.info("SMB credentials configured from environment")
        elif not path.is_file():
            write_private_file(path, f"username={settings.smb_username}\npassword=CHANGEME\n")
            logger.error(f"SMB_PASSWORD not provided, created template {path}: edit it with the correct password")
            self.prompt_continue("Have you updated the credentials file?")
        else:
            logger.info(f"SMB credentials file already exists: {path}")

    def setup_backup_mount(self) -> bool:
        """
        Configure and mount the SMB backup share.

        Returns:
            True if the share is mounted
        """
        settings = self.settings
        settings.backup_mount.mkdir(parents=True, exist_ok=True)
        self.write_smb_credentials()

        entry = MountSpec(
            source=f"//{settings.unas_private_ip}/{settings.unas_share}",
            mount_point=str(settings.backup_mount),
            fstype="cifs",
            options=BACKUP_MOUNT_OPTIONS.format(credentials=settings.smb_credentials),
            label="SMB backup",
        )
        ensure_fstab_entry(self.shell, entry)

        if not self.shell.succeeds("mount -a"):
            logger.warning("Mount failed - check credentials and network connectivity")
        if self.shell.succeeds(f"mountpoint -q {settings.backup_mount}"):
            logger.info(f"✅ SMB backup mount successful: {settings.backup_mount}")
            return True
        logger.error("SMB mount failed - continuing, but backups won't work")
        return False

    def install_docker(self) -> bool:
        if self.shell.command_exists("docker"):
            logger.info(f"Docker already installed: {self.shell.run('docker --version').stdout.strip()}")
            return False
        logger.info("🐳 Installing Docker")
        for command in DOCKER_INSTALL:
            self.shell.run(command, timeout=1200)

        users = {self.settings.control_vm_user}
        sudo_user = os.environ.get("SUDO_USER")
        if sudo_user:
            users.add(sudo_user)
        for user in sorted(users):
            if self.shell.succeeds(f"usermod -aG docker {user}"):
                logger.info(f"Added {user} to docker group")
        logger.warning("Users added to the docker group need to log out and back in")
        return True

    def install_tool(self, tool: str, packages: str, repo_setup: Optional[List[str]] = None) -> bool:
        if self.shell.command_exists(tool):
            logger.info(f"{tool} already installed")
            return False
        logger.info(f"⬇️  Installing {tool}")
        for command in repo_setup or []:
            self.shell.run(command, timeout=600)
        self.shell.run(f"DEBIAN_FRONTEND=noninteractive apt-get install -y {packages}", timeout=1200)
        return True

    def install_iac_tools(self) -> None:
        self.install_tool("terraform", "terraform", HASHICORP_REPO)
        self.install_tool(
            "ansible", "ansible", ["add-apt-repository -y ppa:ansible/ansible", "apt-get update -qq"]
        )
        self.install_tool("packer", "packer", HASHICORP_REPO)

    def check_project_repo(self) -> bool:
        root = self.settings.project_root
        root.mkdir(parents=True, exist_ok=True)
        if (root / ".git").is_dir():
            logger.info(f"Git repository present in {root}")
            return True
        logger.warning(f"No git repository found in {root}")
        logger.info(f"Clone your homelab-iac repository: git clone <your-repo-url> {root}")
        return False

    def restore(self) -> None:
        try:
            RestoreManager(self.settings, self.catalog, self.shell).run()
        except Exception as e:
            logger.warning(f"Restore failed or no backup found: {e}")

    def show_service_urls(self) -> None:
        section("Control VM Services Ready")
        for name, url in self.catalog.urls(self.settings.control_vm_ip).items():
            console.print(f"  {name:<24} {url}")
        console.print()
        console.print(f"  Backup mount:           {self.settings.backup_mount}")
        console.print(f"  Vault keys location:    {self.settings.vault_key_dir}/")
        console.print()
        console.print("First-time setup:")
        console.print("  1. Portainer: create the admin account on first login")
        console.print("  2. Semaphore: password configured from the .env file")
        console.print(f"  3. Vault: root token in {self.settings.vault_key_dir}/vault-init-*.json")

    def run(self) -> None:
        self.check_root()
        section("Control VM Setup")
        self.prompt_continue("Do you want to continue?")

        self.update_system()
        self.setup_backup_mount()
        self.install_docker()
        self.install_iac_tools()
        self.check_project_repo()
        self.restore()

        ComposeManager(self.settings, self.shell, self.catalog).deploy()

        root_token = VaultManager(self.settings.vault_addr, self.settings.vault_key_dir).ensure_initialized()
        if root_token:
            console.print(f"Vault root token: [bold]{root_token}[/bold]")

        self.show_service_urls()
        logger.info("✅ Control VM setup complete")
