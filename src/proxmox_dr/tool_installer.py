"""IaC tooling installation on the control VM."""

import logging
import shlex

from proxmox_dr import constants
from proxmox_dr.config import DRConfig
from proxmox_dr.shell import Shell

logger = logging.getLogger(__name__)

BASE_PACKAGES = ["curl", "wget", "git", "unzip", "python3-pip", "docker.io", "docker-compose-v2"]
HASHICORP_RELEASES = "https://releases.hashicorp.com"


class ToolInstaller:
    """Installs Terraform, Packer, Ansible and Docker on a VM reached through ``shell``."""

    def __init__(self, shell: Shell, config: DRConfig):
        self.shell = shell
        self.config = config

    def install_base_packages(self) -> None:
        logger.info("📦 Installing base packages")
        self.shell.run(
            f"sudo apt-get update -qq && sudo DEBIAN_FRONTEND=noninteractive apt-get install -y {' '.join(BASE_PACKAGES)}",
            timeout=1800,
        )

    def add_user_to_docker_group(self, user: str) -> None:
        self.shell.run(f"sudo usermod -aG docker {user}")

    def installed_version(self, tool: str) -> str:
        """First line of ``<tool> version``, empty if the tool is missing."""
        result = self.shell.run(f"{tool} version 2>/dev/null | head -n1", check=False)
        return result.stdout.strip() if result.ok else ""

    def install_hashicorp_tool(self, tool: str, version: str) -> bool:
        """
        Install a HashiCorp binary from its release zip.

        Returns:
            True if installed, False if that version was already present
        """
        if f"v{version}" in self.installed_version(tool):
            logger.info(f"{tool} {version} already installed")
            return False
        logger.info(f"⬇️  Installing {tool} {version}")
        url = f"{HASHICORP_RELEASES}/{tool}/{version}/{tool}_{version}_linux_amd64.zip"
        self.shell.run(
            f"wget -q {url} -O /tmp/{tool}.zip && sudo unzip -o /tmp/{tool}.zip -d /usr/local/bin/ "
            f"&& rm /tmp/{tool}.zip && {tool} version",
            timeout=600,
        )
        return True

    def install_ansible(self, version: str) -> bool:
        result = self.shell.run("ansible --version 2>/dev/null | head -n1", check=False)
        if result.ok and f"core {version}" in result.stdout:
            logger.info(f"ansible-core {version} already installed")
            return False
        logger.info(f"⬇️  Installing ansible-core {version}")
        self.shell.run(f"sudo pip3 install --break-system-packages ansible-core=={version}", timeout=900)
        return True

    def sync_repository(self, user: str) -> bool:
        """
        Clone the IaC repository into the project root, or pull it if present.

        Returns:
            False when no repository URL is configured
        """
        repo_url = self.config.github_repo_url
        if not repo_url:
            logger.info("No GitHub repository URL configured, skipping clone")
            return False

        root = constants.PROJECT_ROOT
        if self.shell.dir_exists(f"{root}/.git"):
            logger.info(f"🔄 Updating repository in {root}")
            self.shell.run(f"cd {root} && git pull --ff-only", timeout=300)
        else:
            logger.info(f"📥 Cloning {repo_url} into {root}")
            self.shell.run(
                f"sudo git clone {shlex.quote(repo_url)} {root} && sudo chown -R {user}:{user} {root}", timeout=600
            )

        branch = self.config.github_branch
        if branch:
            self.shell.run(f"cd {root} && git checkout {shlex.quote(branch)}")
        return True

    def install_cli(self) -> bool:
        """
        Install proxmox-dr system-wide so sudo and cron find it in /usr/local/bin.

        Returns:
            False when the configured source directory holds no Python package
        """
        source = self.config.proxmox_dr_source
        if source.startswith("/") and not (
            self.shell.file_exists(f"{source}/pyproject.toml") or self.shell.file_exists(f"{source}/setup.py")
        ):
            logger.warning(f"No proxmox-dr package found in {source}, control VM services cannot be deployed")
            logger.info("Set PROXMOX_DR_SOURCE to a directory on the VM or a pip requirement for proxmox-dr")
            return False
        logger.info(f"⬇️  Installing proxmox-dr from {source}")
        self.shell.run(f"sudo pip3 install --break-system-packages {shlex.quote(source)}", timeout=900)
        return True

    def setup(self) -> None:
        user = self.config.control_vm_user
        self.install_base_packages()
        self.add_user_to_docker_group(user)
        self.install_hashicorp_tool("terraform", self.config.terraform_version)
        self.install_ansible(self.config.ansible_version)
        self.install_hashicorp_tool("packer", self.config.packer_version)
        self.sync_repository(user)
        self.install_cli()
        logger.info(f"✅ Control VM tooling ready (ssh {user}@{self.config.control_vm_ip})")
