"""Proxmox apt repository configuration and package upgrade."""

import logging
import re

from proxmox_dr import constants
from proxmox_dr.shell import Shell

logger = logging.getLogger(__name__)

ACTIVE_DEB_LINE = re.compile(r"^\s*deb\s", re.MULTILINE)


class RepositoryManager:
    """Switches the host from the enterprise to the no-subscription repository."""

    def __init__(self, shell: Shell):
        self.shell = shell

    def disable_enterprise_repository(self) -> bool:
        """Comment out active ``deb`` lines of the enterprise repo.

        Returns:
            True if the file was changed
        """
        content = self.shell.read_file(constants.PROXMOX_ENTERPRISE_REPO_FILE)
        if content is None or not ACTIVE_DEB_LINE.search(content):
            return False
        logger.info("🔧 Disabling enterprise repository")
        self.shell.run(f"sed -i 's/^deb/#deb/' {constants.PROXMOX_ENTERPRISE_REPO_FILE}")
        return True

    def enable_no_subscription_repository(self) -> bool:
        content = self.shell.read_file(constants.PROXMOX_NO_SUB_REPO_FILE)
        if content is not None and "pve-no-subscription" in content:
            return False
        logger.info("🔧 Enabling no-subscription repository")
        self.shell.write_file(constants.PROXMOX_NO_SUB_REPO_FILE, constants.PROXMOX_NO_SUB_REPO + "\n")
        return True

    def configure(self) -> None:
        self.disable_enterprise_repository()
        self.enable_no_subscription_repository()
        logger.info("📦 Updating package lists")
        self.shell.run("apt-get update -qq", timeout=600)
        logger.info("✅ Proxmox repositories configured")

    def upgrade_packages(self) -> None:
        logger.info("📦 Upgrading packages (this may take several minutes)")
        self.shell.run("DEBIAN_FRONTEND=noninteractive apt-get dist-upgrade -y", timeout=3600, stream=True)
        logger.info("✅ Packages upgraded")
