"""Trigger the Docker Compose stack deployment on the control VM."""

import logging
import shlex
from typing import Optional

from proxmox_dr import constants
from proxmox_dr.config import DRConfig
from proxmox_dr.service_catalog import ServiceCatalog
from proxmox_dr.shell import GuestShell

logger = logging.getLogger(__name__)

SETUP_TIMEOUT = 3600


class ServiceDeployer:
    """Runs ``proxmox-dr control-vm setup`` on the control VM."""

    def __init__(self, guest: GuestShell, config: DRConfig, catalog: Optional[ServiceCatalog] = None):
        self.guest = guest
        self.config = config
        self.catalog = catalog or ServiceCatalog.load()

    def log_manual_steps(self, log=logger.info) -> None:
        log(f"  ssh {self.guest.target}")
        log("  sudo proxmox-dr control-vm setup")

    def push_env_file(self, staged_env: Optional[str]) -> None:
        """Copy the staged control VM .env into the compose dir unless the VM already has one."""
        target = f"{constants.COMPOSE_DIR}/.env"
        if self.guest.file_exists(target):
            logger.info(f"Control VM already has {target}")
            return
        if not staged_env:
            logger.warning(f"No control VM .env staged; create {target} on the VM before deploying")
            return
        logger.info(f"📤 Copying control VM .env to {target}")
        self.guest.copy_from_host(staged_env, "/tmp/control-vm.env")
        self.guest.run(
            f"sudo mkdir -p {constants.COMPOSE_DIR} && sudo mv /tmp/control-vm.env {target} && sudo chmod 600 {target}"
        )

    def deploy(self, staged_env: Optional[str] = None) -> bool:
        """
        Deploy the stack. Failures are reported but never raised.

        Returns:
            True if the stack was deployed
        """
        if not self.config.deploy_control_vm_stack:
            logger.info("Skipping Docker Compose stack deployment (DEPLOY_CONTROL_VM_STACK=false)")
            return False

        if not self.guest.command_exists("proxmox-dr"):
            logger.warning("proxmox-dr is not installed on the control VM, skipping services deployment")
            logger.info("You can deploy services manually later by running:")
            self.log_manual_steps()
            return False

        logger.info("⏳ Waiting for cloud-init to complete system updates")
        if not self.guest.succeeds("sudo cloud-init status --wait", timeout=1800):
            logger.warning("cloud-init wait completed with warnings (this is normal)")

        self.push_env_file(staged_env)

        cfg = self.config
        env = " ".join(
            [
                f"SMB_USERNAME={shlex.quote(cfg.smb_username)}",
                f"SMB_PASSWORD={shlex.quote(cfg.smb_password)}",
                f"UNAS_PRIVATE_IP={shlex.quote(cfg.unas_private_ip)}",
                f"CONTROL_VM_USER={shlex.quote(cfg.control_vm_user)}",
                f"CONTROL_VM_IP={shlex.quote(cfg.control_vm_ip)}",
                "AUTO_CONFIRM=true",
            ]
        )
        logger.info("🚀 Running control VM setup (this will take 15-30 minutes)")
        result = self.guest.run(
            f"sudo {env} proxmox-dr control-vm setup", check=False, timeout=SETUP_TIMEOUT, stream=True
        )
        if not result.ok:
            logger.error(f"Control VM setup failed with exit code {result.returncode}")
            logger.warning("You can debug by SSHing to the control VM and re-running the setup:")
            self.log_manual_steps(logger.warning)
            return False

        logger.info("✅ Control VM services deployed")
        for name, url in self.catalog.urls(cfg.control_vm_ip).items():
            logger.info(f"  - {name}: {url}")
        return True
