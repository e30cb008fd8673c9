"""Ubuntu cloud-init template creation on the Proxmox host."""

import logging
import shlex

from proxmox_dr import constants
from proxmox_dr.config import DRConfig
from proxmox_dr.proxmox_api import ProxmoxClient
from proxmox_dr.shell import Shell

logger = logging.getLogger(__name__)


class TemplateManager:
    """Builds the VM template the control VM is cloned from."""

    def __init__(self, shell: Shell, proxmox: ProxmoxClient, config: DRConfig):
        self.shell = shell
        self.proxmox = proxmox
        self.config = config

    def download_image(self, image_file: str = constants.UBUNTU_CLOUD_IMAGE_FILE) -> None:
        if self.shell.file_exists(image_file):
            logger.info(f"Cloud image already downloaded: {image_file}")
            return
        logger.info("⬇️  Downloading Ubuntu 24.04 cloud image")
        self.shell.run(
            f"wget -q {shlex.quote(self.config.ubuntu_cloud_image_url)} -O {shlex.quote(image_file)}",
            timeout=1800,
        )

    def create_template(self) -> bool:
        """
        Create the template unless its VMID already exists.

        Returns:
            True if a template was created
        """
        template_id = self.config.ubuntu_template_id
        storage = self.config.control_vm_storage

        if self.proxmox.vm_exists(template_id):
            logger.warning(f"Template VM {template_id} already exists, using it")
            return False

        image_file = constants.UBUNTU_CLOUD_IMAGE_FILE
        self.download_image(image_file)

        logger.info(f"🛠️  Creating template VM {template_id}")
        self.shell.run(
            f"qm create {template_id} --name {constants.TEMPLATE_VM_NAME} --memory 2048 --cores 2 "
            f"--net0 virtio,bridge={self.config.private_network_bridge}"
        )
        logger.info("💾 Importing disk image")
        self.shell.run(f"qm importdisk {template_id} {image_file} {storage} --format qcow2", timeout=1800)
        self.shell.run(
            f"qm set {template_id} --scsihw virtio-scsi-pci --scsi0 {storage}:vm-{template_id}-disk-0 "
            f"--ide2 {storage}:cloudinit --boot c --bootdisk scsi0 --serial0 socket --vga serial0 "
            f"--agent enabled=1"
        )
        self.shell.run(f"qm template {template_id}")
        logger.info(f"✅ Ubuntu template created (ID: {template_id})")
        return True
