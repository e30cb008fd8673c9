#!/usr/bin/env python3
"""
src/proxmox_dr/vm_manager.py

Clone and configure the control VM from the cloud-init template.
"""

import logging
import shlex

from proxmox_dr import constants
from proxmox_dr.config import DRConfig
from proxmox_dr.proxmox_api import ProxmoxClient
from proxmox_dr.shell import GuestShell, Shell

logger = logging.getLogger(__name__)


class VMManager:
    """Handles control VM creation on Proxmox from the Ubuntu template."""

    def __init__(self, shell: Shell, proxmox: ProxmoxClient, config: DRConfig, admin_public_key: str):
        """
        Args:
            shell: Shell on the Proxmox host
            proxmox: Proxmox API client for status queries
            config: Deployment configuration
            admin_public_key: Content of the workstation admin public key
        """
        self.shell = shell
        self.proxmox = proxmox
        self.config = config
        self.admin_public_key = admin_public_key.strip()

    @property
    def automation_key(self) -> str:
        return self.config.automation_key

    def guest(self, user: str) -> GuestShell:
        return GuestShell(self.shell, f"{user}@{self.config.control_vm_ip}", self.automation_key)

    def ensure_automation_key(self) -> bool:
        """
        Generate the host automation key used to reach the VM.

        Returns:
            True if a key was generated
        """
        key = self.automation_key
        if self.shell.file_exists(key):
            logger.info("Proxmox automation key already exists")
            return False
        logger.info("🔑 Generating automation SSH key on Proxmox")
        self.shell.run(f"ssh-keygen -t {constants.SSH_KEY_TYPE} -C proxmox-automation -f {key} -N ''")
        if not self.shell.file_exists(f"{key}.pub"):
            raise RuntimeError(f"Failed to generate automation key {key}")
        return True

    def remove_existing(self, vmid: int) -> None:
        """Stop (if running) and destroy an existing VM."""
        if self.proxmox.vm_status(vmid) == "running":
            logger.info(f"⏹️  Stopping VM {vmid}")
            self.shell.run(f"qm stop {vmid}")
            self.proxmox.wait_for_status(vmid, "stopped", timeout=60)
        logger.info(f"🗑️  Destroying VM {vmid}")
        self.shell.run(f"qm destroy {vmid}")

    def cloud_init_keys(self) -> str:
        """Admin key plus the host automation key, one per line."""
        if not self.admin_public_key:
            raise RuntimeError("No admin SSH public key found")
        keys = [self.admin_public_key]
        automation_pub = self.shell.read_file(f"{self.automation_key}.pub")
        if automation_pub and automation_pub.strip():
            keys.append(automation_pub.strip())
        else:
            logger.warning("Proxmox automation key not found, only admin key will be deployed")
        return "\n".join(keys) + "\n"

    def configure_vm(self, vmid: int) -> None:
        cfg = self.config
        key_file = f"/tmp/cloudinit-sshkeys-{vmid}.tmp"
        self.shell.write_file(key_file, self.cloud_init_keys(), mode="600")
        try:
            self.shell.run(
                f"qm set {vmid} --cores {cfg.control_vm_cpus} --memory {cfg.control_vm_memory} "
                f"--ipconfig0 ip={cfg.control_vm_ip}/{cfg.control_vm_netmask},gw={cfg.gateway_ip} "
                f"--nameserver {shlex.quote(cfg.dns_servers)} --searchdomain {constants.CLOUD_INIT_SEARCH_DOMAIN} "
                f"--ciuser {constants.CLOUD_INIT_USER} "
                f"--sshkeys {key_file}"
            )
        finally:
            self.shell.run(f"rm -f {key_file}", check=False)

        if cfg.control_vm_vlan:
            self.shell.run(f"qm set {vmid} --net0 virtio,bridge={cfg.private_network_bridge},tag={cfg.control_vm_vlan}")

    def create_vm(self) -> None:
        cfg = self.config
        vmid = cfg.control_vm_id
        logger.info(f"🧬 Cloning control VM {vmid} from template {cfg.ubuntu_template_id}")
        self.shell.run(f"qm clone {cfg.ubuntu_template_id} {vmid} --name {cfg.control_vm_name} --full", timeout=1800)
        self.configure_vm(vmid)
        logger.info(f"💽 Resizing disk to {cfg.control_vm_disk}G")
        self.shell.run(f"qm resize {vmid} scsi0 {cfg.control_vm_disk}G")
        logger.info(f"▶️  Starting VM {vmid}")
        self.shell.run(f"qm start {vmid}")

    def fix_networking(self, guest: GuestShell) -> None:
        """Default route and DNS; cloud-init occasionally leaves both unset."""
        dns = " ".join(self.config.dns_servers.replace(",", " ").split())
        result = guest.run(
            f"sudo ip route add default via {self.config.gateway_ip} 2>/dev/null || true; "
            f"sudo resolvectl dns eth0 {dns}",
            check=False,
        )
        if not result.ok:
            logger.warning("Network configuration had some issues, continuing")

    def create_admin_user(self, user: str) -> None:
        """Create ``user`` with sudo rights and the ubuntu user's authorized keys."""
        if user == constants.CLOUD_INIT_USER:
            logger.info("Using default ubuntu user, skipping admin user creation")
            return

        logger.info(f"👤 Creating '{user}' user on control VM")
        home = f"/home/{user}"
        script = "; ".join(
            [
                f"if ! id {user} >/dev/null 2>&1; then "
                f"if getent group {user} >/dev/null 2>&1; then sudo useradd -m -s /bin/bash -g {user} {user}; "
                f"else sudo useradd -m -s /bin/bash {user}; fi; fi",
                f"sudo usermod -aG sudo {user}",
                f"sudo mkdir -p {home}/.ssh",
                f"sudo cp ~/.ssh/authorized_keys {home}/.ssh/",
                f"sudo chown -R {user}:{user} {home}/.ssh",
                f"sudo chmod 700 {home}/.ssh",
                f"sudo chmod 600 {home}/.ssh/authorized_keys",
                f"echo '{user} ALL=(ALL) NOPASSWD:ALL' | sudo tee /etc/sudoers.d/{user} >/dev/null",
                f"sudo chmod 440 /etc/sudoers.d/{user}",
            ]
        )
        self.guest(constants.CLOUD_INIT_USER).run(script)

        if not self.guest(user).succeeds("whoami"):
            raise RuntimeError(
                f"User setup completed but SSH access verification failed. "
                f"Try manually: ssh -i {self.automation_key} {user}@{self.config.control_vm_ip}"
            )
        logger.info(f"✅ User '{user}' created and SSH access verified")

    def deploy(self) -> GuestShell:
        """
        Make sure the control VM exists, runs and accepts the admin user.

        Returns:
            GuestShell for the admin user
        """
        cfg = self.config
        vmid = cfg.control_vm_id

        self.ensure_automation_key()

        status = self.proxmox.vm_status(vmid)
        if status is not None and cfg.control_vm_recreate:
            logger.warning(f"Control VM {vmid} exists, recreating as requested")
            self.remove_existing(vmid)
            status = None

        if status is None:
            self.create_vm()
            self.shell.run(f"ssh-keygen -R {cfg.control_vm_ip}", check=False)
        elif status != "running":
            logger.info(f"▶️  Control VM {vmid} exists but is {status}, starting it")
            self.shell.run(f"qm start {vmid}")
        else:
            logger.info(f"Control VM {vmid} already running")

        initial = self.guest(constants.CLOUD_INIT_USER)
        reachable = initial.wait_until_reachable(initial_delay=constants.VM_READY_INITIAL_WAIT if status is None else 0)
        if not reachable:
            raise RuntimeError(
                f"Control VM did not become ready in time. Check VM status with: qm status {vmid}"
            )

        if status is None:
            self.fix_networking(initial)
        self.create_admin_user(cfg.control_vm_user)

        logger.info(f"✅ Control VM ready at {cfg.control_vm_ip} (ssh {cfg.control_vm_user}@{cfg.control_vm_ip})")
        return self.guest(cfg.control_vm_user)
