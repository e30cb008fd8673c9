from typing import Any, Dict, List, Optional
import logging
import time

from proxmoxer import ProxmoxAPI
from proxmoxer.core import ResourceException

logger = logging.getLogger(__name__)


class ProxmoxClient:
    """Thin wrapper around proxmoxer for the VM and network queries the setup needs."""

    def __init__(self, proxmox: Any, node: str) -> None:
        self.proxmox = proxmox
        self.node = node

    @classmethod
    def with_token(cls, host: str, node: str, api_token: str, verify_ssl: bool = False) -> "ProxmoxClient":
        """Connect over HTTPS with an API token of the form ``user!token=secret``."""
        user_token, token_value = api_token.split("=", 1)
        user, token_name = user_token.split("!", 1)
        proxmox = ProxmoxAPI(host, user=user, token_name=token_name, token_value=token_value, verify_ssl=verify_ssl)
        return cls(proxmox, node)

    @classmethod
    def over_ssh(
        cls, host: str, node: str, user: str = "root", key_filename: Optional[str] = None, port: int = 22
    ) -> "ProxmoxClient":
        """Drive ``pvesh`` on the host through paramiko."""
        proxmox = ProxmoxAPI(host, user=user, backend="ssh_paramiko", private_key_file=key_filename, port=port)
        return cls(proxmox, node)

    @classmethod
    def local(cls, node: str) -> "ProxmoxClient":
        """Drive ``pvesh`` directly when running on the host itself."""
        return cls(ProxmoxAPI(backend="local"), node)

    def vm_status(self, vmid: int) -> Optional[str]:
        """Return the VM status (``running``, ``stopped``...) or None if it does not exist."""
        try:
            status = self.proxmox.nodes(self.node).qemu(vmid).status.current.get()
        except ResourceException:
            return None
        return status.get("status")

    def vm_exists(self, vmid: int) -> bool:
        return self.vm_status(vmid) is not None

    def is_template(self, vmid: int) -> bool:
        try:
            config: Dict[str, Any] = self.proxmox.nodes(self.node).qemu(vmid).config.get()
        except ResourceException:
            return False
        return str(config.get("template", 0)) == "1"

    def wait_for_status(self, vmid: int, status: str, timeout: int = 60, interval: int = 5) -> bool:
        """Poll until the VM reaches ``status`` or the deadline passes."""
        deadline = time.time() + timeout
        while time.time() < deadline:
            if self.vm_status(vmid) == status:
                return True
            time.sleep(interval)
        logger.warning(f"VM {vmid} did not reach '{status}' within {timeout}s")
        return False

    def missing_bridges(self, required_bridges: List[str]) -> List[str]:
        """Return the bridges from ``required_bridges`` not defined on the node."""
        interfaces = self.proxmox.nodes(self.node).network.get()
        existing = {iface["iface"] for iface in interfaces if iface.get("type") == "bridge"}
        return [bridge for bridge in required_bridges if bridge not in existing]
