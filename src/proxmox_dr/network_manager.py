"""Check the Proxmox network bridges the control VM relies on."""

import logging
from typing import List

from proxmox_dr.config import DRConfig
from proxmox_dr.proxmox_api import ProxmoxClient

logger = logging.getLogger(__name__)


class NetworkManager:
    """Bridges are configured by hand in the Proxmox GUI; this only reports."""

    def __init__(self, proxmox: ProxmoxClient, config: DRConfig):
        self.proxmox = proxmox
        self.config = config

    def check_bridges(self) -> List[str]:
        """Return the missing bridges, logging instructions for each."""
        private = self.config.private_network_bridge
        public = self.config.public_network_bridge
        try:
            missing = self.proxmox.missing_bridges([private, public])
        except Exception as e:
            logger.warning(f"Could not query network bridges: {e}")
            return []

        if private in missing:
            logger.warning(
                f"Private network bridge {private} needs manual configuration: "
                f"Datacenter > Node > System > Network"
            )
        else:
            logger.info(f"✅ Private network bridge {private} configured")

        if public in missing:
            logger.warning(
                f"Public network bridge {public} needs manual configuration "
                f"with VLAN tag {self.config.public_vlan_tag} in the Proxmox GUI"
            )
        else:
            logger.info(f"✅ Public network bridge {public} configured")

        return missing
