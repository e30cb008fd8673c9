"""Authorize the admin public key for root on the Proxmox host."""

import logging

from proxmox_dr import constants
from proxmox_dr.shell import Shell

logger = logging.getLogger(__name__)


class SSHAccessManager:
    def __init__(self, shell: Shell):
        self.shell = shell

    def authorize_key(self, public_key: str) -> bool:
        """Append ``public_key`` to root's authorized_keys unless already present.

        Returns:
            True if the key was added
        """
        public_key = public_key.strip()
        if not public_key:
            raise ValueError("Admin public key is empty")

        self.shell.run(f"mkdir -p {constants.ROOT_SSH_DIR} && chmod 700 {constants.ROOT_SSH_DIR}")

        existing = self.shell.read_file(constants.ROOT_AUTHORIZED_KEYS) or ""
        if public_key in existing.splitlines():
            logger.info("SSH key already present in authorized_keys")
            return False

        content = existing
        if content and not content.endswith("\n"):
            content += "\n"
        self.shell.write_file(constants.ROOT_AUTHORIZED_KEYS, content + public_key + "\n", mode="600")
        logger.info("🔑 SSH key added to authorized_keys")
        return True

    def setup(self, public_key: str) -> None:
        self.authorize_key(public_key)
        logger.warning(f"For enhanced security, disable password authentication in {constants.SSH_CONFIG_FILE}")
