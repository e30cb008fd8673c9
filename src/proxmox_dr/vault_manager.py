"""HashiCorp Vault initialization and unsealing through its HTTP API."""

import json
import logging
import os
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

import requests

from proxmox_dr import constants

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 10


class VaultError(RuntimeError):
    pass


class VaultManager:
    """Initializes a fresh Vault and unseals it with the saved keys."""

    def __init__(self, addr: str, key_dir: Path):
        """
        Args:
            addr: Vault address, e.g. ``http://localhost:8200``
            key_dir: Directory holding ``vault-init-<timestamp>.json`` files
        """
        self.addr = addr.rstrip("/")
        self.key_dir = Path(key_dir)

    def _url(self, path: str) -> str:
        return f"{self.addr}/v1/{path}"

    def wait_until_available(
        self, attempts: int = constants.VAULT_WAIT_ATTEMPTS, interval: int = constants.VAULT_WAIT_INTERVAL
    ) -> bool:
        """
        Poll the health endpoint until Vault answers.

        Any HTTP response counts: uninitialized and sealed Vaults answer 501 and 503.
        """
        for attempt in range(1, attempts + 1):
            try:
                requests.get(self._url("sys/health"), timeout=REQUEST_TIMEOUT)
                return True
            except requests.RequestException:
                logger.info(f"⏳ Waiting for Vault to start ({attempt}/{attempts})")
                if attempt < attempts:
                    time.sleep(interval)
        logger.error("Vault did not become available in time")
        return False

    def is_initialized(self) -> bool:
        response = requests.get(self._url("sys/init"), timeout=REQUEST_TIMEOUT)
        response.raise_for_status()
        return bool(response.json().get("initialized"))

    def seal_status(self) -> Dict[str, Any]:
        response = requests.get(self._url("sys/seal-status"), timeout=REQUEST_TIMEOUT)
        response.raise_for_status()
        return response.json()  # type: ignore[no-any-return]

    def initialize(
        self, shares: int = constants.VAULT_SECRET_SHARES, threshold: int = constants.VAULT_SECRET_THRESHOLD
    ) -> Dict[str, Any]:
        response = requests.post(
            self._url("sys/init"),
            json={"secret_shares": shares, "secret_threshold": threshold},
            timeout=REQUEST_TIMEOUT,
        )
        response.raise_for_status()
        return response.json()  # type: ignore[no-any-return]

    def save_init_data(self, data: Dict[str, Any]) -> Path:
        """Write the init response to ``vault-init-<timestamp>.json`` with mode 600."""
        self.key_dir.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now().strftime(constants.BACKUP_TIMESTAMP_FORMAT)
        path = self.key_dir / f"vault-init-{timestamp}.json"
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w") as f:
            json.dump(data, f, indent=2)
        os.chmod(path, 0o600)
        return path

    def latest_init_file(self) -> Optional[Path]:
        if not self.key_dir.is_dir():
            return None
        files = sorted(self.key_dir.glob("vault-init-*.json"))
        return files[-1] if files else None

    def unseal(self, keys: List[str], threshold: int = constants.VAULT_SECRET_THRESHOLD) -> None:
        """Submit unseal keys until Vault reports unsealed."""
        for index, key in enumerate(keys[:threshold], start=1):
            response = requests.post(self._url("sys/unseal"), json={"key": key}, timeout=REQUEST_TIMEOUT)
            if not response.ok:
                raise VaultError(f"Failed to unseal with key {index}: HTTP {response.status_code}")
            logger.info(f"🔓 Unsealed with key {index}/{threshold}")
            if not response.json().get("sealed", True):
                return
        raise VaultError("Vault is still sealed after submitting the unseal keys")

    def unseal_from_saved_keys(self) -> bool:
        init_file = self.latest_init_file()
        if init_file is None:
            logger.warning(f"Vault is sealed and no init file was found in {self.key_dir}")
            return False
        data = json.loads(init_file.read_text())
        keys = data.get("keys_base64") or data.get("keys") or []
        logger.info(f"Unsealing Vault with keys from {init_file}")
        self.unseal(keys)
        return True

    def ensure_initialized(self) -> Optional[str]:
        """
        Initialize and unseal Vault as needed.

        Returns:
            Root token when Vault was initialized by this call, otherwise None
        """
        if not self.wait_until_available():
            raise VaultError(f"Vault at {self.addr} did not become available")

        if self.is_initialized():
            logger.info("Vault is already initialized")
            if self.seal_status().get("sealed"):
                self.unseal_from_saved_keys()
            else:
                logger.info("Vault is unsealed")
            logger.warning(f"Root token and unseal keys should be in {self.key_dir}/")
            return None

        logger.info("🔐 Initializing Vault")
        data = self.initialize()
        init_file = self.save_init_data(data)
        logger.info(f"Root token and unseal keys saved to: {init_file}")
        logger.warning("CRITICAL: Back up this file securely - the keys cannot be recovered!")

        self.unseal(data.get("keys_base64") or data.get("keys") or [])
        logger.info("✅ Vault unsealed and ready to use")
        return data.get("root_token")
