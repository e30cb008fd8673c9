"""Docker Compose stack deployment on the control VM."""

import logging
import os
import secrets
import shlex
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

import docker
from docker.errors import APIError, ContainerError

from proxmox_dr import constants
from proxmox_dr.config import ControlVMSettings
from proxmox_dr.service_catalog import ServiceCatalog
from proxmox_dr.shell import CommandResult, Shell

logger = logging.getLogger(__name__)

SETTLE_SECONDS = 10


class ComposeError(RuntimeError):
    pass


def write_private_file(path: Path, content: str) -> None:
    """Write ``content`` to ``path`` with mode 600."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w") as f:
        f.write(content)
    os.chmod(path, 0o600)


class ComposeManager:
    """Brings up the service stack defined in the compose directory."""

    def __init__(
        self,
        settings: ControlVMSettings,
        shell: Shell,
        catalog: Optional[ServiceCatalog] = None,
        docker_client: Any = None,
    ):
        self.settings = settings
        self.shell = shell
        self.catalog = catalog or ServiceCatalog.load()
        self._docker = docker_client

    @property
    def docker(self) -> Any:
        if self._docker is None:
            self._docker = docker.from_env()
        return self._docker

    @property
    def htpasswd_file(self) -> Path:
        return self.settings.compose_dir / "configs" / "registry-auth" / "htpasswd"

    def compose(self, args: str, check: bool = True, stream: bool = False) -> CommandResult:
        return self.shell.run(
            f"cd {shlex.quote(str(self.settings.compose_dir))} && docker compose {args}",
            check=check,
            timeout=1800,
            stream=stream,
        )

    def check_prerequisites(self) -> None:
        compose_dir = self.settings.compose_dir
        if not compose_dir.is_dir():
            raise ComposeError(f"Compose directory not found: {compose_dir}")
        if not (compose_dir / ".env").is_file():
            raise ComposeError(
                f"No .env file found in {compose_dir}. Create one from .env.example:\n"
                "  cp .env.example .env\n"
                "  # Replace CHANGEME values with your credentials (openssl rand -hex 32 for secrets)"
            )

    def ensure_registry_auth(self) -> Optional[str]:
        """
        Create the registry htpasswd file with a random password when absent.

        Returns:
            The generated password, or None when the file already existed
        """
        if self.htpasswd_file.is_file():
            logger.info("Registry htpasswd already present")
            return None

        user = constants.REGISTRY_USER
        password = secrets.token_urlsafe(16)
        result = self.shell.run(f"htpasswd -Bbn {user} {shlex.quote(password)}")
        self.htpasswd_file.parent.mkdir(parents=True, exist_ok=True)
        self.htpasswd_file.write_text(result.stdout)
        logger.info(f"🔐 Registry authentication configured for user: {user}")

        if self.settings.backup_mount.is_dir():
            timestamp = datetime.now().strftime(constants.BACKUP_TIMESTAMP_FORMAT)
            path = self.settings.credentials_dir / f"docker-registry-{timestamp}.txt"
            write_private_file(
                path,
                "Docker Registry Credentials\n"
                f"Generated: {datetime.now().isoformat(timespec='seconds')}\n"
                f"Username: {user}\n"
                f"Password: {password}\n",
            )
            logger.info(f"Registry credentials saved to {path}")
        else:
            logger.warning(f"Backup mount unavailable, registry password not saved: {password}")
        return password

    def fix_vault_permissions(self) -> None:
        """Give the Vault data volume to the vault user (100:1000)."""
        volume = self.catalog.volume_name("vault-data")
        self.compose("stop vault")
        try:
            self.docker.containers.run(
                constants.HELPER_IMAGE,
                [
                    "sh",
                    "-c",
                    f"chown -R {constants.VAULT_UID}:{constants.VAULT_GID} /vault/data && chmod -R 755 /vault/data",
                ],
                volumes={volume: {"bind": "/vault/data", "mode": "rw"}},
                remove=True,
            )
        finally:
            self.compose("start vault")

    def deploy(self) -> None:
        self.check_prerequisites()
        self.ensure_registry_auth()

        logger.info("🐳 Pulling Docker images (this may take a while)")
        self.compose("pull", stream=True)
        logger.info("🚀 Starting services")
        self.compose("up -d", stream=True)

        logger.info("Fixing Vault volume permissions")
        try:
            self.fix_vault_permissions()
        except (ContainerError, APIError) as e:
            raise ComposeError(f"Failed to fix Vault volume permissions: {e}") from e

        logger.info("⏳ Waiting for services to become healthy")
        time.sleep(SETTLE_SECONDS)
        logger.info(self.compose("ps").stdout)
        logger.info("✅ Docker Compose stack deployed")
