"""Restore the control VM from the newest backup on the SMB mount."""

import logging
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, List, Optional

import docker
from docker.errors import APIError, ContainerError, NotFound

from proxmox_dr import constants
from proxmox_dr.backup_manager import backup_dirs
from proxmox_dr.config import ControlVMSettings
from proxmox_dr.service_catalog import ServiceCatalog
from proxmox_dr.shell import LocalShell, Shell

logger = logging.getLogger(__name__)


@dataclass
class RestoreResult:
    backup: Path
    restored_volumes: List[str] = field(default_factory=list)
    failed_volumes: List[str] = field(default_factory=list)


class RestoreManager:
    """Restores volumes, configs and IaC state; a missing backup is not an error."""

    def __init__(
        self,
        settings: ControlVMSettings,
        catalog: Optional[ServiceCatalog] = None,
        shell: Optional[Shell] = None,
        docker_client: Any = None,
    ):
        self.settings = settings
        self.catalog = catalog or ServiceCatalog.load()
        self.shell = shell or LocalShell()
        self._docker = docker_client

    @property
    def docker(self) -> Any:
        if self._docker is None:
            self._docker = docker.from_env()
        return self._docker

    def mount_available(self) -> bool:
        return self.shell.succeeds(f"mountpoint -q {self.settings.backup_mount}")

    def latest_backup(self) -> Optional[Path]:
        """Newest ``YYYYmmdd_HHMMSS`` directory, or None."""
        backups = backup_dirs(self.settings.backup_root)
        return backups[-1] if backups else None

    def show_manifest(self, backup: Path) -> None:
        manifest = backup / "MANIFEST.txt"
        if not manifest.is_file():
            return
        logger.info("Backup manifest:")
        for line in manifest.read_text().splitlines()[5:15]:
            logger.info(f"  {line}")

    def _compose(self, action: str) -> None:
        result = self.shell.run(f"cd {self.settings.compose_dir} && docker compose {action}", check=False)
        if not result.ok:
            logger.warning(f"docker compose {action} failed: {result.stderr.strip()}")

    def restore_volume(self, archive: Path) -> bool:
        volume = archive.name[: -len(".tar.gz")]
        name = self.catalog.volume_name(volume)
        try:
            self.docker.volumes.get(name)
        except NotFound:
            logger.info(f"Creating volume: {name}")
            self.docker.volumes.create(name=name)
        try:
            self.docker.containers.run(
                constants.HELPER_IMAGE,
                ["sh", "-c", f"cd /restore && tar xzf /backup/{archive.name}"],
                volumes={
                    name: {"bind": "/restore", "mode": "rw"},
                    str(archive.parent): {"bind": "/backup", "mode": "ro"},
                },
                remove=True,
            )
        except (ContainerError, APIError) as e:
            logger.error(f"❌ Failed to restore {volume}: {e}")
            return False
        logger.info(f"✅ Restored {volume}")
        return True

    def restore_volumes(self, backup: Path, result: RestoreResult) -> None:
        volumes_dir = backup / "docker-volumes"
        if not volumes_dir.is_dir():
            logger.warning("No Docker volumes found in backup")
            return

        logger.info("Stopping containers for clean restore")
        self._compose("stop")
        for archive in sorted(volumes_dir.glob("*.tar.gz")):
            volume = archive.name[: -len(".tar.gz")]
            if self.restore_volume(archive):
                result.restored_volumes.append(volume)
            else:
                result.failed_volumes.append(volume)
        logger.info(
            f"Volume restore complete: {len(result.restored_volumes)} succeeded, {len(result.failed_volumes)} failed"
        )
        logger.info("Starting containers")
        self._compose("start")

    def restore_configs(self, backup: Path) -> None:
        source = backup / "configs" / "docker-compose"
        if not source.is_dir():
            logger.warning("No Docker Compose configuration found in backup")
            return
        shutil.copytree(
            source, self.settings.compose_dir, dirs_exist_ok=True, ignore=shutil.ignore_patterns(".env")
        )
        logger.info("✅ Docker Compose configs restored")

    def restore_terraform_state(self, backup: Path) -> None:
        source = backup / "terraform-state"
        if not source.is_dir():
            logger.warning("No Terraform state found in backup")
            return
        target = self.settings.project_root / "terraform"
        target.mkdir(parents=True, exist_ok=True)
        for path in source.iterdir():
            if path.is_file():
                shutil.copy2(path, target / path.name)
        logger.info("✅ Terraform state restored")

    def restore_ansible(self, backup: Path) -> None:
        source = backup / "ansible"
        if not source.is_dir():
            logger.warning("No Ansible inventory found in backup")
            return
        target = self.settings.project_root / "ansible"
        target.mkdir(parents=True, exist_ok=True)
        if (source / "inventory").is_dir():
            shutil.copytree(source / "inventory", target / "inventory", dirs_exist_ok=True)
        if (source / "ansible.cfg").is_file():
            shutil.copy2(source / "ansible.cfg", target)
        logger.info("✅ Ansible inventory restored")

    def run(self) -> Optional[RestoreResult]:
        """
        Restore from the newest backup.

        Returns:
            RestoreResult, or None for a fresh deployment with nothing to restore
        """
        root = self.settings.backup_root
        if not self.mount_available():
            logger.warning(f"Backup mount not available at {self.settings.backup_mount}")
            try:
                root.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                logger.debug(f"Could not create {root}: {e}")
            logger.info("Fresh deployment - nothing to restore")
            return None

        backup = self.latest_backup()
        if backup is None:
            logger.info(f"No existing backups found in {root}")
            logger.info("Fresh deployment - nothing to restore")
            return None

        logger.info(f"Found backup: {backup.name}")
        self.show_manifest(backup)

        result = RestoreResult(backup=backup)
        self.restore_volumes(backup, result)
        self.restore_configs(backup)
        self.restore_terraform_state(backup)
        self.restore_ansible(backup)

        logger.info(f"✅ Restore complete from {backup.name}")
        logger.warning("If you restored Vault data, you need the unseal keys")
        logger.warning(f"Vault init files are kept in {self.settings.vault_key_dir}/")
        return result
