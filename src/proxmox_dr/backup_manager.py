"""
Control VM backup to the SMB backup mount.

Each run creates ``<backup root>/<YYYYmmdd_HHMMSS>/`` holding:

- docker-volumes/<volume>.tar.gz for every catalog volume
- configs/ (compose files without .env, git metadata)
- terraform-state/ and ansible/
- MANIFEST.txt
"""

import logging
import os
import re
import shutil
import socket
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, List, Optional

import docker
from docker.errors import NotFound

from proxmox_dr import constants
from proxmox_dr.config import ControlVMSettings
from proxmox_dr.service_catalog import ServiceCatalog
from proxmox_dr.shell import LocalShell, Shell

logger = logging.getLogger(__name__)

BACKUP_NAME = re.compile(constants.BACKUP_NAME_PATTERN)


class BackupError(RuntimeError):
    pass


def backup_dirs(root: Path) -> List[Path]:
    """Timestamp-named backup directories under ``root``, oldest first."""
    if not root.is_dir():
        return []
    return sorted(
        path for path in root.iterdir() if BACKUP_NAME.match(path.name) and path.is_dir() and not path.is_symlink()
    )


def human_size(num_bytes: float) -> str:
    for unit in ("B", "K", "M", "G", "T"):
        if num_bytes < 1024 or unit == "T":
            return f"{num_bytes:.0f}{unit}" if unit == "B" else f"{num_bytes:.1f}{unit}"
        num_bytes /= 1024
    return f"{num_bytes:.1f}T"


def directory_size(path: Path) -> int:
    total = 0
    for dirpath, _dirnames, filenames in os.walk(path):
        for name in filenames:
            file_path = Path(dirpath) / name
            if not file_path.is_symlink():
                total += file_path.stat().st_size
    return total


class BackupManager:
    """Backs up Docker volumes, configs and IaC state of the control VM."""

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

    def check_mount(self) -> None:
        mount = self.settings.backup_mount
        if not self.shell.succeeds(f"mountpoint -q {mount}"):
            raise BackupError(f"Backup mount not available at {mount}")

    def backup_volumes(self, backup_dir: Path) -> List[str]:
        """Archive every catalog volume. Returns the volumes archived."""
        volumes_dir = backup_dir / "docker-volumes"
        volumes_dir.mkdir(parents=True, exist_ok=True)
        archived = []
        for volume in self.catalog.volumes():
            name = self.catalog.volume_name(volume)
            try:
                self.docker.volumes.get(name)
            except NotFound:
                logger.warning(f"Volume not found: {name}")
                continue
            logger.info(f"📦 Backing up volume: {volume}")
            self.docker.containers.run(
                constants.HELPER_IMAGE,
                ["tar", "czf", f"/backup/{volume}.tar.gz", "-C", "/source", "."],
                volumes={
                    name: {"bind": "/source", "mode": "ro"},
                    str(volumes_dir): {"bind": "/backup", "mode": "rw"},
                },
                remove=True,
            )
            archived.append(volume)
        return archived

    def backup_configs(self, backup_dir: Path) -> None:
        config_dir = backup_dir / "configs"
        config_dir.mkdir(parents=True, exist_ok=True)

        compose_dir = self.settings.compose_dir
        if compose_dir.is_dir():
            shutil.copytree(compose_dir, config_dir / "docker-compose", ignore=shutil.ignore_patterns(".env"))
            logger.info("Docker Compose configs backed up (excluding .env)")

        root = self.settings.project_root
        if (root / ".git").is_dir():
            for filename, args in (
                ("git-remotes.txt", "remote -v"),
                ("git-branches.txt", "branch -a"),
                ("git-recent-commits.txt", "log --oneline -10"),
            ):
                result = self.shell.run(f"git -C {root} {args}", check=False)
                (config_dir / filename).write_text(result.stdout)
            logger.info("Git metadata backed up")

    def backup_terraform_state(self, backup_dir: Path) -> int:
        terraform_dir = self.settings.project_root / "terraform"
        if not terraform_dir.is_dir():
            logger.warning("Terraform directory not found")
            return 0
        state_dir = backup_dir / "terraform-state"
        state_dir.mkdir(parents=True, exist_ok=True)
        copied = 0
        for state_file in terraform_dir.rglob("*.tfstate*"):
            if state_file.is_file():
                shutil.copy2(state_file, state_dir / state_file.name)
                copied += 1
        lock_file = terraform_dir / ".terraform.lock.hcl"
        if lock_file.is_file():
            shutil.copy2(lock_file, state_dir)
        logger.info(f"Terraform state backed up ({copied} files)")
        return copied

    def backup_ansible(self, backup_dir: Path) -> None:
        ansible_dir = self.settings.project_root / "ansible"
        if not ansible_dir.is_dir():
            logger.warning("Ansible directory not found")
            return
        target = backup_dir / "ansible"
        target.mkdir(parents=True, exist_ok=True)
        if (ansible_dir / "inventory").is_dir():
            shutil.copytree(ansible_dir / "inventory", target / "inventory")
        if (ansible_dir / "ansible.cfg").is_file():
            shutil.copy2(ansible_dir / "ansible.cfg", target)
        logger.info("Ansible inventory backed up")

    def write_manifest(self, backup_dir: Path) -> Path:
        services = "\n".join(f"- {service.name}" for service in self.catalog.services)
        files = sorted(str(path.relative_to(backup_dir)) for path in backup_dir.rglob("*") if path.is_file())
        manifest = backup_dir / "MANIFEST.txt"
        manifest.write_text(
            "Control VM Backup Manifest\n"
            "==========================\n"
            "\n"
            f"Backup Timestamp: {backup_dir.name}\n"
            f"Backup Location: {backup_dir}\n"
            f"Hostname: {socket.gethostname()}\n"
            f"IP Address: {self.settings.control_vm_ip}\n"
            "\n"
            "Backup Contents:\n"
            "----------------\n"
            "- Docker volumes (compressed archives)\n"
            "- Docker Compose configuration (without .env)\n"
            "- Terraform state files\n"
            "- Ansible inventory\n"
            "- Git metadata (remotes, branches, recent commits)\n"
            "\n"
            "Restoration Notes:\n"
            "------------------\n"
            "1. Run: sudo proxmox-dr control-vm restore\n"
            f"2. Recreate {self.settings.compose_dir}/.env from .env.example with actual secrets\n"
            f"3. Unseal Vault with the keys in {self.settings.vault_key_dir}/\n"
            "\n"
            "Services Backed Up:\n"
            "-------------------\n"
            f"{services}\n"
            "\n"
            "Backup File Structure:\n"
            + "\n".join(files)
            + "\n"
        )
        return manifest

    def cleanup_old_backups(self, now: Optional[datetime] = None, keep: Optional[Path] = None) -> List[Path]:
        """
        Delete timestamped backups older than the retention period.

        Args:
            now: Reference time (defaults to now)
            keep: A backup dir never to delete, e.g. the one just written

        Returns:
            Directories removed
        """
        now = now or datetime.now()
        cutoff = now - timedelta(days=self.settings.retention_days)
        removed = []
        for path in backup_dirs(self.settings.backup_root):
            if keep is not None and path == keep:
                continue
            created = datetime.strptime(path.name, constants.BACKUP_TIMESTAMP_FORMAT)
            if created < cutoff:
                logger.info(f"🗑️  Removing old backup {path.name}")
                shutil.rmtree(path)
                removed.append(path)
        logger.info(f"Total backups remaining: {len(backup_dirs(self.settings.backup_root))}")
        return removed

    def update_latest_link(self, backup_dir: Path) -> Path:
        latest = self.settings.backup_root / "latest"
        if latest.is_symlink() or latest.exists():
            latest.unlink()
        latest.symlink_to(backup_dir)
        logger.info(f"Latest backup: {latest} -> {backup_dir}")
        return latest

    def run(self, now: Optional[datetime] = None) -> Path:
        """
        Take a full backup.

        Returns:
            The new backup directory
        """
        now = now or datetime.now()
        self.check_mount()

        backup_dir = self.settings.backup_root / now.strftime(constants.BACKUP_TIMESTAMP_FORMAT)
        logger.info(f"Creating backup directory: {backup_dir}")
        backup_dir.mkdir(parents=True, exist_ok=True)

        self.backup_volumes(backup_dir)
        self.backup_configs(backup_dir)
        self.backup_terraform_state(backup_dir)
        self.backup_ansible(backup_dir)
        self.write_manifest(backup_dir)
        self.cleanup_old_backups(now, keep=backup_dir)
        self.update_latest_link(backup_dir)

        logger.info(f"✅ Backup complete: {backup_dir} ({human_size(directory_size(backup_dir))})")
        return backup_dir
