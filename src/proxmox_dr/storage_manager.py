#!/usr/bin/env python3
"""
Idempotent NFS and SMB storage mounts for the Proxmox host.

Handles:
- NFS/CIFS client package installation
- Mount points and SMB credential files
- /etc/fstab entries with systemd automount options
- Automount unit activation and accessibility checks

All operations are idempotent and safe to re-run.
"""

import logging
import shlex
from dataclasses import dataclass
from typing import List, Optional

from proxmox_dr import constants
from proxmox_dr.config import DRConfig
from proxmox_dr.shell import Shell

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MountSpec:
    """One network share and where it is mounted."""

    source: str
    mount_point: str
    fstype: str
    options: str
    label: str

    @property
    def fstab_line(self) -> str:
        return f"{self.source} {self.mount_point} {self.fstype} {self.options} 0 0"


def nfs_mount(host: str, share: str, mount_point: str, label: str = "NFS") -> MountSpec:
    return MountSpec(
        source=f"{host}:/var/nfs/shared/{share}",
        mount_point=mount_point,
        fstype="nfs",
        options=constants.NFS_MOUNT_OPTIONS,
        label=label,
    )


def smb_mount(
    host: str,
    share: str,
    mount_point: str,
    credentials: str,
    uid: int = constants.SMB_MOUNT_UID,
    gid: int = constants.SMB_MOUNT_GID,
    label: str = "SMB",
) -> MountSpec:
    return MountSpec(
        source=f"//{host}/{share}",
        mount_point=mount_point,
        fstype="cifs",
        options=constants.SMB_MOUNT_OPTIONS.format(credentials=credentials, uid=uid, gid=gid),
        label=label,
    )


def merge_fstab(content: str, entries: List[MountSpec]) -> str:
    """
    Return fstab content with exactly one line per mount point in ``entries``.

    Existing lines whose mount point field matches are dropped and the new
    entries appended; comments and unrelated lines are kept in place.

    Args:
        content: Current /etc/fstab content
        entries: Mounts to define

    Returns:
        New fstab content
    """
    managed = {entry.mount_point for entry in entries}
    kept = []
    for line in content.splitlines():
        fields = line.split()
        if fields and not fields[0].startswith("#") and len(fields) > 1 and fields[1] in managed:
            continue
        kept.append(line)
    kept.extend(entry.fstab_line for entry in entries)
    return "\n".join(kept) + "\n"


def ensure_fstab_entry(shell: Shell, entry: MountSpec, fstab: str = constants.FSTAB_FILE) -> bool:
    """
    Append ``entry`` to fstab unless its mount point is already listed.

    Returns:
        True if the entry was appended
    """
    content = shell.read_file(fstab) or ""
    for line in content.splitlines():
        fields = line.split()
        if len(fields) > 1 and not fields[0].startswith("#") and fields[1] == entry.mount_point:
            logger.info(f"fstab entry for {entry.mount_point} already present")
            return False
    shell.run(f"echo {shlex.quote(entry.fstab_line)} >> {fstab}")
    logger.info(f"➕ Added fstab entry for {entry.mount_point}")
    return True


class StorageManager:
    """Manages NFS and SMB mounts from the UNAS on the Proxmox host."""

    def __init__(self, shell: Shell, config: DRConfig):
        """
        Initialize storage manager.

        Args:
            shell: Shell on the Proxmox host
            config: Deployment configuration
        """
        self.shell = shell
        self.config = config

    def mounts(self) -> List[MountSpec]:
        cfg = self.config
        return [
            nfs_mount(cfg.unas_public_ip, cfg.nfs_public_media_share_name, cfg.nfs_public_media_mount, "NFS public media"),
            smb_mount(
                cfg.unas_private_ip,
                cfg.smb_private_share_name,
                cfg.smb_private_mount,
                constants.SMB_PRIVATE_CREDENTIALS,
                label="SMB private",
            ),
            smb_mount(
                cfg.unas_public_ip,
                cfg.smb_public_share_name,
                cfg.smb_public_mount,
                constants.SMB_PUBLIC_CREDENTIALS,
                label="SMB public",
            ),
        ]

    def package_installed(self, package: str) -> bool:
        result = self.shell.run(f"dpkg -s {package}", check=False)
        return result.ok and "Status: install ok installed" in result.stdout

    def install_clients(self) -> None:
        """Install nfs-common and cifs-utils when missing."""
        missing = [pkg for pkg in ("nfs-common", "cifs-utils") if not self.package_installed(pkg)]
        if not missing:
            return
        logger.info(f"📦 Installing {', '.join(missing)}")
        self.shell.run("apt-get update -qq", timeout=600)
        self.shell.run(f"DEBIAN_FRONTEND=noninteractive apt-get install -y {' '.join(missing)}", timeout=600)

    def create_mount_points(self) -> None:
        paths = " ".join(shlex.quote(m.mount_point) for m in self.mounts())
        self.shell.run(f"mkdir -p {paths}")

    def create_credentials_file(self, path: str) -> bool:
        """
        Write an SMB credentials file unless it already exists.

        Returns:
            True if the file was created
        """
        if self.shell.file_exists(path):
            logger.info(f"SMB credentials file already exists: {path}")
            return False
        logger.info(f"🔐 Creating SMB credentials file: {path}")
        content = f"username={self.config.smb_username}\npassword={self.config.smb_password}\n"
        self.shell.write_file(path, content, mode="600")
        self.shell.run(f"chown root:root {shlex.quote(path)}")
        return True

    def update_fstab(self) -> bool:
        """
        Rewrite /etc/fstab with one entry per managed mount point.

        Returns:
            True if the file changed
        """
        current = self.shell.read_file(constants.FSTAB_FILE) or ""
        updated = merge_fstab(current, self.mounts())
        if updated == current:
            logger.info("fstab already up to date")
            return False
        self.shell.write_file(constants.FSTAB_FILE, updated)
        logger.info("📝 fstab updated")
        return True

    def automount_unit(self, mount_point: str) -> Optional[str]:
        result = self.shell.run(f"systemd-escape -p --suffix=automount {shlex.quote(mount_point)}", check=False)
        return result.stdout.strip() if result.ok else None

    def enable_automounts(self) -> None:
        self.shell.run("systemctl daemon-reload")
        for mount in self.mounts():
            unit = self.automount_unit(mount.mount_point)
            if not unit:
                logger.warning(f"Could not derive automount unit for {mount.mount_point}")
                continue
            for action in ("enable", "start"):
                if not self.shell.succeeds(f"systemctl {action} {unit}"):
                    logger.warning(f"systemctl {action} {unit} failed")

    def test_mounts(self) -> List[str]:
        """Return the mount points that did not answer within 10 seconds."""
        unreachable = []
        for mount in self.mounts():
            if self.shell.succeeds(f"timeout 10 ls {shlex.quote(mount.mount_point)} >/dev/null 2>&1"):
                logger.info(f"✅ {mount.label} mount accessible")
            else:
                logger.warning(f"{mount.label} mount not accessible (will automount when NAS is online)")
                unreachable.append(mount.mount_point)
        return unreachable

    def setup(self) -> None:
        self.install_clients()
        self.create_mount_points()
        self.create_credentials_file(constants.SMB_PRIVATE_CREDENTIALS)
        self.create_credentials_file(constants.SMB_PUBLIC_CREDENTIALS)
        self.update_fstab()
        self.enable_automounts()
        self.test_mounts()
        for mount in self.mounts():
            logger.info(f"  - {mount.label}: {mount.mount_point} ({mount.source})")
