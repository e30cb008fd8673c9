"""Scheduled backups on the control VM: Terraform state and full VM state."""

import logging
import shlex
from typing import List

from proxmox_dr import constants
from proxmox_dr.config import DRConfig
from proxmox_dr.shell import Shell

logger = logging.getLogger(__name__)

STATE_BACKUP_DIR = f"{constants.BACKUP_MOUNT}/terraform-state-backups"
CONTROL_VM_BACKUP_COMMAND = "/usr/local/bin/proxmox-dr control-vm backup >> /var/log/control-vm-backup.log 2>&1"


def state_backup_script(backup_dir: str = STATE_BACKUP_DIR) -> str:
    return (
        "#!/bin/bash\n"
        f"rsync -av {constants.PROJECT_ROOT}/terraform/*.tfstate {backup_dir}/ || true\n"
    )


def cron_entries() -> List[str]:
    return [
        f"{constants.TERRAFORM_BACKUP_CRON} {constants.TERRAFORM_STATE_BACKUP_SCRIPT}",
        f"{constants.CONTROL_VM_BACKUP_CRON} {CONTROL_VM_BACKUP_COMMAND}",
    ]


def merge_crontab(current: str, entries: List[str]) -> str:
    """Append the entries not already present in ``current``, keeping its layout."""
    lines = current.rstrip().splitlines()
    present = {line.strip() for line in lines}
    for entry in entries:
        if entry not in present:
            lines.append(entry)
    return "\n".join(lines) + "\n"


class BackupScheduler:
    def __init__(self, shell: Shell, config: DRConfig):
        self.shell = shell
        self.config = config

    def install_state_backup_script(self) -> None:
        script = constants.TERRAFORM_STATE_BACKUP_SCRIPT
        self.shell.run(f"sudo mkdir -p {STATE_BACKUP_DIR}")
        self.shell.run(f"printf '%s' {shlex.quote(state_backup_script())} | sudo tee {script} >/dev/null")
        self.shell.run(f"sudo chmod +x {script}")

    def install_cron_entries(self) -> bool:
        """
        Add the backup cron entries to root's crontab without duplicating them.

        Returns:
            True if the crontab changed
        """
        current = self.shell.run("sudo crontab -l 2>/dev/null", check=False).stdout
        merged = merge_crontab(current, cron_entries())
        if merged.strip() == current.strip():
            logger.info("Backup cron entries already installed")
            return False
        self.shell.run(f"printf '%s' {shlex.quote(merged)} | sudo crontab -")
        return True

    def setup(self) -> bool:
        if not self.config.backup_terraform_state:
            logger.info("Skipping Terraform state backup (BACKUP_TERRAFORM_STATE=false)")
            return False
        logger.info("🗄️  Setting up automated backups")
        self.install_state_backup_script()
        self.install_cron_entries()
        logger.info("✅ Backups scheduled (Terraform state daily at 2am, control VM daily at 3am)")
        return True
