#!/usr/bin/env python3
"""
Proxmox DR CLI - rebuild a Proxmox homelab host and its control VM.

    proxmox-dr deploy                  # From the workstation, drive the whole setup over SSH
    proxmox-dr setup                   # On the Proxmox host itself
    proxmox-dr ssh-keys                # Only prepare workstation SSH keys
    proxmox-dr control-vm setup        # On the control VM (run by deploy)
    proxmox-dr control-vm backup       # Nightly backup (cron)
    proxmox-dr control-vm restore
    proxmox-dr control-vm health
    proxmox-dr control-vm vault-init

Configuration: config/proxmox-config.env
"""

import logging
from pathlib import Path
from typing import Optional

import typer

from proxmox_dr.backup_manager import BackupManager
from proxmox_dr.config import ConfigError, ControlVMSettings, DRConfig
from proxmox_dr.console import console
from proxmox_dr.control_vm_setup import ControlVMSetup, SetupAborted
from proxmox_dr.deploy import Deployment
from proxmox_dr.health_checker import HealthChecker, print_report
from proxmox_dr.host_setup import HostSetup
from proxmox_dr.proxmox_api import ProxmoxClient
from proxmox_dr.restore_manager import RestoreManager
from proxmox_dr.shell import LocalShell
from proxmox_dr.ssh_key_manager import SSHKeyManager
from proxmox_dr.vault_manager import VaultManager

app = typer.Typer(
    name="proxmox-dr",
    help="Proxmox disaster recovery and control VM management",
    add_completion=False
)
control_vm_app = typer.Typer(help="Commands that run on the control VM")
app.add_typer(control_vm_app, name="control-vm")

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)8s] %(name)s: %(message)s"
)
logger = logging.getLogger(__name__)

DEFAULT_CONFIG = Path("config/proxmox-config.env")
DEFAULT_CONTROL_VM_ENV = Path("control-vm-config/.env")


def load_config(config_file: Path) -> DRConfig:
    try:
        return DRConfig.from_file(config_file)
    except ConfigError as e:
        console.print(f"❌ {e}")
        raise typer.Exit(1)


@app.command("deploy")
def deploy(
    config_file: Path = typer.Option(
        DEFAULT_CONFIG,
        "--config", "-c",
        help="Proxmox DR configuration file"
    ),
    control_vm_env: Path = typer.Option(
        DEFAULT_CONTROL_VM_ENV,
        "--control-vm-env",
        help=".env for the control VM Docker Compose stack"
    )
) -> None:
    """
    Deploy the full DR setup to a Proxmox host from this workstation.

    Prepares SSH keys, copies the configuration to the host and runs
    the host setup over SSH (15-30 minutes).
    """
    config = load_config(config_file)
    console.print(f"🚀 Deploying to Proxmox host: {config.proxmox_host or '<unset>'}")

    try:
        Deployment(config, control_vm_env).run()
    except Exception as e:
        console.print(f"\n❌ Deployment failed: {e}")
        logger.exception("Deployment error")
        raise typer.Exit(1)


@app.command("setup")
def setup(
    config_file: Path = typer.Option(
        DEFAULT_CONFIG,
        "--config", "-c",
        help="Proxmox DR configuration file"
    ),
    public_key: Optional[Path] = typer.Option(
        None,
        "--public-key",
        help="Admin public key to authorize (defaults to SSH_PUBLIC_KEY_PATH)"
    ),
    control_vm_env: Optional[Path] = typer.Option(
        None,
        "--control-vm-env",
        help=".env for the control VM Docker Compose stack"
    )
) -> None:
    """
    Run the host setup directly on the Proxmox host.
    """
    config = load_config(config_file)

    try:
        if public_key is not None:
            admin_public_key = public_key.read_text().strip()
        else:
            admin_public_key = SSHKeyManager(config).public_key_from_config() or ""
        if not admin_public_key:
            console.print("❌ No admin public key: pass --public-key or set SSH_PUBLIC_KEY_PATH")
            raise typer.Exit(1)

        proxmox = ProxmoxClient.local(config.proxmox_hostname)
        staged_env = str(control_vm_env) if control_vm_env is not None and control_vm_env.is_file() else None
        HostSetup(LocalShell(), config, proxmox, admin_public_key, staged_env).run()
    except typer.Exit:
        raise
    except Exception as e:
        console.print(f"\n❌ Setup failed: {e}")
        logger.exception("Setup error")
        raise typer.Exit(1)


@app.command("ssh-keys")
def ssh_keys(
    config_file: Path = typer.Option(
        DEFAULT_CONFIG,
        "--config", "-c",
        help="Proxmox DR configuration file"
    )
) -> None:
    """
    Create workstation SSH keys and authorize the admin key on Proxmox.
    """
    config = load_config(config_file)
    try:
        config.require_deployment()
        SSHKeyManager(config).setup()
        console.print("\n✅ SSH keys ready")
    except Exception as e:
        console.print(f"\n❌ SSH key setup failed: {e}")
        logger.exception("SSH key error")
        raise typer.Exit(1)


@control_vm_app.command("setup")
def control_vm_setup() -> None:
    """
    Set up the control VM: packages, backup mount, tools, restore and services.
    """
    try:
        ControlVMSetup(ControlVMSettings.from_environment()).run()
    except SetupAborted:
        console.print("Setup cancelled")
        raise typer.Exit(0)
    except Exception as e:
        console.print(f"\n❌ Control VM setup failed: {e}")
        logger.exception("Control VM setup error")
        raise typer.Exit(1)


@control_vm_app.command("backup")
def control_vm_backup() -> None:
    """
    Back up Docker volumes, configs and IaC state to the backup mount.
    """
    try:
        backup_dir = BackupManager(ControlVMSettings.from_environment()).run()
        console.print(f"✅ Backup written to {backup_dir}")
    except Exception as e:
        console.print(f"\n❌ Backup failed: {e}")
        logger.exception("Backup error")
        raise typer.Exit(1)


@control_vm_app.command("restore")
def control_vm_restore() -> None:
    """
    Restore the control VM from the latest backup.
    """
    try:
        result = RestoreManager(ControlVMSettings.from_environment()).run()
    except Exception as e:
        console.print(f"\n❌ Restore failed: {e}")
        logger.exception("Restore error")
        raise typer.Exit(1)

    if result is None:
        console.print("Nothing to restore")
        return
    console.print(f"✅ Restored from {result.backup.name}")
    if result.failed_volumes:
        console.print(f"⚠️  Failed volumes: {', '.join(result.failed_volumes)}")
        raise typer.Exit(1)


@control_vm_app.command("health")
def control_vm_health() -> None:
    """
    Check system, Docker, services and tools on the control VM.

    Exit code 0 when healthy, 1 when most checks pass, 2 on critical issues.
    """
    try:
        report = HealthChecker(ControlVMSettings.from_environment()).run()
    except Exception as e:
        console.print(f"\n❌ Health check failed: {e}")
        logger.exception("Health check error")
        raise typer.Exit(2)

    print_report(report)
    raise typer.Exit(report.exit_code)


@control_vm_app.command("vault-init")
def control_vm_vault_init() -> None:
    """
    Initialize Vault on first use, or unseal it with the saved keys.
    """
    try:
        settings = ControlVMSettings.from_environment()
        root_token = VaultManager(settings.vault_addr, settings.vault_key_dir).ensure_initialized()
    except Exception as e:
        console.print(f"\n❌ Vault initialization failed: {e}")
        logger.exception("Vault error")
        raise typer.Exit(1)

    if root_token:
        console.print(f"Vault root token: [bold]{root_token}[/bold]")
    console.print("✅ Vault ready")


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log every command proxmox-dr runs"),
    debug: bool = typer.Option(False, "--debug", help="Enable debug logging for all libraries, including paramiko")
) -> None:
    """
    Proxmox Disaster Recovery

    Rebuilds a Proxmox host, its storage mounts and the control VM
    from a single configuration file.
    """
    if debug:
        logging.getLogger().setLevel(logging.DEBUG)
    elif verbose:
        logging.getLogger("proxmox_dr").setLevel(logging.DEBUG)


if __name__ == "__main__":
    app()
