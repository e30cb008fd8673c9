"""Deployment summary printed at the end of the host setup."""

from typing import Optional

from rich.table import Table

from proxmox_dr import constants
from proxmox_dr.config import DRConfig
from proxmox_dr.console import console, section
from proxmox_dr.service_catalog import ServiceCatalog


def print_summary(config: DRConfig, catalog: Optional[ServiceCatalog] = None) -> None:
    catalog = catalog or ServiceCatalog.load()
    vm_ip = config.control_vm_ip
    user = config.control_vm_user

    section("Deployment Complete!")
    console.print(f"Proxmox Host: [bold]{config.proxmox_host_ip}[/bold]")
    console.print(f"Control VM:   [bold]{vm_ip}[/bold]")
    console.print()
    console.print("[bold]Next steps:[/bold]")
    console.print(f"  1. SSH to Control VM: ssh {user}@{vm_ip}")
    console.print(f"  2. Navigate to IaC repo: cd {constants.PROJECT_ROOT}")
    console.print(f"  3. Review documentation: http://{vm_ip}:{constants.SERVICE_MKDOCS_PORT}")
    console.print("  4. Start using Terraform/Ansible to deploy services")
    console.print()

    services = Table(title="Web Services (on Control VM)")
    services.add_column("Service", style="cyan")
    services.add_column("URL", style="green")
    for name, url in catalog.urls(vm_ip).items():
        services.add_row(name, url)
    console.print(services)

    mounts = Table(title="Storage Mounts (on Proxmox host)")
    mounts.add_column("Mount", style="cyan")
    mounts.add_column("Path")
    mounts.add_row("NFS Public Media", config.nfs_public_media_mount)
    mounts.add_row("SMB Private Data", config.smb_private_mount)
    mounts.add_row("SMB Public Data", config.smb_public_mount)
    console.print(mounts)
