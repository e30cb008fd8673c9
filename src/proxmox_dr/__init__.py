"""Disaster recovery bootstrap for a Proxmox VE homelab host and its control VM."""

__version__ = "0.1.0"
