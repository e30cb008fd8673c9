import os
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from dotenv import dotenv_values, load_dotenv

from proxmox_dr import constants

DEPLOYMENT_REQUIRED = ["PROXMOX_HOST", "SSH_USER"]

SETUP_REQUIRED = [
    "PROXMOX_HOST_IP",
    "PROXMOX_HOSTNAME",
    "GATEWAY_IP",
    "DNS_SERVERS",
    "PRIVATE_NETWORK_CIDR",
    "PUBLIC_NETWORK_CIDR",
    "PUBLIC_VLAN_TAG",
    "UNAS_PRIVATE_IP",
    "UNAS_PUBLIC_IP",
    "NFS_PUBLIC_MEDIA_MOUNT",
    "SMB_PRIVATE_MOUNT",
    "SMB_PUBLIC_MOUNT",
    "SMB_USERNAME",
    "SMB_PASSWORD",
    "CONTROL_VM_IP",
]


class ConfigError(ValueError):
    """Raised when the configuration file is missing or incomplete."""

    def __init__(self, message: str, missing: Optional[List[str]] = None):
        super().__init__(message)
        self.missing = missing or []


def _as_bool(value: Optional[str], default: bool) -> bool:
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _as_int(values: Dict[str, str], key: str, default: int) -> int:
    raw = values.get(key, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{key} must be an integer, got {raw!r}")


@dataclass
class DRConfig:
    """Deployment configuration loaded from a key=value ``.env`` file."""

    values: Dict[str, str] = field(default_factory=dict)
    path: Optional[Path] = None

    @classmethod
    def from_file(cls, path: Path) -> "DRConfig":
        """Load configuration from ``path``.

        Raises:
            ConfigError: If the file does not exist.
        """
        path = Path(path)
        if not path.is_file():
            raise ConfigError(
                f"Configuration file not found: {path}. "
                f"Create it by copying the example: cp {path}.example {path}"
            )
        raw = dotenv_values(path)
        values = {key: (value or "") for key, value in raw.items()}
        return cls(values=values, path=path)

    def get(self, key: str, default: str = "") -> str:
        value = self.values.get(key, "")
        return value if value != "" else default

    def missing(self, keys: List[str]) -> List[str]:
        """Return the keys that are unset or empty."""
        return [key for key in keys if not self.values.get(key, "").strip()]

    def _require(self, keys: List[str]) -> None:
        missing = self.missing(keys)
        if missing:
            lines = "\n".join(f"  - {key}" for key in missing)
            raise ConfigError(f"Missing required configuration variables:\n{lines}", missing=missing)

    def require_deployment(self) -> None:
        self._require(DEPLOYMENT_REQUIRED)

    def require_setup(self) -> None:
        self._require(SETUP_REQUIRED)

    # Workstation -> Proxmox connection

    @property
    def proxmox_host(self) -> str:
        return self.get("PROXMOX_HOST")

    @property
    def ssh_user(self) -> str:
        return self.get("SSH_USER", "root")

    @property
    def ssh_port(self) -> int:
        return _as_int(self.values, "SSH_PORT", 22)

    @property
    def ssh_public_key_path(self) -> str:
        return os.path.expanduser(self.get("SSH_PUBLIC_KEY_PATH"))

    @property
    def proxmox_api_token(self) -> Optional[str]:
        return self.get("PROXMOX_API_TOKEN") or None

    # Proxmox host

    @property
    def proxmox_host_ip(self) -> str:
        return self.get("PROXMOX_HOST_IP")

    @property
    def proxmox_hostname(self) -> str:
        return self.get("PROXMOX_HOSTNAME")

    @property
    def gateway_ip(self) -> str:
        return self.get("GATEWAY_IP")

    @property
    def dns_servers(self) -> str:
        return self.get("DNS_SERVERS", constants.DEFAULT_DNS_SERVERS)

    @property
    def private_network_bridge(self) -> str:
        return self.get("PRIVATE_NETWORK_BRIDGE", constants.DEFAULT_PRIVATE_NETWORK_BRIDGE)

    @property
    def public_network_bridge(self) -> str:
        return self.get("PUBLIC_NETWORK_BRIDGE", constants.DEFAULT_PUBLIC_NETWORK_BRIDGE)

    @property
    def public_vlan_tag(self) -> str:
        return self.get("PUBLIC_VLAN_TAG")

    # Storage

    @property
    def unas_private_ip(self) -> str:
        return self.get("UNAS_PRIVATE_IP")

    @property
    def unas_public_ip(self) -> str:
        return self.get("UNAS_PUBLIC_IP")

    @property
    def nfs_public_media_mount(self) -> str:
        return self.get("NFS_PUBLIC_MEDIA_MOUNT")

    @property
    def nfs_public_media_share_name(self) -> str:
        return self.get("NFS_PUBLIC_MEDIA_SHARE_NAME", constants.DEFAULT_NFS_PUBLIC_MEDIA_SHARE_NAME)

    @property
    def smb_private_mount(self) -> str:
        return self.get("SMB_PRIVATE_MOUNT")

    @property
    def smb_private_share_name(self) -> str:
        return self.get("SMB_PRIVATE_SHARE_NAME", constants.DEFAULT_SMB_PRIVATE_SHARE_NAME)

    @property
    def smb_public_mount(self) -> str:
        return self.get("SMB_PUBLIC_MOUNT")

    @property
    def smb_public_share_name(self) -> str:
        return self.get("SMB_PUBLIC_SHARE_NAME", constants.DEFAULT_SMB_PUBLIC_SHARE_NAME)

    @property
    def smb_username(self) -> str:
        return self.get("SMB_USERNAME")

    @property
    def smb_password(self) -> str:
        return self.get("SMB_PASSWORD")

    # Template and control VM

    @property
    def ubuntu_template_id(self) -> int:
        return _as_int(self.values, "UBUNTU_TEMPLATE_ID", constants.DEFAULT_UBUNTU_TEMPLATE_ID)

    @property
    def ubuntu_cloud_image_url(self) -> str:
        return self.get("UBUNTU_CLOUD_IMAGE_URL", constants.DEFAULT_UBUNTU_CLOUD_IMAGE_URL)

    @property
    def control_vm_id(self) -> int:
        return _as_int(self.values, "CONTROL_VM_ID", constants.DEFAULT_CONTROL_VM_ID)

    @property
    def control_vm_name(self) -> str:
        return self.get("CONTROL_VM_NAME", constants.DEFAULT_CONTROL_VM_NAME)

    @property
    def control_vm_user(self) -> str:
        return self.get("CONTROL_VM_USER", constants.DEFAULT_CONTROL_VM_USER)

    @property
    def control_vm_ip(self) -> str:
        return self.get("CONTROL_VM_IP")

    @property
    def control_vm_netmask(self) -> int:
        return _as_int(self.values, "CONTROL_VM_NETMASK", constants.DEFAULT_CONTROL_VM_NETMASK)

    @property
    def control_vm_vlan(self) -> Optional[int]:
        vlan = _as_int(self.values, "CONTROL_VM_VLAN", 0)
        return vlan or None

    @property
    def control_vm_cpus(self) -> int:
        return _as_int(self.values, "CONTROL_VM_CPUS", constants.DEFAULT_CONTROL_VM_CPUS)

    @property
    def control_vm_memory(self) -> int:
        return _as_int(self.values, "CONTROL_VM_MEMORY", constants.DEFAULT_CONTROL_VM_MEMORY)

    @property
    def control_vm_disk(self) -> int:
        return _as_int(self.values, "CONTROL_VM_DISK", constants.DEFAULT_CONTROL_VM_DISK)

    @property
    def control_vm_storage(self) -> str:
        return self.get("CONTROL_VM_STORAGE", constants.DEFAULT_CONTROL_VM_STORAGE)

    @property
    def control_vm_recreate(self) -> bool:
        return _as_bool(self.values.get("CONTROL_VM_RECREATE"), False)

    @property
    def automation_key(self) -> str:
        return self.get("PROXMOX_AUTOMATION_KEY", constants.PROXMOX_AUTOMATION_KEY)

    # Tooling and services

    @property
    def terraform_version(self) -> str:
        return self.get("TERRAFORM_VERSION", constants.DEFAULT_TERRAFORM_VERSION)

    @property
    def ansible_version(self) -> str:
        return self.get("ANSIBLE_VERSION", constants.DEFAULT_ANSIBLE_VERSION)

    @property
    def packer_version(self) -> str:
        return self.get("PACKER_VERSION", constants.DEFAULT_PACKER_VERSION)

    @property
    def github_repo_url(self) -> str:
        return self.get("GITHUB_REPO_URL")

    @property
    def github_branch(self) -> str:
        return self.get("GITHUB_BRANCH")

    @property
    def proxmox_dr_source(self) -> str:
        """pip install target for the CLI on the control VM: a path on the VM or a pip spec."""
        return self.get("PROXMOX_DR_SOURCE", constants.PROJECT_ROOT)

    @property
    def deploy_control_vm_stack(self) -> bool:
        return _as_bool(self.values.get("DEPLOY_CONTROL_VM_STACK"), True)

    @property
    def backup_terraform_state(self) -> bool:
        return _as_bool(self.values.get("BACKUP_TERRAFORM_STATE"), True)


def _detect_ip() -> str:
    """First address reported by ``hostname -I``, or ``localhost``."""
    try:
        result = subprocess.run(["hostname", "-I"], capture_output=True, text=True, timeout=5)
    except (OSError, subprocess.TimeoutExpired):
        return "localhost"
    addresses = result.stdout.split()
    return addresses[0] if addresses else "localhost"


@dataclass
class ControlVMSettings:
    """Settings used by the commands that run on the control VM itself."""

    project_root: Path = Path(constants.PROJECT_ROOT)
    compose_dir: Path = Path(constants.COMPOSE_DIR)
    backup_mount: Path = Path(constants.BACKUP_MOUNT)
    unas_private_ip: str = constants.DEFAULT_UNAS_PRIVATE_IP
    unas_share: str = constants.DEFAULT_SMB_PRIVATE_SHARE_NAME
    smb_username: str = constants.DEFAULT_SMB_USERNAME
    smb_password: str = ""
    smb_credentials: Path = Path(constants.SMB_CONTROL_VM_CREDENTIALS)
    control_vm_user: str = constants.DEFAULT_CONTROL_VM_USER
    control_vm_ip: str = "localhost"
    auto_confirm: bool = False
    vault_addr: str = constants.DEFAULT_VAULT_ADDR
    retention_days: int = constants.BACKUP_RETENTION_DAYS

    @classmethod
    def from_environment(cls) -> "ControlVMSettings":
        """Build settings from environment variables (and a ``.env`` if present)."""
        load_dotenv()
        project_root = Path(os.getenv("PROJECT_ROOT", constants.PROJECT_ROOT))
        return cls(
            project_root=project_root,
            compose_dir=Path(os.getenv("COMPOSE_DIR", str(project_root / "control-vm" / "docker-compose"))),
            backup_mount=Path(os.getenv("BACKUP_MOUNT", constants.BACKUP_MOUNT)),
            unas_private_ip=os.getenv("UNAS_PRIVATE_IP") or constants.DEFAULT_UNAS_PRIVATE_IP,
            unas_share=os.getenv("UNAS_SHARE") or constants.DEFAULT_SMB_PRIVATE_SHARE_NAME,
            smb_username=os.getenv("SMB_USERNAME") or constants.DEFAULT_SMB_USERNAME,
            smb_password=os.getenv("SMB_PASSWORD", ""),
            smb_credentials=Path(os.getenv("SMB_CREDENTIALS_FILE", constants.SMB_CONTROL_VM_CREDENTIALS)),
            control_vm_user=os.getenv("CONTROL_VM_USER") or constants.DEFAULT_CONTROL_VM_USER,
            control_vm_ip=os.getenv("CONTROL_VM_IP") or _detect_ip(),
            auto_confirm=_as_bool(os.getenv("AUTO_CONFIRM"), False),
            vault_addr=os.getenv("VAULT_ADDR", constants.DEFAULT_VAULT_ADDR),
            retention_days=_as_int(dict(os.environ), "BACKUP_RETENTION_DAYS", constants.BACKUP_RETENTION_DAYS),
        )

    @property
    def backup_root(self) -> Path:
        return self.backup_mount / "control-vm" / "backups"

    @property
    def vault_key_dir(self) -> Path:
        return self.backup_mount / "control-vm" / "vault"

    @property
    def credentials_dir(self) -> Path:
        return self.backup_mount / "control-vm" / "credentials"
