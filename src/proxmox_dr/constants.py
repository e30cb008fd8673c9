"""Default values and fixed paths used across the DR setup."""

# VM IDs
DEFAULT_UBUNTU_TEMPLATE_ID = 9000
DEFAULT_CONTROL_VM_ID = 101

# Ubuntu cloud image
DEFAULT_UBUNTU_CLOUD_IMAGE_URL = (
    "https://cloud-images.ubuntu.com/releases/24.04/release/ubuntu-24.04-server-cloudimg-amd64.img"
)
UBUNTU_CLOUD_IMAGE_FILE = "/tmp/ubuntu-24.04-cloudimg.img"
TEMPLATE_VM_NAME = "ubuntu-2404-template"

# IaC tool versions
DEFAULT_TERRAFORM_VERSION = "1.9.8"
DEFAULT_ANSIBLE_VERSION = "2.17.5"
DEFAULT_PACKER_VERSION = "1.11.2"

# Network
DEFAULT_PRIVATE_NETWORK_BRIDGE = "vmbr0"
DEFAULT_PUBLIC_NETWORK_BRIDGE = "vmbr1"
DEFAULT_DNS_SERVERS = "1.1.1.1 8.8.8.8"
DEFAULT_CONTROL_VM_NETMASK = 24

# Storage
SMB_PRIVATE_CREDENTIALS = "/root/.smbcredentials_private"
SMB_PUBLIC_CREDENTIALS = "/root/.smbcredentials_public"
DEFAULT_CONTROL_VM_STORAGE = "local-lvm"
DEFAULT_NFS_PUBLIC_MEDIA_SHARE_NAME = "media"
DEFAULT_SMB_PRIVATE_SHARE_NAME = "private_servers_data"
DEFAULT_SMB_PUBLIC_SHARE_NAME = "public_data"
SMB_MOUNT_UID = 1234
SMB_MOUNT_GID = 1234

NFS_MOUNT_OPTIONS = (
    "vers=3,hard,intr,timeo=600,retrans=2,_netdev,nofail,x-systemd.automount,"
    "x-systemd.device-timeout=10,x-systemd.mount-timeout=30,auto"
)
SMB_MOUNT_OPTIONS = (
    "credentials={credentials},uid={uid},gid={gid},file_mode=0775,dir_mode=0775,vers=3.0,"
    "_netdev,nofail,x-systemd.automount,x-systemd.device-timeout=10,x-systemd.mount-timeout=30,auto"
)

# Control VM defaults
DEFAULT_CONTROL_VM_NAME = "control-vm"
DEFAULT_CONTROL_VM_USER = "admin"
DEFAULT_CONTROL_VM_CPUS = 4
DEFAULT_CONTROL_VM_MEMORY = 8192
DEFAULT_CONTROL_VM_DISK = 100
CLOUD_INIT_USER = "ubuntu"
CLOUD_INIT_SEARCH_DOMAIN = "local"

# Proxmox repositories
PROXMOX_ENTERPRISE_REPO_FILE = "/etc/apt/sources.list.d/pve-enterprise.list"
PROXMOX_NO_SUB_REPO_FILE = "/etc/apt/sources.list.d/pve-no-subscription.list"
PROXMOX_NO_SUB_REPO = "deb http://download.proxmox.com/debian/pve bookworm pve-no-subscription"

# Paths
PROXMOX_VERSION_FILE = "/etc/pve/.version"
SSH_CONFIG_FILE = "/etc/ssh/sshd_config"
FSTAB_FILE = "/etc/fstab"
ROOT_SSH_DIR = "/root/.ssh"
ROOT_AUTHORIZED_KEYS = "/root/.ssh/authorized_keys"
PROXMOX_AUTOMATION_KEY = "/root/.ssh/homelab_control"
REMOTE_DIR_PREFIX = "/tmp/proxmox-dr"

# Local workstation SSH keys
SSH_KEY_TYPE = "ed25519"
LOCAL_ADMIN_KEY_NAME = "homelab_admin"
LOCAL_AUTOMATION_KEY_NAME = "homelab_control"

# Timeouts & retries
SSH_CONNECT_TIMEOUT = 5
VM_READY_TIMEOUT = 20
VM_READY_INITIAL_WAIT = 30
VM_READY_INTERVAL = 10

# Control VM layout
PROJECT_ROOT = "/opt/homelab-iac"
COMPOSE_DIR = f"{PROJECT_ROOT}/control-vm/docker-compose"
BACKUP_MOUNT = "/mnt/backup"
SMB_CONTROL_VM_CREDENTIALS = "/root/.smb-credentials"
DEFAULT_UNAS_PRIVATE_IP = "10.100.100.100"
DEFAULT_SMB_USERNAME = "proxmox.server"
TERRAFORM_STATE_BACKUP_SCRIPT = "/usr/local/bin/backup-terraform-state.sh"

# Backups
BACKUP_TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"
BACKUP_NAME_PATTERN = r"^\d{8}_\d{6}$"
BACKUP_RETENTION_DAYS = 7
TERRAFORM_BACKUP_CRON = "0 2 * * *"
CONTROL_VM_BACKUP_CRON = "0 3 * * *"

# Vault
DEFAULT_VAULT_ADDR = "http://localhost:8200"
VAULT_SECRET_SHARES = 5
VAULT_SECRET_THRESHOLD = 3
VAULT_WAIT_ATTEMPTS = 30
VAULT_WAIT_INTERVAL = 2
VAULT_UID = 100
VAULT_GID = 1000

# Docker
HELPER_IMAGE = "alpine"
REGISTRY_USER = "admin"

# Service ports
SERVICE_MKDOCS_PORT = 8000
