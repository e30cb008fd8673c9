"""Tests for vm_manager module."""

import pytest

from proxmox_dr.shell import CommandError
from proxmox_dr.vm_manager import VMManager

AUTOMATION_KEY = "/root/.ssh/homelab_control"
AUTOMATION_PUB = "ssh-ed25519 AAAAC3NzaC1lZDI1NTE5AAAAIAuto proxmox-automation"


@pytest.fixture
def manager(fake_shell, mock_proxmox, dr_config, admin_key):
    fake_shell.files[AUTOMATION_KEY] = "PRIVATE"
    fake_shell.files[f"{AUTOMATION_KEY}.pub"] = AUTOMATION_PUB + "\n"
    return VMManager(fake_shell, mock_proxmox, dr_config, admin_key)


class TestAutomationKey:
    def test_existing_key_is_kept(self, manager, fake_shell):
        assert manager.ensure_automation_key() is False
        assert not fake_shell.ran("ssh-keygen")

    def test_generates_missing_key(self, manager, fake_shell):
        del fake_shell.files[AUTOMATION_KEY]

        assert manager.ensure_automation_key() is True
        assert fake_shell.ran(f"ssh-keygen -t ed25519 -C proxmox-automation -f {AUTOMATION_KEY} -N ''")

    def test_generation_failure_raises(self, manager, fake_shell):
        fake_shell.files.clear()

        with pytest.raises(RuntimeError, match="Failed to generate automation key"):
            manager.ensure_automation_key()


class TestCloudInit:
    def test_keys_include_automation_key(self, manager, admin_key):
        assert manager.cloud_init_keys() == f"{admin_key}\n{AUTOMATION_PUB}\n"

    def test_missing_automation_key_only_warns(self, manager, fake_shell, admin_key, caplog):
        del fake_shell.files[f"{AUTOMATION_KEY}.pub"]

        assert manager.cloud_init_keys() == f"{admin_key}\n"
        assert "only admin key" in caplog.text

    def test_missing_admin_key_raises(self, fake_shell, mock_proxmox, dr_config):
        manager = VMManager(fake_shell, mock_proxmox, dr_config, "  ")

        with pytest.raises(RuntimeError, match="No admin SSH public key"):
            manager.cloud_init_keys()

    def test_configure_vm(self, manager, fake_shell, admin_key):
        manager.configure_vm(101)

        assert fake_shell.files["/tmp/cloudinit-sshkeys-101.tmp"].startswith(admin_key)
        assert fake_shell.ran(
            "qm set 101 --cores 4 --memory 8192 --ipconfig0 ip=192.168.1.50/24,gw=192.168.1.1 "
            "--nameserver '1.1.1.1 8.8.8.8' --searchdomain local --ciuser ubuntu --sshkeys /tmp/cloudinit-sshkeys-101.tmp"
        )
        assert fake_shell.commands[-1] == "rm -f /tmp/cloudinit-sshkeys-101.tmp"

    def test_key_file_removed_when_qm_set_fails(self, manager, fake_shell):
        fake_shell.respond("qm set 101 --cores", returncode=255, stderr="VM is locked")

        with pytest.raises(CommandError):
            manager.configure_vm(101)

        assert fake_shell.commands[-1] == "rm -f /tmp/cloudinit-sshkeys-101.tmp"

    def test_vlan_tag(self, manager, fake_shell, dr_config):
        dr_config.values["CONTROL_VM_VLAN"] = "30"

        manager.configure_vm(101)

        assert fake_shell.ran("qm set 101 --net0 virtio,bridge=vmbr0,tag=30")


class TestDeploy:
    def test_creates_new_vm(self, manager, fake_shell, mock_proxmox, no_sleep):
        mock_proxmox.vm_status.return_value = None

        guest = manager.deploy()

        assert fake_shell.ran("qm clone 9000 101 --name control-vm --full")
        assert fake_shell.ran("qm resize 101 scsi0 100G")
        assert fake_shell.ran("qm start 101")
        assert fake_shell.ran("ssh-keygen -R 192.168.1.50")
        assert fake_shell.ran("resolvectl dns eth0 1.1.1.1 8.8.8.8")
        no_sleep.assert_any_call(30)
        assert guest.target == "admin@192.168.1.50"

    def test_running_vm_is_kept(self, manager, fake_shell, mock_proxmox, no_sleep):
        mock_proxmox.vm_status.return_value = "running"

        manager.deploy()

        assert not fake_shell.ran("qm clone")
        assert not fake_shell.ran("qm start")
        assert not fake_shell.ran("qm destroy")
        no_sleep.assert_not_called()

    def test_stopped_vm_is_started(self, manager, fake_shell, mock_proxmox, no_sleep):
        mock_proxmox.vm_status.return_value = "stopped"

        manager.deploy()

        assert fake_shell.ran("qm start 101")
        assert not fake_shell.ran("qm clone")

    def test_recreate(self, manager, fake_shell, mock_proxmox, dr_config, no_sleep):
        dr_config.values["CONTROL_VM_RECREATE"] = "true"
        mock_proxmox.vm_status.return_value = "running"

        manager.deploy()

        commands = fake_shell.commands
        assert commands.index("qm stop 101") < commands.index("qm destroy 101")
        mock_proxmox.wait_for_status.assert_called_once_with(101, "stopped", timeout=60)
        assert fake_shell.ran("qm clone 9000 101")

    def test_unreachable_vm_raises(self, manager, fake_shell, mock_proxmox, no_sleep):
        mock_proxmox.vm_status.return_value = "running"
        fake_shell.respond("ssh -i", returncode=255)

        with pytest.raises(RuntimeError, match="did not become ready"):
            manager.deploy()

    def test_admin_user_created_through_ubuntu(self, manager, fake_shell, mock_proxmox, no_sleep):
        mock_proxmox.vm_status.return_value = "running"

        manager.deploy()

        useradd = [c for c in fake_shell.commands if "useradd" in c]
        assert len(useradd) == 1
        assert "ubuntu@192.168.1.50" in useradd[0]
        assert "NOPASSWD:ALL" in useradd[0]
        assert any("admin@192.168.1.50 whoami" in c for c in fake_shell.commands)

    def test_ubuntu_user_skips_creation(self, manager, fake_shell, mock_proxmox, dr_config, no_sleep):
        dr_config.values["CONTROL_VM_USER"] = "ubuntu"
        mock_proxmox.vm_status.return_value = "running"

        guest = manager.deploy()

        assert not fake_shell.ran("useradd")
        assert guest.target == "ubuntu@192.168.1.50"

    def test_failed_access_verification(self, manager, fake_shell, mock_proxmox, no_sleep):
        mock_proxmox.vm_status.return_value = "running"
        fake_shell.respond("admin@192.168.1.50 whoami", returncode=255)

        with pytest.raises(RuntimeError, match="SSH access verification failed"):
            manager.deploy()
