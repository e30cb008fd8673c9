"""Tests for ssh_key_manager module."""

import stat
from pathlib import Path
from unittest import mock

import pytest

from proxmox_dr.ssh_key_manager import SSHKeyError, SSHKeyManager


def write_key(path: Path, mode: int = 0o600) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("PRIVATE KEY\n")
    path.chmod(mode)
    Path(f"{path}.pub").write_text(f"ssh-ed25519 AAAA {path.name}\n")


@pytest.fixture
def ssh_dir(tmp_path):
    return tmp_path / ".ssh"


@pytest.fixture
def confirm():
    return mock.MagicMock(return_value=True)


@pytest.fixture
def keys(dr_config, ssh_dir, confirm):
    return SSHKeyManager(dr_config, ssh_dir=ssh_dir, confirm=confirm)


def fake_keygen(args, **kwargs):
    """ssh-keygen stand-in that writes the key pair named by ``-f``."""
    if args[0] == "ssh-keygen":
        write_key(Path(args[args.index("-f") + 1]), mode=0o644)
    return mock.MagicMock(returncode=0)


class TestKeys:
    def test_existing_admin_key(self, keys, ssh_dir, confirm):
        write_key(ssh_dir / "homelab_admin")

        keys.ensure_admin_key()

        confirm.assert_not_called()

    def test_fixes_admin_key_permissions(self, keys, ssh_dir):
        write_key(ssh_dir / "homelab_admin", mode=0o644)

        keys.ensure_admin_key()

        assert stat.S_IMODE(keys.admin_key.stat().st_mode) == 0o600

    def test_refusing_generation_raises(self, keys, confirm):
        confirm.return_value = False

        with pytest.raises(SSHKeyError, match="ssh-keygen -t ed25519"):
            keys.ensure_admin_key()

    @mock.patch("proxmox_dr.ssh_key_manager.subprocess.run", side_effect=fake_keygen)
    def test_generates_admin_key_with_passphrase_prompt(self, mock_run, keys):
        keys.ensure_admin_key()

        args = mock_run.call_args[0][0]
        assert args[:3] == ["ssh-keygen", "-t", "ed25519"]
        assert "-N" not in args
        assert stat.S_IMODE(keys.admin_key.stat().st_mode) == 0o600
        assert stat.S_IMODE(keys.admin_public_key.stat().st_mode) == 0o644

    @mock.patch("proxmox_dr.ssh_key_manager.subprocess.run", side_effect=fake_keygen)
    def test_automation_key_has_no_passphrase(self, mock_run, keys):
        assert keys.ensure_automation_key() is True

        args = mock_run.call_args[0][0]
        assert args[args.index("-N") + 1] == ""
        assert args[args.index("-f") + 1] == str(keys.automation_key)

    @mock.patch("proxmox_dr.ssh_key_manager.subprocess.run")
    def test_automation_key_failure_is_not_fatal(self, mock_run, keys):
        mock_run.return_value = mock.MagicMock(returncode=1)

        assert keys.ensure_automation_key() is False


class TestSSHConfig:
    def test_block_written_once(self, keys, ssh_dir):
        assert keys.update_ssh_config() is True
        assert keys.update_ssh_config() is False

        content = (ssh_dir / "config").read_text()
        assert content.count("Host proxmox pve") == 1
        assert "HostName pve.example.lan" in content
        assert "HostName 192.168.1.50" in content
        assert stat.S_IMODE((ssh_dir / "config").stat().st_mode) == 0o600

    def test_existing_config_preserved(self, keys, ssh_dir):
        ssh_dir.mkdir()
        (ssh_dir / "config").write_text("Host github.com\n    User git\n")

        keys.update_ssh_config()

        assert (ssh_dir / "config").read_text().startswith("Host github.com\n")


class TestSetup:
    @pytest.fixture(autouse=True)
    def existing_keys(self, ssh_dir):
        write_key(ssh_dir / "homelab_admin")
        write_key(ssh_dir / "homelab_control")

    @mock.patch("proxmox_dr.ssh_key_manager.subprocess.run")
    def test_key_already_deployed(self, mock_run, keys, confirm):
        mock_run.return_value = mock.MagicMock(returncode=0)

        assert keys.setup() == "ssh-ed25519 AAAA homelab_admin"

        assert mock_run.call_count == 1
        assert "BatchMode=yes" in mock_run.call_args[0][0]
        confirm.assert_not_called()

    @mock.patch("proxmox_dr.ssh_key_manager.subprocess.run")
    def test_deploys_key_with_ssh_copy_id(self, mock_run, keys):
        mock_run.side_effect = [
            mock.MagicMock(returncode=255),
            mock.MagicMock(returncode=0),
            mock.MagicMock(returncode=0),
        ]

        keys.setup()

        assert mock_run.call_args_list[1][0][0][0] == "ssh-copy-id"

    @mock.patch("proxmox_dr.ssh_key_manager.subprocess.run")
    def test_falls_back_to_ssh_append(self, mock_run, keys):
        mock_run.side_effect = [
            mock.MagicMock(returncode=255),
            mock.MagicMock(returncode=1),
            mock.MagicMock(returncode=0),
            mock.MagicMock(returncode=0),
        ]

        keys.setup()

        fallback = mock_run.call_args_list[2]
        assert fallback[0][0][:3] == ["ssh", "-p", "22"]
        assert "cat >> ~/.ssh/authorized_keys" in fallback[0][0][-1]
        assert "stdin" in fallback[1]

    @mock.patch("proxmox_dr.ssh_key_manager.subprocess.run")
    def test_declined_deployment_continues(self, mock_run, keys, confirm):
        mock_run.return_value = mock.MagicMock(returncode=255)
        confirm.return_value = False

        assert keys.setup() == "ssh-ed25519 AAAA homelab_admin"
        assert mock_run.call_count == 1


class TestPublicKeyFromConfig:
    def test_reads_configured_key(self, keys, dr_config, tmp_path):
        key = tmp_path / "admin.pub"
        key.write_text("ssh-ed25519 AAAA admin\n")
        dr_config.values["SSH_PUBLIC_KEY_PATH"] = str(key)

        assert keys.public_key_from_config() == "ssh-ed25519 AAAA admin"

    def test_unset(self, keys):
        assert keys.public_key_from_config() is None
