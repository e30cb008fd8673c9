"""Tests for shell module."""

import subprocess
from unittest import mock

import pytest

from proxmox_dr.shell import TIMEOUT_RETURNCODE, CommandError, CommandResult, GuestShell, LocalShell, RemoteShell


class TestShellHelpers:
    def test_run_raises_on_failure(self, fake_shell):
        fake_shell.respond("false", returncode=1, stderr="boom")

        with pytest.raises(CommandError, match="boom") as excinfo:
            fake_shell.run("false")

        assert excinfo.value.result.returncode == 1

    def test_run_unchecked_returns_result(self, fake_shell):
        fake_shell.respond("false", returncode=1)

        result = fake_shell.run("false", check=False)

        assert result.ok is False

    def test_command_exists(self, fake_shell):
        fake_shell.respond("command -v qm", returncode=1)

        assert fake_shell.command_exists("qm") is False
        assert fake_shell.command_exists("wget") is True

    def test_write_file_sets_mode(self, fake_shell):
        fake_shell.write_file("/root/.ssh/authorized_keys", "key\n", mode="600")

        assert fake_shell.files["/root/.ssh/authorized_keys"] == "key\n"
        assert fake_shell.commands[-1] == "chmod 600 /root/.ssh/authorized_keys"

    def test_read_missing_file_returns_none(self, fake_shell):
        assert fake_shell.read_file("/etc/missing") is None


class TestLocalShell:
    @mock.patch("proxmox_dr.shell.subprocess.run")
    def test_run_uses_bash(self, mock_run):
        mock_run.return_value = mock.MagicMock(returncode=0, stdout="hi\n", stderr="")

        result = LocalShell().run("echo hi")

        assert result.stdout == "hi\n"
        assert mock_run.call_args[0][0] == ["bash", "-c", "echo hi"]

    @mock.patch("proxmox_dr.shell.subprocess.run")
    def test_timeout_becomes_124(self, mock_run):
        mock_run.side_effect = subprocess.TimeoutExpired(cmd="sleep 10", timeout=1)

        result = LocalShell().run("sleep 10", check=False, timeout=1)

        assert result.returncode == TIMEOUT_RETURNCODE


class TestRemoteShell:
    @pytest.fixture
    def ssh_client(self):
        with mock.patch("proxmox_dr.shell.paramiko.SSHClient") as mock_ssh:
            client = mock.MagicMock()
            mock_ssh.return_value = client
            stdout = mock.MagicMock()
            stderr = mock.MagicMock()
            stdout.read.return_value = b"pve\n"
            stderr.read.return_value = b""
            stdout.channel.recv_exit_status.return_value = 0
            client.exec_command.return_value = (mock.MagicMock(), stdout, stderr)
            yield client

    def test_run_over_ssh(self, ssh_client):
        with RemoteShell("pve.example.lan", key_filename="/home/me/.ssh/homelab_admin") as shell:
            result = shell.run("hostname")

        assert result == CommandResult("hostname", 0, "pve\n", "")
        ssh_client.set_missing_host_key_policy.assert_called_once()
        assert ssh_client.connect.call_args.kwargs["hostname"] == "pve.example.lan"
        assert ssh_client.connect.call_args.kwargs["key_filename"] == "/home/me/.ssh/homelab_admin"
        ssh_client.close.assert_called_once()

    def test_put_file(self, ssh_client, tmp_path):
        local = tmp_path / "proxmox-config.env"
        local.write_text("PROXMOX_HOST=pve\n")
        sftp = ssh_client.open_sftp.return_value

        RemoteShell("pve.example.lan").put_file(local, "/tmp/proxmox-dr-1/proxmox-config.env", mode=0o600)

        sftp.put.assert_called_once_with(str(local), "/tmp/proxmox-dr-1/proxmox-config.env")
        sftp.chmod.assert_called_once_with("/tmp/proxmox-dr-1/proxmox-config.env", 0o600)
        sftp.close.assert_called_once()


class TestGuestShell:
    def test_wraps_command_in_ssh(self, fake_shell):
        guest = GuestShell(fake_shell, "admin@192.168.1.50")

        guest.run("whoami")

        command = fake_shell.commands[-1]
        assert command.startswith("ssh -i /root/.ssh/homelab_control")
        assert "BatchMode=yes" in command
        assert command.endswith("admin@192.168.1.50 whoami")

    def test_failure_is_reported_for_inner_command(self, fake_shell):
        fake_shell.respond("ssh ", returncode=255)
        guest = GuestShell(fake_shell, "admin@192.168.1.50")

        with pytest.raises(CommandError) as excinfo:
            guest.run("true")

        assert excinfo.value.result.command == "true"

    def test_copy_from_host(self, fake_shell):
        guest = GuestShell(fake_shell, "admin@192.168.1.50")

        guest.copy_from_host("/tmp/proxmox-dr-1/control-vm-config/.env", "/tmp/control-vm.env")

        assert fake_shell.commands[-1].startswith("scp ")
        assert fake_shell.commands[-1].endswith("admin@192.168.1.50:/tmp/control-vm.env")

    def test_wait_until_reachable(self, shell_factory, no_sleep):
        shell = shell_factory()
        guest = GuestShell(shell, "ubuntu@192.168.1.50")

        assert guest.wait_until_reachable(attempts=3, interval=1, initial_delay=0) is True
        assert len(shell.commands) == 1
        no_sleep.assert_not_called()

    def test_wait_until_reachable_gives_up(self, shell_factory, no_sleep):
        shell = shell_factory()
        shell.respond("ssh ", returncode=255)
        guest = GuestShell(shell, "ubuntu@192.168.1.50")

        assert guest.wait_until_reachable(attempts=3, interval=1, initial_delay=5) is False
        assert len(shell.commands) == 3
        assert no_sleep.call_count == 3
