"""Tests for restore_manager module."""

from unittest import mock

import pytest
from docker.errors import ContainerError, NotFound

from proxmox_dr.restore_manager import RestoreManager


@pytest.fixture
def manager(settings, catalog, fake_shell, mock_docker_client):
    return RestoreManager(settings, catalog, fake_shell, mock_docker_client)


@pytest.fixture
def backup(settings):
    """A backup holding two volume archives, configs, state and inventory."""
    root = settings.backup_root / "20240110_030000"
    volumes = root / "docker-volumes"
    volumes.mkdir(parents=True)
    (volumes / "vault-data.tar.gz").write_bytes(b"\x1f\x8b")
    (volumes / "portainer-data.tar.gz").write_bytes(b"\x1f\x8b")
    compose = root / "configs" / "docker-compose"
    compose.mkdir(parents=True)
    (compose / "docker-compose.yml").write_text("services: {}\n")
    (root / "terraform-state").mkdir()
    (root / "terraform-state" / "terraform.tfstate").write_text('{"version": 4}')
    (root / "ansible" / "inventory").mkdir(parents=True)
    (root / "ansible" / "inventory" / "hosts.yml").write_text("all: {}\n")
    (root / "MANIFEST.txt").write_text("Control VM Backup Manifest\n")
    return root


class TestRestoreManager:
    def test_no_mount_is_fresh_deployment(self, manager, fake_shell, settings):
        fake_shell.respond("mountpoint -q", returncode=1)

        assert manager.run() is None
        assert settings.backup_root.is_dir()

    def test_no_backups(self, manager):
        assert manager.run() is None

    def test_picks_newest_backup(self, manager, settings, backup):
        (settings.backup_root / "20240101_030000").mkdir()

        assert manager.latest_backup() == backup

    def test_full_restore(self, manager, settings, backup, fake_shell, mock_docker_client):
        result = manager.run()

        assert result.backup == backup
        assert result.restored_volumes == ["portainer-data", "vault-data"]
        assert result.failed_volumes == []
        assert (settings.compose_dir / "docker-compose.yml").is_file()
        assert (settings.project_root / "terraform" / "terraform.tfstate").read_text() == '{"version": 4}'
        assert (settings.project_root / "ansible" / "inventory" / "hosts.yml").is_file()

        stop = fake_shell.commands.index(f"cd {settings.compose_dir} && docker compose stop")
        start = fake_shell.commands.index(f"cd {settings.compose_dir} && docker compose start")
        assert stop < start

        args, kwargs = mock_docker_client.containers.run.call_args
        assert args[1] == ["sh", "-c", "cd /restore && tar xzf /backup/vault-data.tar.gz"]
        assert kwargs["volumes"]["docker-compose_vault-data"] == {"bind": "/restore", "mode": "rw"}
        assert kwargs["volumes"][str(backup / "docker-volumes")] == {"bind": "/backup", "mode": "ro"}

    def test_missing_volume_is_created(self, manager, backup, mock_docker_client):
        mock_docker_client.volumes.get.side_effect = NotFound("missing")

        manager.run()

        mock_docker_client.volumes.create.assert_any_call(name="docker-compose_vault-data")

    def test_failed_volume_reported(self, manager, backup, mock_docker_client, fake_shell):
        mock_docker_client.containers.run.side_effect = [
            mock.MagicMock(),
            ContainerError("alpine", 2, "tar xzf", "alpine", b"corrupt archive"),
        ]

        result = manager.run()

        assert result.restored_volumes == ["portainer-data"]
        assert result.failed_volumes == ["vault-data"]
        assert fake_shell.ran("docker compose start")

    def test_existing_env_not_overwritten(self, manager, settings, backup):
        settings.compose_dir.mkdir(parents=True)
        (settings.compose_dir / ".env").write_text("REAL=secret\n")
        (backup / "configs" / "docker-compose" / ".env").write_text("STALE=1\n")

        manager.run()

        assert (settings.compose_dir / ".env").read_text() == "REAL=secret\n"
