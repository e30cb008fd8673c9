"""Tests for service_deployer module."""

import logging

import pytest

from proxmox_dr.service_deployer import ServiceDeployer
from proxmox_dr.shell import CommandResult, GuestShell
from proxmox_dr.tool_installer import ToolInstaller

STAGED_ENV = "/tmp/proxmox-dr-1700000000/control-vm-config/.env"


@pytest.fixture
def deployer(fake_shell, dr_config, catalog):
    return ServiceDeployer(GuestShell(fake_shell, "admin@192.168.1.50"), dr_config, catalog)


class TestServiceDeployer:
    def test_disabled_stack(self, deployer, fake_shell, dr_config):
        dr_config.values["DEPLOY_CONTROL_VM_STACK"] = "false"

        assert deployer.deploy(STAGED_ENV) is False
        assert fake_shell.commands == []

    def test_missing_cli_skips(self, deployer, fake_shell, caplog):
        caplog.set_level(logging.INFO)
        fake_shell.respond("command -v proxmox-dr", returncode=1)

        assert deployer.deploy(STAGED_ENV) is False
        assert not fake_shell.ran("AUTO_CONFIRM=true")
        assert "sudo proxmox-dr control-vm setup" in caplog.text

    def test_runs_setup_with_credentials(self, deployer, fake_shell, caplog):
        caplog.set_level(logging.INFO)
        assert deployer.deploy(STAGED_ENV) is True

        setup = [c for c in fake_shell.commands if "proxmox-dr control-vm setup" in c]
        assert len(setup) == 1
        assert "SMB_PASSWORD=s3cret" in setup[0]
        assert "UNAS_PRIVATE_IP=192.168.1.20" in setup[0]
        assert "AUTO_CONFIRM=true" in setup[0]
        assert "http://192.168.1.50:5000/v2/" in caplog.text

    def test_cloud_init_wait_failure_is_not_fatal(self, deployer, fake_shell):
        fake_shell.respond("cloud-init status --wait", returncode=2)

        assert deployer.deploy(STAGED_ENV) is True

    def test_env_pushed_when_vm_has_none(self, deployer, fake_shell):
        fake_shell.respond("test -f /opt/homelab-iac/control-vm/docker-compose/.env", returncode=1)

        deployer.deploy(STAGED_ENV)

        assert fake_shell.ran("scp -i /root/.ssh/homelab_control")
        assert fake_shell.ran(f"{STAGED_ENV} admin@192.168.1.50:/tmp/control-vm.env")
        assert fake_shell.ran("sudo mv /tmp/control-vm.env /opt/homelab-iac/control-vm/docker-compose/.env")

    def test_existing_env_is_kept(self, deployer, fake_shell):
        deployer.deploy(STAGED_ENV)

        assert not fake_shell.ran("scp")

    def test_setup_failure_is_reported_not_raised(self, deployer, fake_shell, caplog):
        fake_shell.respond("proxmox-dr control-vm setup", returncode=1)

        assert deployer.deploy(STAGED_ENV) is False
        assert "Control VM setup failed with exit code 1" in caplog.text


class TestFreshControlVM:
    def test_tooling_setup_makes_stack_deployable(self, shell_factory, dr_config, catalog):
        class FreshVM(shell_factory):
            """proxmox-dr is only on PATH once pip has installed it."""

            def _execute(self, command, timeout, stream):
                result = super()._execute(command, timeout, stream)
                installed = self.ran("pip3 install --break-system-packages /opt/homelab-iac")
                if "command -v proxmox-dr" in command and not installed:
                    return CommandResult(command, 1)
                return result

        host = FreshVM()
        guest = GuestShell(host, "admin@192.168.1.50")
        deployer = ServiceDeployer(guest, dr_config, catalog)

        assert deployer.deploy(STAGED_ENV) is False

        ToolInstaller(guest, dr_config).setup()

        assert host.ran("sudo pip3 install --break-system-packages /opt/homelab-iac")
        assert deployer.deploy(STAGED_ENV) is True
        assert host.ran("proxmox-dr control-vm setup")
