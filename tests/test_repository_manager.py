"""Tests for repository_manager module."""

import pytest

from proxmox_dr import constants
from proxmox_dr.repository_manager import RepositoryManager

ENTERPRISE = constants.PROXMOX_ENTERPRISE_REPO_FILE
NO_SUB = constants.PROXMOX_NO_SUB_REPO_FILE


@pytest.fixture
def repositories(fake_shell):
    return RepositoryManager(fake_shell)


class TestRepositoryManager:
    def test_disables_active_enterprise_repo(self, repositories, fake_shell):
        fake_shell.files[ENTERPRISE] = "deb https://enterprise.proxmox.com/debian/pve bookworm pve-enterprise\n"

        assert repositories.disable_enterprise_repository() is True
        assert fake_shell.ran(f"sed -i 's/^deb/#deb/' {ENTERPRISE}")

    def test_commented_enterprise_repo_untouched(self, repositories, fake_shell):
        fake_shell.files[ENTERPRISE] = "#deb https://enterprise.proxmox.com/debian/pve bookworm pve-enterprise\n"

        assert repositories.disable_enterprise_repository() is False
        assert not fake_shell.ran("sed")

    def test_missing_enterprise_repo(self, repositories):
        assert repositories.disable_enterprise_repository() is False

    def test_enables_no_subscription_repo(self, repositories, fake_shell):
        assert repositories.enable_no_subscription_repository() is True
        assert fake_shell.files[NO_SUB] == constants.PROXMOX_NO_SUB_REPO + "\n"

        assert repositories.enable_no_subscription_repository() is False

    def test_configure_updates_package_lists(self, repositories, fake_shell):
        repositories.configure()

        assert fake_shell.commands[-1] == "apt-get update -qq"

    def test_upgrade(self, repositories, fake_shell):
        repositories.upgrade_packages()

        assert fake_shell.commands == ["DEBIAN_FRONTEND=noninteractive apt-get dist-upgrade -y"]
