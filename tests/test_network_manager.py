"""Tests for network_manager module."""

from proxmox_dr.network_manager import NetworkManager


class TestNetworkManager:
    def test_all_bridges_present(self, mock_proxmox, dr_config):
        assert NetworkManager(mock_proxmox, dr_config).check_bridges() == []
        mock_proxmox.missing_bridges.assert_called_once_with(["vmbr0", "vmbr1"])

    def test_missing_public_bridge(self, mock_proxmox, dr_config, caplog):
        mock_proxmox.missing_bridges.return_value = ["vmbr1"]

        assert NetworkManager(mock_proxmox, dr_config).check_bridges() == ["vmbr1"]
        assert "VLAN tag 10" in caplog.text

    def test_query_failure_is_not_fatal(self, mock_proxmox, dr_config, caplog):
        mock_proxmox.missing_bridges.side_effect = ConnectionError("pvesh failed")

        assert NetworkManager(mock_proxmox, dr_config).check_bridges() == []
        assert "Could not query network bridges" in caplog.text
