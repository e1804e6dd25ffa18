"""配置加载测试。Settings loading tests."""

from __future__ import annotations

import pytest

from dvpn.config.defaults import DEFAULT_CONFIG_PATH, DEFAULT_INTERFACE_NAME
from dvpn.config.settings import DvpnSettings, load_settings


class TestLoadSettings:
    """环境变量覆盖测试。Environment override tests."""

    def test_defaults(self):
        settings = load_settings({})
        assert settings == DvpnSettings()
        assert settings.interface_name == DEFAULT_INTERFACE_NAME
        assert settings.config_path == DEFAULT_CONFIG_PATH
        assert settings.keepalive_seconds == 25
        assert settings.mtu == 1420
        assert settings.allowed_ips == ["0.0.0.0/0", "::/0"]

    def test_interface_name_moves_config_path(self):
        settings = load_settings({"DVPN_INTERFACE": "wg-lab"})
        assert settings.interface_name == "wg-lab"
        assert settings.config_path == "/tmp/wg-lab.conf"

    def test_explicit_config_path_wins(self):
        settings = load_settings({"DVPN_INTERFACE": "wg-lab", "DVPN_CONFIG_PATH": "/etc/wireguard/wg-lab.conf"})
        assert settings.config_path == "/etc/wireguard/wg-lab.conf"

    def test_typed_values(self):
        settings = load_settings(
            {
                "DVPN_DNS": "9.9.9.9, 1.0.0.1",
                "DVPN_MTU": "1380",
                "DVPN_KEEPALIVE": "15",
                "DVPN_COMMAND_TIMEOUT": "12.5",
                "DVPN_USE_SUDO": "no",
            }
        )
        assert settings.dns_servers == ["9.9.9.9", "1.0.0.1"]
        assert settings.mtu == 1380
        assert settings.keepalive_seconds == 15
        assert settings.command_timeout == 12.5
        assert settings.use_sudo is False

    def test_blank_values_are_ignored(self):
        assert load_settings({"DVPN_MTU": "  "}).mtu == 1420

    @pytest.mark.parametrize(
        "env",
        [
            {"DVPN_MTU": "abc"},
            {"DVPN_MTU": "100"},
            {"DVPN_ENDPOINT_PORT": "70000"},
            {"DVPN_LOCK_TIMEOUT": "-1"},
            {"DVPN_USE_SUDO": "maybe"},
        ],
    )
    def test_invalid_values(self, env):
        name = next(iter(env))
        with pytest.raises(ValueError, match=name):
            load_settings(env)
