"""运行时配置：默认值与环境变量覆盖。Runtime settings with environment overrides.

Settings make it possible to describe variations of the default parameters
without changing call sites. Every field can be overridden by a ``DVPN_*``
environment variable, e.g. ``DVPN_INTERFACE=wg-test``.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import List, Mapping, Optional

from dvpn.config.defaults import (
    DEFAULT_ALLOWED_IPS_LIST,
    DEFAULT_CLIENT_MTU,
    DEFAULT_COMMAND_TIMEOUT,
    DEFAULT_CONFIG_PATH,
    DEFAULT_DNS_FIX_NAMESERVER,
    DEFAULT_DNS_LIST,
    DEFAULT_ENDPOINT_PORT,
    DEFAULT_HTTP_TIMEOUT,
    DEFAULT_INTERFACE_NAME,
    DEFAULT_KEEPALIVE_SECONDS,
    DEFAULT_LOCK_DIR,
    DEFAULT_LOCK_TIMEOUT,
    DEFAULT_POST_DOWN,
    DEFAULT_POST_UP,
    DEFAULT_PROBE_ADDRESS,
    DEFAULT_RESOLV_CONF,
    DEFAULT_SETTLE_SECONDS,
)

ENV_PREFIX = "DVPN_"
_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


@dataclass(frozen=True)
class DvpnSettings:
    """隧道生命周期参数集合。Collection of tunnel lifecycle parameters."""

    interface_name: str = DEFAULT_INTERFACE_NAME
    config_path: str = DEFAULT_CONFIG_PATH
    dns_servers: List[str] = field(default_factory=lambda: list(DEFAULT_DNS_LIST))
    allowed_ips: List[str] = field(default_factory=lambda: list(DEFAULT_ALLOWED_IPS_LIST))
    keepalive_seconds: int = DEFAULT_KEEPALIVE_SECONDS
    mtu: int = DEFAULT_CLIENT_MTU
    endpoint_port: int = DEFAULT_ENDPOINT_PORT
    post_up: str = DEFAULT_POST_UP
    post_down: str = DEFAULT_POST_DOWN
    probe_address: str = DEFAULT_PROBE_ADDRESS
    dns_fix_nameserver: str = DEFAULT_DNS_FIX_NAMESERVER
    resolv_conf: str = DEFAULT_RESOLV_CONF
    settle_seconds: float = DEFAULT_SETTLE_SECONDS
    command_timeout: float = DEFAULT_COMMAND_TIMEOUT
    lock_timeout: float = DEFAULT_LOCK_TIMEOUT
    lock_dir: str = DEFAULT_LOCK_DIR
    http_timeout: int = DEFAULT_HTTP_TIMEOUT
    use_sudo: bool = True


def _parse_int(value: str, *, source: str, minimum: int = 0, maximum: Optional[int] = None) -> int:
    try:
        number = int(value)
    except ValueError as exc:
        raise ValueError(f"环境变量 {source} 的值必须是整数，当前为: {value!r}") from exc

    if number < minimum or (maximum is not None and number > maximum):
        upper = maximum if maximum is not None else "inf"
        raise ValueError(f"环境变量 {source} 的值 {number} 超出有效范围 ({minimum}-{upper})。")
    return number


def _parse_float(value: str, *, source: str) -> float:
    try:
        number = float(value)
    except ValueError as exc:
        raise ValueError(f"环境变量 {source} 的值必须是数字，当前为: {value!r}") from exc
    if number < 0:
        raise ValueError(f"环境变量 {source} 的值不能为负数: {number}")
    return number


def _parse_bool(value: str, *, source: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValueError(f"环境变量 {source} 的值必须是布尔值 (true/false)，当前为: {value!r}")


def _parse_list(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


def load_settings(environ: Optional[Mapping[str, str]] = None) -> DvpnSettings:
    """Build :class:`DvpnSettings` from defaults and ``DVPN_*`` variables.

    Parameters
    ----------
    environ:
        Mapping to read overrides from. Defaults to :data:`os.environ`.

    Raises
    ------
    ValueError
        When a variable is present but cannot be parsed.
    """

    env = os.environ if environ is None else environ
    overrides: dict = {}

    def read(name: str) -> Optional[str]:
        key = ENV_PREFIX + name
        value = env.get(key)
        if value is None or not value.strip():
            return None
        return value.strip()

    interface = read("INTERFACE")
    if interface:
        overrides["interface_name"] = interface
        # Keep the file stem in step with the interface name unless set explicitly.
        overrides["config_path"] = f"/tmp/{interface}.conf"

    for name, attr in (
        ("CONFIG_PATH", "config_path"),
        ("POST_UP", "post_up"),
        ("POST_DOWN", "post_down"),
        ("PROBE_ADDRESS", "probe_address"),
        ("DNS_FIX_NAMESERVER", "dns_fix_nameserver"),
        ("RESOLV_CONF", "resolv_conf"),
        ("LOCK_DIR", "lock_dir"),
    ):
        value = read(name)
        if value:
            overrides[attr] = value

    for name, attr in (("DNS", "dns_servers"), ("ALLOWED_IPS", "allowed_ips")):
        value = read(name)
        if value:
            overrides[attr] = _parse_list(value)

    value = read("KEEPALIVE")
    if value:
        overrides["keepalive_seconds"] = _parse_int(value, source=ENV_PREFIX + "KEEPALIVE", maximum=65535)
    value = read("MTU")
    if value:
        overrides["mtu"] = _parse_int(value, source=ENV_PREFIX + "MTU", minimum=576, maximum=9000)
    value = read("ENDPOINT_PORT")
    if value:
        overrides["endpoint_port"] = _parse_int(value, source=ENV_PREFIX + "ENDPOINT_PORT", minimum=1, maximum=65535)
    value = read("HTTP_TIMEOUT")
    if value:
        overrides["http_timeout"] = _parse_int(value, source=ENV_PREFIX + "HTTP_TIMEOUT", minimum=1)

    for name, attr in (
        ("SETTLE_SECONDS", "settle_seconds"),
        ("COMMAND_TIMEOUT", "command_timeout"),
        ("LOCK_TIMEOUT", "lock_timeout"),
    ):
        value = read(name)
        if value:
            overrides[attr] = _parse_float(value, source=ENV_PREFIX + name)

    value = read("USE_SUDO")
    if value:
        overrides["use_sudo"] = _parse_bool(value, source=ENV_PREFIX + "USE_SUDO")

    return DvpnSettings(**overrides)


DEFAULT_SETTINGS = DvpnSettings()
