"""Project-wide default values for dvpn.

These constants capture the baseline tunnel settings used by the interface
manager and the gateway client. Keeping them centralized makes it easier to
audit and adjust defaults without touching call sites.
"""

DEFAULT_INTERFACE_NAME = "erebrus-dvpn"
# wg-quick derives the interface name from the file stem.
DEFAULT_CONFIG_PATH = f"/tmp/{DEFAULT_INTERFACE_NAME}.conf"
DEFAULT_LOCK_DIR = "/run/lock"

DEFAULT_DNS_LIST = [
    "1.1.1.1",  # Cloudflare
    "8.8.8.8",  # Google
]
DEFAULT_ALLOWED_IPS_LIST = ["0.0.0.0/0", "::/0"]
DEFAULT_KEEPALIVE_SECONDS = 25
DEFAULT_CLIENT_MTU = 1420
DEFAULT_ENDPOINT_PORT = 51820

DEFAULT_POST_UP = "echo 'nameserver 1.1.1.1' | resolvconf -a %i -m 0 || true"
DEFAULT_POST_DOWN = "resolvconf -d %i || true"

# 连通性探测与 DNS 修正
DEFAULT_PROBE_ADDRESS = "8.8.8.8"
DEFAULT_DNS_FIX_NAMESERVER = "1.1.1.1"
DEFAULT_RESOLV_CONF = "/etc/resolv.conf"
DEFAULT_SETTLE_SECONDS = 2.0

DEFAULT_COMMAND_TIMEOUT = 30.0
DEFAULT_LOCK_TIMEOUT = 60.0
DEFAULT_HTTP_TIMEOUT = 30

# 网关 API 地址
GATEWAY_ORGANISATION_URL = "https://gateway.netsepio.com/api/v1.1/organisation"
GATEWAY_TOKEN_URL = "https://gateway.netsepio.com/api/v1.1/organisation/token"
GATEWAY_SUBSCRIPTION_URL = "https://gateway.dev.netsepio.com/api/v1.0/subscription"
GATEWAY_NODES_URL = "https://gateway.erebrus.io/api/v1.0/nodes/all"
GATEWAY_CLIENT_URL = "https://gateway.netsepio.com/api/v1.0/erebrus/client"
PUBLIC_IP_URL = "https://api.ipify.org"
