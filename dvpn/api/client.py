"""网关 API 客户端。Gateway API client: organisations, nodes, provisioning."""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from dvpn.api.models import Node
from dvpn.config.defaults import (
    DEFAULT_HTTP_TIMEOUT,
    GATEWAY_CLIENT_URL,
    GATEWAY_NODES_URL,
    GATEWAY_ORGANISATION_URL,
    GATEWAY_SUBSCRIPTION_URL,
    GATEWAY_TOKEN_URL,
    PUBLIC_IP_URL,
)
from dvpn.errors import GatewayError
from dvpn.logging_utils import get_logger
from dvpn.redact import redact_payload

LOGGER = get_logger(__name__)


def _bearer(token: str) -> Dict[str, str]:
    if not token:
        raise GatewayError("Authentication token is empty")
    return {"Authorization": f"Bearer {token}"}


def _error_text(exc: requests.RequestException) -> str:
    return getattr(exc.response, "text", None) or str(exc)


class GatewayClient:
    """Thin wrapper over the gateway REST endpoints.

    Every method raises :class:`GatewayError` on transport or protocol
    failure. Idempotent GET calls are retried on 5xx responses by the
    mounted adapter; POST calls are sent once.
    """

    def __init__(self, session: Optional[requests.Session] = None, timeout: int = DEFAULT_HTTP_TIMEOUT):
        self.timeout = timeout
        if session is None:
            session = requests.Session()
            retry_strategy = Retry(
                total=2,
                backoff_factor=0.5,
                status_forcelist=[500, 502, 503, 504],
                allowed_methods=["GET"],
            )
            adapter = HTTPAdapter(max_retries=retry_strategy)
            session.mount("http://", adapter)
            session.mount("https://", adapter)
        self.session = session

    def _json(self, response: requests.Response, what: str) -> Any:
        try:
            return response.json()
        except ValueError as exc:
            raise GatewayError(f"{what}: response is not JSON ({response.status_code})") from exc

    def create_organization(self) -> Dict[str, Any]:
        """创建组织。Create an organisation; the result carries its ``api_key``."""

        try:
            response = self.session.post(
                GATEWAY_ORGANISATION_URL,
                headers={"Content-Type": "application/json"},
                timeout=self.timeout,
            )
            response.raise_for_status()
        except requests.RequestException as exc:
            raise GatewayError(f"Create organisation failed: {_error_text(exc)}") from exc

        data = self._json(response, "Create organisation")
        LOGGER.info("Organisation created", extra={"response": redact_payload(data)})
        return data

    def authenticate(self, api_key: str) -> str:
        """用 API key 换取令牌。Exchange an organisation API key for a token."""

        if not api_key:
            raise GatewayError("API key is required")
        try:
            response = self.session.get(
                GATEWAY_TOKEN_URL,
                headers={"X-API-Key": api_key},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise GatewayError(f"Authentication failed: {_error_text(exc)}") from exc

        data = self._json(response, "Authentication")
        if not isinstance(data, dict) or data.get("status") != 200:
            message = data.get("message") if isinstance(data, dict) else None
            raise GatewayError(f"Authentication failed: {message or 'Unknown error'}")
        token = (data.get("payload") or {}).get("token")
        if not token:
            raise GatewayError("Authentication response carries no token")
        LOGGER.info("Authenticated with gateway")
        return token

    def check_subscription(self, token: str) -> Dict[str, Any]:
        """Return subscription data, or ``{"status": "notFound"}``."""

        try:
            response = self.session.get(GATEWAY_SUBSCRIPTION_URL, headers=_bearer(token), timeout=self.timeout)
        except requests.RequestException as exc:
            raise GatewayError(f"Subscription check failed: {_error_text(exc)}") from exc

        data = self._json(response, "Subscription check")
        LOGGER.debug("Subscription response", extra={"response": redact_payload(data)})
        if isinstance(data, dict) and data.get("subscription") and data.get("status"):
            return data
        return {"status": "notFound"}

    def create_trial_subscription(self, token: str) -> Dict[str, Any]:
        try:
            response = self.session.post(
                f"{GATEWAY_SUBSCRIPTION_URL}/trial",
                headers=_bearer(token),
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise GatewayError(f"Trial subscription failed: {_error_text(exc)}") from exc

        data = self._json(response, "Trial subscription")
        LOGGER.info("Trial subscription response", extra={"response": redact_payload(data)})
        return data

    def list_nodes(self, token: str) -> List[Node]:
        """获取全部节点。Fetch every node known to the directory."""

        try:
            response = self.session.get(GATEWAY_NODES_URL, headers=_bearer(token), timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as exc:
            raise GatewayError(f"Get nodes failed: {_error_text(exc)}") from exc

        data = self._json(response, "Get nodes")
        payload = data.get("payload") if isinstance(data, dict) else None
        if not isinstance(payload, list):
            raise GatewayError(f"Unexpected nodes response: {json.dumps(redact_payload(data), ensure_ascii=False)}")
        nodes = [Node.from_dict(item) for item in payload if isinstance(item, dict)]
        LOGGER.info("Found %d nodes", len(nodes))
        return nodes

    def list_active_nodes(self, token: str) -> List[Node]:
        nodes = [node for node in self.list_nodes(token) if node.is_active]
        LOGGER.info("%d nodes are active", len(nodes))
        return nodes

    def provision_client(
        self,
        token: str,
        node_id: str,
        public_key: str,
        preshared_key: str,
        client_name: str = "client",
    ) -> Dict[str, Any]:
        """在节点上注册客户端公钥。Register the client public key with a node.

        Returns the decoded response body. An empty or non-JSON body raises
        :class:`GatewayError`.
        """

        body = {"name": client_name, "publicKey": public_key, "presharedKey": preshared_key}
        LOGGER.info("Creating client for node", extra={"node_id": node_id})
        try:
            response = self.session.post(
                f"{GATEWAY_CLIENT_URL}/{node_id}",
                headers={**_bearer(token), "Content-Type": "application/json"},
                json=body,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise GatewayError(f"Client creation failed: {_error_text(exc)}") from exc

        raw = response.text or ""
        if not raw.strip():
            raise GatewayError(f"Empty response received from server ({response.status_code})")
        try:
            data = json.loads(raw)
        except ValueError as exc:
            raise GatewayError(f"Client creation response is not JSON ({response.status_code})") from exc
        if not response.ok:
            message = data.get("message") if isinstance(data, dict) else None
            raise GatewayError(f"Client creation failed ({response.status_code}): {message or 'Unknown error'}")

        LOGGER.info("Client creation response", extra={"response": redact_payload(data)})
        return data

    def fetch_public_ip(self) -> Optional[str]:
        """Best-effort lookup of the current public IP address."""

        try:
            response = self.session.get(PUBLIC_IP_URL, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as exc:
            LOGGER.debug("Public IP lookup failed: %s", exc)
            return None
        return response.text.strip() or None
