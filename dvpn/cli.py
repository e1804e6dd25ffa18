"""命令行入口。Command line entry point for the dvpn client."""

from __future__ import annotations

import argparse
import json
import os
from pathlib import Path
from typing import List, Optional

from dvpn.api.client import GatewayClient
from dvpn.config.settings import load_settings
from dvpn.errors import GatewayError
from dvpn.logging_utils import get_logger, setup_logging
from dvpn.orchestrator import ConnectionOrchestrator
from dvpn.redact import redact_payload

LOGGER = get_logger(__name__)

DEFAULT_LOG_DIR = Path.home() / ".dvpn" / "logs"


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="dvpn",
        description="Connect this host to a decentralized VPN node over WireGuard.",
    )
    parser.add_argument("--log-dir", type=Path, default=DEFAULT_LOG_DIR, help="日志目录 (log directory)")
    parser.add_argument(
        "--api-key",
        default=os.environ.get("DVPN_API_KEY"),
        help="组织 API key，默认读取 DVPN_API_KEY",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("create-org", help="创建组织并输出 API key")
    sub.add_parser("nodes", help="列出活跃节点")

    subscription = sub.add_parser("subscription", help="查询订阅状态")
    subscription.add_argument("--trial", action="store_true", help="若无订阅则创建试用订阅")

    connect = sub.add_parser("connect", help="连接到指定节点")
    connect.add_argument("node_id", help="目标节点 ID")
    connect.add_argument("--config", type=Path, default=None, help="隧道配置文件路径")

    disconnect = sub.add_parser("disconnect", help="断开连接并清理接口")
    disconnect.add_argument("--config", type=Path, default=None, help="隧道配置文件路径")

    sub.add_parser("status", help="显示隧道接口是否存在")

    return parser.parse_args(argv)


def _token(client: GatewayClient, api_key: Optional[str]) -> str:
    if not api_key:
        raise GatewayError("API key is required (--api-key or DVPN_API_KEY)")
    return client.authenticate(api_key)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    setup_logging(args.log_dir)
    settings = load_settings()
    client = GatewayClient(timeout=settings.http_timeout)

    try:
        if args.command == "create-org":
            print(json.dumps(client.create_organization(), indent=2, ensure_ascii=False))
            return 0

        if args.command == "disconnect":
            orchestrator = ConnectionOrchestrator(client, settings=settings)
            orchestrator.disconnect(args.config)
            return 0

        if args.command == "status":
            orchestrator = ConnectionOrchestrator(client, settings=settings)
            present = orchestrator.interface.interface_exists()
            print(f"{orchestrator.handle.name}\t{'up' if present else 'down'}")
            return 0 if present else 3

        token = _token(client, args.api_key)

        if args.command == "nodes":
            for node in client.list_active_nodes(token):
                print(f"{node.id}\t{node.name or '-'}\t{node.region or '-'}")
            return 0

        if args.command == "subscription":
            data = client.check_subscription(token)
            if data.get("status") == "notFound" and args.trial:
                data = client.create_trial_subscription(token)
            print(json.dumps(redact_payload(data), indent=2, ensure_ascii=False))
            return 0

        orchestrator = ConnectionOrchestrator(
            client,
            settings=settings,
            public_ip_lookup=client.fetch_public_ip,
        )
        if orchestrator.connect(token, args.node_id, config_path=args.config):
            return 0
        print(f"[错误] 连接失败: {orchestrator.last_error}")
        return 1
    except GatewayError as exc:
        LOGGER.error("Gateway request failed: %s", exc)
        print(f"[错误] {exc}")
        return 1
