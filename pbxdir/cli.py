from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List

from clients.ami_client import poll_statuses

from .config import load_app_config
from .directory import current_directory, fetch_statuses


def _print_directory(payload: Dict[str, Any], as_json: bool = False) -> int:
    if as_json:
        print(json.dumps(payload, indent=2))
        return 0 if payload.get("success") else 1

    if not payload.get("success"):
        print(f"Error: {payload.get('error')}", file=sys.stderr)
        return 1

    extensions: List[Dict[str, Any]] = payload.get("extensions", [])
    print(f"Extensions: {len(extensions)} (updated {payload.get('lastUpdated', '?')})")
    for ext in extensions:
        name = ext.get("name") or "(no name)"
        print(f"  {ext.get('extension', ''):>6}  {name:<30} {ext.get('statusText', 'Unknown')}")
    return 0


def _print_statuses(statuses: Dict[str, Dict[str, str]], as_json: bool = False) -> int:
    if as_json:
        print(json.dumps(statuses, indent=2))
        return 0

    for ext, status in statuses.items():
        print(f"  {ext:>6}  {status['status']:<15} {status['statusText']}")
    return 0


def _add_common_args(p: argparse.ArgumentParser) -> None:
    p.add_argument(
        "--config",
        default=None,
        help="Path to config.yaml (default: $PBXDIR_CONFIG or ./config/config.yaml)",
    )
    p.add_argument(
        "--cache-dir",
        default=None,
        help="Override cache directory (default: from config.cache.directory)",
    )
    p.add_argument(
        "--ttl",
        type=int,
        default=None,
        help="Override cache TTL seconds (default: from config.cache.default_ttl_seconds)",
    )
    p.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")


def main(argv: list[str] | None = None) -> int:
    if argv is None:
        argv = sys.argv[1:]

    parser = argparse.ArgumentParser(prog="pbxdir")
    sub = parser.add_subparsers(dest="cmd")

    p_ext = sub.add_parser("extensions", help="List extensions with live status")
    p_ext.add_argument("--refresh", action="store_true", help="Ignore the cached snapshot")
    p_ext.add_argument("--json", action="store_true", help="Output machine-readable JSON")
    _add_common_args(p_ext)

    p_status = sub.add_parser("status", help="Poll AMI status for specific extensions")
    p_status.add_argument("extensions", nargs="+", help="Extension numbers to query")
    p_status.add_argument("--json", action="store_true", help="Output machine-readable JSON")
    _add_common_args(p_status)

    p_collect = sub.add_parser("collect", help="Build the directory and write the cache snapshot")
    _add_common_args(p_collect)

    p_serve = sub.add_parser("serve", help="Run the directory HTTP API")
    p_serve.add_argument("--host", default=None, help="Bind address (default: $PBXDIR_HOST or 127.0.0.1)")
    p_serve.add_argument("--port", type=int, default=None, help="Port (default: $PBXDIR_PORT or 5000)")
    _add_common_args(p_serve)

    # Default command if none given
    args = parser.parse_args(argv)
    cmd = args.cmd or "extensions"

    logging.basicConfig(
        level=logging.DEBUG if getattr(args, "verbose", False) else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    config_path = Path(args.config) if getattr(args, "config", None) else None
    app_cfg = load_app_config(config_path=config_path)

    cache_arg = getattr(args, "cache_dir", None)
    ttl_arg = getattr(args, "ttl", None)
    cache_dir = Path(cache_arg) if cache_arg else Path(app_cfg.cache.directory)
    ttl = int(ttl_arg) if ttl_arg is not None else int(app_cfg.cache.default_ttl_seconds)

    if cmd == "status":
        if not app_cfg.ami.enabled:
            print("AMI is not configured (ami.host, ami.username, ami.secret)", file=sys.stderr)
            return 1
        statuses = fetch_statuses(app_cfg.ami, args.extensions, poll_statuses)
        return _print_statuses(statuses, as_json=bool(args.json))

    if cmd == "collect":
        from collectors.freepbx.collect import main as collect_main

        return collect_main(config_path=config_path, cache_dir=cache_dir)

    if cmd == "serve":
        from dashboard.app import main as serve_main

        return serve_main(host=args.host, port=args.port)

    payload = current_directory(app_cfg, cache_dir, ttl, refresh=bool(getattr(args, "refresh", False)))
    return _print_directory(payload, as_json=bool(getattr(args, "json", False)))


if __name__ == "__main__":
    raise SystemExit(main())
