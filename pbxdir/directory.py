"""Directory assembly

Combines the FreePBX extension list with live AMI statuses into the JSON
envelope served to the directory frontend.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional

import requests

from clients.ami_client import UNKNOWN_LABEL, SessionResult, StatusKind, poll_statuses
from clients.freepbx_client import FreePBXAPIClient, FreePBXAPIError

from .cache import load_snapshot, save_snapshot, utc_now_iso
from .config import AMIConfig, AppConfig

log = logging.getLogger(__name__)

UNKNOWN_STATUS = {"status": StatusKind.UNKNOWN.value, "statusText": UNKNOWN_LABEL}

BUSY_KINDS = {
    StatusKind.IN_CALL.value,
    StatusKind.BUSY.value,
    StatusKind.RINGING.value,
    StatusKind.IN_CALL_AND_RINGING.value,
    StatusKind.ON_HOLD.value,
}

Poller = Callable[..., SessionResult]


def failure(message: str) -> Dict[str, Any]:
    return {"success": False, "error": message, "extensions": []}


def build_api_client(config: AppConfig) -> FreePBXAPIClient:
    pbx = config.freepbx
    return FreePBXAPIClient(
        url=pbx.url,
        client_id=pbx.client_id,
        client_secret=pbx.client_secret,
        scope=pbx.scope,
        verify_ssl=pbx.verify_ssl,
        timeout=pbx.timeout,
    )


def fetch_statuses(ami: AMIConfig, extensions: Iterable[str], poller: Poller = poll_statuses) -> Dict[str, Dict[str, str]]:
    """Poll AMI for the given extensions; every requested one gets an entry."""
    wanted = list(extensions)
    if not ami.enabled:
        log.info("AMI not configured; reporting all statuses as unknown")
        polled: SessionResult = {}
    else:
        polled = poller(ami.connection_params(), wanted, ami.timeouts(), context=ami.context)

    statuses: Dict[str, Dict[str, str]] = {}
    for ext in wanted:
        status = polled.get(ext)
        statuses[ext] = status.to_dict() if status else dict(UNKNOWN_STATUS)
    return statuses


def build_directory(
    config: AppConfig,
    *,
    api_client: Optional[FreePBXAPIClient] = None,
    poller: Poller = poll_statuses,
) -> Dict[str, Any]:
    if api_client is None:
        if not config.freepbx.configured:
            log.error("PBX API credentials not configured")
            return failure("PBX API credentials not configured")
        api_client = build_api_client(config)

    try:
        extensions = api_client.fetch_extensions()
    except (FreePBXAPIError, requests.RequestException) as e:
        log.error("Error fetching extensions: %s", e)
        return failure(str(e))

    statuses = fetch_statuses(config.ami, [e["extension"] for e in extensions if e["extension"]], poller)

    merged: List[Dict[str, Any]] = []
    for ext in extensions:
        row = dict(ext)
        row.update(statuses.get(ext["extension"], UNKNOWN_STATUS))
        merged.append(row)

    return {"success": True, "extensions": merged, "lastUpdated": utc_now_iso()}


def current_directory(config: AppConfig, cache_dir: Path, ttl_seconds: int, refresh: bool = False) -> Dict[str, Any]:
    """Serve a fresh cached snapshot, or rebuild and cache the directory."""
    if not refresh:
        cached = load_snapshot(cache_dir, ttl_seconds=ttl_seconds)
        if cached.is_fresh and cached.data:
            return cached.data

    payload = build_directory(config)
    if payload["success"]:
        save_snapshot(cache_dir, payload)
    return payload


def summarize(extensions: Iterable[Dict[str, Any]]) -> Dict[str, int]:
    counts = {"total": 0, "available": 0, "busy": 0, "unavailable": 0}
    for ext in extensions:
        counts["total"] += 1
        status = ext.get("status", StatusKind.UNKNOWN.value)
        if status == StatusKind.AVAILABLE.value:
            counts["available"] += 1
        elif status in BUSY_KINDS:
            counts["busy"] += 1
        else:
            counts["unavailable"] += 1
    return counts
