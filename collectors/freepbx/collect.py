"""FreePBX Directory Collector

Builds the extension directory (FreePBX API listing plus AMI live status)
and saves it to the local cache for the dashboard to serve.
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Any, Dict, Optional

from pbxdir.cache import save_snapshot
from pbxdir.config import AppConfig, load_app_config
from pbxdir.directory import build_directory, summarize


def collect_directory(config: AppConfig, cache_dir: Path, **kwargs) -> Dict[str, Any]:
    """
    Build the directory and cache it when the listing succeeded.

    Args:
        config: Loaded application config
        cache_dir: Where the snapshot is written
        **kwargs: Passed through to build_directory (api_client, poller)

    Returns:
        The directory payload
    """
    print("Collecting FreePBX directory...")
    if config.ami.enabled:
        print(f"  AMI: {config.ami.host}:{config.ami.port}")
    else:
        print("  AMI: not configured, statuses will be unknown")

    payload = build_directory(config, **kwargs)
    if not payload["success"]:
        print(f"    ✗ Error: {payload['error']}")
        return payload

    counts = summarize(payload["extensions"])
    print(f"    ✓ Found {counts['total']} extensions")
    print(f"      {counts['available']} available, {counts['busy']} busy, {counts['unavailable']} unavailable/unknown")

    output_file = save_snapshot(cache_dir, payload)
    print(f"✓ Data saved to {output_file}")
    return payload


def main(config_path: Optional[Path] = None, cache_dir: Optional[Path] = None) -> int:
    """Main collection function."""
    print("=" * 60)
    print("FreePBX Directory Collector")
    print("=" * 60)
    print()

    config = load_app_config(config_path=config_path)
    target = cache_dir if cache_dir is not None else Path(config.cache.directory)

    payload = collect_directory(config, target)
    return 0 if payload["success"] else 1


if __name__ == "__main__":
    sys.exit(main())
