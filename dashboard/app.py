from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Optional, Tuple

from flask import Flask, jsonify, request

from clients.ami_client import poll_statuses
from pbxdir.config import AppConfig, load_app_config
from pbxdir.directory import current_directory, fetch_statuses, summarize


def _repo_root() -> Path:
    return Path(__file__).resolve().parent.parent


def _resolve_path(repo_root: Path, value: str) -> Path:
    p = Path(value)
    return p if p.is_absolute() else (repo_root / p)


app = Flask(__name__)


CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type",
}

# Dialable extension numbers only; anything else never reaches the AMI socket.
EXTENSION_RE = re.compile(r"[0-9*#]{1,32}")
MAX_STATUS_EXTENSIONS = 100


def _load() -> Tuple[AppConfig, Path, int]:
    env_path = os.environ.get("PBXDIR_CONFIG")
    app_cfg = load_app_config(config_path=Path(env_path) if env_path else None)
    cache_dir = _resolve_path(_repo_root(), str(app_cfg.cache.directory))
    return app_cfg, cache_dir, int(app_cfg.cache.default_ttl_seconds)


def _current_directory(refresh: bool = False) -> dict:
    app_cfg, cache_dir, ttl = _load()
    return current_directory(app_cfg, cache_dir, ttl, refresh=refresh)


@app.after_request
def add_cors_headers(response):
    # Flask answers OPTIONS preflights itself; they pass through here too.
    if request.path.startswith("/api/"):
        response.headers.update(CORS_HEADERS)
    return response


@app.get("/api/extensions")
def extensions():
    refresh = request.args.get("refresh", "").lower() in ("1", "true", "yes")
    payload = _current_directory(refresh=refresh)
    return jsonify(payload), (200 if payload.get("success") else 500)


@app.get("/api/extensions/status")
def extension_statuses():
    wanted = list(dict.fromkeys(e.strip() for e in request.args.getlist("ext") if e.strip()))
    if not wanted:
        return jsonify({"success": False, "error": "No extensions requested"}), 400
    if len(wanted) > MAX_STATUS_EXTENSIONS:
        return jsonify({"success": False, "error": f"At most {MAX_STATUS_EXTENSIONS} extensions per request"}), 400
    invalid = [e for e in wanted if not EXTENSION_RE.fullmatch(e)]
    if invalid:
        return jsonify({"success": False, "error": "Invalid extension number"}), 400

    app_cfg, _, _ = _load()
    statuses = fetch_statuses(app_cfg.ami, wanted, poll_statuses)
    return jsonify({"success": True, "statuses": statuses})


@app.get("/api/extensions/summary")
def extension_summary():
    payload = _current_directory()
    if not payload.get("success"):
        return jsonify(payload), 500
    return jsonify({"success": True, "summary": summarize(payload["extensions"])})


def main(host: Optional[str] = None, port: Optional[int] = None) -> int:
    app.run(
        host=host or os.environ.get("PBXDIR_HOST", "127.0.0.1"),
        port=int(port or os.environ.get("PBXDIR_PORT", "5000")),
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
