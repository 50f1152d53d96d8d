from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from clients.ami_client import DEFAULT_CONTEXT, DEFAULT_PORT, ConnectionParams, SessionTimeouts


@dataclass(frozen=True)
class FreePBXConfig:
    url: str = ""
    client_id: str = ""
    client_secret: str = ""
    scope: str = "gql"
    verify_ssl: bool = True
    timeout: int = 10

    @property
    def configured(self) -> bool:
        return bool(self.url and self.client_id and self.client_secret)


@dataclass(frozen=True)
class AMIConfig:
    host: str = ""
    port: int = DEFAULT_PORT
    username: str = ""
    secret: str = ""
    context: str = DEFAULT_CONTEXT
    connect_timeout: float = 3.0
    banner_timeout: float = 2.0
    command_timeout: float = 3.0

    @property
    def enabled(self) -> bool:
        return bool(self.host and self.username and self.secret)

    def connection_params(self) -> ConnectionParams:
        return ConnectionParams(host=self.host, port=self.port, username=self.username, secret=self.secret)

    def timeouts(self) -> SessionTimeouts:
        return SessionTimeouts(
            connect=self.connect_timeout,
            banner=self.banner_timeout,
            command=self.command_timeout,
        )


@dataclass(frozen=True)
class CacheConfig:
    directory: str = "./cache"
    default_ttl_seconds: int = 30


@dataclass(frozen=True)
class AppConfig:
    freepbx: FreePBXConfig
    ami: AMIConfig
    cache: CacheConfig


def _repo_root() -> Path:
    # This file lives at <repo>/pbxdir/config.py
    return Path(__file__).resolve().parent.parent


def default_config_path() -> Path:
    env_path = os.environ.get("PBXDIR_CONFIG")
    if env_path:
        return Path(env_path)
    return _repo_root() / "config" / "config.yaml"


def load_raw_config(config_path: Path | None = None) -> Dict[str, Any]:
    if config_path is None:
        config_path = default_config_path()
        # Environment-only deployments have no config file at all.
        if not config_path.exists():
            return {}

    if not config_path.exists():
        raise FileNotFoundError(
            f"Config file not found at {config_path}. "
            "Copy config/config.example.yaml to config/config.yaml and fill in your credentials."
        )

    with config_path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    if not isinstance(data, dict):
        raise ValueError(f"Config at {config_path} must be a YAML mapping")

    return data


def _section(raw: Dict[str, Any], name: str) -> Dict[str, Any]:
    value = raw.get(name, {})
    return value if isinstance(value, dict) else {}


def _str(value: Any) -> str:
    return "" if value is None else str(value)


def load_app_config(
    config_path: Path | None = None,
    environ: Optional[Mapping[str, str]] = None,
) -> AppConfig:
    raw = load_raw_config(config_path=config_path)
    env = os.environ if environ is None else environ

    pbx_raw = _section(raw, "freepbx")
    ami_raw = _section(raw, "ami")
    cache_raw = _section(raw, "cache")

    freepbx = FreePBXConfig(
        url=_str(env.get("PBX_URL") or pbx_raw.get("url")),
        client_id=_str(env.get("PBX_CLIENT_ID") or pbx_raw.get("client_id")),
        client_secret=_str(env.get("PBX_CLIENT_SECRET") or pbx_raw.get("client_secret")),
        scope=str(pbx_raw.get("scope", "gql")),
        verify_ssl=bool(pbx_raw.get("verify_ssl", True)),
        timeout=int(pbx_raw.get("timeout", 10)),
    )

    ami = AMIConfig(
        host=_str(env.get("AMI_HOST") or ami_raw.get("host")),
        port=int(env.get("AMI_PORT") or ami_raw.get("port") or DEFAULT_PORT),
        username=_str(env.get("AMI_USERNAME") or ami_raw.get("username")),
        secret=_str(env.get("AMI_SECRET") or ami_raw.get("secret")),
        context=str(ami_raw.get("context", DEFAULT_CONTEXT)),
        connect_timeout=float(ami_raw.get("connect_timeout", 3.0)),
        banner_timeout=float(ami_raw.get("banner_timeout", 2.0)),
        command_timeout=float(ami_raw.get("command_timeout", 3.0)),
    )

    cache = CacheConfig(
        directory=str(cache_raw.get("directory", "./cache")),
        default_ttl_seconds=int(cache_raw.get("default_ttl_seconds", 30)),
    )

    return AppConfig(freepbx=freepbx, ami=ami, cache=cache)
