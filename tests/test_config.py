import pytest

from clients.ami_client import ConnectionParams, SessionTimeouts
from pbxdir.config import load_app_config, load_raw_config


def test_load_from_file(config_file):
    cfg = load_app_config(config_path=config_file, environ={})

    assert cfg.freepbx.url == "https://pbx.example.com/"
    assert cfg.freepbx.configured
    assert cfg.ami.enabled
    assert cfg.ami.context == "ext-local"
    assert cfg.ami.connection_params() == ConnectionParams("pbx.local", 5038, "admin", "s3cret")
    assert cfg.ami.timeouts() == SessionTimeouts(connect=3.0, banner=2.0, command=1.5)
    assert cfg.cache.default_ttl_seconds == 60


def test_environment_overrides_file(config_file):
    env = {"AMI_HOST": "10.0.0.5", "AMI_PORT": "15038", "PBX_CLIENT_SECRET": "from-env"}
    cfg = load_app_config(config_path=config_file, environ=env)

    assert cfg.ami.host == "10.0.0.5"
    assert cfg.ami.port == 15038
    assert cfg.freepbx.client_secret == "from-env"
    assert cfg.ami.username == "admin"


def test_missing_ami_credentials_disable_polling(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("ami:\n  host: pbx.local\n", encoding="utf-8")

    cfg = load_app_config(config_path=path, environ={})

    assert not cfg.ami.enabled
    assert not cfg.freepbx.configured


def test_explicit_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_raw_config(tmp_path / "nope.yaml")


def test_default_missing_file_is_empty(tmp_path, monkeypatch):
    monkeypatch.setenv("PBXDIR_CONFIG", str(tmp_path / "absent.yaml"))
    assert load_raw_config() == {}


def test_env_only_configuration(tmp_path, monkeypatch):
    monkeypatch.setenv("PBXDIR_CONFIG", str(tmp_path / "absent.yaml"))
    env = {
        "PBX_URL": "https://pbx.example.com",
        "PBX_CLIENT_ID": "cid",
        "PBX_CLIENT_SECRET": "csecret",
        "AMI_HOST": "pbx.local",
        "AMI_USERNAME": "admin",
        "AMI_SECRET": "s3cret",
    }
    cfg = load_app_config(environ=env)

    assert cfg.freepbx.configured
    assert cfg.ami.enabled
    assert cfg.ami.port == 5038


def test_non_mapping_yaml_rejected(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("- just\n- a list\n", encoding="utf-8")
    with pytest.raises(ValueError, match="YAML mapping"):
        load_raw_config(path)
