import json
from datetime import datetime, timedelta, timezone

from pbxdir.cache import load_snapshot, save_snapshot, snapshot_path


def test_missing_snapshot(tmp_path):
    cf = load_snapshot(tmp_path, ttl_seconds=30)
    assert not cf.exists
    assert not cf.is_fresh
    assert cf.data is None


def test_saved_snapshot_is_fresh(tmp_path):
    payload = {"success": True, "extensions": [], "lastUpdated": datetime.now(timezone.utc).isoformat()}
    path = save_snapshot(tmp_path / "cache", payload)

    cf = load_snapshot(tmp_path / "cache", ttl_seconds=30)
    assert path == snapshot_path(tmp_path / "cache")
    assert cf.exists and cf.is_fresh
    assert cf.data["success"] is True
    assert cf.age_seconds is not None and cf.age_seconds <= 30


def test_old_snapshot_is_stale(tmp_path):
    old = (datetime.now(timezone.utc) - timedelta(minutes=10)).isoformat().replace("+00:00", "Z")
    save_snapshot(tmp_path, {"success": True, "extensions": [], "collected_at": old})

    cf = load_snapshot(tmp_path, ttl_seconds=30)
    assert cf.exists
    assert not cf.is_fresh
    assert cf.age_seconds >= 600


def test_naive_timestamp_treated_as_utc(tmp_path):
    naive = datetime.now(timezone.utc).replace(tzinfo=None).isoformat()
    snapshot_path(tmp_path).write_text(json.dumps({"collected_at": naive}), encoding="utf-8")

    cf = load_snapshot(tmp_path, ttl_seconds=30)
    assert cf.collected_at.tzinfo is not None
    assert cf.is_fresh


def test_corrupt_snapshot_reports_error(tmp_path):
    snapshot_path(tmp_path).write_text("{not json", encoding="utf-8")

    cf = load_snapshot(tmp_path, ttl_seconds=30)
    assert cf.exists
    assert cf.error
    assert not cf.is_fresh
