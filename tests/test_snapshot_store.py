import json
import os
import sys
from datetime import datetime
from datetime import timezone

import pytest

REPO_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
PIPELINE_DIR = os.path.join(REPO_ROOT, "pipeline")
if PIPELINE_DIR not in sys.path:
	sys.path.insert(0, PIPELINE_DIR)

from trafficlib import snapshot_store
from trafficlib import traffic_errors


#============================================
def utc(*args) -> datetime:
	return datetime(*args, tzinfo=timezone.utc)


#============================================
def test_write_snapshot_layout_and_format(tmp_path) -> None:
	"""
	Snapshots land under data/<owner>__<repo>/<metric>/ as timestamp JSON.
	"""
	store = snapshot_store.SnapshotStore(str(tmp_path))
	path = store.write_snapshot("octo/repo", "clones", {"clones": []}, fetched_at=utc(2025, 12, 19, 10, 0, 0))
	assert os.path.dirname(path) == os.path.join(str(tmp_path), "data", "octo__repo", "clones")
	assert os.path.basename(path) == "2025-12-19T10-00-00-000000Z.json"
	with open(path, "r", encoding="utf-8") as handle:
		record = json.load(handle)
	assert record == {"timestamp": "2025-12-19T10:00:00Z", "data": {"clones": []}}


#============================================
def test_write_snapshot_never_overwrites(tmp_path) -> None:
	"""
	Two writes with the same fetch time produce two files.
	"""
	store = snapshot_store.SnapshotStore(str(tmp_path))
	fetched_at = utc(2025, 12, 19, 10, 0, 0)
	first = store.write_snapshot("octo/repo", "paths", [{"path": "/a", "count": 1}], fetched_at=fetched_at)
	second = store.write_snapshot("octo/repo", "paths", [{"path": "/b", "count": 2}], fetched_at=fetched_at)
	assert first != second
	assert len(store.read_history("octo/repo", "paths")) == 2


#============================================
def test_read_history_missing_directory_is_empty(tmp_path) -> None:
	store = snapshot_store.SnapshotStore(str(tmp_path))
	assert store.read_history("octo/repo", "views") == []
	assert store.latest_snapshot("octo/repo", "views") is None


#============================================
def test_read_history_sorted_oldest_first(tmp_path) -> None:
	"""
	History order follows fetch timestamps, not write order.
	"""
	store = snapshot_store.SnapshotStore(str(tmp_path))
	store.write_snapshot("octo/repo", "views", {"views": [], "n": 2}, fetched_at=utc(2025, 12, 20, 10))
	store.write_snapshot("octo/repo", "views", {"views": [], "n": 1}, fetched_at=utc(2025, 12, 19, 10))
	store.write_snapshot("octo/repo", "views", {"views": [], "n": 3}, fetched_at=utc(2025, 12, 21, 10, 0, 0, 500))
	history = store.read_history("octo/repo", "views")
	assert [record["data"]["n"] for record in history] == [1, 2, 3]
	assert store.latest_snapshot("octo/repo", "views")["data"]["n"] == 3


#============================================
def test_read_history_skips_malformed_and_temp_files(tmp_path) -> None:
	"""
	Broken files are skipped with a warning instead of failing the read.
	"""
	messages = []
	store = snapshot_store.SnapshotStore(str(tmp_path), log_fn=lambda message, level: messages.append(level))
	store.write_snapshot("octo/repo", "clones", {"clones": []}, fetched_at=utc(2025, 12, 19, 10))
	directory = store.metric_dir("octo/repo", "clones")
	with open(os.path.join(directory, "broken.json"), "w", encoding="utf-8") as handle:
		handle.write("{truncated")
	with open(os.path.join(directory, "no_timestamp.json"), "w", encoding="utf-8") as handle:
		json.dump({"data": {}}, handle)
	with open(os.path.join(directory, "partial.json.tmp"), "w", encoding="utf-8") as handle:
		handle.write("{")
	history = store.read_history("octo/repo", "clones")
	assert len(history) == 1
	assert messages.count("warn") == 2


#============================================
def test_interrupted_write_leaves_previous_file(tmp_path, monkeypatch) -> None:
	"""
	A failure before the rename keeps the final path intact and removes the temp file.
	"""
	target = tmp_path / "last_fetch.json"
	snapshot_store.atomic_write_json(str(target), {"timestamp": 1})

	def failing_replace(src, dst):
		raise OSError("disk full")

	monkeypatch.setattr(snapshot_store.os, "replace", failing_replace)
	with pytest.raises(traffic_errors.StorageError):
		snapshot_store.atomic_write_json(str(target), {"timestamp": 2})
	assert json.loads(target.read_text(encoding="utf-8")) == {"timestamp": 1}
	assert [name for name in os.listdir(tmp_path) if name.endswith(".tmp")] == []


#============================================
def test_interrupted_first_write_leaves_no_file(tmp_path, monkeypatch) -> None:
	store = snapshot_store.SnapshotStore(str(tmp_path))

	def failing_link(src, dst):
		raise OSError("power cut")

	monkeypatch.setattr(snapshot_store.os, "link", failing_link)
	with pytest.raises(traffic_errors.StorageError):
		store.write_snapshot("octo/repo", "clones", {"clones": []})
	assert os.listdir(store.metric_dir("octo/repo", "clones")) == []


#============================================
def test_unserializable_payload_is_storage_error(tmp_path) -> None:
	store = snapshot_store.SnapshotStore(str(tmp_path))
	with pytest.raises(traffic_errors.StorageError):
		store.write_snapshot("octo/repo", "clones", {"clones": [object()]})


#============================================
def test_last_fetch_marker_round_trip(tmp_path) -> None:
	"""
	Marker reads None until written, then returns epoch seconds.
	"""
	store = snapshot_store.SnapshotStore(str(tmp_path / "nested"))
	assert store.read_last_fetch() is None
	store.write_last_fetch(1766224800.7)
	assert store.read_last_fetch() == 1766224800.0
	with open(store.last_fetch_path(), "w", encoding="utf-8") as handle:
		handle.write("not json")
	assert store.read_last_fetch() is None


#============================================
def test_invalid_repo_rejected(tmp_path) -> None:
	store = snapshot_store.SnapshotStore(str(tmp_path))
	with pytest.raises(traffic_errors.ValidationError):
		store.read_history("not-a-repo", "clones")


#============================================
def test_unknown_metric_rejected(tmp_path) -> None:
	"""
	Metric names outside the four traffic metrics never reach the filesystem.
	"""
	store = snapshot_store.SnapshotStore(str(tmp_path))
	for metric in ("..", ".", "stars", ""):
		with pytest.raises(traffic_errors.ValidationError):
			store.write_snapshot("octo/repo", metric, {"clones": []})
	assert not os.path.exists(os.path.join(str(tmp_path), "data"))


#============================================
def test_name_claimed_by_another_writer_is_not_overwritten(tmp_path, monkeypatch) -> None:
	"""
	If the chosen name appears before the link, the write moves to a new suffix.
	"""
	store = snapshot_store.SnapshotStore(str(tmp_path))
	fetched_at = utc(2025, 12, 19, 10, 0, 0)
	directory = store.metric_dir("octo/repo", "clones")
	store.ensure_dir(directory)
	claimed = os.path.join(directory, "2025-12-19T10-00-00-000000Z.json")
	original_pick = store._unique_snapshot_path
	picks = []

	def stale_pick(directory_arg, fetched_arg):
		picks.append(fetched_arg)
		if len(picks) == 1:
			# other process wins the race after the existence check
			with open(claimed, "w", encoding="utf-8") as handle:
				json.dump({"timestamp": "2025-12-19T10:00:00Z", "data": {"owner": "other"}}, handle)
			return claimed
		return original_pick(directory_arg, fetched_arg)

	monkeypatch.setattr(store, "_unique_snapshot_path", stale_pick)
	path = store.write_snapshot("octo/repo", "clones", {"clones": []}, fetched_at=fetched_at)
	assert os.path.basename(path) == "2025-12-19T10-00-00-000000Z_1.json"
	with open(claimed, "r", encoding="utf-8") as handle:
		assert json.load(handle)["data"] == {"owner": "other"}
	assert sorted(os.listdir(directory)) == [
		"2025-12-19T10-00-00-000000Z.json",
		"2025-12-19T10-00-00-000000Z_1.json",
	]
