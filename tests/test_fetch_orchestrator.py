import os
import sys
import threading

REPO_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
PIPELINE_DIR = os.path.join(REPO_ROOT, "pipeline")
if PIPELINE_DIR not in sys.path:
	sys.path.insert(0, PIPELINE_DIR)

from trafficlib import fetch_orchestrator
from trafficlib import snapshot_store
from trafficlib import traffic_errors


#============================================
class FakeClient:
	"""
	Canned traffic client; failures maps (repo, metric) to an exception.
	"""

	def __init__(self, failures: dict | None = None):
		self.failures = failures or {}
		self.calls = []
		self.lock = threading.Lock()

	def fetch_metric(self, repo: str, metric: str):
		with self.lock:
			self.calls.append((repo, metric))
		error = self.failures.get((repo, metric))
		if error is not None:
			raise error
		if metric in ("clones", "views"):
			return {"count": 0, "uniques": 0, metric: []}
		return []


#============================================
class FakeClock:
	def __init__(self, now: float):
		self.now = now

	def __call__(self) -> float:
		return self.now


#============================================
def quiet_log(message: str, level: str = "info") -> None:
	return None


#============================================
def make_orchestrator(tmp_path, client=None, repos=None, clock=None, settings=None):
	if settings is None:
		settings = {
			"github": {"repos": repos if repos is not None else ["octo/one", "octo/two"]},
			"fetch": {"interval_hours": 24},
		}
	store = snapshot_store.SnapshotStore(str(tmp_path))
	return fetch_orchestrator.FetchOrchestrator(
		settings,
		store=store,
		client=client,
		log_fn=quiet_log,
		clock=clock or FakeClock(1_000_000.0),
	)


#============================================
def test_fetch_all_collects_every_metric(tmp_path) -> None:
	"""
	A clean run stores four snapshots per repo and reports them all.
	"""
	client = FakeClient()
	orchestrator = make_orchestrator(tmp_path, client=client)
	summary = orchestrator.fetch_all()
	assert summary["errors"] == {}
	assert summary["skipped"] is False
	assert len(summary["success"]) == 8
	assert "octo/one/clones" in summary["success"]
	assert len(client.calls) == 8
	assert orchestrator.store.read_last_fetch() == 1_000_000.0
	assert orchestrator.last_summary == summary
	assert len(orchestrator.store.read_history("octo/two", "paths")) == 1


#============================================
def test_interval_gates_automatic_runs(tmp_path) -> None:
	"""
	A second run inside the interval is skipped; force bypasses the gate.
	"""
	clock = FakeClock(1_000_000.0)
	client = FakeClient()
	orchestrator = make_orchestrator(tmp_path, client=client, clock=clock)
	orchestrator.fetch_all()
	clock.now += 3600
	skipped = orchestrator.auto_fetch()
	assert skipped["skipped"] is True
	assert skipped["success"] == []
	assert len(client.calls) == 8

	forced = orchestrator.manual_fetch(force=True)
	assert forced["skipped"] is False
	assert len(client.calls) == 16

	clock.now += 24 * 3600 + 1
	assert orchestrator.should_fetch() is True


#============================================
def test_failed_metric_is_isolated(tmp_path) -> None:
	"""
	A 404 on one metric leaves the other metrics and repos untouched.
	"""
	client = FakeClient({("octo/one", "views"): traffic_errors.NotFoundError("GitHub API error (404): Not Found", status=404)})
	orchestrator = make_orchestrator(tmp_path, client=client)
	summary = orchestrator.fetch_all()
	assert list(summary["errors"]) == ["octo/one/views"]
	assert "404" in summary["errors"]["octo/one/views"]
	assert len(summary["success"]) == 7
	assert orchestrator.store.read_history("octo/one", "views") == []


#============================================
def test_marker_written_even_when_everything_fails(tmp_path) -> None:
	failures = {}
	for repo in ("octo/one", "octo/two"):
		for metric in ("clones", "views", "referrers", "paths"):
			failures[(repo, metric)] = traffic_errors.TransportError("connection refused")
	orchestrator = make_orchestrator(tmp_path, client=FakeClient(failures))
	summary = orchestrator.fetch_all()
	assert summary["success"] == []
	assert len(summary["errors"]) == 8
	assert orchestrator.store.read_last_fetch() == 1_000_000.0


#============================================
def test_unexpected_exception_is_recorded(tmp_path) -> None:
	client = FakeClient({("octo/two", "clones"): KeyError("boom")})
	orchestrator = make_orchestrator(tmp_path, client=client)
	summary = orchestrator.fetch_all()
	assert "Unexpected error" in summary["errors"]["octo/two/clones"]
	assert len(summary["success"]) == 7


#============================================
def test_storage_failure_counts_as_metric_error(tmp_path, monkeypatch) -> None:
	"""
	A snapshot that cannot be persisted is not reported as a success.
	"""
	orchestrator = make_orchestrator(tmp_path, client=FakeClient(), repos=["octo/one"])
	original_write = orchestrator.store.write_snapshot

	def flaky_write(repo, metric, payload, fetched_at=None):
		if metric == "referrers":
			raise traffic_errors.StorageError("disk full")
		return original_write(repo, metric, payload, fetched_at)

	monkeypatch.setattr(orchestrator.store, "write_snapshot", flaky_write)
	summary = orchestrator.fetch_all()
	assert summary["errors"] == {"octo/one/referrers": "disk full"}
	assert "octo/one/referrers" not in summary["success"]


#============================================
def test_missing_token_aborts_without_network(tmp_path, monkeypatch) -> None:
	"""
	Without a token the run ends before any request is attempted.
	"""
	monkeypatch.delenv("TRAFFIC_TEST_MISSING", raising=False)
	settings = {
		"github": {
			"repos": ["octo/one"],
			"token_source": "env",
			"token_env_var": "TRAFFIC_TEST_MISSING",
		},
	}
	orchestrator = make_orchestrator(tmp_path, settings=settings)
	summary = orchestrator.fetch_all()
	assert summary["success"] == []
	assert "TRAFFIC_TEST_MISSING" in summary["errors"]["configuration"]
	assert orchestrator.store.read_last_fetch() is None
	assert orchestrator.last_summary == summary


#============================================
def test_invalid_repo_config_aborts(tmp_path) -> None:
	client = FakeClient()
	orchestrator = make_orchestrator(tmp_path, client=client, repos=["octo/one", "not a repo"])
	summary = orchestrator.fetch_all(force=True)
	assert "configuration" in summary["errors"]
	assert client.calls == []


#============================================
def test_no_repos_is_skipped(tmp_path) -> None:
	client = FakeClient()
	orchestrator = make_orchestrator(tmp_path, client=client, repos=[])
	summary = orchestrator.fetch_all(force=True)
	assert summary["skipped"] is True
	assert client.calls == []


#============================================
def test_callbacks_receive_results(tmp_path) -> None:
	"""
	fetch_all hands its summary to the callback; fetch_repo hands its pair.
	"""
	received = []
	orchestrator = make_orchestrator(tmp_path, client=FakeClient(), repos=["octo/one"])
	summary = orchestrator.fetch_all(callback=received.append)
	assert received == [summary]

	pairs = []
	success, errors = orchestrator.fetch_repo(
		"octo/one", FakeClient(), callback=lambda ok, bad: pairs.append((ok, bad)),
	)
	assert pairs == [(success, errors)]
	assert success == ["octo/one/clones", "octo/one/paths", "octo/one/referrers", "octo/one/views"]


#============================================
def test_merge_results_is_order_independent() -> None:
	first = (["a/b/clones"], {"a/b/views": "x"})
	second = (["c/d/paths"], {"c/d/clones": "y"})
	assert fetch_orchestrator.merge_results([first, second]) == fetch_orchestrator.merge_results([second, first])


#============================================
def test_malformed_interval_aborts_with_summary(tmp_path) -> None:
	"""
	A bad interval setting is reported like any other configuration error.
	"""
	client = FakeClient()
	settings = {"github": {"repos": ["octo/one"]}, "fetch": {"interval_hours": "abc"}}
	orchestrator = make_orchestrator(tmp_path, client=client, settings=settings)
	orchestrator.store.write_last_fetch(999_000.0)
	summary = orchestrator.fetch_all()
	assert "fetch.interval_hours" in summary["errors"]["configuration"]
	assert summary["success"] == []
	assert client.calls == []
	assert orchestrator.last_summary == summary
	assert orchestrator.store.read_last_fetch() == 999_000.0


#============================================
def test_summary_timestamp_uses_injected_clock(tmp_path) -> None:
	"""
	The summary and the last-fetch marker share one clock reading.
	"""
	clock = FakeClock(1_766_224_800.0)
	orchestrator = make_orchestrator(tmp_path, client=FakeClient(), repos=["octo/one"], clock=clock)
	summary = orchestrator.fetch_all()
	assert summary["timestamp"] == "2025-12-20T10:00:00Z"
	assert orchestrator.store.read_last_fetch() == 1_766_224_800.0
	clock.now += 60
	skipped = orchestrator.fetch_all()
	assert skipped["timestamp"] == "2025-12-20T10:01:00Z"
