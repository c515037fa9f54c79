"""Configuration, storage and connectivity checks.

Each check returns (ok, message). Presentation is left to the caller.
"""

import os
import threading
import time

from trafficlib import github_client
from trafficlib import traffic_errors
from trafficlib import traffic_settings


API_TIMEOUT_SECONDS = 10.0
MIN_TOKEN_LENGTH = 10


#============================================
def check_config(settings: dict) -> tuple[bool, str]:
	try:
		repos = traffic_settings.get_repos(settings)
	except traffic_errors.ConfigurationError as error:
		return False, f"Configuration error: {error}"
	if not repos:
		return False, "No repositories configured. Edit github.repos in settings.yaml"
	return True, f"Configuration valid ({len(repos)} repos)"


#============================================
def check_token(settings: dict) -> tuple[bool, str]:
	try:
		token = traffic_settings.get_token(settings)
	except traffic_errors.ConfigurationError as error:
		return False, f"Token error: {error}"
	if len(token) < MIN_TOKEN_LENGTH:
		return False, "Token appears invalid (too short)"
	source = traffic_settings.get_setting_str(settings, ["github", "token_source"], "env")
	return True, f"Token available ({len(token)} chars, source: {source})"


#============================================
def check_storage(settings: dict) -> tuple[bool, str]:
	"""
	Make sure the storage root exists and is a directory.
	"""
	storage_root = traffic_settings.get_storage_root(settings)
	if not os.path.exists(storage_root):
		try:
			os.makedirs(storage_root, exist_ok=True)
		except OSError as error:
			return False, f"Failed to create storage directory: {error}"
		return True, f"Storage directory created: {storage_root}"
	if not os.path.isdir(storage_root):
		return False, f"Storage path exists but is not a directory: {storage_root}"
	return True, f"Storage directory accessible: {storage_root}"


#============================================
def check_rate_limit(client) -> tuple[bool, str]:
	"""
	Report the remaining core rate limit.
	"""
	try:
		remaining, reset_time = client.get_core_rate_limit_snapshot()
	except Exception as error:
		return False, f"Rate limit unavailable: {error}"
	return True, f"Rate limit remaining={remaining}, reset_at={reset_time.isoformat()}"


#============================================
def describe_api_error(error: Exception, repo: str) -> str:
	"""
	Turn a probe failure into an actionable message.
	"""
	if isinstance(error, traffic_errors.AuthenticationError):
		return "API test failed: 401 Unauthorized (check token permissions)"
	if isinstance(error, traffic_errors.AuthorizationError):
		return "API test failed: 403 Forbidden (rate limit or token issue)"
	if isinstance(error, traffic_errors.NotFoundError):
		return f"API test failed: 404 Not Found (check repository name: {repo})"
	if isinstance(error, traffic_errors.ParseError):
		return f"API returned invalid response: {error}"
	return f"API test failed: {error}"


#============================================
class ConnectivityChecker:
	"""
	Runs at most one API probe at a time, bounded by a wall-clock timeout.
	"""

	def __init__(self, client):
		self.client = client
		self._running = threading.Lock()

	#============================================
	def probe(self, repo: str) -> tuple[bool, str]:
		try:
			self.client.fetch_metric(repo, "clones")
		except traffic_errors.TrafficError as error:
			return False, describe_api_error(error, repo)
		return True, f"API connectivity confirmed (tested {repo})"

	#============================================
	def check_api(self, repo: str, timeout_seconds: float = API_TIMEOUT_SECONDS) -> tuple[bool, str, int]:
		"""
		Probe one repo; the probe and the timeout race, first one wins.

		Returns:
			(ok, message, duration_ms)
		"""
		if not self._running.acquire(blocking=False):
			return False, "Connectivity check already running", 0
		try:
			outcome = {}
			done = threading.Event()
			finish_lock = threading.Lock()

			def finish(result: tuple[bool, str]) -> None:
				with finish_lock:
					if done.is_set():
						return
					outcome["result"] = result
					done.set()

			def run_probe() -> None:
				try:
					finish(self.probe(repo))
				except Exception as error:
					finish((False, f"API test failed: {error!r}"))

			start_time = time.monotonic()
			worker = threading.Thread(target=run_probe, name="traffic-api-probe", daemon=True)
			worker.start()
			if not done.wait(timeout_seconds):
				finish((False, f"API test timed out ({timeout_seconds:g}s)"))
			duration_ms = int((time.monotonic() - start_time) * 1000)
			ok, message = outcome["result"]
			return ok, message, duration_ms
		finally:
			self._running.release()


#============================================
def run_checks(
	settings: dict,
	client=None,
	last_summary: dict | None = None,
	timeout_seconds: float = API_TIMEOUT_SECONDS,
) -> list[tuple[str, bool, str]]:
	"""
	Run every check and return (section, ok, message) rows.
	"""
	rows = []
	config_ok, config_message = check_config(settings)
	rows.append(("configuration", config_ok, config_message))
	token_ok, token_message = check_token(settings)
	rows.append(("token", token_ok, token_message))
	storage_ok, storage_message = check_storage(settings)
	rows.append(("storage", storage_ok, storage_message))

	if config_ok and token_ok:
		if client is None:
			client = github_client.GitHubClient(
				traffic_settings.get_token(settings),
				timeout_seconds=timeout_seconds,
			)
		repo = traffic_settings.get_repos(settings)[0]
		checker = ConnectivityChecker(client)
		api_ok, api_message, duration_ms = checker.check_api(repo, timeout_seconds)
		rows.append(("api", api_ok, f"{api_message} (took {duration_ms / 1000:.2f}s)"))
		rate_ok, rate_message = check_rate_limit(client)
		rows.append(("rate_limit", rate_ok, rate_message))
	else:
		rows.append(("api", False, "Skipping API test due to previous errors"))

	if last_summary is not None:
		error_count = len(last_summary.get("errors", {}))
		success_count = len(last_summary.get("success", []))
		message = (
			f"Last fetch at {last_summary.get('timestamp', 'unknown')}: "
			+ f"{success_count} succeeded, {error_count} failed"
		)
		rows.append(("last_fetch", error_count == 0, message))
		for key, error_text in sorted(last_summary.get("errors", {}).items()):
			rows.append(("last_fetch", False, f"{key}: {error_text}"))
	return rows
