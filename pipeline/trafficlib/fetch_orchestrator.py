"""Concurrent traffic collection across every configured repository.

One fetch_all run launches one worker per repo; each repo launches one
worker per metric. Results are joined and merged without relying on
arrival order. A failing metric is recorded and never blocks its
siblings. The last-fetch marker is written whenever a run completes,
even with errors, because it throttles call volume rather than marking
completeness.
"""

import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import as_completed
from datetime import datetime
from datetime import timezone

from trafficlib import console_log
from trafficlib import github_client
from trafficlib import snapshot_store
from trafficlib import traffic_errors
from trafficlib import traffic_settings


#============================================
def metric_key(repo: str, metric: str) -> str:
	return f"{repo}/{metric}"


#============================================
def build_summary(
	success: list,
	errors: dict,
	skipped: bool = False,
	message: str = "",
	now: float | None = None,
) -> dict:
	"""
	Build one fetch summary record stamped with epoch time now.
	"""
	if now is None:
		now = time.time()
	return {
		"success": sorted(success),
		"errors": dict(sorted(errors.items())),
		"timestamp": datetime.fromtimestamp(now, timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
		"skipped": skipped,
		"message": message,
	}


#============================================
def merge_results(results: list[tuple[list, dict]]) -> tuple[list, dict]:
	"""
	Union success lists and merge error maps key-wise.
	"""
	all_success = []
	all_errors = {}
	for success, errors in results:
		all_success.extend(success)
		all_errors.update(errors)
	return sorted(set(all_success)), all_errors


#============================================
class FetchOrchestrator:
	"""
	Coordinates interval-gated, concurrent collection for all repos.
	"""

	def __init__(self, settings: dict, store=None, client=None, log_fn=None, clock=None):
		self.settings = settings or {}
		if log_fn is None:
			log_fn = console_log.make_log_fn(traffic_settings.get_notification_level(self.settings))
		self.log_fn = log_fn
		if store is None:
			store = snapshot_store.SnapshotStore(
				traffic_settings.get_storage_root(self.settings),
				log_fn=log_fn,
			)
		self.store = store
		self.client = client
		self.clock = clock or time.time
		self.last_summary: dict | None = None

	#============================================
	def log(self, message: str, level: str = "info") -> None:
		self.log_fn(message, level)

	#============================================
	def should_fetch(self, now: float | None = None) -> bool:
		"""
		True when the configured interval has elapsed since the last run.
		"""
		last_fetch = self.store.read_last_fetch()
		if last_fetch is None:
			return True
		if now is None:
			now = self.clock()
		interval_seconds = traffic_settings.get_fetch_interval_hours(self.settings) * 3600
		return (now - last_fetch) >= interval_seconds

	#============================================
	def resolve_client(self):
		"""
		Return the injected client or build one from the configured token.
		"""
		if self.client is not None:
			return self.client
		token = traffic_settings.get_token(self.settings)
		timeout_seconds = traffic_settings.get_timeout_seconds(self.settings)
		return github_client.GitHubClient(token, timeout_seconds=timeout_seconds, log_fn=self.log_fn)

	#============================================
	def fetch_and_store(self, client, repo: str, metric: str) -> str:
		"""
		Fetch one metric and persist it; raises on either failure.
		"""
		payload = client.fetch_metric(repo, metric)
		return self.store.write_snapshot(repo, metric, payload)

	#============================================
	def fetch_repo(self, repo: str, client, callback=None) -> tuple[list, dict]:
		"""
		Fetch the four metrics of one repo concurrently.
		"""
		success = []
		errors = {}
		with ThreadPoolExecutor(max_workers=len(github_client.METRICS)) as executor:
			futures = {
				executor.submit(self.fetch_and_store, client, repo, metric): metric
				for metric in github_client.METRICS
			}
			for future in as_completed(futures):
				key = metric_key(repo, futures[future])
				try:
					future.result()
				except traffic_errors.TrafficError as error:
					errors[key] = str(error)
					self.log(f"{key} failed: {error}", "warn")
				except Exception as error:
					# isolate unexpected worker faults to their own metric
					errors[key] = f"Unexpected error: {error!r}"
					self.log(f"{key} failed unexpectedly: {error!r}", "error")
				else:
					success.append(key)
		success.sort()
		if callback is not None:
			callback(success, errors)
		return success, errors

	#============================================
	def fetch_all(self, force: bool = False, callback=None) -> dict:
		"""
		Fetch every configured repo and return one aggregate summary.
		"""
		try:
			repos = traffic_settings.get_repos(self.settings)
		except traffic_errors.ConfigurationError as error:
			return self._finish_aborted(str(error), callback)
		if not repos:
			self.log("No repositories configured", "warn")
			return self._finish_skipped("No repositories configured", callback)
		if not force:
			try:
				due = self.should_fetch()
			except traffic_errors.ConfigurationError as error:
				return self._finish_aborted(str(error), callback)
			if not due:
				self.log("Fetch interval not elapsed (use force to bypass)")
				return self._finish_skipped("Fetch interval not elapsed", callback)
		try:
			client = self.resolve_client()
		except traffic_errors.ConfigurationError as error:
			return self._finish_aborted(str(error), callback)

		self.log(f"Starting fetch: {len(repos)} repos, force={force}")
		results = []
		with ThreadPoolExecutor(max_workers=len(repos)) as executor:
			futures = [executor.submit(self.fetch_repo, repo, client) for repo in repos]
			for future in as_completed(futures):
				results.append(future.result())
		all_success, all_errors = merge_results(results)

		finished_at = self.clock()
		try:
			self.store.write_last_fetch(finished_at)
		except traffic_errors.StorageError as error:
			all_errors["last_fetch"] = str(error)
			self.log(f"Failed to write last-fetch marker: {error}", "error")

		summary = build_summary(all_success, all_errors, now=finished_at)
		if all_errors:
			self.log(f"Fetched {len(all_success)} metrics, {len(all_errors)} errors", "warn")
		else:
			self.log(f"Successfully fetched {len(all_success)} metrics")
		self.last_summary = summary
		if callback is not None:
			callback(summary)
		return summary

	#============================================
	def _finish_skipped(self, message: str, callback) -> dict:
		summary = build_summary([], {}, skipped=True, message=message, now=self.clock())
		if callback is not None:
			callback(summary)
		return summary

	#============================================
	def _finish_aborted(self, message: str, callback) -> dict:
		"""
		Report a run-wide configuration failure without touching the network.
		"""
		self.log(f"Configuration error: {message}", "error")
		summary = build_summary([], {"configuration": message}, message=message, now=self.clock())
		self.last_summary = summary
		if callback is not None:
			callback(summary)
		return summary

	#============================================
	def auto_fetch(self) -> dict:
		return self.fetch_all(False)

	#============================================
	def manual_fetch(self, force: bool = False) -> dict:
		return self.fetch_all(force)
