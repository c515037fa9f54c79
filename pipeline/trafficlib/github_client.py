import json
import math
import threading
from datetime import datetime
from datetime import timezone

import requests
from github import Auth
from github import Github

from trafficlib import traffic_errors
from trafficlib import traffic_settings


API_BASE = "https://api.github.com"
API_VERSION = "2022-11-28"
METRICS = ("clones", "views", "referrers", "paths")
ENDPOINTS = {
	"clones": "/repos/{repo}/traffic/clones",
	"views": "/repos/{repo}/traffic/views",
	"referrers": "/repos/{repo}/traffic/popular/referrers",
	"paths": "/repos/{repo}/traffic/popular/paths",
}


#============================================
def validate_metric(metric) -> str:
	"""
	Check metric against the four supported traffic endpoints.
	"""
	if not isinstance(metric, str) or metric not in ENDPOINTS:
		raise traffic_errors.ValidationError(f"Invalid metric: {metric}")
	return metric


#============================================
def build_url(repo: str, metric: str) -> str:
	"""
	Build the request URL for one repo/metric pair.
	"""
	repo_name = traffic_settings.validate_repo_name(repo)
	endpoint = ENDPOINTS[validate_metric(metric)]
	return API_BASE + endpoint.format(repo=repo_name)


#============================================
def build_headers(token: str) -> dict:
	"""
	Build authenticated GitHub REST headers.
	"""
	return {
		"Accept": "application/vnd.github+json",
		"Authorization": f"Bearer {token}",
		"X-GitHub-Api-Version": API_VERSION,
	}


#============================================
def validate_payload_shape(metric: str, payload) -> None:
	"""
	Raise ParseError when a decoded payload does not match the metric.
	"""
	if metric in ("clones", "views"):
		if not isinstance(payload, dict):
			raise traffic_errors.ParseError(
				f"Expected JSON object for {metric}, got {type(payload).__name__}"
			)
		if not isinstance(payload.get(metric), list):
			raise traffic_errors.ParseError(f"Response is missing the '{metric}' list")
		return
	if not isinstance(payload, list):
		raise traffic_errors.ParseError(
			f"Expected JSON array for {metric}, got {type(payload).__name__}"
		)


#============================================
class GitHubClient:
	"""
	Traffic API client: one authenticated GET per repo/metric, no retries.
	"""

	def __init__(self, token: str, timeout_seconds: float = 30.0, log_fn=None, session=None):
		if not token:
			raise traffic_errors.ConfigurationError("GitHub token is required")
		self.token = token
		self.timeout_seconds = float(timeout_seconds)
		self.log_fn = log_fn
		self.session = session or requests.Session()
		self._github = None
		self._counter_lock = threading.Lock()
		self._api_call_count = 0
		self._api_calls_by_context: dict[str, int] = {}

	#============================================
	def log(self, message: str, level: str = "info") -> None:
		"""
		Emit one log line when logger is configured.
		"""
		if self.log_fn is not None:
			self.log_fn(message, level)

	#============================================
	def record_api_call(self, context: str) -> None:
		"""
		Track one outbound GitHub API call.
		"""
		with self._counter_lock:
			self._api_call_count += 1
			if context not in self._api_calls_by_context:
				self._api_calls_by_context[context] = 0
			self._api_calls_by_context[context] += 1

	#============================================
	def api_usage_snapshot(self) -> dict:
		"""
		Return API call counters for reporting.
		"""
		with self._counter_lock:
			return {
				"api_call_count": self._api_call_count,
				"api_calls_by_context": dict(self._api_calls_by_context),
			}

	#============================================
	def fetch_metric(self, repo: str, metric: str):
		"""
		Fetch one traffic metric and return the decoded payload.

		Inputs are validated before any network activity. Failures raise
		TransportError, ApiError subclasses or ParseError.
		"""
		url = build_url(repo, metric)
		context = f"GET /repos/{repo}/traffic/{metric}"
		self.record_api_call(context)
		try:
			response = self.session.get(
				url,
				headers=build_headers(self.token),
				timeout=self.timeout_seconds,
			)
		except requests.exceptions.Timeout as error:
			raise traffic_errors.TransportError(
				f"{context} timed out after {self.timeout_seconds:g}s: {error}"
			) from error
		except requests.exceptions.RequestException as error:
			raise traffic_errors.TransportError(f"{context} failed: {error}") from error
		return self.parse_response(response, metric, context)

	#============================================
	def parse_response(self, response, metric: str, context: str):
		"""
		Classify one HTTP response into payload or typed error.
		"""
		status = int(response.status_code)
		body_text = response.text or ""
		payload = None
		parse_problem = ""
		if not body_text.strip():
			parse_problem = "Empty response body"
		else:
			try:
				payload = json.loads(body_text)
			except ValueError as error:
				parse_problem = f"JSON parse error: {error}"
		message = ""
		if isinstance(payload, dict) and ("message" in payload):
			message = str(payload.get("message") or "").strip() or "(no message)"
		if (status < 200) or (status >= 300) or message:
			detail = message or parse_problem or "no error message"
			self.raise_api_error(status, detail, response, context)
		if parse_problem:
			raise traffic_errors.ParseError(f"{context}: {parse_problem}")
		try:
			validate_payload_shape(metric, payload)
		except traffic_errors.ParseError as error:
			raise traffic_errors.ParseError(f"{context}: {error}") from error
		return payload

	#============================================
	def raise_api_error(self, status: int, message: str, response, context: str) -> None:
		"""
		Raise the ApiError subclass matching one failed response.
		"""
		text = f"GitHub API error ({status}) on {context}: {message}"
		if status == 401:
			raise traffic_errors.AuthenticationError(text, status=status)
		if status in (403, 429):
			headers = getattr(response, "headers", None) or {}
			remaining = str(headers.get("X-RateLimit-Remaining", "")).strip()
			if (remaining == "0") or ("rate limit" in message.lower()) or (status == 429):
				reset_text = str(headers.get("X-RateLimit-Reset", "unknown"))
				raise traffic_errors.RateLimitError(
					f"{text}; remaining={remaining or 'unknown'}; reset_at={reset_text}",
					status=status,
				)
			raise traffic_errors.AuthorizationError(text, status=status)
		if status == 404:
			raise traffic_errors.NotFoundError(text, status=status)
		raise traffic_errors.ApiError(text, status=status)

	#============================================
	def fetch_all_metrics(self, repo: str) -> dict[str, dict]:
		"""
		Fetch every metric for one repo sequentially, capturing errors.
		"""
		results = {}
		for metric in METRICS:
			try:
				results[metric] = {"data": self.fetch_metric(repo, metric), "error": None}
			except traffic_errors.TrafficError as error:
				results[metric] = {"data": None, "error": str(error)}
		return results

	#============================================
	@property
	def github(self):
		"""
		Lazily built PyGithub client used for rate-limit queries.
		"""
		if self._github is None:
			self._github = Github(
				auth=Auth.Token(self.token),
				timeout=max(1, int(math.ceil(self.timeout_seconds))),
				retry=None,
			)
		return self._github

	#============================================
	def normalize_datetime(self, value: datetime) -> datetime:
		"""
		Normalize datetime to timezone-aware UTC.
		"""
		if value.tzinfo is None:
			return value.replace(tzinfo=timezone.utc)
		return value.astimezone(timezone.utc)

	#============================================
	def parse_rate_limit_reset(self, reset_value) -> datetime:
		"""
		Normalize PyGithub reset values to timezone-aware UTC datetime.
		"""
		if isinstance(reset_value, datetime):
			return self.normalize_datetime(reset_value)
		if isinstance(reset_value, (int, float)):
			return datetime.fromtimestamp(float(reset_value), tz=timezone.utc)
		if isinstance(reset_value, str):
			return self.normalize_datetime(datetime.fromisoformat(reset_value.replace("Z", "+00:00")))
		raise traffic_errors.ParseError(f"Unsupported rate-limit reset value: {reset_value!r}")

	#============================================
	def get_core_rate_limit_snapshot(self) -> tuple[int, datetime]:
		"""
		Read core rate-limit remaining/reset across PyGithub versions.
		"""
		self.record_api_call("GET /rate_limit")
		overview = self.github.get_rate_limit()
		rate_limit = getattr(overview, "core", None)
		if rate_limit is None:
			resources = getattr(overview, "resources", None)
			if isinstance(resources, dict):
				rate_limit = resources.get("core")
			elif resources is not None:
				rate_limit = getattr(resources, "core", None)
		if rate_limit is None:
			raise traffic_errors.ParseError("Rate limit data does not expose core resource fields.")
		remaining = int(getattr(rate_limit, "remaining"))
		reset_time = self.parse_rate_limit_reset(getattr(rate_limit, "reset"))
		return remaining, reset_time
