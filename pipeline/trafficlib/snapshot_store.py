"""Append-only snapshot storage for raw traffic payloads.

Every successful fetch lands in its own JSON file under
<root>/data/<owner>__<repo>/<metric>/. Files are written to a temp path
in the same directory and hard-linked into place under a name that did
not exist yet, so readers only ever see complete files. Nothing here
rewrites or deletes an existing snapshot.
"""

import json
import os
import tempfile
from datetime import datetime
from datetime import timezone

from trafficlib import github_client
from trafficlib import traffic_errors
from trafficlib import traffic_settings


FILENAME_FORMAT = "%Y-%m-%dT%H-%M-%S-%fZ"
TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%SZ"
LAST_FETCH_FILENAME = "last_fetch.json"


#============================================
def repo_dir_name(repo: str) -> str:
	"""
	Build filesystem-safe directory name for one owner/repo.
	"""
	repo_name = traffic_settings.validate_repo_name(repo)
	return repo_name.replace("/", "__")


#============================================
def format_timestamp(value: datetime) -> str:
	"""
	Format a datetime as UTC ISO-8601 with Z suffix.
	"""
	if value.tzinfo is None:
		value = value.replace(tzinfo=timezone.utc)
	value = value.astimezone(timezone.utc)
	if value.microsecond:
		return value.strftime("%Y-%m-%dT%H:%M:%S.%fZ")
	return value.strftime(TIMESTAMP_FORMAT)


#============================================
def parse_timestamp(text) -> datetime | None:
	"""
	Parse a stored snapshot timestamp, None when unreadable.
	"""
	if not isinstance(text, str) or not text.strip():
		return None
	try:
		parsed = datetime.fromisoformat(text.strip().replace("Z", "+00:00"))
	except ValueError:
		return None
	if parsed.tzinfo is None:
		parsed = parsed.replace(tzinfo=timezone.utc)
	return parsed.astimezone(timezone.utc)


#============================================
def atomic_write_json(path: str, payload, overwrite: bool = True) -> str:
	"""
	Write JSON to a temp file in the target directory, then move it into place.

	With overwrite=False the temp file is hard-linked to path, which fails
	with FileExistsError instead of replacing a file that appeared meanwhile.
	"""
	dir_name = os.path.dirname(os.path.abspath(path))
	try:
		text = json.dumps(payload, ensure_ascii=True, sort_keys=True, indent=2)
	except (TypeError, ValueError) as error:
		raise traffic_errors.StorageError(f"JSON encode failed: {error}") from error
	try:
		fd, tmp_path = tempfile.mkstemp(dir=dir_name, suffix=".json.tmp")
	except OSError as error:
		raise traffic_errors.StorageError(f"Write failed: {error}") from error
	try:
		with os.fdopen(fd, "w", encoding="utf-8") as handle:
			handle.write(text)
			handle.write("\n")
			handle.flush()
			os.fsync(handle.fileno())
		if overwrite:
			os.replace(tmp_path, path)
		else:
			os.link(tmp_path, path)
			os.remove(tmp_path)
	except FileExistsError:
		if os.path.exists(tmp_path):
			os.remove(tmp_path)
		raise
	except OSError as error:
		if os.path.exists(tmp_path):
			os.remove(tmp_path)
		raise traffic_errors.StorageError(f"Write failed for {path}: {error}") from error
	return path


#============================================
class SnapshotStore:
	"""
	Filesystem-backed snapshot history keyed by repo and metric.
	"""

	def __init__(self, storage_root: str, log_fn=None):
		self.storage_root = os.path.abspath(storage_root)
		self.log_fn = log_fn

	#============================================
	def log(self, message: str, level: str = "info") -> None:
		if self.log_fn is not None:
			self.log_fn(message, level)

	#============================================
	def metric_dir(self, repo: str, metric: str) -> str:
		"""
		Directory holding every snapshot for one repo/metric pair.
		"""
		if metric not in github_client.METRICS:
			raise traffic_errors.ValidationError(f"Invalid metric: {metric}")
		return os.path.join(self.storage_root, "data", repo_dir_name(repo), metric)

	#============================================
	def ensure_dir(self, path: str) -> None:
		try:
			os.makedirs(path, exist_ok=True)
		except OSError as error:
			raise traffic_errors.StorageError(f"Failed to create directory {path}: {error}") from error

	#============================================
	def _unique_snapshot_path(self, directory: str, fetched_at: datetime) -> str:
		"""
		Pick a snapshot filename that does not exist yet.
		"""
		stem = fetched_at.strftime(FILENAME_FORMAT)
		candidate = os.path.join(directory, f"{stem}.json")
		suffix = 1
		while os.path.exists(candidate):
			candidate = os.path.join(directory, f"{stem}_{suffix}.json")
			suffix += 1
		return candidate

	#============================================
	def write_snapshot(self, repo: str, metric: str, payload, fetched_at: datetime | None = None) -> str:
		"""
		Persist one fetch result as a new snapshot file and return its path.
		"""
		directory = self.metric_dir(repo, metric)
		self.ensure_dir(directory)
		if fetched_at is None:
			fetched_at = datetime.now(timezone.utc)
		elif fetched_at.tzinfo is None:
			fetched_at = fetched_at.replace(tzinfo=timezone.utc)
		fetched_at = fetched_at.astimezone(timezone.utc)
		record = {
			"timestamp": format_timestamp(fetched_at),
			"data": payload,
		}
		# another writer may claim the same name between the check and the link
		while True:
			path = self._unique_snapshot_path(directory, fetched_at)
			try:
				return atomic_write_json(path, record, overwrite=False)
			except FileExistsError:
				continue

	#============================================
	def read_history(self, repo: str, metric: str) -> list[dict]:
		"""
		Return every readable snapshot, oldest first.

		A missing directory is an empty history. Malformed files are
		skipped with a warning so one bad file cannot hide the rest.
		"""
		directory = self.metric_dir(repo, metric)
		if not os.path.isdir(directory):
			return []
		try:
			filenames = sorted(os.listdir(directory))
		except OSError as error:
			raise traffic_errors.StorageError(f"Failed to read directory {directory}: {error}") from error
		entries = []
		for filename in filenames:
			if not filename.endswith(".json"):
				continue
			file_path = os.path.join(directory, filename)
			try:
				with open(file_path, "r", encoding="utf-8") as handle:
					record = json.load(handle)
			except (OSError, ValueError) as error:
				self.log(f"Skipping unreadable snapshot {file_path}: {error}", "warn")
				continue
			if not isinstance(record, dict) or ("data" not in record):
				self.log(f"Skipping malformed snapshot {file_path}", "warn")
				continue
			fetched_at = parse_timestamp(record.get("timestamp"))
			if fetched_at is None:
				self.log(f"Skipping snapshot without timestamp {file_path}", "warn")
				continue
			entries.append((fetched_at, filename, record))
		entries.sort(key=lambda item: (item[0], item[1]))
		return [record for _, _, record in entries]

	#============================================
	def latest_snapshot(self, repo: str, metric: str) -> dict | None:
		"""
		Return the most recent snapshot or None.
		"""
		history = self.read_history(repo, metric)
		if not history:
			return None
		return history[-1]

	#============================================
	def last_fetch_path(self) -> str:
		return os.path.join(self.storage_root, LAST_FETCH_FILENAME)

	#============================================
	def read_last_fetch(self) -> float | None:
		"""
		Read the last completed fetch run as epoch seconds.
		"""
		path = self.last_fetch_path()
		if not os.path.isfile(path):
			return None
		try:
			with open(path, "r", encoding="utf-8") as handle:
				payload = json.load(handle)
		except (OSError, ValueError) as error:
			self.log(f"Ignoring unreadable {path}: {error}", "warn")
			return None
		if not isinstance(payload, dict):
			return None
		value = payload.get("timestamp")
		if isinstance(value, bool) or not isinstance(value, (int, float)):
			return None
		return float(value)

	#============================================
	def write_last_fetch(self, epoch_seconds: float) -> str:
		"""
		Overwrite the last-fetch marker.
		"""
		self.ensure_dir(self.storage_root)
		return atomic_write_json(self.last_fetch_path(), {"timestamp": int(epoch_seconds)})
