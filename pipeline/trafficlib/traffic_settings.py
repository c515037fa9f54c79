import os
import re

import yaml

from trafficlib import traffic_errors


REPO_NAME_RE = re.compile(r"^[A-Za-z0-9_.-]+/[A-Za-z0-9_.-]+$")
DEFAULT_TOKEN_ENV_VAR = "GITHUB_TOKEN"
DEFAULT_FETCH_INTERVAL_HOURS = 24.0
DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_DATA_DIR = os.path.join("out", "traffic")


#============================================
def get_repo_root() -> str:
	"""
	Return repository root based on this module location.
	"""
	module_dir = os.path.dirname(os.path.abspath(__file__))
	repo_root = os.path.dirname(os.path.dirname(module_dir))
	return repo_root


#============================================
def resolve_settings_path(path_text: str) -> str:
	"""
	Resolve settings path against cwd first, then repo root.
	"""
	if os.path.isabs(path_text):
		return path_text
	cwd_candidate = os.path.abspath(path_text)
	if os.path.isfile(cwd_candidate):
		return cwd_candidate
	repo_root = get_repo_root()
	repo_candidate = os.path.join(repo_root, path_text)
	return os.path.abspath(repo_candidate)


#============================================
def load_settings(path_text: str) -> tuple[dict, str]:
	"""
	Load YAML settings dict and return it with resolved path.
	"""
	resolved_path = resolve_settings_path(path_text)
	if not os.path.isfile(resolved_path):
		return {}, resolved_path
	with open(resolved_path, "r", encoding="utf-8") as handle:
		try:
			data = yaml.safe_load(handle.read())
		except yaml.YAMLError as error:
			raise traffic_errors.ConfigurationError(
				f"Settings file is not valid YAML: {resolved_path}: {error}"
			) from error
	if data is None:
		return {}, resolved_path
	if not isinstance(data, dict):
		raise traffic_errors.ConfigurationError(
			f"Settings file must contain a mapping: {resolved_path}"
		)
	return data, resolved_path


#============================================
def get_nested_value(settings: dict, keys: list[str], default_value):
	"""
	Read nested mapping value by key path.
	"""
	current = settings
	for key in keys:
		if not isinstance(current, dict):
			return default_value
		if key not in current:
			return default_value
		current = current[key]
	return current


#============================================
def get_setting_str(settings: dict, keys: list[str], default_value: str) -> str:
	"""
	Read a string setting from nested path with fallback.
	"""
	value = get_nested_value(settings, keys, default_value)
	if value is None:
		return default_value
	return str(value).strip()


#============================================
def get_setting_int(settings: dict, keys: list[str], default_value: int) -> int:
	"""
	Read an integer setting from nested path with fallback.
	"""
	value = get_nested_value(settings, keys, default_value)
	if value is None:
		return default_value
	try:
		return int(value)
	except (TypeError, ValueError) as error:
		raise traffic_errors.ConfigurationError(
			f"Invalid integer for setting path {'.'.join(keys)}: {value}"
		) from error


#============================================
def get_setting_float(settings: dict, keys: list[str], default_value: float) -> float:
	"""
	Read a float setting from nested path with fallback.
	"""
	value = get_nested_value(settings, keys, default_value)
	if value is None:
		return default_value
	if isinstance(value, bool):
		raise traffic_errors.ConfigurationError(
			f"Invalid number for setting path {'.'.join(keys)}: {value}"
		)
	try:
		return float(value)
	except (TypeError, ValueError) as error:
		raise traffic_errors.ConfigurationError(
			f"Invalid number for setting path {'.'.join(keys)}: {value}"
		) from error


#============================================
def get_setting_bool(settings: dict, keys: list[str], default_value: bool) -> bool:
	"""
	Read a boolean setting from nested path with fallback.
	"""
	value = get_nested_value(settings, keys, default_value)
	if isinstance(value, bool):
		return value
	if isinstance(value, str):
		text = value.strip().lower()
		if text in {"1", "true", "yes", "on"}:
			return True
		if text in {"0", "false", "no", "off"}:
			return False
		raise traffic_errors.ConfigurationError(
			f"Invalid boolean for setting path {'.'.join(keys)}: {value}"
		)
	if isinstance(value, int):
		return value != 0
	if value is None:
		return default_value
	raise traffic_errors.ConfigurationError(
		f"Invalid boolean for setting path {'.'.join(keys)}: {value}"
	)


#============================================
def get_setting_list(settings: dict, keys: list[str], default_value: list) -> list:
	"""
	Read a list setting from nested path with fallback.
	"""
	value = get_nested_value(settings, keys, default_value)
	if value is None:
		return list(default_value)
	if not isinstance(value, list):
		raise traffic_errors.ConfigurationError(
			f"Setting path {'.'.join(keys)} must be a list, got: {value!r}"
		)
	return list(value)


#============================================
def validate_repo_name(repo) -> str:
	"""
	Check one owner/repo identifier and return it stripped.
	"""
	if not isinstance(repo, str):
		raise traffic_errors.ValidationError(f"Repository must be a string, got: {repo!r}")
	text = repo.strip()
	if not text:
		raise traffic_errors.ValidationError("Repository required")
	if not REPO_NAME_RE.match(text):
		raise traffic_errors.ValidationError(
			f"Invalid repository '{text}': must be in 'owner/repo' format"
		)
	return text


#============================================
def get_repos(settings: dict) -> list[str]:
	"""
	Return configured repos, validated and de-duplicated in order.
	"""
	raw_repos = get_setting_list(settings, ["github", "repos"], [])
	repos = []
	for index, repo in enumerate(raw_repos):
		try:
			name = validate_repo_name(repo)
		except traffic_errors.ValidationError as error:
			raise traffic_errors.ConfigurationError(f"Invalid github.repos[{index}]: {error}") from error
		if name not in repos:
			repos.append(name)
	return repos


#============================================
def get_fetch_interval_hours(settings: dict) -> float:
	"""
	Minimum hours between automatic fetch runs.
	"""
	value = get_setting_float(settings, ["fetch", "interval_hours"], DEFAULT_FETCH_INTERVAL_HOURS)
	if value < 0:
		raise traffic_errors.ConfigurationError(f"fetch.interval_hours must be >= 0, got {value}")
	return value


#============================================
def get_timeout_seconds(settings: dict) -> float:
	"""
	Per-request transport timeout.
	"""
	value = get_setting_float(settings, ["fetch", "timeout_seconds"], DEFAULT_TIMEOUT_SECONDS)
	if value <= 0:
		raise traffic_errors.ConfigurationError(f"fetch.timeout_seconds must be > 0, got {value}")
	return value


#============================================
def get_storage_root(settings: dict) -> str:
	"""
	Resolve the storage root directory as an absolute path.
	"""
	path_text = get_setting_str(settings, ["storage", "data_dir"], DEFAULT_DATA_DIR)
	if not path_text:
		path_text = DEFAULT_DATA_DIR
	return os.path.abspath(os.path.expanduser(path_text))


#============================================
def get_notification_level(settings: dict) -> str:
	"""
	Resolve notification level: all, errors or silent.
	"""
	value = get_setting_str(settings, ["notifications", "level"], "all").lower()
	if value not in ("all", "errors", "silent"):
		raise traffic_errors.ConfigurationError(
			f"notifications.level must be all, errors or silent, got: {value}"
		)
	return value


#============================================
def read_token_file(path_text: str) -> str:
	"""
	Return the first non-blank line of a token file.
	"""
	file_path = os.path.expanduser(path_text)
	try:
		with open(file_path, "r", encoding="utf-8") as handle:
			lines = handle.read().splitlines()
	except OSError as error:
		raise traffic_errors.ConfigurationError(
			f"Failed to read token file {file_path}: {error}"
		) from error
	for line in lines:
		token = line.strip()
		if token:
			return token
	raise traffic_errors.ConfigurationError(f"Token file is empty: {file_path}")


#============================================
def get_token(settings: dict) -> str:
	"""
	Resolve the GitHub token from the configured source.
	"""
	source = get_setting_str(settings, ["github", "token_source"], "env").lower()
	if source == "env":
		env_var = get_setting_str(settings, ["github", "token_env_var"], DEFAULT_TOKEN_ENV_VAR)
		env_var = env_var or DEFAULT_TOKEN_ENV_VAR
		token = (os.environ.get(env_var, "") or "").strip()
		if not token:
			raise traffic_errors.ConfigurationError(
				f"Environment variable {env_var} not set or empty"
			)
		return token
	if source == "file":
		token_file = get_setting_str(settings, ["github", "token_file"], "")
		if not token_file:
			raise traffic_errors.ConfigurationError("github.token_file not specified in settings")
		return read_token_file(token_file)
	raise traffic_errors.ConfigurationError(f"Invalid github.token_source: {source}")
