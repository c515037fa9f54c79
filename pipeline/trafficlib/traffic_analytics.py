"""Daily time series derived from snapshot history.

Snapshots overlap: each clones/views response covers a rolling window of
about 14 days, so one calendar date shows up in many snapshots with
different values. Every query rescans the history and keeps, per date,
the value from the newest snapshot that reports it. The current UTC day
is always dropped because GitHub is still counting it.
"""

from datetime import date
from datetime import datetime
from datetime import timedelta
from datetime import timezone

from trafficlib import traffic_errors
from trafficlib import traffic_settings


TIME_SERIES_METRICS = ("clones", "views")
TOP_LIST_METRICS = ("referrers", "paths")
NO_DATA = "N/A"
DEFAULT_TOP_LIMIT = 10


#============================================
def utc_today() -> date:
	"""
	Current calendar date in UTC, the bucket GitHub reports traffic in.
	"""
	return datetime.now(timezone.utc).date()


#============================================
def parse_date_bound(value) -> date | None:
	"""
	Parse an optional YYYY-MM-DD bound; absent or unparsable means unbounded.
	"""
	if isinstance(value, datetime):
		return value.date()
	if isinstance(value, date):
		return value
	if not isinstance(value, str):
		return None
	text = value.strip()
	if len(text) != 10:
		return None
	try:
		return date.fromisoformat(text)
	except ValueError:
		return None


#============================================
def extract_date(timestamp) -> str | None:
	"""
	Return the YYYY-MM-DD prefix of an ISO timestamp, None if invalid.
	"""
	if not isinstance(timestamp, str):
		return None
	day = parse_date_bound(timestamp[:10])
	if day is None:
		return None
	return day.isoformat()


#============================================
def coerce_int(value) -> int:
	if isinstance(value, bool):
		return 0
	try:
		return int(value or 0)
	except (TypeError, ValueError):
		return 0


#============================================
def validate_query(repo, metric) -> str:
	"""
	Validate a time-series query and return the normalized repo.
	"""
	if not isinstance(repo, str) or not repo.strip():
		raise traffic_errors.ValidationError("Repository required")
	if metric not in TIME_SERIES_METRICS:
		raise traffic_errors.ValidationError("Metric must be 'clones' or 'views'")
	return traffic_settings.validate_repo_name(repo)


#============================================
def deduplicate_history(history: list[dict], metric: str) -> dict[str, dict]:
	"""
	Resolve overlapping snapshots into one record per calendar date.

	History is expected oldest first, so later snapshots overwrite
	earlier ones for every date they report.
	"""
	daily: dict[str, dict] = {}
	for snapshot in history:
		payload = snapshot.get("data") if isinstance(snapshot, dict) else None
		if not isinstance(payload, dict):
			continue
		items = payload.get(metric)
		if not isinstance(items, list):
			continue
		for item in items:
			if not isinstance(item, dict):
				continue
			day_key = extract_date(item.get("timestamp"))
			if day_key is None:
				continue
			daily[day_key] = {
				"count": coerce_int(item.get("count")),
				"uniques": coerce_int(item.get("uniques")),
			}
	return daily


#============================================
def filter_breakdown(
	daily: dict[str, dict],
	start_date=None,
	end_date=None,
	today: date | None = None,
) -> dict[str, dict]:
	"""
	Apply optional date bounds and drop the current day.
	"""
	start_bound = parse_date_bound(start_date)
	end_bound = parse_date_bound(end_date)
	today_key = (today or utc_today()).isoformat()
	filtered = {}
	for day_key in sorted(daily):
		if day_key == today_key:
			continue
		day = date.fromisoformat(day_key)
		if (start_bound is not None) and (day < start_bound):
			continue
		if (end_bound is not None) and (day > end_bound):
			continue
		filtered[day_key] = dict(daily[day_key])
	return filtered


#============================================
def summarize_breakdown(breakdown: dict[str, dict]) -> tuple[int, int]:
	"""
	Sum count and uniques across a breakdown.
	"""
	total_count = 0
	total_uniques = 0
	for stats in breakdown.values():
		total_count += coerce_int(stats.get("count"))
		total_uniques += coerce_int(stats.get("uniques"))
	return total_count, total_uniques


#============================================
def build_stats(repo: str, metric: str, breakdown: dict[str, dict]) -> dict:
	"""
	Assemble aggregated stats whose totals come only from the breakdown.
	"""
	total_count, total_uniques = summarize_breakdown(breakdown)
	dates = sorted(breakdown)
	return {
		"repo": repo,
		"metric": metric,
		"period_start": dates[0] if dates else NO_DATA,
		"period_end": dates[-1] if dates else NO_DATA,
		"total_count": total_count,
		"total_uniques": total_uniques,
		"daily_breakdown": breakdown,
	}


#============================================
def query_metric(
	store,
	repo: str,
	metric: str,
	start_date=None,
	end_date=None,
	today: date | None = None,
) -> dict:
	"""
	Aggregate clones or views for one repo over an optional date range.

	Args:
		store: SnapshotStore to read history from.
		repo: owner/repo identifier.
		metric: "clones" or "views".
		start_date: inclusive YYYY-MM-DD bound, ignored when unparsable.
		end_date: inclusive YYYY-MM-DD bound, ignored when unparsable.
		today: override for the current UTC date.

	Returns:
		Aggregated stats dict. An empty history yields zero totals and
		"N/A" period bounds.
	"""
	repo_name = validate_query(repo, metric)
	history = store.read_history(repo_name, metric)
	daily = deduplicate_history(history, metric)
	breakdown = filter_breakdown(daily, start_date, end_date, today=today)
	return build_stats(repo_name, metric, breakdown)


#============================================
def query_all_repos(
	store,
	repos: list[str],
	metric: str,
	start_date=None,
	end_date=None,
	today: date | None = None,
) -> tuple[dict[str, dict], dict[str, str]]:
	"""
	Query every repo, keeping successes and recording failures separately.
	"""
	results = {}
	errors = {}
	for repo in repos:
		try:
			results[repo] = query_metric(store, repo, metric, start_date, end_date, today=today)
		except traffic_errors.TrafficError as error:
			errors[repo] = str(error)
	return results, errors


#============================================
def validate_limit(limit) -> int:
	"""
	Check a top-list limit; None means the default of 10.
	"""
	if limit is None:
		return DEFAULT_TOP_LIMIT
	if isinstance(limit, bool) or not isinstance(limit, int) or limit < 0:
		raise traffic_errors.ValidationError(f"Limit must be a non-negative integer, got: {limit!r}")
	return limit


#============================================
def get_top_entries(store, repo: str, metric: str, limit: int | None = DEFAULT_TOP_LIMIT) -> list[dict]:
	"""
	Top-N entries from the latest snapshot only, sorted by count.
	"""
	if metric not in TOP_LIST_METRICS:
		raise traffic_errors.ValidationError("Metric must be 'referrers' or 'paths'")
	count_limit = validate_limit(limit)
	repo_name = traffic_settings.validate_repo_name(repo)
	latest = store.latest_snapshot(repo_name, metric)
	if latest is None:
		return []
	entries = latest.get("data")
	if not isinstance(entries, list):
		return []
	entries = [dict(entry) for entry in entries if isinstance(entry, dict)]
	entries.sort(key=lambda entry: coerce_int(entry.get("count")), reverse=True)
	return entries[:count_limit]


#============================================
def get_top_referrers(store, repo: str, limit: int | None = DEFAULT_TOP_LIMIT) -> list[dict]:
	return get_top_entries(store, repo, "referrers", limit)


#============================================
def get_top_paths(store, repo: str, limit: int | None = DEFAULT_TOP_LIMIT) -> list[dict]:
	return get_top_entries(store, repo, "paths", limit)


#============================================
def week_start(day: date) -> date:
	"""
	Monday of the ISO week containing day.
	"""
	return day - timedelta(days=day.weekday())


#============================================
def rollup(breakdown: dict[str, dict], key_fn) -> dict[str, dict]:
	"""
	Re-bucket a daily breakdown by key_fn(date) without altering values.
	"""
	buckets: dict[str, dict] = {}
	for day_key in sorted(breakdown):
		day = parse_date_bound(day_key)
		if day is None:
			continue
		bucket_key = key_fn(day)
		if bucket_key not in buckets:
			buckets[bucket_key] = {"count": 0, "uniques": 0}
		stats = breakdown[day_key]
		buckets[bucket_key]["count"] += coerce_int(stats.get("count"))
		buckets[bucket_key]["uniques"] += coerce_int(stats.get("uniques"))
	return buckets


#============================================
def rollup_weekly(breakdown: dict[str, dict]) -> dict[str, dict]:
	"""
	Weekly totals keyed by the Monday that starts each week.
	"""
	return rollup(breakdown, lambda day: week_start(day).isoformat())


#============================================
def rollup_monthly(breakdown: dict[str, dict]) -> dict[str, dict]:
	"""
	Monthly totals keyed by YYYY-MM.
	"""
	return rollup(breakdown, lambda day: day.strftime("%Y-%m"))
