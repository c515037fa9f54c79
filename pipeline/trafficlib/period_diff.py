"""Period-over-period comparison of clones or views.

Both periods are cut from one unfiltered query so they share the same
deduplicated timeline. Average per day divides by days that actually
have data, which keeps a 28-day month comparable with a 31-day one.
"""

import calendar
import math
import re
from datetime import date

from trafficlib import traffic_analytics
from trafficlib import traffic_errors


PERIOD_MONTH_RE = re.compile(r"^(\d{4})-(\d{2})$")
PERIOD_YEAR_RE = re.compile(r"^(\d{4})$")
INFINITE_INCREASE = math.inf
INFINITE_INCREASE_TEXT = "+∞"


#============================================
def parse_period(period) -> tuple[date, date]:
	"""
	Parse YYYY or YYYY-MM into inclusive start and end dates.
	"""
	text = period.strip() if isinstance(period, str) else ""
	match = PERIOD_MONTH_RE.match(text)
	if match:
		year = int(match.group(1))
		month = int(match.group(2))
		if not 1 <= month <= 12:
			raise traffic_errors.PeriodFormatError(
				f"Invalid period format: {period} (month must be 01-12)"
			)
		last_day = calendar.monthrange(year, month)[1]
		return date(year, month, 1), date(year, month, last_day)
	match = PERIOD_YEAR_RE.match(text)
	if match:
		year = int(match.group(1))
		if year < 1:
			raise traffic_errors.PeriodFormatError(f"Invalid period format: {period}")
		return date(year, 1, 1), date(year, 12, 31)
	raise traffic_errors.PeriodFormatError(
		f"Invalid period format: {period} (expected YYYY-MM or YYYY)"
	)


#============================================
def filter_by_period(breakdown: dict[str, dict], start: date, end: date) -> dict[str, dict]:
	"""
	Keep breakdown entries whose date falls inside [start, end].
	"""
	filtered = {}
	for day_key, stats in breakdown.items():
		day = traffic_analytics.parse_date_bound(day_key)
		if day is None:
			continue
		if start <= day <= end:
			filtered[day_key] = stats
	return filtered


#============================================
def calculate_period_stats(breakdown: dict[str, dict]) -> dict:
	total_count, total_uniques = traffic_analytics.summarize_breakdown(breakdown)
	return {
		"total_count": total_count,
		"total_uniques": total_uniques,
		"days": len(breakdown),
	}


#============================================
def calculate_change(old_value: float, new_value: float) -> tuple[float, str]:
	"""
	Percentage change from old to new, with an explicit infinite sentinel.
	"""
	if old_value == 0:
		if new_value == 0:
			return 0.0, "±0.0%"
		return INFINITE_INCREASE, INFINITE_INCREASE_TEXT
	change = ((new_value - old_value) / old_value) * 100
	sign = "+" if change >= 0 else ""
	return change, f"{sign}{change:.1f}%"


#============================================
def build_period_entry(name: str, stats: dict) -> dict:
	days = stats["days"]
	return {
		"name": name,
		"total_count": stats["total_count"],
		"total_uniques": stats["total_uniques"],
		"days": days,
		"avg_count": (stats["total_count"] / days) if days > 0 else 0,
		"avg_uniques": (stats["total_uniques"] / days) if days > 0 else 0,
	}


#============================================
def compare_periods(store, repo: str, metric: str, period1: str, period2: str, today: date | None = None) -> dict:
	"""
	Compare totals and daily averages between two named periods.

	Args:
		store: SnapshotStore with the repo history.
		repo: owner/repo identifier.
		metric: "clones" or "views".
		period1: baseline period, YYYY or YYYY-MM.
		period2: compared period, YYYY or YYYY-MM.
		today: override for the current UTC date.

	Returns:
		Comparison dict with period1, period2 and changes sections.
	"""
	try:
		start1, end1 = parse_period(period1)
	except traffic_errors.PeriodFormatError as error:
		raise traffic_errors.PeriodFormatError(f"Invalid period1: {error}") from error
	try:
		start2, end2 = parse_period(period2)
	except traffic_errors.PeriodFormatError as error:
		raise traffic_errors.PeriodFormatError(f"Invalid period2: {error}") from error

	stats = traffic_analytics.query_metric(store, repo, metric, today=today)
	breakdown = stats["daily_breakdown"]
	stats1 = calculate_period_stats(filter_by_period(breakdown, start1, end1))
	stats2 = calculate_period_stats(filter_by_period(breakdown, start2, end2))

	count_change, count_change_str = calculate_change(stats1["total_count"], stats2["total_count"])
	unique_change, unique_change_str = calculate_change(stats1["total_uniques"], stats2["total_uniques"])
	return {
		"repo": stats["repo"],
		"metric": metric,
		"period1": build_period_entry(period1, stats1),
		"period2": build_period_entry(period2, stats2),
		"changes": {
			"count_change": count_change,
			"count_change_str": count_change_str,
			"unique_change": unique_change,
			"unique_change_str": unique_change_str,
		},
	}


#============================================
def format_number(value: float) -> str:
	return f"{int(math.floor(value)):,}"


#============================================
def format_comparison(comparison: dict) -> list[str]:
	"""
	Render a comparison as plain text lines.
	"""
	lines = [
		f"Period Comparison: {comparison['repo']} - {comparison['metric']}",
		"═" * 70,
	]
	for key in ("period1", "period2"):
		entry = comparison[key]
		label = "Period 1" if key == "period1" else "Period 2"
		lines.extend([
			"",
			f"{label}: {entry['name']}",
			f"  Total Count:   {format_number(entry['total_count'])}",
			f"  Total Uniques: {format_number(entry['total_uniques'])}",
			f"  Days:          {entry['days']}",
			f"  Avg/Day:       {entry['avg_count']:.1f} count, {entry['avg_uniques']:.1f} uniques",
		])
	lines.extend([
		"",
		"Changes:",
		"─" * 70,
		f"  Count:   {comparison['changes']['count_change_str']}",
		f"  Uniques: {comparison['changes']['unique_change_str']}",
	])
	return lines
