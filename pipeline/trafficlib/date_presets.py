"""Named date ranges for analytics queries.

Built-in presets resolve relative to the current UTC date. Weeks start
on Monday, the same convention traffic_analytics.rollup_weekly uses.
Custom presets come from settings as fixed ranges or trailing windows:

	date_presets:
	  custom:
	    launch_week: {start: 2025-01-06, end: 2025-01-12}
	    last_two_weeks: {days: 14}
"""

from datetime import date
from datetime import timedelta

from trafficlib import traffic_analytics
from trafficlib import traffic_errors
from trafficlib import traffic_settings


#============================================
def quarter_start(day: date) -> date:
	first_month = ((day.month - 1) // 3) * 3 + 1
	return date(day.year, first_month, 1)


BUILTIN_PRESETS = {
	"today": lambda today: (today, today),
	"yesterday": lambda today: (today - timedelta(days=1), today - timedelta(days=1)),
	"last_week": lambda today: (today - timedelta(days=7), today),
	"last_month": lambda today: (today - timedelta(days=30), today),
	"last_quarter": lambda today: (today - timedelta(days=90), today),
	"last_year": lambda today: (today - timedelta(days=365), today),
	"this_week": lambda today: (traffic_analytics.week_start(today), today),
	"this_month": lambda today: (today.replace(day=1), today),
	"this_quarter": lambda today: (quarter_start(today), today),
	"this_year": lambda today: (date(today.year, 1, 1), today),
}


#============================================
def presets_enabled(settings: dict) -> bool:
	return traffic_settings.get_setting_bool(settings, ["date_presets", "enabled"], True)


#============================================
def enabled_builtins(settings: dict) -> list[str]:
	"""
	Built-in preset names enabled in settings (all of them by default).
	"""
	names = traffic_settings.get_setting_list(
		settings,
		["date_presets", "builtins"],
		list(BUILTIN_PRESETS),
	)
	return [name for name in names if name in BUILTIN_PRESETS]


#============================================
def custom_presets(settings: dict) -> dict:
	value = traffic_settings.get_nested_value(settings, ["date_presets", "custom"], {})
	if value is None:
		return {}
	if not isinstance(value, dict):
		raise traffic_errors.ConfigurationError("date_presets.custom must be a mapping")
	return value


#============================================
def list_presets(settings: dict) -> list[str]:
	"""
	Sorted names of every available preset.
	"""
	if not presets_enabled(settings):
		return []
	names = set(enabled_builtins(settings))
	names.update(str(name) for name in custom_presets(settings))
	return sorted(names)


#============================================
def resolve_custom(name: str, definition, today: date) -> tuple[date, date]:
	"""
	Resolve one custom preset definition into a date range.
	"""
	if not isinstance(definition, dict):
		raise traffic_errors.ValidationError(f"Custom preset '{name}' must be a mapping")
	if "days" in definition:
		try:
			days = int(definition["days"])
		except (TypeError, ValueError) as error:
			raise traffic_errors.ValidationError(
				f"Custom preset '{name}' has invalid days: {definition['days']!r}"
			) from error
		if days < 0:
			raise traffic_errors.ValidationError(f"Custom preset '{name}' days must be >= 0")
		return today - timedelta(days=days), today
	start = traffic_analytics.parse_date_bound(str(definition.get("start", "")))
	end = traffic_analytics.parse_date_bound(str(definition.get("end", "")))
	if (start is None) or (end is None):
		raise traffic_errors.ValidationError(
			f"Custom preset '{name}' returned invalid date format"
		)
	if start > end:
		raise traffic_errors.ValidationError(f"Custom preset '{name}' starts after it ends")
	return start, end


#============================================
def resolve_preset(name: str, settings: dict, today: date | None = None) -> tuple[str, str]:
	"""
	Resolve a preset name to ISO start and end dates.
	"""
	if not name:
		raise traffic_errors.ValidationError("Empty preset name")
	if not presets_enabled(settings):
		raise traffic_errors.ValidationError("Date presets are disabled")
	current = today or traffic_analytics.utc_today()
	if name in enabled_builtins(settings):
		start, end = BUILTIN_PRESETS[name](current)
		return start.isoformat(), end.isoformat()
	custom = custom_presets(settings)
	if name in custom:
		start, end = resolve_custom(name, custom[name], current)
		return start.isoformat(), end.isoformat()
	raise traffic_errors.ValidationError(f"Unknown preset: {name}")


#============================================
def is_preset(text, settings: dict) -> bool:
	"""
	True when text names an available preset rather than an ISO date.
	"""
	if not isinstance(text, str) or not text:
		return False
	if traffic_analytics.parse_date_bound(text) is not None:
		return False
	return text in list_presets(settings)


#============================================
def resolve_date_range(start_value, end_value, settings: dict, today: date | None = None) -> tuple:
	"""
	Turn user-supplied bounds (ISO dates or preset names) into ISO dates.

	A preset in the start position supplies both bounds unless an explicit
	end is given. Plain values pass through untouched so the analytics
	layer applies its own unbounded-on-unparsable policy.
	"""
	start_date = start_value
	end_date = end_value
	if is_preset(start_value, settings):
		start_date, preset_end = resolve_preset(start_value, settings, today=today)
		if not end_value:
			end_date = preset_end
	if is_preset(end_value, settings):
		_, end_date = resolve_preset(end_value, settings, today=today)
	return start_date, end_date
