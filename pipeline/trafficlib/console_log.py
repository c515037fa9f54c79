from datetime import datetime

import rich.console


NOTIFICATION_LEVELS = ("all", "errors", "silent")
RICH_CONSOLE = rich.console.Console(stderr=True)


#============================================
def pick_style(message: str, level: str) -> str:
	"""
	Choose a rich style from log level and message keywords.
	"""
	if level == "error":
		return "bold red"
	if level == "warn":
		return "yellow"
	lower = message.lower()
	if ("failed" in lower) or ("error" in lower):
		return "bold red"
	if ("rate limit" in lower) or ("skipping" in lower) or ("not elapsed" in lower):
		return "yellow"
	if ("stored " in lower) or ("fetched" in lower):
		return "green"
	return "cyan"


#============================================
def log_step(message: str, level: str = "info") -> None:
	"""
	Print one timestamped progress line.
	"""
	now_text = datetime.now().strftime("%H:%M:%S")
	line = f"[github_traffic {now_text}] {message}"
	RICH_CONSOLE.print(line, style=pick_style(message, level), markup=False, highlight=False)


#============================================
def should_emit(level: str, notification_level: str) -> bool:
	"""
	Decide whether a message at level passes the configured filter.
	"""
	if notification_level == "silent":
		return False
	if notification_level == "errors":
		return level in ("warn", "error")
	return True


#============================================
def make_log_fn(notification_level: str = "all", sink=None):
	"""
	Build a log_fn(message, level) honouring the notification level.
	"""
	if notification_level not in NOTIFICATION_LEVELS:
		notification_level = "all"
	target = sink or log_step

	def log_fn(message: str, level: str = "info") -> None:
		if should_emit(level, notification_level):
			target(message, level)

	return log_fn
