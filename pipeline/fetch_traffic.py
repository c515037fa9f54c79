#!/usr/bin/env python3
import argparse

from trafficlib import console_log
from trafficlib import diagnostics
from trafficlib import fetch_orchestrator
from trafficlib import traffic_errors
from trafficlib import traffic_settings


#============================================
def parse_args() -> argparse.Namespace:
	"""
	Parse command-line arguments.
	"""
	parser = argparse.ArgumentParser(
		description="Fetch GitHub traffic snapshots for configured repositories."
	)
	parser.add_argument(
		"--settings",
		default="settings.yaml",
		help="YAML settings path.",
	)
	parser.add_argument(
		"--force",
		action="store_true",
		help="Fetch even when the fetch interval has not elapsed.",
	)
	parser.add_argument(
		"--check",
		action="store_true",
		help="Run configuration and connectivity checks instead of fetching.",
	)
	args = parser.parse_args()
	return args


#============================================
def main() -> None:
	"""
	Run one fetch (or the diagnostic checks) and log the outcome.
	"""
	args = parse_args()
	try:
		settings, settings_path = traffic_settings.load_settings(args.settings)
		log_fn = console_log.make_log_fn(traffic_settings.get_notification_level(settings))
	except traffic_errors.ConfigurationError as error:
		console_log.log_step(str(error), "error")
		raise SystemExit(2)
	log_fn(f"Using settings file: {settings_path}")

	if args.check:
		rows = diagnostics.run_checks(settings)
		for section, ok, message in rows:
			log_fn(f"{section}: {message}", "info" if ok else "error")
		return

	orchestrator = fetch_orchestrator.FetchOrchestrator(settings, log_fn=log_fn)
	summary = orchestrator.fetch_all(force=args.force)
	for key, message in summary["errors"].items():
		log_fn(f"{key}: {message}", "error")
	if summary["errors"] and not summary["success"]:
		raise SystemExit(1)


if __name__ == "__main__":
	main()
