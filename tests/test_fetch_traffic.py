import os
import sys

import pytest

REPO_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
PIPELINE_DIR = os.path.join(REPO_ROOT, "pipeline")
if PIPELINE_DIR not in sys.path:
	sys.path.insert(0, PIPELINE_DIR)

import fetch_traffic


#============================================
def write_settings(tmp_path, body: str) -> str:
	settings_path = tmp_path / "settings.yaml"
	settings_path.write_text(body, encoding="utf-8")
	return str(settings_path)


#============================================
def test_main_exits_2_on_bad_settings(tmp_path, monkeypatch) -> None:
	settings_path = write_settings(tmp_path, "notifications:\n  level: loud\n")
	monkeypatch.setattr(sys, "argv", ["fetch_traffic.py", "--settings", settings_path])
	with pytest.raises(SystemExit) as info:
		fetch_traffic.main()
	assert info.value.code == 2


#============================================
def test_main_exits_1_when_nothing_succeeds(tmp_path, monkeypatch) -> None:
	"""
	A missing token aborts the run, which has errors and no successes.
	"""
	monkeypatch.delenv("TRAFFIC_CLI_TOKEN", raising=False)
	settings_path = write_settings(
		tmp_path,
		"github:\n  repos: [octo/repo]\n  token_env_var: TRAFFIC_CLI_TOKEN\n"
		+ f"storage:\n  data_dir: {tmp_path / 'data'}\n"
		+ "notifications:\n  level: silent\n",
	)
	monkeypatch.setattr(sys, "argv", ["fetch_traffic.py", "--settings", settings_path, "--force"])
	with pytest.raises(SystemExit) as info:
		fetch_traffic.main()
	assert info.value.code == 1


#============================================
def test_main_skips_without_repos(tmp_path, monkeypatch) -> None:
	settings_path = write_settings(
		tmp_path,
		f"storage:\n  data_dir: {tmp_path / 'data'}\nnotifications:\n  level: silent\n",
	)
	monkeypatch.setattr(sys, "argv", ["fetch_traffic.py", "--settings", settings_path])
	assert fetch_traffic.main() is None
