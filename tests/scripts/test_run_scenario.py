from __future__ import annotations

import os
import subprocess
import sys
from pathlib import Path

import yaml

ROOT = Path(__file__).resolve().parents[2]
SCRIPT = ROOT / "scripts" / "cli" / "run_scenario.py"


def _run(args: list[str]) -> subprocess.CompletedProcess[str]:
    return subprocess.run(
        [sys.executable, str(SCRIPT), *args],
        cwd=ROOT,
        capture_output=True,
        text=True,
        env={**os.environ, "PYTHONIOENCODING": "utf-8"},
    )


def _write_scenario(tmp_path: Path) -> Path:
    scenario = {
        "name": "cli_case",
        "calendar": {
            "start_year": 2005,
            "inter_year1": 2020,
            "inter_year2": 2050,
            "end_year": 2100,
            "time_step1": 5,
            "time_step2": 5,
            "time_step3": 10,
            "data_end_year": 2020,
            "data_time_step": 5,
        },
        "final_year": 2010,
        "markets": [{"good": "wheat", "region": "USA", "initial_price": 1.0}],
        "curves": [
            {"good": "wheat", "region": "USA", "side": "supply", "slope": 2.0},
            {"good": "wheat", "region": "USA", "side": "demand", "intercept": 9.0, "slope": 1.0},
        ],
        "output": {"trace_path": "configured/trace.csv", "key_path": "configured/key.csv"},
    }
    path = tmp_path / "scenario.yaml"
    path.write_text(yaml.safe_dump(scenario), encoding="utf-8")
    return path


def test_configured_output_paths(tmp_path: Path) -> None:
    proc = _run([str(_write_scenario(tmp_path))])

    assert proc.returncode == 0, proc.stdout + "\n" + proc.stderr
    assert (tmp_path / "configured" / "trace.csv").exists()
    assert (tmp_path / "configured" / "key.csv").exists()


def test_trace_override_keeps_configured_key(tmp_path: Path) -> None:
    trace = tmp_path / "override" / "trace.csv"
    proc = _run([str(_write_scenario(tmp_path)), "--trace", str(trace)])

    assert proc.returncode == 0, proc.stdout + "\n" + proc.stderr
    assert trace.exists()
    assert (tmp_path / "configured" / "key.csv").exists()
    assert not (tmp_path / "configured" / "trace.csv").exists()


def test_trace_key_override_alone(tmp_path: Path) -> None:
    key = tmp_path / "override" / "key.csv"
    proc = _run([str(_write_scenario(tmp_path)), "--trace-key", str(key)])

    assert proc.returncode == 0, proc.stdout + "\n" + proc.stderr
    assert key.exists()
    assert (tmp_path / "configured" / "trace.csv").exists()
    assert not (tmp_path / "configured" / "key.csv").exists()


def test_malformed_yaml_is_a_configuration_error(tmp_path: Path) -> None:
    config = tmp_path / "broken.yaml"
    config.write_text("calendar: {start_year: 2005\nmarkets: [\n", encoding="utf-8")
    proc = _run([str(config)])

    assert proc.returncode == 1, proc.stdout + "\n" + proc.stderr
    assert "Could not parse" in proc.stdout
    assert "Traceback" not in proc.stderr
