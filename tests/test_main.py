"""Command-line runs against a project directory on disk."""

import json

import pandas as pd
import pytest

from allocation_intel.main import main

RESOURCES = [
    {"id": "r1", "name": "Alice", "role": "Developer", "billing_rate": 150, "cost_rate": 80, "skills": ["python"]},
    {"id": "r2", "name": "Bob", "role": "Developer", "billing_rate": 120, "cost_rate": 90, "skills": ["python"]},
    {"id": "r3", "name": "Cara", "role": "Designer", "billing_rate": 100, "cost_rate": 50, "skills": []},
]

PROJECTS_CSV = """id,name,status,start_date,end_date,required_skills
p1,Payments Platform,Active,2025-03-01,2025-03-31,python
p2,Mobile App,Active,2025-03-01,2025-03-31,python
"""

ALLOCATIONS_CSV = """id,resource_id,project_id,start_date,end_date,utilization
a1,r1,p1,2025-03-01,2025-03-31,80
a2,r1,p2,2025-03-01,2025-03-31,40
a3,r2,p1,2025-03-03,2025-03-09,130
a4,r2,p2,2025-03-01,2025-03-31,20
"""

WINDOW = ["--start", "2025-03-01", "--end", "2025-03-31"]


def _write_inputs(directory):
    directory.mkdir(parents=True, exist_ok=True)
    (directory / "resources.json").write_text(json.dumps(RESOURCES))
    (directory / "projects.csv").write_text(PROJECTS_CSV)
    (directory / "allocations.csv").write_text(ALLOCATIONS_CSV)


@pytest.fixture
def project_dir(tmp_path):
    _write_inputs(tmp_path / "input")
    return tmp_path


def test_forecast_writes_json_and_weekly_table(project_dir):
    main(["forecast", "--project-dir", str(project_dir), *WINDOW])
    payload = json.loads((project_dir / "output" / "organization_forecast.json").read_text())
    assert payload["summary"]["total_resources"] == 3
    assert payload["is_fallback_data"] is False
    weekly = pd.read_csv(project_dir / "output" / "weekly_utilization.csv")
    assert list(weekly.columns) == ["start_date", "end_date", "resource_id", "resource_name", "utilization", "status"]
    assert len(weekly) == 5 * 3


def test_bottlenecks_table(project_dir):
    main(["bottlenecks", "--project-dir", str(project_dir), *WINDOW])
    table = pd.read_csv(project_dir / "output" / "bottlenecks.csv")
    assert sorted(table["resource_id"]) == ["r1", "r2"]
    assert set(table["start_date"]) == {"2025-03-01"}


def test_rebalance_to_custom_outdir(project_dir, tmp_path):
    outdir = tmp_path / "elsewhere"
    main(["rebalance", "--project-dir", str(project_dir), "--outdir", str(outdir), *WINDOW])
    payload = json.loads((outdir / "rebalancing.json").read_text())
    assert payload["adjustments_needed"] is True
    assert (outdir / "rebalancing_suggestions.csv").exists()


def test_optimize_writes_changes(project_dir):
    main(["optimize", "--project-dir", str(project_dir), "--goal", "cost", *WINDOW])
    payload = json.loads((project_dir / "output" / "financial_optimization.json").read_text())
    assert payload["optimization_goal"] == "cost"
    assert (project_dir / "output" / "optimized_allocations.csv").exists()


def test_dry_run_prints_summary(project_dir, capsys):
    main(["match", "--project-dir", str(project_dir), "--project", "p1", "--dry-run", *WINDOW])
    out = capsys.readouterr().out
    assert out.startswith("Matches for Payments Platform:")
    assert not (project_dir / "output").exists()


def test_config_file_is_applied(project_dir, capsys):
    (project_dir / "input" / "config.json").write_text(json.dumps({"bench_threshold_pct": 90}))
    main(["bench", "--project-dir", str(project_dir), "--resource", "r2", "--dry-run", *WINDOW])
    assert "Bob: 24 bench days" in capsys.readouterr().out


def test_fallback_directory_is_used_and_flagged(tmp_path):
    project_dir = tmp_path / "project"
    (project_dir / "input").mkdir(parents=True)
    sample_dir = tmp_path / "sample"
    _write_inputs(sample_dir)
    main(["forecast", "--project-dir", str(project_dir), "--fallback-dir", str(sample_dir), *WINDOW])
    payload = json.loads((project_dir / "output" / "organization_forecast.json").read_text())
    assert payload["is_fallback_data"] is True
    assert payload["notice"]


def test_missing_project_dir_exits_2(tmp_path, capsys):
    with pytest.raises(SystemExit) as excinfo:
        main(["forecast", "--project-dir", str(tmp_path / "nope"), *WINDOW])
    assert excinfo.value.code == 2
    assert "project directory not found" in capsys.readouterr().err


def test_unreadable_inputs_without_fallback_exit_2(tmp_path):
    (tmp_path / "input").mkdir()
    with pytest.raises(SystemExit) as excinfo:
        main(["forecast", "--project-dir", str(tmp_path), *WINDOW])
    assert excinfo.value.code == 2


def test_unknown_resource_exits_1(project_dir, capsys):
    with pytest.raises(SystemExit) as excinfo:
        main(["forecast", "--project-dir", str(project_dir), "--resource", "ghost", *WINDOW])
    assert excinfo.value.code == 1
    assert "resource ghost not found" in capsys.readouterr().err


def test_inverted_window_exits_1(project_dir):
    with pytest.raises(SystemExit) as excinfo:
        main(["bench", "--project-dir", str(project_dir), "--start", "2025-03-31", "--end", "2025-03-01"])
    assert excinfo.value.code == 1
