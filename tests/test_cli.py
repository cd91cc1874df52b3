import json

import pandas as pd
import pytest

from resource_planner.io_utils import load_config, load_graph, save_graph
from resource_planner.main import main

GRAPH = {
    "nodes": [
        {"id": "P", "type": "feature", "title": "Checkout", "directEstimate": 1},
        {
            "id": "c1",
            "type": "feature",
            "title": "Cart",
            "directEstimate": 3,
            "startDate": "2024-01-08",
            "endDate": "2024-01-12",
            "teamAllocations": json.dumps(
                [{"teamId": "t1", "allocatedMembers": [{"memberId": "m1", "hours": 30}]}]
            ),
        },
        {
            "id": "c2",
            "type": "feature",
            "title": "Payment",
            "directEstimate": 4,
            "startDate": "2024-01-08",
            "endDate": "2024-01-12",
            "teamAllocations": [{"teamId": "t1", "allocatedMembers": [{"memberId": "m1", "hours": 20}]}],
        },
    ],
    "members": [{"id": "m1", "name": "Ada", "dailyRate": 800}],
    "edges": [
        {"id": "e1", "source": "P", "target": "c1", "type": "PARENT_CHILD"},
        {"id": "e2", "source": "P", "target": "c2", "type": "PARENT_CHILD"},
    ],
}


def _project(tmp_path, config=None):
    input_dir = tmp_path / "input"
    input_dir.mkdir()
    (input_dir / "graph.json").write_text(json.dumps(GRAPH))
    if config is not None:
        (input_dir / "config.json").write_text(json.dumps(config))
    return tmp_path


def test_load_config_defaults(tmp_path):
    path = tmp_path / "config.json"
    path.write_text("{}")
    cfg = load_config(path)
    assert (cfg.hours_per_day, cfg.days_per_week, cfg.default_duration_days) == (8, 5, 10)
    assert cfg.recalculation_timeout_seconds is None


@pytest.mark.parametrize(
    "payload, message",
    [
        ({"days_per_week": 8}, "days_per_week"),
        ({"hours_per_day": 0}, "hours_per_day"),
        ({"default_duration_days": 2.5}, "default_duration_days"),
        ({"recalculation_timeout_seconds": -1}, "recalculation_timeout_seconds"),
    ],
)
def test_load_config_rejects_invalid_values(tmp_path, payload, message):
    path = tmp_path / "config.json"
    path.write_text(json.dumps(payload))
    with pytest.raises(ValueError, match=message):
        load_config(path)


def test_graph_round_trips_through_json(tmp_path):
    source = tmp_path / "graph.json"
    source.write_text(json.dumps(GRAPH))
    store = load_graph(source)
    target = tmp_path / "saved.json"
    save_graph(store, target)
    reloaded = load_graph(target)
    assert reloaded.list_nodes() == store.list_nodes()
    assert reloaded.get_children("feature", "P") == store.get_children("feature", "P")


def test_cli_writes_reports(tmp_path, capsys):
    project = _project(tmp_path)
    main(["--project-dir", str(project)])
    availability = pd.read_csv(project / "output" / "weekly_availability.csv")
    assert availability["allocated_hours"].tolist() == [50]
    assert availability["over_allocated"].tolist() == [True]
    costs = pd.read_csv(project / "output" / "cost_summary.csv")
    assert costs["node_id"].tolist() == ["c1", "c2"]
    assert costs["cost"].sum() == pytest.approx(5000)
    out = capsys.readouterr().out
    assert "Over-allocated members:" in out


def test_cli_recalculate_saves_graph(tmp_path, capsys):
    project = _project(tmp_path, {"logging_level": "WARNING"})
    main(["--project-dir", str(project), "--recalculate", "feature:c1"])
    saved = json.loads((project / "input" / "graph.json").read_text())
    parent = next(node for node in saved["nodes"] if node["id"] == "P")
    assert parent["rollup_estimate"] == 8
    assert parent["rollup_cost"] == pytest.approx(5000)
    assert "Recalculation Succeeded" in capsys.readouterr().out


def test_cli_dry_run_writes_nothing(tmp_path, capsys):
    project = _project(tmp_path)
    main(["--project-dir", str(project), "--dry-run", "--recalculate", "feature:P"])
    assert not (project / "output").exists()
    saved = json.loads((project / "input" / "graph.json").read_text())
    assert saved == GRAPH
    out = capsys.readouterr().out
    assert "m1 Ada" in out
    assert "Total allocated cost: 5000.00" in out


def test_cli_failed_recalculation_exits_1(tmp_path, capsys):
    project = _project(tmp_path)
    with pytest.raises(SystemExit) as excinfo:
        main(["--project-dir", str(project), "--recalculate", "feature:missing"])
    assert excinfo.value.code == 1
    assert "Stopped at missing" in capsys.readouterr().err


@pytest.mark.parametrize(
    "args, in_project",
    [
        (["--graph", "does-not-exist.json"], False),
        ([], False),
        (["--recalculate", "no-separator"], True),
        (["--config", "missing-config.json"], True),
    ],
)
def test_cli_input_errors_exit_2(tmp_path, args, in_project):
    project = _project(tmp_path)
    if in_project:
        args = ["--project-dir", str(project), *args]
    with pytest.raises(SystemExit) as excinfo:
        main(args)
    assert excinfo.value.code == 2


def _misdated_project(tmp_path):
    graph = json.loads(json.dumps(GRAPH))
    graph["nodes"][0].update({"startDate": "soon", "endDate": "2024-01-12"})
    input_dir = tmp_path / "input"
    input_dir.mkdir()
    (input_dir / "graph.json").write_text(json.dumps(graph))
    return tmp_path


def test_cli_recalculation_stops_at_misdated_parent(tmp_path, capsys):
    project = _misdated_project(tmp_path)
    with pytest.raises(SystemExit) as excinfo:
        main(["--project-dir", str(project), "--recalculate", "feature:c1"])
    assert excinfo.value.code == 1
    assert "Stopped at P" in capsys.readouterr().err
    saved = json.loads((project / "input" / "graph.json").read_text())
    child = next(node for node in saved["nodes"] if node["id"] == "c1")
    assert child["rollup_estimate"] == 3


def test_cli_reports_on_misdated_graph_exit_2(tmp_path, capsys):
    project = _misdated_project(tmp_path)
    with pytest.raises(SystemExit) as excinfo:
        main(["--project-dir", str(project)])
    assert excinfo.value.code == 2
    assert "soon" in capsys.readouterr().err
    assert not (project / "output").exists()
