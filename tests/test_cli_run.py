import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from agent_workflow.cli import app


runner = CliRunner()
EXAMPLES = Path(__file__).resolve().parents[1] / "examples"


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for key in ("WORKFLOW_WORKERS", "WORKFLOW_LOG_LEVEL", "WORKFLOW_LOG_FORMAT", "OPENAI_MODEL"):
        monkeypatch.delenv(key, raising=False)


def test_cli_run_simulated_demo():
    r = runner.invoke(app, ["run", str(EXAMPLES / "demo-plan.yaml"), "--query", "hi", "--simulate"])
    assert r.exit_code == 0
    assert "report ready" in r.stdout
    assert "done" in r.stdout


def test_cli_run_simulated_json():
    r = runner.invoke(
        app,
        ["run", str(EXAMPLES / "branching-plan.yaml"), "-q", "topic", "--simulate", "--format", "json"],
    )
    assert r.exit_code == 0
    payload = json.loads(r.stdout)
    assert payload["command"] == "run"
    assert payload["ok"] is True
    result = payload["result"]
    assert result["state"] == "completed"
    assert result["skipped"] == ["reject"]
    assert result["output"] == "stats: 3 sources\n\npublished"
    assert result["request_id"]


def test_cli_run_with_config_registries():
    r = runner.invoke(
        app,
        [
            "run",
            str(EXAMPLES / "demo-plan.yaml"),
            "--query",
            "hi",
            "--config",
            str(EXAMPLES / "workflow-config.yaml"),
            "--workers",
            "1",
        ],
    )
    assert r.exit_code == 0
    assert "report ready" in r.stdout


def test_cli_run_failure_exit_code(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    r = runner.invoke(app, ["run", str(EXAMPLES / "branching-plan.yaml"), "--query", "topic"])
    assert r.exit_code == 3
    assert "E_NODE_EXECUTION_FAILED" in r.output


def test_cli_run_compile_error():
    r = runner.invoke(app, ["run", str(EXAMPLES / "invalid-cycle.yaml"), "--query", "q", "--simulate"])
    assert r.exit_code == 2
    assert "E_CYCLE_DETECTED" in r.output


def test_cli_run_bad_config(tmp_path):
    p = tmp_path / "config.yaml"
    p.write_text("workers: lots\n", encoding="utf-8")
    r = runner.invoke(app, ["run", str(EXAMPLES / "demo-plan.yaml"), "--query", "q", "--config", str(p)])
    assert r.exit_code == 2
    assert "config error" in r.output


def test_cli_run_unresolvable_tool(tmp_path):
    p = tmp_path / "config.yaml"
    p.write_text("tools:\n  echo: no_such_module_xyz:run\n", encoding="utf-8")
    r = runner.invoke(app, ["run", str(EXAMPLES / "demo-plan.yaml"), "--query", "q", "--config", str(p)])
    assert r.exit_code == 2
    assert "config error" in r.output
