import pytest

from agent_workflow.core.settings import EngineSettings, SettingsError, load_settings


def test_defaults():
    s = load_settings(env={})
    assert s == EngineSettings()
    assert s.workers == 4
    assert s.log_format == "text"


def test_load_file(tmp_path):
    p = tmp_path / "config.yaml"
    p.write_text(
        "workers: 8\npoll_interval_s: 1\nlog_level: info\ntools:\n  echo: textwrap:dedent\n",
        encoding="utf-8",
    )
    s = load_settings(p, env={})
    assert s.workers == 8
    assert s.poll_interval_s == 1.0
    assert s.log_level == "info"
    assert s.tools == {"echo": "textwrap:dedent"}
    assert s.tasks == {}


def test_empty_file_means_defaults(tmp_path):
    p = tmp_path / "config.yaml"
    p.write_text("", encoding="utf-8")
    assert load_settings(p, env={}) == EngineSettings()


def test_env_overrides_file(tmp_path):
    p = tmp_path / "config.yaml"
    p.write_text("workers: 8\ndefault_model: from-file\n", encoding="utf-8")
    s = load_settings(
        p,
        env={
            "WORKFLOW_WORKERS": "2",
            "WORKFLOW_LOG_LEVEL": "DEBUG",
            "WORKFLOW_LOG_FORMAT": "json",
            "OPENAI_MODEL": "from-env",
        },
    )
    assert s.workers == 2
    assert s.log_level == "DEBUG"
    assert s.log_format == "json"
    assert s.default_model == "from-env"


@pytest.mark.parametrize(
    "body",
    [
        "- a\n",
        "unknown_key: 1\n",
        "workers: many\n",
        "workers: true\n",
        "workers: 0\n",
        "poll_interval_s: fast\n",
        "log_format: xml\n",
        "log_level: LOUD\n",
        "tools: [a, b]\n",
        "tasks:\n  t: not-an-import-path\n",
    ],
)
def test_invalid_files(tmp_path, body):
    p = tmp_path / "config.yaml"
    p.write_text(body, encoding="utf-8")
    with pytest.raises(SettingsError):
        load_settings(p, env={})


def test_invalid_env():
    with pytest.raises(SettingsError):
        load_settings(env={"WORKFLOW_WORKERS": "lots"})


def test_settings_error_is_value_error(tmp_path):
    with pytest.raises(ValueError):
        load_settings(tmp_path / "missing.yaml", env={})
