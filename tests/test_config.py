import pytest

from rulebench.core.config import (DEFAULT_BATCH_SIZE, DEFAULT_CORRELATION_WINDOW,
                                   DEFAULT_CRITICAL_THRESHOLD, DEFAULT_MAX_WORKERS, Config)

ENV_VARS = ("RULEBENCH_CRITICAL_THRESHOLD", "RULEBENCH_MAX_WORKERS", "RULEBENCH_BATCH_SIZE",
            "RULEBENCH_CORRELATION_WINDOW", "RULEBENCH_INDICATORS")


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for var in ENV_VARS:
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(
        "validation:\n"
        "  critical_threshold: 80\n"
        "  max_workers: 2\n"
        "  batch_size: 100\n"
        "scoring:\n"
        "  correlation_window_seconds: 60\n"
        "indicators:\n"
        "  path: rules/process.yaml\n",
        encoding="utf-8",
    )
    return str(path)


def test_defaults_without_file(tmp_path):
    config = Config(config_path=str(tmp_path / "missing.yaml"))

    assert config.critical_threshold == DEFAULT_CRITICAL_THRESHOLD
    assert config.max_workers == DEFAULT_MAX_WORKERS
    assert config.batch_size == DEFAULT_BATCH_SIZE
    assert config.correlation_window_seconds == DEFAULT_CORRELATION_WINDOW
    assert config.indicators_path == ""


def test_yaml_values(config_file):
    config = Config(config_path=config_file)

    assert config.critical_threshold == 80
    assert config.max_workers == 2
    assert config.batch_size == 100
    assert config.correlation_window_seconds == 60
    assert config.indicators_path == "rules/process.yaml"


def test_environment_overrides_yaml(config_file, monkeypatch):
    monkeypatch.setenv("RULEBENCH_CRITICAL_THRESHOLD", "65")
    monkeypatch.setenv("RULEBENCH_INDICATORS", "/opt/indicators.yaml")
    config = Config(config_path=config_file)

    assert config.critical_threshold == 65
    assert config.max_workers == 2
    assert config.indicators_path == "/opt/indicators.yaml"


def test_invalid_values_fall_back(tmp_path, monkeypatch):
    path = tmp_path / "config.yaml"
    path.write_text("validation:\n  critical_threshold: true\n  batch_size: 0\n", encoding="utf-8")
    monkeypatch.setenv("RULEBENCH_MAX_WORKERS", "many")
    config = Config(config_path=str(path))

    assert config.critical_threshold == DEFAULT_CRITICAL_THRESHOLD
    assert config.max_workers == DEFAULT_MAX_WORKERS
    assert config.batch_size == 1


def test_broken_yaml_is_ignored(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("validation: [unclosed", encoding="utf-8")
    assert Config(config_path=str(path)).critical_threshold == DEFAULT_CRITICAL_THRESHOLD
