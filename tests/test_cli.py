"""Tests for the obsconverge CLI."""

import json

import pytest
import yaml
from click.testing import CliRunner

from obsconverge.cli import main
from obsconverge.errors import TransientError
from obsconverge.store import InMemoryObjectStore


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def home(tmp_path, monkeypatch):
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("OBSCONVERGE_HOME", str(home))
    config = {
        "logging": {"console": False},
        "store": {"backend": "memory"},
    }
    (home / "config.yaml").write_text(yaml.safe_dump(config))
    return home


@pytest.fixture
def spec_file(tmp_path):
    path = tmp_path / "spec.yaml"
    path.write_text(yaml.safe_dump({"metadata": {"name": "stack", "namespace": "observability"}, "spec": {}}))
    return path


class TestInit:
    def test_creates_files(self, runner, tmp_path, monkeypatch):
        home = tmp_path / "custom_home"
        monkeypatch.setenv("OBSCONVERGE_HOME", str(home))

        result = runner.invoke(main, ["init"])

        assert result.exit_code == 0
        assert "Initialized obsconverge config" in result.output
        cfg = yaml.safe_load((home / "config.yaml").read_text())
        assert cfg["store"]["backend"] == "kubernetes"
        example = yaml.safe_load((home / "spec.yaml").read_text())
        assert example["metadata"]["name"] == "observability-stack"

    def test_does_not_overwrite_without_force(self, runner, tmp_path, monkeypatch):
        home = tmp_path / "custom_home"
        monkeypatch.setenv("OBSCONVERGE_HOME", str(home))
        home.mkdir(parents=True)
        (home / "config.yaml").write_text("existing: true")

        result = runner.invoke(main, ["init"])

        assert result.exit_code == 1
        assert "Config already exists" in result.output
        assert (home / "config.yaml").read_text() == "existing: true"

    def test_force_overwrites(self, runner, tmp_path, monkeypatch):
        home = tmp_path / "custom_home"
        monkeypatch.setenv("OBSCONVERGE_HOME", str(home))
        home.mkdir(parents=True)
        (home / "config.yaml").write_text("existing: true")

        result = runner.invoke(main, ["init", "--force"])

        assert result.exit_code == 0
        cfg = yaml.safe_load((home / "config.yaml").read_text())
        assert "reconcile" in cfg


class TestReconcile:
    def test_requires_config(self, runner, tmp_path, monkeypatch, spec_file):
        monkeypatch.setenv("OBSCONVERGE_HOME", str(tmp_path / "empty"))

        result = runner.invoke(main, ["reconcile", str(spec_file)])

        assert result.exit_code == 1
        assert "Config not loaded" in result.output

    def test_runs_one_tick_and_persists_status(self, runner, home, spec_file):
        result = runner.invoke(main, ["reconcile", str(spec_file)])

        assert result.exit_code == 0
        assert "prometheus-installation: in_progress" in result.output
        status = json.loads((home / "status.json").read_text())
        assert status["stage"] == "prometheus-installation"
        assert status["stage_status"] == "in_progress"

    def test_failed_tick_exits_nonzero(self, runner, home, spec_file, monkeypatch):
        store = InMemoryObjectStore()

        def unavailable(target):
            raise TransientError("api server unavailable")

        store.faults["get"] = unavailable
        monkeypatch.setattr("obsconverge.cli._build_store", lambda config: store)

        result = runner.invoke(main, ["reconcile", str(spec_file)])

        assert result.exit_code == 1
        assert "api server unavailable" in result.output

    def test_invalid_spec(self, runner, home, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text(yaml.safe_dump({"name": "stack"}))

        result = runner.invoke(main, ["reconcile", str(path)])

        assert result.exit_code == 1
        assert "Invalid spec" in result.output

    def test_explicit_config_option(self, runner, tmp_path, spec_file, monkeypatch):
        monkeypatch.setenv("OBSCONVERGE_HOME", str(tmp_path / "unused"))
        config_path = tmp_path / "alt.yaml"
        config_path.write_text(yaml.safe_dump({"logging": {"console": False}, "store": {"backend": "memory"}}))

        result = runner.invoke(main, ["--config", str(config_path), "reconcile", str(spec_file)])

        assert result.exit_code == 0
        assert (tmp_path / "status.json").exists()


class TestWatch:
    def test_runs_bounded_number_of_ticks(self, runner, home, spec_file, monkeypatch):
        sleeps = []
        monkeypatch.setattr("obsconverge.scheduler.time.sleep", sleeps.append)

        result = runner.invoke(main, ["watch", str(spec_file), "--max-ticks", "2"])

        assert result.exit_code == 0
        assert "Ran 2 tick(s)" in result.output
        assert sleeps == [10.0]


class TestCleanup:
    def test_cleanup_succeeds_on_empty_cluster(self, runner, home, spec_file):
        result = runner.invoke(main, ["cleanup", str(spec_file)])

        assert result.exit_code == 0
        assert "token: success" in result.output


class TestStatus:
    def test_shows_default_status(self, runner, home):
        result = runner.invoke(main, ["status"])

        assert result.exit_code == 0
        assert json.loads(result.output)["migrated"] is False

    def test_shows_persisted_status(self, runner, home, spec_file):
        runner.invoke(main, ["reconcile", str(spec_file)])

        result = runner.invoke(main, ["status"])

        assert json.loads(result.output)["stage_status"] == "in_progress"

    def test_corrupt_status(self, runner, home):
        (home / "status.json").write_text("{broken")

        result = runner.invoke(main, ["status"])

        assert result.exit_code == 1
        assert "corrupt" in result.output
