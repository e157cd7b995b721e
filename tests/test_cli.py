"""Tests for the command-line interface."""

import json

import pytest
from click.testing import CliRunner

from matrixqa.cli import cli, parse_profile
from matrixqa.drivers.filesystem import FileSystemDriver
from matrixqa.models.config import RunConfig

from conftest import make_screenshot


def insecure_transport(screen_id, profile, screenshot):
    return {"pass": False, "findings": [f"cleartext request on {screen_id}"]}


@pytest.fixture
def workspace(tmp_path):
    """Config, suite and captures directory laid out under tmp_path."""
    config = RunConfig(
        baselines_dir=str(tmp_path / "baselines"),
        metrics_history_path=str(tmp_path / "history.json"),
        artifacts_dir=str(tmp_path / "artifacts"),
        report_output_dir=str(tmp_path / "reports"),
        report_formats=["json"],
    )
    config.retry.retry_backoff = 0.0
    config_path = tmp_path / "matrixqa.json"
    config.save(config_path)

    suite_path = tmp_path / "suite.json"
    suite_path.write_text(json.dumps({
        "test_cases": [{"test_id": "tc-login", "screen_id": "login"}],
        "device_matrix": [{"family": "Pixel 8", "os_version": "14"}],
    }))

    captures = tmp_path / "captures"
    profile = parse_profile("Pixel 8,14")
    make_screenshot().save_png(FileSystemDriver(captures).path_for("login", profile))
    return tmp_path, config_path, suite_path, captures


class TestParseProfile:
    def test_full(self):
        profile = parse_profile("iPhone 15, 17.4, de-DE, tablet")
        assert (profile.family, profile.os_version, profile.locale, profile.form_factor) == (
            "iPhone 15", "17.4", "de-DE", "tablet",
        )

    def test_defaults(self):
        assert parse_profile("Pixel 8,14").locale == "en-US"

    def test_too_short(self):
        import click

        with pytest.raises(click.BadParameter):
            parse_profile("Pixel 8")


class TestInit:
    def test_creates_config(self, tmp_path):
        path = tmp_path / "matrixqa.json"
        result = CliRunner().invoke(cli, ["init", "--config", str(path)])
        assert result.exit_code == 0
        assert RunConfig.load(path) == RunConfig()


class TestRun:
    def test_new_baseline_run_passes(self, workspace):
        tmp_path, config_path, suite_path, captures = workspace
        result = CliRunner().invoke(cli, [
            "run", "--config", str(config_path), "--suite", str(suite_path), "--captures", str(captures),
        ])
        assert result.exit_code == 0, result.output
        assert "1 new baseline(s)" in result.output
        assert list((tmp_path / "reports").glob("report_run_*.json"))

    def test_breach_exits_nonzero(self, workspace):
        tmp_path, config_path, suite_path, captures = workspace
        runner = CliRunner()
        baseline_png = tmp_path / "baseline.png"
        make_screenshot(color=(0, 0, 0)).save_png(baseline_png)
        approve = runner.invoke(cli, [
            "baseline", "approve", "--config", str(config_path), "--screen", "login",
            "--device", "Pixel 8,14", "--image", str(baseline_png), "--approver", "qa",
        ])
        assert approve.exit_code == 0, approve.output

        result = runner.invoke(cli, [
            "run", "--config", str(config_path), "--suite", str(suite_path), "--captures", str(captures),
        ])
        assert result.exit_code == 1

    def test_missing_captures_fail_after_retries(self, workspace):
        tmp_path, config_path, suite_path, _ = workspace
        result = CliRunner().invoke(cli, [
            "run", "--config", str(config_path), "--suite", str(suite_path),
            "--captures", str(tmp_path / "empty"),
        ])
        assert result.exit_code == 1

    def test_invalid_suite_exits_2(self, workspace):
        tmp_path, config_path, _, captures = workspace
        suite_path = tmp_path / "bad_suite.json"
        suite_path.write_text(json.dumps({"test_cases": [{"test_id": "t", "screen_id": "s"}],
                                          "device_matrix": []}))
        result = CliRunner().invoke(cli, [
            "run", "--config", str(config_path), "--suite", str(suite_path), "--captures", str(captures),
        ])
        assert result.exit_code == 2
        assert "device_matrix" in result.output

    def test_missing_config_exits_1(self, tmp_path, workspace):
        _, _, suite_path, captures = workspace
        result = CliRunner().invoke(cli, [
            "run", "--config", str(tmp_path / "missing.json"), "--suite", str(suite_path),
            "--captures", str(captures),
        ])
        assert result.exit_code == 1
        assert "Config file not found" in result.output

    def test_suite_checks_run_without_config_selection(self, workspace):
        tmp_path, config_path, suite_path, captures = workspace
        suite = json.loads(suite_path.read_text())
        suite["checks"] = {"tls": {"category": "security", "target": "test_cli:insecure_transport"}}
        suite_path.write_text(json.dumps(suite))

        result = CliRunner().invoke(cli, [
            "run", "--config", str(config_path), "--suite", str(suite_path), "--captures", str(captures),
        ])
        assert result.exit_code == 1, result.output
        report_path = next((tmp_path / "reports").glob("report_run_*.json"))
        entry = json.loads(report_path.read_text())["entries"][0]
        assert entry["external_findings"]["security"]["passed"] is False
        assert entry["external_findings"]["security"]["findings"] == ["cleartext request on login"]

    @pytest.mark.parametrize("declared, expected", [
        ({"tls": {"category": "security"}}, "checks.tls: missing 'target'"),
        ({"tls": {"category": "security", "target": "test_cli:no_such_check"}}, "checks.tls"),
        ({"tls": {"category": "visual", "target": "test_cli:insecure_transport"}}, "reserved"),
    ])
    def test_bad_suite_check_exits_2(self, workspace, declared, expected):
        tmp_path, config_path, suite_path, captures = workspace
        suite = json.loads(suite_path.read_text())
        suite["checks"] = declared
        suite_path.write_text(json.dumps(suite))

        result = CliRunner().invoke(cli, [
            "run", "--config", str(config_path), "--suite", str(suite_path), "--captures", str(captures),
        ])
        assert result.exit_code == 2, result.output
        assert "Submission rejected" in result.output
        assert expected in result.output

    def test_requires_driver_source(self, workspace):
        _, config_path, suite_path, _ = workspace
        result = CliRunner().invoke(cli, ["run", "--config", str(config_path), "--suite", str(suite_path)])
        assert result.exit_code == 2


class TestBaselineCommands:
    def test_approve_twice_same_release_conflicts(self, workspace):
        tmp_path, config_path, _, _ = workspace
        png = tmp_path / "shot.png"
        make_screenshot().save_png(png)
        args = ["baseline", "approve", "--config", str(config_path), "--screen", "login",
                "--device", "Pixel 8,14", "--image", str(png), "--approver", "qa", "--release", "1.0"]
        runner = CliRunner()
        assert runner.invoke(cli, args).exit_code == 0
        second = runner.invoke(cli, args)
        assert second.exit_code == 1
        assert "already approved" in second.output

    def test_list(self, workspace):
        tmp_path, config_path, _, _ = workspace
        runner = CliRunner()
        empty = runner.invoke(cli, ["baseline", "list", "--config", str(config_path)])
        assert "No baselines found" in empty.output

        png = tmp_path / "shot.png"
        make_screenshot().save_png(png)
        runner.invoke(cli, ["baseline", "approve", "--config", str(config_path), "--screen", "login",
                            "--device", "Pixel 8,14", "--image", str(png), "--approver", "qa"])
        listed = runner.invoke(cli, ["baseline", "list", "--config", str(config_path), "--screen", "login"])
        assert listed.exit_code == 0
        assert "v1" in listed.output
