"""Tests for configuration loading and the config commands."""

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from push_guard.cli import app
from push_guard.config import (
    DEFAULT_DOCS_URL,
    AppConfig,
    default_config_template,
    load_app_config,
)
from push_guard.models import Exclusion, ExclusionType

runner = CliRunner()


def test_defaults_without_config_files(tmp_path: Path) -> None:
    config = load_app_config(tmp_path)
    assert config == AppConfig()
    assert config.thresholds.max_changed_paths == 3150
    assert config.thresholds.max_lines_per_request == 350_000
    assert config.thresholds.paths_batch_size == 50
    assert config.thresholds.payload_bytes_limit == 1_048_576
    assert config.docs_url == DEFAULT_DOCS_URL


def test_repo_config_file_takes_precedence_over_pyproject(tmp_path: Path) -> None:
    (tmp_path / "pyproject.toml").write_text(
        "[tool.push_guard.thresholds]\nmax_changed_paths = 5\n", encoding="utf-8"
    )
    (tmp_path / ".push-guard.toml").write_text(
        "[thresholds]\nmax_changed_paths = 7\n", encoding="utf-8"
    )

    config = load_app_config(tmp_path)

    assert config.thresholds.max_changed_paths == 7
    assert config.source == str((tmp_path / ".push-guard.toml").resolve())


def test_pyproject_tool_section_is_used(tmp_path: Path) -> None:
    (tmp_path / "pyproject.toml").write_text(
        "\n".join(
            [
                '[tool."push-guard"]',
                'format = "json"',
                "",
                '[tool."push-guard".detection]',
                "remote_enabled = true",
                'service_url = "https://sds.example.com"',
                "",
                '[[tool."push-guard".exclusions]]',
                'type = "raw_value"',
                'value = "dummy-token"',
                "",
            ]
        ),
        encoding="utf-8",
    )

    config = load_app_config(tmp_path)

    assert config.format == "json"
    assert config.detection.remote_enabled is True
    assert config.detection.service_url == "https://sds.example.com"
    assert config.exclusions == [Exclusion(ExclusionType.RAW_VALUE, "dummy-token")]


def test_default_template_round_trips(tmp_path: Path) -> None:
    path = tmp_path / "push-guard.toml"
    path.write_text(default_config_template(), encoding="utf-8")

    config = load_app_config(tmp_path)

    assert config.thresholds.max_lines_per_request == 350_000
    assert [item.type for item in config.exclusions] == [ExclusionType.PATH, ExclusionType.RULE]
    assert config.eligibility.licensed is True


@pytest.mark.parametrize(
    ("content", "message"),
    [
        ("[thresholds]\nmax_changed_paths = 0\n", "thresholds.max_changed_paths must be > 0"),
        ('[thresholds]\nmax_lines_per_request = "many"\n', "must be an integer"),
        ('[detection]\nremote_enabled = "yes"\n', "detection.remote_enabled must be a boolean"),
        ('[eligibility]\nprofile_trigger = "merge"\n', "eligibility.profile_trigger"),
        ('[[exclusions]]\ntype = "file"\nvalue = "x"\n', "exclusions.type must be one of"),
        ('format = "xml"\n', "format must be one of"),
        ("[thresholds\n", "Invalid TOML"),
    ],
)
def test_invalid_values_raise(tmp_path: Path, content: str, message: str) -> None:
    (tmp_path / ".push-guard.toml").write_text(content, encoding="utf-8")
    with pytest.raises(ValueError, match=message):
        load_app_config(tmp_path)


def test_explicit_missing_config_raises(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="Config file does not exist"):
        load_app_config(tmp_path, tmp_path / "missing.toml")


def test_config_command_json_hides_token(tmp_path: Path) -> None:
    (tmp_path / ".push-guard.toml").write_text(
        '[detection]\nauth_token = "secret-token"\n', encoding="utf-8"
    )
    result = runner.invoke(app, ["config", "--repo", str(tmp_path), "--format", "json"])

    assert result.exit_code == 0
    payload = json.loads(result.stdout)
    assert payload["detection"]["auth_token"] == "***"
    assert payload["thresholds"]["max_changed_paths"] == 3150
    assert "secret-token" not in result.stdout


def test_config_init_and_validate(tmp_path: Path) -> None:
    out = tmp_path / ".push-guard.toml"
    init = runner.invoke(app, ["config-init", "--out", str(out)])
    assert init.exit_code == 0
    assert out.exists()

    again = runner.invoke(app, ["config-init", "--out", str(out)])
    assert again.exit_code == 2

    validate = runner.invoke(
        app,
        ["config-validate", "--repo", str(tmp_path), "--config", str(out), "--format", "json"],
    )
    assert validate.exit_code == 0
    payload = json.loads(validate.stdout)
    assert payload["ok"] is True
    assert len(payload["exclusions"]) == 2


def test_config_validate_rejects_bad_file(tmp_path: Path) -> None:
    bad = tmp_path / "bad.toml"
    bad.write_text("[thresholds]\npaths_batch_size = -1\n", encoding="utf-8")
    result = runner.invoke(app, ["config-validate", "--repo", str(tmp_path), "--config", str(bad)])
    assert result.exit_code == 2
