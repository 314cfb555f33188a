"""Tests for the registry guard command line."""

from __future__ import annotations

import json
from pathlib import Path

from typer.testing import CliRunner

from guard_registry.cli import _split_spec, app
from guard_registry.settings import GuardSettings

runner = CliRunner()


def _policy(tmp_path: Path) -> Path:
    path = tmp_path / "security.yml"
    path.write_text(
        "\n".join(
            [
                "blockedVersions:",
                "  - lodash@4.17.20",
                "blockedScopes: ['@malicious']",
            ]
        ),
        encoding="utf-8",
    )
    return path


def test_check_command(tmp_path: Path) -> None:
    policy = str(_policy(tmp_path))

    allowed = runner.invoke(app, ["check", "lodash@4.17.21", "--config", policy])
    assert allowed.exit_code == 0
    assert "ALLOWED lodash@4.17.21" in allowed.output

    blocked = runner.invoke(app, ["check", "@malicious/pkg", "--config", policy])
    assert blocked.exit_code == 1
    assert "Package scope not allowed [scope]" in blocked.output


def test_validate_publish_command(tmp_path: Path) -> None:
    policy = str(_policy(tmp_path))

    rejected = runner.invoke(app, ["validate-publish", "lodash@4.17.20", "--config", policy])
    assert rejected.exit_code == 1
    assert "blocked due to security concerns" in rejected.output

    missing = runner.invoke(app, ["validate-publish", "lodash", "--config", policy])
    assert missing.exit_code == 2


def test_filter_command(tmp_path: Path) -> None:
    policy = tmp_path / "fallback.yml"
    policy.write_text(
        "\n".join(
            [
                "versionRangeRules:",
                "  - package: lodash",
                "    range: '<4.17.21'",
                "    strategy: fallback",
                "    fallbackVersion: 4.17.21",
            ]
        ),
        encoding="utf-8",
    )
    document = tmp_path / "lodash.json"
    document.write_text(
        json.dumps(
            {
                "name": "lodash",
                "dist-tags": {"latest": "4.17.20"},
                "versions": {"4.17.20": {"version": "4.17.20"}, "4.17.21": {"version": "4.17.21"}},
            }
        ),
        encoding="utf-8",
    )

    result = runner.invoke(app, ["filter", str(document), "--config", str(policy)])

    assert result.exit_code == 0
    served = json.loads(result.stdout)
    assert list(served["versions"]) == ["4.17.20", "4.17.21"]
    assert served["versions"]["4.17.20"]["_fallbackSourceVersion"] == "4.17.21"
    assert served["dist-tags"] == {"latest": "4.17.20"}


def test_bad_policy_exits_with_code_2(tmp_path: Path) -> None:
    path = tmp_path / "security.yml"
    path.write_text("- not\n- a mapping\n", encoding="utf-8")
    result = runner.invoke(app, ["check", "lodash", "--config", str(path)])
    assert result.exit_code == 2


def test_split_spec() -> None:
    assert _split_spec("lodash@4.17.21") == ("lodash", "4.17.21")
    assert _split_spec("@acme/widgets@1.0.0") == ("@acme/widgets", "1.0.0")
    assert _split_spec("@acme/widgets") == ("@acme/widgets", None)
    assert _split_spec("lodash") == ("lodash", None)


def test_settings_from_env(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setenv("GUARD_PORT", "9000")
    monkeypatch.setenv("GUARD_UPSTREAM_URL", "https://mirror.example/")
    monkeypatch.setenv("GUARD_CONFIG", "policy.yml")
    settings = GuardSettings.from_env(env_file=str(tmp_path / "missing.env"))

    assert settings.port == 9000
    assert settings.upstream_url == "https://mirror.example"
    assert settings.config_path == "policy.yml"
    assert settings.host == "127.0.0.1"
