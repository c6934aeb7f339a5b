"""Tests for CLI functionality."""

import json
from unittest.mock import patch

from typer.testing import CliRunner

from apps.cli.main import app, parse_overrides
from compositor.store import catalog_from_data

AUTH = "service:auth:better-auth"
CLERK = "service:auth:clerk"


class TestCLI:
    """Test CLI command interface."""

    def setup_method(self):
        """Setup test fixtures."""
        self.runner = CliRunner()

    def test_cli_help_command(self):
        """Should display help when called with --help."""
        result = self.runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        assert "compositor" in result.output.lower()
        assert "resolve" in result.output
        assert "preview" in result.output
        assert "check" in result.output

    def test_resolve_requires_out_or_dry_run(self, catalog_file):
        """Should refuse to resolve without an output directory or --dry-run."""
        result = self.runner.invoke(app, ["resolve", str(catalog_file), "-s", AUTH])
        assert result.exit_code == 1
        assert "Specify --out or --dry-run" in result.output

    def test_resolve_dry_run_json(self, catalog_file):
        """Should print the result as JSON."""
        result = self.runner.invoke(
            app,
            ["resolve", str(catalog_file), "-s", AUTH, "--framework", "next", "--dry-run", "--format", "json"],
        )
        assert result.exit_code == 0
        payload = json.loads(result.stdout)
        assert payload["status"] == "success"
        assert payload["plan"]["order"] == ["service:database:postgresql", AUTH]
        assert {outcome["status"] for outcome in payload["outcomes"]} == {"would_execute"}

    def test_resolve_writes_files(self, catalog_file, tmp_path):
        out = tmp_path / "out"
        result = self.runner.invoke(app, ["resolve", str(catalog_file), "-s", AUTH, "-o", str(out)])

        assert result.exit_code == 0
        assert "Status: success" in result.output
        assert (out / "lib" / "auth.ts").exists()
        assert (out / "db" / "schema.sql").exists()

    def test_resolve_conflict_fails(self, catalog_file):
        result = self.runner.invoke(
            app, ["resolve", str(catalog_file), "-s", AUTH, "-s", CLERK, "--dry-run"]
        )
        assert result.exit_code == 1
        assert "ComponentConflict" in result.output
        assert "Status: failed" in result.output

    def test_resolve_with_overrides(self, catalog_file):
        result = self.runner.invoke(
            app,
            [
                "resolve", str(catalog_file), "-s", AUTH, "--dry-run", "--format", "json",
                "--set", "theme=dark", "--set", f'{AUTH}={{"session_ttl": 60}}',
            ],
        )
        assert result.exit_code == 0
        configuration = json.loads(result.stdout)["configuration"]
        assert configuration["theme"] == "dark"
        assert configuration["components"][AUTH] == {"session_ttl": 60}

    def test_resolve_lenient_strategy(self, tmp_path):
        catalog = tmp_path / "catalog.json"
        catalog.write_text(json.dumps([
            {"type": "app", "provider": "web", "version": "1.0.0", "requires": ["service:cache:redis"]}
        ]))
        result = self.runner.invoke(
            app, ["resolve", str(catalog), "-s", "service:app:web", "--dry-run", "--strategy", "lenient"]
        )
        assert result.exit_code == 0
        assert "Status: warning" in result.output

    def test_invalid_key(self, catalog_file):
        result = self.runner.invoke(app, ["resolve", str(catalog_file), "-s", "auth", "--dry-run"])
        assert result.exit_code == 1
        assert "Invalid component key" in result.output

    def test_missing_catalog(self, tmp_path):
        result = self.runner.invoke(app, ["check", str(tmp_path / "nope.json"), "-s", AUTH])
        assert result.exit_code == 1
        assert "not found" in " ".join(result.output.split())

    def test_remote_catalog(self, auth_catalog):
        """Should fetch catalogs given as URLs."""
        with patch("apps.cli.main.fetch_catalog") as mock_fetch:
            mock_fetch.return_value = catalog_from_data(auth_catalog)
            result = self.runner.invoke(
                app, ["check", "https://registry.example.com/catalog.json", "-s", AUTH]
            )
        mock_fetch.assert_called_once_with("https://registry.example.com/catalog.json")
        assert result.exit_code == 0
        assert "Can resolve" in result.output

    def test_preview_table(self, catalog_file):
        result = self.runner.invoke(app, ["preview", str(catalog_file), "-s", AUTH])
        assert result.exit_code == 0
        assert "Execution plan" in result.output
        assert "would_execute" in result.output

    def test_preview_json(self, catalog_file):
        result = self.runner.invoke(
            app, ["preview", str(catalog_file), "-s", AUTH, "--format", "json"]
        )
        assert result.exit_code == 0
        payload = json.loads(result.stdout)
        assert len(payload["plan"]["batches"]) == 2
        assert payload["env_vars_required"] == ["DATABASE_URL", "AUTH_SECRET"]

    def test_check_missing(self, catalog_file):
        result = self.runner.invoke(app, ["check", str(catalog_file), "-s", "service:auth:nope"])
        assert result.exit_code == 1
        assert "Missing: service:auth:nope" in result.output
        assert "Cannot resolve" in result.output

    def test_check_json(self, catalog_file):
        result = self.runner.invoke(
            app, ["check", str(catalog_file), "-s", AUTH, "-s", CLERK, "--format", "json"]
        )
        assert result.exit_code == 1
        payload = json.loads(result.stdout)
        assert payload["ok"] is False
        assert payload["missing"] == []

    def test_unknown_format_rejected(self, catalog_file):
        result = self.runner.invoke(app, ["check", str(catalog_file), "-s", AUTH, "--format", "yaml"])
        assert result.exit_code == 2

    def test_post_install_steps_shown(self, tmp_path):
        catalog = tmp_path / "catalog.json"
        catalog.write_text(json.dumps([
            {"type": "database", "provider": "postgresql", "version": "16.2.0",
             "estimated_time": 8, "post_install_steps": ["Run migrations"]}
        ]))
        result = self.runner.invoke(
            app, ["resolve", str(catalog), "-s", "service:database:postgresql", "--dry-run"]
        )
        assert result.exit_code == 0
        assert "Estimated duration: 8s" in result.output
        assert "1. Run migrations" in result.output

    def test_config_file(self, catalog_file, tmp_path):
        config = tmp_path / "compositor.json"
        config.write_text('{"strict_compatibility": true}')
        result = self.runner.invoke(
            app,
            ["check", str(catalog_file), "-s", AUTH, "--framework", "svelte", "--config", str(config)],
        )
        assert result.exit_code == 1


def test_parse_overrides():
    assert parse_overrides(["count=3", "name=demo", 'flags={"a": true}']) == {
        "count": 3,
        "name": "demo",
        "flags": {"a": True},
    }
