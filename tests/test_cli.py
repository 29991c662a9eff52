"""Unit tests for CLI module."""

from collections.abc import Coroutine
from pathlib import Path
from typing import Any
from unittest.mock import patch

import pytest
import yaml
from typer.testing import CliRunner

from apos_static.cli import HOST_ENV, KEY_ENV, app, resolve_config
from apos_static.exceptions import ConfigError, DiscoveryError, PageRenderError
from apos_static.exporter import ExportResult

runner = CliRunner()


def _close_coro_and_return(result: ExportResult) -> Any:
    """Return a side_effect that closes the coroutine and returns a result."""

    def handler(coro: Coroutine[Any, Any, Any]) -> ExportResult:
        coro.close()
        return result

    return handler


def _close_coro_and_raise(exc: BaseException) -> Any:
    """Return a side_effect that closes the coroutine and raises an exception."""

    def handler(coro: Coroutine[Any, Any, Any]) -> None:
        coro.close()
        raise exc

    return handler


def _result(tmp_path: Path, errors: int = 0) -> ExportResult:
    return ExportResult(
        success=errors == 0,
        pages_rendered=12,
        video_widgets_processed=3,
        output_dir=tmp_path / "static-dist",
        errors=[PageRenderError(f"/page-{i}", "boom") for i in range(errors)],
    )


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv(HOST_ENV, raising=False)
    monkeypatch.delenv(KEY_ENV, raising=False)


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    path = tmp_path / "apos-static.yaml"
    path.write_text(
        yaml.dump(
            {
                "backend_url": "http://localhost:3000",
                "api_key": "secret",
                "crawling": {"concurrency": 4, "piece_types": ["article"]},
                "output": {"dir": str(tmp_path / "static-dist")},
            }
        )
    )
    return path


class TestVersionCommand:
    """Tests for --version flag."""

    def test_version_flag(self) -> None:
        """Test --version displays version and exits."""
        result = runner.invoke(app, ["--version"])

        assert result.exit_code == 0
        assert "apos-static version" in result.stdout

    def test_version_short_flag(self) -> None:
        """Test -V displays version and exits."""
        result = runner.invoke(app, ["-V"])

        assert result.exit_code == 0
        assert "apos-static version" in result.stdout


class TestResolveConfig:
    """Tests for resolve_config()."""

    def test_overrides_applied(self, config_file: Path) -> None:
        """Test dotted overrides replace file values and None is ignored."""
        config = resolve_config(
            config_file,
            {"crawling.concurrency": 2, "preview.port": 5000, "uploads.policy": None},
        )

        assert config.crawling.concurrency == 2
        assert config.crawling.piece_types == ["article"]
        assert config.preview.port == 5000
        assert config.uploads.policy == "none"

    def test_environment_fallback(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test URL and key come from the environment without a file."""
        monkeypatch.setenv(HOST_ENV, "https://cms.example.com/")
        monkeypatch.setenv(KEY_ENV, "env-key")

        config = resolve_config(None)

        assert config.backend_url == "https://cms.example.com"
        assert config.api_key == "env-key"

    def test_file_wins_over_environment(
        self, config_file: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Test explicit values are not replaced by the environment."""
        monkeypatch.setenv(KEY_ENV, "env-key")

        assert resolve_config(config_file).api_key == "secret"

    def test_missing_key(self) -> None:
        """Test a missing API key is a configuration error."""
        with pytest.raises(ConfigError, match="API key is required"):
            resolve_config(None, {"backend_url": "http://localhost:3000"})

    def test_missing_url(self) -> None:
        """Test a missing backend URL is a configuration error."""
        with pytest.raises(ConfigError, match="Backend URL is required"):
            resolve_config(None, {"api_key": "k"})

    def test_locale_config(self, config_file: Path, tmp_path: Path) -> None:
        """Test a locale file fills the locales section."""
        locale_file = tmp_path / "locales.yaml"
        locale_file.write_text("en: {}\nfr:\n  prefix: fr\n")

        config = resolve_config(config_file, locale_config=locale_file)

        assert config.locales is not None
        assert config.locales["fr"].prefix == "/fr"


class TestValidateCommand:
    """Tests for 'apos-static validate' command."""

    def test_validate_valid_config(self, config_file: Path) -> None:
        """Test validate with valid config file."""
        result = runner.invoke(app, ["validate", str(config_file)])

        assert result.exit_code == 0
        assert "Configuration is valid" in result.stdout
        assert "article" in result.stdout

    def test_validate_key_from_environment(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Test a file without api_key is valid when the environment has one."""
        config_file = tmp_path / "apos-static.yaml"
        config_file.write_text("backend_url: http://localhost:3000\n")
        monkeypatch.setenv(KEY_ENV, "env-key")

        result = runner.invoke(app, ["validate", str(config_file)])

        assert result.exit_code == 0
        assert "auto-discover" in result.stdout

    def test_validate_missing_key(self, tmp_path: Path) -> None:
        """Test validate fails without any API key."""
        config_file = tmp_path / "apos-static.yaml"
        config_file.write_text("backend_url: http://localhost:3000\n")

        result = runner.invoke(app, ["validate", str(config_file)])

        assert result.exit_code == 1
        assert "validation failed" in result.stdout

    def test_validate_missing_file(self, tmp_path: Path) -> None:
        """Test validate with non-existent file."""
        result = runner.invoke(app, ["validate", str(tmp_path / "nonexistent.yaml")])

        assert result.exit_code == 2

    def test_validate_invalid_yaml(self, tmp_path: Path) -> None:
        """Test validate with invalid YAML syntax."""
        config_file = tmp_path / "apos-static.yaml"
        config_file.write_text("invalid: yaml: syntax: [")

        result = runner.invoke(app, ["validate", str(config_file)])

        assert result.exit_code == 1


class TestInitCommand:
    """Tests for 'apos-static init' command."""

    def test_init_creates_config_file(self, tmp_path: Path) -> None:
        """Test init writes the answers without an API key."""
        config_file = tmp_path / "apos-static.yaml"

        result = runner.invoke(
            app,
            ["init", str(config_file)],
            input="http://localhost:3000/\nsite-out\ndownload\n",
        )

        assert result.exit_code == 0
        assert "Configuration created" in result.stdout
        content = yaml.safe_load(config_file.read_text())
        assert content["backend_url"] == "http://localhost:3000"
        assert content["output"]["dir"] == "site-out"
        assert content["uploads"]["policy"] == "download"
        assert "api_key" not in content

    def test_init_defaults(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test pressing enter accepts defaults and the default filename."""
        monkeypatch.chdir(tmp_path)

        result = runner.invoke(app, ["init"], input="\n\n\n")

        assert result.exit_code == 0
        content = yaml.safe_load((tmp_path / "apos-static.yaml").read_text())
        assert content["output"]["dir"] == "static-dist"
        assert content["uploads"]["policy"] == "none"

    def test_init_refuses_overwrite_without_force(self, tmp_path: Path) -> None:
        """Test init refuses to overwrite existing file without --force."""
        config_file = tmp_path / "apos-static.yaml"
        config_file.write_text("existing: content")

        result = runner.invoke(app, ["init", str(config_file)], input="\n\n\n")

        assert result.exit_code == 1
        assert "already exists" in result.stdout
        assert config_file.read_text() == "existing: content"

    def test_init_with_force_overwrites(self, tmp_path: Path) -> None:
        """Test init with --force overwrites existing file."""
        config_file = tmp_path / "apos-static.yaml"
        config_file.write_text("existing: content")

        result = runner.invoke(app, ["init", str(config_file), "--force"], input="\n\n\n")

        assert result.exit_code == 0
        assert "backend_url" in yaml.safe_load(config_file.read_text())

    def test_init_invalid_url(self, tmp_path: Path) -> None:
        """Test init rejects a backend URL without a scheme."""
        config_file = tmp_path / "apos-static.yaml"

        result = runner.invoke(app, ["init", str(config_file)], input="localhost:3000\n")

        assert result.exit_code == 1
        assert "must start with" in result.stdout
        assert not config_file.exists()


class TestExportCommand:
    """Tests for 'apos-static export' command."""

    def test_export_success(self, config_file: Path, tmp_path: Path) -> None:
        """Test a clean export exits 0 and prints the summary."""
        with patch(
            "apos_static.cli.asyncio.run", side_effect=_close_coro_and_return(_result(tmp_path))
        ):
            result = runner.invoke(app, ["export", "--config", str(config_file)])

        assert result.exit_code == 0
        assert "Export complete!" in result.stdout
        assert "Pages rendered" in result.stdout
        assert "12" in result.stdout

    def test_export_with_page_errors(self, config_file: Path, tmp_path: Path) -> None:
        """Test page failures exit 1 and only the first five are listed."""
        with patch(
            "apos_static.cli.asyncio.run",
            side_effect=_close_coro_and_return(_result(tmp_path, errors=7)),
        ):
            result = runner.invoke(app, ["export", "--config", str(config_file)])

        assert result.exit_code == 1
        assert "Failed pages:" in result.stdout
        assert "/page-4: boom" in result.stdout
        assert "/page-5" not in result.stdout
        assert "... and 2 more" in result.stdout

    def test_export_option_overrides(self, config_file: Path, tmp_path: Path) -> None:
        """Test command line options reach the export configuration."""
        out_dir = tmp_path / "custom"
        with (
            patch("apos_static.cli.run_with_progress") as run_with_progress,
            patch("apos_static.cli.asyncio.run", return_value=_result(tmp_path)),
        ):
            result = runner.invoke(
                app,
                [
                    "export",
                    "--config",
                    str(config_file),
                    "--out",
                    str(out_dir),
                    "--concurrency",
                    "6",
                    "--retries",
                    "0",
                    "--piece-types",
                    "event, product",
                    "--uploads",
                    "copy-only",
                    "--port",
                    "4400",
                ],
            )

        assert result.exit_code == 0
        [config] = run_with_progress.call_args.args
        assert config.output.dir == str(out_dir)
        assert config.crawling.concurrency == 6
        assert config.crawling.retries == 0
        assert config.crawling.piece_types == ["event", "product"]
        assert config.uploads.policy == "copy-only"
        assert config.preview.port == 4400

    def test_export_from_environment(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Test export runs with no config file when the environment is set."""
        monkeypatch.setenv(HOST_ENV, "http://localhost:3000")
        monkeypatch.setenv(KEY_ENV, "env-key")

        with patch(
            "apos_static.cli.asyncio.run", side_effect=_close_coro_and_return(_result(tmp_path))
        ):
            result = runner.invoke(app, ["export", "--out", str(tmp_path / "out")])

        assert result.exit_code == 0

    def test_export_missing_key(self) -> None:
        """Test a missing API key is reported as a configuration error."""
        result = runner.invoke(app, ["export", "--backend-url", "http://localhost:3000"])

        assert result.exit_code == 1
        assert "Configuration error" in result.stdout

    def test_export_fatal_error(self, config_file: Path) -> None:
        """Test a fatal pipeline error exits 1 with its message."""
        with patch(
            "apos_static.cli.asyncio.run",
            side_effect=_close_coro_and_raise(DiscoveryError("page listing returned 500")),
        ):
            result = runner.invoke(app, ["export", "--config", str(config_file)])

        assert result.exit_code == 1
        assert "Export failed" in result.stdout
        assert "page listing returned 500" in result.stdout

    def test_export_interrupted(self, config_file: Path) -> None:
        """Test Ctrl+C exits 130."""
        with patch(
            "apos_static.cli.asyncio.run",
            side_effect=_close_coro_and_raise(KeyboardInterrupt()),
        ):
            result = runner.invoke(app, ["export", "--config", str(config_file)])

        assert result.exit_code == 130
        assert "interrupted" in result.stdout

    def test_export_config_not_found(self, tmp_path: Path) -> None:
        """Test export with non-existent config file."""
        result = runner.invoke(app, ["export", "--config", str(tmp_path / "nonexistent.yaml")])

        assert result.exit_code == 2
