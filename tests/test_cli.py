"""Tests for CLI commands that run without mailbox access."""

from pathlib import Path
from unittest.mock import MagicMock, patch

from click.testing import CliRunner

from mailpool_mcp.cli import cli
from mailpool_mcp.engine.classify_scan import AccountScanResult, ScanReport


class TestFilterCheck:
    def test_valid_expression(self):
        result = CliRunner().invoke(cli, ["filter-check", "interested OR bounced AND NOT none"])

        assert result.exit_code == 0
        assert "(interested OR (bounced AND NOT none))" in result.output

    def test_evaluates_flags(self):
        result = CliRunner().invoke(
            cli, ["filter-check", "a AND NOT b", "--flags", "a, c"]
        )

        assert result.exit_code == 0
        assert "matches" in result.output
        assert "does not match" not in result.output

    def test_syntax_error_exits_1(self):
        result = CliRunner().invoke(cli, ["filter-check", "(a AND b"])

        assert result.exit_code == 1
        assert "closed" in result.output


class TestValidateConfig:
    def test_valid_file(self, tmp_path: Path, sample_config_yaml: str):
        path = tmp_path / "config.yaml"
        path.write_text(sample_config_yaml)

        result = CliRunner().invoke(cli, ["--config", str(path), "validate-config"])

        assert result.exit_code == 0
        assert "Configuration valid" in result.output

    def test_missing_file(self, tmp_path: Path):
        result = CliRunner().invoke(
            cli, ["--config", str(tmp_path / "nope.yaml"), "validate-config"]
        )

        assert result.exit_code == 1
        assert "Load error" in result.output


class TestClassify:
    def test_failed_account_exits_1(self):
        service = MagicMock()
        service.classify_replies = MagicMock(
            return_value=ScanReport(
                scan_id="0123456789",
                results=[AccountScanResult(account="ada@example.com", error="IMAP login failed")],
            )
        )

        with (
            patch("mailpool_mcp.cli._init_service", return_value=service),
            patch("mailpool_mcp.cli.asyncio.run", side_effect=lambda value: value),
        ):
            result = CliRunner().invoke(cli, ["classify"])

        assert result.exit_code == 1
        service.classify_replies.assert_called_once_with(None)
