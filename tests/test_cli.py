"""Tests for CLI interface.

Test Coverage:
    - Argument parsing
    - Command routing
    - Chunk plan output
    - Stats against an empty cache
    - Package registry listing
    - Refresh command with a mocked orchestrator
"""

import json
from datetime import date
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from ossstats.cache import CacheStore, PackageRegistry
from ossstats.cli import cmd_chunks, cmd_version, create_parser, main
from ossstats.keys import org_key
from ossstats.models import OrgStats
from ossstats.pipeline import RefreshResult


@pytest.fixture
def cli_settings(test_settings, monkeypatch):
    """Point the CLI at the per-test database."""
    monkeypatch.setattr("ossstats.cli.settings", test_settings)
    return test_settings


class TestParserCreation:
    """Test CLI parser creation."""

    def test_parser_has_commands(self):
        parser = create_parser()
        with pytest.raises(SystemExit):
            parser.parse_args(["--help"])

    def test_refresh_defaults(self):
        args = create_parser().parse_args(["refresh"])
        assert args.scope == "full"
        assert args.packages == []
        assert args.format == "text"

    def test_refresh_packages(self):
        args = create_parser().parse_args(["refresh", "--scope", "packages", "swr", "redux"])
        assert args.scope == "packages"
        assert args.packages == ["swr", "redux"]

    def test_invalid_scope(self):
        with pytest.raises(SystemExit):
            create_parser().parse_args(["refresh", "--scope", "everything"])

    def test_stats_compare(self):
        args = create_parser().parse_args(
            ["stats", "compare", "swr", "redux", "--range", "90d", "--bin", "monthly"],
        )
        assert args.what == "compare"
        assert args.names == ["swr", "redux"]
        assert args.range == "90d"
        assert args.bin == "monthly"

    def test_chunks_defaults(self):
        args = create_parser().parse_args(["chunks", "react-query"])
        assert args.start == "2015-01-10"
        assert args.as_of is None


class TestChunksCommand:

    def test_prints_plan(self, capsys):
        args = create_parser().parse_args(
            ["chunks", "@tanstack/react-query", "--start", "2019-10-25", "--as-of", "2025-12-06"],
        )

        assert cmd_chunks(args) == 0
        lines = capsys.readouterr().out.splitlines()

        assert lines[0].startswith("@tanstack/react-query|2019-10-25|2021-03-07|daily")
        assert "500d" in lines[0] and "immutable" in lines[0]
        assert lines[-1].split()[0].endswith("|2025-12-06|daily")
        assert lines[-1].endswith(" mutable")

    def test_bad_date(self, capsys):
        args = create_parser().parse_args(["chunks", "swr", "--start", "yesterday"])

        assert cmd_chunks(args) == 1
        assert "Error" in capsys.readouterr().err


class TestVersionCommand:

    def test_version(self, capsys):
        assert cmd_version(create_parser().parse_args(["version"])) == 0
        assert "ossstats v" in capsys.readouterr().out


class TestStatsCommand:

    def test_empty_cache(self, cli_settings, capsys):
        assert main(["stats", "org"]) == 1
        assert "No data" in capsys.readouterr().err

    def test_requires_names(self, cli_settings, capsys):
        assert main(["stats", "compare"]) == 1
        assert "needs at least one name" in capsys.readouterr().err

    def test_unknown_library(self, cli_settings, capsys):
        assert main(["stats", "library", "nope"]) == 1

    def test_presets_json(self, cli_settings, capsys):
        assert main(["stats", "presets", "--format", "json"]) == 0
        presets = json.loads(capsys.readouterr().out)
        assert presets[0]["id"] == "data-fetching"

    def test_cache_counts(self, cli_settings, capsys):
        assert main(["stats", "cache", "--format", "json"]) == 0
        assert json.loads(capsys.readouterr().out)["total"] == 0

    @pytest.mark.asyncio
    async def test_registry_listing(self, cli_settings, capsys):
        registry = PackageRegistry(cli_settings.cache_db_path)
        await registry.register("@tanstack/query-core", "query")
        await registry.register("react-query", "query", is_legacy=True)
        await registry.set_created_date("react-query", date(2019, 10, 25))

        assert main(["stats", "packages", "--format", "json"]) == 0
        rows = json.loads(capsys.readouterr().out)

        assert [r["package"] for r in rows] == ["@tanstack/query-core", "react-query"]
        assert rows[1]["legacy"] is True
        assert rows[1]["created"] == "2019-10-25"
        assert rows[0]["checked_at"] is not None

    @pytest.mark.asyncio
    async def test_org_text(self, cli_settings, capsys):
        store = CacheStore(cli_settings.cache_db_path)
        await store.set(org_key("tanstack"), OrgStats("tanstack", 77, 1).to_dict())

        assert main(["stats", "org"]) == 0
        out = capsys.readouterr().out
        assert "kind: org" in out


class TestRefreshCommand:

    def _orchestrator(self, result):
        orch = MagicMock()
        for name in ("run_full_refresh", "refresh_org_stats", "refresh_all_libraries", "refresh_packages"):
            setattr(orch, name, AsyncMock(return_value=result))
        return orch

    def test_full_refresh_ok(self, cli_settings, capsys):
        orch = self._orchestrator(RefreshResult(successes=["npm:swr"]))

        with patch("ossstats.cli.RefreshOrchestrator", return_value=orch):
            assert main(["refresh"]) == 0

        orch.run_full_refresh.assert_awaited_once()
        assert "1 ok" in capsys.readouterr().out

    def test_failures_exit_nonzero(self, cli_settings, capsys):
        orch = self._orchestrator(RefreshResult(failures={"npm:swr": "boom"}))

        with patch("ossstats.cli.RefreshOrchestrator", return_value=orch):
            assert main(["refresh", "--scope", "org"]) == 1

        orch.refresh_org_stats.assert_awaited_once()
        assert "FAILED npm:swr: boom" in capsys.readouterr().out

    def test_packages_scope(self, cli_settings, capsys):
        orch = self._orchestrator(RefreshResult(successes=["npm:swr"]))

        with patch("ossstats.cli.RefreshOrchestrator", return_value=orch):
            assert main(["refresh", "--scope", "packages", "swr", "--format", "json"]) == 0

        orch.refresh_packages.assert_awaited_once_with(["swr"])
        assert json.loads(capsys.readouterr().out)["successes"] == ["npm:swr"]

    def test_packages_scope_needs_names(self, cli_settings, capsys):
        with patch("ossstats.cli.RefreshOrchestrator", return_value=self._orchestrator(RefreshResult())):
            assert main(["refresh", "--scope", "packages"]) == 1

    def test_unexpected_error(self, cli_settings, capsys):
        with patch("ossstats.cli.RefreshOrchestrator", side_effect=RuntimeError("db locked")):
            assert main(["refresh"]) == 1
        assert "db locked" in capsys.readouterr().err


class TestMain:

    def test_no_command_prints_help(self, capsys):
        assert main([]) == 0
        assert "usage" in capsys.readouterr().out.lower()
