"""
Tests for the gateway CLI.
"""

import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from fpl_gateway.main import GatewayCLI
from fpl_gateway.normalizer.schemas import DataSource, Team
from fpl_gateway.utils.exceptions import (
    SchemaMismatchError,
    SourcesExhaustedError,
    UpstreamServerError,
)


def make_source(**operations):
    """Coordinator mock usable as an async context manager."""
    source = MagicMock()
    source.__aenter__ = AsyncMock(return_value=source)
    source.__aexit__ = AsyncMock(return_value=False)
    for name, outcome in operations.items():
        if isinstance(outcome, Exception):
            setattr(source, name, AsyncMock(side_effect=outcome))
        else:
            setattr(source, name, AsyncMock(return_value=outcome))
    return source


def run_cli(argv, source):
    with patch("fpl_gateway.main.configure_package_logging"), \
         patch("fpl_gateway.main.HybridDataSource.from_config", return_value=source) as factory:
        code = GatewayCLI().run(argv)
    factory.assert_called_once_with(enable_maintenance=False)
    return code


ARSENAL = Team(source=DataSource.RAPIDAPI_FPL, id=1, name="Arsenal", short_name="ARS")


class TestParser:
    """Test argument parsing."""

    def test_fixtures_round_option(self):
        args = GatewayCLI().parser.parse_args(["fixtures", "--round", "5"])

        assert args.command == "fixtures"
        assert args.round_id == 5

    def test_live_requires_round(self):
        with pytest.raises(SystemExit):
            GatewayCLI().parser.parse_args(["live"])

    def test_command_required(self):
        with pytest.raises(SystemExit):
            GatewayCLI().parser.parse_args([])


class TestCommands:
    """Test command execution and exit codes."""

    def test_teams_table(self, capsys):
        source = make_source(get_teams=[ARSENAL])

        assert run_cli(["teams"], source) == 0

        out = capsys.readouterr().out
        assert "TEAMS (1)" in out
        assert "Arsenal" in out

    def test_teams_json(self, capsys):
        source = make_source(get_teams=[ARSENAL])

        assert run_cli(["--json", "teams"], source) == 0

        data = json.loads(capsys.readouterr().out)
        assert data[0]["short_name"] == "ARS"
        assert data[0]["source"] == "rapidapi_fpl"

    def test_fixtures_passes_round(self):
        source = make_source(get_fixtures=[])

        assert run_cli(["--json", "fixtures", "--round", "8"], source) == 0

        source.get_fixtures.assert_awaited_once_with(8)

    def test_sources_exhausted_exit_code(self, capsys):
        error = SourcesExhaustedError(
            "teams", {"rapidapi_fpl": UpstreamServerError("Bad gateway", status_code=502)}
        )
        source = make_source(get_teams=error)

        assert run_cli(["teams"], source) == 1
        assert "rapidapi_fpl" in capsys.readouterr().err

    def test_schema_mismatch_exit_code(self, capsys):
        source = make_source(
            get_players=SchemaMismatchError("Unknown element_type", source="rapidapi_fpl")
        )

        assert run_cli(["players"], source) == 2
        assert "Schema mismatch" in capsys.readouterr().err

    def test_status_json(self, capsys):
        source = make_source()
        source.get_statistics.return_value = {"sources": {}, "recommendations": []}

        assert run_cli(["--json", "status"], source) == 0

        assert json.loads(capsys.readouterr().out)["recommendations"] == []
