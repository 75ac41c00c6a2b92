"""
FPL Data Gateway - CLI Entry Point.

Operator command-line interface for querying the gateway and inspecting
source health, quotas and cache state.

Usage:
    python -m fpl_gateway.main players
    python -m fpl_gateway.main teams
    python -m fpl_gateway.main fixtures --round 5
    python -m fpl_gateway.main live 5
    python -m fpl_gateway.main round
    python -m fpl_gateway.main reference
    python -m fpl_gateway.main standings
    python -m fpl_gateway.main status

Example:
    >>> python -m fpl_gateway.main fixtures --round 5
    [2026-08-23 14:30:00] INFO - HybridDataSource initialized
      Arsenal              2 - 1  Chelsea               [api_football]
"""

import argparse
import asyncio
import json
import logging
import sys
from datetime import datetime
from typing import Any, List, Optional

from fpl_gateway.config import AppConfig
from fpl_gateway.orchestrator.hybrid_source import HybridDataSource
from fpl_gateway.utils.exceptions import SchemaMismatchError, SourcesExhaustedError
from fpl_gateway.utils.logger import configure_package_logging, set_level

logger = logging.getLogger(__name__)


class GatewayCLI:
    """
    Command-line interface for the FPL data gateway.

    Features:
        - One subcommand per public data operation
        - JSON output for scripting
        - Source status report with recommendations
    """

    def __init__(self):
        """Initialize CLI with argument parser."""
        self.parser = self._create_parser()
        self.args = None

    def _create_parser(self) -> argparse.ArgumentParser:
        """
        Create and configure argument parser.

        Returns:
            Configured ArgumentParser instance
        """
        parser = argparse.ArgumentParser(
            prog="fpl-gateway",
            description="Cached, rate-limited access to FPL and API-Football data.",
            formatter_class=argparse.RawDescriptionHelpFormatter,
            epilog="""
Configuration:
  Set environment variables in .env file:
    - RAPIDAPI_KEY: RapidAPI key for the FPL API (required)
    - API_FOOTBALL_KEY: API-Football key (optional, enables fixture fallback)
    - SERVE_STALE_ON_ERROR: Serve expired cache entries on total failure
            """,
        )

        parser.add_argument(
            "--json",
            action="store_true",
            help="Print raw JSON instead of a table",
        )
        parser.add_argument(
            "--log-level",
            type=str,
            choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
            help="Override default log level",
        )
        parser.add_argument(
            "--version",
            action="version",
            version=f"%(prog)s {AppConfig.VERSION}",
        )

        commands = parser.add_subparsers(dest="command", required=True)
        commands.add_parser("players", help="List squad players")
        commands.add_parser("teams", help="List clubs")

        fixtures = commands.add_parser("fixtures", help="List fixtures")
        fixtures.add_argument("--round", type=int, dest="round_id", metavar="N",
                              help="Only fixtures of round N")

        live = commands.add_parser("live", help="Live points for a round")
        live.add_argument("round_id", type=int, metavar="N", help="Round number")

        commands.add_parser("round", help="Show the current round")
        commands.add_parser("reference", help="Summarize the reference bundle")
        commands.add_parser("standings", help="Show the league table")
        commands.add_parser("status", help="Display source status and statistics")

        return parser

    # ==================== DISPLAY ====================

    @staticmethod
    def _dump(data: Any) -> None:
        if isinstance(data, list):
            data = [item.to_dict() for item in data]
        elif hasattr(data, "to_dict"):
            data = data.to_dict()
        print(json.dumps(data, indent=2, default=str))

    @staticmethod
    def _header(title: str) -> None:
        print("\n" + "=" * 70)
        print(f"  {title}")
        print("=" * 70 + "\n")

    def _display_players(self, players: List) -> None:
        self._header(f"PLAYERS ({len(players)})")
        for p in players:
            price = f"£{p.price:.1f}m" if p.price is not None else "-"
            points = p.total_points if p.total_points is not None else "-"
            print(f"  {p.web_name:20} {p.position.value:4} team={p.team_id:<4} {price:>7} {points:>5}")

    def _display_teams(self, teams: List) -> None:
        self._header(f"TEAMS ({len(teams)})")
        for t in teams:
            print(f"  {t.id:>4}  {t.short_name:4} {t.name}  [{t.source.value}]")

    def _display_fixtures(self, fixtures: List) -> None:
        self._header(f"FIXTURES ({len(fixtures)})")
        for f in fixtures:
            home = f.home_team_name or f"#{f.home_team_id}"
            away = f.away_team_name or f"#{f.away_team_id}"
            if f.home_score is not None and f.away_score is not None:
                score = f"{f.home_score} - {f.away_score}"
            else:
                score = f.kickoff_time.strftime("%d %b %H:%M") if f.kickoff_time else "TBD"
            print(f"  GW{f.round or '?':<3} {home:20} {score:^13} {away:20} [{f.source.value}]")

    def _display_live(self, live) -> None:
        self._header(f"LIVE POINTS - ROUND {live.round}")
        top = sorted(live.players, key=lambda p: p.total_points, reverse=True)[:20]
        for p in top:
            print(f"  player={p.player_id:<6} {p.total_points:>3} pts  {p.minutes:>3} min")
        print(f"\n  {len(live.players)} players reported")

    def _display_round(self, current) -> None:
        self._header("CURRENT ROUND")
        deadline = current.deadline_time.isoformat() if current.deadline_time else "N/A"
        print(f"  Round:       {current.id} ({current.name})")
        print(f"  Deadline:    {deadline}")
        print(f"  Current:     {current.is_current}")
        print(f"  Next:        {current.is_next}")
        print(f"  Finished:    {current.finished}")

    def _display_reference(self, reference) -> None:
        self._header("REFERENCE DATA")
        current = reference.current_round()
        print(f"  Rounds:      {len(reference.rounds)}")
        print(f"  Teams:       {len(reference.teams)}")
        print(f"  Players:     {len(reference.players)}")
        print(f"  Current:     {current.id if current else 'N/A'}")
        print(f"  Fetched at:  {reference.fetched_at.isoformat()}")

    def _display_standings(self, standings: List) -> None:
        self._header("STANDINGS")
        for s in standings:
            print(
                f"  {s.rank:>2}. {s.team_name:22} P{s.played:<3} "
                f"GD{s.goal_difference:>+4}  {s.points:>3} pts  {s.form or ''}"
            )

    def _display_status(self, stats: dict) -> None:
        self._header("SOURCE STATUS REPORT")
        print(f"  Override:            {stats['override'] or 'none'}")

        for name, source in stats["sources"].items():
            status = source["status"]
            limits = source["rate_limit"]
            cache = source["cache"]
            print(f"\n  [{name}]")
            print(f"  Configured:          {source['configured']}")
            print(f"  Available:           {status['available']} (errors: {status['error_count']})")
            if status["next_available_at"]:
                print(f"  Next available:      {status['next_available_at']}")
            print(f"  Circuit:             {source['circuit_breaker']['state']}")
            print(
                f"  Remaining:           {limits['minute']['remaining']}/min, "
                f"{limits['day']['remaining']}/day"
            )
            print(f"  Cache hit rate:      {cache['hit_rate_pct']:.1f}%")
            print(f"  Queue depth:         {source['queue']['depth']}")
            print(f"  In flight:           {source['dedup']['in_flight']}")

        if stats["last_served"]:
            print("\n  Last served:")
            for operation, name in stats["last_served"].items():
                print(f"    {operation:16} → {name}")

        if stats["recommendations"]:
            print("\n  Recommendations:")
            for tip in stats["recommendations"]:
                print(f"    • {tip}")

        print("\n" + "=" * 70 + "\n")

    # ==================== EXECUTION ====================

    async def _execute(self, source: HybridDataSource) -> None:
        command = self.args.command

        if command == "status":
            stats = source.get_statistics()
            if self.args.json:
                self._dump(stats)
            else:
                self._display_status(stats)
            return

        if command == "players":
            result, display = await source.get_players(), self._display_players
        elif command == "teams":
            result, display = await source.get_teams(), self._display_teams
        elif command == "fixtures":
            result = await source.get_fixtures(self.args.round_id)
            display = self._display_fixtures
        elif command == "live":
            result = await source.get_live_scores(self.args.round_id)
            display = self._display_live
        elif command == "round":
            result, display = await source.get_current_round(), self._display_round
        elif command == "reference":
            result, display = await source.get_reference_data(), self._display_reference
        else:
            result, display = await source.get_standings(), self._display_standings

        if self.args.json:
            self._dump(result)
        else:
            display(result)

    async def _run(self) -> int:
        source = HybridDataSource.from_config(enable_maintenance=False)
        try:
            async with source:
                await self._execute(source)
            return 0

        except SchemaMismatchError as e:
            logger.error(f"Upstream payload changed shape: {e}")
            print(f"\nSchema mismatch: {e}\n", file=sys.stderr)
            return 2

        except SourcesExhaustedError as e:
            logger.error(f"No source could serve {e.operation}: {e}")
            print(f"\nAll sources failed for {e.operation}:", file=sys.stderr)
            for name, error in e.errors.items():
                print(f"  • {name}: {error}", file=sys.stderr)
            return 1

    def run(self, argv: Optional[List[str]] = None) -> int:
        """
        Main entry point for CLI execution.

        Returns:
            Process exit code
        """
        self.args = self.parser.parse_args(argv)

        configure_package_logging()
        if self.args.log_level:
            set_level(self.args.log_level)

        if not self.args.json:
            print(f"\n{AppConfig.APP_NAME} v{AppConfig.VERSION}")
            print(f"Timestamp: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")

        return asyncio.run(self._run())


def main() -> None:
    sys.exit(GatewayCLI().run())


if __name__ == "__main__":
    main()
