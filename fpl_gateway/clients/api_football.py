"""
API-Football v3 client (RapidAPI).

Provider B: fixtures, teams, squads and standings for one league and
season, wrapped in the {"response": [...]} envelope.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

from fpl_gateway.clients.base import (
    OP_CURRENT_ROUND,
    OP_FIXTURES,
    OP_PLAYERS,
    OP_STANDINGS,
    OP_TEAMS,
    SourceAdapter,
    cache_only,
)
from fpl_gateway.config import APIFootballConfig
from fpl_gateway.normalizer.schemas import DataSource, Fixture, Player, Round, Standing, Team
from fpl_gateway.normalizer.transformer import DataTransformer
from fpl_gateway.orchestrator.rate_limiter import DAY_SECONDS
from fpl_gateway.orchestrator.request_queue import RequestPriority
from fpl_gateway.orchestrator.ttl_policy import ResourceClass, is_match_window_active
from fpl_gateway.utils.exceptions import APIError, RateLimitedError, SchemaMismatchError

logger = logging.getLogger(__name__)

# Squad pages are fetched a few teams at a time with a pause in between
PLAYER_BATCH_SIZE = 5
PLAYER_BATCH_PAUSE = 2.0


class APIFootballAdapter(SourceAdapter):
    """API-Football v3 for one league and season.

    Endpoints:
        /fixtures?league&season[&round]   fixtures
        /teams?league&season              clubs
        /players?team&season&league       squad per team (batched)
        /standings?league&season          league table

    API-Football has no fantasy prices, no bootstrap bundle and no per-player
    live points, so reference data and live scores are not supported.
    """

    supported_operations = frozenset({
        OP_FIXTURES,
        OP_TEAMS,
        OP_PLAYERS,
        OP_CURRENT_ROUND,
        OP_STANDINGS,
    })

    def __init__(
        self,
        config,
        league_id: Optional[int] = None,
        season: Optional[int] = None,
        player_batch_size: int = PLAYER_BATCH_SIZE,
        player_batch_pause: float = PLAYER_BATCH_PAUSE,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
        **kwargs,
    ):
        """
        Initialize adapter.

        Args:
            config: Source configuration
            league_id: League to query (defaults to APIFootballConfig.LEAGUE_ID)
            season: Season year (defaults to APIFootballConfig.SEASON)
            player_batch_size: Teams per squad batch
            player_batch_pause: Seconds between squad batches
            sleep: Async sleep shared with the dispatch worker
            **kwargs: Forwarded to SourceAdapter
        """
        super().__init__(config, sleep=sleep, **kwargs)
        self.league_id = league_id or APIFootballConfig.LEAGUE_ID
        self.season = season or APIFootballConfig.SEASON
        self.player_batch_size = player_batch_size
        self.player_batch_pause = player_batch_pause
        self._sleep = sleep or asyncio.sleep

    def _league_params(self) -> dict:
        return {"league": self.league_id, "season": self.season}

    # ==================== PAYLOAD CHECKS ====================

    def _validate_payload(self, resource_class: ResourceClass, payload: Any) -> None:
        source = DataSource.API_FOOTBALL.value

        if not isinstance(payload, dict):
            raise SchemaMismatchError("Envelope is not an object", source=source, field="payload")

        # Quota and credential problems arrive as 200 with an errors object
        errors = payload.get("errors")
        if errors:
            messages = errors if isinstance(errors, dict) else {"error": errors}
            if "requests" in messages:
                now = self._clock()
                raise RateLimitedError(
                    f"{self.name} daily quota exhausted: {messages['requests']}",
                    retry_after=DAY_SECONDS - (now % DAY_SECONDS),
                    source=source,
                )
            if "rateLimit" in messages:
                raise RateLimitedError(
                    f"{self.name} rate limited: {messages['rateLimit']}",
                    source=source,
                )
            raise APIError(
                f"{self.name} returned errors: {messages}",
                source=source,
            )

        if not isinstance(payload.get("response"), list):
            raise SchemaMismatchError(
                "Envelope has no 'response' list", source=source, field="response"
            )

    def _match_active(self, resource_class: ResourceClass, payload: Any) -> bool:
        if resource_class != ResourceClass.FIXTURES_ROUND:
            return False
        return is_match_window_active(DataTransformer.football_fixtures(payload), self._clock())

    # ==================== OPERATIONS ====================

    async def fetch_fixtures(self, round_id: Optional[int] = None) -> list[Fixture]:
        params = self._league_params()
        if round_id is None:
            resource_class = ResourceClass.FIXTURES
        else:
            resource_class = ResourceClass.FIXTURES_ROUND
            params["round"] = f"Regular Season - {round_id}"

        payload = await self._fetch_resource("/fixtures", resource_class, params=params)
        return DataTransformer.football_fixtures(payload, round_id)

    async def fetch_teams(self) -> list[Team]:
        payload = await self._fetch_resource(
            "/teams", ResourceClass.TEAMS, params=self._league_params()
        )
        return DataTransformer.football_teams(payload)

    async def fetch_players(self) -> list[Player]:
        """
        Squads for every team, fetched a batch of teams at a time with a
        pause between batches to stay inside the minute quota.
        """
        teams = await self.fetch_teams()
        payloads = []

        for start in range(0, len(teams), self.player_batch_size):
            batch = teams[start:start + self.player_batch_size]
            results = await asyncio.gather(*(self._squad(team.id) for team in batch))
            payloads.extend(results)

            last_batch = start + self.player_batch_size >= len(teams)
            if not last_batch and self.player_batch_pause > 0 and not cache_only():
                await self._sleep(self.player_batch_pause)

        logger.info(
            f"Fetched squads for {len(teams)} teams from {self.name}",
            extra={"batch_size": self.player_batch_size},
        )
        return DataTransformer.football_players(payloads)

    async def _squad(self, team_id: int) -> dict:
        return await self._fetch_resource(
            "/players",
            ResourceClass.PLAYERS,
            params={"team": team_id, "season": self.season, "league": self.league_id},
            priority=RequestPriority.LOW,
        )

    async def fetch_standings(self) -> list[Standing]:
        payload = await self._fetch_resource(
            "/standings", ResourceClass.STANDINGS, params=self._league_params()
        )
        return DataTransformer.football_standings(payload)

    async def fetch_current_round(self) -> Round:
        """
        Derive the current round from season fixtures: the round of the
        first fixture that is in play or yet to kick off, else the last
        round (season over).
        """
        fixtures = await self.fetch_fixtures()
        if not fixtures:
            raise SchemaMismatchError(
                "No fixtures to derive the current round from",
                source=self.name,
                field="response",
            )

        now = self._clock()
        ordered = sorted(
            fixtures,
            key=lambda f: f.kickoff_time.timestamp() if f.kickoff_time else float("inf"),
        )
        upcoming = [
            f for f in ordered
            if (f.started and not f.finished)
            or (f.kickoff_time is not None and f.kickoff_time.timestamp() > now)
        ]

        fixture = upcoming[0] if upcoming else ordered[-1]
        if fixture.round is None:
            raise SchemaMismatchError(
                "Fixture round label is not a regular season round",
                source=self.name,
                field="league.round",
            )

        in_play = fixture.started and not fixture.finished
        return Round(
            source=DataSource.API_FOOTBALL,
            id=fixture.round,
            name=f"Gameweek {fixture.round}",
            deadline_time=fixture.kickoff_time,
            is_current=bool(upcoming) and in_play,
            is_next=bool(upcoming) and not fixture.started,
            finished=not upcoming,
        )
