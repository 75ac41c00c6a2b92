"""
Fantasy Premier League API client (RapidAPI).

Provider A: the scoring-critical source. Serves the bootstrap bundle
(rounds, teams, players), fixtures and per-round live points in the
native FPL shape.
"""

import logging
from typing import Any, Optional

from fpl_gateway.clients.base import (
    OP_CURRENT_ROUND,
    OP_FIXTURES,
    OP_LIVE,
    OP_PLAYERS,
    OP_REFERENCE,
    OP_TEAMS,
    SourceAdapter,
    make_resource_key,
)
from fpl_gateway.normalizer.schemas import (
    DataSource,
    Fixture,
    LiveScores,
    Player,
    ReferenceData,
    Round,
    Team,
)
from fpl_gateway.normalizer.transformer import DataTransformer
from fpl_gateway.orchestrator.request_queue import RequestPriority
from fpl_gateway.orchestrator.ttl_policy import ResourceClass, is_match_window_active
from fpl_gateway.utils.exceptions import SchemaMismatchError

logger = logging.getLogger(__name__)


class RapidAPIFPLAdapter(SourceAdapter):
    """FPL data through the RapidAPI proxy.

    Endpoints:
        /api/bootstrap-static/      reference bundle (high priority, 24 h)
        /api/fixtures/[?event=N]    fixtures (12 h, or 6 h per round)
        /api/event/N/live/          live points (high priority, 30 min)

    Example:
        ```python
        adapter = RapidAPIFPLAdapter(SourceConfig.rapidapi_fpl_from_env())
        await adapter.start()
        teams = await adapter.fetch_teams()
        await adapter.close()
        ```
    """

    BOOTSTRAP_PATH = "/api/bootstrap-static/"
    FIXTURES_PATH = "/api/fixtures/"
    LIVE_PATH = "/api/event/{round_id}/live/"

    supported_operations = frozenset({
        OP_REFERENCE,
        OP_FIXTURES,
        OP_LIVE,
        OP_TEAMS,
        OP_PLAYERS,
        OP_CURRENT_ROUND,
    })

    # ==================== PAYLOAD CHECKS ====================

    def _validate_payload(self, resource_class: ResourceClass, payload: Any) -> None:
        source = DataSource.RAPIDAPI_FPL.value

        if resource_class == ResourceClass.REFERENCE:
            if not isinstance(payload, dict):
                raise SchemaMismatchError(
                    "bootstrap-static payload is not an object", source=source, field="payload"
                )
            for key in ("events", "teams", "elements"):
                if not isinstance(payload.get(key), list):
                    raise SchemaMismatchError(
                        f"bootstrap-static payload has no '{key}' list", source=source, field=key
                    )

        elif resource_class in (ResourceClass.FIXTURES, ResourceClass.FIXTURES_ROUND):
            if not isinstance(payload, list):
                raise SchemaMismatchError(
                    "fixtures payload is not a list", source=source, field="payload"
                )

        elif resource_class == ResourceClass.LIVE:
            if not isinstance(payload, dict) or not isinstance(payload.get("elements"), list):
                raise SchemaMismatchError(
                    "live payload has no 'elements' list", source=source, field="elements"
                )

    def _match_active(self, resource_class: ResourceClass, payload: Any) -> bool:
        if resource_class != ResourceClass.FIXTURES_ROUND:
            return False
        return is_match_window_active(DataTransformer.fpl_fixtures(payload), self._clock())

    # ==================== OPERATIONS ====================

    async def _bootstrap(self) -> dict:
        return await self._fetch_resource(
            self.BOOTSTRAP_PATH,
            ResourceClass.REFERENCE,
            priority=RequestPriority.HIGH,
        )

    def _cached_teams(self) -> Optional[list[Team]]:
        """Teams from the bootstrap entry already in cache, fresh or not."""
        entry = self._peek(make_resource_key(self.BOOTSTRAP_PATH))
        if entry is None:
            return None
        try:
            return DataTransformer.fpl_teams(entry.payload)
        except SchemaMismatchError:
            return None

    async def fetch_reference_data(self) -> ReferenceData:
        """Rounds, teams and players from bootstrap-static."""
        return DataTransformer.fpl_reference(await self._bootstrap())

    async def fetch_teams(self) -> list[Team]:
        return DataTransformer.fpl_teams(await self._bootstrap())

    async def fetch_players(self) -> list[Player]:
        return DataTransformer.fpl_players(await self._bootstrap())

    async def fetch_current_round(self) -> Round:
        """The current round, else the next one, else the first."""
        rounds = DataTransformer.fpl_rounds(await self._bootstrap())
        current = ReferenceData(source=DataSource.RAPIDAPI_FPL, rounds=rounds).current_round()
        if current is None:
            raise SchemaMismatchError(
                "bootstrap-static lists no rounds",
                source=self.name,
                field="events",
            )
        return current

    async def fetch_fixtures(self, round_id: Optional[int] = None) -> list[Fixture]:
        """
        Fixtures for the season or one round, with team names joined from
        the cached bootstrap teams.
        """
        if round_id is None:
            payload = await self._fetch_resource(self.FIXTURES_PATH, ResourceClass.FIXTURES)
        else:
            payload = await self._fetch_resource(
                self.FIXTURES_PATH,
                ResourceClass.FIXTURES_ROUND,
                params={"event": round_id},
            )
        return DataTransformer.fpl_fixtures(payload, self._cached_teams())

    async def fetch_live_scores(self, round_id: int) -> LiveScores:
        """
        Live points for a round.

        The cache TTL drops from 30 to 10 minutes while one of the round's
        fixtures is inside its match window.
        """
        fixtures = await self.fetch_fixtures(round_id)
        match_active = is_match_window_active(fixtures, self._clock())
        ttl = self.policies[ResourceClass.LIVE].resolve(match_active)

        payload = await self._fetch_resource(
            self.LIVE_PATH.format(round_id=round_id),
            ResourceClass.LIVE,
            priority=RequestPriority.HIGH,
            ttl=ttl,
        )
        logger.debug(
            f"Live scores for round {round_id}",
            extra={"match_active": match_active, "ttl": ttl},
        )
        return DataTransformer.fpl_live(payload, round_id)
