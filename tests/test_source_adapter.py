"""
Tests for the per-source adapter pipeline.

Tests cover:
    - Concurrent dedup and cache-hit idempotence
    - Conditional revalidation (304)
    - Live TTL shortening during the match window
    - Breaker fail-fast and schema mismatch handling
    - API-Football envelope errors, squads, standings and current round
    - Cached and stale reads
    - Schema drift logging
"""

import asyncio
from datetime import datetime, timezone
from unittest.mock import patch

import pytest

from fpl_gateway.clients.api_football import APIFootballAdapter
from fpl_gateway.clients.base import SourceAdapter, make_resource_key
from fpl_gateway.clients.http_client import HttpResponse
from fpl_gateway.clients.rapidapi_fpl import RapidAPIFPLAdapter
from fpl_gateway.orchestrator.ttl_policy import HOUR, MINUTE
from fpl_gateway.utils.exceptions import (
    APIError,
    CircuitOpenError,
    FPLGatewayError,
    RateLimitedError,
    SchemaMismatchError,
    UpstreamServerError,
)
from tests.conftest import FakeHttpClient
from tests.fixtures import football_envelope, football_squad, fpl_bootstrap

BOOTSTRAP = RapidAPIFPLAdapter.BOOTSTRAP_PATH
FIXTURES = RapidAPIFPLAdapter.FIXTURES_PATH


class TestResourceKey:
    """Test cache key construction."""

    def test_params_sorted(self):
        key = make_resource_key("/fixtures", {"season": 2025, "league": 39})

        assert key == "/fixtures?league=39&season=2025"

    def test_slashes_normalized(self):
        assert make_resource_key("/api/bootstrap-static/") == "/api/bootstrap-static"


class TestPipeline:
    """Test dedup, cache and conditional requests."""

    @pytest.mark.asyncio
    async def test_concurrent_requests_share_one_call(self, make_adapter):
        http = FakeHttpClient({BOOTSTRAP: fpl_bootstrap()}, delay=0.01)
        adapter = make_adapter(RapidAPIFPLAdapter, http=http)

        results = await asyncio.gather(*(adapter.fetch_teams() for _ in range(5)))

        assert len(http.calls_to(BOOTSTRAP)) == 1
        assert all(len(teams) == 3 for teams in results)
        assert adapter.dedup.get_statistics()["coalesced"] == 4

    @pytest.mark.asyncio
    async def test_cache_hit_is_idempotent(self, fpl_adapter, fpl_http):
        first = await fpl_adapter.fetch_teams()
        second = await fpl_adapter.fetch_teams()
        players = await fpl_adapter.fetch_players()

        assert first == second
        assert len(players) == 5
        assert len(fpl_http.calls_to(BOOTSTRAP)) == 1
        assert fpl_adapter.cache.peek(make_resource_key(BOOTSTRAP)).hit_count == 2

        stats = fpl_adapter.get_statistics()
        assert stats["counters"]["cache_hits"] == 2
        assert stats["counters"]["upstream_calls"] == 1

    @pytest.mark.asyncio
    async def test_expired_entry_revalidated_with_etag(self, make_adapter, clock):
        http = FakeHttpClient()
        http.set_route(
            BOOTSTRAP,
            HttpResponse(status=200, data=fpl_bootstrap(), etag='"v1"'),
            HttpResponse(status=304),
        )
        adapter = make_adapter(RapidAPIFPLAdapter, http=http)

        await adapter.fetch_teams()
        clock.advance(25 * HOUR)
        teams = await adapter.fetch_teams()

        calls = http.calls_to(BOOTSTRAP)
        assert len(calls) == 2
        assert calls[0]["etag"] is None
        assert calls[1]["etag"] == '"v1"'
        assert len(teams) == 3

        entry = adapter.cache.peek(make_resource_key(BOOTSTRAP))
        assert entry.fetched_at == clock.now
        assert adapter.get_statistics()["counters"]["not_modified"] == 1

    @pytest.mark.asyncio
    async def test_not_modified_without_entry_is_error(self, make_adapter):
        http = FakeHttpClient()
        http.set_route(BOOTSTRAP, HttpResponse(status=304))
        adapter = make_adapter(RapidAPIFPLAdapter, http=http)

        with pytest.raises(APIError) as exc_info:
            await adapter.fetch_teams()

        assert exc_info.value.status_code == 304

    @pytest.mark.asyncio
    async def test_not_modified_after_eviction_refetches(self, make_adapter, clock):
        http = FakeHttpClient()
        adapter = make_adapter(RapidAPIFPLAdapter, http=http)
        key = make_resource_key(BOOTSTRAP)

        def evict_then_not_modified(path, params):
            adapter.cache.delete(key)
            return HttpResponse(status=304)

        http.set_route(
            BOOTSTRAP,
            HttpResponse(status=200, data=fpl_bootstrap(), etag='"v1"'),
            evict_then_not_modified,
            HttpResponse(status=200, data=fpl_bootstrap(), etag='"v2"'),
        )

        await adapter.fetch_teams()
        clock.advance(25 * HOUR)
        teams = await adapter.fetch_teams()

        calls = http.calls_to(BOOTSTRAP)
        assert len(calls) == 3
        assert calls[1]["etag"] == '"v1"'
        assert calls[2]["etag"] is None
        assert len(teams) == 3
        assert adapter.cache.peek(key).etag == '"v2"'

    @pytest.mark.asyncio
    async def test_transient_error_retried(self, make_adapter):
        http = FakeHttpClient()
        http.set_route(
            BOOTSTRAP,
            UpstreamServerError("Bad gateway", status_code=502),
            HttpResponse(status=200, data=fpl_bootstrap()),
        )
        adapter = make_adapter(RapidAPIFPLAdapter, http=http)

        teams = await adapter.fetch_teams()

        assert len(teams) == 3
        assert len(http.calls_to(BOOTSTRAP)) == 2

    @pytest.mark.asyncio
    async def test_quota_headers_adopted(self, make_adapter):
        http = FakeHttpClient()
        http.set_route(
            BOOTSTRAP,
            HttpResponse(
                status=200, data=fpl_bootstrap(), rate_limit_remaining=0, rate_limit_limit=500
            ),
        )
        adapter = make_adapter(RapidAPIFPLAdapter, http=http)

        await adapter.fetch_teams()

        assert adapter.limiter.day_exhausted


class TestResilience:
    """Test breaker gating and payload checks."""

    @pytest.mark.asyncio
    async def test_open_circuit_never_reaches_network(self, fpl_adapter, fpl_http):
        for _ in range(fpl_adapter.breaker.failure_threshold):
            fpl_adapter.breaker.record_failure()

        with pytest.raises(CircuitOpenError):
            await fpl_adapter.fetch_teams()

        assert fpl_http.calls == []

    @pytest.mark.asyncio
    async def test_cache_served_while_circuit_open(self, fpl_adapter, fpl_http):
        await fpl_adapter.fetch_teams()
        for _ in range(fpl_adapter.breaker.failure_threshold):
            fpl_adapter.breaker.record_failure()

        teams = await fpl_adapter.fetch_teams()

        assert len(teams) == 3
        assert len(fpl_http.calls) == 1

    @pytest.mark.asyncio
    async def test_schema_mismatch_not_cached_or_counted(self, make_adapter):
        http = FakeHttpClient({BOOTSTRAP: {"events": [], "teams": []}})
        adapter = make_adapter(RapidAPIFPLAdapter, http=http)

        with pytest.raises(SchemaMismatchError) as exc_info:
            await adapter.fetch_teams()

        assert exc_info.value.field == "elements"
        assert adapter.cache.peek(make_resource_key(BOOTSTRAP)) is None
        assert adapter.breaker.failure_count == 0

    @pytest.mark.asyncio
    async def test_unsupported_operation(self, football_adapter):
        assert not football_adapter.supports("live_scores")

        with pytest.raises(FPLGatewayError):
            await football_adapter.fetch_live_scores(7)


class TestRapidAPIFPL:
    """Test provider A operations."""

    @pytest.mark.asyncio
    async def test_reference_data(self, fpl_adapter):
        reference = await fpl_adapter.fetch_reference_data()

        assert len(reference.rounds) == 2
        assert reference.get_team(7).short_name == "CHE"

    @pytest.mark.asyncio
    async def test_current_round(self, fpl_adapter):
        current = await fpl_adapter.fetch_current_round()

        assert current.id == 7
        assert current.is_current

    @pytest.mark.asyncio
    async def test_fixtures_join_cached_team_names(self, fpl_adapter):
        before = await fpl_adapter.fetch_fixtures()
        await fpl_adapter.fetch_teams()
        after = await fpl_adapter.fetch_fixtures()

        assert before[0].home_team_name is None
        assert after[0].home_team_name == "Arsenal"
        assert after[0].away_team_name == "Chelsea"

    @pytest.mark.asyncio
    async def test_round_fixtures_use_event_param(self, fpl_adapter, fpl_http):
        fixtures = await fpl_adapter.fetch_fixtures(round_id=8)

        assert [f.id for f in fixtures] == [71]
        assert fpl_http.calls_to(FIXTURES)[0]["params"] == {"event": 8}

    @pytest.mark.asyncio
    async def test_live_ttl_outside_match_window(self, fpl_adapter):
        live = await fpl_adapter.fetch_live_scores(7)

        entry = fpl_adapter.cache.peek("/api/event/7/live")
        assert live.get_player(2).total_points == 13
        assert entry.ttl == 30 * MINUTE

    @pytest.mark.asyncio
    async def test_live_ttl_shortened_during_match(self, fpl_adapter, fpl_http, clock):
        kickoff = datetime(2025, 10, 18, 14, 0, tzinfo=timezone.utc).timestamp()
        clock.now = kickoff + 20 * MINUTE
        fpl_http.set_route("/api/event/8/live/", {"elements": []})

        live = await fpl_adapter.fetch_live_scores(8)

        assert live.round == 8
        assert fpl_adapter.cache.peek("/api/event/8/live").ttl == 10 * MINUTE
        assert fpl_adapter.cache.peek("/api/fixtures?event=8").ttl == HOUR

    @pytest.mark.asyncio
    async def test_live_scores_fetch_round_fixtures_first(self, fpl_adapter):
        await fpl_adapter.fetch_live_scores(7)

        assert fpl_adapter.scheduler.get_statistics()["succeeded"] == 2

    @pytest.mark.asyncio
    async def test_round_fixtures_not_found(self, fpl_adapter):
        fixtures = await fpl_adapter.fetch_fixtures(round_id=30)

        assert fixtures == []


class TestAPIFootball:
    """Test provider B operations."""

    @pytest.mark.asyncio
    async def test_teams_with_league_params(self, make_adapter, football_http):
        adapter = make_adapter(
            APIFootballAdapter, http=football_http,
            adapter_kwargs={"league_id": 39, "season": 2025},
        )

        teams = await adapter.fetch_teams()

        assert [t.short_name for t in teams] == ["ARS", "CHE", "NFO"]
        assert football_http.calls_to("/teams")[0]["params"] == {"league": 39, "season": 2025}

    @pytest.mark.asyncio
    async def test_round_fixtures(self, football_adapter, football_http):
        fixtures = await football_adapter.fetch_fixtures(round_id=7)

        assert [f.id for f in fixtures] == [1208061]
        assert fixtures[0].round == 7
        assert football_http.calls_to("/fixtures")[0]["params"]["round"] == "Regular Season - 7"

    @pytest.mark.asyncio
    async def test_players_fetched_in_batches(self, make_adapter, football_http, fake_sleep):
        football_http.set_route("/players", lambda path, params: football_squad(params["team"]))
        adapter = make_adapter(
            APIFootballAdapter, http=football_http,
            adapter_kwargs={"player_batch_size": 2, "player_batch_pause": 1.5},
        )

        players = await adapter.fetch_players()

        assert len(players) == 6
        assert len(football_http.calls_to("/players")) == 3
        assert fake_sleep.calls.count(1.5) == 1
        assert all(p.now_cost is None for p in players)

    @pytest.mark.asyncio
    async def test_standings(self, football_adapter):
        standings = await football_adapter.fetch_standings()

        assert standings[0].team_name == "Arsenal"
        assert standings[1].rank == 2

    @pytest.mark.asyncio
    async def test_current_round_from_fixtures(self, football_adapter):
        current = await football_adapter.fetch_current_round()

        assert current.id == 8
        assert current.is_next
        assert not current.finished

    @pytest.mark.asyncio
    async def test_daily_quota_error_envelope(self, football_adapter, football_http):
        football_http.set_route(
            "/teams",
            football_envelope(
                "teams", [], errors={"requests": "You have reached the request limit for the day"}
            ),
        )

        with pytest.raises(RateLimitedError):
            await football_adapter.fetch_teams()

        assert len(football_http.calls_to("/teams")) == 1
        assert football_adapter.breaker.failure_count == 0

    @pytest.mark.asyncio
    async def test_credential_error_envelope(self, football_adapter, football_http):
        football_http.set_route(
            "/teams", football_envelope("teams", [], errors={"token": "Missing application key"})
        )

        with pytest.raises(APIError):
            await football_adapter.fetch_teams()

        assert len(football_http.calls_to("/teams")) == 1


class TestStaleReads:
    """Test cache-only mode used after total failure."""

    @pytest.mark.asyncio
    async def test_expired_entry_served_without_network(self, fpl_adapter, fpl_http, clock):
        await fpl_adapter.fetch_teams()
        clock.advance(48 * HOUR)

        with SourceAdapter.stale_reads():
            teams = await fpl_adapter.fetch_teams()

        assert len(teams) == 3
        assert len(fpl_http.calls) == 1
        assert fpl_adapter.get_statistics()["counters"]["stale_served"] == 1

    @pytest.mark.asyncio
    async def test_missing_entry_raises(self, fpl_adapter, fpl_http):
        with SourceAdapter.stale_reads():
            with pytest.raises(APIError):
                await fpl_adapter.fetch_teams()

        assert fpl_http.calls == []


class TestCachedReads:
    """Test fresh-only cache mode used while a source is unavailable."""

    @pytest.mark.asyncio
    async def test_fresh_entry_served_without_network(self, fpl_adapter, fpl_http):
        await fpl_adapter.fetch_teams()

        with SourceAdapter.cached_reads():
            teams = await fpl_adapter.fetch_teams()

        assert len(teams) == 3
        assert len(fpl_http.calls) == 1
        assert fpl_adapter.cache.peek(make_resource_key(BOOTSTRAP)).hit_count == 1
        assert fpl_adapter.get_statistics()["counters"]["cache_hits"] == 1

    @pytest.mark.asyncio
    async def test_expired_entry_raises(self, fpl_adapter, fpl_http, clock):
        await fpl_adapter.fetch_teams()
        clock.advance(25 * HOUR)

        with SourceAdapter.cached_reads():
            with pytest.raises(APIError):
                await fpl_adapter.fetch_teams()

        assert len(fpl_http.calls) == 1
        assert fpl_adapter.get_statistics()["counters"]["stale_served"] == 0

    @pytest.mark.asyncio
    async def test_squads_skip_batch_pause(self, make_adapter, football_http, fake_sleep):
        adapter = make_adapter(
            APIFootballAdapter,
            http=football_http,
            adapter_kwargs={"player_batch_size": 1, "player_batch_pause": 5.0},
        )
        football_http.set_route(
            "/players", lambda path, params: football_squad(params["team"])
        )
        await adapter.fetch_players()
        pauses = len(fake_sleep.calls)

        with SourceAdapter.cached_reads():
            players = await adapter.fetch_players()

        assert players
        assert fake_sleep.calls[pauses:].count(5.0) == 0


class TestSchemaDriftLogging:
    """Test that payload shape errors reach the schema logger."""

    @pytest.mark.asyncio
    async def test_envelope_mismatch_logged(self, football_adapter, football_http):
        football_http.set_route("/teams", {"get": "teams", "results": 0})

        with patch("fpl_gateway.clients.base.get_schema_logger") as schema_logger:
            with pytest.raises(SchemaMismatchError):
                await football_adapter.fetch_teams()

        log_error = schema_logger.return_value.error
        log_error.assert_called_once()
        assert log_error.call_args.args[0] == "api_football: Envelope has no 'response' list"
        assert log_error.call_args.kwargs["extra"]["field"] == "response"

    @pytest.mark.asyncio
    async def test_undecodable_body_logged(self, make_adapter):
        http = FakeHttpClient({
            BOOTSTRAP: SchemaMismatchError(
                "Response body from rapidapi_fpl is not valid JSON",
                source="rapidapi_fpl",
                field=BOOTSTRAP,
            )
        })
        adapter = make_adapter(RapidAPIFPLAdapter, http=http)

        with patch("fpl_gateway.clients.base.get_schema_logger") as schema_logger:
            with pytest.raises(SchemaMismatchError):
                await adapter.fetch_teams()

        log_error = schema_logger.return_value.error
        log_error.assert_called_once()
        assert "not valid JSON" in log_error.call_args.args[0]
        assert log_error.call_args.kwargs["extra"]["endpoint"] == make_resource_key(BOOTSTRAP)

    @pytest.mark.asyncio
    async def test_transport_errors_not_logged_as_drift(self, make_adapter):
        http = FakeHttpClient({BOOTSTRAP: UpstreamServerError("Bad gateway", status_code=502)})
        adapter = make_adapter(RapidAPIFPLAdapter, http=http, max_retries=0)

        with patch("fpl_gateway.clients.base.get_schema_logger") as schema_logger:
            with pytest.raises(UpstreamServerError):
                await adapter.fetch_teams()

        schema_logger.return_value.error.assert_not_called()
