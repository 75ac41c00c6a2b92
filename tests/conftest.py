"""
Pytest configuration and shared fixtures for FPL data gateway tests.

Provides:
    - Controllable clock and async sleep
    - Fake HTTP transport with scripted responses
    - Source configs and adapters wired to temporary SQLite files
    - Sample provider payloads
"""

import asyncio
import tempfile
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import pytest
import pytest_asyncio

from fpl_gateway.clients.api_football import APIFootballAdapter
from fpl_gateway.clients.http_client import HttpResponse
from fpl_gateway.clients.rapidapi_fpl import RapidAPIFPLAdapter
from fpl_gateway.config import SourceConfig
from fpl_gateway.utils.exceptions import APIError
from tests.fixtures import (
    START_TIME,
    football_fixtures,
    football_standings,
    football_teams,
    fpl_bootstrap,
    fpl_fixtures,
    fpl_live,
)


# ========== Time Fixtures ==========


class FakeClock:
    """Epoch-seconds clock that only moves when told to."""

    def __init__(self, start: float = START_TIME):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_sleep(clock: FakeClock) -> Callable:
    """
    Async sleep that advances the fake clock instead of waiting.

    Records every requested delay in fake_sleep.calls.
    """
    calls: List[float] = []

    async def _sleep(seconds: float) -> None:
        calls.append(seconds)
        clock.advance(seconds)
        await asyncio.sleep(0)

    _sleep.calls = calls
    return _sleep


# ========== Directory and Path Fixtures ==========


@pytest.fixture
def temp_cache_dir():
    """
    Create temporary directory for cache database.

    Yields:
        Path to temporary directory
    """
    with tempfile.TemporaryDirectory() as temp_dir:
        yield Path(temp_dir)


@pytest.fixture
def db_path(temp_cache_dir: Path) -> Path:
    return temp_cache_dir / "fpl_cache.db"


# ========== Fake Transport ==========


class FakeHttpClient:
    """
    Stand-in for SourceHttpClient with scripted outcomes per path.

    A route maps a path to a payload, an HttpResponse, an exception, a
    callable (path, params) -> outcome, or a list of those consumed in
    order (the last one repeats).
    """

    def __init__(self, routes: Optional[Dict[str, Any]] = None, delay: float = 0.0):
        self.routes: Dict[str, Any] = dict(routes or {})
        self.calls: List[Dict[str, Any]] = []
        self.delay = delay
        self.closed = False

    def set_route(self, path: str, *outcomes: Any) -> None:
        self.routes[path] = list(outcomes) if len(outcomes) > 1 else outcomes[0]

    def calls_to(self, path: str) -> List[Dict[str, Any]]:
        return [call for call in self.calls if call["path"] == path]

    async def get(
        self,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        etag: Optional[str] = None,
        last_modified: Optional[str] = None,
    ) -> HttpResponse:
        self.calls.append(
            {
                "path": path,
                "params": dict(params or {}),
                "etag": etag,
                "last_modified": last_modified,
            }
        )
        if self.delay:
            await asyncio.sleep(self.delay)

        if path not in self.routes:
            raise APIError(f"No route for {path}", endpoint=path, status_code=404)

        outcome = self.routes[path]
        if isinstance(outcome, list) and outcome and _is_outcome_list(outcome):
            outcome = outcome.pop(0) if len(outcome) > 1 else outcome[0]
        if callable(outcome) and not isinstance(outcome, type):
            outcome = outcome(path, params or {})
        if isinstance(outcome, Exception):
            raise outcome
        if isinstance(outcome, HttpResponse):
            return outcome
        return HttpResponse(status=200, data=outcome)

    async def close(self) -> None:
        self.closed = True

    def get_stats(self) -> Dict[str, Any]:
        return {"requests_made": len(self.calls)}


def _is_outcome_list(outcome: list) -> bool:
    """A list of scripted outcomes, as opposed to a list payload."""
    return all(isinstance(item, (Exception, HttpResponse)) or callable(item) for item in outcome)


@pytest.fixture
def fpl_http() -> FakeHttpClient:
    """Fake RapidAPI FPL transport serving the sample payloads."""
    return FakeHttpClient(
        {
            RapidAPIFPLAdapter.BOOTSTRAP_PATH: lambda path, params: fpl_bootstrap(),
            RapidAPIFPLAdapter.FIXTURES_PATH: lambda path, params: fpl_fixtures(params.get("event")),
            "/api/event/7/live/": lambda path, params: fpl_live(),
        }
    )


@pytest.fixture
def football_http() -> FakeHttpClient:
    """Fake API-Football transport serving the sample envelopes."""
    def fixtures(path, params):
        label = params.get("round")
        return football_fixtures(int(label.rsplit(" ", 1)[-1]) if label else None)

    return FakeHttpClient(
        {
            "/teams": lambda path, params: football_teams(),
            "/fixtures": fixtures,
            "/standings": lambda path, params: football_standings(),
        }
    )


# ========== Source Fixtures ==========


def build_source_config(name: str, **overrides) -> SourceConfig:
    """Test settings: generous quotas, no politeness delay, fast polling."""
    settings = {
        "name": name,
        "base_url": f"https://{name}.example.test",
        "api_key": "test-key",
        "host": f"{name}.example.test",
        "rate_limit_per_minute": 100,
        "rate_limit_per_day": 1000,
        "timeout": 5.0,
        "max_retries": 3,
        "failure_threshold": 5,
        "recovery_timeout": 60.0,
        "max_defer_seconds": 60.0,
        "base_request_delay": 0.0,
        "poll_interval": 0.01,
    }
    settings.update(overrides)
    return SourceConfig(**settings)


@pytest_asyncio.fixture
async def make_adapter(clock, fake_sleep, db_path):
    """
    Factory for adapters sharing the fake clock, fake sleep and a temp database.

    Usage:
        adapter = make_adapter(RapidAPIFPLAdapter, http=fpl_http, rate_limit_per_minute=5)
    """
    created = []

    def _make(adapter_cls=RapidAPIFPLAdapter, http=None, adapter_kwargs=None, **config_overrides):
        name = "api_football" if adapter_cls is APIFootballAdapter else "rapidapi_fpl"
        config = build_source_config(name, **config_overrides)
        kwargs = dict(adapter_kwargs or {})
        if adapter_cls is APIFootballAdapter:
            kwargs.setdefault("player_batch_pause", 0.0)
        adapter = adapter_cls(
            config,
            http_client=http or FakeHttpClient(),
            db_path=db_path,
            clock=clock,
            sleep=fake_sleep,
            **kwargs,
        )
        created.append(adapter)
        return adapter

    yield _make

    for adapter in created:
        await adapter.close()


@pytest_asyncio.fixture
async def fpl_adapter(make_adapter, fpl_http) -> RapidAPIFPLAdapter:
    return make_adapter(RapidAPIFPLAdapter, http=fpl_http)


@pytest_asyncio.fixture
async def football_adapter(make_adapter, football_http) -> APIFootballAdapter:
    return make_adapter(APIFootballAdapter, http=football_http)
