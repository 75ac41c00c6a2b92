"""
Data transformation module for normalizing multi-provider football data.

Maps raw FPL (RapidAPI) and API-Football v3 payloads field by field into
the gateway's domain models. Required fields that are missing or cannot be
mapped raise SchemaMismatchError naming the provider and field; optional
fields without a provider equivalent are left as None.
"""

import re
from datetime import datetime
from typing import Any, Iterable, Optional, Type, TypeVar

from pydantic import ValidationError

from fpl_gateway.normalizer.schemas import (
    DataSource,
    Fixture,
    GatewayModel,
    LivePlayerStats,
    LiveScores,
    Player,
    Position,
    ReferenceData,
    Round,
    Standing,
    Team,
)
from fpl_gateway.utils.exceptions import SchemaMismatchError
from fpl_gateway.utils.logger import get_schema_logger

ModelT = TypeVar("ModelT", bound=GatewayModel)

_MISSING = object()

ROUND_PATTERN = re.compile(r"Regular Season - (\d+)")


class DataTransformer:
    """
    Transform provider payloads into normalized domain models.

    Handles envelope unwrapping, field mapping, type conversion and
    validation for the FPL bootstrap/fixtures/live shapes and the
    API-Football v3 response envelope.
    """

    # API-Football position labels
    POSITION_MAP = {
        "Goalkeeper": Position.GOALKEEPER,
        "Defender": Position.DEFENDER,
        "Midfielder": Position.MIDFIELDER,
        "Attacker": Position.FORWARD,
        "Forward": Position.FORWARD,
    }

    # API-Football club names without an FPL-style abbreviation
    SHORT_NAMES = {
        "Manchester United": "MUN",
        "Manchester City": "MCI",
        "Liverpool": "LIV",
        "Chelsea": "CHE",
        "Arsenal": "ARS",
        "Tottenham": "TOT",
        "Newcastle": "NEW",
        "Brighton": "BHA",
        "Aston Villa": "AVL",
        "West Ham": "WHU",
        "Crystal Palace": "CRY",
        "Fulham": "FUL",
        "Wolverhampton Wanderers": "WOL",
        "Everton": "EVE",
        "Brentford": "BRE",
        "Nottingham Forest": "NFO",
        "Luton": "LUT",
        "Burnley": "BUR",
        "Sheffield United": "SHU",
        "Bournemouth": "BOU",
    }

    # API-Football fixture status short codes
    STARTED_STATUSES = frozenset({"1H", "HT", "2H", "ET", "BT", "P", "FT", "AET", "PEN"})
    FINISHED_STATUSES = frozenset({"FT", "AET", "PEN"})

    # ==================== SHARED HELPERS ====================

    @staticmethod
    def _mismatch(message: str, source: DataSource, field: str, value: Any = None) -> SchemaMismatchError:
        get_schema_logger().error(
            f"{source.value}: {message}",
            extra={"source": source.value, "field": field},
        )
        return SchemaMismatchError(message, source=source.value, field=field, value=value)

    @staticmethod
    def _require(record: Any, field: str, source: DataSource) -> Any:
        """Get a required field, raising SchemaMismatchError when absent or null."""
        if not isinstance(record, dict):
            raise DataTransformer._mismatch(
                f"Expected an object containing '{field}'", source, field, record
            )
        value = record.get(field, _MISSING)
        if value is _MISSING or value is None:
            raise DataTransformer._mismatch(f"Missing required field: {field}", source, field)
        return value

    @staticmethod
    def _path(record: Any, path: str, source: DataSource, required: bool = True) -> Any:
        """Walk a dotted path through nested objects."""
        value = record
        for part in path.split("."):
            if not isinstance(value, dict) or value.get(part) is None:
                if required:
                    raise DataTransformer._mismatch(
                        f"Missing required field: {path}", source, path
                    )
                return None
            value = value[part]
        return value

    @staticmethod
    def _records(payload: Any, key: Optional[str], source: DataSource) -> list:
        """Extract a list of records from a payload, optionally below key."""
        records = payload
        if key is not None:
            records = DataTransformer._require(payload, key, source)
        if not isinstance(records, list):
            raise DataTransformer._mismatch(
                f"Expected a list for '{key or 'payload'}'", source, key or "payload", records
            )
        return records

    @staticmethod
    def unwrap_envelope(payload: Any, source: DataSource = DataSource.API_FOOTBALL) -> list:
        """Return the 'response' list of an API-Football envelope."""
        return DataTransformer._records(payload, "response", source)

    @staticmethod
    def _parse_datetime(value: Optional[str], source: DataSource, field: str) -> Optional[datetime]:
        if value is None:
            return None
        try:
            return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            raise DataTransformer._mismatch(f"Invalid timestamp in {field}", source, field, value)

    @staticmethod
    def _build(model: Type[ModelT], source: DataSource, **fields) -> ModelT:
        try:
            return model(source=source, **fields)
        except ValidationError as e:
            error = e.errors()[0]
            field = ".".join(str(part) for part in error.get("loc", ())) or model.__name__
            raise DataTransformer._mismatch(
                f"Invalid {model.__name__}: {error.get('msg')}", source, field, error.get("input")
            ) from e

    @staticmethod
    def generate_short_name(name: str) -> str:
        """Fixed abbreviation for known clubs, else the first three letters upper-cased."""
        return DataTransformer.SHORT_NAMES.get(name, name[:3].upper())

    @staticmethod
    def extract_round(round_label: Optional[str]) -> Optional[int]:
        """Round number from labels like 'Regular Season - 15'."""
        if not round_label:
            return None
        match = ROUND_PATTERN.search(round_label)
        return int(match.group(1)) if match else None

    # ==================== FPL (RAPIDAPI) ====================

    @staticmethod
    def fpl_teams(bootstrap: dict) -> list[Team]:
        source = DataSource.RAPIDAPI_FPL
        teams = []
        for record in DataTransformer._records(bootstrap, "teams", source):
            teams.append(
                DataTransformer._build(
                    Team,
                    source,
                    id=DataTransformer._require(record, "id", source),
                    name=DataTransformer._require(record, "name", source),
                    short_name=DataTransformer._require(record, "short_name", source),
                    code=record.get("code"),
                    strength=record.get("strength"),
                )
            )
        return teams

    @staticmethod
    def fpl_players(bootstrap: dict) -> list[Player]:
        source = DataSource.RAPIDAPI_FPL
        players = []
        for record in DataTransformer._records(bootstrap, "elements", source):
            element_type = DataTransformer._require(record, "element_type", source)
            try:
                position = Position.from_element_type(int(element_type))
            except (TypeError, ValueError):
                raise DataTransformer._mismatch(
                    "Unknown element_type", source, "element_type", element_type
                )

            players.append(
                DataTransformer._build(
                    Player,
                    source,
                    id=DataTransformer._require(record, "id", source),
                    first_name=record.get("first_name") or "",
                    second_name=DataTransformer._require(record, "second_name", source),
                    web_name=DataTransformer._require(record, "web_name", source),
                    team_id=DataTransformer._require(record, "team", source),
                    position=position,
                    now_cost=DataTransformer._require(record, "now_cost", source),
                    total_points=record.get("total_points"),
                    status=record.get("status"),
                    photo=record.get("photo"),
                )
            )
        return players

    @staticmethod
    def fpl_rounds(bootstrap: dict) -> list[Round]:
        source = DataSource.RAPIDAPI_FPL
        rounds = []
        for record in DataTransformer._records(bootstrap, "events", source):
            round_id = DataTransformer._require(record, "id", source)
            rounds.append(
                DataTransformer._build(
                    Round,
                    source,
                    id=round_id,
                    name=record.get("name") or f"Gameweek {round_id}",
                    deadline_time=DataTransformer._parse_datetime(
                        record.get("deadline_time"), source, "deadline_time"
                    ),
                    is_current=bool(record.get("is_current")),
                    is_next=bool(record.get("is_next")),
                    finished=bool(record.get("finished")),
                )
            )
        return rounds

    @staticmethod
    def fpl_reference(bootstrap: dict) -> ReferenceData:
        """Normalize a bootstrap-static payload into rounds, teams and players."""
        return ReferenceData(
            source=DataSource.RAPIDAPI_FPL,
            rounds=DataTransformer.fpl_rounds(bootstrap),
            teams=DataTransformer.fpl_teams(bootstrap),
            players=DataTransformer.fpl_players(bootstrap),
        )

    @staticmethod
    def fpl_fixtures(payload: list, teams: Optional[Iterable[Team]] = None) -> list[Fixture]:
        """
        Normalize FPL fixtures, joining team names when teams are given.

        Args:
            payload: Raw fixtures list
            teams: Normalized FPL teams used to resolve names

        Returns:
            Fixtures; team names stay None for ids that cannot be resolved
        """
        source = DataSource.RAPIDAPI_FPL
        teams_by_id = {team.id: team for team in teams or ()}
        fixtures = []

        for record in DataTransformer._records(payload, None, source):
            home_id = DataTransformer._require(record, "team_h", source)
            away_id = DataTransformer._require(record, "team_a", source)
            home = teams_by_id.get(home_id)
            away = teams_by_id.get(away_id)

            fixtures.append(
                DataTransformer._build(
                    Fixture,
                    source,
                    id=DataTransformer._require(record, "id", source),
                    round=record.get("event"),
                    kickoff_time=DataTransformer._parse_datetime(
                        record.get("kickoff_time"), source, "kickoff_time"
                    ),
                    home_team_id=home_id,
                    away_team_id=away_id,
                    home_team_name=home.name if home else None,
                    away_team_name=away.name if away else None,
                    home_team_short=home.short_name if home else None,
                    away_team_short=away.short_name if away else None,
                    home_score=record.get("team_h_score"),
                    away_score=record.get("team_a_score"),
                    started=bool(record.get("started")),
                    finished=bool(record.get("finished") or record.get("finished_provisional")),
                    minutes=record.get("minutes") or 0,
                )
            )
        return fixtures

    @staticmethod
    def fpl_live(payload: dict, round_id: int) -> LiveScores:
        """Normalize an event/N/live payload."""
        source = DataSource.RAPIDAPI_FPL
        players = []
        for record in DataTransformer._records(payload, "elements", source):
            stats = DataTransformer._require(record, "stats", source)
            players.append(
                DataTransformer._build(
                    LivePlayerStats,
                    source,
                    player_id=DataTransformer._require(record, "id", source),
                    total_points=DataTransformer._require(stats, "total_points", source),
                    minutes=stats.get("minutes") or 0,
                    goals_scored=stats.get("goals_scored") or 0,
                    assists=stats.get("assists") or 0,
                    clean_sheets=stats.get("clean_sheets") or 0,
                    bonus=stats.get("bonus") or 0,
                )
            )
        return DataTransformer._build(LiveScores, source, round=round_id, players=players)

    # ==================== API-FOOTBALL ====================

    @staticmethod
    def football_teams(payload: dict) -> list[Team]:
        source = DataSource.API_FOOTBALL
        teams = []
        for record in DataTransformer.unwrap_envelope(payload, source):
            team = DataTransformer._path(record, "team", source)
            name = DataTransformer._require(team, "name", source)
            teams.append(
                DataTransformer._build(
                    Team,
                    source,
                    id=DataTransformer._require(team, "id", source),
                    name=name,
                    short_name=DataTransformer.generate_short_name(name),
                    logo=team.get("logo"),
                )
            )
        return teams

    @staticmethod
    def football_players(payloads: Iterable[dict]) -> list[Player]:
        """
        Normalize squad pages from one or more /players responses.

        API-Football publishes no prices or fantasy points, so now_cost and
        total_points stay None. An unknown position label is a schema
        mismatch rather than a silent default.
        """
        source = DataSource.API_FOOTBALL
        players = []
        seen = set()

        for payload in payloads:
            for record in DataTransformer.unwrap_envelope(payload, source):
                player = DataTransformer._path(record, "player", source)
                statistics = DataTransformer._records(record, "statistics", source)
                if not statistics:
                    raise DataTransformer._mismatch(
                        "Player has no statistics entry", source, "statistics"
                    )
                current = statistics[0]

                label = DataTransformer._path(current, "games.position", source)
                position = DataTransformer.POSITION_MAP.get(label)
                if position is None:
                    raise DataTransformer._mismatch(
                        "Unknown position label", source, "games.position", label
                    )

                player_id = DataTransformer._require(player, "id", source)
                if player_id in seen:
                    continue
                seen.add(player_id)

                name = DataTransformer._require(player, "name", source)
                players.append(
                    DataTransformer._build(
                        Player,
                        source,
                        id=player_id,
                        first_name=player.get("firstname") or "",
                        second_name=player.get("lastname") or name,
                        web_name=name,
                        team_id=DataTransformer._path(current, "team.id", source),
                        position=position,
                        status="i" if player.get("injured") else "a",
                        photo=player.get("photo"),
                    )
                )
        return players

    @staticmethod
    def football_fixtures(payload: dict, round_id: Optional[int] = None) -> list[Fixture]:
        source = DataSource.API_FOOTBALL
        fixtures = []
        for record in DataTransformer.unwrap_envelope(payload, source):
            fixture = DataTransformer._path(record, "fixture", source)
            status = DataTransformer._path(fixture, "status.short", source)
            home = DataTransformer._path(record, "teams.home", source)
            away = DataTransformer._path(record, "teams.away", source)
            goals = record.get("goals") or {}
            home_name = DataTransformer._require(home, "name", source)
            away_name = DataTransformer._require(away, "name", source)

            fixtures.append(
                DataTransformer._build(
                    Fixture,
                    source,
                    id=DataTransformer._require(fixture, "id", source),
                    round=round_id or DataTransformer.extract_round(
                        DataTransformer._path(record, "league.round", source, required=False)
                    ),
                    kickoff_time=DataTransformer._parse_datetime(
                        fixture.get("date"), source, "fixture.date"
                    ),
                    home_team_id=DataTransformer._require(home, "id", source),
                    away_team_id=DataTransformer._require(away, "id", source),
                    home_team_name=home_name,
                    away_team_name=away_name,
                    home_team_short=DataTransformer.generate_short_name(home_name),
                    away_team_short=DataTransformer.generate_short_name(away_name),
                    home_score=goals.get("home"),
                    away_score=goals.get("away"),
                    started=status in DataTransformer.STARTED_STATUSES,
                    finished=status in DataTransformer.FINISHED_STATUSES,
                    minutes=DataTransformer._path(fixture, "status.elapsed", source, required=False) or 0,
                )
            )
        return fixtures

    @staticmethod
    def football_standings(payload: dict) -> list[Standing]:
        source = DataSource.API_FOOTBALL
        response = DataTransformer.unwrap_envelope(payload, source)
        if not response:
            return []

        tables = DataTransformer._path(response[0], "league.standings", source)
        if not isinstance(tables, list) or not tables or not isinstance(tables[0], list):
            raise DataTransformer._mismatch(
                "Expected a list of standings tables", source, "league.standings", tables
            )

        standings = []
        for record in tables[0]:
            record_all = record.get("all") or {}
            standings.append(
                DataTransformer._build(
                    Standing,
                    source,
                    team_id=DataTransformer._path(record, "team.id", source),
                    team_name=DataTransformer._path(record, "team.name", source),
                    rank=DataTransformer._require(record, "rank", source),
                    points=record.get("points") or 0,
                    played=record_all.get("played") or 0,
                    win=record_all.get("win") or 0,
                    draw=record_all.get("draw") or 0,
                    loss=record_all.get("lose") or 0,
                    goal_difference=record.get("goalsDiff") or 0,
                    form=record.get("form"),
                )
            )
        return standings
