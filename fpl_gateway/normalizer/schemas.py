"""
Data schemas for normalized football data.

Pydantic models providing one provider-independent shape for teams,
players, fixtures, rounds and live points, whichever upstream served them.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator


class DataSource(str, Enum):
    """Upstream data providers."""

    RAPIDAPI_FPL = "rapidapi_fpl"
    API_FOOTBALL = "api_football"


class Position(str, Enum):
    """Squad positions, ordered as FPL element types 1-4."""

    GOALKEEPER = "GKP"
    DEFENDER = "DEF"
    MIDFIELDER = "MID"
    FORWARD = "FWD"

    @property
    def element_type(self) -> int:
        return list(Position).index(self) + 1

    @classmethod
    def from_element_type(cls, element_type: int) -> "Position":
        positions = list(cls)
        if not 1 <= element_type <= len(positions):
            raise ValueError(f"Unknown element type: {element_type}")
        return positions[element_type - 1]


class GatewayModel(BaseModel):
    """Shared behaviour for all normalized records."""

    source: DataSource = Field(..., description="Provider that served the record")

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-compatible dictionary."""
        return self.model_dump(mode="json")


class Team(GatewayModel):
    """A Premier League club."""

    id: int = Field(..., description="Provider team id")
    name: str = Field(..., description="Full club name")
    short_name: str = Field(..., description="Three-letter abbreviation", min_length=1)

    # FPL-only: API-Football has no equivalent, left None there
    code: Optional[int] = Field(None, description="FPL team code")
    strength: Optional[int] = Field(None, description="FPL strength rating", ge=1, le=5)

    # API-Football only
    logo: Optional[str] = Field(None, description="Badge URL")

    @field_validator("short_name")
    @classmethod
    def validate_short_name(cls, v: str) -> str:
        return v.strip().upper()

    def __repr__(self) -> str:
        return f"Team(id={self.id}, short_name={self.short_name!r}, source={self.source.value})"


class Player(GatewayModel):
    """A squad player."""

    id: int = Field(..., description="Provider player id")
    first_name: str = Field("", description="Given name")
    second_name: str = Field(..., description="Family name")
    web_name: str = Field(..., description="Display name")
    team_id: int = Field(..., description="Provider team id")
    position: Position = Field(..., description="Squad position")

    # FPL-only: API-Football has no prices or fantasy points, left None there
    now_cost: Optional[int] = Field(None, description="Price in tenths of a million", ge=0)
    total_points: Optional[int] = Field(None, description="Season fantasy points")

    status: Optional[str] = Field(None, description="Availability flag (a, d, i, s, u)")
    photo: Optional[str] = Field(None, description="Photo reference")

    @property
    def element_type(self) -> int:
        return self.position.element_type

    @property
    def price(self) -> Optional[float]:
        """Price in millions, if the provider publishes one."""
        return self.now_cost / 10 if self.now_cost is not None else None

    def __repr__(self) -> str:
        return (
            f"Player(id={self.id}, web_name={self.web_name!r}, "
            f"position={self.position.value}, source={self.source.value})"
        )


class Fixture(GatewayModel):
    """A scheduled or played match."""

    id: int = Field(..., description="Provider fixture id")
    round: Optional[int] = Field(None, description="Competition round (gameweek)")
    kickoff_time: Optional[datetime] = Field(None, description="Kickoff time (UTC)")
    home_team_id: int = Field(..., description="Home team id")
    away_team_id: int = Field(..., description="Away team id")

    # None when the team could not be resolved
    home_team_name: Optional[str] = Field(None, description="Home team name")
    away_team_name: Optional[str] = Field(None, description="Away team name")
    home_team_short: Optional[str] = Field(None, description="Home team abbreviation")
    away_team_short: Optional[str] = Field(None, description="Away team abbreviation")

    home_score: Optional[int] = Field(None, description="Home goals", ge=0)
    away_score: Optional[int] = Field(None, description="Away goals", ge=0)
    started: bool = Field(False, description="Match has kicked off")
    finished: bool = Field(False, description="Match is over")
    minutes: int = Field(0, description="Minutes played", ge=0)

    def __repr__(self) -> str:
        return (
            f"Fixture(id={self.id}, round={self.round}, "
            f"{self.home_team_id} v {self.away_team_id}, source={self.source.value})"
        )


class Round(GatewayModel):
    """A competition round (FPL gameweek)."""

    id: int = Field(..., description="Round number", ge=1)
    name: str = Field(..., description="Display name")
    deadline_time: Optional[datetime] = Field(None, description="Team selection deadline (UTC)")
    is_current: bool = Field(False, description="Round in progress")
    is_next: bool = Field(False, description="Next round to start")
    finished: bool = Field(False, description="All fixtures played")


class LivePlayerStats(GatewayModel):
    """Per-player live points for one round."""

    player_id: int = Field(..., description="Provider player id")
    total_points: int = Field(..., description="Points this round")
    minutes: int = Field(0, ge=0)
    goals_scored: int = Field(0, ge=0)
    assists: int = Field(0, ge=0)
    clean_sheets: int = Field(0, ge=0)
    bonus: int = Field(0, ge=0)


class LiveScores(GatewayModel):
    """Live points for every player in a round."""

    round: int = Field(..., description="Round number", ge=1)
    players: list[LivePlayerStats] = Field(default_factory=list)

    def get_player(self, player_id: int) -> Optional[LivePlayerStats]:
        for stats in self.players:
            if stats.player_id == player_id:
                return stats
        return None


class Standing(GatewayModel):
    """League table row."""

    team_id: int
    team_name: str
    rank: int = Field(..., ge=1)
    points: int = 0
    played: int = 0
    win: int = 0
    draw: int = 0
    loss: int = 0
    goal_difference: int = 0
    form: Optional[str] = None


class ReferenceData(GatewayModel):
    """Bundle of rounds, teams and players from one bootstrap payload."""

    rounds: list[Round] = Field(default_factory=list)
    teams: list[Team] = Field(default_factory=list)
    players: list[Player] = Field(default_factory=list)
    fetched_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def current_round(self) -> Optional[Round]:
        """The round flagged current, else the next one, else the first."""
        for flag in ("is_current", "is_next"):
            for round_ in self.rounds:
                if getattr(round_, flag):
                    return round_
        return self.rounds[0] if self.rounds else None

    def get_team(self, team_id: int) -> Optional[Team]:
        for team in self.teams:
            if team.id == team_id:
                return team
        return None
