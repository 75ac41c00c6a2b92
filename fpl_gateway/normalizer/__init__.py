"""
Normalizer Module

Domain schemas and per-provider field mapping.

Components:
    - Team, Player, Fixture, Round: Normalized reference records
    - LivePlayerStats, LiveScores: Live round points
    - Standing: League table row
    - ReferenceData: Bootstrap bundle of rounds, teams and players
    - DataTransformer: FPL and API-Football payload mapping
    - DataSource: Provider enum
    - Position: Squad position enum
"""

from .schemas import (
    DataSource,
    Fixture,
    LivePlayerStats,
    LiveScores,
    Player,
    Position,
    ReferenceData,
    Round,
    Standing,
    Team,
)
from .transformer import DataTransformer

__all__ = [
    "Team",
    "Player",
    "Fixture",
    "Round",
    "LivePlayerStats",
    "LiveScores",
    "Standing",
    "ReferenceData",
    "DataTransformer",
    "DataSource",
    "Position",
]
