"""
Test Fixtures

Sample provider payloads shaped like real RapidAPI FPL and API-Football v3
responses. Each builder returns a fresh copy so tests may mutate it.

Components:
    - FPL bootstrap-static, fixtures and live payloads
    - API-Football teams, fixtures, squads and standings envelopes
"""

__all__ = [
    "START_TIME",
    "fpl_bootstrap",
    "fpl_fixtures",
    "fpl_live",
    "football_envelope",
    "football_teams",
    "football_fixtures",
    "football_squad",
    "football_standings",
]

from typing import Any, Dict, List, Optional

# 2025-10-09T08:53:20Z, between round 7 (played) and round 8 (upcoming)
START_TIME = 1_760_000_000.0


# ==================== FPL (RAPIDAPI) ====================


def fpl_bootstrap() -> Dict[str, Any]:
    return {
        "events": [
            {
                "id": 7,
                "name": "Gameweek 7",
                "deadline_time": "2025-10-03T17:30:00Z",
                "is_current": True,
                "is_next": False,
                "finished": True,
            },
            {
                "id": 8,
                "name": "Gameweek 8",
                "deadline_time": "2025-10-18T10:00:00Z",
                "is_current": False,
                "is_next": True,
                "finished": False,
            },
        ],
        "teams": [
            {"id": 1, "name": "Arsenal", "short_name": "ARS", "code": 3, "strength": 5},
            {"id": 7, "name": "Chelsea", "short_name": "CHE", "code": 8, "strength": 4},
            {"id": 12, "name": "Liverpool", "short_name": "LIV", "code": 14, "strength": 5},
        ],
        "elements": [
            {
                "id": 1,
                "first_name": "David",
                "second_name": "Raya Martin",
                "web_name": "Raya",
                "team": 1,
                "element_type": 1,
                "now_cost": 55,
                "total_points": 40,
                "status": "a",
                "photo": "154561.jpg",
            },
            {
                "id": 2,
                "first_name": "Bukayo",
                "second_name": "Saka",
                "web_name": "Saka",
                "team": 1,
                "element_type": 3,
                "now_cost": 100,
                "total_points": 48,
                "status": "a",
            },
            {
                "id": 3,
                "first_name": "Cole",
                "second_name": "Palmer",
                "web_name": "Palmer",
                "team": 7,
                "element_type": 3,
                "now_cost": 105,
                "total_points": 35,
                "status": "d",
            },
            {
                "id": 4,
                "first_name": "Mohamed",
                "second_name": "Salah",
                "web_name": "M.Salah",
                "team": 12,
                "element_type": 3,
                "now_cost": 145,
                "total_points": 52,
                "status": "a",
            },
            {
                "id": 5,
                "first_name": "Viktor",
                "second_name": "Gyokeres",
                "web_name": "Gyokeres",
                "team": 1,
                "element_type": 4,
                "now_cost": 90,
                "total_points": 30,
                "status": "a",
            },
        ],
    }


def fpl_fixtures(round_id: Optional[int] = None) -> List[Dict[str, Any]]:
    fixtures = [
        {
            "id": 61,
            "event": 7,
            "kickoff_time": "2025-10-04T14:00:00Z",
            "team_h": 1,
            "team_a": 7,
            "team_h_score": 2,
            "team_a_score": 1,
            "started": True,
            "finished": True,
            "minutes": 90,
        },
        {
            "id": 71,
            "event": 8,
            "kickoff_time": "2025-10-18T14:00:00Z",
            "team_h": 12,
            "team_a": 1,
            "team_h_score": None,
            "team_a_score": None,
            "started": False,
            "finished": False,
            "minutes": 0,
        },
    ]
    if round_id is not None:
        fixtures = [f for f in fixtures if f["event"] == round_id]
    return fixtures


def fpl_live() -> Dict[str, Any]:
    return {
        "elements": [
            {
                "id": 1,
                "stats": {
                    "minutes": 90,
                    "goals_scored": 0,
                    "assists": 0,
                    "clean_sheets": 0,
                    "bonus": 0,
                    "total_points": 2,
                },
            },
            {
                "id": 2,
                "stats": {
                    "minutes": 90,
                    "goals_scored": 1,
                    "assists": 1,
                    "clean_sheets": 0,
                    "bonus": 3,
                    "total_points": 13,
                },
            },
        ]
    }


# ==================== API-FOOTBALL ====================


def football_envelope(endpoint: str, response: list, errors: Any = None) -> Dict[str, Any]:
    return {
        "get": endpoint,
        "parameters": {"league": "39", "season": "2025"},
        "errors": errors if errors is not None else [],
        "results": len(response),
        "response": response,
    }


def football_teams() -> Dict[str, Any]:
    return football_envelope(
        "teams",
        [
            {
                "team": {
                    "id": 42,
                    "name": "Arsenal",
                    "code": "ARS",
                    "logo": "https://media.api-sports.io/football/teams/42.png",
                },
                "venue": {"id": 494, "name": "Emirates Stadium"},
            },
            {
                "team": {
                    "id": 49,
                    "name": "Chelsea",
                    "code": "CHE",
                    "logo": "https://media.api-sports.io/football/teams/49.png",
                },
                "venue": {"id": 519, "name": "Stamford Bridge"},
            },
            {
                "team": {
                    "id": 65,
                    "name": "Nottingham Forest",
                    "code": "NOT",
                    "logo": "https://media.api-sports.io/football/teams/65.png",
                },
                "venue": {"id": 566, "name": "The City Ground"},
            },
        ],
    )


def _football_fixture(
    fixture_id: int,
    date: str,
    status: str,
    round_id: int,
    home: tuple,
    away: tuple,
    goals: tuple = (None, None),
    elapsed: Optional[int] = None,
) -> Dict[str, Any]:
    return {
        "fixture": {
            "id": fixture_id,
            "date": date,
            "status": {"long": status, "short": status, "elapsed": elapsed},
        },
        "league": {"id": 39, "season": 2025, "round": f"Regular Season - {round_id}"},
        "teams": {
            "home": {"id": home[0], "name": home[1]},
            "away": {"id": away[0], "name": away[1]},
        },
        "goals": {"home": goals[0], "away": goals[1]},
    }


def football_fixtures(round_id: Optional[int] = None) -> Dict[str, Any]:
    fixtures = [
        _football_fixture(
            1208061, "2025-10-04T14:00:00+00:00", "FT", 7,
            (42, "Arsenal"), (49, "Chelsea"), goals=(2, 1), elapsed=90,
        ),
        _football_fixture(
            1208071, "2025-10-18T14:00:00+00:00", "NS", 8,
            (40, "Liverpool"), (42, "Arsenal"),
        ),
    ]
    if round_id is not None:
        fixtures = [
            f for f in fixtures if f["league"]["round"] == f"Regular Season - {round_id}"
        ]
    return football_envelope("fixtures", fixtures)


def football_squad(team_id: int, players: Optional[List[tuple]] = None) -> Dict[str, Any]:
    """Squad page: players given as (id, name, position label) tuples."""
    players = players or [
        (team_id * 100 + 1, "G. Keeper", "Goalkeeper"),
        (team_id * 100 + 2, "A. Striker", "Attacker"),
    ]
    response = [
        {
            "player": {
                "id": player_id,
                "name": name,
                "firstname": name.split(". ")[0],
                "lastname": name.split(". ")[-1],
                "injured": False,
                "photo": f"https://media.api-sports.io/football/players/{player_id}.png",
            },
            "statistics": [
                {
                    "team": {"id": team_id, "name": f"Team {team_id}"},
                    "games": {"position": position},
                }
            ],
        }
        for player_id, name, position in players
    ]
    return football_envelope("players", response)


def football_standings() -> Dict[str, Any]:
    return football_envelope(
        "standings",
        [
            {
                "league": {
                    "id": 39,
                    "season": 2025,
                    "standings": [
                        [
                            {
                                "rank": 1,
                                "team": {"id": 42, "name": "Arsenal"},
                                "points": 16,
                                "goalsDiff": 9,
                                "form": "WWDWW",
                                "all": {"played": 7, "win": 5, "draw": 1, "lose": 1},
                            },
                            {
                                "rank": 2,
                                "team": {"id": 40, "name": "Liverpool"},
                                "points": 15,
                                "goalsDiff": 6,
                                "form": "WLWWW",
                                "all": {"played": 7, "win": 5, "draw": 0, "lose": 2},
                            },
                        ]
                    ],
                }
            }
        ],
    )
