"""
TTL policy table for cached upstream resources.

Each resource class declares how long a cached payload stays fresh, a
shorter TTL used while a match is in progress, and whether the payload is
written through to the persistent tier.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, Mapping, Optional

from fpl_gateway.utils.exceptions import ConfigurationError


MINUTE = 60
HOUR = 60 * MINUTE

# Match window around kickoff used to shorten live TTLs
MATCH_WINDOW_BEFORE_KICKOFF = 30 * MINUTE
MATCH_WINDOW_AFTER_KICKOFF = 3 * HOUR


class ResourceClass(str, Enum):
    """Cache categories sharing one TTL policy."""

    REFERENCE = "reference"
    FIXTURES = "fixtures"
    FIXTURES_ROUND = "fixtures_round"
    TEAMS = "teams"
    PLAYERS = "players"
    STANDINGS = "standings"
    LIVE = "live"


@dataclass(frozen=True)
class TTLPolicy:
    """Freshness rule for one resource class.

    Attributes:
        ttl: Seconds a payload stays fresh
        active_ttl: Shorter TTL while a match window is active (None = same as ttl)
        persist: Write through to the persistent tier
    """

    ttl: float
    active_ttl: Optional[float] = None
    persist: bool = True

    def resolve(self, match_active: bool = False) -> float:
        if match_active and self.active_ttl is not None:
            return self.active_ttl
        return self.ttl


TTL_POLICIES: Mapping[ResourceClass, TTLPolicy] = {
    ResourceClass.REFERENCE: TTLPolicy(ttl=24 * HOUR),
    ResourceClass.FIXTURES: TTLPolicy(ttl=12 * HOUR),
    ResourceClass.FIXTURES_ROUND: TTLPolicy(ttl=6 * HOUR, active_ttl=1 * HOUR),
    ResourceClass.TEAMS: TTLPolicy(ttl=24 * HOUR),
    ResourceClass.PLAYERS: TTLPolicy(ttl=6 * HOUR),
    ResourceClass.STANDINGS: TTLPolicy(ttl=30 * MINUTE),
    # Live points are never persisted
    ResourceClass.LIVE: TTLPolicy(ttl=30 * MINUTE, active_ttl=10 * MINUTE, persist=False),
}


def validate_ttl_policies(policies: Mapping[ResourceClass, TTLPolicy] = TTL_POLICIES) -> None:
    """
    Validate a TTL table at startup.

    Raises:
        ConfigurationError: If a class is missing, a TTL is not positive, or an
            active-match TTL exceeds the regular TTL
    """
    errors = []

    for resource_class in ResourceClass:
        policy = policies.get(resource_class)
        if policy is None:
            errors.append(f"No TTL policy for {resource_class.value}")
            continue
        if policy.ttl <= 0:
            errors.append(f"TTL for {resource_class.value} must be positive")
        if policy.active_ttl is not None:
            if policy.active_ttl <= 0:
                errors.append(f"Active TTL for {resource_class.value} must be positive")
            elif policy.active_ttl > policy.ttl:
                errors.append(
                    f"Active TTL for {resource_class.value} exceeds its regular TTL"
                )

    if errors:
        raise ConfigurationError("Invalid TTL policy table", errors)


def get_ttl(
    resource_class: ResourceClass,
    match_active: bool = False,
    policies: Mapping[ResourceClass, TTLPolicy] = TTL_POLICIES,
) -> float:
    """
    Get the TTL in seconds for a resource class.

    Args:
        resource_class: Category of the cached resource
        match_active: True while a match window is active

    Returns:
        TTL in seconds
    """
    return policies[resource_class].resolve(match_active)


def is_match_window_active(fixtures: Iterable[Any], now: float) -> bool:
    """
    Check whether any unfinished fixture is inside its match window.

    The window opens 30 minutes before kickoff and closes 3 hours after.

    Args:
        fixtures: Normalized fixtures (anything with kickoff_time and finished)
        now: Current epoch seconds

    Returns:
        True if at least one fixture is in play or about to start
    """
    for fixture in fixtures:
        kickoff = getattr(fixture, "kickoff_time", None)
        if kickoff is None or getattr(fixture, "finished", False):
            continue

        kickoff_ts = kickoff.timestamp()
        if kickoff_ts - MATCH_WINDOW_BEFORE_KICKOFF <= now <= kickoff_ts + MATCH_WINDOW_AFTER_KICKOFF:
            return True

    return False
