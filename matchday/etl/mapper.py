"""
Pure translation from provider DTOs to store entities.

Nothing here touches the network or the database; every function is
deterministic given its inputs.
"""

from datetime import datetime, timedelta
from typing import Optional

from matchday.etl.base import Fixture, FixtureEvent, LeagueInfo, TeamInfo, TeamStatistics, VenueInfo
from matchday.models import League, Match, MatchEvent, MatchState, Team, Venue

PROVIDER_KEY = "api_football"

PHASE_BY_STATUS = {
    "NS": "NOT_STARTED",
    "1H": "FIRST_HALF",
    "HT": "HALF_TIME",
    "2H": "SECOND_HALF",
    "ET": "EXTRA_TIME",
    "P": "PENALTY_SHOOTOUT",
    "FT": "FULL_TIME",
    "AET": "AFTER_EXTRA_TIME",
    "PEN": "AFTER_PENALTIES",
    "PST": "POSTPONED",
    "CANC": "CANCELLED",
    "ABD": "ABANDONED",
    "AWD": "AWARDED",
    "WO": "WALKOVER",
}

# Prefix first, then suffixes in order
_SHORT_NAME_PREFIXES = ("FC ",)
_SHORT_NAME_SUFFIXES = (" FC", " United", " City")


def derive_phase(status: Optional[str], elapsed: Optional[int] = None) -> str:
    """Map a provider status code (+ elapsed minute) to a phase label.

    A bare "LIVE" carries no half information, so the minute decides.
    Unknown codes map to UNKNOWN.
    """
    if status == "LIVE":
        return "SECOND_HALF" if (elapsed or 0) > 45 else "FIRST_HALF"
    return PHASE_BY_STATUS.get(status or "", "UNKNOWN")


def generate_short_name(name: str) -> str:
    """Three-letter uppercase code, e.g. "Manchester United" -> "MAN"."""
    name = (name or "").strip()
    for prefix in _SHORT_NAME_PREFIXES:
        if prefix in name:
            return name.replace(prefix, "", 1).strip()[:3].upper()
    for suffix in _SHORT_NAME_SUFFIXES:
        if suffix in name:
            return name.replace(suffix, "", 1).strip()[:3].upper()
    return name[:3].upper()


def provider_ids(external_id: Optional[int]) -> dict:
    if external_id is None:
        return {}
    return {PROVIDER_KEY: external_id}


def map_league(info: LeagueInfo, season: int) -> League:
    return League(
        external_id=info.id,
        name=info.name,
        country=info.country,
        season=season,
        logo_url=info.logo,
    )


def map_team(info: TeamInfo, league_id: Optional[str] = None) -> Team:
    return Team(
        id=str(info.id),
        external_id=info.id,
        name=info.name,
        short_name=generate_short_name(info.name),
        logo_url=info.logo,
        league_id=league_id,
    )


def map_venue(info: VenueInfo) -> Optional[Venue]:
    """Venue entity, or None when the fixture carries no venue id."""
    if info.id is None:
        return None
    return Venue(
        id=str(info.id),
        external_id=info.id,
        name=info.name or f"Venue {info.id}",
        city=info.city,
        provider_ids=provider_ids(info.id),
    )


def map_fixture_to_match(fixture: Fixture, league_id: str) -> Match:
    return Match(
        id=str(fixture.id),
        external_id=fixture.id,
        league_id=league_id,
        season=fixture.league.season or fixture.date.year,
        round=fixture.league.round,
        home_team_id=str(fixture.home.id),
        away_team_id=str(fixture.away.id),
        venue_id=str(fixture.venue.id) if fixture.venue.id is not None else None,
        start_time=fixture.date,
        status=fixture.status_short,
        provider_ids=provider_ids(fixture.id),
    )


def map_fixture_to_match_state(fixture: Fixture) -> MatchState:
    return MatchState(
        match_id=str(fixture.id),
        minute=fixture.elapsed,
        phase=derive_phase(fixture.status_short, fixture.elapsed),
        home_score=fixture.home_goals or 0,
        away_score=fixture.away_goals or 0,
        last_event_id=None,
    )


def build_provider_event_id(match_id: str, elapsed: int, event_type: str, team_id: Optional[int]) -> str:
    """Natural dedup key: the provider gives events no id of their own."""
    team_part = str(team_id) if team_id is not None else "none"
    return f"{match_id}-{elapsed}-{event_type.upper()}-{team_part}"


def event_timestamp(kickoff: datetime, elapsed: int, extra: Optional[int] = None) -> datetime:
    """Approximate wall-clock time of an event: kickoff + elapsed (+ stoppage) minutes."""
    return kickoff + timedelta(minutes=elapsed + (extra or 0))


def map_event_to_match_event(event: FixtureEvent, match_id: str, kickoff: datetime) -> MatchEvent:
    return MatchEvent(
        match_id=match_id,
        timestamp=event_timestamp(kickoff, event.elapsed, event.extra),
        minute=event.elapsed,
        extra_minute=event.extra,
        type=event.type.upper(),
        team_id=str(event.team_id) if event.team_id is not None else None,
        player_id=str(event.player_id) if event.player_id is not None else None,
        player_name=event.player_name,
        detail_json={
            "detail": event.detail,
            "comments": event.comments,
            "assist": {"id": event.assist_id, "name": event.assist_name},
            "team_name": event.team_name,
        },
        provider_event_id=build_provider_event_id(match_id, event.elapsed, event.type, event.team_id),
    )


# ── Statistics ───────────────────────────────────────────────────────────────
def _stat_value(team_stats: Optional[TeamStatistics], stat_type: str) -> Optional[float]:
    if team_stats is None:
        return None
    for stat in team_stats.statistics:
        if stat.get("type") != stat_type:
            continue
        value = stat.get("value")
        if value is None or value == "":
            return None
        if isinstance(value, str):
            try:
                return float(value.replace("%", "").strip())
            except ValueError:
                return None
        if isinstance(value, (int, float)):
            return value
        return None
    return None


def _pair(home: Optional[TeamStatistics], away: Optional[TeamStatistics], stat_type: str) -> dict:
    return {"home": _stat_value(home, stat_type), "away": _stat_value(away, stat_type)}


def _shots(team_stats: Optional[TeamStatistics]) -> dict:
    return {
        "total": _stat_value(team_stats, "Total Shots"),
        "on_target": _stat_value(team_stats, "Shots on Goal"),
        "off_target": _stat_value(team_stats, "Shots off Goal"),
        "blocked": _stat_value(team_stats, "Blocked Shots"),
    }


def _passes(team_stats: Optional[TeamStatistics]) -> dict:
    return {
        "total": _stat_value(team_stats, "Total passes"),
        "accurate": _stat_value(team_stats, "Passes accurate"),
        "percentage": _stat_value(team_stats, "Passes %"),
    }


def map_statistics(stats: list[TeamStatistics], home_team_id: Optional[int] = None) -> dict:
    """Aggregate per-team statistics into a home/away structure.

    The first block is treated as home unless `home_team_id` says otherwise.
    Missing stats are None; an empty response gives an all-None structure.
    """
    home = away = None
    if stats:
        if home_team_id is not None:
            home = next((s for s in stats if s.team_id == home_team_id), None)
            away = next((s for s in stats if s.team_id != home_team_id), None)
        else:
            home = stats[0]
            away = next((s for s in stats if s.team_id != home.team_id), None)

    return {
        "possession": _pair(home, away, "Ball Possession"),
        "shots": {"home": _shots(home), "away": _shots(away)},
        "corners": _pair(home, away, "Corner Kicks"),
        "fouls": _pair(home, away, "Fouls"),
        "yellow_cards": _pair(home, away, "Yellow Cards"),
        "red_cards": _pair(home, away, "Red Cards"),
        "offsides": _pair(home, away, "Offsides"),
        "passes": {"home": _passes(home), "away": _passes(away)},
    }
