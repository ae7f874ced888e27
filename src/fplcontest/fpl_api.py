"""Read-only client for the Fantasy Premier League API.

:class:`FplClient` fetches raw JSON through a :class:`~fplcontest.cache.ResponseCache`
and :class:`FplFixtureCatalog` turns those payloads into settlement records:
fixtures in feed order, the player roster used for scorer names, league
standings and chip plays.
"""

from __future__ import annotations

import datetime as dt
import logging
from typing import Any, Dict, Iterable, List, Mapping, Sequence

import requests

from .cache import ResponseCache
from .config import FplContestConfig, get_config
from .settlement.models import Fixture, GoalEvent, MatchResult
from .settlement.standings import ChipPlay, StandingRow

logger = logging.getLogger(__name__)

__all__ = [
    "POSITION_CODES",
    "FplClient",
    "FplFixtureCatalog",
    "current_gameweek",
    "goal_events_from_stats",
    "parse_fixture",
    "parse_fixtures",
    "parse_kickoff",
    "player_display_name",
    "roster_from_bootstrap",
    "standings_from_payload",
]

POSITION_CODES: Mapping[int, str] = {1: "GKP", 2: "DEF", 3: "MID", 4: "FWD"}


class FplClient:
    """Thin :mod:`requests` wrapper with response caching."""

    def __init__(
        self,
        *,
        base_url: str | None = None,
        session: requests.Session | None = None,
        cache: ResponseCache | None = None,
        timeout: float | None = None,
        user_agent: str | None = None,
        config: FplContestConfig | None = None,
    ) -> None:
        settings = config or get_config()
        self.base_url = (base_url or settings.api_base_url).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.timeout
        self.cache = cache if cache is not None else ResponseCache.from_config(settings)
        self._session = session or requests.Session()
        self._headers = {"User-Agent": user_agent or settings.user_agent}
        self._verbose = settings.verbose

    def __enter__(self) -> "FplClient":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        self._session.close()

    def get_json(self, path: str, **params: Any) -> Any:
        """Return the decoded payload for ``path``, from cache when fresh."""

        url = f"{self.base_url}/{path.lstrip('/')}"
        cached = self.cache.get(url, **params)
        if cached is not None:
            logger.debug("Cache hit for %s %s", url, params)
            return cached
        if self._verbose:
            logger.info("Fetching %s %s", url, params or "")
        response = self._session.get(
            url, params=params or None, headers=self._headers, timeout=self.timeout
        )
        response.raise_for_status()
        payload = response.json()
        self.cache.set(url, payload, **params)
        return payload

    def clear_cache(self, pattern: str | None = None) -> int:
        return self.cache.clear(pattern)

    def bootstrap(self) -> Mapping[str, Any]:
        return self.get_json("bootstrap-static/")

    def fixtures(self, gameweek: int | None = None) -> List[Mapping[str, Any]]:
        if gameweek is None:
            return list(self.get_json("fixtures/"))
        return list(self.get_json("fixtures/", event=gameweek))

    def league_standings(self, league_id: int | str, page: int = 1) -> Mapping[str, Any]:
        return self.get_json(f"leagues-classic/{league_id}/standings/", page_standings=page)

    def entry_picks(self, entry_id: int, gameweek: int) -> Mapping[str, Any]:
        return self.get_json(f"entry/{entry_id}/event/{gameweek}/picks/")


def parse_kickoff(value: str | None) -> dt.datetime | None:
    if not value:
        return None
    text = value[:-1] + "+00:00" if value.endswith("Z") else value
    return dt.datetime.fromisoformat(text)


def _optional_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def goal_events_from_stats(
    stats: Iterable[Mapping[str, Any]], home_team_id: int | None, away_team_id: int | None
) -> tuple[GoalEvent, ...]:
    """Expand the ``goals_scored`` stat into one event per goal."""

    events: List[GoalEvent] = []
    for stat in stats:
        if stat.get("identifier") != "goals_scored":
            continue
        for side, team_id in (("h", home_team_id), ("a", away_team_id)):
            if team_id is None:
                continue
            for row in stat.get(side) or ():
                player_id = _optional_int(row.get("element"))
                if player_id is None:
                    continue
                count = _optional_int(row.get("value")) or 1
                events.extend(GoalEvent(team_id, player_id) for _ in range(max(count, 1)))
    return tuple(events)


def parse_fixture(payload: Mapping[str, Any], catalog_index: int = 0) -> Fixture:
    """Convert one fixture payload.  Scores are dropped until the match finishes."""

    home = _optional_int(payload.get("team_h"))
    away = _optional_int(payload.get("team_a"))
    finished = bool(payload.get("finished"))
    home_score = _optional_int(payload.get("team_h_score")) if finished else None
    away_score = _optional_int(payload.get("team_a_score")) if finished else None
    return Fixture(
        fixture_id=_optional_int(payload.get("id")),
        gameweek=_optional_int(payload.get("event")),
        home_team_id=home,
        away_team_id=away,
        catalog_index=catalog_index,
        home_score=home_score,
        away_score=away_score,
        finished=finished,
        kickoff_time=parse_kickoff(payload.get("kickoff_time")),
        goal_events=goal_events_from_stats(payload.get("stats") or (), home, away)
        if finished
        else (),
    )


def parse_fixtures(payloads: Sequence[Mapping[str, Any]]) -> List[Fixture]:
    return [parse_fixture(payload, index) for index, payload in enumerate(payloads)]


def roster_from_bootstrap(bootstrap: Mapping[str, Any]) -> Dict[int, str]:
    """Map player ids to the short web names the fixture feed uses."""

    roster: Dict[int, str] = {}
    for element in bootstrap.get("elements") or ():
        player_id = _optional_int(element.get("id"))
        if player_id is not None:
            roster[player_id] = str(element.get("web_name") or element.get("second_name") or "")
    return roster


def player_display_name(
    element: Mapping[str, Any], team_short_names: Mapping[int, str] | None = None
) -> str:
    """Display form used by prediction forms: ``"First Last - TEAM POS"``."""

    name = f"{element.get('first_name', '')} {element.get('second_name', '')}".strip()
    team = (team_short_names or {}).get(_optional_int(element.get("team")) or -1, "")
    position = POSITION_CODES.get(_optional_int(element.get("element_type")) or 0, "")
    suffix = " ".join(part for part in (team, position) if part)
    return f"{name} - {suffix}" if suffix else name


def current_gameweek(bootstrap: Mapping[str, Any]) -> int | None:
    events = list(bootstrap.get("events") or ())
    for event in events:
        if event.get("is_current"):
            return _optional_int(event.get("id"))
    finished = [event for event in events if event.get("finished")]
    return _optional_int(finished[-1].get("id")) if finished else None


def standings_from_payload(payload: Mapping[str, Any]) -> List[StandingRow]:
    results = (payload.get("standings") or {}).get("results") or ()
    return [
        StandingRow(
            entry_id=int(row["entry"]),
            player_name=str(row.get("player_name", "")),
            entry_name=str(row.get("entry_name", "")),
            event_total=int(row.get("event_total") or 0),
            total=int(row.get("total") or 0),
            rank=int(row.get("rank") or 0),
        )
        for row in results
        if _optional_int(row.get("entry")) is not None
    ]


class FplFixtureCatalog:
    """Fixture catalog backed by the live API."""

    def __init__(self, client: FplClient | None = None) -> None:
        self.client = client or FplClient()

    def fixtures(self, gameweek: int) -> List[Fixture]:
        return parse_fixtures(self.client.fixtures(gameweek))

    def fixture(self, gameweek: int, fixture_id: int) -> Fixture | None:
        for fixture in self.fixtures(gameweek):
            if fixture.fixture_id == fixture_id:
                return fixture
        return None

    def roster(self) -> Dict[int, str]:
        return roster_from_bootstrap(self.client.bootstrap())

    def current_gameweek(self) -> int | None:
        return current_gameweek(self.client.bootstrap())

    def result(self, fixture: Fixture) -> MatchResult:
        return MatchResult.from_fixture(fixture, self.roster())

    def standings(self, league_id: int | str) -> List[StandingRow]:
        return standings_from_payload(self.client.league_standings(league_id))

    def chip_plays(
        self, standings: Iterable[StandingRow], gameweeks: Iterable[int]
    ) -> List[ChipPlay]:
        """Chips played by the given managers in the given gameweeks."""

        weeks = list(gameweeks)
        plays: List[ChipPlay] = []
        for row in standings:
            for gameweek in weeks:
                try:
                    picks = self.client.entry_picks(row.entry_id, gameweek)
                except requests.RequestException as exc:
                    logger.warning(
                        "Could not load picks for entry %s gameweek %s: %s",
                        row.entry_id,
                        gameweek,
                        exc,
                    )
                    continue
                chip = picks.get("active_chip")
                if not chip:
                    continue
                points = int((picks.get("entry_history") or {}).get("points") or 0)
                plays.append(ChipPlay(row.entry_id, row.player_name, gameweek, str(chip), points))
        return plays
