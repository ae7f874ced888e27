"""Scorer name canonicalisation.

Predictions store scorers in the dashboard's display form
(``"Mohamed Salah - LIV MID"``) while the fixture feed reports the short web
name (``"Salah"``, sometimes ``"M.Salah"``).  Both forms are reduced to a
single surname token before comparison.  This is only needed at the feed
boundary; entries that carry a player id are matched on the id instead.
"""

from __future__ import annotations

import dataclasses
import re
import unicodedata
from functools import lru_cache
from typing import Iterable, Mapping, MutableMapping

__all__ = [
    "ScorerNormalizer",
    "canonical_scorer_name",
    "default_normalizer",
]

_DISPLAY_SEPARATOR = " - "
_TOKEN_SPLIT = re.compile(r"[\s.]+")


def _slug(value: str) -> str:
    return re.sub(r"[^a-z0-9]", "", value.lower())


def _strip_accents(value: str) -> str:
    decomposed = unicodedata.normalize("NFKD", value)
    return "".join(char for char in decomposed if not unicodedata.combining(char))


def _display_part(value: str) -> str:
    return _strip_accents(value).split(_DISPLAY_SEPARATOR, 1)[0].strip()


def canonical_scorer_name(value: str | None) -> str:
    """Reduce a scorer name to its lower-case surname token.

    >>> canonical_scorer_name("Mohamed Salah - LIV MID")
    'salah'
    >>> canonical_scorer_name("M.Salah")
    'salah'
    """

    if not value:
        return ""
    tokens = [token for token in _TOKEN_SPLIT.split(_display_part(value)) if _slug(token)]
    if not tokens:
        return ""
    return _slug(tokens[-1])


@dataclasses.dataclass
class ScorerNormalizer:
    """Canonicalise scorer names with an optional alias registry.

    Aliases map any spelling (display form, full name or web name) to a
    canonical token, for players whose surname token is not what the feed
    reports (``"Virgil van Dijk"`` versus ``"Virgil"``).
    """

    aliases: MutableMapping[str, str] | None = None

    def __post_init__(self) -> None:
        registered = dict(self.aliases or {})
        self.aliases = {}
        self.register(registered)

    def register(self, aliases: Mapping[str, str]) -> None:
        assert self.aliases is not None
        for raw, canonical in aliases.items():
            slug = _slug(_display_part(raw))
            target = _slug(canonical)
            if slug and target:
                self.aliases[slug] = target

    def canonical(self, value: str | None) -> str:
        if not value:
            return ""
        assert self.aliases is not None
        full = _slug(_display_part(value))
        if full in self.aliases:
            return self.aliases[full]
        token = canonical_scorer_name(value)
        return self.aliases.get(token, token)

    def matches(self, predicted: str | None, scorers: Iterable[str]) -> bool:
        """Return ``True`` when ``predicted`` names any of ``scorers``."""

        target = self.canonical(predicted)
        if not target:
            return False
        return any(self.canonical(name) == target for name in scorers)


@lru_cache()
def default_normalizer() -> ScorerNormalizer:
    return ScorerNormalizer()
