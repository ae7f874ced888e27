"""Scorer name canonicalisation."""

from __future__ import annotations

import pytest
from hypothesis import given, strategies as st

from fplcontest.settlement.normalization import (
    ScorerNormalizer,
    canonical_scorer_name,
    default_normalizer,
)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("Mohamed Salah - LIV MID", "salah"),
        ("M.Salah", "salah"),
        ("Salah", "salah"),
        ("  salah  ", "salah"),
        ("Darwin Núñez - LIV FWD", "nunez"),
        ("Bruno Fernandes - MUN MID", "fernandes"),
        ("Alexander-Arnold", "alexanderarnold"),
        ("Trent Alexander-Arnold - LIV DEF", "alexanderarnold"),
        ("", ""),
        (None, ""),
        ("  -  ", ""),
    ],
)
def test_canonical_scorer_name(raw, expected):
    assert canonical_scorer_name(raw) == expected


def test_accents_are_stripped():
    assert canonical_scorer_name("Núñez") == canonical_scorer_name("Nunez") == "nunez"


def test_aliases_override_surname_token():
    normalizer = ScorerNormalizer(aliases={"Virgil van Dijk - LIV DEF": "Virgil"})

    assert normalizer.canonical("Virgil van Dijk - LIV DEF") == "virgil"
    assert normalizer.canonical("Virgil") == "virgil"
    assert normalizer.matches("Virgil van Dijk - LIV DEF", ["Virgil"])


def test_register_adds_aliases_later():
    normalizer = ScorerNormalizer()
    assert normalizer.canonical("Son Heung-min") == "heungmin"
    normalizer.register({"Son Heung-min": "Son"})
    assert normalizer.canonical("Son Heung-min") == "son"


def test_matches_any_scorer():
    normalizer = default_normalizer()
    assert normalizer.matches("Mohamed Salah - LIV MID", ["Saka", "M.Salah"])
    assert not normalizer.matches("Mohamed Salah - LIV MID", ["Saka", "Haaland"])
    assert not normalizer.matches("", ["Salah"])
    assert not normalizer.matches("Salah", [])


def test_default_normalizer_is_shared():
    assert default_normalizer() is default_normalizer()


_surnames = st.text(alphabet="abcdefghijklmnopqrstuvwxyz", min_size=2, max_size=12)


@given(first=_surnames, surname=_surnames, team=st.sampled_from(["LIV", "ARS", "MCI"]))
def test_display_and_web_forms_agree(first, surname, team):
    display = f"{first.title()} {surname.title()} - {team} MID"
    assert canonical_scorer_name(display) == canonical_scorer_name(surname.title())
    assert canonical_scorer_name(f"{first[0].upper()}.{surname.title()}") == surname


@given(st.text(max_size=40))
def test_canonicalisation_is_idempotent(raw):
    once = canonical_scorer_name(raw)
    assert canonical_scorer_name(once) == once
