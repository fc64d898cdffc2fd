"""Shared test fixtures for ManaFlood."""

from pathlib import Path
from typing import Any, Iterator

import pytest

from manaflood.card_store import CardStore
from manaflood.catalog import DomainCatalog


def _card(name: str, number: str, rarity: str, artist: str, **fields: Any) -> dict[str, Any]:
    card = {
        "name": name,
        "number": number,
        "rarity": rarity,
        "artist": artist,
        "layout": "normal",
        "colors": [],
        "colorIdentity": [],
        "supertypes": [],
        "types": [],
        "subtypes": [],
    }
    card.update(fields)
    return card


@pytest.fixture
def theros_set() -> dict[str, Any]:
    """Theros (block Theros)."""
    return {
        "code": "ths",
        "name": "Theros",
        "block": "Theros",
        "releaseDate": "2013-09-27",
        "totalSetSize": 249,
        "cards": [
            _card(
                "Fabled Hero", "12", "rare", "Aaron Miller",
                manaCost="{1}{W}{W}", convertedManaCost=3.0,
                text="Double strike\nHeroic — Whenever you cast a spell that targets Fabled Hero, put a +1/+1 counter on Fabled Hero.",
                colors=["W"], colorIdentity=["W"],
                types=["Creature"], subtypes=["Human", "Warrior"],
                power="2", toughness="2",
            ),
            _card(
                "Hero's Downfall", "93", "uncommon", "Chase Stone",
                manaCost="{1}{B}{B}", convertedManaCost=3.0,
                text="Destroy target creature or planeswalker.",
                colors=["B"], colorIdentity=["B"], types=["Instant"],
            ),
            _card(
                "Prognostic Sphinx", "57", "rare", "Steve Prescott",
                manaCost="{3}{U}{U}", convertedManaCost=5.0,
                text="Flying\nDiscard a card: Prognostic Sphinx gains hexproof until end of turn.",
                flavorText="It sees the threads of fate.",
                colors=["U"], colorIdentity=["U"],
                types=["Creature"], subtypes=["Sphinx"],
                power="3", toughness="5",
            ),
            _card(
                "Shipwreck Singer", "209", "uncommon", "Sam Burley",
                manaCost="{U}{B}", convertedManaCost=2.0,
                text="{1}{U}: Target creature an opponent controls attacks this turn if able.",
                colors=["U", "B"], colorIdentity=["U", "B"],
                types=["Creature"], subtypes=["Siren"],
                power="1", toughness="2",
            ),
            _card(
                "Divination", "42", "common", "Howard Lyon",
                manaCost="{2}{U}", convertedManaCost=3.0,
                text="Draw two cards.",
                flavorText="The oracle's gift is a burden as well.",
                colors=["U"], colorIdentity=["U"], types=["Sorcery"],
            ),
            _card(
                "Elspeth, Sun's Champion", "9", "mythic", "Eric Deschamps",
                manaCost="{4}{W}{W}", convertedManaCost=6.0,
                text="+1: Create three 1/1 white Soldier creature tokens.",
                colors=["W"], colorIdentity=["W"],
                supertypes=["Legendary"], types=["Planeswalker"], subtypes=["Elspeth"],
                loyalty="4",
            ),
        ],
    }


@pytest.fixture
def born_of_the_gods_set() -> dict[str, Any]:
    """Born of the Gods (block Theros)."""
    return {
        "code": "bng",
        "name": "Born of the Gods",
        "block": "Theros",
        "releaseDate": "2014-02-07",
        "totalSetSize": 165,
        "cards": [
            _card(
                "Polukranos, World Eater", "130", "mythic", "Johann Bodin",
                manaCost="{2}{G}{G}", convertedManaCost=4.0,
                text="{X}{X}{G}: Monstrosity X.",
                colors=["G"], colorIdentity=["G"],
                supertypes=["Legendary"], types=["Creature"], subtypes=["Hydra"],
                power="5", toughness="5",
            ),
            _card(
                "Xenagos, God of Revels", "171", "mythic", "Jason Chan",
                manaCost="{3}{R}{G}", convertedManaCost=5.0,
                text="Indestructible",
                colors=["R", "G"], colorIdentity=["R", "G"],
                supertypes=["Legendary"], types=["Enchantment", "Creature"], subtypes=["God"],
                power="6", toughness="5",
            ),
        ],
    }


@pytest.fixture
def magic_2014_set() -> dict[str, Any]:
    """Magic 2014 (no block)."""
    return {
        "code": "m14",
        "name": "Magic 2014",
        "releaseDate": "2013-07-19",
        "totalSetSize": 249,
        "cards": [
            _card(
                "Air Elemental", "45", "uncommon", "Kev Walker",
                manaCost="{3}{U}{U}", convertedManaCost=5.0,
                text="Flying",
                flavorText="The East Wind, an ingenious warrior, drives the clouds before her.",
                colors=["U"], colorIdentity=["U"],
                types=["Creature"], subtypes=["Elemental"],
                power="4", toughness="4",
            ),
            _card(
                "Fabled Passage", "228", "rare", "Howard Lyon",
                convertedManaCost=0.0,
                text="{T}, Sacrifice Fabled Passage: Search your library for a basic land card.",
                types=["Land"],
            ),
        ],
    }


@pytest.fixture
def innistrad_set() -> dict[str, Any]:
    """Innistrad (block Innistrad), including a transforming card."""
    return {
        "code": "isd",
        "name": "Innistrad",
        "block": "Innistrad",
        "releaseDate": "2011-09-30",
        "totalSetSize": 264,
        "cards": [
            _card(
                "Delver of Secrets // Insectile Aberration", "51a", "common", "Matt Stewart",
                faceName="Delver of Secrets", layout="transform",
                manaCost="{U}", convertedManaCost=1.0, faceConvertedManaCost=1.0,
                text="At the beginning of your upkeep, look at the top card of your library.",
                colors=["U"], colorIdentity=["U"],
                types=["Creature"], subtypes=["Human", "Wizard"],
                power="1", toughness="1",
            ),
            _card(
                "Delver of Secrets // Insectile Aberration", "51b", "common", "Matt Stewart",
                faceName="Insectile Aberration", layout="transform",
                convertedManaCost=1.0, faceConvertedManaCost=0.0,
                text="Flying",
                colors=["U"], colorIdentity=["U"],
                types=["Creature"], subtypes=["Insect"],
                power="3", toughness="2",
            ),
            _card(
                "Divination", "49", "common", "Howard Lyon",
                manaCost="{2}{U}", convertedManaCost=3.0,
                text="Draw two cards.",
                colors=["U"], colorIdentity=["U"], types=["Sorcery"],
            ),
        ],
    }


@pytest.fixture
def sample_sets(theros_set, born_of_the_gods_set, magic_2014_set, innistrad_set) -> list[dict[str, Any]]:
    """Every sample set, in import order."""
    return [theros_set, born_of_the_gods_set, magic_2014_set, innistrad_set]


@pytest.fixture
def populated_store(tmp_path: Path, sample_sets: list[dict[str, Any]]) -> Iterator[CardStore]:
    """CardStore holding every sample set."""
    store = CardStore(tmp_path / "cards.db")
    for set_data in sample_sets:
        store.insert_set(set_data)
    try:
        yield store
    finally:
        store.close()


@pytest.fixture
def loaded_catalog(populated_store: CardStore) -> DomainCatalog:
    """Catalog loaded from the populated store."""
    return DomainCatalog.load(populated_store)


@pytest.fixture
def catalog() -> DomainCatalog:
    """In-memory catalog for compiler tests that need no database."""
    return DomainCatalog(
        {
            "colors": {"W", "U", "B", "R", "G", "C"},
            "supertypes": {"Legendary", "Basic"},
            "types": {"Creature", "Instant", "Sorcery", "Enchantment", "Land", "Planeswalker"},
            "subtypes": {"Human", "Warrior", "Sphinx", "God", "Hydra"},
            "rarities": {"common", "uncommon", "rare", "mythic"},
            "mana_types": {"{W}", "{U}", "{B}", "{R}", "{G}", "{1}"},
            "blocks": {"Theros", "Innistrad"},
            "artists": {"Howard Lyon", "Kev Walker"},
            "sets": {"Theros", "Born of the Gods", "Magic 2014", "Innistrad"},
        },
        {
            "Theros": {"Theros", "Born of the Gods"},
            "Innistrad": {"Innistrad"},
        },
    )
