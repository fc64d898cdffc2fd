"""Decks and their version history.

A deck is a named container whose contents change over time; every saved
state is a DeckInstance (keyed by its creation time), and the deck keeps the
full history. Instances group card names into categories ("creatures",
"sideboard", ...) and record how many copies of each printing are used.
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import NamedTuple

from manaflood.card_store import CardStore

logger = logging.getLogger(__name__)


class DeckError(ValueError):
    """Invalid deck data or unknown deck id."""


class Printing(NamedTuple):
    """A specific printing of a card: name, set name and printing number."""

    card_name: str
    expansion: str
    number: str


@dataclass(frozen=True)
class DeckInstance:
    """One saved state of a deck.

    Args:
        deck_id: Id of the owning deck (None until the deck is stored)
        creation: When this state was saved
        categories: Category name -> card names in that category
        quantities: Printing -> number of copies (at least 1)

    Raises:
        DeckError: If a quantity is below 1 or a printing's card is in no category
    """

    deck_id: int | None
    creation: datetime
    categories: dict[str, frozenset[str]] = field(default_factory=dict)
    quantities: dict[Printing, int] = field(default_factory=dict)

    def __post_init__(self):
        if not isinstance(self.creation, datetime):
            raise DeckError("Deck instance creation time must be a datetime")
        object.__setattr__(
            self,
            "categories",
            {name: frozenset(cards) for name, cards in self.categories.items()},
        )
        object.__setattr__(
            self,
            "quantities",
            {Printing(*printing): qty for printing, qty in self.quantities.items()},
        )
        for printing, quantity in self.quantities.items():
            if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
                raise DeckError(f"Quantity of {printing.card_name} must be a positive integer")
            if printing.card_name not in self.cards:
                raise DeckError(f"{printing.card_name} is not in any category")

    @property
    def cards(self) -> frozenset[str]:
        """Every card name appearing in some category."""
        return frozenset().union(*self.categories.values())


@dataclass(frozen=True)
class Deck:
    """A deck with its history, oldest instance first."""

    deck_id: int | None
    name: str
    description: str = ""
    history: tuple[DeckInstance, ...] = ()

    def __post_init__(self):
        if not self.name:
            raise DeckError("Deck name can't be empty")
        if self.description is None:
            raise DeckError("Deck description can't be null")
        if not self.history:
            raise DeckError("A deck must have at least one instance in its history")
        object.__setattr__(
            self, "history", tuple(sorted(self.history, key=lambda inst: inst.creation))
        )

    @property
    def latest(self) -> DeckInstance:
        return self.history[-1]


class DeckStore:
    """Deck persistence on top of a CardStore's connection."""

    def __init__(self, store: CardStore):
        self._store = store
        self._conn = store.connection

    def get_decks(self) -> dict[int, str]:
        """Get deck id -> deck name for every stored deck."""
        cursor = self._conn.cursor()
        cursor.execute("SELECT id, name FROM Deck ORDER BY id")
        return {row["id"]: row["name"] for row in cursor.fetchall()}

    def get_deck(self, deck_id: int) -> Deck:
        """Load a deck and its full history.

        Raises:
            DeckError: If no deck has this id
        """
        cursor = self._conn.cursor()
        cursor.execute("SELECT id, name, description FROM Deck WHERE id = ?", (deck_id,))
        row = cursor.fetchone()
        if row is None:
            raise DeckError(f"No deck with id {deck_id}")

        creations = [
            r["creation"]
            for r in cursor.execute(
                "SELECT creation FROM DeckInstance WHERE deck_id = ? ORDER BY creation", (deck_id,)
            ).fetchall()
        ]
        history = tuple(self._load_instance(deck_id, creation) for creation in creations)
        return Deck(row["id"], row["name"], row["description"], history)

    def _load_instance(self, deck_id: int, creation: str) -> DeckInstance:
        cursor = self._conn.cursor()
        categories: dict[str, set[str]] = {
            r["category"]: set()
            for r in cursor.execute(
                "SELECT category FROM DeckInstanceCategory WHERE deck_id = ? AND creation = ?",
                (deck_id, creation),
            ).fetchall()
        }
        for r in cursor.execute(
            """
            SELECT card_name, category FROM DeckInstanceCardCategory
            WHERE deck_id = ? AND creation = ?
            """,
            (deck_id, creation),
        ).fetchall():
            categories[r["category"]].add(r["card_name"])

        quantities = {
            Printing(r["card_name"], r["expansion"], r["number"]): r["quantity"]
            for r in cursor.execute(
                """
                SELECT card_name, expansion, number, quantity FROM DeckInstanceCard
                WHERE deck_id = ? AND creation = ?
                """,
                (deck_id, creation),
            ).fetchall()
        }
        return DeckInstance(deck_id, datetime.fromisoformat(creation), categories, quantities)

    def add_deck(self, deck: Deck) -> int:
        """Store a new deck with its history.

        Returns:
            Id of the stored deck (``deck.deck_id`` if given, else a new one)

        Raises:
            DeckError: If the id is taken or a printing is unknown
        """
        cursor = self._conn.cursor()
        cursor.execute("BEGIN TRANSACTION")
        try:
            if deck.deck_id is not None and self._exists(deck.deck_id):
                raise DeckError(f"Deck id {deck.deck_id} is already in use")
            cursor.execute(
                "INSERT INTO Deck(id, name, description) VALUES (?, ?, ?)",
                (deck.deck_id, deck.name, deck.description),
            )
            deck_id = cursor.lastrowid if deck.deck_id is None else deck.deck_id
            for instance in deck.history:
                self._insert_instance(cursor, replace(instance, deck_id=deck_id))
            self._conn.commit()
        except Exception:
            self._conn.rollback()
            raise

        logger.info("Added deck %d (%s)", deck_id, deck.name)
        return deck_id

    def update_deck(self, instance: DeckInstance) -> None:
        """Append a new instance to its deck's history.

        Raises:
            DeckError: If the deck doesn't exist, an instance with the same
                creation time exists, or a printing is unknown
        """
        if instance.deck_id is None or not self._exists(instance.deck_id):
            raise DeckError(f"No deck with id {instance.deck_id}")
        cursor = self._conn.cursor()
        cursor.execute("BEGIN TRANSACTION")
        try:
            self._insert_instance(cursor, instance)
            self._conn.commit()
        except Exception:
            self._conn.rollback()
            raise

    def _insert_instance(self, cursor, instance: DeckInstance) -> None:
        creation = instance.creation.isoformat()
        cursor.execute(
            "SELECT 1 FROM DeckInstance WHERE deck_id = ? AND creation = ?",
            (instance.deck_id, creation),
        )
        if cursor.fetchone():
            raise DeckError(f"Deck {instance.deck_id} already has an instance created at {creation}")

        for printing in instance.quantities:
            if not self._store.printing_exists(*printing):
                raise DeckError(
                    f"Unknown printing: {printing.card_name} ({printing.expansion} #{printing.number})"
                )

        cursor.execute(
            "INSERT INTO DeckInstance(deck_id, creation) VALUES (?, ?)",
            (instance.deck_id, creation),
        )
        for category, cards in instance.categories.items():
            cursor.execute(
                "INSERT INTO DeckInstanceCategory(deck_id, creation, category) VALUES (?, ?, ?)",
                (instance.deck_id, creation, category),
            )
            cursor.executemany(
                """
                INSERT INTO DeckInstanceCardCategory(deck_id, creation, card_name, category)
                VALUES (?, ?, ?, ?)
                """,
                [(instance.deck_id, creation, card, category) for card in sorted(cards)],
            )
        cursor.executemany(
            """
            INSERT INTO DeckInstanceCard(deck_id, creation, card_name, expansion, number, quantity)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            [(instance.deck_id, creation, *printing, qty) for printing, qty in instance.quantities.items()],
        )

    def delete_deck(self, deck_id: int) -> None:
        """Delete a deck and its whole history.

        Raises:
            DeckError: If no deck has this id
        """
        cursor = self._conn.cursor()
        cursor.execute("DELETE FROM Deck WHERE id = ?", (deck_id,))
        if cursor.rowcount == 0:
            self._conn.rollback()
            raise DeckError(f"No deck with id {deck_id}")
        self._conn.commit()

    def update_deck_name(self, deck_id: int, name: str) -> None:
        if not name:
            raise DeckError("Deck name can't be empty")
        self._update(deck_id, "UPDATE Deck SET name = ? WHERE id = ?", name)

    def update_deck_description(self, deck_id: int, description: str) -> None:
        if description is None:
            raise DeckError("Deck description can't be null")
        self._update(deck_id, "UPDATE Deck SET description = ? WHERE id = ?", description)

    def _update(self, deck_id: int, statement: str, value: str) -> None:
        cursor = self._conn.cursor()
        cursor.execute(statement, (value, deck_id))
        if cursor.rowcount == 0:
            self._conn.rollback()
            raise DeckError(f"No deck with id {deck_id}")
        self._conn.commit()

    def _exists(self, deck_id: int) -> bool:
        cursor = self._conn.cursor()
        cursor.execute("SELECT 1 FROM Deck WHERE id = ?", (deck_id,))
        return cursor.fetchone() is not None
