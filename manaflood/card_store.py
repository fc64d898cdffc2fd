"""Card store using SQLite.

Holds the card database (cards, their side tables, printings, sets and
blocks, multi-face relationships and decks) and executes the statements
compiled by CardQuery. Writes use parameterized statements; the only SQL
text built from values is the output of the CardQuery compiler, whose
values are validated against the catalog before compilation.
"""

import logging
import re
import sqlite3
from pathlib import Path
from typing import Any, TYPE_CHECKING

if TYPE_CHECKING:
    from manaflood.card_query import CardQuery

logger = logging.getLogger(__name__)

# Vocabulary name -> query listing its values (allowlist; never interpolated)
VOCABULARY_QUERIES = {
    "colors": "SELECT DISTINCT color FROM Color",
    "supertypes": "SELECT DISTINCT type FROM Supertype",
    "types": "SELECT DISTINCT type FROM Type",
    "subtypes": "SELECT DISTINCT type FROM Subtype",
    "rarities": "SELECT DISTINCT rarity FROM CardExpansion",
    "mana_types": "SELECT DISTINCT mana_type FROM Mana",
    "blocks": "SELECT DISTINCT block FROM Block",
    "artists": "SELECT DISTINCT artist FROM CardExpansion WHERE artist != ''",
    "sets": "SELECT expansion FROM Expansion",
    "relationship_types": "SELECT type FROM TwoCards UNION SELECT type FROM ThreeCards",
}

# Keys a set object must carry to be imported
REQUIRED_SET_KEYS = ("code", "name", "cards", "releaseDate")

# Stored for cards with no color
COLORLESS = "C"

# Generic mana is stored under this symbol with its numeric amount
GENERIC_MANA = "{1}"

_SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS Card (
        name TEXT PRIMARY KEY,
        text TEXT NOT NULL DEFAULT '',
        cmc INTEGER NOT NULL DEFAULT 0,
        mana_cost TEXT NOT NULL DEFAULT ''
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS Color (
        card_name TEXT NOT NULL REFERENCES Card(name),
        color TEXT NOT NULL,
        PRIMARY KEY (card_name, color)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS ColorIdentity (
        card_name TEXT NOT NULL REFERENCES Card(name),
        color TEXT NOT NULL,
        PRIMARY KEY (card_name, color)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS Supertype (
        card_name TEXT NOT NULL REFERENCES Card(name),
        type TEXT NOT NULL,
        PRIMARY KEY (card_name, type)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS Type (
        card_name TEXT NOT NULL REFERENCES Card(name),
        type TEXT NOT NULL,
        PRIMARY KEY (card_name, type)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS Subtype (
        card_name TEXT NOT NULL REFERENCES Card(name),
        type TEXT NOT NULL,
        PRIMARY KEY (card_name, type)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS Mana (
        card_name TEXT NOT NULL REFERENCES Card(name),
        mana_type TEXT NOT NULL,
        quantity INTEGER NOT NULL,
        PRIMARY KEY (card_name, mana_type)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS PowerToughness (
        card_name TEXT PRIMARY KEY REFERENCES Card(name),
        power TEXT NOT NULL,
        power_value INTEGER NOT NULL,
        toughness TEXT NOT NULL,
        toughness_value INTEGER NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS Loyalty (
        card_name TEXT PRIMARY KEY REFERENCES Card(name),
        loyalty TEXT NOT NULL,
        loyalty_value INTEGER NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS Expansion (
        expansion TEXT PRIMARY KEY,
        abbrv TEXT NOT NULL UNIQUE,
        size INTEGER NOT NULL DEFAULT 0,
        release_date TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS Block (
        expansion TEXT NOT NULL REFERENCES Expansion(expansion),
        block TEXT NOT NULL,
        PRIMARY KEY (expansion, block)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS CardExpansion (
        card_name TEXT NOT NULL REFERENCES Card(name),
        expansion TEXT NOT NULL REFERENCES Expansion(expansion),
        number TEXT NOT NULL,
        rarity TEXT NOT NULL,
        flavor_text TEXT NOT NULL DEFAULT '',
        artist TEXT NOT NULL DEFAULT '',
        PRIMARY KEY (card_name, expansion, number)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS TwoCards (
        card_a TEXT NOT NULL REFERENCES Card(name),
        card_b TEXT NOT NULL REFERENCES Card(name),
        type TEXT NOT NULL,
        total_cmc INTEGER NOT NULL,
        PRIMARY KEY (card_a, card_b)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS ThreeCards (
        card_a TEXT NOT NULL REFERENCES Card(name),
        card_b TEXT NOT NULL REFERENCES Card(name),
        card_c TEXT NOT NULL REFERENCES Card(name),
        type TEXT NOT NULL,
        total_cmc INTEGER NOT NULL,
        PRIMARY KEY (card_a, card_b, card_c)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS Deck (
        id INTEGER PRIMARY KEY,
        name TEXT NOT NULL,
        description TEXT NOT NULL DEFAULT ''
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS DeckInstance (
        deck_id INTEGER NOT NULL REFERENCES Deck(id) ON DELETE CASCADE,
        creation TEXT NOT NULL,
        PRIMARY KEY (deck_id, creation)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS DeckInstanceCategory (
        deck_id INTEGER NOT NULL,
        creation TEXT NOT NULL,
        category TEXT NOT NULL,
        PRIMARY KEY (deck_id, creation, category),
        FOREIGN KEY (deck_id, creation) REFERENCES DeckInstance(deck_id, creation)
            ON DELETE CASCADE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS DeckInstanceCard (
        deck_id INTEGER NOT NULL,
        creation TEXT NOT NULL,
        card_name TEXT NOT NULL,
        expansion TEXT NOT NULL,
        number TEXT NOT NULL,
        quantity INTEGER NOT NULL CHECK (quantity >= 1),
        PRIMARY KEY (deck_id, creation, card_name, expansion, number),
        FOREIGN KEY (deck_id, creation) REFERENCES DeckInstance(deck_id, creation)
            ON DELETE CASCADE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS DeckInstanceCardCategory (
        deck_id INTEGER NOT NULL,
        creation TEXT NOT NULL,
        card_name TEXT NOT NULL,
        category TEXT NOT NULL,
        PRIMARY KEY (deck_id, creation, card_name, category),
        FOREIGN KEY (deck_id, creation, category)
            REFERENCES DeckInstanceCategory(deck_id, creation, category)
            ON DELETE CASCADE
    )
    """,
]

_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_card_expansion_expansion ON CardExpansion(expansion)",
    "CREATE INDEX IF NOT EXISTS idx_card_expansion_rarity ON CardExpansion(rarity)",
    "CREATE INDEX IF NOT EXISTS idx_color_color ON Color(color)",
    "CREATE INDEX IF NOT EXISTS idx_color_identity_color ON ColorIdentity(color)",
    "CREATE INDEX IF NOT EXISTS idx_type_type ON Type(type)",
    "CREATE INDEX IF NOT EXISTS idx_subtype_type ON Subtype(type)",
    "CREATE INDEX IF NOT EXISTS idx_block_block ON Block(block)",
]


def string_to_integer(value: str) -> int:
    """Read the leading integer of a stat string.

    Stats such as power may be "*", "1+*" or "-1". An optional leading
    hyphen followed by digits is read; anything else counts as 0.

    Args:
        value: Stat as printed on the card

    Returns:
        Integer value of the numeric prefix, or 0 if none found
    """
    match = re.match(r"^-?\d+", value)
    return int(match.group(0)) if match else 0


def parse_mana_cost(mana_cost: str) -> dict[str, int]:
    """Count the symbols of a mana cost.

    Generic mana is stored under "{1}" with its amount, so "{2}{U}{U}"
    becomes {"{1}": 2, "{U}": 2}.

    Args:
        mana_cost: Cost string such as "{2}{U}{U}"

    Returns:
        Mapping of symbol to quantity, in first-seen order
    """
    counts: dict[str, int] = {}
    for symbol in re.findall(r"\{[^}]*\}", mana_cost or ""):
        inner = symbol[1:-1]
        if inner.isdigit():
            if int(inner) > 0:
                counts[GENERIC_MANA] = counts.get(GENERIC_MANA, 0) + int(inner)
        else:
            counts[symbol] = counts.get(symbol, 0) + 1
    return counts


def _card_name(card: dict[str, Any]) -> str:
    # Faces of multi-face cards are stored under their own names
    return card.get("faceName") or card["name"]


def _related_names(card: dict[str, Any]) -> list[str] | None:
    names = card.get("names")
    if names:
        return list(names)
    if " // " in card.get("name", ""):
        return card["name"].split(" // ")
    return None


def _card_cmc(card: dict[str, Any]) -> int:
    for key in ("faceConvertedManaCost", "faceManaValue", "convertedManaCost", "manaValue"):
        if card.get(key) is not None:
            return int(card[key])
    return 0


class CardStore:
    """SQLite-based card database."""

    def __init__(self, db_path: Path | str):
        """Initialize card store.

        Args:
            db_path: Path to SQLite database file (or ":memory:")
        """
        self.db_path = db_path
        self._conn = sqlite3.connect(db_path)
        self._conn.row_factory = sqlite3.Row
        # WAL keeps readers unblocked during imports
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA foreign_keys=ON")
        # Name, text and flavor text matching is case-sensitive
        self._conn.execute("PRAGMA case_sensitive_like=ON")
        self._create_tables()

    def _create_tables(self) -> None:
        """Create database tables and indexes."""
        cursor = self._conn.cursor()
        for statement in _SCHEMA:
            cursor.execute(statement)
        for statement in _INDEXES:
            cursor.execute(statement)
        self._conn.commit()

    @property
    def connection(self) -> sqlite3.Connection:
        return self._conn

    def close(self) -> None:
        """Close database connection."""
        self._conn.close()

    def __enter__(self) -> "CardStore":
        """Enter context manager."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Exit context manager and close connection."""
        self.close()

    def get_table_names(self) -> list[str]:
        """Get list of table names in database."""
        cursor = self._conn.cursor()
        cursor.execute("SELECT name FROM sqlite_master WHERE type='table'")
        return [row[0] for row in cursor.fetchall()]

    def get_card_count(self) -> int:
        """Get number of distinct cards in database."""
        cursor = self._conn.cursor()
        cursor.execute("SELECT COUNT(*) FROM Card")
        return cursor.fetchone()[0]

    def get_printing_count(self) -> int:
        """Get number of printings in database."""
        cursor = self._conn.cursor()
        cursor.execute("SELECT COUNT(*) FROM CardExpansion")
        return cursor.fetchone()[0]

    # Catalog source

    def load_vocabulary(self, name: str) -> set[str]:
        """Return every value of a vocabulary as currently stored.

        Args:
            name: Vocabulary name (see VOCABULARY_QUERIES)

        Raises:
            ValueError: If the vocabulary name is unknown
        """
        query = VOCABULARY_QUERIES.get(name)
        if query is None:
            raise ValueError(f"Unknown vocabulary: {name}")
        cursor = self._conn.cursor()
        cursor.execute(query)
        return {row[0] for row in cursor.fetchall()}

    def load_block_expansions(self) -> dict[str, set[str]]:
        """Return block name -> names of the sets in that block."""
        cursor = self._conn.cursor()
        cursor.execute("SELECT block, expansion FROM Block")
        blocks: dict[str, set[str]] = {}
        for row in cursor.fetchall():
            blocks.setdefault(row["block"], set()).add(row["expansion"])
        return blocks

    # Query execution

    def execute(self, query: str) -> list[sqlite3.Row]:
        """Execute a compiled query and return its rows."""
        cursor = self._conn.cursor()
        cursor.execute(query)
        return cursor.fetchall()

    def query_cards(self, card_query: "CardQuery") -> dict[str, dict[str, set[str]]]:
        """Run a CardQuery and group the printings it selects.

        Returns:
            card name -> set name -> printing numbers
        """
        grouped: dict[str, dict[str, set[str]]] = {}
        for row in self.execute(card_query.as_query()):
            sets = grouped.setdefault(row["card_name"], {})
            sets.setdefault(row["expansion"], set()).add(row["number"])
        return grouped

    def search_printings(
        self,
        card_query: "CardQuery",
        limit: int = 20,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        """Run a CardQuery with a stable order and pagination.

        Args:
            card_query: Filters to apply
            limit: Maximum results to return
            offset: Number of results to skip

        Returns:
            List of printing dictionaries with card_name, set, number,
            rarity and artist
        """
        sql = f"""
            SELECT q.card_name, q.expansion, q.number, ce.rarity, ce.artist
            FROM ({card_query.as_query()}) q
            JOIN CardExpansion ce
              ON ce.card_name = q.card_name
             AND ce.expansion = q.expansion
             AND ce.number = q.number
            ORDER BY q.card_name, q.expansion, q.number
            LIMIT ? OFFSET ?
        """
        cursor = self._conn.cursor()
        cursor.execute(sql, (limit, offset))
        return [
            {
                "card_name": row["card_name"],
                "set": row["expansion"],
                "number": row["number"],
                "rarity": row["rarity"],
                "artist": row["artist"],
            }
            for row in cursor.fetchall()
        ]

    def count_matches(self, card_query: "CardQuery") -> int:
        """Count printings selected by a CardQuery (without pagination)."""
        cursor = self._conn.cursor()
        cursor.execute(f"SELECT COUNT(*) FROM ({card_query.as_query()})")
        return cursor.fetchone()[0]

    def _column(self, query: str, params: tuple) -> list[Any]:
        cursor = self._conn.cursor()
        cursor.execute(query, params)
        return [row[0] for row in cursor.fetchall()]

    def get_card(self, name: str) -> dict[str, Any] | None:
        """Get a card with all of its attributes, printings and relationships.

        Args:
            name: Exact card name

        Returns:
            Card dictionary or None if not found
        """
        cursor = self._conn.cursor()
        cursor.execute("SELECT name, text, cmc, mana_cost FROM Card WHERE name = ?", (name,))
        row = cursor.fetchone()
        if row is None:
            return None

        card: dict[str, Any] = dict(row)
        card["mana"] = {
            r["mana_type"]: r["quantity"]
            for r in cursor.execute(
                "SELECT mana_type, quantity FROM Mana WHERE card_name = ? ORDER BY mana_type",
                (name,),
            ).fetchall()
        }
        card["colors"] = sorted(self._column("SELECT color FROM Color WHERE card_name = ?", (name,)))
        card["color_identity"] = sorted(
            self._column("SELECT color FROM ColorIdentity WHERE card_name = ?", (name,))
        )
        for field, table in (("supertypes", "Supertype"), ("types", "Type"), ("subtypes", "Subtype")):
            # Table names come from the fixed tuple above
            card[field] = sorted(self._column(f"SELECT type FROM {table} WHERE card_name = ?", (name,)))

        stats: dict[str, str] = {}
        pt = cursor.execute(
            "SELECT power, toughness FROM PowerToughness WHERE card_name = ?", (name,)
        ).fetchone()
        if pt:
            stats["power"] = pt["power"]
            stats["toughness"] = pt["toughness"]
        loyalty = cursor.execute(
            "SELECT loyalty FROM Loyalty WHERE card_name = ?", (name,)
        ).fetchone()
        if loyalty:
            stats["loyalty"] = loyalty["loyalty"]
        card["stats"] = stats

        card["printings"] = [
            {
                "set": r["expansion"],
                "number": r["number"],
                "rarity": r["rarity"],
                "flavor_text": r["flavor_text"],
                "artist": r["artist"],
            }
            for r in cursor.execute(
                """
                SELECT expansion, number, rarity, flavor_text, artist
                FROM CardExpansion WHERE card_name = ?
                ORDER BY expansion, number
                """,
                (name,),
            ).fetchall()
        ]
        card["relationships"] = self.get_relationships(name)
        return card

    def get_relationships(self, name: str) -> list[dict[str, Any]]:
        """Get the multi-face groups a card belongs to."""
        cursor = self._conn.cursor()
        relationships = []
        for r in cursor.execute(
            "SELECT card_a, card_b, type FROM TwoCards WHERE ? IN (card_a, card_b)", (name,)
        ).fetchall():
            relationships.append({"cards": [r["card_a"], r["card_b"]], "type": r["type"]})
        for r in cursor.execute(
            "SELECT card_a, card_b, card_c, type FROM ThreeCards WHERE ? IN (card_a, card_b, card_c)",
            (name,),
        ).fetchall():
            relationships.append(
                {"cards": [r["card_a"], r["card_b"], r["card_c"]], "type": r["type"]}
            )
        return relationships

    def printing_exists(self, card_name: str, expansion: str, number: str) -> bool:
        cursor = self._conn.cursor()
        cursor.execute(
            "SELECT 1 FROM CardExpansion WHERE card_name = ? AND expansion = ? AND number = ?",
            (card_name, expansion, number),
        )
        return cursor.fetchone() is not None

    # Ingestion

    def insert_set(self, set_data: dict[str, Any]) -> int:
        """Insert one MTGJSON set atomically.

        Cards already present keep their existing attributes; printings
        already present are skipped, so re-importing a set is a no-op.

        Args:
            set_data: Set object (code, name, releaseDate, cards, optional
                block and totalSetSize)

        Returns:
            Number of printings added

        Raises:
            ValueError: If the set or one of its cards is malformed
            Exception: Re-raises any exception after rolling back the transaction
        """
        for key in REQUIRED_SET_KEYS:
            if key not in set_data:
                raise ValueError(f"Set object is missing required field '{key}'")

        expansion = set_data["name"]
        cursor = self._conn.cursor()
        cursor.execute("BEGIN TRANSACTION")
        try:
            cursor.execute(
                """
                INSERT OR IGNORE INTO Expansion(expansion, abbrv, size, release_date)
                VALUES (?, ?, ?, ?)
                """,
                (
                    expansion,
                    set_data["code"].upper(),
                    int(set_data.get("totalSetSize") or set_data.get("baseSetSize") or 0),
                    set_data["releaseDate"],
                ),
            )
            if set_data.get("block"):
                cursor.execute(
                    "INSERT OR IGNORE INTO Block(expansion, block) VALUES (?, ?)",
                    (expansion, set_data["block"]),
                )

            added = 0
            multi_face: list[dict[str, Any]] = []
            for card in set_data["cards"]:
                added += self._insert_card(cursor, card, expansion)
                if _related_names(card):
                    multi_face.append(card)

            for card in multi_face:
                self._insert_relationship(cursor, card)

            self._conn.commit()
        except Exception:
            self._conn.rollback()
            raise

        logger.info("Imported set %s: %d new printings", expansion, added)
        return added

    def _insert_card(self, cursor: sqlite3.Cursor, card: dict[str, Any], expansion: str) -> int:
        """Insert a card (if new) and its printing (if new); return printings added."""
        name = _card_name(card)
        cursor.execute(
            "INSERT OR IGNORE INTO Card(name, text, cmc, mana_cost) VALUES (?, ?, ?, ?)",
            (name, card.get("text") or "", _card_cmc(card), card.get("manaCost") or ""),
        )
        if cursor.rowcount == 1:
            self._insert_card_details(cursor, name, card)

        number = str(card.get("number") or "")
        if not number or not card.get("rarity"):
            raise ValueError(f"Card {name} in {expansion} has no number or rarity")
        cursor.execute(
            """
            INSERT OR IGNORE INTO CardExpansion(card_name, expansion, number, rarity, flavor_text, artist)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                name,
                expansion,
                number,
                card["rarity"],
                card.get("flavorText") or "",
                card.get("artist") or "",
            ),
        )
        return cursor.rowcount

    def _insert_card_details(self, cursor: sqlite3.Cursor, name: str, card: dict[str, Any]) -> None:
        colors = card.get("colors") or [COLORLESS]
        identity = card.get("colorIdentity") or [COLORLESS]
        cursor.executemany(
            "INSERT OR IGNORE INTO Color(card_name, color) VALUES (?, ?)",
            [(name, c) for c in colors],
        )
        cursor.executemany(
            "INSERT OR IGNORE INTO ColorIdentity(card_name, color) VALUES (?, ?)",
            [(name, c) for c in identity],
        )
        for field, table in (("supertypes", "Supertype"), ("types", "Type"), ("subtypes", "Subtype")):
            # Table names come from the fixed tuple above
            cursor.executemany(
                f"INSERT OR IGNORE INTO {table}(card_name, type) VALUES (?, ?)",
                [(name, t) for t in card.get(field) or []],
            )
        cursor.executemany(
            "INSERT OR IGNORE INTO Mana(card_name, mana_type, quantity) VALUES (?, ?, ?)",
            [(name, symbol, qty) for symbol, qty in parse_mana_cost(card.get("manaCost", "")).items()],
        )

        power, toughness = card.get("power"), card.get("toughness")
        if power is not None and toughness is not None:
            cursor.execute(
                """
                INSERT OR IGNORE INTO PowerToughness(card_name, power, power_value, toughness, toughness_value)
                VALUES (?, ?, ?, ?, ?)
                """,
                (name, power, string_to_integer(power), toughness, string_to_integer(toughness)),
            )
        elif card.get("loyalty") is not None:
            loyalty = str(card["loyalty"])
            cursor.execute(
                "INSERT OR IGNORE INTO Loyalty(card_name, loyalty, loyalty_value) VALUES (?, ?, ?)",
                (name, loyalty, string_to_integer(loyalty)),
            )

    def _insert_relationship(self, cursor: sqlite3.Cursor, card: dict[str, Any]) -> None:
        """Record a multi-face group once every face is in the database."""
        names = _related_names(card)
        layout = card.get("layout")
        if not layout:
            raise ValueError(f"Card {_card_name(card)} has related faces but no layout")
        if len(names) not in (2, 3):
            raise ValueError(
                f"Card {_card_name(card)} has an unsupported number of faces: {len(names)}"
            )

        placeholders = ", ".join("?" for _ in names)
        cursor.execute(
            f"SELECT COUNT(*), COALESCE(SUM(cmc), 0) FROM Card WHERE name IN ({placeholders})",
            names,
        )
        present, total_cmc = cursor.fetchone()
        if present != len(names):
            logger.debug("Skipping relationship %s: not every face imported yet", names)
            return

        if len(names) == 2:
            cursor.execute(
                "INSERT OR IGNORE INTO TwoCards(card_a, card_b, type, total_cmc) VALUES (?, ?, ?, ?)",
                (*names, layout, total_cmc),
            )
        else:
            cursor.execute(
                """
                INSERT OR IGNORE INTO ThreeCards(card_a, card_b, card_c, type, total_cmc)
                VALUES (?, ?, ?, ?, ?)
                """,
                (*names, layout, total_cmc),
            )
