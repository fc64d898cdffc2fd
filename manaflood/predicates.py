"""Predicate store and the vocabulary of filter categories.

The store is a plain accumulator: it never validates, never compiles.
Validation lives in the CardQuery facade and compilation in the fragment
compiler.
"""

from dataclasses import dataclass, field
from enum import Enum


class InclusionMode(Enum):
    """How a value participates in its category's predicate."""

    MUST_INCLUDE = "must_include"
    DISALLOW = "disallow"
    ONE_OF = "one_of"


class Comparison(Enum):
    """Numeric comparison operators, valued by their SQL spelling."""

    UNEQUAL = "!="
    EQUAL = "="
    LESS = "<"
    LESS_EQUAL = "<="
    GREATER = ">"
    GREATER_EQUAL = ">="


class Stat(Enum):
    """Numeric card statistics that can be compared."""

    CMC = "cmc"
    POWER = "power"
    TOUGHNESS = "toughness"
    LOYALTY = "loyalty"


class CategoryKind(Enum):
    """Storage shape of a category, which decides how it compiles."""

    CARD_ATTRIBUTE = "card_attribute"
    SIDE_TABLE = "side_table"
    PRINTING_ATTRIBUTE = "printing_attribute"
    PRINTING_SIDE_TABLE = "printing_side_table"
    NUMERIC = "numeric"


class Category(Enum):
    """Filter categories, declared in compile order.

    Each member carries its kind and whether it constrains the card
    identity (True) or the individual printing (False).
    """

    NAME = ("name", CategoryKind.CARD_ATTRIBUTE, True)
    TEXT = ("text", CategoryKind.CARD_ATTRIBUTE, True)
    COLOR = ("color", CategoryKind.SIDE_TABLE, True)
    COLOR_IDENTITY = ("color_identity", CategoryKind.SIDE_TABLE, True)
    SUPERTYPE = ("supertype", CategoryKind.SIDE_TABLE, True)
    TYPE = ("type", CategoryKind.SIDE_TABLE, True)
    SUBTYPE = ("subtype", CategoryKind.SIDE_TABLE, True)
    STAT = ("stat", CategoryKind.NUMERIC, True)
    STAT_VERSUS_STAT = ("stat_versus_stat", CategoryKind.NUMERIC, True)
    MANA_TYPE = ("mana_type", CategoryKind.NUMERIC, True)
    SET = ("set", CategoryKind.PRINTING_ATTRIBUTE, False)
    BLOCK = ("block", CategoryKind.PRINTING_SIDE_TABLE, False)
    ARTIST = ("artist", CategoryKind.PRINTING_ATTRIBUTE, False)
    RARITY = ("rarity", CategoryKind.PRINTING_ATTRIBUTE, False)
    FLAVOR_TEXT = ("flavor_text", CategoryKind.PRINTING_ATTRIBUTE, False)

    def __init__(self, label: str, kind: CategoryKind, card_level: bool):
        self.label = label
        self.kind = kind
        self.card_level = card_level

    @property
    def is_numeric(self) -> bool:
        return self.kind is CategoryKind.NUMERIC


@dataclass(frozen=True)
class PredicateEntry:
    """A value (or word) entered for a non-numeric category."""

    category: Category
    value: str
    mode: InclusionMode


@dataclass(frozen=True)
class ComparisonEntry:
    """A numeric comparison: ``left operator right``.

    ``left`` is a Stat or a mana symbol; ``right`` is an int literal or,
    for stat-versus-stat comparisons, another Stat.
    """

    category: Category
    left: Stat | str
    operator: Comparison
    right: int | Stat


@dataclass
class PredicateStore:
    """Insertion-ordered entries, one list per category."""

    _entries: dict[Category, list] = field(
        default_factory=lambda: {category: [] for category in Category}
    )

    def add_value(self, category: Category, value: str, mode: InclusionMode) -> None:
        """Append a value entry to a non-numeric category."""
        self._entries[category].append(PredicateEntry(category, value, mode))

    def add_comparison(
        self,
        category: Category,
        left: Stat | str,
        operator: Comparison,
        right: int | Stat,
    ) -> None:
        """Append a comparison entry to a numeric category."""
        self._entries[category].append(ComparisonEntry(category, left, operator, right))

    def clear(self) -> None:
        """Empty every category in place."""
        for entries in self._entries.values():
            entries.clear()

    def is_empty(self) -> bool:
        return not any(self._entries.values())

    def entries(self, category: Category) -> tuple:
        """Return a snapshot of a category's entries in insertion order."""
        return tuple(self._entries[category])

    def active_categories(self) -> list[Category]:
        """Categories holding at least one entry, in compile order."""
        return [category for category in Category if self._entries[category]]
