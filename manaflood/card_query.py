"""CardQuery: the public builder for card searches.

Each ``by_*`` call validates its arguments against the domain catalog and
records one predicate. ``as_query`` compiles everything recorded so far into
a single SQL statement selecting printing identities (card name, set name,
printing number).

A CardQuery is not thread-safe. ``by_*`` and ``clear`` mutate shared state
without locking, so callers sharing one instance across threads must
serialize access themselves. The strings returned by ``as_query`` are plain
immutable values and may be executed concurrently.
"""

import logging

from manaflood import catalog as vocab
from manaflood.catalog import DomainCatalog
from manaflood.composer import compose
from manaflood.predicates import Category, Comparison, InclusionMode, PredicateStore, Stat

logger = logging.getLogger(__name__)


class QueryError(ValueError):
    """Invalid argument passed to a CardQuery method."""

    def __init__(self, message: str, hint: str | None = None):
        super().__init__(message)
        self.message = message
        self.hint = hint or "Check the value and try again"

    def __str__(self) -> str:
        return f"{self.message}. Hint: {self.hint}"


# Category -> vocabulary its values are checked against
_CATEGORY_VOCABULARY = {
    Category.COLOR: vocab.COLORS,
    Category.COLOR_IDENTITY: vocab.COLORS,
    Category.SUPERTYPE: vocab.SUPERTYPES,
    Category.TYPE: vocab.TYPES,
    Category.SUBTYPE: vocab.SUBTYPES,
    Category.SET: vocab.SETS,
    Category.BLOCK: vocab.BLOCKS,
    Category.ARTIST: vocab.ARTISTS,
    Category.RARITY: vocab.RARITIES,
}


def _to_mode(mode: InclusionMode | bool) -> InclusionMode:
    """Accept an InclusionMode, or the legacy include/exclude boolean."""
    if isinstance(mode, InclusionMode):
        return mode
    if isinstance(mode, bool):
        return InclusionMode.MUST_INCLUDE if mode else InclusionMode.DISALLOW
    if isinstance(mode, str):
        try:
            return InclusionMode(mode)
        except ValueError:
            pass
    raise QueryError(
        f"Invalid inclusion mode: {mode!r}",
        hint="Use must_include, disallow or one_of",
    )


def _to_stat(stat: Stat | str) -> Stat:
    if isinstance(stat, Stat):
        return stat
    if isinstance(stat, str):
        try:
            return Stat(stat.lower())
        except ValueError:
            pass
    raise QueryError(
        f"Unknown stat: {stat!r}",
        hint="Valid stats: " + ", ".join(s.value for s in Stat),
    )


def _to_comparison(operator: Comparison | str) -> Comparison:
    if isinstance(operator, Comparison):
        return operator
    if isinstance(operator, str):
        try:
            return Comparison(operator)
        except ValueError:
            pass
    raise QueryError(
        f"Unknown comparison operator: {operator!r}",
        hint="Valid operators: " + ", ".join(c.value for c in Comparison),
    )


def _check_int(value: object, what: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise QueryError(f"{what} must be an integer, got {value!r}")
    return value


def _check_word(word: object) -> str:
    if word is None:
        raise QueryError("Search word can't be null", hint="Pass a non-empty word")
    if not isinstance(word, str):
        raise QueryError(f"Search word must be a string, got {word!r}")
    if not word:
        raise QueryError("Search word can't be empty", hint="Pass a non-empty word")
    if any(ch.isspace() for ch in word):
        raise QueryError(
            f"Search word can't contain whitespace: {word!r}",
            hint="Add each word with its own call",
        )
    return word


def _normalize_mana_symbol(symbol: object) -> str:
    """Uppercase a symbol and wrap it in braces: "u", "{u}" and "{U}" give "{U}"."""
    if not isinstance(symbol, str) or not symbol:
        raise QueryError(f"Invalid mana symbol: {symbol!r}", hint="Use a symbol such as {U} or {1}")
    symbol = symbol.upper()
    if not symbol.startswith("{"):
        symbol = "{" + symbol + "}"
    return symbol


class CardQuery:
    """Mutable builder of card filters, compiled on demand to SQL."""

    def __init__(self, catalog: DomainCatalog):
        self._catalog = catalog
        self._store = PredicateStore()

    # Word categories

    def by_name(self, word: str, mode: InclusionMode | bool = InclusionMode.MUST_INCLUDE) -> None:
        """Filter on a substring of the card name."""
        self._add_word(Category.NAME, word, mode)

    def by_text(self, word: str, mode: InclusionMode | bool = InclusionMode.MUST_INCLUDE) -> None:
        """Filter on a substring of the rules text."""
        self._add_word(Category.TEXT, word, mode)

    def by_flavor_text(self, word: str, mode: InclusionMode | bool = InclusionMode.MUST_INCLUDE) -> None:
        """Filter printings on a substring of their flavor text."""
        self._add_word(Category.FLAVOR_TEXT, word, mode)

    # Enumerated categories

    def by_color(self, value: str, mode: InclusionMode | bool = InclusionMode.MUST_INCLUDE) -> None:
        self._add_value(Category.COLOR, value, mode)

    def by_color_identity(self, value: str, mode: InclusionMode | bool = InclusionMode.MUST_INCLUDE) -> None:
        self._add_value(Category.COLOR_IDENTITY, value, mode)

    def by_supertype(self, value: str, mode: InclusionMode | bool = InclusionMode.MUST_INCLUDE) -> None:
        self._add_value(Category.SUPERTYPE, value, mode)

    def by_type(self, value: str, mode: InclusionMode | bool = InclusionMode.MUST_INCLUDE) -> None:
        self._add_value(Category.TYPE, value, mode)

    def by_subtype(self, value: str, mode: InclusionMode | bool = InclusionMode.MUST_INCLUDE) -> None:
        self._add_value(Category.SUBTYPE, value, mode)

    def by_block(self, value: str, mode: InclusionMode | bool = InclusionMode.MUST_INCLUDE) -> None:
        """Filter printings by the block their set belongs to.

        With more than one MUST_INCLUDE block, the card must have printings
        in every one of them.
        """
        self._add_value(Category.BLOCK, value, mode)

    def by_set(self, value: str, mode: InclusionMode | bool = InclusionMode.MUST_INCLUDE) -> None:
        """Filter printings by full set name."""
        self._add_value(Category.SET, value, mode)

    def by_artist(self, value: str, mode: InclusionMode | bool = InclusionMode.MUST_INCLUDE) -> None:
        self._add_value(Category.ARTIST, value, mode)

    def by_rarity(self, value: str, mode: InclusionMode | bool = InclusionMode.MUST_INCLUDE) -> None:
        self._add_value(Category.RARITY, value, mode)

    # Numeric categories

    def by_stat(self, stat: Stat | str, operator: Comparison | str, value: int) -> None:
        """Compare a stat to an integer, e.g. ``by_stat(Stat.POWER, ">", 3)``."""
        stat = _to_stat(stat)
        operator = _to_comparison(operator)
        value = _check_int(value, "Stat value")
        self._store.add_comparison(Category.STAT, stat, operator, value)

    def by_stat_versus_stat(
        self,
        stat_a: Stat | str,
        operator: Comparison | str,
        stat_b: Stat | str,
    ) -> None:
        """Compare two stats of the same card, e.g. power >= toughness.

        Raises:
            QueryError: If both sides are the same stat
        """
        stat_a = _to_stat(stat_a)
        operator = _to_comparison(operator)
        stat_b = _to_stat(stat_b)
        if stat_a is stat_b:
            raise QueryError(
                f"Can't compare {stat_a.value} with itself",
                hint="Pick two different stats",
            )
        self._store.add_comparison(Category.STAT_VERSUS_STAT, stat_a, operator, stat_b)

    def by_mana_type(self, symbol: str, operator: Comparison | str, quantity: int) -> None:
        """Compare how many of a mana symbol appear in the card's cost.

        ``symbol`` may be given with or without braces (``"U"`` or ``"{U}"``).
        Cards with none of the symbol have no row to compare and never match.
        """
        symbol = _normalize_mana_symbol(symbol)
        operator = _to_comparison(operator)
        quantity = _check_int(quantity, "Mana quantity")
        self._check_member(vocab.MANA_TYPES, symbol, "mana symbol")
        self._store.add_comparison(Category.MANA_TYPE, symbol, operator, quantity)

    # Compilation

    def as_query(self) -> str:
        """Compile the recorded filters into one SQL statement.

        Does not modify the builder; repeated calls return the same text.
        """
        return compose(self._store, self._catalog.block_expansions)

    def clear(self) -> None:
        """Drop every recorded filter."""
        self._store.clear()

    @property
    def is_empty(self) -> bool:
        return self._store.is_empty()

    def _add_word(self, category: Category, word: str, mode: InclusionMode | bool) -> None:
        word = _check_word(word)
        mode = _to_mode(mode)
        self._store.add_value(category, word, mode)

    def _add_value(self, category: Category, value: str, mode: InclusionMode | bool) -> None:
        if value is None:
            raise QueryError(f"{category.label} value can't be null")
        mode = _to_mode(mode)
        self._check_member(_CATEGORY_VOCABULARY[category], value, category.label.replace("_", " "))
        self._store.add_value(category, value, mode)

    def _check_member(self, vocabulary: str, value: str, what: str) -> None:
        if not self._catalog.contains(vocabulary, value):
            known = sorted(self._catalog.values(vocabulary))
            sample = ", ".join(known[:10]) + (", ..." if len(known) > 10 else "")
            raise QueryError(f"Unsupported {what}: {value!r}", hint=f"Known values: {sample}")
