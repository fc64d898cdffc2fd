"""SQL fragment tree and the per-category fragment compilers.

Fragments are built as small node trees and only rendered to text at the
end, so clause order and alias numbering stay deterministic. Literals are
inlined with single quotes doubled; every inlined value has already been
checked against the domain catalog or the word rules before it gets here.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, Mapping, Sequence

from manaflood.predicates import (
    Category,
    CategoryKind,
    ComparisonEntry,
    InclusionMode,
    PredicateEntry,
    Stat,
)


class FragmentError(RuntimeError):
    """Internal inconsistency in the fragment compiler (a defect, not user input)."""


# Card-identity columns matched by substring
CARD_COLUMNS = {
    Category.NAME: ("Card", "name"),
    Category.TEXT: ("Card", "text"),
}

# One row per (card, value)
SIDE_TABLES = {
    Category.COLOR: ("Color", "color"),
    Category.COLOR_IDENTITY: ("ColorIdentity", "color"),
    Category.SUPERTYPE: ("Supertype", "type"),
    Category.TYPE: ("Type", "type"),
    Category.SUBTYPE: ("Subtype", "type"),
}

# Columns on the printing table (CardExpansion)
PRINTING_COLUMNS = {
    Category.SET: "expansion",
    Category.ARTIST: "artist",
    Category.RARITY: "rarity",
    Category.FLAVOR_TEXT: "flavor_text",
}

# Stat -> (table, value column, card key column)
STAT_COLUMNS = {
    Stat.CMC: ("Card", "cmc", "name"),
    Stat.POWER: ("PowerToughness", "power_value", "card_name"),
    Stat.TOUGHNESS: ("PowerToughness", "toughness_value", "card_name"),
    Stat.LOYALTY: ("Loyalty", "loyalty_value", "card_name"),
}

PRINTING_TABLE = "CardExpansion"
BLOCK_TABLE = "Block"
MANA_TABLE = "Mana"


# Nodes

class QueryNode(ABC):
    """Base class for every node of a compiled fragment."""

    @abstractmethod
    def to_sql(self) -> str:
        """Render this node as SQL text."""


@dataclass(frozen=True)
class Column(QueryNode):
    alias: str
    name: str

    def to_sql(self) -> str:
        return f"{self.alias}.{self.name}"


@dataclass(frozen=True)
class Literal(QueryNode):
    """A string or integer literal."""

    value: str | int

    def to_sql(self) -> str:
        if isinstance(self.value, bool) or not isinstance(self.value, (str, int)):
            raise FragmentError(f"Unsupported literal: {self.value!r}")
        if isinstance(self.value, int):
            return str(self.value)
        return "'" + self.value.replace("'", "''") + "'"


@dataclass(frozen=True)
class CountDistinct(QueryNode):
    column: Column

    def to_sql(self) -> str:
        return f"COUNT(DISTINCT {self.column.to_sql()})"


@dataclass(frozen=True)
class BinaryOp(QueryNode):
    """``left op right`` for comparison operators."""

    left: QueryNode
    operator: str
    right: QueryNode

    def to_sql(self) -> str:
        return f"{self.left.to_sql()} {self.operator} {self.right.to_sql()}"


@dataclass(frozen=True)
class Like(QueryNode):
    """Substring test: ``column [NOT] LIKE '%word%'``."""

    column: Column
    word: str
    negated: bool = False

    def to_sql(self) -> str:
        keyword = "NOT LIKE" if self.negated else "LIKE"
        return f"{self.column.to_sql()} {keyword} {Literal('%' + self.word + '%').to_sql()}"


@dataclass(frozen=True)
class InValues(QueryNode):
    column: Column
    values: tuple[str, ...]
    negated: bool = False

    def to_sql(self) -> str:
        keyword = "NOT IN" if self.negated else "IN"
        rendered = ", ".join(Literal(v).to_sql() for v in self.values)
        return f"{self.column.to_sql()} {keyword} ({rendered})"


@dataclass(frozen=True)
class InSubquery(QueryNode):
    column: Column
    query: QueryNode
    negated: bool = False

    def to_sql(self) -> str:
        keyword = "NOT IN" if self.negated else "IN"
        return f"{self.column.to_sql()} {keyword} ({self.query.to_sql()})"


@dataclass(frozen=True)
class AllOf(QueryNode):
    """Conjunction. Renders without parentheses; AND binds tighter than OR."""

    parts: tuple[QueryNode, ...]

    def to_sql(self) -> str:
        if not self.parts:
            raise FragmentError("Empty conjunction")
        return " AND ".join(part.to_sql() for part in self.parts)


@dataclass(frozen=True)
class AnyOf(QueryNode):
    """Disjunction, parenthesized when it has more than one part."""

    parts: tuple[QueryNode, ...]

    def to_sql(self) -> str:
        if not self.parts:
            raise FragmentError("Empty disjunction")
        if len(self.parts) == 1:
            return self.parts[0].to_sql()
        return "(" + " OR ".join(part.to_sql() for part in self.parts) + ")"


@dataclass(frozen=True)
class Coalesce(QueryNode):
    value: QueryNode
    fallback: QueryNode

    def to_sql(self) -> str:
        return f"COALESCE({self.value.to_sql()}, {self.fallback.to_sql()})"


@dataclass(frozen=True)
class Join(QueryNode):
    table: str
    alias: str
    on: QueryNode
    outer: bool = False

    def to_sql(self) -> str:
        keyword = "LEFT JOIN" if self.outer else "JOIN"
        return f"{keyword} {self.table} {self.alias} ON {self.on.to_sql()}"


@dataclass(frozen=True)
class Select(QueryNode):
    columns: tuple[Column, ...]
    table: str
    alias: str
    joins: tuple[Join, ...] = ()
    where: tuple[QueryNode, ...] = ()
    group_by: tuple[Column, ...] = ()
    having: QueryNode | None = None

    def to_sql(self) -> str:
        parts = [
            "SELECT " + ", ".join(c.to_sql() for c in self.columns),
            f"FROM {self.table} {self.alias}",
        ]
        parts.extend(join.to_sql() for join in self.joins)
        if self.where:
            parts.append("WHERE " + AllOf(self.where).to_sql())
        if self.group_by:
            parts.append("GROUP BY " + ", ".join(c.to_sql() for c in self.group_by))
        if self.having is not None:
            parts.append("HAVING " + self.having.to_sql())
        return " ".join(parts)


@dataclass(frozen=True)
class Intersect(QueryNode):
    selects: tuple[Select, ...]

    def to_sql(self) -> str:
        if not self.selects:
            raise FragmentError("Empty INTERSECT")
        return " INTERSECT ".join(s.to_sql() for s in self.selects)


# Compilation context

class AliasAllocator:
    """Hands out t0, t1, ... in call order."""

    def __init__(self) -> None:
        self._next = 0

    def next(self) -> str:
        alias = f"t{self._next}"
        self._next += 1
        return alias


@dataclass
class CompileContext:
    """State shared by every category compiled in one query."""

    aliases: AliasAllocator
    outer_alias: str
    block_expansions: Mapping[str, frozenset[str] | set[str]] = field(default_factory=dict)


# Mode strategies

# mode -> builder(column, words) for substring-matched columns
MODE_STRATEGIES: dict[InclusionMode, Callable[[Column, tuple[str, ...]], QueryNode]] = {
    InclusionMode.MUST_INCLUDE:
        lambda col, words: AllOf(tuple(Like(col, w) for w in words)),
    InclusionMode.DISALLOW:
        lambda col, words: AllOf(tuple(Like(col, w, negated=True) for w in words)),
    InclusionMode.ONE_OF:
        lambda col, words: AnyOf(tuple(Like(col, w) for w in words)),
}

_MODE_ORDER = (InclusionMode.MUST_INCLUDE, InclusionMode.DISALLOW, InclusionMode.ONE_OF)


@dataclass(frozen=True)
class Partition:
    """A category's values split by mode, deduplicated, first-seen order."""

    must: tuple[str, ...]
    disallow: tuple[str, ...]
    one_of: tuple[str, ...]

    def by_mode(self, mode: InclusionMode) -> tuple[str, ...]:
        return {
            InclusionMode.MUST_INCLUDE: self.must,
            InclusionMode.DISALLOW: self.disallow,
            InclusionMode.ONE_OF: self.one_of,
        }[mode]

    @property
    def included(self) -> tuple[str, ...]:
        return _dedupe(self.must + self.one_of)


def _dedupe(values: Sequence[str]) -> tuple[str, ...]:
    return tuple(dict.fromkeys(values))


def partition(entries: Sequence[PredicateEntry]) -> Partition:
    """Split value entries by inclusion mode.

    Raises:
        FragmentError: If an entry is not a value entry or no entry lands
            in any mode.
    """
    buckets: dict[InclusionMode, list[str]] = {mode: [] for mode in InclusionMode}
    for entry in entries:
        if not isinstance(entry, PredicateEntry):
            raise FragmentError(f"Expected a value entry, got {entry!r}")
        buckets[entry.mode].append(entry.value)
    result = Partition(
        _dedupe(buckets[InclusionMode.MUST_INCLUDE]),
        _dedupe(buckets[InclusionMode.DISALLOW]),
        _dedupe(buckets[InclusionMode.ONE_OF]),
    )
    if not (result.must or result.disallow or result.one_of):
        raise FragmentError("Category marked active but holds no values")
    return result


def substring_conditions(column: Column, parts: Partition) -> list[QueryNode]:
    """Conditions for every non-empty mode, in must/disallow/one-of order."""
    conditions = []
    for mode in _MODE_ORDER:
        values = parts.by_mode(mode)
        if values:
            conditions.append(MODE_STRATEGIES[mode](column, values))
    return conditions


# Category compilers

def _compile_card_attribute(category: Category, entries: Sequence, ctx: CompileContext) -> Select:
    table, column = CARD_COLUMNS[category]
    parts = partition(entries)
    alias = ctx.aliases.next()
    where = substring_conditions(Column(alias, column), parts)
    return Select((Column(alias, "name"),), table, alias, where=tuple(where))


def _side_table_members(table: str, column: str, values: tuple[str, ...], ctx: CompileContext) -> Select:
    alias = ctx.aliases.next()
    return Select(
        (Column(alias, "card_name"),),
        table,
        alias,
        where=(InValues(Column(alias, column), values),),
    )


def _side_table_count(table: str, column: str, values: tuple[str, ...], ctx: CompileContext) -> Select:
    """Cards with a row for every one of ``values``."""
    alias = ctx.aliases.next()
    return Select(
        (Column(alias, "card_name"),),
        table,
        alias,
        where=(InValues(Column(alias, column), values),),
        group_by=(Column(alias, "card_name"),),
        having=BinaryOp(CountDistinct(Column(alias, column)), "=", Literal(len(values))),
    )


def _compile_side_table(category: Category, entries: Sequence, ctx: CompileContext) -> Select:
    table, column = SIDE_TABLES[category]
    parts = partition(entries)
    alias = ctx.aliases.next()
    where: list[QueryNode] = []

    if parts.included:
        key = Column(alias, "card_name")
        source_table = table
        value = Column(alias, column)
        if parts.disallow:
            where.append(InValues(value, parts.disallow, negated=True))
        where.append(InValues(value, parts.included))
    else:
        # Only exclusions: start from every card so cards without rows survive
        key = Column(alias, "name")
        source_table = "Card"

    if parts.must:
        where.append(InSubquery(key, _side_table_count(table, column, parts.must, ctx)))
    if parts.must and parts.one_of:
        where.append(InSubquery(key, _side_table_members(table, column, parts.one_of, ctx)))
    if parts.disallow:
        where.append(
            InSubquery(key, _side_table_members(table, column, parts.disallow, ctx), negated=True)
        )

    return Select((key,), source_table, alias, where=tuple(where))


def _printing_count(column: str, values: tuple[str, ...], ctx: CompileContext) -> Select:
    """Cards with printings covering every one of ``values``."""
    alias = ctx.aliases.next()
    return Select(
        (Column(alias, "card_name"),),
        PRINTING_TABLE,
        alias,
        where=(InValues(Column(alias, column), values),),
        group_by=(Column(alias, "card_name"),),
        having=BinaryOp(CountDistinct(Column(alias, column)), "=", Literal(len(values))),
    )


def _printing_members(column: str, values: tuple[str, ...], ctx: CompileContext) -> Select:
    alias = ctx.aliases.next()
    return Select(
        (Column(alias, "card_name"),),
        PRINTING_TABLE,
        alias,
        where=(InValues(Column(alias, column), values),),
    )


def _compile_printing_attribute(category: Category, entries: Sequence, ctx: CompileContext) -> QueryNode:
    parts = partition(entries)
    name = PRINTING_COLUMNS[category]
    column = Column(ctx.outer_alias, name)
    if category is Category.FLAVOR_TEXT:
        return AllOf(tuple(substring_conditions(column, parts)))

    # The printing row holds one value; a card can hold several across printings
    card = Column(ctx.outer_alias, "card_name")
    conditions: list[QueryNode] = []
    if parts.disallow:
        conditions.append(InValues(column, parts.disallow, negated=True))
    if parts.included:
        conditions.append(InValues(column, parts.included))
    if len(parts.must) > 1 or (parts.must and parts.one_of):
        conditions.append(InSubquery(card, _printing_count(name, parts.must, ctx)))
    if parts.must and parts.one_of:
        conditions.append(InSubquery(card, _printing_members(name, parts.one_of, ctx)))
    return AllOf(tuple(conditions))


def _block_join(ctx: CompileContext) -> tuple[str, str, Join]:
    printing = ctx.aliases.next()
    block = ctx.aliases.next()
    join = Join(
        BLOCK_TABLE,
        block,
        BinaryOp(Column(printing, "expansion"), "=", Column(block, "expansion")),
    )
    return printing, block, join


def _block_count(blocks: tuple[str, ...], ctx: CompileContext) -> Select:
    """Cards printed in a set of every one of ``blocks``."""
    printing, block, join = _block_join(ctx)
    return Select(
        (Column(printing, "card_name"),),
        PRINTING_TABLE,
        printing,
        joins=(join,),
        where=(InValues(Column(block, "block"), blocks),),
        group_by=(Column(printing, "card_name"),),
        having=BinaryOp(CountDistinct(Column(block, "block")), "=", Literal(len(blocks))),
    )


def _block_members(blocks: tuple[str, ...], ctx: CompileContext) -> Select:
    printing, block, join = _block_join(ctx)
    return Select(
        (Column(printing, "card_name"),),
        PRINTING_TABLE,
        printing,
        joins=(join,),
        where=(InValues(Column(block, "block"), blocks),),
    )


def _compile_block(category: Category, entries: Sequence, ctx: CompileContext) -> QueryNode:
    parts = partition(entries)

    def expansions(blocks: tuple[str, ...]) -> tuple[str, ...]:
        names: set[str] = set()
        for block in blocks:
            names.update(ctx.block_expansions.get(block, ()))
        return tuple(sorted(names))

    expansion = Column(ctx.outer_alias, "expansion")
    card = Column(ctx.outer_alias, "card_name")
    conditions: list[QueryNode] = []
    if parts.disallow:
        conditions.append(InValues(expansion, expansions(parts.disallow), negated=True))
    if parts.included:
        conditions.append(InValues(expansion, expansions(parts.included)))
    if len(parts.must) > 1 or (parts.must and parts.one_of):
        conditions.append(InSubquery(card, _block_count(parts.must, ctx)))
    if parts.must and parts.one_of:
        conditions.append(InSubquery(card, _block_members(parts.one_of, ctx)))
    return AllOf(tuple(conditions))


@dataclass
class _NumericSelect:
    """Collects joined sources and conditions for one numeric category."""

    base_table: str = ""
    base_alias: str = ""
    base_key: str = ""
    joins: list[Join] = field(default_factory=list)
    conditions: list[QueryNode] = field(default_factory=list)

    def source(self, table: str, key: str, ctx: CompileContext) -> str:
        alias = ctx.aliases.next()
        if not self.base_alias:
            self.base_table, self.base_alias, self.base_key = table, alias, key
        else:
            on = BinaryOp(Column(self.base_alias, self.base_key), "=", Column(alias, key))
            self.joins.append(Join(table, alias, on))
        return alias

    def build(self) -> Select:
        if not self.conditions:
            raise FragmentError("Numeric category compiled without comparisons")
        return Select(
            (Column(self.base_alias, self.base_key),),
            self.base_table,
            self.base_alias,
            joins=tuple(self.joins),
            where=tuple(self.conditions),
        )


def _comparisons(entries: Sequence) -> Sequence[ComparisonEntry]:
    for entry in entries:
        if not isinstance(entry, ComparisonEntry):
            raise FragmentError(f"Expected a comparison entry, got {entry!r}")
    return entries


def _compile_stat(category: Category, entries: Sequence, ctx: CompileContext) -> Select:
    select = _NumericSelect()
    for entry in _comparisons(entries):
        table, column, key = STAT_COLUMNS[entry.left]
        alias = select.source(table, key, ctx)
        select.conditions.append(
            BinaryOp(Column(alias, column), entry.operator.value, Literal(entry.right))
        )
    return select.build()


def _compile_stat_versus_stat(category: Category, entries: Sequence, ctx: CompileContext) -> Select:
    select = _NumericSelect()
    for entry in _comparisons(entries):
        left_table, left_column, left_key = STAT_COLUMNS[entry.left]
        right_table, right_column, right_key = STAT_COLUMNS[entry.right]
        left = select.source(left_table, left_key, ctx)
        right = select.source(right_table, right_key, ctx)
        select.conditions.append(
            BinaryOp(Column(left, left_column), entry.operator.value, Column(right, right_column))
        )
    return select.build()


def _compile_mana_type(category: Category, entries: Sequence, ctx: CompileContext) -> Select:
    # A card without a row for the symbol has zero of it
    card = ctx.aliases.next()
    joins: list[Join] = []
    conditions: list[QueryNode] = []
    for entry in _comparisons(entries):
        alias = ctx.aliases.next()
        on = AllOf((
            BinaryOp(Column(card, "name"), "=", Column(alias, "card_name")),
            BinaryOp(Column(alias, "mana_type"), "=", Literal(entry.left)),
        ))
        joins.append(Join(MANA_TABLE, alias, on, outer=True))
        quantity = Coalesce(Column(alias, "quantity"), Literal(0))
        conditions.append(BinaryOp(quantity, entry.operator.value, Literal(entry.right)))
    if not conditions:
        raise FragmentError("Numeric category compiled without comparisons")
    return Select(
        (Column(card, "name"),), "Card", card, joins=tuple(joins), where=tuple(conditions)
    )


_NUMERIC_COMPILERS = {
    Category.STAT: _compile_stat,
    Category.STAT_VERSUS_STAT: _compile_stat_versus_stat,
    Category.MANA_TYPE: _compile_mana_type,
}

_KIND_COMPILERS = {
    CategoryKind.CARD_ATTRIBUTE: _compile_card_attribute,
    CategoryKind.SIDE_TABLE: _compile_side_table,
    CategoryKind.PRINTING_ATTRIBUTE: _compile_printing_attribute,
    CategoryKind.PRINTING_SIDE_TABLE: _compile_block,
}


def compile_category(category: Category, entries: Sequence, ctx: CompileContext) -> QueryNode | None:
    """Compile one category's entries into a fragment.

    Card-level categories yield a Select of card names; printing-level
    categories yield a condition over the outer printing alias.

    Returns:
        The fragment, or None when the category has no entries
    """
    if not entries:
        return None
    if category.is_numeric:
        compiler = _NUMERIC_COMPILERS[category]
    else:
        compiler = _KIND_COMPILERS[category.kind]
    return compiler(category, entries, ctx)
