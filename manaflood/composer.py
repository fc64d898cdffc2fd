"""Query composer: merges category fragments into one statement."""

import logging
from typing import Mapping

from manaflood.fragments import (
    PRINTING_TABLE,
    AliasAllocator,
    Column,
    CompileContext,
    InSubquery,
    Intersect,
    QueryNode,
    Select,
    compile_category,
)
from manaflood.predicates import PredicateStore

logger = logging.getLogger(__name__)

# Printing identity selected by every compiled query
PRINTING_IDENTITY = ("card_name", "expansion", "number")


def compose(
    store: PredicateStore,
    block_expansions: Mapping[str, set[str]] | None = None,
) -> str:
    """Compile every active category in ``store`` into one SELECT.

    The outer statement always reads printing identities from the printing
    table under alias ``t0``. Card-level fragments are intersected and
    applied as one ``t0.card_name IN (...)`` test; printing-level fragments
    are ANDed straight into the outer WHERE.

    Args:
        store: Accumulated predicates (not modified)
        block_expansions: Block name -> set names, used by block filters

    Returns:
        SQL text
    """
    aliases = AliasAllocator()
    outer = aliases.next()
    columns = tuple(Column(outer, name) for name in PRINTING_IDENTITY)

    if store.is_empty():
        return Select(columns, PRINTING_TABLE, outer).to_sql()

    ctx = CompileContext(aliases, outer, block_expansions or {})
    card_fragments: list[Select] = []
    printing_fragments: list[QueryNode] = []
    for category in store.active_categories():
        fragment = compile_category(category, store.entries(category), ctx)
        if fragment is None:
            continue
        if category.card_level:
            card_fragments.append(fragment)
        else:
            printing_fragments.append(fragment)

    where: list[QueryNode] = []
    if card_fragments:
        where.append(InSubquery(Column(outer, "card_name"), Intersect(tuple(card_fragments))))
    where.extend(printing_fragments)

    sql = Select(columns, PRINTING_TABLE, outer, where=tuple(where)).to_sql()
    logger.debug("Compiled query: %s", sql)
    return sql
